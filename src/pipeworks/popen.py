"""Spawn a command with pipes to its standard streams."""

from __future__ import annotations

from collections import namedtuple
from typing import Mapping, Optional

from pipeworks.process import Guarded, close_quietly
from pipeworks.spawn import PIPE, STDOUT, Command, CommandLike, spawn


class Popen3Result(Guarded, namedtuple("Popen3Result", "stdin stdout stderr process")):
    """``(stdin, stdout, stderr, process)``; also a context manager."""

    __slots__ = ()

    def _exposed_streams(self) -> tuple:
        return (self.stdin, self.stdout, self.stderr)

    def _owned_processes(self) -> tuple:
        return (self.process,)


class Popen2Result(Guarded, namedtuple("Popen2Result", "stdin stdout process")):
    """``(stdin, stdout, process)``; also a context manager."""

    __slots__ = ()

    def _exposed_streams(self) -> tuple:
        return (self.stdin, self.stdout)

    def _owned_processes(self) -> tuple:
        return (self.process,)


def popen3(
    *cmd: CommandLike,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    text: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
) -> Popen3Result:
    """
    Start a command with pipes for stdin, stdout and stderr.

    A single string is run by the shell; several strings (or one list)
    are argv tokens and are not expanded.

    Block form waits for the process when the block is left:

        with popen3("echo", "a") as (stdin, stdout, stderr, proc):
            print(proc.pid, stdout.read())
        proc.wait().success

    Non-block form leaves closing and waiting to the caller:

        stdin, stdout, stderr, proc = popen3("cat")
        ...
        stdin.close(); stdout.close(); stderr.close()
        status = proc.wait()

    Closing the streams does not wait for the process.
    """
    proc = spawn(
        Command.from_args(*cmd), PIPE, PIPE, PIPE,
        env=env, cwd=cwd, text=text, encoding=encoding, errors=errors,
    )
    return Popen3Result(proc.stdin, proc.stdout, proc.stderr, proc)


def popen2(*cmd: CommandLike, **kwargs) -> Popen2Result:
    """
    Like ``popen3`` but without a stderr stream.

    The stderr pipe is created and closed straight away rather than
    inherited, so a child writing to stderr gets a broken pipe.

        with popen2("wc -c") as (stdin, stdout, proc):
            stdin.write(b"answer to life the universe and everything")
            stdin.close()
            stdout.read()  # b"42\\n"
    """
    stdin, stdout, stderr, proc = popen3(*cmd, **kwargs)
    close_quietly(stderr)
    proc.stderr = None
    return Popen2Result(stdin, stdout, proc)


def popen2e(
    *cmd: CommandLike,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    text: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
) -> Popen2Result:
    """
    Like ``popen2`` but stdout and stderr share one stream.

    The child's stderr is its stdout descriptor, so the merged stream
    carries both in the order the child wrote them.

        with popen2e("gcc", "-Wall", "foo.c") as (stdin, out_and_err, proc):
            for line in out_and_err:
                ...
    """
    proc = spawn(
        Command.from_args(*cmd), PIPE, PIPE, STDOUT,
        env=env, cwd=cwd, text=text, encoding=encoding, errors=errors,
    )
    return Popen2Result(proc.stdin, proc.stdout, proc)
