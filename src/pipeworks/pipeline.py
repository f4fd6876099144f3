"""
Chains of processes connected by OS pipes.

Stage ``i``'s stdout is handed to stage ``i + 1`` as its stdin descriptor;
data between stages never passes through this process. The parent's copy
of each intermediate pipe is closed as soon as the next stage holds it, so
an early-exiting reader delivers SIGPIPE upstream just as in a shell.
"""

from __future__ import annotations

import logging
from collections import namedtuple
from collections.abc import Sequence
from typing import Any, Mapping, Optional

from pipeworks.errors import SpawnError
from pipeworks.process import Guarded, ProcessHandle, close_quietly, wait_all
from pipeworks.spawn import (
    DEVNULL,
    INHERIT,
    PIPE,
    UNSET,
    Command,
    CommandLike,
    resolve_target,
    spawn,
)

logger = logging.getLogger(__name__)


class Pipeline(Guarded, Sequence):
    """
    The running stages of a pipeline, in order.

    Indexing and iteration give the ``ProcessHandle`` of each stage.
    ``stdin`` and ``stdout`` are the pipeline's outer ends when they were
    created as pipes, otherwise None. Used as a context manager, leaving
    the block closes the outer ends and waits on every stage.

    Examples:
        with pipeline_start("yes", "head -3", stdout=PIPE) as stages:
            stages.stdout.read()
        stages.wait()  # [<SIGPIPE>, <exit 0>]
    """

    def __init__(
        self,
        processes: list,
        stdin: Optional[Any] = None,
        stdout: Optional[Any] = None,
    ):
        self._processes = list(processes)
        self.stdin = stdin
        self.stdout = stdout

    def __getitem__(self, index):
        return self._processes[index]

    def __len__(self) -> int:
        return len(self._processes)

    @property
    def pids(self) -> list:
        return [p.pid for p in self._processes]

    def wait(self) -> list:
        """Wait on every stage and return their statuses in stage order."""
        return wait_all(self._processes)

    def poll(self) -> list:
        """Statuses of stages that have exited; None for running ones."""
        return [p.poll() for p in self._processes]

    def terminate(self) -> None:
        for proc in self._processes:
            proc.terminate()

    def kill(self) -> None:
        for proc in self._processes:
            proc.kill()

    def _exposed_streams(self) -> tuple:
        streams = [self.stdin]
        for proc in self._processes:
            streams.extend((proc.stdin, proc.stdout, proc.stderr))
        return tuple(streams)

    def _owned_processes(self) -> tuple:
        return tuple(self._processes)

    def __repr__(self) -> str:
        stages = " | ".join(str(Command.coerce(p.args)) for p in self._processes)
        return f"Pipeline({stages})"


class PipelineRWResult(Guarded, namedtuple("PipelineRWResult", "stdin stdout processes")):
    """``(first_stdin, last_stdout, processes)``; also a context manager."""

    __slots__ = ()

    def _exposed_streams(self) -> tuple:
        return self.processes._exposed_streams()

    def _owned_processes(self) -> tuple:
        return self.processes._owned_processes()


class PipelineRResult(Guarded, namedtuple("PipelineRResult", "stdout processes")):
    """``(last_stdout, processes)``; also a context manager."""

    __slots__ = ()

    def _exposed_streams(self) -> tuple:
        return self.processes._exposed_streams()

    def _owned_processes(self) -> tuple:
        return self.processes._owned_processes()


class PipelineWResult(Guarded, namedtuple("PipelineWResult", "stdin processes")):
    """``(first_stdin, processes)``; also a context manager."""

    __slots__ = ()

    def _exposed_streams(self) -> tuple:
        return self.processes._exposed_streams()

    def _owned_processes(self) -> tuple:
        return self.processes._owned_processes()


def _start(
    cmds: tuple,
    stdin: Any,
    stdout: Any,
    stderr: Any,
    env: Optional[Mapping[str, str]],
    cwd: Optional[str],
    text_kwargs: dict,
) -> Pipeline:
    commands = [Command.coerce(c) for c in cmds]
    if not commands:
        raise ValueError("No commands given")

    opened = []
    processes: list[ProcessHandle] = []
    upstream = None  # Read end of the previous stage's stdout
    last = len(commands) - 1
    try:
        # Outer redirects naming files are opened once so every stage that
        # uses them (stderr in particular) shares a single open file.
        targets = {}
        for name, target in (("stdin", stdin), ("stdout", stdout), ("stderr", stderr)):
            value, fileobj = resolve_target(target, name)
            targets[name] = value
            if fileobj is not None:
                opened.append(fileobj)

        for i, command in enumerate(commands):
            if i == 0:
                stage_stdin = targets["stdin"]
            elif upstream is not None:
                stage_stdin = upstream
            else:
                # Previous stage's stdout was redirected elsewhere
                stage_stdin = DEVNULL
            proc = spawn(
                command.with_defaults(
                    stdin=stage_stdin,
                    stdout=targets["stdout"] if i == last else PIPE,
                    stderr=targets["stderr"],
                    env=env,
                    cwd=cwd,
                ),
                **text_kwargs,
            )
            processes.append(proc)

            if upstream is not None:
                close_quietly(upstream)
                upstream = None
            if i != last:
                upstream, proc.stdout = proc.stdout, None
                if upstream is not None:
                    logger.debug("Wired stage %d (pid %d) to stage %d", i, proc.pid, i + 1)
    except Exception as e:
        if isinstance(e, SpawnError):
            logger.warning(
                "Pipeline stage %d of %d failed to start; stopping %d started stage(s)",
                len(processes) + 1, len(commands), len(processes),
            )
        elif processes:
            logger.warning(
                "Pipeline setup failed after %d of %d stage(s): %s",
                len(processes), len(commands), e,
            )
        close_quietly(upstream)
        for proc in processes:
            proc.close()
            proc.kill()
        wait_all(processes)
        raise
    finally:
        for fileobj in opened:
            fileobj.close()

    return Pipeline(processes, stdin=processes[0].stdin, stdout=processes[-1].stdout)


def _text_kwargs(text: bool, encoding: Optional[str], errors: Optional[str]) -> dict:
    return {"text": text, "encoding": encoding, "errors": errors}


def pipeline_rw(
    *cmds: CommandLike,
    stderr: Any = INHERIT,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    text: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
) -> PipelineRWResult:
    """
    Start a pipeline with pipes to its first stdin and last stdout.

    Each command is a string (run by the shell), a list of argv tokens,
    or a ``Command`` carrying its own environment and redirections.

        with pipeline_rw(["tr", "-dc", "A-Za-z"], ["wc", "-c"]) as (i, o, stages):
            i.write(b"All persons more than a mile high to leave the court.")
            i.close()
            o.read()  # b"42\\n"
    """
    stages = _start(cmds, PIPE, PIPE, stderr, env, cwd, _text_kwargs(text, encoding, errors))
    return PipelineRWResult(stages.stdin, stages.stdout, stages)


def pipeline_r(
    *cmds: CommandLike,
    stdin: Any = UNSET,
    stderr: Any = INHERIT,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    text: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
) -> PipelineRResult:
    """
    Start a pipeline with a pipe from its last stdout.

    Unless ``stdin`` redirects it, the first stage reads from a pipe
    that is closed immediately, so it sees EOF.

        with pipeline_r("yes", "head -10") as (out, stages):
            out.read()  # b"y\\n" * 10
        stages[0].wait()  # SIGPIPE
    """
    stages = _start(
        cmds, PIPE if stdin is UNSET else stdin, PIPE, stderr, env, cwd,
        _text_kwargs(text, encoding, errors),
    )
    if stdin is UNSET:
        close_quietly(stages.stdin)
        stages[0].stdin = stages.stdin = None
    return PipelineRResult(stages.stdout, stages)


def pipeline_w(
    *cmds: CommandLike,
    stdout: Any = UNSET,
    stderr: Any = INHERIT,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    text: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
) -> PipelineWResult:
    """
    Start a pipeline with a pipe to its first stdin.

    Unless ``stdout`` redirects it, the last stage writes into a pipe
    whose read end is closed immediately.

        with pipeline_w("bzip2 -c", stdout="/tmp/hello.bz2") as (i, stages):
            i.write(b"hello\\n")
    """
    stages = _start(
        cmds, PIPE, PIPE if stdout is UNSET else stdout, stderr, env, cwd,
        _text_kwargs(text, encoding, errors),
    )
    if stdout is UNSET:
        close_quietly(stages.stdout)
        stages[-1].stdout = stages.stdout = None
    return PipelineWResult(stages.stdin, stages)


def pipeline_start(
    *cmds: CommandLike,
    stdin: Any = INHERIT,
    stdout: Any = INHERIT,
    stderr: Any = INHERIT,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    text: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
) -> Pipeline:
    """
    Start a pipeline without waiting for it.

    The outer ends are inherited unless redirected. Passing ``PIPE`` for
    ``stdin`` or ``stdout`` exposes that end on the returned Pipeline.

        with pipeline_start("sleep 10") as stages:
            stages[0].terminate()
        stages[0].wait()  # SIGTERM
    """
    return _start(cmds, stdin, stdout, stderr, env, cwd, _text_kwargs(text, encoding, errors))


def pipeline(
    *cmds: CommandLike,
    stdin: Any = INHERIT,
    stdout: Any = INHERIT,
    stderr: Any = INHERIT,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
) -> list:
    """
    Run a pipeline and wait for every stage.

    No stream is exposed, so the outer ends should be redirected (or
    inherited from a parent that supplies and consumes the data).

        pipeline("sort", "uniq -c", stdin="names.txt", stdout="count")
        # [<pid 11817 exit 0>, <pid 11820 exit 0>]

    Returns:
        The stages' exit statuses, in stage order.
    """
    if stdin is PIPE or stdout is PIPE:
        raise ValueError("pipeline() exposes no streams; use pipeline_start")
    with pipeline_start(*cmds, stdin=stdin, stdout=stdout, stderr=stderr, env=env, cwd=cwd) as stages:
        return stages.wait()
