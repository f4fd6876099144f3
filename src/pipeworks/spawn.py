"""Starting a single child process with per-stream redirection."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

from pipeworks.errors import SpawnError
from pipeworks.process import ProcessHandle

logger = logging.getLogger(__name__)

PIPE = subprocess.PIPE
DEVNULL = subprocess.DEVNULL
STDOUT = subprocess.STDOUT
INHERIT = None


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

CommandLike = Union[str, Sequence[str], "Command"]


@dataclass(frozen=True)
class Command:
    """
    One command together with its own environment and redirections.

    ``args`` is either a string, run through ``/bin/sh -c``, or a tuple
    of argv tokens passed to the program without any shell expansion.
    Redirections left as ``UNSET`` fall back to whatever the caller
    (``spawn`` or a pipeline) would otherwise use.

    Examples:
        Command("ls -la | grep py")
        Command(("grep", "GET /favicon.ico"), env={"LANG": "C"})
        Command(("sort",), stdin="names.txt", stdout=("count", "ab"))
    """
    args: Union[str, tuple]
    env: Optional[Mapping[str, str]] = None
    cwd: Optional[str] = None
    stdin: Any = field(default=UNSET)
    stdout: Any = field(default=UNSET)
    stderr: Any = field(default=UNSET)

    def __post_init__(self):
        if isinstance(self.args, str):
            if not self.args:
                raise ValueError("Empty command")
        else:
            args = tuple(self.args)
            if not args:
                raise ValueError("Empty command")
            if not all(isinstance(a, str) for a in args):
                raise TypeError(f"Command arguments must be strings: {args!r}")
            object.__setattr__(self, "args", args)

    @property
    def shell(self) -> bool:
        return isinstance(self.args, str)

    @classmethod
    def coerce(cls, command: CommandLike) -> "Command":
        """Turn a string, argv sequence or Command into a Command."""
        if isinstance(command, Command):
            return command
        if isinstance(command, (str, list, tuple)):
            return cls(command)
        raise TypeError(f"Not a command: {command!r}")

    @classmethod
    def from_args(cls, *cmd: CommandLike, **kwargs) -> "Command":
        """
        Build a Command from ``popen3``-style positional arguments.

        A single string means a shell command line; several strings are
        argv tokens; a single list, tuple or Command is used as is.
        """
        if not cmd:
            raise ValueError("No command given")
        if len(cmd) == 1:
            command = cls.coerce(cmd[0])
        else:
            command = cls(cmd)
        if kwargs:
            command = command.with_defaults(**kwargs)
        return command

    def with_defaults(self, **defaults) -> "Command":
        """
        Fill in fields this command leaves open.

        Redirections already set on the command win. Environment
        overrides are merged, with the command's own entries on top.
        """
        changes = {}
        for name in ("stdin", "stdout", "stderr"):
            if name in defaults and getattr(self, name) is UNSET:
                changes[name] = defaults[name]
        if defaults.get("env"):
            changes["env"] = {**defaults["env"], **(self.env or {})}
        if defaults.get("cwd") is not None and self.cwd is None:
            changes["cwd"] = defaults["cwd"]
        if not changes:
            return self
        return Command(
            self.args,
            env=changes.get("env", self.env),
            cwd=changes.get("cwd", self.cwd),
            stdin=changes.get("stdin", self.stdin),
            stdout=changes.get("stdout", self.stdout),
            stderr=changes.get("stderr", self.stderr),
        )

    def __str__(self) -> str:
        if self.shell:
            return self.args
        return " ".join(self.args)


def resolve_target(target: Any, name: str):
    """Map a redirection target to a Popen argument.

    Returns ``(popen_value, opened_file)``; ``opened_file`` is a file the
    spawner opened itself and must close once the child holds it.
    """
    if target is UNSET or target is INHERIT:
        return None, None
    if isinstance(target, bool):
        raise TypeError(f"Invalid {name} redirect: {target!r}")
    if target in (PIPE, DEVNULL):
        return target, None
    if target == STDOUT:
        if name != "stderr":
            raise ValueError("STDOUT is only valid as a stderr redirect")
        return target, None
    if isinstance(target, int):
        if target < 0:
            raise ValueError(f"Invalid {name} descriptor: {target}")
        return target, None
    if isinstance(target, (str, os.PathLike)):
        mode = "rb" if name == "stdin" else "wb"
        opened = open(target, mode)
        return opened, opened
    if isinstance(target, tuple) and len(target) == 2:
        path, mode = target
        opened = open(path, mode)
        return opened, opened
    if hasattr(target, "fileno"):
        return target, None
    raise TypeError(f"Invalid {name} redirect: {target!r}")


def _merge_env(env: Optional[Mapping[str, str]]) -> Optional[dict]:
    if not env:
        return None
    return {**os.environ, **env}


def spawn(
    command: CommandLike,
    stdin: Any = INHERIT,
    stdout: Any = INHERIT,
    stderr: Any = INHERIT,
    *,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    text: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
) -> ProcessHandle:
    """
    Start a child process.

    Each of ``stdin``, ``stdout`` and ``stderr`` may be ``PIPE`` (a new
    pipe, exposed on the returned handle), ``INHERIT``/``None``,
    ``DEVNULL``, a path, a ``(path, mode)`` tuple, a descriptor, or an
    open file. ``stderr`` may also be ``STDOUT`` to merge it into stdout.
    A ``Command``'s own redirections and environment take precedence.

    Pipes are unbuffered so writes reach the child immediately. With
    ``text=True`` they are wrapped in text streams using ``encoding``
    and ``errors``.

    Raises:
        SpawnError: The program could not be found or the OS refused
            to create the process.
    """
    cmd = Command.from_args(command).with_defaults(
        stdin=stdin, stdout=stdout, stderr=stderr, env=env, cwd=cwd
    )

    opened = []
    try:
        targets = {}
        for name in ("stdin", "stdout", "stderr"):
            value, fileobj = resolve_target(getattr(cmd, name), name)
            targets[name] = value
            if fileobj is not None:
                opened.append(fileobj)

        text_kwargs = {}
        if text:
            text_kwargs = {"text": True, "encoding": encoding, "errors": errors}

        try:
            popen = subprocess.Popen(
                cmd.args,
                shell=cmd.shell,
                bufsize=0,
                env=_merge_env(cmd.env),
                cwd=cmd.cwd,
                **targets,
                **text_kwargs,
            )
        except OSError as e:
            raise SpawnError(cmd.args, e) from e
    finally:
        for fileobj in opened:
            fileobj.close()

    logger.debug("Spawned pid %d: %s", popen.pid, cmd)
    return ProcessHandle(popen, cmd.args)
