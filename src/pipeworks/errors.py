"""Exceptions raised by pipeworks."""

from __future__ import annotations

from typing import Optional, Union


class Error(Exception):
    """Base class for all pipeworks errors."""


class SpawnError(Error, OSError):
    """Raised when a process could not be created.

    The original ``OSError`` is chained as ``__cause__``; its errno,
    strerror and filename are copied so callers can inspect them the same
    way they would inspect the underlying error.
    """

    def __init__(self, args: list, error: OSError):
        self.args_list = args
        OSError.__init__(self, error.errno, error.strerror, error.filename)

    def __str__(self) -> str:
        return f"Failed to spawn {self.args_list!r}: {self.strerror}"


class PrematureEOF(Error, EOFError):
    """Raised when an output stream ends while input is still unsent."""

    def __init__(self, stream: str, remaining: int):
        self.stream = stream
        self.remaining = remaining
        super().__init__(
            f"{stream} reached EOF with {remaining} bytes of input unsent"
        )


class ExitWaitError(Error, ChildProcessError):
    """Raised when the OS has no child to reap for a process id."""

    def __init__(self, pid: int):
        self.pid = pid
        super().__init__(f"No child process {pid} to wait for")


class CommandError(Error):
    """Raised when a command did not exit successfully."""

    def __init__(
        self,
        status,
        stdout: Optional[Union[str, bytes]] = None,
        stderr: Optional[Union[str, bytes]] = None,
    ):
        self.status = status
        self.stdout = stdout
        self.stderr = stderr
        message = f"Command failed: {status}"
        if stderr:
            message += f"\nstderr: {stderr}"
        super().__init__(message)
