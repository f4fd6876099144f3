"""Child processes, their exit statuses, and block-form cleanup."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from typing import IO, Iterable, Optional

from pipeworks.errors import CommandError, ExitWaitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExitStatus:
    """How a child process terminated.

    Exactly one of ``exitcode`` and ``termsig`` is set.
    """
    pid: int
    exitcode: Optional[int] = None
    termsig: Optional[int] = None

    @classmethod
    def from_wait_status(cls, pid: int, status: int) -> "ExitStatus":
        """Decode a raw status word as returned by ``os.waitpid``."""
        if os.WIFSIGNALED(status):
            return cls(pid=pid, termsig=os.WTERMSIG(status))
        return cls(pid=pid, exitcode=os.WEXITSTATUS(status))

    @property
    def success(self) -> bool:
        """True if the process exited normally with code 0."""
        return self.exitcode == 0

    @property
    def signaled(self) -> bool:
        return self.termsig is not None

    @property
    def returncode(self) -> int:
        """Exit code, or the negated signal number (subprocess convention)."""
        if self.termsig is not None:
            return -self.termsig
        return self.exitcode

    def __bool__(self) -> bool:
        return self.success

    def __str__(self) -> str:
        if self.termsig is not None:
            try:
                name = signal.Signals(self.termsig).name
            except ValueError:
                name = "unknown signal"
            return f"pid {self.pid} {name} (signal {self.termsig})"
        return f"pid {self.pid} exit {self.exitcode}"

    def raise_on_error(self) -> "ExitStatus":
        """Raise CommandError if the process did not succeed."""
        if not self.success:
            raise CommandError(self)
        return self


def close_quietly(stream: Optional[IO]) -> None:
    """Close ``stream``, ignoring errors from an already-failed pipe."""
    if stream is None:
        return
    try:
        stream.close()
    except OSError as e:
        # Flushing a text wrapper into a pipe whose reader is gone
        logger.debug("Ignoring error while closing %r: %s", stream, e)


def close_streams(*streams: Optional[IO]) -> None:
    for stream in streams:
        close_quietly(stream)


def wait_all(processes: Iterable) -> list:
    """Wait on every process, even if waiting on one of them fails.

    Returns the statuses in order. The first error is raised once every
    process has been waited on.
    """
    statuses = []
    error = None
    for proc in processes:
        try:
            statuses.append(proc.wait())
        except Exception as e:
            statuses.append(None)
            if error is None:
                error = e
    if error is not None:
        raise error
    return statuses


class Guarded:
    """
    Mixin giving a result object block-form semantics.

    Subclasses report the streams they expose and the processes they own.
    Leaving a ``with`` block closes the streams (input first, so the
    children see EOF) and then waits on every process. An exception from
    the block propagates after cleanup has finished.
    """

    __slots__ = ()

    def _exposed_streams(self) -> tuple:
        return ()

    def _owned_processes(self) -> tuple:
        return ()

    def close(self) -> None:
        """Close every exposed stream. Does not wait."""
        close_streams(*self._exposed_streams())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        if exc_type is None:
            wait_all(self._owned_processes())
            return
        try:
            wait_all(self._owned_processes())
        except Exception as e:
            logger.debug("Suppressed wait error during unwinding: %s", e)


class ProcessHandle(Guarded):
    """
    A live child process and the pipes the parent holds to it.

    ``stdin``, ``stdout`` and ``stderr`` are set only for streams that
    were spawned as new pipes; otherwise they are ``None``.

    The exit status is collected at most once. ``wait()`` and ``poll()``
    cache the result, so they may be called any number of times, from
    any thread, before or after the process has exited, and whether or
    not the streams have been closed.

    Blocking waits use ``waitid(WNOWAIT)``, which leaves the child a
    zombie until the status is recorded under ``_lock``. Signals are sent
    under the same lock, so they can never reach a recycled pid.

    Examples:
        with spawn(["sleep", "10"]) as proc:
            proc.terminate()
        proc.wait().termsig == signal.SIGTERM
    """

    def __init__(self, popen: subprocess.Popen, args):
        self._popen = popen
        self.args = args
        self.pid: int = popen.pid
        self.stdin: Optional[IO] = popen.stdin
        self.stdout: Optional[IO] = popen.stdout
        self.stderr: Optional[IO] = popen.stderr
        self._status: Optional[ExitStatus] = None
        # Held only for non-blocking calls
        self._lock = threading.Lock()
        # Serializes blocking waiters
        self._wait_lock = threading.Lock()

    @property
    def status(self) -> Optional[ExitStatus]:
        """The exit status if already collected, else None. Never waits."""
        return self._status

    def wait(self) -> ExitStatus:
        """Block until the process exits and return its status."""
        with self._wait_lock:
            with self._lock:
                if self._status is not None:
                    return self._status
            try:
                os.waitid(os.P_PID, self.pid, os.WEXITED | os.WNOWAIT)
            except ChildProcessError:
                raise ExitWaitError(self.pid) from None
            with self._lock:
                return self._reap()

    def poll(self) -> Optional[ExitStatus]:
        """Return the exit status if the process has exited, else None."""
        with self._lock:
            if self._status is not None:
                return self._status
            try:
                exited = os.waitid(
                    os.P_PID, self.pid, os.WEXITED | os.WNOWAIT | os.WNOHANG
                )
            except ChildProcessError:
                raise ExitWaitError(self.pid) from None
        if exited is None:
            return None
        return self.wait()

    def _reap(self) -> ExitStatus:
        # Caller holds _lock and knows the child has exited.
        if self._status is None:
            try:
                _, status = os.waitpid(self.pid, 0)
            except ChildProcessError:
                raise ExitWaitError(self.pid) from None
            self._status = ExitStatus.from_wait_status(self.pid, status)
            # The Popen object must never wait on this pid again.
            self._popen.returncode = self._status.returncode
            logger.debug("Reaped %s", self._status)
        return self._status

    def send_signal(self, sig: int) -> None:
        """Send ``sig`` to the process unless it has already been reaped."""
        with self._lock:
            if self._status is not None:
                return
            try:
                os.kill(self.pid, sig)
            except ProcessLookupError:
                pass  # Exited, not yet reaped

    def terminate(self) -> None:
        """Send SIGTERM to the process."""
        self.send_signal(signal.SIGTERM)

    def kill(self) -> None:
        """Send SIGKILL to the process."""
        self.send_signal(signal.SIGKILL)

    def _exposed_streams(self) -> tuple:
        return (self.stdin, self.stdout, self.stderr)

    def _owned_processes(self) -> tuple:
        return (self,)

    def __repr__(self) -> str:
        if self._status is None:
            state = "running"
        else:
            state = str(self._status)
        return f"ProcessHandle({self.args!r}, pid={self.pid}, {state})"
