"""Run a command to completion and collect what it writes."""

from __future__ import annotations

import locale
from typing import Mapping, Optional, Union

from pipeworks.errors import CommandError
from pipeworks.popen import popen2, popen3
from pipeworks.pump import StreamPump
from pipeworks.spawn import CommandLike

Data = Union[str, bytes]


def _encode_input(data: Optional[Data], encoding: Optional[str], errors: Optional[str]) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode(encoding or locale.getpreferredencoding(False), errors or "strict")
    return bytes(data)


def _decode_output(
    data: Optional[bytes], binmode: bool, encoding: Optional[str], errors: Optional[str]
) -> Optional[Data]:
    if data is None or binmode:
        return data
    text = data.decode(encoding or locale.getpreferredencoding(False), errors or "strict")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def capture3(
    *cmd: CommandLike,
    stdin_data: Optional[Data] = None,
    binmode: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
    check: bool = False,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
):
    """
    Run a command and capture stdout and stderr separately.

    Args:
        *cmd: Command, as accepted by ``popen3``.
        stdin_data: Sent to the command's stdin, which is then closed.
        binmode: If True, return raw bytes. Otherwise outputs are decoded
            with ``encoding`` (default: the locale's) and newlines are
            normalized to ``\\n``.
        check: If True, raise CommandError unless the command succeeded.

    Returns:
        ``(stdout, stderr, status)``.

    Example:
        out, err, status = capture3("echo a; sort >&2", stdin_data="foo\\nbar\\n")
        # out == "a\\n", err == "bar\\nfoo\\n"
    """
    data = _encode_input(stdin_data, encoding, errors)
    with popen3(*cmd, env=env, cwd=cwd) as (stdin, stdout, stderr, proc):
        out, err = StreamPump(stdin=stdin, input=data, stdout=stdout, stderr=stderr).run()
        status = proc.wait()

    out = _decode_output(out, binmode, encoding, errors)
    err = _decode_output(err, binmode, encoding, errors)
    if check and not status.success:
        raise CommandError(status, out, err)
    return out, err, status


def capture2(
    *cmd: CommandLike,
    stdin_data: Optional[Data] = None,
    binmode: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
    check: bool = False,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
):
    """
    Run a command and capture its stdout.

    stderr is not captured and not inherited: the pipe is closed before
    any output is read. Options are as for ``capture3``.

    Returns:
        ``(stdout, status)``.

    Example:
        out, status = capture2("factor", stdin_data="42")
        # out == "42: 2 3 7\\n"
    """
    data = _encode_input(stdin_data, encoding, errors)
    with popen2(*cmd, env=env, cwd=cwd) as (stdin, stdout, proc):
        out, _ = StreamPump(stdin=stdin, input=data, stdout=stdout).run()
        status = proc.wait()

    out = _decode_output(out, binmode, encoding, errors)
    if check and not status.success:
        raise CommandError(status, out)
    return out, status


def capture2e(
    *cmd: CommandLike,
    stdin_data: Optional[Data] = None,
    binmode: bool = False,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
    check: bool = False,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
):
    """
    Run a command and capture stdout and stderr into one buffer.

    The two pipes are read as they become ready, so output from both
    streams ends up in the buffer in roughly the order it was written.
    Exact interleaving is not guaranteed. Options are as for
    ``capture3``.

    Returns:
        ``(stdout_and_stderr, status)``.

    Example:
        log, status = capture2e("make")
    """
    data = _encode_input(stdin_data, encoding, errors)
    with popen3(*cmd, env=env, cwd=cwd) as (stdin, stdout, stderr, proc):
        merged, _ = StreamPump(
            stdin=stdin, input=data, stdout=stdout, stderr=stderr, merge=True
        ).run()
        status = proc.wait()

    merged = _decode_output(merged, binmode, encoding, errors)
    if check and not status.success:
        raise CommandError(status, merged)
    return merged, status
