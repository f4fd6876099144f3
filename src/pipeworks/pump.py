"""Single-threaded, non-blocking I/O against one child's pipes."""

from __future__ import annotations

import logging
import os
import selectors
from typing import IO, Optional, Union

from pipeworks.errors import PrematureEOF
from pipeworks.process import close_quietly

logger = logging.getLogger(__name__)

CAPTURE_BUFFER_SIZE = 65536


class _Reader:
    __slots__ = ("name", "stream", "fd", "buffer", "done")

    def __init__(self, name: str, stream: IO, buffer: bytearray):
        self.name = name
        self.stream = stream
        self.fd = stream.fileno()
        self.buffer = buffer
        self.done = False


class StreamPump:
    """
    Feed input to a process and drain its output without deadlocking.

    One execution context services every stream. Each round tries a
    non-blocking write of the remaining input and a non-blocking read of
    each unfinished output; only when every stream would block does the
    pump sleep in a single readiness wait covering all of them.

    Streams must be unbuffered (raw) binary pipes, as created by
    ``spawn``. Each stream is closed as soon as it is finished: stdin
    once all input is written (or the reader has gone away), outputs on
    EOF.

    Examples:
        proc = spawn(["cat"], stdin=PIPE, stdout=PIPE)
        out, _ = StreamPump(stdin=proc.stdin, input=b"hi", stdout=proc.stdout).run()

        # stdout and stderr into one buffer
        merged, _ = StreamPump(stdout=p.stdout, stderr=p.stderr, merge=True).run()
    """

    def __init__(
        self,
        stdin: Optional[IO] = None,
        input: Union[bytes, bytearray, memoryview] = b"",
        stdout: Optional[IO] = None,
        stderr: Optional[IO] = None,
        merge: bool = False,
        chunk_size: int = CAPTURE_BUFFER_SIZE,
    ):
        if input and stdin is None:
            raise ValueError("Input given but no stdin stream to write it to")
        self._stdin = stdin
        self._input = memoryview(bytes(input))
        self._offset = 0
        self._input_done = stdin is None
        self._chunk_size = chunk_size

        out_buffer = bytearray()
        err_buffer = out_buffer if merge else bytearray()
        self._readers = []
        if stdout is not None:
            self._readers.append(_Reader("stdout", stdout, out_buffer))
        if stderr is not None:
            self._readers.append(_Reader("stderr", stderr, err_buffer))
        self._out_buffer = out_buffer if stdout is not None or merge else None
        self._err_buffer = err_buffer if stderr is not None and not merge else None

    @property
    def remaining(self) -> int:
        """Bytes of input not yet accepted by the child."""
        return len(self._input) - self._offset

    def run(self) -> tuple:
        """
        Pump until input is delivered and every output reaches EOF.

        Returns:
            ``(stdout_bytes, stderr_bytes)``. An entry is None when that
            stream was not pumped; with ``merge=True`` everything read is
            in the first entry and the second is None.

        Raises:
            PrematureEOF: An output closed while input was still unsent.
        """
        with selectors.DefaultSelector() as selector:
            if self._stdin is not None:
                if self.remaining:
                    os.set_blocking(self._stdin.fileno(), False)
                    selector.register(self._stdin.fileno(), selectors.EVENT_WRITE)
                else:
                    self._finish_input(selector)
            for reader in self._readers:
                os.set_blocking(reader.fd, False)
                selector.register(reader.fd, selectors.EVENT_READ)

            while not self._finished():
                progressed = False
                if not self._input_done:
                    progressed |= self._write_step(selector)
                for reader in self._readers:
                    if not reader.done:
                        progressed |= self._read_step(reader, selector)
                if not progressed:
                    selector.select()

        return (
            bytes(self._out_buffer) if self._out_buffer is not None else None,
            bytes(self._err_buffer) if self._err_buffer is not None else None,
        )

    def _finished(self) -> bool:
        return self._input_done and all(r.done for r in self._readers)

    def _write_step(self, selector) -> bool:
        try:
            written = os.write(self._stdin.fileno(), self._input[self._offset:])
        except BlockingIOError:
            return False
        except BrokenPipeError:
            logger.debug(
                "stdin closed by child with %d bytes unsent", self.remaining
            )
            self._finish_input(selector)
            return True
        self._offset += written
        if not self.remaining:
            self._finish_input(selector)
        return True

    def _finish_input(self, selector) -> None:
        if self._stdin.fileno() in selector.get_map():
            selector.unregister(self._stdin.fileno())
        close_quietly(self._stdin)
        self._input_done = True

    def _read_step(self, reader: _Reader, selector) -> bool:
        try:
            data = os.read(reader.fd, self._chunk_size)
        except BlockingIOError:
            return False
        if data:
            reader.buffer += data
            return True

        if not self._input_done:
            # A child that exited has also closed its stdin; writing now
            # reports the broken pipe rather than blocking.
            self._write_step(selector)
            if not self._input_done:
                raise PrematureEOF(reader.name, self.remaining)

        selector.unregister(reader.fd)
        close_quietly(reader.stream)
        reader.done = True
        return True
