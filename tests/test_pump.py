"""Tests for the non-blocking stream pump."""

import pytest
from pipeworks import PIPE, PrematureEOF, StreamPump, popen3, spawn


class TestStreamPump:
    """Test driving one process's pipes from a single thread."""

    def test_echo_input(self):
        with popen3("cat") as (stdin, stdout, stderr, proc):
            out, err = StreamPump(stdin=stdin, input=b"hello", stdout=stdout, stderr=stderr).run()
        assert out == b"hello"
        assert err == b""
        assert proc.status.success

    def test_input_larger_than_pipe_buffer(self):
        """Filling stdin while stdout fills up must not deadlock."""
        data = b"0123456789abcdef" * 200000
        with popen3("cat") as (stdin, stdout, stderr, proc):
            out, _ = StreamPump(stdin=stdin, input=data, stdout=stdout, stderr=stderr).run()
        assert out == data

    def test_large_output_on_both_streams(self):
        script = "head -c 300000 /dev/zero; head -c 300000 /dev/zero >&2"
        with popen3(script) as (stdin, stdout, stderr, proc):
            out, err = StreamPump(stdin=stdin, stdout=stdout, stderr=stderr).run()
        assert len(out) == 300000
        assert len(err) == 300000

    def test_empty_input_closes_stdin(self):
        with popen3("cat") as (stdin, stdout, stderr, proc):
            out, _ = StreamPump(stdin=stdin, input=b"", stdout=stdout, stderr=stderr).run()
            assert stdin.closed
        assert out == b""

    def test_streams_closed_when_done(self):
        with popen3("cat") as (stdin, stdout, stderr, proc):
            StreamPump(stdin=stdin, input=b"x", stdout=stdout, stderr=stderr).run()
            assert stdin.closed
            assert stdout.closed
            assert stderr.closed

    def test_outputs_stay_separate(self):
        with popen3("echo out; echo err >&2") as (stdin, stdout, stderr, proc):
            out, err = StreamPump(stdin=stdin, stdout=stdout, stderr=stderr).run()
        assert out == b"out\n"
        assert err == b"err\n"

    def test_merge(self):
        with popen3("echo out; echo err >&2") as (stdin, stdout, stderr, proc):
            merged, err = StreamPump(stdin=stdin, stdout=stdout, stderr=stderr, merge=True).run()
        assert err is None
        assert sorted(merged.splitlines()) == [b"err", b"out"]

    def test_unpumped_stream_is_none(self):
        with spawn(["echo", "x"], stdout=PIPE) as proc:
            out, err = StreamPump(stdout=proc.stdout).run()
        assert out == b"x\n"
        assert err is None

    def test_small_chunks(self):
        with popen3("cat") as (stdin, stdout, stderr, proc):
            out, _ = StreamPump(
                stdin=stdin, input=b"a" * 1000, stdout=stdout, stderr=stderr, chunk_size=7
            ).run()
        assert out == b"a" * 1000

    def test_input_without_stdin(self):
        with pytest.raises(ValueError):
            StreamPump(input=b"data")

    def test_broken_pipe_is_not_an_error(self):
        """A child that exits without reading leaves the rest unsent."""
        data = b"x" * 1000000
        with popen3(["true"]) as (stdin, stdout, stderr, proc):
            out, err = StreamPump(stdin=stdin, input=data, stdout=stdout, stderr=stderr).run()
        assert out == b""
        assert err == b""
        assert proc.status.success

    def test_premature_eof(self):
        """stdout closing while the child still holds unread input is an error."""
        data = b"x" * 1000000
        with popen3("exec 1>&-; sleep 1") as (stdin, stdout, stderr, proc):
            pump = StreamPump(stdin=stdin, input=data, stdout=stdout)
            with pytest.raises(PrematureEOF) as exc_info:
                pump.run()
        assert exc_info.value.stream == "stdout"
        assert exc_info.value.remaining > 0
        assert pump.remaining == exc_info.value.remaining
        assert proc.status is not None
