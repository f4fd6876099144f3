"""Tests for capture3, capture2 and capture2e."""

from collections import Counter

import pytest
from pipeworks import CommandError, capture2, capture2e, capture3


class TestCapture3:
    """Test capturing stdout and stderr separately."""

    def test_out_and_err(self):
        out, err, status = capture3("sh -c 'echo out; echo err 1>&2'")
        assert out == "out\n"
        assert err == "err\n"
        assert status.success

    def test_expands_single_string(self):
        out, err, status = capture3("echo $PATH")
        assert out.strip() != "$PATH"
        assert len(out.strip()) > 0
        assert err == ""
        assert status.success

    def test_does_not_expand_arguments(self):
        out, err, status = capture3("echo", "$PATH", "$PATH")
        assert out.strip() == "$PATH $PATH"
        assert err == ""
        assert status.success

    def test_keeps_stdout_and_stderr_separate(self):
        out, err, status = capture3("cat - && cat /dev/monkey", stdin_data="test value")
        assert out.strip() == "test value"
        assert "/dev/monkey" in err
        assert "test value" not in err
        assert not status.success

    def test_sort_to_stderr(self):
        out, err, status = capture3("echo a; sort >&2", stdin_data="foo\nbar\nbaz\n")
        assert out == "a\n"
        assert err == "bar\nbaz\nfoo\n"
        assert status.success

    def test_large_input_and_output(self):
        data = "line\n" * 100000
        out, err, status = capture3("cat", stdin_data=data)
        assert out == data
        assert status.success

    def test_check(self):
        with pytest.raises(CommandError) as exc_info:
            capture3("echo oops >&2; exit 4", check=True)
        assert exc_info.value.status.exitcode == 4
        assert exc_info.value.stderr == "oops\n"

    def test_env_and_cwd(self, tmp_path):
        out, _, _ = capture3("echo $GREETING; pwd", env={"GREETING": "hi"}, cwd=str(tmp_path))
        greeting, cwd = out.splitlines()
        assert greeting == "hi"
        assert cwd.endswith(tmp_path.name)


class TestCapture2:
    """Test capturing stdout only."""

    def test_echo(self):
        out, status = capture2("echo", "hello")
        assert out == "hello\n"
        assert status.exitcode == 0
        assert status.success

    def test_echoes_input(self):
        out, status = capture2("cat", stdin_data="round trip")
        assert out == "round trip"
        assert status.success

    def test_binary_input(self):
        data = bytes(range(256)) * 100
        out, status = capture2("cat", stdin_data=data, binmode=True)
        assert out == data
        assert status.success

    def test_empty_input(self):
        out, status = capture2("cat", stdin_data=b"", binmode=True)
        assert out == b""
        assert status.success

    def test_str_input_in_binmode(self):
        out, _ = capture2("cat", stdin_data="abc", binmode=True)
        assert out == b"abc"

    def test_newlines_translated_in_text_mode(self):
        out, _ = capture2("printf", "a\r\nb\rc")
        assert out == "a\nb\nc"

    def test_newlines_kept_in_binmode(self):
        out, _ = capture2("printf", "a\r\nb", binmode=True)
        assert out == b"a\r\nb"

    def test_encoding(self):
        out, _ = capture2("cat", stdin_data="héllo", encoding="latin-1")
        assert out == "héllo"

    def test_throws_out_stderr(self):
        out, status = capture2("cat - && cat /dev/monkey", stdin_data="test value")
        assert out.strip() == "test value"
        assert not status.success

    def test_check(self):
        with pytest.raises(CommandError):
            capture2("false", check=True)


class TestCapture2e:
    """Test capturing stdout and stderr into one buffer."""

    def test_combines_stdout_and_stderr(self):
        out, status = capture2e("cat - && cat /dev/monkey", stdin_data="test value")
        assert "test value" in out
        assert "/dev/monkey" in out
        assert not status.success

    def test_expands_single_string(self):
        out, status = capture2e("echo $PATH")
        assert out.strip() != "$PATH"
        assert status.success

    def test_contains_both_separate_captures(self):
        script = "echo out1; echo err1 >&2; echo out2; echo err2 >&2"
        out, err, _ = capture3(script)
        merged, status = capture2e(script)
        assert status.success
        assert Counter(merged) - Counter(out + err) == Counter()
        assert Counter(out + err) - Counter(merged) == Counter()

    def test_binmode(self):
        merged, _ = capture2e("printf 'a\\r\\n'; printf 'b' >&2", binmode=True)
        assert len(merged) == 4
        assert b"a\r\n" in merged
        assert b"b" in merged
