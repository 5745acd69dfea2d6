"""Tests for the execute() wrapper helpers."""

from pathlib import Path

import pytest

from stagerunner.errors import ScriptAssemblyError
from stagerunner.pipeline.wrapper import (
    ScriptBuffer,
    escape_double_quoted,
    execute_function,
    failure_file_line,
    touch_line,
    wrap_line,
)


class TestEscapeDoubleQuoted:
    """Tests for escape_double_quoted() function."""

    def test_plain_text_unchanged(self):
        assert escape_double_quoted("gzip -d a.fq.gz") == "gzip -d a.fq.gz"

    def test_escapes_special_characters(self):
        assert escape_double_quoted('echo "$HOME"') == 'echo \\"\\$HOME\\"'
        assert escape_double_quoted("a\\b") == "a\\\\b"
        assert escape_double_quoted("`date`") == "\\`date\\`"


class TestWrapLine:
    """Tests for wrap_line() function."""

    def test_wraps_command_with_line_number(self):
        assert wrap_line("gzip -d sample_1.fq.gz", 12) == 'execute "gzip -d sample_1.fq.gz" 12'

    def test_quotes_are_escaped(self):
        line = wrap_line('grep "x" in.txt', 3)

        assert line == 'execute "grep \\"x\\" in.txt" 3'

    def test_multiline_command_rejected(self):
        with pytest.raises(ScriptAssemblyError):
            wrap_line("echo a\necho b", 1)


class TestExecuteFunction:
    """Tests for the execute() definition."""

    def test_definition_shape(self):
        lines = execute_function()

        assert lines[0] == "function execute() {"
        assert lines[-1] == "}"
        assert '    eval "$1"' in lines
        assert any("Failure code [$statusCode] on Line [$2]: $1" in line for line in lines)
        assert any(">> \"$failureFile\"" in line for line in lines)
        assert any("exit $statusCode" in line for line in lines)


class TestScriptBuffer:
    """Tests for ScriptBuffer."""

    def test_wrapped_line_number_matches_position(self):
        """Test that each wrapped line carries its own 1-based line number."""
        buf = ScriptBuffer()
        buf.add("#!/bin/bash", "# comment")
        buf.add(*execute_function())
        n1 = buf.add_wrapped("echo one")
        n2 = buf.add_wrapped("echo two")

        lines = buf.text().splitlines()
        assert lines[n1 - 1] == wrap_line("echo one", n1)
        assert lines[n2 - 1] == wrap_line("echo two", n2)
        assert n2 == n1 + 1

    def test_multiline_blocks_are_split(self):
        """Test that multi-line helper blocks count as several lines."""
        buf = ScriptBuffer()
        buf.add("function helper() {\n    echo hi\n}")
        n = buf.add_wrapped("helper")

        assert n == 4

    def test_text_ends_with_newline(self):
        buf = ScriptBuffer()
        buf.add("echo hi")

        assert buf.text() == "echo hi\n"


class TestMarkerLines:
    """Tests for failure_file_line() and touch_line()."""

    def test_failure_file_line(self):
        line = failure_file_line(Path("/p/script/01.0.01_X.sh"))

        assert line == 'failureFile="/p/script/01.0.01_X.sh_FAILURES"'

    def test_touch_line_quotes_spaces(self):
        assert touch_line(Path("/p/my dir/a.sh_STARTED")) == "touch '/p/my dir/a.sh_STARTED'"
