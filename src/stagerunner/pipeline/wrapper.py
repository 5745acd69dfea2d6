"""
The fail-fast "execute" bash function and helpers for emitting wrapped lines.

Every command in a generated script runs as:

    execute "<command>" <lineNo>

execute() evaluates the command, and on a non-zero exit status appends

    Failure code [<status>] on Line [<lineNo>]: <command>

to the file named by $failureFile, then exits the whole script with that
status. Because the main script invokes batch scripts through execute() too,
a failure unwinds to the script that launched the failing one.
"""

from __future__ import annotations

from pathlib import Path
import shlex

from stagerunner.errors import ScriptAssemblyError

from .sentinel import FAILURES_SUFFIX, marker_path

EXECUTE_FUNCTION = "execute"
FAILURE_FILE_VAR = "failureFile"


def escape_double_quoted(text: str) -> str:
    """Escape text for use inside a bash double-quoted string."""
    return (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("$", "\\$")
        .replace("`", "\\`")
    )


def execute_function() -> list[str]:
    """Lines defining the execute() bash function."""
    return [
        f"function {EXECUTE_FUNCTION}() {{",
        '    eval "$1"',
        "    local statusCode=$?",
        "    if [ $statusCode -ne 0 ]; then",
        f'        echo "Failure code [$statusCode] on Line [$2]: $1" >> "${FAILURE_FILE_VAR}"',
        "        exit $statusCode",
        "    fi",
        "}",
    ]


def failure_file_line(script_path: Path) -> str:
    """Assignment of the failure-log variable for a script."""
    failures = marker_path(script_path, FAILURES_SUFFIX)
    return f'{FAILURE_FILE_VAR}="{escape_double_quoted(str(failures))}"'


def touch_line(path: Path) -> str:
    return f"touch {shlex.quote(str(path))}"


def wrap_line(command: str, line_no: int) -> str:
    """
    Wrap one command in an execute() call.

    Parameters:
        command: Literal shell command
        line_no: 1-based line number the wrapped line will occupy

    Returns:
        'execute "<escaped command>" <line_no>'

    Raises:
        ScriptAssemblyError: If the command spans multiple lines

    Example:
        >>> wrap_line("gzip -d sample_1.fq.gz", 12)
        'execute "gzip -d sample_1.fq.gz" 12'
    """
    if "\n" in command or "\r" in command:
        raise ScriptAssemblyError(f"Command must be a single line: {command!r}")
    return f'{EXECUTE_FUNCTION} "{escape_double_quoted(command)}" {line_no}'


class ScriptBuffer:
    """Accumulates script lines and numbers wrapped commands by their final position."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def add(self, *blocks: str) -> None:
        for block in blocks:
            self.lines.extend(block.splitlines() or [""])

    def add_wrapped(self, command: str) -> int:
        line_no = len(self.lines) + 1
        self.lines.append(wrap_line(command, line_no))
        return line_no

    def text(self) -> str:
        return "\n".join(self.lines) + "\n"
