"""
Exception types raised while building and running stage scripts.

Command failures inside generated scripts are never raised here: they are
recorded by the bash ``execute`` function in ``<script>_FAILURES`` files and
surface through the script's exit status.
"""

from __future__ import annotations


class StageRunnerError(Exception):
    """Base class for every error raised by stagerunner."""


class EmptyInputError(StageRunnerError):
    """No work units were given, or a work unit has no commands."""


class ConfigMissingError(StageRunnerError):
    """A required cluster or container setting is absent."""


class ConfigFormatError(StageRunnerError):
    """A cluster job header is malformed or disagrees with the thread count."""


class SentinelWriteError(StageRunnerError):
    """A sentinel marker file could not be created."""


class ScriptAssemblyError(StageRunnerError):
    """A script file could not be assembled or written."""


class StageFailedError(StageRunnerError):
    """
    Polling found failed scripts for a stage.

    Attributes:
        errors: ``<scriptName> | <failure line>`` entries from ``_FAILURES`` files
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []
