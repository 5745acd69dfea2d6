"""
Sentinel marker files and status polling.

Markers are the only channel between generated scripts, the cluster
scheduler, and whoever polls for completion. Their existence encodes state:

    <script>_STARTED    script began executing
    <script>_SUCCESS    script finished cleanly
    <script>_FAILURES   a wrapped command exited non-zero (holds the details)
    <stageDir>/BLJ_STARTED    stage execution began
    <stageDir>/BLJ_COMPLETE   stage finished cleanly (BLJ_STARTED removed)

Scripts create their own markers with "touch"; the functions here create
stage markers and read both kinds.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging

from stagerunner.errors import SentinelWriteError
from stagerunner.stage.models import SH_EXT, StageSpec

LOGGER = logging.getLogger(__name__)

STARTED_SUFFIX = "_STARTED"
SUCCESS_SUFFIX = "_SUCCESS"
FAILURES_SUFFIX = "_FAILURES"
STAGE_STARTED = "BLJ_STARTED"
STAGE_COMPLETE = "BLJ_COMPLETE"


@dataclass(frozen=True)
class StageScope:
    """Markers for a whole stage, kept in the stage directory."""

    stage_dir: Path

    @property
    def started_marker(self) -> Path:
        return self.stage_dir / STAGE_STARTED

    @property
    def complete_marker(self) -> Path:
        return self.stage_dir / STAGE_COMPLETE


@dataclass(frozen=True)
class ScriptScope:
    """Markers for one generated script, kept beside the script."""

    script_path: Path

    @property
    def started_marker(self) -> Path:
        return marker_path(self.script_path, STARTED_SUFFIX)

    @property
    def complete_marker(self) -> Path:
        return marker_path(self.script_path, SUCCESS_SUFFIX)

    @property
    def failures_marker(self) -> Path:
        return marker_path(self.script_path, FAILURES_SUFFIX)


Scope = StageScope | ScriptScope


@dataclass(frozen=True)
class StageStatus:
    """
    Snapshot of worker script markers for one stage.

    Attributes:
        total: Number of worker scripts
        started: Worker scripts with a _STARTED marker
        success: Worker scripts with a _SUCCESS marker
        failed: Worker scripts with a _FAILURES marker
        main_failed: Whether the main script has a _FAILURES marker
    """

    total: int
    started: int
    success: int
    failed: int
    main_failed: bool = False

    @property
    def running(self) -> int:
        return max(0, self.started - self.success - self.failed)

    @property
    def queued(self) -> int:
        return max(0, self.total - self.started)

    @property
    def done(self) -> bool:
        return self.success + self.failed >= self.total

    def describe(self) -> str:
        return (
            f"Total={self.total}: Success={self.success}; Failed={self.failed}; "
            f"Running={self.running}; Queued={self.queued}"
        )


def marker_path(script_path: Path, suffix: str) -> Path:
    """Append a marker suffix to a script path: foo.sh -> foo.sh_SUCCESS."""
    return script_path.with_name(script_path.name + suffix)


def _touch(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()
    except OSError as e:
        raise SentinelWriteError(f"Unable to create sentinel marker {path}: {e}") from e


def mark_started(scope: Scope) -> None:
    """
    Create the started marker for a stage or script.

    Raises:
        SentinelWriteError: If the marker cannot be created
    """
    _touch(scope.started_marker)
    LOGGER.info("marker_started", extra={"marker": str(scope.started_marker)})


def mark_complete(scope: Scope) -> None:
    """
    Create the complete marker and remove the started marker.

    After this call is_complete(scope) is True and is_incomplete(scope)
    is False.

    Raises:
        SentinelWriteError: If the complete marker cannot be created or the
            started marker cannot be removed
    """
    _touch(scope.complete_marker)
    try:
        scope.started_marker.unlink(missing_ok=True)
    except OSError as e:
        raise SentinelWriteError(
            f"Unable to remove sentinel marker {scope.started_marker}: {e}"
        ) from e
    LOGGER.info("marker_complete", extra={"marker": str(scope.complete_marker)})


def is_complete(scope: Scope) -> bool:
    return scope.complete_marker.exists()


def is_incomplete(scope: Scope) -> bool:
    """True iff execution started and has not completed."""
    return scope.started_marker.exists() and not scope.complete_marker.exists()


def has_failures(scope: ScriptScope) -> bool:
    return scope.failures_marker.exists()


def worker_scripts(stage: StageSpec) -> list[Path]:
    """
    List the worker scripts generated for a stage, in batch order.

    Parameters:
        stage: Stage whose script directory is scanned

    Returns:
        Sorted worker script paths (main script excluded); empty if the
        script directory does not exist
    """
    if not stage.script_dir.is_dir():
        return []
    main = stage.main_script_path
    return sorted(
        p for p in stage.script_dir.glob(f"*{SH_EXT}")
        if p.is_file() and p.name != main.name
    )


def poll_stage(stage: StageSpec) -> StageStatus:
    """
    Count worker script markers for a stage.

    Parameters:
        stage: Stage to poll

    Returns:
        StageStatus snapshot

    Example:
        >>> status = poll_stage(stage)
        >>> print(status.describe())
        Total=3: Success=1; Failed=0; Running=1; Queued=1
    """
    scripts = [ScriptScope(p) for p in worker_scripts(stage)]
    return StageStatus(
        total=len(scripts),
        started=sum(1 for s in scripts if s.started_marker.exists()),
        success=sum(1 for s in scripts if s.complete_marker.exists()),
        failed=sum(1 for s in scripts if s.failures_marker.exists()),
        main_failed=has_failures(ScriptScope(stage.main_script_path)),
    )


def script_errors(stage: StageSpec) -> list[str]:
    """
    Collect every failure line recorded for a stage's scripts.

    Parameters:
        stage: Stage whose script directory is scanned

    Returns:
        List of "<scriptName> | <failure line>" strings, main script included
    """
    errors: list[str] = []
    if not stage.script_dir.is_dir():
        return errors

    for failures in sorted(stage.script_dir.glob(f"*{FAILURES_SUFFIX}")):
        script_name = failures.name[: -len(FAILURES_SUFFIX)]
        try:
            with failures.open("r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    line = line.rstrip("\n")
                    if line:
                        errors.append(f"{script_name} | {line}")
        except OSError as e:
            errors.append(f"{script_name} | unreadable failure file: {e}")

    return errors
