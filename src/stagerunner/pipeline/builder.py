"""
Stage script builder.

build_scripts() is the single entry point used by an orchestrator to turn a
stage's work units into a main script plus one worker script per batch.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence
import logging

from stagerunner.errors import ScriptAssemblyError
from stagerunner.stage.models import EngineConfig, StageSpec
from stagerunner.stage.validation import validate_cluster_header

from .assembler import assemble_worker_script
from .dispatch import build_main_script, resolve_backend
from .partition import BatchPlan, partition
from .sentinel import FAILURES_SUFFIX, STARTED_SUFFIX, SUCCESS_SUFFIX, marker_path, worker_scripts

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    """
    Scripts generated for one stage.

    Attributes:
        main_script: Path of the main script
        worker_scripts: Worker script paths in batch order
        plan: Batch plan the scripts were built from
    """

    main_script: Path
    worker_scripts: list[Path]
    plan: BatchPlan


def write_script(path: Path, text: str, mode: int) -> None:
    """
    Write a script file and set its permissions.

    Raises:
        OSError: If the file cannot be written or its mode cannot be set
    """
    path.write_text(text, encoding="utf-8")
    path.chmod(mode)


def _clear_markers(script: Path) -> None:
    for suffix in (STARTED_SUFFIX, SUCCESS_SUFFIX, FAILURES_SUFFIX):
        marker_path(script, suffix).unlink(missing_ok=True)


def _reset_script_dir(stage: StageSpec, keep: set[Path]) -> None:
    """
    Clear state left by an earlier build of the same stage.

    Worker scripts the new plan no longer produces are deleted with their
    markers. Scripts whose paths are reused, and the main script, lose their
    markers so polling only ever sees markers written by the new run.
    """
    for old in worker_scripts(stage):
        if old in keep:
            continue
        old.unlink(missing_ok=True)
        _clear_markers(old)
        LOGGER.info("stale_script_removed", extra={"path": str(old)})

    for script in [*keep, stage.main_script_path]:
        _clear_markers(script)


def build_scripts(
    stage: StageSpec,
    work_units: Sequence[Sequence[str]],
    batch_size: int,
    config: EngineConfig | None = None,
) -> BuildResult:
    """
    Build the main script and worker scripts for a stage.

    Steps:
    - Validate the cluster job header (cluster mode only)
    - Resolve the dispatch backend once
    - Partition work units into batches
    - Assemble every script in memory
    - Clear markers from an earlier build, removing scripts no longer planned
    - Write worker scripts, then the main script, with configured permissions

    If any write fails, every script written by this call is deleted
    before the error is raised, so no partial script set is left behind.

    Parameters:
        stage: Stage being built
        work_units: Work units, each a non-empty list of command lines
        batch_size: Units per worker script (<= 0 for a single script)
        config: Engine configuration (defaults if omitted)

    Returns:
        BuildResult with the generated paths and the batch plan

    Raises:
        EmptyInputError: If there are no work units or one is empty
        ConfigMissingError: If required cluster/container settings are absent
        ConfigFormatError: If the cluster job header is malformed or inconsistent
        ScriptAssemblyError: If a script cannot be assembled or written

    Example:
        >>> result = build_scripts(stage, [["run A"], ["run B"]], 1, EngineConfig())
        >>> [p.name for p in result.worker_scripts]
        ['01.0.01_Trimmer.sh', '01.1.01_Trimmer.sh']
    """
    if config is None:
        config = EngineConfig()

    validate_cluster_header(stage, config)
    backend = resolve_backend(stage, config)
    plan = partition(work_units, batch_size, stage.execution_mode)

    LOGGER.info(
        "build_started",
        extra={
            "stage": stage.name,
            "mode": backend.mode.value,
            "work_units": len(work_units),
            "batch_size": batch_size,
            "batches": len(plan),
        },
    )

    scripts: list[tuple[Path, str]] = [
        (stage.worker_script_path(batch.batch_id), assemble_worker_script(batch, stage, config, batch_size))
        for batch in plan
    ]
    main_script = stage.main_script_path
    main_text = build_main_script(plan, stage, config, backend)

    try:
        mode = config.permission_bits()
    except ValueError as e:
        raise ScriptAssemblyError(f"Invalid script_permissions: {config.script_permissions!r}") from e

    written: list[Path] = []
    try:
        stage.script_dir.mkdir(parents=True, exist_ok=True)
        _reset_script_dir(stage, {path for path, _ in scripts})
        for path, text in [*scripts, (main_script, main_text)]:
            write_script(path, text, mode)
            written.append(path)
            LOGGER.debug("script_written", extra={"path": str(path), "lines": text.count("\n")})
    except OSError as e:
        for path in written:
            path.unlink(missing_ok=True)
        raise ScriptAssemblyError(f"Unable to write scripts for {stage.name}: {e}") from e

    LOGGER.info(
        "build_complete",
        extra={"stage": stage.name, "main_script": str(main_script), "worker_scripts": len(scripts)},
    )

    return BuildResult(
        main_script=main_script,
        worker_scripts=[path for path, _ in scripts],
        plan=plan,
    )
