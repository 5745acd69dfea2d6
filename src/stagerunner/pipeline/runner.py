"""
Run one stage end to end on the local machine.

Marks the stage started, builds its scripts, runs the main script with bash,
and (for cluster stages, whose jobs finish after submission returns) polls
worker script markers until every batch has succeeded or failed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable
import logging
import subprocess
import time

from stagerunner.errors import StageFailedError
from stagerunner.stage.models import EngineConfig, ExecutionMode, StageSpec

from .builder import build_scripts
from .sentinel import (
    StageScope,
    StageStatus,
    is_complete,
    mark_complete,
    mark_started,
    poll_stage,
    script_errors,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 60.0
# Repeat an unchanged status line every this many polls.
STATUS_REPEAT_EVERY = 10


def main_log_path(main_script: Path) -> Path:
    return main_script.with_name(main_script.name + ".log")


def _fail(stage: StageSpec, message: str) -> StageFailedError:
    errors = script_errors(stage)
    LOGGER.warning("stage_failed", extra={"stage": stage.name, "reason": message, "errors": errors})
    return StageFailedError(f"{stage.name}: {message}", errors)


def wait_for_scripts(
    stage: StageSpec,
    *,
    poll_seconds: float = DEFAULT_POLL_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> StageStatus:
    """
    Poll worker script markers until every script has succeeded or failed.

    The status line is logged when it changes and repeated every tenth
    unchanged poll. There is no timeout: a hung script keeps this loop
    waiting.

    Parameters:
        stage: Stage whose scripts are running
        poll_seconds: Delay between polls
        sleep: Sleep function (replaceable in tests)

    Returns:
        Final StageStatus with every script successful

    Raises:
        StageFailedError: As soon as any script (or the main script) records a failure
    """
    last_msg = ""
    unchanged = 0
    while True:
        status = poll_stage(stage)
        msg = status.describe()
        if msg != last_msg:
            last_msg = msg
            unchanged = 0
            LOGGER.info("stage_status", extra={"stage": stage.name, "status": msg})
        else:
            unchanged += 1
            if unchanged % STATUS_REPEAT_EVERY == 0:
                LOGGER.info("stage_status", extra={"stage": stage.name, "status": msg})

        if status.failed or status.main_failed:
            raise _fail(stage, f"script failures detected ({msg})")
        if status.done:
            return status
        sleep(poll_seconds)


def run_stage(
    stage: StageSpec,
    config: EngineConfig | None = None,
    *,
    poll_seconds: float = DEFAULT_POLL_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> StageStatus:
    """
    Build and execute a stage, then record its completion.

    A stage that already has its BLJ_COMPLETE marker is skipped.

    Local and container stages run synchronously inside the main script, so
    a clean main script exit means every batch ran. Cluster stages return
    from the main script once jobs are submitted; their markers are polled.

    Parameters:
        stage: Stage to run
        config: Engine configuration (defaults if omitted)
        poll_seconds: Delay between polls for cluster stages
        sleep: Sleep function (replaceable in tests)

    Returns:
        StageStatus after execution

    Raises:
        StageFailedError: If the main script exits non-zero or any script fails
        StageRunnerError: Any build error from build_scripts()
    """
    scope = StageScope(stage.stage_dir)
    if is_complete(scope):
        LOGGER.info("stage_already_complete", extra={"stage": stage.name})
        return poll_stage(stage)

    mark_started(scope)
    result = build_scripts(stage, stage.work_units, stage.batch_size, config)

    log_path = main_log_path(result.main_script)
    LOGGER.info("main_script_started", extra={"stage": stage.name, "main_script": str(result.main_script)})
    with log_path.open("w", encoding="utf-8") as log:
        proc = subprocess.run(
            ["bash", str(result.main_script)],
            cwd=stage.script_dir,
            stdout=log,
            stderr=subprocess.STDOUT,
            check=False,
        )

    if proc.returncode != 0:
        raise _fail(stage, f"main script exited with status {proc.returncode}; see {log_path}")

    if stage.execution_mode is ExecutionMode.CLUSTER:
        status = wait_for_scripts(stage, poll_seconds=poll_seconds, sleep=sleep)
    else:
        status = poll_stage(stage)

    mark_complete(scope)
    LOGGER.info("stage_complete", extra={"stage": stage.name, "status": status.describe()})
    return status
