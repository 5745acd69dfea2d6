"""
Backend dispatch and main script assembly.

The main script launches each worker script through execute(), in batch
order, using one of three backends:

    local      execute "<script>" <n>                  runs and waits
    cluster    execute "runJob <script>" <n>           submits, returns at once
    container  execute "spawnContainer <script>" <n>   runs a container, waits

In cluster mode execute() only sees the submission's exit status; the job's
own outcome is read later from its sentinel markers.

In container mode the spawned containers see the standard volumes at the
same /mnt/efs paths the controlling environment uses, so stage directories
should be given as container-side paths.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import shlex
from pathlib import Path

from stagerunner.errors import ConfigMissingError
from stagerunner.stage.models import EngineConfig, ExecutionMode, StageSpec

from .partition import BatchPlan
from .sentinel import STARTED_SUFFIX, SUCCESS_SUFFIX, marker_path
from .wrapper import ScriptBuffer, execute_function, failure_file_line, touch_line

LOGGER = logging.getLogger(__name__)

RUN_JOB_FUNCTION = "runJob"
SPAWN_CONTAINER_FUNCTION = "spawnContainer"
COMPUTE_SCRIPT_VAR = "COMPUTE_SCRIPT"
CONTAINER_RM_FLAG = "--rm"


@dataclass(frozen=True)
class Backend:
    """
    Resolved dispatch backend for one stage.

    Attributes:
        mode: Execution mode
        function_lines: Bash function definition added to the main script (may be empty)
        launcher: Function name prefixed to each script path, or None to run the path directly
    """

    mode: ExecutionMode
    function_lines: tuple[str, ...] = ()
    launcher: str | None = None

    def invocation(self, script_path: Path) -> str:
        path = shlex.quote(str(script_path))
        return f"{self.launcher} {path}" if self.launcher else path


def run_job_function(batch_command: str) -> list[str]:
    return [
        "# Submit a worker script to the cluster",
        f"function {RUN_JOB_FUNCTION}() {{",
        f"    {batch_command} $1",
        "}",
    ]


def container_command(stage: StageSpec, config: EngineConfig) -> str:
    """
    Build the container run command used by spawnContainer().

    Parameters:
        stage: Container-mode stage
        config: Engine configuration

    Returns:
        '<executable> run [--rm] -e "COMPUTE_SCRIPT=$1" -v ... <image>'

    Raises:
        ConfigMissingError: If the image or a required volume is not configured
    """
    settings = config.container
    if not stage.container_image:
        raise ConfigMissingError(f"Container execution of {stage.name} requires container_image.")

    missing = [
        name
        for name in ("input_dir", "pipeline_dir", "config_dir")
        if not getattr(settings, name)
    ]
    if missing:
        raise ConfigMissingError(
            f"Container execution of {stage.name} requires container.{', container.'.join(missing)}."
        )

    save = (
        stage.save_container_on_exit
        if stage.save_container_on_exit is not None
        else settings.save_container_on_exit
    )

    parts = [settings.executable, "run"]
    if not save:
        parts.append(CONTAINER_RM_FLAG)
    parts.append(f'-e "{COMPUTE_SCRIPT_VAR}=$1"')
    parts.extend(mount.flag() for mount in settings.volumes())
    parts.extend(mount.flag() for mount in stage.extra_mounts)
    parts.append(stage.container_image)
    return " ".join(parts)


def spawn_container_function(stage: StageSpec, config: EngineConfig) -> list[str]:
    return [
        "# Spawn a container for a worker script",
        f"function {SPAWN_CONTAINER_FUNCTION}() {{",
        f"    {container_command(stage, config)}",
        "}",
    ]


def resolve_backend(stage: StageSpec, config: EngineConfig) -> Backend:
    """
    Resolve the dispatch backend for a stage.

    Called once per build, before any script text is generated.

    Raises:
        ConfigMissingError: If cluster or container settings are incomplete
    """
    mode = stage.execution_mode

    if mode is ExecutionMode.CLUSTER:
        batch_command = (config.cluster.batch_command or "").strip()
        if not batch_command:
            raise ConfigMissingError("Cluster execution requires cluster.batch_command.")
        backend = Backend(mode, tuple(run_job_function(batch_command)), RUN_JOB_FUNCTION)
    elif mode is ExecutionMode.CONTAINER:
        backend = Backend(mode, tuple(spawn_container_function(stage, config)), SPAWN_CONTAINER_FUNCTION)
    else:
        backend = Backend(ExecutionMode.LOCAL)

    LOGGER.debug("backend_resolved", extra={"stage": stage.name, "mode": backend.mode.value})
    return backend


def build_main_script(
    plan: BatchPlan,
    stage: StageSpec,
    config: EngineConfig,
    backend: Backend | None = None,
) -> str:
    """
    Build the text of a stage's main script.

    Layout:
    - default header, if configured
    - metadata comment
    - touch <main>_STARTED
    - failureFile assignment
    - execute() definition
    - runJob() or spawnContainer() definition, for cluster/container stages
    - one wrapped invocation per batch, in plan order
    - touch <main>_SUCCESS

    Parameters:
        plan: Batch plan for the stage
        stage: Stage being built
        config: Engine configuration
        backend: Backend resolved for this build; resolved here if omitted

    Returns:
        Script text ending with a newline
    """
    if backend is None:
        backend = resolve_backend(stage, config)

    main = stage.main_script_path
    buf = ScriptBuffer()

    if config.default_header:
        buf.add(config.default_header)
    buf.add(f"#{config.engine_name}.{config.version} {main} | batches = {len(plan)}")
    buf.add(touch_line(marker_path(main, STARTED_SUFFIX)))
    buf.add(failure_file_line(main))
    buf.add(*execute_function())
    buf.add(*backend.function_lines)

    for batch in plan:
        buf.add_wrapped(backend.invocation(stage.worker_script_path(batch.batch_id)))

    buf.add(touch_line(marker_path(main, SUCCESS_SUFFIX)))
    return buf.text()
