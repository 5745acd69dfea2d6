"""
Worker script assembly.

A worker script runs every command of one batch through execute(), in order,
and marks its own start and (for non-managed-runtime stages) its success.
"""

from __future__ import annotations

from stagerunner.stage.models import EngineConfig, ExecutionMode, StageSpec

from .partition import Batch
from .sentinel import STARTED_SUFFIX, SUCCESS_SUFFIX, marker_path
from .wrapper import ScriptBuffer, execute_function, failure_file_line, touch_line


def worker_header(stage: StageSpec, config: EngineConfig) -> str | None:
    """
    Select the first line(s) of a worker script.

    Cluster stages use their own job header if they declare one, else the
    configured cluster job header. Other stages use the default header.
    """
    if stage.execution_mode is ExecutionMode.CLUSTER:
        return stage.resolved_job_header(config)
    return config.default_header


def metadata_line(config: EngineConfig, script_path: str, batch_size: int) -> str:
    return f"#{config.engine_name}.{config.version} {script_path} | batch size = {batch_size}"


def assemble_worker_script(
    batch: Batch,
    stage: StageSpec,
    config: EngineConfig,
    batch_size: int,
) -> str:
    """
    Build the text of one worker script.

    Layout:
    - header (job header or default header), if any
    - metadata comment
    - touch <script>_STARTED
    - failureFile assignment
    - "module load" lines (cluster mode)
    - stage helper functions, verbatim
    - execute() definition
    - one execute "<command>" <lineNo> per command, unit by unit
    - touch <script>_SUCCESS, unless the stage is a managed-runtime stage

    Managed-runtime stages report their own completion; a trailing success
    touch could mark success after an in-process error that never became a
    non-zero exit status.

    Parameters:
        batch: Batch to materialize
        stage: Stage that produced the batch
        config: Engine configuration
        batch_size: Batch size recorded in the metadata comment

    Returns:
        Script text ending with a newline

    Raises:
        ScriptAssemblyError: If a command spans multiple lines
    """
    script_path = stage.worker_script_path(batch.batch_id)
    buf = ScriptBuffer()

    header = worker_header(stage, config)
    if header:
        buf.add(header)

    buf.add(metadata_line(config, str(script_path), batch_size))
    buf.add(touch_line(marker_path(script_path, STARTED_SUFFIX)))
    buf.add(failure_file_line(script_path))

    if stage.execution_mode is ExecutionMode.CLUSTER:
        for module in config.cluster.modules:
            buf.add(f"module load {module}")

    for function in stage.helper_functions:
        buf.add(function)

    buf.add(*execute_function())

    for command in batch.commands():
        buf.add_wrapped(command)

    if not stage.managed_runtime:
        buf.add(touch_line(marker_path(script_path, SUCCESS_SUFFIX)))

    return buf.text()
