"""
Pydantic models for pipeline stages and engine configuration.

A stage is an opaque producer of work units (ordered lists of shell command
lines) plus the few flags that affect how those commands are executed. The
engine configuration carries the environment-level settings: headers, cluster
submission, and container runtime.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stagerunner import __version__

MAIN_SCRIPT_PREFIX = "MAIN_"
SCRIPT_DIR = "script"
SH_EXT = ".sh"

# Container-side mount points for the standard volumes.
CONTAINER_MOUNT_ROOT = "/mnt/efs"
CONTAINER_INPUT_DIR = CONTAINER_MOUNT_ROOT + "/input"
CONTAINER_PIPELINE_DIR = CONTAINER_MOUNT_ROOT + "/pipelines"
CONTAINER_CONFIG_DIR = CONTAINER_MOUNT_ROOT + "/config"
CONTAINER_META_DIR = CONTAINER_MOUNT_ROOT + "/metadata"
CONTAINER_PRIMER_DIR = CONTAINER_MOUNT_ROOT + "/primer"
CONTAINER_DB_DIR = CONTAINER_MOUNT_ROOT + "/db"

WorkUnit = list[str]


class ExecutionMode(str, Enum):
    """How the main script dispatches each batch script."""

    LOCAL = "local"
    CLUSTER = "cluster"
    CONTAINER = "container"


class VolumeMount(BaseModel):
    """
    A single container volume binding.

    Example:
        >>> VolumeMount(host="/data/db", container="/mnt/efs/db").flag()
        '-v /data/db:/mnt/efs/db:ro'
    """

    model_config = ConfigDict(extra="forbid")

    host: str
    container: str
    mode: str | None = "ro"

    def flag(self) -> str:
        suffix = f":{self.mode}" if self.mode else ""
        return f"-v {self.host}:{self.container}{suffix}"


class ClusterSettings(BaseModel):
    """
    Batch scheduler settings.

    Attributes:
        batch_command: Submission command, e.g. "qsub"; the script path is appended
        job_header: Scheduler directive line written at the top of worker scripts
        modules: Environment modules loaded with "module load" in each worker script
        validate_params: Check the header's processor count against the thread count
        directive_prefix: Prefix every scheduler directive line must start with
    """

    model_config = ConfigDict(extra="forbid")

    batch_command: str | None = None
    job_header: str | None = None
    modules: list[str] = Field(default_factory=list)
    validate_params: bool = True
    directive_prefix: str = "#PBS"


class ContainerSettings(BaseModel):
    """
    Container runtime settings.

    The host directories are bound into every spawned container at fixed
    mount points under /mnt/efs so worker scripts can address input, pipeline
    output, and configuration identically on every host.
    """

    model_config = ConfigDict(extra="forbid")

    executable: str = "docker"
    socket: str = "/var/run/docker.sock"
    save_container_on_exit: bool = False
    input_dir: str | None = None
    pipeline_dir: str | None = None
    config_dir: str | None = None
    meta_dir: str | None = None
    primer_dir: str | None = None
    db_dir: str | None = None

    def volumes(self) -> list[VolumeMount]:
        """
        Get the standard volume bindings in mount order.

        Optional directories (metadata, primer, database) are only bound
        when configured.

        Returns:
            List of VolumeMount objects, socket first
        """
        mounts = [VolumeMount(host=self.socket, container=self.socket, mode=None)]
        if self.input_dir:
            mounts.append(VolumeMount(host=self.input_dir, container=CONTAINER_INPUT_DIR, mode="ro"))
        if self.pipeline_dir:
            mounts.append(
                VolumeMount(host=self.pipeline_dir, container=CONTAINER_PIPELINE_DIR, mode="delegated")
            )
        if self.config_dir:
            mounts.append(VolumeMount(host=self.config_dir, container=CONTAINER_CONFIG_DIR, mode="ro"))
        if self.meta_dir:
            mounts.append(VolumeMount(host=self.meta_dir, container=CONTAINER_META_DIR, mode="ro"))
        if self.primer_dir:
            mounts.append(VolumeMount(host=self.primer_dir, container=CONTAINER_PRIMER_DIR, mode="ro"))
        if self.db_dir:
            mounts.append(VolumeMount(host=self.db_dir, container=CONTAINER_DB_DIR, mode="ro"))
        return mounts


class EngineConfig(BaseModel):
    """
    Environment-level configuration shared by every stage.

    Attributes:
        engine_name: Name written in each worker script's metadata comment
        version: Version written next to the engine name
        default_header: Header line used when not submitting to a cluster
        script_permissions: Octal mode applied to generated scripts
        cluster: Batch scheduler settings
        container: Container runtime settings
    """

    model_config = ConfigDict(extra="forbid")

    engine_name: str = "StageRunner"
    version: str = __version__
    default_header: str | None = "#!/bin/bash"
    script_permissions: str = "770"
    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    container: ContainerSettings = Field(default_factory=ContainerSettings)

    def permission_bits(self) -> int:
        """Parse script_permissions ("770") into a mode for Path.chmod()."""
        return int(self.script_permissions, 8)


class StageSpec(BaseModel):
    """
    One pipeline stage as seen by the engine.

    The stage directory holds the stage sentinel markers; its "script"
    sub-directory holds the main script, the worker scripts, and their
    per-script markers. A relative stage_dir is made absolute against the
    current working directory when the model is validated.

    Example:
        >>> stage = StageSpec(
        ...     name="Trimmer",
        ...     stage_dir=Path("pipeline/01_Trimmer"),
        ...     index=1,
        ...     work_units=[["trim a.fq"], ["trim b.fq"]],
        ... )
        >>> stage.main_script_path.name
        'MAIN_01_Trimmer.sh'
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    stage_dir: Path
    index: int = Field(ge=0)
    work_units: list[WorkUnit] = Field(default_factory=list)
    helper_functions: list[str] = Field(default_factory=list)
    batch_size: int = 0
    thread_count: int = Field(default=1, gt=0)
    managed_runtime: bool = False
    execution_mode: ExecutionMode = ExecutionMode.LOCAL
    job_header: str | None = None
    container_image: str | None = None
    extra_mounts: list[VolumeMount] = Field(default_factory=list)
    save_container_on_exit: bool | None = None

    @field_validator("stage_dir")
    @classmethod
    def _absolute_stage_dir(cls, value: Path) -> Path:
        # Generated scripts embed these paths and run from the script directory.
        return value.expanduser().absolute()

    @property
    def script_dir(self) -> Path:
        return self.stage_dir / SCRIPT_DIR

    @property
    def main_script_path(self) -> Path:
        return self.script_dir / f"{MAIN_SCRIPT_PREFIX}{self.stage_dir.name}{SH_EXT}"

    def worker_script_path(self, batch_id: str) -> Path:
        """
        Get the worker script path for a batch id.

        The name is "<index:02d>.<batch_id>.<main script name without MAIN_>",
        which restarts rely on to match scripts from an earlier attempt.

        Parameters:
            batch_id: Zero-padded batch identifier

        Returns:
            Worker script path inside script_dir
        """
        suffix = self.main_script_path.name[len(MAIN_SCRIPT_PREFIX):]
        return self.script_dir / f"{self.index:02d}.{batch_id}.{suffix}"

    def resolved_job_header(self, config: EngineConfig) -> str | None:
        """Stage-specific job header if declared, else the configured cluster header."""
        return self.job_header or config.cluster.job_header
