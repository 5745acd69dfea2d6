"""
Validation for stages and cluster job headers.

validate_stage() reports structural problems as a list of issues for display.
validate_cluster_header() raises: a header that reserves a different number
of processors than the stage's commands assume must stop the build.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re

from stagerunner.errors import ConfigFormatError, ConfigMissingError

from .models import EngineConfig, ExecutionMode, StageSpec

LOGGER = logging.getLogger(__name__)

# Resource parameter names that declare a processor count.
PROCESSOR_PARAMS = ("procs", "ppn", "ncpus", "cpus-per-task")

RESOURCE_LIST_FLAG = "-l"


@dataclass(frozen=True)
class ValidationIssue:
    """
    Represents a validation problem.

    Attributes:
        path: Path to the problematic field (e.g., "work_units[2][0]")
        message: Human-readable description of the issue
    """

    path: str
    message: str


def validate_stage(stage: StageSpec) -> list[ValidationIssue]:
    """
    Validate a stage before its scripts are built.

    Checks that the stage has:
    - At least one work unit
    - At least one command in each work unit
    - No blank command lines
    - A container image when it runs in container mode

    Parameters:
        stage: Stage to validate

    Returns:
        List of validation issues (empty if valid)

    Example:
        >>> issues = validate_stage(stage)
        >>> for issue in issues:
        ...     print(f"{issue.path}: {issue.message}")
    """
    issues: list[ValidationIssue] = []

    if not stage.work_units:
        issues.append(ValidationIssue("work_units", "Missing or empty work_units[]."))

    for u_i, unit in enumerate(stage.work_units):
        if not unit:
            issues.append(ValidationIssue(f"work_units[{u_i}]", "Work unit has no commands."))
            continue
        for c_i, command in enumerate(unit):
            if not command.strip():
                issues.append(ValidationIssue(f"work_units[{u_i}][{c_i}]", "Blank command line."))

    if stage.execution_mode is ExecutionMode.CONTAINER and not stage.container_image:
        issues.append(ValidationIssue("container_image", "Container mode requires a container image."))

    return issues


def _resource_tokens(line: str, prefix: str) -> list[str]:
    # "#PBS -l walltime=04:00:00, procs=4 -q fast" -> ["walltime=04:00:00,procs=4"]
    tokens = line[len(prefix):].split()
    if RESOURCE_LIST_FLAG not in tokens:
        return tokens

    resources: list[str] = []
    collecting = False
    for tok in tokens:
        if tok == RESOURCE_LIST_FLAG:
            resources.append("")
            collecting = True
        elif tok.startswith("-"):
            collecting = False
        elif collecting:
            resources[-1] += tok
    return resources


def processor_count(header: str, prefix: str) -> int | None:
    """
    Extract the declared processor count from a job header.

    Each directive line's resource list is split on "," and then on "=";
    the value following a recognized processor parameter is returned.
    Compound resources such as "nodes=1:ppn=4" are handled by taking the
    last ":"-separated name before each "=".

    Parameters:
        header: Job header text (one or more directive lines)
        prefix: Directive prefix, e.g. "#PBS"

    Returns:
        Declared processor count, or None if no processor parameter is present

    Raises:
        ConfigFormatError: If the processor parameter has a non-numeric value

    Example:
        >>> processor_count("#PBS -l nodes=1:ppn=4,mem=8gb", "#PBS")
        4
    """
    for line in header.splitlines():
        line = line.strip()
        if not line.startswith(prefix):
            continue
        for token in _resource_tokens(line, prefix):
            for resource in token.split(","):
                pieces = resource.split("=")
                for i, piece in enumerate(pieces[:-1]):
                    name = piece.split(":")[-1].strip().lstrip("-")
                    if name not in PROCESSOR_PARAMS:
                        continue
                    m = re.match(r"\s*(\d+)", pieces[i + 1])
                    if m is None:
                        raise ConfigFormatError(
                            f"Job header parameter {name} has a non-numeric value: {header!r}"
                        )
                    return int(m.group(1))
    return None


def validate_cluster_header(stage: StageSpec, config: EngineConfig) -> None:
    """
    Confirm the cluster job header reserves the stage's thread count.

    No-op unless the stage runs in cluster mode.

    Parameters:
        stage: Stage about to be built
        config: Engine configuration

    Raises:
        ConfigMissingError: If the batch command or job header is not configured
        ConfigFormatError: If the header lacks the directive prefix, or its
            processor count differs from stage.thread_count

    Example:
        >>> config.cluster.job_header = "#PBS -l procs=2,mem=8GB"
        >>> validate_cluster_header(stage_with_4_threads, config)
        Traceback (most recent call last):
        ...
        stagerunner.errors.ConfigFormatError: ...
    """
    if stage.execution_mode is not ExecutionMode.CLUSTER:
        return

    cluster = config.cluster
    if not (cluster.batch_command or "").strip():
        raise ConfigMissingError("Cluster execution requires cluster.batch_command.")

    if not cluster.validate_params:
        LOGGER.warning(
            "cluster_header_unchecked",
            extra={"stage": stage.name, "thread_count": stage.thread_count},
        )
        return

    header = stage.resolved_job_header(config)
    if not header or not header.strip():
        raise ConfigMissingError(f"Cluster execution of {stage.name} requires a job header.")

    prefix = cluster.directive_prefix
    if not header.startswith(prefix):
        raise ConfigFormatError(f"Job header must start with {prefix!r}: {header!r}")

    declared = processor_count(header, prefix)
    if declared is None:
        LOGGER.warning(
            "cluster_header_no_processor_param",
            extra={"stage": stage.name, "header": header, "accepted": list(PROCESSOR_PARAMS)},
        )
        return

    if declared != stage.thread_count:
        raise ConfigFormatError(
            f"Inconsistent config values for {stage.name}: thread_count={stage.thread_count} "
            f"but job header {header!r} declares {declared} processors."
        )
