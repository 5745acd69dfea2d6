"""
Stage descriptions and engine configuration.

This package provides Pydantic models for stages and engine settings along
with loaders and validation helpers.

Basic usage:
    >>> from stagerunner.stage import load_stage, load_config, validate_stage
    >>>
    >>> stage = load_stage("stages/01_Trimmer.json")
    >>> config = load_config("engine.json")
    >>> for issue in validate_stage(stage):
    ...     print(f"{issue.path}: {issue.message}")
"""

from .models import (
    StageSpec,
    EngineConfig,
    ClusterSettings,
    ContainerSettings,
    VolumeMount,
    ExecutionMode,
    WorkUnit,
)
from .loaders import (
    load_stage,
    load_config,
    load_json,
    parse_stage,
    parse_config,
    fetch_json,
)
from .validation import (
    ValidationIssue,
    validate_stage,
    validate_cluster_header,
    processor_count,
)

__all__ = [
    # Models
    "StageSpec",
    "EngineConfig",
    "ClusterSettings",
    "ContainerSettings",
    "VolumeMount",
    "ExecutionMode",
    "WorkUnit",
    # Loaders
    "load_stage",
    "load_config",
    "load_json",
    "parse_stage",
    "parse_config",
    "fetch_json",
    # Validation
    "ValidationIssue",
    "validate_stage",
    "validate_cluster_header",
    "processor_count",
]
