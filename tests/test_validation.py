"""Tests for stage and cluster header validation."""

from pathlib import Path
import logging

import pydantic
import pytest

from stagerunner.errors import ConfigFormatError, ConfigMissingError
from stagerunner.stage import (
    ClusterSettings,
    EngineConfig,
    ExecutionMode,
    StageSpec,
    processor_count,
    validate_cluster_header,
    validate_stage,
)


def cluster_stage(thread_count=4, job_header=None):
    return StageSpec(
        name="Aligner",
        stage_dir=Path("/tmp/pipeline/02_Aligner"),
        index=2,
        work_units=[["align a.fq"]],
        thread_count=thread_count,
        execution_mode=ExecutionMode.CLUSTER,
        job_header=job_header,
    )


def cluster_config(job_header="#PBS -l procs=4,mem=8GB", **kwargs):
    return EngineConfig(
        cluster=ClusterSettings(batch_command="qsub", job_header=job_header, **kwargs)
    )


class TestProcessorCount:
    """Tests for processor_count() function."""

    def test_procs(self):
        assert processor_count("#PBS -l procs=4,mem=8GB", "#PBS") == 4

    def test_compound_ppn(self):
        assert processor_count("#PBS -l nodes=1:ppn=8,walltime=10:00:00", "#PBS") == 8

    def test_multi_line_header(self):
        header = "#PBS -N job\n#PBS -l walltime=1:00:00\n#PBS -l ncpus=2"
        assert processor_count(header, "#PBS") == 2

    def test_slurm_style(self):
        assert processor_count("#SBATCH --cpus-per-task=6", "#SBATCH") == 6

    def test_resource_list_split_by_spaces(self):
        """Test that a resource list continued after a space is still read."""
        assert processor_count("#PBS -l walltime=04:00:00, procs=2", "#PBS") == 2

    def test_resource_list_stops_at_next_flag(self):
        assert processor_count("#PBS -l mem=8GB -q procs=3", "#PBS") is None

    def test_no_processor_param(self):
        assert processor_count("#PBS -l mem=8GB", "#PBS") is None

    def test_non_numeric_value_raises(self):
        with pytest.raises(ConfigFormatError):
            processor_count("#PBS -l procs=many", "#PBS")


class TestValidateClusterHeader:
    """Tests for validate_cluster_header() function."""

    def test_matching_thread_count_passes(self):
        validate_cluster_header(cluster_stage(4), cluster_config("#PBS -l procs=4,mem=8GB"))

    def test_mismatched_thread_count_raises(self):
        """Test that procs=2 with 4 threads is rejected."""
        with pytest.raises(ConfigFormatError, match="thread_count=4"):
            validate_cluster_header(cluster_stage(4), cluster_config("#PBS -l procs=2,mem=8GB"))

    def test_stage_header_overrides_config_header(self):
        stage = cluster_stage(2, job_header="#PBS -l procs=2")
        validate_cluster_header(stage, cluster_config("#PBS -l procs=4"))

    def test_missing_prefix_raises(self):
        with pytest.raises(ConfigFormatError):
            validate_cluster_header(cluster_stage(4), cluster_config("-l procs=4"))

    def test_missing_header_raises(self):
        with pytest.raises(ConfigMissingError):
            validate_cluster_header(cluster_stage(4), cluster_config(None))

    def test_missing_batch_command_raises(self):
        config = EngineConfig(cluster=ClusterSettings(job_header="#PBS -l procs=4"))
        with pytest.raises(ConfigMissingError):
            validate_cluster_header(cluster_stage(4), config)

    def test_validation_disabled_warns(self, caplog):
        """Test that a disabled check only logs a warning."""
        config = cluster_config("#PBS -l procs=2", validate_params=False)
        with caplog.at_level(logging.WARNING, logger="stagerunner"):
            validate_cluster_header(cluster_stage(4), config)

        assert any(r.getMessage() == "cluster_header_unchecked" for r in caplog.records)

    def test_split_resource_list_mismatch_raises(self):
        header = "#PBS -l walltime=04:00:00, procs=2"
        with pytest.raises(ConfigFormatError):
            validate_cluster_header(cluster_stage(4), cluster_config(header))

    def test_no_processor_param_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="stagerunner"):
            validate_cluster_header(cluster_stage(4), cluster_config("#PBS -l mem=8GB"))

        assert any(r.getMessage() == "cluster_header_no_processor_param" for r in caplog.records)

    def test_non_cluster_stage_skipped(self):
        """Test that local stages are never checked."""
        stage = StageSpec(name="Local", stage_dir=Path("/tmp/p/01_Local"), index=1, thread_count=8)
        validate_cluster_header(stage, EngineConfig())


class TestValidateStage:
    """Tests for validate_stage() function."""

    def test_valid_stage_passes(self):
        assert validate_stage(cluster_stage(4)) == []

    def test_missing_work_units(self):
        stage = StageSpec(name="S", stage_dir=Path("/tmp/p/01_S"), index=1)
        issues = validate_stage(stage)

        assert [i.path for i in issues] == ["work_units"]

    def test_empty_unit_and_blank_command(self):
        stage = StageSpec(
            name="S",
            stage_dir=Path("/tmp/p/01_S"),
            index=1,
            work_units=[["echo a"], [], ["echo b", "   "]],
        )
        paths = [i.path for i in validate_stage(stage)]

        assert "work_units[1]" in paths
        assert "work_units[2][1]" in paths

    def test_non_positive_thread_count_rejected(self):
        """Test that the model refuses a thread count below one."""
        with pytest.raises(pydantic.ValidationError):
            StageSpec(
                name="S", stage_dir=Path("/tmp/p/01_S"), index=1, work_units=[["x"]], thread_count=0
            )

    def test_container_without_image(self):
        stage = StageSpec(
            name="S",
            stage_dir=Path("/tmp/p/01_S"),
            index=1,
            work_units=[["x"]],
            execution_mode=ExecutionMode.CONTAINER,
        )

        assert any(i.path == "container_image" for i in validate_stage(stage))
