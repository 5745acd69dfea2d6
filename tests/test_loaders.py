"""Tests for stage and configuration loaders."""

from pathlib import Path
import json
import tempfile

import pydantic
import pytest

from stagerunner.stage import (
    EngineConfig,
    ExecutionMode,
    load_config,
    load_json,
    load_stage,
    parse_stage,
)
from stagerunner.stage import loaders


FIXTURES_DIR = Path(__file__).parent / "fixtures"


class TestLoadStage:
    """Tests for load_stage() and parse_stage()."""

    def test_load_simple_stage(self):
        stage = load_stage(str(FIXTURES_DIR / "stage_simple.json"))

        assert stage.name == "Trimmer"
        assert stage.execution_mode is ExecutionMode.LOCAL
        assert stage.batch_size == 2
        assert len(stage.work_units) == 3
        assert stage.main_script_path == Path.cwd() / "pipeline/01_Trimmer/script/MAIN_01_Trimmer.sh"
        assert stage.helper_functions[0].startswith("function trimSample() {")

    def test_load_cluster_stage(self):
        stage = load_stage(str(FIXTURES_DIR / "stage_cluster.json"))

        assert stage.execution_mode is ExecutionMode.CLUSTER
        assert stage.thread_count == 4
        assert stage.worker_script_path("1") == Path.cwd() / "pipeline/02_Aligner/script/02.1.02_Aligner.sh"

    def test_relative_stage_dir_made_absolute(self, monkeypatch):
        """Test that stage_dir is anchored to the working directory at load time."""
        with tempfile.TemporaryDirectory() as tmpdir:
            monkeypatch.chdir(tmpdir)
            stage = parse_stage({"name": "S", "stage_dir": "p/01_S", "index": 1})

            assert stage.stage_dir.is_absolute()
            assert stage.stage_dir == Path.cwd() / "p" / "01_S"

    def test_unknown_field_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            parse_stage({"name": "S", "stage_dir": "p/01_S", "index": 1, "batchsize": 3})

    def test_unknown_mode_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            parse_stage({"name": "S", "stage_dir": "p/01_S", "index": 1, "execution_mode": "grid"})

    def test_missing_file_raises(self):
        with pytest.raises(FileNotFoundError):
            load_stage(str(FIXTURES_DIR / "does_not_exist.json"))


class TestLoadConfig:
    """Tests for load_config()."""

    def test_none_gives_defaults(self):
        config = load_config(None)

        assert config == EngineConfig()
        assert config.default_header == "#!/bin/bash"
        assert config.permission_bits() == 0o770

    def test_cluster_config(self):
        config = load_config(str(FIXTURES_DIR / "config_cluster.json"))

        assert config.cluster.batch_command == "qsub"
        assert config.cluster.modules == ["bowtie2/2.5.1"]
        assert config.cluster.directive_prefix == "#PBS"

    def test_container_config_volumes(self):
        config = load_config(str(FIXTURES_DIR / "config_container.json"))
        flags = [m.flag() for m in config.container.volumes()]

        assert flags[0] == "-v /var/run/docker.sock:/var/run/docker.sock"
        assert "-v /data/db:/mnt/efs/db:ro" in flags
        assert len(flags) == 5


class TestLoadJson:
    """Tests for load_json() path/URL dispatch."""

    def test_reads_local_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "x.json"
            path.write_text(json.dumps({"a": 1}))

            assert load_json(str(path)) == {"a": 1}

    def test_urls_are_fetched(self, monkeypatch):
        calls = []

        def fake_fetch(url, **kwargs):
            calls.append(url)
            return {"name": "Remote"}

        monkeypatch.setattr(loaders, "fetch_json", fake_fetch)

        assert load_json("https://example.org/stage.json") == {"name": "Remote"}
        assert calls == ["https://example.org/stage.json"]
