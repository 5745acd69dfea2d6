"""
stagerunner: batch pipeline-stage command lists into fail-fast bash scripts.

Typical use:
    >>> from stagerunner.stage import load_stage, EngineConfig
    >>> from stagerunner.pipeline.builder import build_scripts
    >>>
    >>> stage = load_stage("stage.json")
    >>> result = build_scripts(stage, stage.work_units, stage.batch_size, EngineConfig())
    >>> print(result.main_script)
"""

__version__ = "0.1.0"
