"""
stagerunner CLI

Commands:
- build: Generate main and worker scripts for a stage
- validate: Check a stage description and its cluster job header
- status: Show sentinel marker status for a stage
- run: Build, execute, and mark a stage complete
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import httpx
import logging
import pydantic
import typer

from stagerunner.errors import StageFailedError, StageRunnerError
from stagerunner.pipeline.builder import build_scripts
from stagerunner.pipeline.runner import DEFAULT_POLL_SECONDS, run_stage
from stagerunner.pipeline.sentinel import (
    StageScope,
    is_complete,
    is_incomplete,
    poll_stage,
    script_errors,
)
from stagerunner.stage import (
    EngineConfig,
    StageSpec,
    load_config,
    load_stage,
    validate_cluster_header,
    validate_stage,
)

app = typer.Typer(add_completion=False, help="Pipeline stage script builder")

STAGE_ARG_HELP = "Stage JSON path or URL"
CONFIG_OPT_HELP = "Engine configuration JSON path or URL"


class JsonFormatter(logging.Formatter):
    """Simple JSON formatter for structured logs."""
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
        }
        # Include any custom attributes passed via `extra=`.
        reserved = {
            "name","msg","args","levelname","levelno","pathname","filename","module",
            "exc_info","exc_text","stack_info","lineno","funcName","created","msecs",
            "relativeCreated","thread","threadName","processName","process","taskName",
        }
        for k, v in record.__dict__.items():
            if k in reserved or k.startswith("_"):
                continue
            try:
                json.dumps(v)
                payload[k] = v
            except TypeError:
                payload[k] = repr(v)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str) -> logging.Logger:
    logger = logging.getLogger("stagerunner")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.handlers[:] = [handler]
    logger.propagate = False
    return logger


def _load(stage_path: str, config_path: str | None) -> tuple[StageSpec, EngineConfig]:
    try:
        return load_stage(stage_path), load_config(config_path)
    except FileNotFoundError as e:
        typer.echo(f"Error: File not found: {e}", err=True)
        raise typer.Exit(code=1)
    except pydantic.ValidationError as e:
        typer.echo(f"Error: Invalid stage or configuration:\n{e}", err=True)
        raise typer.Exit(code=1)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Invalid JSON: {e}", err=True)
        raise typer.Exit(code=1)
    except httpx.HTTPError as e:
        typer.echo(f"Error: Unable to fetch: {e}", err=True)
        raise typer.Exit(code=1)


@app.command("build")
def build_cmd(
    stage_path: str = typer.Argument(..., help=STAGE_ARG_HELP),
    config_path: str | None = typer.Option(None, "--config", "-c", help=CONFIG_OPT_HELP),
    batch_size: int | None = typer.Option(
        None, "--batch-size", help="Override the stage's batch size (0 = single worker script)"
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
) -> None:
    """
    Generate the main script and worker scripts for a stage.

    Example:
        stagerunner build stages/01_Trimmer.json --config engine.json
    """
    setup_logging(log_level)
    stage, config = _load(stage_path, config_path)
    size = stage.batch_size if batch_size is None else batch_size

    try:
        result = build_scripts(stage, stage.work_units, size, config)
    except StageRunnerError as e:
        typer.echo(f"❌ Build failed: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"✅ Built {len(result.worker_scripts)} worker script(s) for {stage.name}")
    typer.echo(f"   Main script: {result.main_script}")
    for path in result.worker_scripts:
        typer.echo(f"   - {path.name}")


@app.command("validate")
def validate_cmd(
    stage_path: str = typer.Argument(..., help=STAGE_ARG_HELP),
    config_path: str | None = typer.Option(None, "--config", "-c", help=CONFIG_OPT_HELP),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
) -> None:
    """Validate a stage description and, for cluster stages, its job header."""
    setup_logging(log_level)
    stage, config = _load(stage_path, config_path)

    issues = validate_stage(stage)
    if issues:
        typer.echo(f"❌ Validation failed: {len(issues)} issue(s)\n")
        for i, issue in enumerate(issues, start=1):
            typer.echo(f"  {i:>3}. {issue.path}: {issue.message}")
        raise typer.Exit(code=2)

    try:
        validate_cluster_header(stage, config)
    except StageRunnerError as e:
        typer.echo(f"❌ Cluster configuration invalid: {e}")
        raise typer.Exit(code=2)

    typer.echo("✅ Validation passed.")


@app.command("status")
def status_cmd(
    stage_path: str = typer.Argument(..., help=STAGE_ARG_HELP),
    show_errors: bool = typer.Option(
        True, "--errors/--no-errors", help="Print lines from _FAILURES files"
    ),
) -> None:
    """Show sentinel marker status for a stage's scripts."""
    stage, _ = _load(stage_path, None)
    scope = StageScope(stage.stage_dir)
    status = poll_stage(stage)

    if is_complete(scope):
        state = "complete"
    elif is_incomplete(scope):
        state = "incomplete"
    else:
        state = "not started"

    typer.echo(f"📊 {stage.name}: {state}")
    typer.echo(f"  {status.describe()}")

    if show_errors:
        errors = script_errors(stage)
        if errors:
            typer.echo(f"\n❌ Failures ({len(errors)}):")
            for line in errors:
                typer.echo(f"  - {line}")

    if status.failed or status.main_failed:
        raise typer.Exit(code=1)


@app.command("run")
def run_cmd(
    stage_path: str = typer.Argument(..., help=STAGE_ARG_HELP),
    config_path: str | None = typer.Option(None, "--config", "-c", help=CONFIG_OPT_HELP),
    poll_seconds: float = typer.Option(
        DEFAULT_POLL_SECONDS, "--poll-seconds", help="Delay between status polls for cluster stages"
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
) -> None:
    """
    Build a stage's scripts, run its main script, and mark it complete.

    Example:
        stagerunner run stages/01_Trimmer.json --config engine.json
    """
    setup_logging(log_level)
    stage, config = _load(stage_path, config_path)

    try:
        status = run_stage(stage, config, poll_seconds=poll_seconds)
    except StageFailedError as e:
        typer.echo(f"❌ {e}", err=True)
        for line in e.errors:
            typer.echo(f"  - {line}", err=True)
        raise typer.Exit(code=1)
    except StageRunnerError as e:
        typer.echo(f"❌ Run failed: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"✅ {stage.name} complete ({status.describe()})")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
