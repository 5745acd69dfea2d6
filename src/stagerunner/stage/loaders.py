"""
Loading and parsing stage and engine configuration files.

Stage descriptions and engine configuration are JSON documents read from a
filesystem path or fetched from an HTTP(S) URL, then parsed into Pydantic
models.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
import json

import httpx

from .models import EngineConfig, StageSpec


def fetch_json(url: str, *, timeout: float = 10.0) -> dict[str, Any]:
    """
    Fetch JSON from URL.

    Parameters:
        url: HTTP(S) URL to fetch
        timeout: Request timeout in seconds

    Returns:
        Parsed JSON as dictionary

    Raises:
        httpx.HTTPError: If request fails
        json.JSONDecodeError: If response is not valid JSON
    """
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        resp = client.get(url)
        resp.raise_for_status()
        return resp.json()


def load_json(path_or_url: str) -> dict[str, Any]:
    """
    Load JSON from file path or URL.

    Input starting with http:// or https:// is fetched; anything else is
    read as a filesystem path.

    Parameters:
        path_or_url: File path or URL

    Returns:
        Parsed JSON as dictionary

    Raises:
        FileNotFoundError: If file path doesn't exist
        httpx.HTTPError: If URL fetch fails
        json.JSONDecodeError: If JSON is invalid
    """
    if path_or_url.startswith("http://") or path_or_url.startswith("https://"):
        return fetch_json(path_or_url)

    p = Path(path_or_url).expanduser()
    return json.loads(p.read_text(encoding="utf-8"))


def parse_stage(data: dict[str, Any]) -> StageSpec:
    """
    Parse stage dict into Pydantic model.

    Raises:
        pydantic.ValidationError: If JSON doesn't match the stage schema

    Example:
        >>> stage = parse_stage({"name": "Trimmer", "stage_dir": "p/01_Trimmer", "index": 1})
        >>> stage.execution_mode
        <ExecutionMode.LOCAL: 'local'>
    """
    return StageSpec.model_validate(data)


def parse_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse engine configuration dict into Pydantic model.

    Raises:
        pydantic.ValidationError: If JSON doesn't match the configuration schema
    """
    return EngineConfig.model_validate(data)


def load_stage(path_or_url: str) -> StageSpec:
    """
    Load and parse a stage description from path or URL.

    Relative stage_dir values are made absolute against the current working
    directory, not the stage file.

    Parameters:
        path_or_url: File path or URL to stage JSON

    Returns:
        StageSpec model

    Raises:
        FileNotFoundError: If file path doesn't exist
        httpx.HTTPError: If URL fetch fails
        json.JSONDecodeError: If JSON is invalid
        pydantic.ValidationError: If JSON doesn't match the stage schema
    """
    return parse_stage(load_json(path_or_url))


def load_config(path_or_url: str | None) -> EngineConfig:
    """
    Load engine configuration, or return defaults when no source is given.

    Parameters:
        path_or_url: File path or URL to configuration JSON, or None

    Returns:
        EngineConfig model
    """
    if path_or_url is None:
        return EngineConfig()
    return parse_config(load_json(path_or_url))
