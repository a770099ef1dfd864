"""Helpers for working with the project configuration file."""

from __future__ import annotations

import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_PATH = Path("config.yaml")

DEFAULT_BASE_URL = "https://ftp.ncbi.nlm.nih.gov/pubmed/baseline"
DEFAULT_FILE_PREFIX = "pubmed24n"
DEFAULT_FILE_COUNT = 1219
DEFAULT_PROCESSES = 10
DEFAULT_KEYWORDS = ("cancer", "oncology", "tumor")


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded or validated."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SourceSettings(_Section):
    base_url: str = DEFAULT_BASE_URL
    file_prefix: str = DEFAULT_FILE_PREFIX
    checksum_suffix: str = "md5"


class PathSettings(_Section):
    output_dir: Path = Path(".")
    staging_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "pubmed_ingest"
    )


class NetworkSettings(_Section):
    timeout_seconds: float = Field(default=60.0, gt=0)
    chunk_size: int = Field(default=64 * 1024, gt=0)


class FilterSettings(_Section):
    keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_KEYWORDS))


class RunSettings(_Section):
    processes: int = Field(default=DEFAULT_PROCESSES, ge=1)
    file_count: int = Field(default=DEFAULT_FILE_COUNT, ge=0)


class IngestSettings(_Section):
    """Validated view of ``config.yaml``."""

    source: SourceSettings = Field(default_factory=SourceSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    filter: FilterSettings = Field(default_factory=FilterSettings)
    run: RunSettings = Field(default_factory=RunSettings)


def load_config(path: Path | str = CONFIG_PATH) -> dict[str, Any]:
    """Load the YAML configuration, returning an empty mapping when absent."""
    config_path = Path(path)
    if not config_path.exists():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {config_path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"{config_path} must contain a mapping at the top level.")
    return dict(data)


def build_settings(
    raw: Mapping[str, Any], overrides: Mapping[str, Any] | None = None
) -> IngestSettings:
    """Validate raw configuration, applying dotted-key overrides such as
    ``{"paths.output_dir": "out"}``. ``None`` override values are ignored."""
    merged: dict[str, Any] = {
        key: dict(value) if isinstance(value, Mapping) else value
        for key, value in raw.items()
    }
    for dotted_key, value in (overrides or {}).items():
        if value is None:
            continue
        section, _, name = dotted_key.partition(".")
        target = merged.setdefault(section, {})
        if not isinstance(target, dict):
            raise ConfigError(f"Configuration section '{section}' must be a mapping.")
        target[name] = value

    try:
        return IngestSettings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def load_settings(
    path: Path | str = CONFIG_PATH, overrides: Mapping[str, Any] | None = None
) -> IngestSettings:
    """Load and validate settings from ``path``."""
    return build_settings(load_config(path), overrides)
