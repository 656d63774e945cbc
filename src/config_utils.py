"""Helpers for working with the project configuration file and environment."""

from __future__ import annotations

import os
import re
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.errors import ConfigurationError
from src.schema import Provider

CONFIG_PATH = Path("config.yaml")

DEFAULT_OUTPUT_DIR = Path("data/outputs")
DEFAULT_RETRY_BASE_MS = 1000
DEFAULT_RETRY_CAP_MS = 10000
DEFAULT_CHECKPOINT_EVERY = 10
DEFAULT_REQUEST_TIMEOUT = 300.0
DEFAULT_MAX_FILE_BYTES = 50 * 1024 * 1024

API_KEY_ENV_VARS: dict[Provider, str] = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.GEMINI: "GEMINI_API_KEY",
}

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class PipelineSettings(BaseModel):
    """Tunables that are not exposed as CLI flags."""

    model_config = ConfigDict(extra="forbid")

    output_dir: Path = DEFAULT_OUTPUT_DIR
    retry_base_ms: int = Field(default=DEFAULT_RETRY_BASE_MS, ge=0)
    retry_cap_ms: int = Field(default=DEFAULT_RETRY_CAP_MS, ge=0)
    checkpoint_every: int = Field(default=DEFAULT_CHECKPOINT_EVERY, ge=1)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    max_file_bytes: int = Field(default=DEFAULT_MAX_FILE_BYTES, gt=0)
    file_extensions: list[str] = Field(default_factory=lambda: [".pdf"])
    openai_base_url: str = "https://api.openai.com/v1"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    ollama_host: str | None = None


def load_config(path: Path | str = CONFIG_PATH) -> dict[str, Any]:
    """Load the YAML configuration, returning an empty mapping if it is absent."""
    config_path = Path(path)
    if not config_path.exists():
        return {}
    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Configuration file {config_path} must be a mapping")
    return dict(data)


def resolve_settings(config: Mapping[str, Any] | None = None) -> PipelineSettings:
    """Validate the ``pipeline`` section of the configuration."""
    section = (config or {}).get("pipeline") or {}
    try:
        return PipelineSettings.model_validate(section)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid pipeline configuration: {exc}") from exc


def resolve_api_key(
    provider: Provider, environ: Mapping[str, str] | None = None
) -> str | None:
    """Return the credential for ``provider``; raise when a required one is missing."""
    env = os.environ if environ is None else environ
    variable = API_KEY_ENV_VARS.get(provider)
    if variable is None:
        return None
    value = env.get(variable, "").strip()
    if not value:
        raise ConfigurationError(
            f"{variable} environment variable is required for the "
            f"{provider.value} provider"
        )
    return value


def _safe_model_name(model: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", model).strip("_") or "model"


def default_progress_path(settings: PipelineSettings, model: str) -> Path:
    return settings.output_dir / f"progress-{_safe_model_name(model)}.json"


def default_output_path(
    settings: PipelineSettings, model: str, timestamp_ms: int | None = None
) -> Path:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return settings.output_dir / f"results-{_safe_model_name(model)}-{timestamp_ms}.csv"
