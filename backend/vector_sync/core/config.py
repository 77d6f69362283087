"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "VSYNC_"
DEFAULT_CONFIG_PATH = Path("~/.config/vector-sync/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "api_key"): "openai_api_key",
    ("embeddings", "dimensions"): "vector_dimensions",
    ("embeddings", "max_content_length"): "max_content_length",
    ("embeddings", "cost_per_1k_tokens"): "embedding_cost_per_1k_tokens",
    ("sync", "fetch_max_attempts"): "fetch_max_attempts",
    ("sync", "webhook_fetch_max_attempts"): "webhook_fetch_max_attempts",
    ("sync", "content_fields"): "content_fields",
    ("monitor", "batch_size"): "batch_size",
    ("monitor", "interval_seconds"): "sweep_interval_seconds",
    ("monitor", "auto_start"): "auto_start_monitor",
    ("webhook", "timeout_seconds"): "webhook_timeout_seconds",
    ("webhook", "insert_settle_delay_ms"): "insert_settle_delay_ms",
}

DEFAULT_CONTENT_FIELDS = [
    "nombre",
    "descripcion",
    "caracteristicas",
    "ubicacion.direccion",
    "ubicacion.comuna",
    "ubicacion.region",
]


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".vector-sync" / "vsync.db")
    embedding_provider: str = "hashed"
    embedding_model: str = "text-embedding-ada-002"
    openai_api_key: str | None = None
    vector_dimensions: int = Field(default=1536, gt=0)
    max_content_length: int = Field(default=8192, gt=0)
    embedding_cost_per_1k_tokens: float = 0.0001
    fetch_max_attempts: int = Field(default=3, ge=1)
    webhook_fetch_max_attempts: int = Field(default=5, ge=1)
    content_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_CONTENT_FIELDS))
    batch_size: int = Field(default=50, ge=1)
    sweep_interval_seconds: float = Field(default=3 * 60 * 60, gt=0)
    auto_start_monitor: bool = False
    webhook_timeout_seconds: float = Field(default=30.0, gt=0)
    insert_settle_delay_ms: int = Field(default=1000, ge=0)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @field_validator("embedding_provider")
    @classmethod
    def _check_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"hashed", "openai"}:
            raise ValueError(f"Unsupported embedding provider: {value!r}")
        return normalized

    @field_validator("content_fields", mode="before")
    @classmethod
    def _split_fields(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with VSYNC_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    api_key = os.environ.get("OPENAI_API_KEY")
    if api_key:
        overrides["openai_api_key"] = api_key
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings", "DEFAULT_CONTENT_FIELDS"]
