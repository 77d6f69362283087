"""Tests for settings loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from vector_sync.core.config import DEFAULT_CONTENT_FIELDS, Settings


def test_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("VSYNC_DB_PATH")
    settings = Settings.from_yaml(tmp_path / "absent.yaml")
    assert settings.vector_dimensions == 1536
    assert settings.batch_size == 50
    assert settings.sweep_interval_seconds == 10800
    assert settings.insert_settle_delay_ms == 1000
    assert settings.content_fields == DEFAULT_CONTENT_FIELDS


def test_yaml_then_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        """
storage:
  db_path: ~/data/sync.db
embeddings:
  dimensions: 768
monitor:
  batch_size: 10
  interval_seconds: 60
sync:
  content_fields: [nombre, descripcion]
""",
        encoding="utf-8",
    )
    monkeypatch.delenv("VSYNC_DB_PATH")
    monkeypatch.setenv("VSYNC_BATCH_SIZE", "25")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    settings = Settings.from_yaml(config)

    assert settings.db_path == Path("~/data/sync.db").expanduser()
    assert settings.vector_dimensions == 768
    assert settings.batch_size == 25
    assert settings.sweep_interval_seconds == 60
    assert settings.content_fields == ["nombre", "descripcion"]
    assert settings.openai_api_key == "sk-test"


def test_config_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "alt.yaml"
    config.write_text("webhook:\n  timeout_seconds: 5\n", encoding="utf-8")
    monkeypatch.setenv("VSYNC_CONFIG", str(config))
    monkeypatch.setenv("VSYNC_CONTENT_FIELDS", "nombre, ubicacion.comuna")

    settings = Settings.from_yaml()

    assert settings.webhook_timeout_seconds == 5
    assert settings.content_fields == ["nombre", "ubicacion.comuna"]
    assert settings.db_path.name == "service.db"


def test_rejects_unknown_provider(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        Settings(db_path=tmp_path / "db.sqlite", embedding_provider="cohere")
