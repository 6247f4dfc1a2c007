"""Tests for settings loading and IndexConfig validation."""

from __future__ import annotations

import pytest

from metavss.config import IndexConfig, load_settings
from metavss.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("METAVSS_EMBEDDING_MODEL_PATH", "METAVSS_EMBEDDING_DIM", "METAVSS_LSH_SEED"):
        monkeypatch.delenv(name, raising=False)


def test_missing_model_path_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="METAVSS_EMBEDDING_MODEL_PATH"):
        load_settings(_env_file=None)


def test_blank_model_path_is_a_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METAVSS_EMBEDDING_MODEL_PATH", "   ")
    with pytest.raises(ConfigurationError):
        load_settings(_env_file=None)


def test_settings_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METAVSS_EMBEDDING_MODEL_PATH", "/models/cc.en.300.vec")
    monkeypatch.setenv("METAVSS_EMBEDDING_DIM", "64")
    monkeypatch.setenv("METAVSS_LSH_SEED", "42")

    settings = load_settings(_env_file=None)

    assert settings.EMBEDDING_MODEL_PATH == "/models/cc.en.300.vec"
    cfg = settings.index_config()
    assert cfg.dimension == 64
    assert cfg.seed == 42
    assert cfg.table_count == settings.LSH_TABLE_COUNT


def test_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METAVSS_EMBEDDING_MODEL_PATH", "/models/a.vec")
    settings = load_settings(_env_file=None, DATABASE_PATH="other.db")
    assert settings.DATABASE_PATH == "other.db"


def test_invalid_value_is_a_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METAVSS_EMBEDDING_MODEL_PATH", "/models/a.vec")
    monkeypatch.setenv("METAVSS_EMBEDDING_DIM", "not-a-number")
    with pytest.raises(ConfigurationError):
        load_settings(_env_file=None)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"dimension": 0},
        {"table_count": 0},
        {"hashes_per_table": 0},
        {"hashes_per_table": 65},
        {"candidate_multiplier": 0},
    ],
)
def test_index_config_rejects_bad_parameters(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        IndexConfig(**kwargs)


def test_index_config_defaults() -> None:
    cfg = IndexConfig()
    assert cfg.dimension == 300
    assert 0 < cfg.hashes_per_table <= 64
