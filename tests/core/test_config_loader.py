import json
import logging
from pathlib import Path

import pytest

from src.screener.core.config_loader import (
    clear_config_cache,
    get_default_model,
    get_model_config,
    get_provider_config,
    get_section,
    load_config,
    load_config_or_empty,
    resolve_config_path,
)
from src.screener.core.logging_setup import ROOT_LOGGER_NAME, configure_logging


def _write_config(path: Path, payload: dict) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


@pytest.fixture()
def sample_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    path = tmp_path / "config.json"
    _write_config(
        path,
        {
            "logging": {"level": "debug"},
            "pipeline": {"pacing_delay_sec": 5},
            "default_model_alias": "screener",
            "models": {"gemini-1.5-flash": {"alias": "screener", "provider": "gemini", "endpoint": "gemini-1.5-flash"}},
            "model_providers": {"gemini": {"apikey": "KEY"}},
        },
    )
    monkeypatch.setenv("SCREENER_CONFIG_PATH", str(path))
    clear_config_cache()
    return path


def test_resolve_config_path_uses_env(sample_config):
    assert resolve_config_path() == sample_config.resolve()


def test_load_config_and_sections(sample_config):
    payload = load_config()
    assert payload["pipeline"]["pacing_delay_sec"] == 5
    assert get_section("pipeline") == {"pacing_delay_sec": 5}
    assert get_section("scheduler") == {}


def test_load_config_cache_invalidates_on_change(sample_config):
    assert get_section("pipeline")["pacing_delay_sec"] == 5
    _write_config(sample_config, {"pipeline": {"pacing_delay_sec": 9}})
    clear_config_cache()
    assert get_section("pipeline")["pacing_delay_sec"] == 9


def test_invalid_json_raises_value_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("SCREENER_CONFIG_PATH", str(path))
    clear_config_cache()
    with pytest.raises(ValueError):
        load_config()
    assert load_config_or_empty() == {}


def test_missing_config_yields_empty_sections(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("SCREENER_CONFIG_PATH", str(tmp_path / "absent.json"))
    clear_config_cache()
    with pytest.raises(FileNotFoundError):
        load_config()
    assert get_section("pipeline") == {}


def test_model_and_provider_resolution(sample_config):
    model_id, model = get_default_model()
    assert model_id == "gemini-1.5-flash"
    assert get_model_config("screener")[0] == "gemini-1.5-flash"
    assert get_model_config("gemini-1.5-flash")[1]["provider"] == "gemini"
    assert get_provider_config("gemini")["apikey"] == "KEY"
    with pytest.raises(ValueError):
        get_provider_config("openai")


def test_configure_logging_reads_level_and_is_idempotent(sample_config):
    logger = configure_logging()
    handlers_before = len(logger.handlers)
    configure_logging()

    assert logger.name == ROOT_LOGGER_NAME
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == handlers_before
    assert configure_logging("warning").level == logging.WARNING
