"""Tests for settings resolution: defaults, config.json, environment."""

import json

import pytest
from pydantic import ValidationError

from voiceforge.config import get_config, update_config


def test_defaults_when_nothing_stored(tmp_path):
    settings = get_config(tmp_path, env={})
    assert settings.data_dir == tmp_path
    assert settings.llm.model == "gpt-4o"
    assert settings.llm.max_retries == 3
    assert "robust solution" in settings.validation.hard_reject_phrases
    assert "robust" not in settings.validation.corporate_substitutions


def test_stored_config_merged(tmp_path):
    (tmp_path / "config.json").write_text(json.dumps({"llm": {"model": "local-7b"}}))
    settings = get_config(tmp_path, env={})
    assert settings.llm.model == "local-7b"
    assert settings.llm.timeout == 60.0


def test_env_overrides_stored(tmp_path):
    (tmp_path / "config.json").write_text(json.dumps({"llm": {"model": "local-7b"}}))
    settings = get_config(tmp_path, env={
        "LLM_MODEL": "gpt-4o-mini",
        "LLM_API_KEY": "sk-test",
        "LLM_TIMEOUT": "5",
    })
    assert settings.llm.model == "gpt-4o-mini"
    assert settings.llm.api_key == "sk-test"
    assert settings.llm.timeout == 5.0


def test_data_dir_from_env(tmp_path):
    settings = get_config(env={"VOICEFORGE_DATA_DIR": str(tmp_path)})
    assert settings.data_dir == tmp_path


def test_update_config_partial_merge(tmp_path):
    update_config(tmp_path, {"llm": {"model": "a"}})
    update_config(tmp_path, {"llm": {"timeout": 10}, "validation": {"expect_numbers": False}})

    settings = get_config(tmp_path, env={})
    assert settings.llm.model == "a"
    assert settings.llm.timeout == 10
    assert settings.validation.expect_numbers is False
    assert settings.validation.corporate_denylist


def test_update_config_ignores_unknown_sections(tmp_path):
    update_config(tmp_path, {"theme": "dark"})
    assert json.loads((tmp_path / "config.json").read_text()) == {}


def test_invalid_update_not_written(tmp_path):
    update_config(tmp_path, {"llm": {"model": "a"}})
    with pytest.raises(ValidationError):
        update_config(tmp_path, {"llm": {"timeout": "not a number"}})
    assert json.loads((tmp_path / "config.json").read_text()) == {"llm": {"model": "a"}}


def test_update_config_keeps_env_overrides(tmp_path):
    settings = update_config(
        tmp_path, {"validation": {"expect_numbers": False}}, env={"LLM_API_KEY": "sk-from-env"},
    )
    assert settings.llm.api_key == "sk-from-env"
    assert settings.validation.expect_numbers is False
    assert "api_key" not in json.loads((tmp_path / "config.json").read_text()).get("llm", {})


def test_update_config_reads_process_env_by_default(tmp_path, monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "sk-from-env")
    settings = update_config(tmp_path, {"validation": {"expect_numbers": False}})
    assert settings.llm.api_key == "sk-from-env"
