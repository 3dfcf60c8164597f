"""Tests for translator configuration."""

import json
from unittest.mock import patch

import pytest

from esp_translator.config import HistoryConfig, ModelConfig, OrchestratorConfig, TranslatorConfig


class TestDefaults:
    def test_orchestrator_defaults(self):
        config = OrchestratorConfig()
        assert config.max_iterations == 50
        assert (config.min_budget, config.max_budget) == (8, 30)
        assert (config.items_per_lookup, config.chars_per_lookup) == (4, 600)
        assert config.reference_limit == 5
        assert config.max_candidates == 3

    def test_history_default_cap(self):
        assert HistoryConfig().max_size == 30

    def test_model_env_overrides(self):
        with patch.dict("os.environ", {"ESP_TRANSLATOR_MODEL": "claude-sonnet-4", "ESP_TRANSLATOR_TEMPERATURE": "0.3"}):
            config = ModelConfig()
        assert config.model_name == "claude-sonnet-4"
        assert config.temperature == pytest.approx(0.3)


class TestLoadSave:
    """JSON persistence."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = TranslatorConfig.load(tmp_path / "missing.json")
        assert config.orchestrator.max_iterations == 50

    def test_round_trip_without_api_key(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = TranslatorConfig()
        config.model.api_key = "sk-secret"
        config.model.base_url = "http://localhost:8000/v1"
        config.orchestrator.max_iterations = 12
        config.history.max_size = 5

        config.save(path)

        assert "sk-secret" not in path.read_text(encoding="utf-8")
        loaded = TranslatorConfig.load(path)
        assert loaded.model.api_key is None
        assert loaded.model.base_url == "http://localhost:8000/v1"
        assert loaded.orchestrator.max_iterations == 12
        assert loaded.history.max_size == 5

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps({"orchestrator": {"max_budget": 20, "legacy_option": True}, "ui": {"theme": "dark"}}),
            encoding="utf-8",
        )

        config = TranslatorConfig.load(path)
        assert config.orchestrator.max_budget == 20
