"""Tests for the config file helpers."""

import json

from sourcesailor.config import config_path, mask_secret, read_config, update_config, write_config


class TestConfig:
    def test_missing_file_is_empty(self, tmp_path):
        assert read_config(tmp_path / "config.json") == {}

    def test_malformed_file_is_empty(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert read_config(path) == {}
        assert "Failed to read config" in caplog.text

    def test_non_object_is_empty(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('["a"]')
        assert read_config(path) == {}

    def test_write_then_read(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        write_config({"DEFAULT_MODEL": "gpt-4o"}, path)
        assert json.loads(path.read_text()) == {"DEFAULT_MODEL": "gpt-4o"}
        assert read_config(path) == {"DEFAULT_MODEL": "gpt-4o"}

    def test_update_merges_and_skips_empty_values(self, tmp_path):
        path = tmp_path / "config.json"
        write_config({"OPENAI_API_KEY": "sk-old", "ANALYSIS_DIR": "/tmp"}, path)
        config = update_config({"OPENAI_API_KEY": "sk-new", "ANALYSIS_DIR": None, "USER_EXPERTISE": ""}, path)
        assert config == {"OPENAI_API_KEY": "sk-new", "ANALYSIS_DIR": "/tmp"}
        assert read_config(path) == config

    def test_default_location(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert config_path() == tmp_path / ".SourceSailor" / "config.json"

    def test_mask_secret(self):
        assert mask_secret("sk-1234567890abcd") == "sk-1...abcd"
        assert mask_secret("short") == "*****"
