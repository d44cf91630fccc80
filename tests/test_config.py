"""Tests for configuration loading."""

import os

import pytest

from pcd_tool.config import default_config, find_config_file, load_config


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for var in ("PCD_TOOL_CONFIG", "PCD_TOOL_WORKERS", "PCD_TOOL_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    return home


class TestLoadConfig:
    def test_defaults(self):
        config = load_config()
        assert config == default_config()
        assert config["workers"] == (os.cpu_count() or 1)
        assert config["log_level"] == "INFO"
        assert config["progress"] is True

    def test_explicit_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("workers: 3\nlog_level: debug\nprogress: false\nunknown: 1\n")
        config = load_config(path)
        assert config == {"workers": 3, "log_level": "DEBUG", "progress": False}

    def test_home_file(self, isolated_env):
        (isolated_env / ".pcd_tool.yaml").write_text("workers: 2\n")
        assert load_config()["workers"] == 2

    def test_local_file(self, tmp_path):
        (tmp_path / ".pcd_tool.yaml").write_text("log_level: WARNING\n")
        assert load_config()["log_level"] == "WARNING"

    def test_env_config_path(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("workers: 5\n")
        monkeypatch.setenv("PCD_TOOL_CONFIG", str(path))
        assert find_config_file() == path
        assert load_config()["workers"] == 5

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("workers: 3\nlog_level: ERROR\n")
        monkeypatch.setenv("PCD_TOOL_WORKERS", "7")
        monkeypatch.setenv("PCD_TOOL_LOG_LEVEL", "debug")
        config = load_config(path)
        assert config["workers"] == 7
        assert config["log_level"] == "DEBUG"

    def test_malformed_file_ignored(self, tmp_path, caplog):
        path = tmp_path / "broken.yaml"
        path.write_text("workers: [1, 2\n")
        assert load_config(path) == default_config()
        assert "Ignoring config file" in caplog.text

    def test_non_mapping_ignored(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        assert load_config(path) == default_config()

    def test_missing_explicit_file_ignored(self, tmp_path, caplog):
        assert load_config(tmp_path / "nope.yaml") == default_config()
        assert "Ignoring config file" in caplog.text

    def test_invalid_workers(self, monkeypatch):
        monkeypatch.setenv("PCD_TOOL_WORKERS", "many")
        assert load_config()["workers"] == default_config()["workers"]
