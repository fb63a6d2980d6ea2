"""Tests for snippets.toml configuration."""

import pytest

from snippets.config import (
    CONFIG_FILENAME,
    SnippetsConfig,
    get_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("SNIPPETS_HOME", "OPENCLAW_GATEWAY_URL", "OPENCLAW_HOOKS_TOKEN", "SNIPPETS_CALLBACK_URL"):
        monkeypatch.delenv(name, raising=False)


class TestLoadOrCreate:
    def test_creates_defaults(self, tmp_path):
        """Should write a config with default tables on first use."""
        config = load_or_create_config(tmp_path)

        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.notes_path == tmp_path / "notes"
        assert config.jobs_path == tmp_path / ".agent" / "agent-jobs.json"
        assert config.connections_path == tmp_path / ".agent" / "connections.json"
        assert config.icons_path == tmp_path / ".agent" / "folder-icons.json"
        assert config.pending_path == tmp_path / ".agent" / "pending"
        assert config.agent.gateway_url == "http://localhost:18789"
        assert config.agent.hooks_token is None
        assert config.jobs.cooldown_seconds == 60
        assert config.jobs.timeout_seconds == 300
        assert config.jobs.stale_seconds == 600
        assert config.jobs.sweep_interval == 300

    def test_roundtrip(self, tmp_path):
        """Saved values load back unchanged."""
        config = SnippetsConfig(path=tmp_path, notes_dir="n", default_folder="capture")
        config.agent.model = "codex"
        config.jobs.timeout_seconds = 120
        save_config(config)

        loaded = load_config(tmp_path)
        assert loaded.notes_dir == "n"
        assert loaded.default_folder == "capture"
        assert loaded.agent.model == "codex"
        assert loaded.jobs.timeout_seconds == 120
        assert loaded.created == config.created

    def test_token_never_written(self, tmp_path):
        """The hooks token never reaches the config file."""
        config = SnippetsConfig(path=tmp_path)
        config.agent.hooks_token = "secret"
        save_config(config)
        assert "secret" not in (tmp_path / CONFIG_FILENAME).read_text()

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Environment variables win over the file."""
        monkeypatch.setenv("OPENCLAW_GATEWAY_URL", "https://agent.example.com")
        monkeypatch.setenv("OPENCLAW_HOOKS_TOKEN", "tok")
        monkeypatch.setenv("SNIPPETS_CALLBACK_URL", "https://notes.example.com")

        config = load_or_create_config(tmp_path)
        assert config.agent.gateway_url == "https://agent.example.com"
        assert config.agent.hooks_token == "tok"
        assert config.agent.callback_base_url == "https://notes.example.com"

    def test_unknown_keys_ignored(self, tmp_path):
        """Unknown keys in a table are ignored."""
        (tmp_path / CONFIG_FILENAME).write_text(
            "[store]\nversion = 1\n\n[jobs]\ntimeout_seconds = 90\nbogus = true\n"
        )
        assert load_config(tmp_path).jobs.timeout_seconds == 90


class TestErrors:
    def test_missing(self, tmp_path):
        """Loading a store without config raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version(self, tmp_path):
        """A config from a newer release is refused."""
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer than supported"):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path):
        """Broken TOML raises ValueError."""
        (tmp_path / CONFIG_FILENAME).write_text("[store\n")
        with pytest.raises(ValueError, match="Invalid config"):
            load_config(tmp_path)


class TestStorePath:
    def test_override(self, tmp_path):
        """An explicit path wins."""
        assert get_store_path(tmp_path) == tmp_path.resolve()

    def test_env(self, tmp_path, monkeypatch):
        """SNIPPETS_HOME is used when set."""
        monkeypatch.setenv("SNIPPETS_HOME", str(tmp_path))
        assert get_store_path() == tmp_path.resolve()

    def test_default(self, monkeypatch, tmp_path):
        """The default store lives in the home directory."""
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_store_path() == tmp_path / ".snippets"
