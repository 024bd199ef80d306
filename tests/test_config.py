"""Tests for layered client configuration."""

from __future__ import annotations

import stat
import sys

import pytest

from parley.config import ENV_KEYS, load_config, load_defaults, save_config, update_config
from parley.errors import StoreError
from parley.schemas.config import ClientConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's own settings out of the tests."""
    for env_var in [*ENV_KEYS.values(), "OPENAI_API_KEY"]:
        monkeypatch.delenv(env_var, raising=False)


# ── Defaults ───────────────────────────────────────────────────────


class TestDefaults:
    def test_packaged_defaults(self, tmp_path):
        config = load_config(config_file=tmp_path / "absent.env")
        assert config.base_url == "https://api.openai.com/v1"
        assert config.model == "gpt-3.5-turbo"
        assert config.api_key == ""
        assert config.timeout == 120
        assert config.db_path == "~/.parley/parley.db"

    def test_missing_defaults_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_defaults(tmp_path / "nope.toml")


# ── Layering ───────────────────────────────────────────────────────


class TestLayering:
    def test_config_file_overrides_defaults(self, tmp_path):
        path = tmp_path / "config.env"
        path.write_text(
            "# comment\nPARLEY_MODEL=llama3\nPARLEY_BASE_URL='http://localhost:11434/v1'\n"
        )
        config = load_config(config_file=path)
        assert config.model == "llama3"
        assert config.base_url == "http://localhost:11434/v1"

    def test_environment_overrides_config_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.env"
        path.write_text("PARLEY_MODEL=llama3\n")
        monkeypatch.setenv("PARLEY_MODEL", "gpt-4o")
        assert load_config(config_file=path).model == "gpt-4o"

    def test_openai_key_fallback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-fallback")
        assert load_config(config_file=tmp_path / "absent.env").api_key == "sk-fallback"

    def test_parley_key_wins_over_fallback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-fallback")
        monkeypatch.setenv("PARLEY_API_KEY", "sk-parley")
        assert load_config(config_file=tmp_path / "absent.env").api_key == "sk-parley"

    def test_timeout_coerced_to_int(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PARLEY_TIMEOUT", "45")
        assert load_config(config_file=tmp_path / "absent.env").timeout == 45


# ── Save / Update ──────────────────────────────────────────────────


class TestSaveAndUpdate:
    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "sub" / "config.env"
        config = ClientConfig(model="llama3", api_key="sk-secret")
        save_config(config, path)
        loaded = load_config(config_file=path)
        assert loaded.model == "llama3"
        assert loaded.api_key == "sk-secret"

    def test_save_skips_empty_values(self, tmp_path):
        path = tmp_path / "config.env"
        save_config(ClientConfig(), path)
        assert "PARLEY_API_KEY" not in path.read_text()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_save_restricts_permissions(self, tmp_path):
        path = save_config(ClientConfig(api_key="sk-secret"), tmp_path / "config.env")
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_save_to_unwritable_location(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StoreError, match="Could not save settings") as exc_info:
            save_config(ClientConfig(), blocker / "config.env")
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_update_returns_new_record(self):
        original = ClientConfig()
        updated = update_config(original, "model", "gpt-4o")
        assert updated.model == "gpt-4o"
        assert original.model == "gpt-3.5-turbo"

    def test_update_unknown_key(self):
        with pytest.raises(KeyError):
            update_config(ClientConfig(), "colour", "blue")

    def test_update_invalid_timeout(self):
        with pytest.raises(ValueError):
            update_config(ClientConfig(), "timeout", "soon")


class TestMaskedApiKey:
    def test_not_set(self):
        assert ClientConfig().masked_api_key() == "(not set)"

    def test_short_key(self):
        assert ClientConfig(api_key="abcd").masked_api_key() == "****"

    def test_long_key_shows_last_four(self):
        masked = ClientConfig(api_key="sk-1234567890wxyz").masked_api_key()
        assert masked == "********wxyz"
        assert "1234" not in masked
