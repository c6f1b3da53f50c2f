"""Tests for configuration loading and management."""

from decimal import Decimal
from pathlib import Path

import pytest

from vip_gate.config import (
    ENV_OVERRIDES,
    Config,
    ConfigurationError,
    get_config,
    reload_config,
    reset_config,
)

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "config" / "vip_gate.yaml"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment variables out of the loaded configuration."""
    for name in list(ENV_OVERRIDES) + ["CONFIG_PATH"]:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    """Create a Config instance from the shipped example file."""
    return Config(str(EXAMPLE_CONFIG))


def write_config(tmp_path, text):
    path = tmp_path / "vip_gate.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestConfigurationLoading:
    """Test basic configuration loading."""

    def test_example_config_loads(self, config):
        """The shipped example file is valid."""
        assert config.config_path == EXAMPLE_CONFIG
        assert config.engine.intent_ttl_minutes > 0
        assert config.gateway.base_url.startswith("https://")

    def test_example_bootstrap_settings(self, config):
        bootstrap = config.bootstrap_settings
        assert bootstrap is not None
        assert bootstrap.group_id.startswith("-100")
        assert bootstrap.recurring_price == Decimal("29.90")

    def test_empty_file_uses_defaults(self, tmp_path):
        """An empty file yields default sections."""
        config = Config(write_config(tmp_path, ""))

        assert config.database.url.startswith("sqlite")
        assert config.engine.gate_retry_attempts == 3
        assert config.bootstrap_settings is None
        assert config.app.admins == []

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, "admins: [1]\n")
        monkeypatch.setenv("CONFIG_PATH", path)

        assert Config().config_path == Path(path)


class TestConfigurationErrors:
    """Test invalid configuration handling."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            Config(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError, match="parse YAML"):
            Config(write_config(tmp_path, "engine: [unclosed\n"))

    def test_root_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError, match="mapping"):
            Config(write_config(tmp_path, "- just\n- a list\n"))

    def test_validation_error(self, tmp_path):
        with pytest.raises(ConfigurationError, match="validation failed"):
            Config(write_config(tmp_path, "engine:\n  intent_ttl_minutes: 0\n"))


class TestEnvironmentOverrides:
    """Secrets from the environment win over the YAML file."""

    def test_overrides_apply(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, "gateway:\n  access_token: from-file\n")
        monkeypatch.setenv("MP_ACCESS_TOKEN", "from-env")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:ABC")
        monkeypatch.setenv("DATABASE_URL", "sqlite://")

        config = Config(path)

        assert config.gateway.access_token == "from-env"
        assert config.telegram.bot_token == "123:ABC"
        assert config.database.url == "sqlite://"

    def test_reload_picks_up_changes(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, "")
        config = Config(path)
        monkeypatch.setenv("MP_WEBHOOK_SECRET", "s3cret")

        config.reload()

        assert config.gateway.webhook_secret == "s3cret"


class TestAdmins:
    def test_is_admin_accepts_ints_and_strings(self, tmp_path):
        config = Config(write_config(tmp_path, "admins: [7, '8']\n"))

        assert config.is_admin("7")
        assert config.is_admin(8)
        assert not config.is_admin("9")


class TestGlobalConfig:
    def test_get_config_is_singleton(self):
        first = get_config(str(EXAMPLE_CONFIG))
        second = get_config()

        assert first is second

    def test_reload_config_refreshes_global(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONFIG_PATH", write_config(tmp_path, "admins: [1]\n"))
        config = get_config()
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:ABC")

        reload_config()

        assert get_config() is config
        assert config.telegram.bot_token == "123:ABC"
