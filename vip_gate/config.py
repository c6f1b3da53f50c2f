"""Configuration management - loads vip_gate.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from vip_gate.models import AppConfig, BootstrapSettings

# Environment variables that override secrets from the YAML file
ENV_OVERRIDES = {
    "DATABASE_URL": ("database", "url"),
    "MP_ACCESS_TOKEN": ("gateway", "access_token"),
    "MP_WEBHOOK_SECRET": ("gateway", "webhook_secret"),
    "MP_NOTIFICATION_URL": ("gateway", "notification_url"),
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token"),
    "TELEGRAM_WEBHOOK_SECRET": ("telegram", "webhook_secret"),
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads vip_gate.yaml and provides validated access to:
    - Ledger database settings
    - Payment gateway and Telegram credentials
    - Engine timing and retry settings
    - Admin list and bootstrap settings
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to vip_gate.yaml. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/vip_gate.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._app_config: Optional[AppConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/vip_gate.yaml")

    def _load_config(self) -> None:
        """Load and validate the YAML configuration, then apply env overrides."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/vip_gate.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}")

        if raw_config is None:
            raw_config = {}
        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self._config_path}")

        self._apply_env_overrides(raw_config)

        try:
            self._app_config = AppConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}")

    @staticmethod
    def _apply_env_overrides(raw_config: dict) -> None:
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                section_data = raw_config.get(section) or {}
                section_data[key] = value
                raw_config[section] = section_data

    @property
    def app(self) -> AppConfig:
        """Get validated application configuration."""
        if self._app_config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._app_config

    @property
    def config_path(self) -> Path:
        return self._config_path

    @property
    def database(self):
        return self.app.database

    @property
    def gateway(self):
        return self.app.gateway

    @property
    def telegram(self):
        return self.app.telegram

    @property
    def engine(self):
        return self.app.engine

    @property
    def bootstrap_settings(self) -> Optional[BootstrapSettings]:
        return self.app.bootstrap_settings

    def is_admin(self, subject_id: str) -> bool:
        """Whether a subject may run admin commands."""
        return str(subject_id) in {str(a) for a in self.app.admins}

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()


def reset_config() -> None:
    """Drop the global configuration instance (tests)."""
    global _config_instance
    _config_instance = None
