"""Configuration management for the ITR filing wizard."""

import json
import os
from pathlib import Path
from typing import Any

import keyring

APP_NAME = "itr-filing-wizard"
DEFAULT_CONFIG_DIR = Path.home() / ".itr-wizard"

KEYRING_SERVICE = "itr-filing-wizard"
KEYRING_API_KEY = "filing-service-api-key"

ENV_CONFIG_DIR = "ITR_WIZARD_CONFIG_DIR"
ENV_API_KEY = "ITR_WIZARD_API_KEY"
ENV_SERVICE_URL = "ITR_WIZARD_SERVICE_URL"

DEFAULT_SERVICE_URL = "http://localhost:5201"


class Config:
    """Manages application configuration."""

    def __init__(self, config_dir: Path | None = None):
        env_dir = os.environ.get(ENV_CONFIG_DIR)
        self.config_dir = config_dir or (Path(env_dir) if env_dir else DEFAULT_CONFIG_DIR)
        self.config_file = self.config_dir / "config.json"
        self.data_dir = self.config_dir / "data"
        self._config: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from file."""
        if self.config_file.exists():
            with open(self.config_file) as f:
                self._config = {**self._default_config(), **json.load(f)}
        else:
            self._config = self._default_config()

    def _save(self) -> None:
        """Save configuration to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            json.dump(self._config, f, indent=2)

    def _default_config(self) -> dict[str, Any]:
        """Return default configuration."""
        return {
            "service_base_url": DEFAULT_SERVICE_URL,
            "service_timeout": 30.0,
            "financial_year": "2024-25",
            "assessment_year": "2025-26",
            "storage_namespace": "itr_wizard",
            "default_age": 30,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value."""
        self._config[key] = value
        self._save()

    def get_api_key(self) -> str | None:
        """Get the filing service API key from environment or keyring."""
        env_key = os.environ.get(ENV_API_KEY)
        if env_key:
            return env_key
        return keyring.get_password(KEYRING_SERVICE, KEYRING_API_KEY)

    def set_api_key(self, api_key: str) -> None:
        """Store the filing service API key in the system keyring."""
        keyring.set_password(KEYRING_SERVICE, KEYRING_API_KEY, api_key)

    def clear_api_key(self) -> None:
        """Remove the filing service API key from the keyring."""
        try:
            keyring.delete_password(KEYRING_SERVICE, KEYRING_API_KEY)
        except keyring.errors.PasswordDeleteError:
            pass

    @property
    def service_base_url(self) -> str:
        """Base URL of the calculation and generation service."""
        return os.environ.get(ENV_SERVICE_URL) or self._config.get(
            "service_base_url", DEFAULT_SERVICE_URL
        )

    @service_base_url.setter
    def service_base_url(self, url: str) -> None:
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid service URL: {url}")
        self.set("service_base_url", url.rstrip("/"))

    @property
    def service_timeout(self) -> float:
        """Request timeout in seconds for service calls."""
        return float(self._config.get("service_timeout", 30.0))

    @service_timeout.setter
    def service_timeout(self, seconds: float) -> None:
        self.set("service_timeout", max(1.0, float(seconds)))

    @property
    def financial_year(self) -> str:
        """Financial year being filed for, e.g. 2024-25."""
        return self._config.get("financial_year", "2024-25")

    @financial_year.setter
    def financial_year(self, year: str) -> None:
        self.set("financial_year", year)

    @property
    def assessment_year(self) -> str:
        """Assessment year matching the financial year."""
        return self._config.get("assessment_year", "2025-26")

    @assessment_year.setter
    def assessment_year(self, year: str) -> None:
        self.set("assessment_year", year)

    @property
    def storage_namespace(self) -> str:
        """Key prefix for saved wizard progress."""
        return self._config.get("storage_namespace", "itr_wizard")

    @property
    def default_age(self) -> int:
        """Age sent to the calculation service when date of birth is unknown."""
        return int(self._config.get("default_age", 30))

    @property
    def db_path(self) -> Path:
        """Get the local snapshot database path."""
        return self.data_dir / "wizard.db"

    def to_dict(self) -> dict[str, Any]:
        """Return configuration as a dictionary (excluding secrets)."""
        return {k: v for k, v in self._config.items()}


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the cached global configuration so the next call reloads it."""
    global _config
    _config = None
