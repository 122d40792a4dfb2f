"""
Chart Pipeline - Configuration.

============================================================
CONFIGURABLE SETTINGS
============================================================

- Web-status API endpoint and request behavior
- Logging level and format
- WPT run timestamp rounding

Configuration can be loaded from:
- Default values
- Environment variables (a .env file is honored)
- YAML config file

============================================================
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from chart_pipeline.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """Settings shared by the API client, panels and entry point."""

    # API
    api_base_url: str = "https://api.webstatus.dev"
    request_timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_backoff_base: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    # WPT runs from different browsers land a few minutes apart
    wpt_timestamp_rounding_hours: int = 1

    def __post_init__(self) -> None:
        """Validate settings."""
        if not self.api_base_url:
            raise ConfigurationError("api_base_url must not be empty", config_key="api_base_url")
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError(
                "request_timeout_seconds must be positive",
                config_key="request_timeout_seconds",
            )
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be >= 1", config_key="max_retries")
        if self.log_format not in ("json", "text"):
            raise ConfigurationError("log_format must be 'json' or 'text'", config_key="log_format")
        if self.wpt_timestamp_rounding_hours < 1:
            raise ConfigurationError(
                "wpt_timestamp_rounding_hours must be >= 1",
                config_key="wpt_timestamp_rounding_hours",
            )

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - CHART_API_BASE_URL
        - CHART_REQUEST_TIMEOUT
        - CHART_MAX_RETRIES
        - CHART_LOG_LEVEL
        - CHART_LOG_FORMAT
        """
        load_dotenv()

        kwargs: Dict[str, Any] = {}
        if os.getenv("CHART_API_BASE_URL"):
            kwargs["api_base_url"] = os.getenv("CHART_API_BASE_URL")
        if os.getenv("CHART_REQUEST_TIMEOUT"):
            kwargs["request_timeout_seconds"] = float(os.getenv("CHART_REQUEST_TIMEOUT"))
        if os.getenv("CHART_MAX_RETRIES"):
            kwargs["max_retries"] = int(os.getenv("CHART_MAX_RETRIES"))
        if os.getenv("CHART_LOG_LEVEL"):
            kwargs["log_level"] = os.getenv("CHART_LOG_LEVEL")
        if os.getenv("CHART_LOG_FORMAT"):
            kwargs["log_format"] = os.getenv("CHART_LOG_FORMAT")

        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Path) -> "PipelineConfig":
        """
        Load configuration from a YAML file.

        Unknown keys are ignored with a warning.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot load config from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected a mapping in {path}")

        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {path}: {sorted(unknown)}")

        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "api_base_url": self.api_base_url,
            "request_timeout_seconds": self.request_timeout_seconds,
            "max_retries": self.max_retries,
            "retry_backoff_base": self.retry_backoff_base,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "wpt_timestamp_rounding_hours": self.wpt_timestamp_rounding_hours,
        }


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[PipelineConfig] = None


def get_config() -> PipelineConfig:
    """Get the global pipeline configuration."""
    global _default_config
    if _default_config is None:
        _default_config = PipelineConfig.from_env()
    return _default_config


def set_config(config: PipelineConfig) -> None:
    """Set the global pipeline configuration."""
    global _default_config
    _default_config = config
