"""Default constants and configuration values for wabridge."""

from .config import DEFAULT_SERVICE_CONFIG, ServiceConfig, config_from_env

__all__ = ["DEFAULT_SERVICE_CONFIG", "ServiceConfig", "config_from_env"]
