"""Configuration module for the enrollment client."""

from .logger_config import setup_logging
from .settings import ConfigManager, DeviceConfig, EnrollmentConfig, HikEnrollConfig, LoggingConfig, get_config_manager, get_current_config

__all__ = [
    "HikEnrollConfig",
    "DeviceConfig",
    "EnrollmentConfig",
    "LoggingConfig",
    "ConfigManager",
    "get_config_manager",
    "get_current_config",
    "setup_logging",
]
