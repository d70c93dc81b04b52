"""Configuration management for the enrollment client.

This module provides dataclass based configuration with sensible defaults for
the terminal, and allows environment variable overrides (``HIKENROLL_*``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger


@dataclass
class DeviceConfig:
    """Timeouts and probe settings for talking to a terminal."""

    probe_path: str = "/ISAPI/System/deviceInfo"  # Always answers 401 without auth
    probe_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 15.0  # Metadata calls
    face_upload_timeout_seconds: float = 30.0  # Face detection runs on upload
    capture_timeout_seconds: float = 60.0  # Device blocks until a face is seen
    user_agent: str = "HikEnroll-Client/1.0.0"


@dataclass
class EnrollmentConfig:
    """Values written to the device when provisioning students."""

    # Face library addressing
    face_lib_type: str = "blackFD"
    fdid: str = "1"

    # User record
    user_type: str = "normal"
    valid_begin: str = "2024-01-01T00:00:00"
    valid_end: str = "2037-12-31T23:59:59"
    door_no: int = 1
    plan_template_no: str = "1"

    # Directory paging
    search_page_size: int = 30
    connect_preview_size: int = 100

    # Photo store
    photo_timeout_seconds: float = 15.0
    photo_max_bytes: int = 5 * 1024 * 1024

    # Device busy handling
    busy_retries: int = 1
    busy_retry_delay_seconds: float = 1.0


@dataclass
class LoggingConfig:
    """Configuration for loguru sinks."""

    level: str = "INFO"
    to_console: bool = True
    to_file: bool = False
    file_path: Path = field(default_factory=lambda: Path.cwd() / "logs" / "hikenroll.log")
    rotation: str = "10 MB"
    retention: str = "14 days"


@dataclass
class HikEnrollConfig:
    """Complete client configuration."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    enrollment: EnrollmentConfig = field(default_factory=EnrollmentConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Default target for the command line only
    device_address: str = ""
    device_username: str = ""
    device_password: str = field(default="", repr=False)

    def __post_init__(self):
        """Apply environment variable overrides."""
        self._apply_env_overrides()

    def _apply_env_overrides(self):
        """Apply configuration overrides from environment variables."""
        # Device target
        if address := os.getenv("HIKENROLL_DEVICE_ADDRESS"):
            self.device_address = address

        if username := os.getenv("HIKENROLL_DEVICE_USERNAME"):
            self.device_username = username

        if password := os.getenv("HIKENROLL_DEVICE_PASSWORD"):
            self.device_password = password

        # Timeouts
        if request_timeout := os.getenv("HIKENROLL_REQUEST_TIMEOUT"):
            try:
                self.device.request_timeout_seconds = float(request_timeout)
            except ValueError:
                logger.warning(f"Invalid request timeout: {request_timeout}")

        if upload_timeout := os.getenv("HIKENROLL_UPLOAD_TIMEOUT"):
            try:
                self.device.face_upload_timeout_seconds = float(upload_timeout)
            except ValueError:
                logger.warning(f"Invalid face upload timeout: {upload_timeout}")

        if capture_timeout := os.getenv("HIKENROLL_CAPTURE_TIMEOUT"):
            try:
                self.device.capture_timeout_seconds = float(capture_timeout)
            except ValueError:
                logger.warning(f"Invalid capture timeout: {capture_timeout}")

        # Enrollment settings
        if fdid := os.getenv("HIKENROLL_FDID"):
            self.enrollment.fdid = fdid

        if page_size := os.getenv("HIKENROLL_SEARCH_PAGE_SIZE"):
            try:
                self.enrollment.search_page_size = int(page_size)
            except ValueError:
                logger.warning(f"Invalid search page size: {page_size}")

        if photo_timeout := os.getenv("HIKENROLL_PHOTO_TIMEOUT"):
            try:
                self.enrollment.photo_timeout_seconds = float(photo_timeout)
            except ValueError:
                logger.warning(f"Invalid photo timeout: {photo_timeout}")

        # Logging
        if log_level := os.getenv("HIKENROLL_LOG_LEVEL"):
            self.logging.level = log_level.upper()

        if log_file := os.getenv("HIKENROLL_LOG_FILE"):
            self.logging.file_path = Path(log_file)
            self.logging.to_file = True

    def validate(self) -> tuple[bool, list[str]]:
        """Validate the configuration.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        if not self.device.probe_path.startswith("/"):
            errors.append("Probe path must start with '/'")

        # Timeouts
        if self.device.probe_timeout_seconds <= 0:
            errors.append("Probe timeout must be positive")

        if self.device.request_timeout_seconds <= 0:
            errors.append("Request timeout must be positive")

        if self.device.face_upload_timeout_seconds <= 0:
            errors.append("Face upload timeout must be positive")

        if self.device.capture_timeout_seconds <= 0:
            errors.append("Capture timeout must be positive")

        # Enrollment
        if self.enrollment.search_page_size <= 0:
            errors.append("Search page size must be positive")

        if self.enrollment.photo_max_bytes <= 0:
            errors.append("Photo size limit must be positive")

        if self.enrollment.busy_retries < 0:
            errors.append("Busy retries cannot be negative")

        return len(errors) == 0, errors


class ConfigManager:
    """Manages client configuration."""

    def __init__(self):
        """Initialize configuration manager."""
        self._config: Optional[HikEnrollConfig] = None

    def load_config(
        self,
        device_address: Optional[str] = None,
        device_username: Optional[str] = None,
        device_password: Optional[str] = None,
    ) -> HikEnrollConfig:
        """Load configuration with optional overrides.

        Args:
            device_address: Device address override
            device_username: Device username override
            device_password: Device password override

        Returns:
            Configured HikEnrollConfig instance
        """
        config = HikEnrollConfig()

        # Apply parameter overrides
        if device_address:
            config.device_address = device_address

        if device_username:
            config.device_username = device_username

        if device_password:
            config.device_password = device_password

        self._config = config
        return config

    def get_config(self) -> HikEnrollConfig:
        """Get current configuration, loading defaults on first use."""
        if self._config is None:
            return self.load_config()
        return self._config

    def validate_config(self) -> tuple[bool, list[str]]:
        """Validate current configuration.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        if not self._config:
            return False, ["No configuration loaded"]

        return self._config.validate()


# Global configuration manager instance
_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    """Get the global configuration manager."""
    return _config_manager


def get_current_config() -> HikEnrollConfig:
    """Get the current configuration."""
    return _config_manager.get_config()
