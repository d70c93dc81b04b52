"""HikEnroll Client - student face enrollment for ISAPI access-control terminals."""

from .auth import DeviceCredentials, DigestChallengeCache
from .config import get_config_manager
from .core import EnrollmentService

__version__ = "1.0.0"

__all__ = ["EnrollmentService", "DeviceCredentials", "DigestChallengeCache", "get_config_manager"]
