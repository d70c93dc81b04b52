"""Core service and process plumbing."""

from .service import EnrollmentService
from .signal_handler import SignalHandler

__all__ = ["EnrollmentService", "SignalHandler"]
