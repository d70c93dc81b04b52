"""Signal handler module for interrupting batches."""

from .signal_handler import SignalHandler

__all__ = ["SignalHandler"]
