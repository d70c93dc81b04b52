"""Orchestrator package coordinating batch enrollment and deletion."""

from .enrollment_orchestrator import EnrollmentOrchestrator, describe_error

__all__ = ["EnrollmentOrchestrator", "describe_error"]
