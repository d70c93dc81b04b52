"""Enrollment data models."""

from .enrollment_models import (
    BatchReport,
    BatchSummary,
    DeletionReport,
    DeletionResult,
    DeletionSummary,
    EnrollmentResult,
    EnrollmentState,
    EnrollmentStep,
    StepOutcome,
    StudentRecord,
)

__all__ = [
    "StudentRecord",
    "EnrollmentStep",
    "EnrollmentState",
    "StepOutcome",
    "EnrollmentResult",
    "BatchSummary",
    "BatchReport",
    "DeletionResult",
    "DeletionSummary",
    "DeletionReport",
]
