"""Enrollment inputs: employee numbers, photos, rosters and result models."""

from .employee_number import employee_no_from_name
from .models import (
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
from .photo_store import HttpPhotoStore, PhotoStore, check_photo, decode_image_payload
from .roster import load_roster

__all__ = [
    "employee_no_from_name",
    "HttpPhotoStore",
    "PhotoStore",
    "check_photo",
    "decode_image_payload",
    "load_roster",
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
