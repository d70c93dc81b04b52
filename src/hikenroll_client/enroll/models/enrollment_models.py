"""Pydantic models for enrollment input, per-student results and batch reports."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EnrollmentStep(str, Enum):
    """Device-facing steps of enrolling one student."""

    DOWNLOAD = "download"
    CREATE_USER = "createUser"
    UPLOAD_FACE = "uploadFace"


class EnrollmentState(str, Enum):
    """Per-student state machine; FAILED absorbs from any state."""

    PENDING = "pending"
    DOWNLOADED = "downloaded"
    USER_CREATED = "userCreated"
    FACE_UPLOADED = "faceUploaded"
    FAILED = "failed"


class StudentRecord(BaseModel):
    """One roster entry supplied by the caller."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1, alias="studentName", description="Display name, also the employee number seed")
    class_name: str = Field("", alias="className", description="Homeroom / class label")
    photo_url: str = Field("", alias="photoUrl", description="Time-bounded signed URL of the face photo")
    student_id: Optional[str] = Field(None, alias="studentId", description="School side identifier")


class StepOutcome(BaseModel):
    """Outcome of a single enrollment step."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ok: bool
    error: Optional[str] = None
    size: Optional[int] = Field(None, description="Photo size in bytes (download step)")
    existed: Optional[bool] = Field(None, description="User was already on the device (createUser step)")
    status: Optional[int] = Field(None, description="HTTP status of a device error")
    sub_status_code: Optional[str] = Field(None, alias="subStatusCode")


class EnrollmentResult(BaseModel):
    """Immutable record of one student's pass through a batch."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    student_name: str = Field(..., alias="studentName")
    class_name: str = Field("", alias="className")
    employee_no: str = Field(..., alias="employeeNo")
    steps: Dict[str, StepOutcome] = Field(default_factory=dict, alias="perStepOutcome")
    state: EnrollmentState
    failed_step: Optional[EnrollmentStep] = Field(None, alias="failedStep")
    success: bool
    error: Optional[str] = None


class BatchSummary(BaseModel):
    """Aggregate success/failure counts of a batch."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    total: int = 0
    success_count: int = Field(0, alias="successCount")
    fail_count: int = Field(0, alias="failCount")

    @classmethod
    def from_outcomes(cls, outcomes: List[bool]) -> BatchSummary:
        succeeded = sum(1 for ok in outcomes if ok)
        return cls(total=len(outcomes), success_count=succeeded, fail_count=len(outcomes) - succeeded)

    @property
    def message(self) -> str:
        return f"{self.success_count} of {self.total} succeeded ({self.fail_count} failed)"


class BatchReport(BaseModel):
    """Full per-item log of a batch enrollment."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    results: List[EnrollmentResult] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)
    requested: int = Field(0, description="Number of students handed to the batch")
    aborted: bool = False


class DeletionResult(BaseModel):
    """Outcome of removing one person from the device."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    employee_no: str = Field(..., alias="employeeNo")
    name: Optional[str] = None
    success: bool
    face_deleted: bool = Field(False, alias="faceDeleted")
    already_removed: bool = Field(False, alias="alreadyRemoved")
    error: Optional[str] = None


class DeletionSummary(BatchSummary):
    """Aggregate counts of a bulk delete."""


class DeletionReport(BaseModel):
    """Per-item log of a bulk delete."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    results: List[DeletionResult] = Field(default_factory=list)
    summary: DeletionSummary = Field(default_factory=DeletionSummary)
    requested: int = 0
    aborted: bool = False
