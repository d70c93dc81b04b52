"""Enrollment orchestrator for provisioning students onto a terminal.

Each student runs through a small state machine:
Pending → Downloaded → UserCreated → FaceUploaded, with Failed(step, reason)
reachable from any state. Students are processed one after another against a
single device; a failing student is recorded and the batch moves on.

Results are produced by generators (``iter_batch_enroll`` / ``iter_bulk_delete``)
so callers can report progress while the batch runs; ``batch_enroll`` and
``bulk_delete`` drain them into a report.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from loguru import logger

from ..auth import DeviceCredentials, DigestAuthClient
from ..config.settings import EnrollmentConfig
from ..enroll.employee_number import employee_no_from_name
from ..enroll.models import (
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
from ..enroll.photo_store import HttpPhotoStore, PhotoStore, check_photo, decode_image_payload
from ..errors import (
    AuthenticationError,
    DeviceError,
    EmployeeNumberCollisionError,
    HikEnrollError,
    PhotoDownloadError,
    TransportError,
)
from ..gateway import DeviceGateway, ensure_allowed_address

GatewayFactory = Callable[[DeviceCredentials], DeviceGateway]
EmployeeNoFactory = Callable[[str], str]
StudentInput = Union[StudentRecord, Mapping[str, Any]]
ProgressCallback = Callable[[int, int, EnrollmentResult], None]

_NEXT_STATE = {
    EnrollmentState.PENDING: EnrollmentState.DOWNLOADED,
    EnrollmentState.DOWNLOADED: EnrollmentState.USER_CREATED,
    EnrollmentState.USER_CREATED: EnrollmentState.FACE_UPLOADED,
}

_STEP_PREFIX = {
    EnrollmentStep.DOWNLOAD: "Failed to download photo",
    EnrollmentStep.CREATE_USER: "Failed to create user on device",
    EnrollmentStep.UPLOAD_FACE: "Failed to upload face",
}


def describe_error(error: Exception) -> str:
    """Staff-facing reason for a failure, keeping the raw device message."""
    if isinstance(error, DeviceError):
        return error.describe()
    if isinstance(error, AuthenticationError):
        return "invalid credentials"
    if isinstance(error, TransportError):
        return f"network issue: {error.message}"
    if isinstance(error, HikEnrollError):
        return error.message
    return str(error) or type(error).__name__


class _StudentRun:
    """Mutable progress of one student; frozen into an ``EnrollmentResult`` at the end."""

    def __init__(self, student: StudentRecord, employee_no: str):
        self.student = student
        self.employee_no = employee_no
        self.state = EnrollmentState.PENDING
        self.steps: Dict[str, StepOutcome] = {}
        self.failed_step: Optional[EnrollmentStep] = None
        self.error: Optional[str] = None

    def advance(self, step: EnrollmentStep, **detail: Any) -> None:
        if self.state not in _NEXT_STATE:
            raise RuntimeError(f"Cannot advance from {self.state.value}")
        self.steps[step.value] = StepOutcome(ok=True, **detail)
        self.state = _NEXT_STATE[self.state]

    def fail(self, step: EnrollmentStep, error: Exception) -> None:
        if isinstance(error, DeviceError) and step == EnrollmentStep.UPLOAD_FACE:
            reason = f"Device rejected face image: {error.describe()}"
        else:
            reason = f"{_STEP_PREFIX[step]}: {describe_error(error)}"

        detail: Dict[str, Any] = {}
        if isinstance(error, DeviceError):
            detail = {"status": error.status, "sub_status_code": error.sub_status_code or None}

        self.steps[step.value] = StepOutcome(ok=False, error=reason, **detail)
        self.state = EnrollmentState.FAILED
        self.failed_step = step
        self.error = reason

    def result(self) -> EnrollmentResult:
        return EnrollmentResult(
            student_name=self.student.name,
            class_name=self.student.class_name,
            employee_no=self.employee_no,
            steps=dict(self.steps),
            state=self.state,
            failed_step=self.failed_step,
            success=self.state == EnrollmentState.FACE_UPLOADED,
            error=self.error,
        )


class EnrollmentOrchestrator:
    """Drives per-student enrollment and bulk deletion against one device at a time."""

    def __init__(
        self,
        gateway_factory: Optional[GatewayFactory] = None,
        photo_store: Optional[PhotoStore] = None,
        config: Optional[EnrollmentConfig] = None,
        employee_no_factory: EmployeeNoFactory = employee_no_from_name,
        auth_client: Optional[DigestAuthClient] = None,
    ):
        """Initialize the orchestrator.

        Args:
            gateway_factory: Builds the gateway for a set of credentials
            photo_store: Source of student photos (signed URLs)
            config: Enrollment settings
            employee_no_factory: Name to employee number derivation
            auth_client: Digest client for the default gateway factory
        """
        self.config = config or EnrollmentConfig()
        self.auth_client = auth_client or DigestAuthClient()
        self.gateway_factory = gateway_factory or self._default_gateway
        self.photo_store = photo_store or HttpPhotoStore(
            timeout_seconds=self.config.photo_timeout_seconds, max_bytes=self.config.photo_max_bytes
        )
        self.employee_no_factory = employee_no_factory

    @staticmethod
    def _as_record(student: StudentInput) -> StudentRecord:
        return student if isinstance(student, StudentRecord) else StudentRecord.model_validate(student)

    def _default_gateway(self, credentials: DeviceCredentials) -> DeviceGateway:
        return DeviceGateway(credentials, auth_client=self.auth_client, enrollment_config=self.config)

    # -------------------------------------------------------------- enrollment

    def iter_batch_enroll(
        self,
        credentials: DeviceCredentials,
        students: Iterable[StudentInput],
        abort: Optional[threading.Event] = None,
    ) -> Iterator[EnrollmentResult]:
        """Enroll students one by one, yielding each result as soon as it is known.

        The abort flag is checked before each student; once set, no further
        student is started. Every entry is validated before the first device
        call, so a malformed roster enrolls nobody.

        Raises:
            AddressNotAllowedError: The device address is not a private LAN address
            pydantic.ValidationError: An entry is not a valid student
        """
        ensure_allowed_address(credentials.address)
        records = [self._as_record(s) for s in students]
        gateway = self.gateway_factory(credentials)
        assigned: Dict[str, str] = {}

        for record in records:
            if abort is not None and abort.is_set():
                logger.warning("Batch enrollment aborted before all students were processed")
                return
            yield self._enroll(gateway, record, assigned)

    def batch_enroll(
        self,
        credentials: DeviceCredentials,
        students: Iterable[StudentInput],
        abort: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> BatchReport:
        """Enroll all students and return the full per-item report."""
        students = [self._as_record(s) for s in students]
        results: List[EnrollmentResult] = []

        logger.info(f"Starting batch enrollment of {len(students)} students on {credentials.address}")
        for result in self.iter_batch_enroll(credentials, students, abort):
            results.append(result)
            if progress is not None:
                progress(len(results), len(students), result)

        summary = BatchSummary.from_outcomes([r.success for r in results])
        aborted = len(results) < len(students)
        logger.info(f"Batch enrollment on {credentials.address}: {summary.message}{' (aborted)' if aborted else ''}")
        return BatchReport(results=results, summary=summary, requested=len(students), aborted=aborted)

    def enroll_student(self, credentials: DeviceCredentials, student: StudentInput) -> EnrollmentResult:
        """Enroll a single student from its photo URL."""
        return next(self.iter_batch_enroll(credentials, [student]))

    def enroll_image(
        self,
        credentials: DeviceCredentials,
        name: str,
        image: Union[bytes, str],
        class_name: str = "",
    ) -> EnrollmentResult:
        """Enroll one person from image bytes or a base64 / data URL payload.

        The download step is recorded as satisfied by the supplied image.
        """
        ensure_allowed_address(credentials.address)
        gateway = self.gateway_factory(credentials)
        student = StudentRecord(name=name, class_name=class_name)
        run = _StudentRun(student, self.employee_no_factory(student.name))

        try:
            jpeg = decode_image_payload(image) if isinstance(image, str) else image
            check_photo(jpeg, self.config.photo_max_bytes)
        except PhotoDownloadError as e:
            run.fail(EnrollmentStep.DOWNLOAD, e)
            return run.result()

        run.advance(EnrollmentStep.DOWNLOAD, size=len(jpeg))
        self._provision(gateway, run, jpeg)
        return run.result()

    def _enroll(self, gateway: DeviceGateway, student: StudentRecord, assigned: Dict[str, str]) -> EnrollmentResult:
        run = _StudentRun(student, self.employee_no_factory(student.name))
        logger.info(f"Enrolling {student.name} ({student.class_name or 'no class'}) as {run.employee_no}")

        try:
            jpeg = self._download(student)
        except HikEnrollError as e:
            run.fail(EnrollmentStep.DOWNLOAD, e)
            logger.warning(f"{student.name}: {run.error}")
            return run.result()
        run.advance(EnrollmentStep.DOWNLOAD, size=len(jpeg))

        owner = assigned.setdefault(run.employee_no, student.name)
        if owner != student.name:
            run.fail(
                EnrollmentStep.CREATE_USER,
                EmployeeNumberCollisionError(f"employee number {run.employee_no} is already used by {owner} in this batch"),
            )
            logger.error(f"{student.name}: {run.error}")
            return run.result()

        self._provision(gateway, run, jpeg)
        return run.result()

    def _download(self, student: StudentRecord) -> bytes:
        jpeg = self.photo_store.fetch(student.photo_url)
        return check_photo(jpeg, self.config.photo_max_bytes)

    def _provision(self, gateway: DeviceGateway, run: _StudentRun, jpeg: bytes) -> None:
        """Run the device-facing steps: createUser then uploadFace."""
        name = run.student.name

        try:
            created = gateway.create_user(run.employee_no, name)
        except HikEnrollError as e:
            run.fail(EnrollmentStep.CREATE_USER, e)
            logger.warning(f"{name}: {run.error}")
            return
        run.advance(EnrollmentStep.CREATE_USER, existed=created.existed)

        try:
            gateway.upload_face(run.employee_no, name, jpeg)
        except HikEnrollError as e:
            run.fail(EnrollmentStep.UPLOAD_FACE, e)
            logger.warning(f"{name}: {run.error}")
            return
        run.advance(EnrollmentStep.UPLOAD_FACE)
        logger.info(f"{name} enrolled as {run.employee_no}")

    # ---------------------------------------------------------------- deletion

    def iter_bulk_delete(
        self,
        credentials: DeviceCredentials,
        targets: Iterable[Union[str, Mapping[str, Any]]],
        abort: Optional[threading.Event] = None,
    ) -> Iterator[DeletionResult]:
        """Delete people one by one; targets are employee numbers or ``{employeeNo, name}`` mappings."""
        ensure_allowed_address(credentials.address)
        gateway = self.gateway_factory(credentials)

        for target in targets:
            if abort is not None and abort.is_set():
                logger.warning("Bulk delete aborted before all users were processed")
                return
            if isinstance(target, str):
                employee_no, name = target, None
            else:
                employee_no, name = str(target.get("employeeNo") or target.get("employee_no") or ""), target.get("name")
            yield self._delete(gateway, employee_no, name)

    def bulk_delete(
        self,
        credentials: DeviceCredentials,
        targets: Iterable[Union[str, Mapping[str, Any]]],
        abort: Optional[threading.Event] = None,
    ) -> DeletionReport:
        targets = list(targets)
        results = list(self.iter_bulk_delete(credentials, targets, abort))
        summary = DeletionSummary.from_outcomes([r.success for r in results])
        logger.info(f"Bulk delete on {credentials.address}: {summary.message}")
        return DeletionReport(results=results, summary=summary, requested=len(targets), aborted=len(results) < len(targets))

    def delete_user(self, credentials: DeviceCredentials, employee_no: str, name: Optional[str] = None) -> DeletionResult:
        return next(self.iter_bulk_delete(credentials, [{"employeeNo": employee_no, "name": name}]))

    def _delete(self, gateway: DeviceGateway, employee_no: str, name: Optional[str]) -> DeletionResult:
        if not employee_no:
            return DeletionResult(employee_no="", name=name, success=False, error="Missing employee number")
        try:
            outcome = gateway.delete_user(employee_no)
        except HikEnrollError as e:
            reason = describe_error(e)
            logger.warning(f"Failed to delete {employee_no}: {reason}")
            return DeletionResult(employee_no=employee_no, name=name, success=False, error=reason)
        return DeletionResult(
            employee_no=employee_no,
            name=name,
            success=True,
            face_deleted=outcome.face_deleted,
            already_removed=outcome.already_removed,
        )
