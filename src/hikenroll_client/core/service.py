"""Enrollment service: the caller-facing API of the client.

This is the one object a host process creates. It owns the process-wide
Digest challenge cache and the digest client built on it, and hands out
gateways and the orchestrator bound to them:
- connect / list users of a terminal
- batch, single and image based enrollment
- single and bulk deletion
- live face capture
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from loguru import logger

from ..auth import DeviceCredentials, DigestAuthClient, DigestChallengeCache
from ..config import HikEnrollConfig, get_current_config
from ..enroll.employee_number import employee_no_from_name
from ..enroll.models import BatchReport, DeletionReport, DeletionResult, EnrollmentResult, StudentRecord
from ..enroll.photo_store import HttpPhotoStore, PhotoStore
from ..errors import DeviceError
from ..gateway import DeviceGateway, DeviceSummary, EnrolledUser, ensure_allowed_address
from ..orchestrator import EnrollmentOrchestrator
from ..orchestrator.enrollment_orchestrator import EmployeeNoFactory, ProgressCallback, StudentInput
from ..transport import HTTPTransport, TransportConfig


class EnrollmentService:
    """Student enrollment client for access-control terminals."""

    def __init__(
        self,
        config: Optional[HikEnrollConfig] = None,
        cache: Optional[DigestChallengeCache] = None,
        transport: Optional[HTTPTransport] = None,
        photo_store: Optional[PhotoStore] = None,
        employee_no_factory: EmployeeNoFactory = employee_no_from_name,
    ):
        """Initialize the service.

        Args:
            config: Client configuration, the global one by default
            cache: Challenge cache (a fresh one per service by default)
            transport: HTTP transport for device requests
            photo_store: Source of student photos
            employee_no_factory: Name to employee number derivation
        """
        self.config = config or get_current_config()
        device = self.config.device
        enrollment = self.config.enrollment

        self.cache = cache if cache is not None else DigestChallengeCache()
        self.transport = transport or HTTPTransport(
            TransportConfig(timeout_seconds=device.request_timeout_seconds, user_agent=device.user_agent)
        )
        self.auth_client = DigestAuthClient(cache=self.cache, transport=self.transport, config=device)
        self.photo_store = photo_store or HttpPhotoStore(
            timeout_seconds=enrollment.photo_timeout_seconds,
            max_bytes=enrollment.photo_max_bytes,
            user_agent=device.user_agent,
        )
        self.orchestrator = EnrollmentOrchestrator(
            gateway_factory=self.gateway,
            photo_store=self.photo_store,
            config=enrollment,
            employee_no_factory=employee_no_factory,
            auth_client=self.auth_client,
        )

        logger.debug("Initialized enrollment service")

    def gateway(self, credentials: DeviceCredentials) -> DeviceGateway:
        """Gateway for one terminal, sharing this service's challenge cache."""
        return DeviceGateway(credentials, auth_client=self.auth_client, enrollment_config=self.config.enrollment)

    # ------------------------------------------------------------ device state

    def connect(self, credentials: DeviceCredentials) -> DeviceSummary:
        """Authenticate against a terminal and summarize its state.

        Device info must succeed; the user preview, face count and capacity
        degrade to empty values when the device refuses them.
        """
        ensure_allowed_address(credentials.address)
        gateway = self.gateway(credentials)

        device = gateway.get_device_info()
        logger.info(f"Connected to {device.model or 'terminal'} {device.name!r} at {credentials.address}")

        users: List[EnrolledUser] = []
        total_users = 0
        try:
            page = gateway.search_users_page(0, self.config.enrollment.connect_preview_size)
            users, total_users = page.users, page.total_matches
        except DeviceError as e:
            logger.warning(f"Could not list users on {credentials.address}: {e.describe()}")

        total_faces = 0
        try:
            total_faces = gateway.get_face_count()
        except DeviceError as e:
            logger.warning(f"Could not count faces on {credentials.address}: {e.describe()}")

        return DeviceSummary(
            address=credentials.address,
            device=device,
            users=users,
            total_users=total_users,
            total_faces=total_faces,
            capacity=gateway.get_capabilities(),
        )

    def list_users(self, credentials: DeviceCredentials) -> List[EnrolledUser]:
        """Full user directory of the terminal, always fetched fresh."""
        return self.gateway(credentials).search_users()

    def capture_face(self, credentials: DeviceCredentials, timeout: Optional[float] = None) -> bytes:
        """JPEG of a face captured by the terminal camera."""
        return self.gateway(credentials).capture_face(timeout=timeout)

    # -------------------------------------------------------------- enrollment

    def batch_enroll(
        self,
        credentials: DeviceCredentials,
        students: Iterable[StudentInput],
        abort: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> BatchReport:
        return self.orchestrator.batch_enroll(credentials, students, abort=abort, progress=progress)

    def iter_batch_enroll(
        self,
        credentials: DeviceCredentials,
        students: Iterable[StudentInput],
        abort: Optional[threading.Event] = None,
    ) -> Iterator[EnrollmentResult]:
        return self.orchestrator.iter_batch_enroll(credentials, students, abort=abort)

    def enroll_student(self, credentials: DeviceCredentials, student: Union[StudentRecord, Mapping[str, Any]]) -> EnrollmentResult:
        return self.orchestrator.enroll_student(credentials, student)

    def enroll_image(self, credentials: DeviceCredentials, name: str, image: Union[bytes, str], class_name: str = "") -> EnrollmentResult:
        return self.orchestrator.enroll_image(credentials, name, image, class_name=class_name)

    # ---------------------------------------------------------------- deletion

    def delete_user(self, credentials: DeviceCredentials, employee_no: str, name: Optional[str] = None) -> DeletionResult:
        return self.orchestrator.delete_user(credentials, employee_no, name=name)

    def bulk_delete(
        self,
        credentials: DeviceCredentials,
        targets: Iterable[Union[str, Mapping[str, Any]]],
        abort: Optional[threading.Event] = None,
    ) -> DeletionReport:
        return self.orchestrator.bulk_delete(credentials, targets, abort=abort)

    def get_stats(self) -> Dict[str, Any]:
        """Statistics of the digest client and its transport."""
        return {"auth": self.auth_client.get_stats(), "transport": self.transport.get_stats()}
