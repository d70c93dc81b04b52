"""Typed operations against a terminal's ISAPI surface.

Each method wraps one device capability on top of ``DigestAuthClient``. The
gateway knows device paths, payload shapes and which error answers are benign
(see ``status_codes``); it knows nothing about students or photos.
"""

from __future__ import annotations

import json
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from loguru import logger

from ..auth import DeviceCredentials, DeviceResponse, DigestAuthClient
from ..config.settings import DeviceConfig, EnrollmentConfig
from ..errors import DeviceError
from .address_policy import ensure_allowed_address, is_allowed_address
from .models import Capabilities, CreateUserOutcome, DeleteUserOutcome, DeviceInfo, EnrolledUser, FaceUploadOutcome, UserPage, to_int
from .multipart import build_face_multipart, extract_jpeg
from .status_codes import Disposition, DeviceOperation, classify

DEVICE_INFO_PATH = "/ISAPI/System/deviceInfo"
CAPABILITIES_PATH = "/ISAPI/AccessControl/UserInfo/capabilities?format=json"
USER_SEARCH_PATH = "/ISAPI/AccessControl/UserInfo/Search?format=json"
USER_RECORD_PATH = "/ISAPI/AccessControl/UserInfo/Record?format=json"
USER_DELETE_PATH = "/ISAPI/AccessControl/UserInfo/Delete?format=json"
FACE_SETUP_PATH = "/ISAPI/Intelligent/FDLib/FDSetUp?format=json"
FACE_DELETE_PATH = "/ISAPI/Intelligent/FDLib/FDDelete?format=json"
FACE_COUNT_PATH = "/ISAPI/Intelligent/FDLib/Count?format=json"
CAPTURE_FACE_PATH = "/ISAPI/AccessControl/CaptureFaceData"

CAPTURE_FACE_BODY = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<CaptureFaceDataCond xmlns="http://www.isapi.org/ver20/XMLSchema" version="2.0">'
    "<captureInfrared>false</captureInfrared>"
    "<dataType>binary</dataType>"
    "</CaptureFaceDataCond>"
)


def extract_tag(xml: str, tag: str) -> str:
    """Text of the first ``<tag>`` element in flat XML, or an empty string."""
    match = re.search(rf"<{tag}(?:\s[^>]*)?>([^<]*)</{tag}>", xml)
    return match.group(1).strip() if match else ""


@dataclass
class _CallResult:
    """Answer of a gateway call; ``benign_error`` is set when a known error was downgraded."""

    response: Optional[DeviceResponse] = None
    benign_error: Optional[DeviceError] = None

    def json(self) -> Dict[str, Any]:
        return self.response.json() if self.response is not None else {}


class DeviceGateway:
    """Gateway to one terminal, bound to its credentials."""

    def __init__(
        self,
        credentials: DeviceCredentials,
        auth_client: Optional[DigestAuthClient] = None,
        enrollment_config: Optional[EnrollmentConfig] = None,
    ):
        """Initialize the gateway.

        Args:
            credentials: Target device and login
            auth_client: Shared digest client (its cache outlives the gateway)
            enrollment_config: Face library and user record settings
        """
        self.credentials = credentials
        self.auth_client = auth_client or DigestAuthClient()
        self.config = enrollment_config or EnrollmentConfig()

    @property
    def address(self) -> str:
        return self.credentials.address

    @property
    def device_config(self) -> DeviceConfig:
        return self.auth_client.config

    @staticmethod
    def is_allowed_address(address: Any) -> bool:
        return is_allowed_address(address)

    # ---------------------------------------------------------------- requests

    def _call(
        self,
        operation: DeviceOperation,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        check_status_code: bool = True,
    ) -> _CallResult:
        """Run one device request through the address check and the decision table."""
        ensure_allowed_address(self.address)

        if payload is not None:
            body = json.dumps(payload).encode("utf-8")

        for attempt in range(self.config.busy_retries + 1):
            try:
                response = self.auth_client.authenticated_request(
                    self.credentials, method, path, body=body, extra_headers=headers, timeout=timeout
                )
                if check_status_code:
                    self._ensure_accepted(response, method, path)
                return _CallResult(response=response)

            except DeviceError as e:
                disposition = classify(operation, e)
                if disposition == Disposition.SUCCESS:
                    logger.info(f"{operation.value} on {self.address}: treating {e.sub_status_code or e.status} as success")
                    return _CallResult(benign_error=e)
                if disposition == Disposition.RETRY and attempt < self.config.busy_retries:
                    logger.warning(f"{operation.value} on {self.address}: device busy, retrying in {self.config.busy_retry_delay_seconds:.1f}s")
                    time.sleep(self.config.busy_retry_delay_seconds)
                    continue
                raise

        # Unreachable: the last attempt either returns or raises
        raise RuntimeError("retry loop exhausted")

    def _ensure_accepted(self, response: DeviceResponse, method: str, path: str) -> None:
        """Raise ``DeviceError`` for a 2xx JSON answer whose statusCode says rejected."""
        if "json" not in response.headers.get("content-type", "") and not response.body.lstrip().startswith(b"{"):
            return
        data = response.json()
        status_code = data.get("statusCode")
        if status_code is None or str(status_code) == "1":
            return
        raise DeviceError(
            f"ISAPI {method} {path} was rejected",
            status=response.status,
            body=response.body,
            method=method,
            path=path,
            address=self.address,
        )

    # -------------------------------------------------------------- operations

    def get_device_info(self) -> DeviceInfo:
        """Model, name, firmware, serial and MAC of the terminal."""
        result = self._call(
            DeviceOperation.DEVICE_INFO,
            "GET",
            DEVICE_INFO_PATH,
            timeout=self.device_config.request_timeout_seconds,
            check_status_code=False,
        )
        xml = result.response.text if result.response is not None else ""
        return DeviceInfo(
            model=extract_tag(xml, "model"),
            name=extract_tag(xml, "deviceName"),
            firmware_version=extract_tag(xml, "firmwareVersion"),
            serial_number=extract_tag(xml, "serialNumber"),
            mac_address=extract_tag(xml, "macAddress"),
        )

    def search_users_page(self, position: int, max_results: int, search_id: Optional[str] = None) -> UserPage:
        """Fetch one page of the user directory."""
        payload = {
            "UserInfoSearchCond": {
                "searchID": search_id or uuid.uuid4().hex[:16],
                "searchResultPosition": position,
                "maxResults": max_results,
            }
        }
        data = self._call(DeviceOperation.SEARCH_USERS, "POST", USER_SEARCH_PATH, payload=payload).json()
        info = data.get("UserInfoSearch") or {}

        records = info.get("UserInfo") or []
        if isinstance(records, dict):
            records = [records]

        try:
            total = int(info.get("totalMatches") or 0)
        except (TypeError, ValueError):
            total = 0

        return UserPage(users=[EnrolledUser.from_device(r) for r in records], total_matches=total)

    def search_users(self, page_size: Optional[int] = None) -> List[EnrolledUser]:
        """Page through the whole user directory.

        Stops when the collected count reaches the reported total or a page
        comes back empty.
        """
        page_size = page_size or self.config.search_page_size
        search_id = uuid.uuid4().hex[:16]
        users: List[EnrolledUser] = []

        while True:
            page = self.search_users_page(len(users), page_size, search_id)
            users.extend(page.users)
            if not page.users or len(users) >= page.total_matches:
                break

        logger.debug(f"Fetched {len(users)} users from {self.address}")
        return users

    def create_user(self, employee_no: str, name: str) -> CreateUserOutcome:
        """Create a user record; an existing record with this number counts as success."""
        payload = {
            "UserInfo": {
                "employeeNo": employee_no,
                "name": name,
                "userType": self.config.user_type,
                "gender": "unknown",
                "Valid": {
                    "enable": True,
                    "beginTime": self.config.valid_begin,
                    "endTime": self.config.valid_end,
                    "timeType": "local",
                },
                "doorRight": str(self.config.door_no),
                "RightPlan": [{"doorNo": self.config.door_no, "planTemplateNo": self.config.plan_template_no}],
            }
        }
        result = self._call(DeviceOperation.CREATE_USER, "POST", USER_RECORD_PATH, payload=payload)
        existed = result.benign_error is not None
        logger.info(f"User {employee_no} {'already exists' if existed else 'created'} on {self.address}")
        return CreateUserOutcome(employee_no=employee_no, existed=existed)

    def delete_face(self, employee_no: str) -> bool:
        """Remove the face record of a person; returns False if the device refused."""
        payload = {"faceLibType": self.config.face_lib_type, "FDID": self.config.fdid, "FPID": employee_no}
        try:
            result = self._call(DeviceOperation.DELETE_FACE, "PUT", FACE_DELETE_PATH, payload=payload)
        except DeviceError as e:
            logger.warning(f"Face delete for {employee_no} on {self.address} failed (non-fatal): {e.describe()}")
            return False
        return result.benign_error is None

    def delete_user(self, employee_no: str) -> DeleteUserOutcome:
        """Delete face data, then the user record; an already missing user counts as success."""
        face_deleted = self.delete_face(employee_no)

        payload = {"UserInfoDelCond": {"EmployeeNoList": [{"employeeNo": employee_no}]}}
        result = self._call(DeviceOperation.DELETE_USER, "PUT", USER_DELETE_PATH, payload=payload)
        already_removed = result.benign_error is not None

        logger.info(f"User {employee_no} {'was already removed from' if already_removed else 'deleted from'} {self.address}")
        return DeleteUserOutcome(employee_no=employee_no, face_deleted=face_deleted, already_removed=already_removed)

    def upload_face(self, employee_no: str, name: str, jpeg: bytes) -> FaceUploadOutcome:
        """Upload a JPEG into the face library for an existing user.

        Raises:
            DeviceError: The device rejected the image (e.g. no detectable face)
        """
        record = {"faceLibType": self.config.face_lib_type, "FDID": self.config.fdid, "FPID": employee_no, "name": name}
        body, content_type = build_face_multipart(record, jpeg)
        result = self._call(
            DeviceOperation.UPLOAD_FACE,
            "PUT",
            FACE_SETUP_PATH,
            body=body,
            headers={"Content-Type": content_type},
            timeout=self.device_config.face_upload_timeout_seconds,
        )
        data = result.json()
        status_code = data.get("statusCode")
        return FaceUploadOutcome(
            employee_no=employee_no,
            status_code=int(status_code) if str(status_code).isascii() and str(status_code).isdigit() else None,
            status_string=data.get("statusString") or "",
        )

    def get_capabilities(self) -> Optional[Capabilities]:
        """User/face capacity, or None on firmware without the endpoint."""
        try:
            data = self._call(DeviceOperation.CAPABILITIES, "GET", CAPABILITIES_PATH, check_status_code=False).json()
        except DeviceError as e:
            logger.debug(f"Capabilities not available on {self.address}: {e.describe()}")
            return None

        cap = data.get("UserInfoCap")
        if not isinstance(cap, dict):
            return None
        return Capabilities(max_users=to_int(cap.get("maxUserNum")), max_faces=to_int(cap.get("maxFaceNum")))

    def get_face_count(self) -> int:
        """Total face records over all face libraries."""
        data = self._call(DeviceOperation.FACE_COUNT, "GET", FACE_COUNT_PATH, check_status_code=False).json()
        counts = data.get("FDRecordDataInfo") or []
        if isinstance(counts, dict):
            counts = [counts]
        return sum(to_int(c.get("recordDataNumber")) for c in counts if isinstance(c, dict))

    def capture_face(self, timeout: Optional[float] = None) -> bytes:
        """Have the terminal camera capture a face and return the JPEG.

        The device blocks until it sees a face, so the timeout is long.
        """
        result = self._call(
            DeviceOperation.CAPTURE_FACE,
            "POST",
            CAPTURE_FACE_PATH,
            body=CAPTURE_FACE_BODY.encode("utf-8"),
            headers={"Content-Type": "application/xml"},
            timeout=timeout or self.device_config.capture_timeout_seconds,
            check_status_code=False,
        )
        payload = result.response.body if result.response is not None else b""
        jpeg = extract_jpeg(payload)
        if jpeg is None:
            raise DeviceError(
                "No JPEG data in capture answer",
                status=result.response.status if result.response is not None else 0,
                body=payload[:200],
                method="POST",
                path=CAPTURE_FACE_PATH,
                address=self.address,
            )
        logger.info(f"Captured face on {self.address}: {len(jpeg)} bytes")
        return jpeg
