"""Decision table for device error answers.

Maps (operation, HTTP status, ISAPI sub-status, errorMsg) to what the caller
should do about it. Rows are checked in order, first match wins, and anything
unmatched is fatal for that operation. 401 is not listed: the digest client
owns it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..errors import DeviceError

ANY = "*"


class Disposition(str, Enum):
    """What a device error means for the current operation."""

    SUCCESS = "success"  # Benign, the desired end state already holds
    RETRY = "retry"  # Transient, worth another attempt
    FATAL = "fatal"


class DeviceOperation(str, Enum):
    """Gateway operations with their own benign error codes."""

    DEVICE_INFO = "deviceInfo"
    SEARCH_USERS = "searchUsers"
    CREATE_USER = "createUser"
    DELETE_USER = "deleteUser"
    DELETE_FACE = "deleteFace"
    UPLOAD_FACE = "uploadFace"
    CAPABILITIES = "capabilities"
    FACE_COUNT = "faceCount"
    CAPTURE_FACE = "captureFace"


@dataclass(frozen=True)
class StatusRule:
    """One row of the decision table; None/ANY fields match anything."""

    operation: Optional[DeviceOperation]
    status: Optional[int]
    sub_status: str
    disposition: Disposition
    error_msg: Optional[str] = None

    def matches(self, operation: DeviceOperation, status: int, sub_status: str, error_msg: str) -> bool:
        if self.operation is not None and self.operation != operation:
            return False
        if self.status is not None and self.status != status:
            return False
        if self.sub_status != ANY and self.sub_status != sub_status:
            return False
        if self.error_msg is not None and self.error_msg != error_msg:
            return False
        return True


DECISION_TABLE: Tuple[StatusRule, ...] = (
    # Idempotent create
    StatusRule(DeviceOperation.CREATE_USER, None, "deviceUserAlreadyExist", Disposition.SUCCESS),
    StatusRule(DeviceOperation.CREATE_USER, None, "employeeNoAlreadyExist", Disposition.SUCCESS),
    # Already deleted
    StatusRule(DeviceOperation.DELETE_USER, None, "employeeNoNotExist", Disposition.SUCCESS),
    StatusRule(DeviceOperation.DELETE_USER, None, "deviceUserNotExist", Disposition.SUCCESS),
    StatusRule(DeviceOperation.DELETE_USER, None, "badJsonContent", Disposition.SUCCESS, error_msg="employeeNo"),
    # No face stored for this person
    StatusRule(DeviceOperation.DELETE_FACE, None, "employeeNoNotExist", Disposition.SUCCESS),
    StatusRule(DeviceOperation.DELETE_FACE, None, "deviceUserNotExist", Disposition.SUCCESS),
    # Busy terminal
    StatusRule(None, None, "deviceBusy", Disposition.RETRY),
    StatusRule(None, 503, ANY, Disposition.RETRY),
)


def classify(operation: DeviceOperation, error: DeviceError) -> Disposition:
    """Look up the disposition of a device error for the given operation."""
    return classify_status(operation, error.status, error.sub_status_code, error.error_msg)


def classify_status(operation: DeviceOperation, status: int, sub_status: str = "", error_msg: str = "") -> Disposition:
    for rule in DECISION_TABLE:
        if rule.matches(operation, status, sub_status, error_msg):
            return rule.disposition
    return Disposition.FATAL
