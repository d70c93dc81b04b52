"""Typed gateway to the terminal's ISAPI surface."""

from .address_policy import ensure_allowed_address, is_allowed_address
from .device_gateway import DeviceGateway
from .models import Capabilities, CreateUserOutcome, DeleteUserOutcome, DeviceInfo, DeviceSummary, EnrolledUser, FaceUploadOutcome, UserPage
from .status_codes import DECISION_TABLE, DeviceOperation, Disposition, classify

__all__ = [
    "DeviceGateway",
    "DeviceInfo",
    "DeviceSummary",
    "EnrolledUser",
    "Capabilities",
    "UserPage",
    "CreateUserOutcome",
    "DeleteUserOutcome",
    "FaceUploadOutcome",
    "DeviceOperation",
    "Disposition",
    "DECISION_TABLE",
    "classify",
    "is_allowed_address",
    "ensure_allowed_address",
]
