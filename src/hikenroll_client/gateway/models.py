"""Pydantic models for device state read through the gateway."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

_READ_ONLY = ConfigDict(populate_by_name=True, frozen=True)


def to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class DeviceInfo(BaseModel):
    """Identity of a terminal from ``/ISAPI/System/deviceInfo``."""

    model_config = _READ_ONLY

    model: str = ""
    name: str = Field("", alias="deviceName")
    firmware_version: str = Field("", alias="firmwareVersion")
    serial_number: str = Field("", alias="serialNumber")
    mac_address: str = Field("", alias="macAddress")


class EnrolledUser(BaseModel):
    """Read-only projection of a user record on the device."""

    model_config = _READ_ONLY

    employee_no: str = Field(..., alias="employeeNo")
    name: str = ""
    user_type: str = Field("", alias="userType")
    face_count: int = Field(0, alias="faceCount")
    card_count: int = Field(0, alias="cardCount")
    fingerprint_count: int = Field(0, alias="fingerprintCount")

    @classmethod
    def from_device(cls, record: Dict[str, Any]) -> EnrolledUser:
        """Build from one ``UserInfo`` entry of a search answer."""
        return cls(
            employee_no=str(record.get("employeeNo") or ""),
            name=record.get("name") or "",
            user_type=record.get("userType") or "",
            face_count=to_int(record.get("numOfFace")),
            card_count=to_int(record.get("numOfCard")),
            fingerprint_count=to_int(record.get("numOfFP")),
        )


class Capabilities(BaseModel):
    """User/face capacity of the terminal."""

    model_config = _READ_ONLY

    max_users: int = Field(0, alias="maxUsers")
    max_faces: int = Field(0, alias="maxFaces")


class UserPage(BaseModel):
    """One page of a user directory search."""

    model_config = _READ_ONLY

    users: List[EnrolledUser] = Field(default_factory=list)
    total_matches: int = Field(0, alias="totalMatches")


class CreateUserOutcome(BaseModel):
    model_config = _READ_ONLY

    employee_no: str = Field(..., alias="employeeNo")
    existed: bool = False


class DeleteUserOutcome(BaseModel):
    model_config = _READ_ONLY

    employee_no: str = Field(..., alias="employeeNo")
    face_deleted: bool = Field(False, alias="faceDeleted")
    already_removed: bool = Field(False, alias="alreadyRemoved")


class FaceUploadOutcome(BaseModel):
    model_config = _READ_ONLY

    employee_no: str = Field(..., alias="employeeNo")
    status_code: Optional[int] = Field(None, alias="statusCode")
    status_string: str = Field("", alias="statusString")


class DeviceSummary(BaseModel):
    """Everything ``connect`` reports about a terminal."""

    model_config = _READ_ONLY

    address: str
    device: DeviceInfo
    users: List[EnrolledUser] = Field(default_factory=list)
    total_users: int = Field(0, alias="totalUsers")
    total_faces: int = Field(0, alias="totalFaces")
    capacity: Optional[Capabilities] = None
