"""Exception taxonomy for device communication and enrollment.

Every failure the client can surface derives from ``HikEnrollError`` so callers
can catch the whole family at once, while the concrete classes let them tell a
network problem apart from a credential problem or a device-side rejection.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional


class HikEnrollError(Exception):
    """Base class for all client errors."""

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.address = address


class TransportError(HikEnrollError):
    """Device unreachable, connection reset or request timed out."""


class ChallengeError(HikEnrollError):
    """Device did not answer the probe with a Digest challenge."""


class DeviceUnreachableError(ChallengeError, TransportError):
    """The challenge probe itself could not reach the device."""


class AuthenticationError(HikEnrollError):
    """Credentials rejected after the permitted nonce refresh."""

    status = 401


class AddressNotAllowedError(HikEnrollError, ValueError):
    """Target address is not a private LAN IPv4 literal."""


class PhotoDownloadError(HikEnrollError):
    """Student photo could not be fetched or is not usable."""


class EmployeeNumberCollisionError(HikEnrollError):
    """Two different names derived the same employee number."""


class DeviceError(HikEnrollError):
    """The device answered with an error status or rejected the request."""

    def __init__(
        self,
        message: str,
        status: int,
        body: bytes | str = b"",
        method: str = "",
        path: str = "",
        address: Optional[str] = None,
    ):
        super().__init__(message, address)
        self.status = status
        self.body = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        self.method = method
        self.path = path

    @property
    def payload(self) -> Optional[Dict[str, Any]]:
        """Parsed JSON body, or None when the device answered with XML/text."""
        try:
            data = json.loads(self.body)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    @property
    def sub_status_code(self) -> str:
        payload = self.payload or {}
        sub = payload.get("subStatusCode")
        if not sub and isinstance(payload.get("StatusString"), dict):
            sub = payload["StatusString"].get("subStatusCode")
        return str(sub) if sub else ""

    @property
    def error_msg(self) -> str:
        error_msg = (self.payload or {}).get("errorMsg")
        return str(error_msg) if error_msg else ""

    @property
    def status_string(self) -> str:
        status_string = (self.payload or {}).get("statusString") or ""
        return status_string if isinstance(status_string, str) else ""

    def describe(self) -> str:
        """Short human readable summary including the raw device message."""
        parts = [f"HTTP {self.status}"]
        if self.status_string:
            parts.append(self.status_string)
        if self.sub_status_code:
            parts.append(self.sub_status_code)
        if self.error_msg:
            parts.append(f"({self.error_msg})")
        if self.payload is None and self.body:
            parts.append(self.body[:200])
        return " ".join(parts)

    def __str__(self) -> str:
        return f"{self.message}: {self.describe()}"
