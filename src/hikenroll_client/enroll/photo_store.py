"""Photo retrieval for enrollment.

Student photos live in an external object store and are handed to us as
time-bounded signed URLs. ``HttpPhotoStore`` fetches them over plain HTTP(S);
anything implementing ``PhotoStore`` can replace it (tests use an in-memory
store).
"""

from __future__ import annotations

import base64
import binascii
import http.client
import re
import socket
from typing import Optional, Protocol
from urllib.parse import urlsplit
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from loguru import logger

from ..errors import PhotoDownloadError
from ..gateway.multipart import is_jpeg

ALLOWED_SCHEMES = ("http", "https")

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)


class PhotoStore(Protocol):
    """Anything that turns a photo URL into JPEG bytes."""

    def fetch(self, url: str) -> bytes:
        """Return the photo bytes or raise ``PhotoDownloadError``."""
        ...


class HttpPhotoStore:
    """Downloads photos with urllib, bounded in time and size."""

    def __init__(self, timeout_seconds: float = 15.0, max_bytes: int = 5 * 1024 * 1024, user_agent: str = "HikEnroll-Client/1.0.0"):
        self.timeout_seconds = timeout_seconds
        self.max_bytes = max_bytes
        self.user_agent = user_agent

    def fetch(self, url: str) -> bytes:
        """Download one photo.

        Raises:
            PhotoDownloadError: Unsupported URL, network failure, non-2xx
                answer, or a body the terminal cannot use
        """
        if not url:
            raise PhotoDownloadError("No photo URL")
        try:
            scheme = urlsplit(url).scheme.lower()
        except ValueError as e:
            raise PhotoDownloadError(f"Malformed photo URL: {e}") from e
        if scheme not in ALLOWED_SCHEMES:
            raise PhotoDownloadError(f"Unsupported photo URL scheme {scheme!r}" if scheme else "Photo URL is not an absolute HTTP(S) URL")

        try:
            req = Request(url, headers={"User-Agent": self.user_agent}, method="GET")
            with urlopen(req, timeout=self.timeout_seconds) as response:
                data = response.read(self.max_bytes + 1)
        except HTTPError as e:
            e.close()
            raise PhotoDownloadError(f"HTTP {e.code} {e.reason}") from e
        except (URLError, http.client.HTTPException, ValueError, socket.timeout, TimeoutError, ConnectionError) as e:
            reason = getattr(e, "reason", None) or repr(e)
            raise PhotoDownloadError(f"Network error: {reason}") from e

        check_photo(data, self.max_bytes)
        logger.debug(f"Downloaded photo: {len(data)} bytes")
        return data


def check_photo(data: bytes, max_bytes: Optional[int] = None) -> bytes:
    """Reject photos the terminal cannot use."""
    if not data:
        raise PhotoDownloadError("Photo is empty")
    if max_bytes is not None and len(data) > max_bytes:
        raise PhotoDownloadError(f"Photo exceeds {max_bytes} bytes")
    if not is_jpeg(data):
        raise PhotoDownloadError("Photo is not a JPEG image")
    return data


def decode_image_payload(payload: str) -> bytes:
    """Decode a base64 image, optionally wrapped as a ``data:image/...;base64,`` URL."""
    encoded = _DATA_URL_PREFIX.sub("", payload.strip(), count=1)
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PhotoDownloadError(f"Invalid base64 image data: {e}") from e
