"""Multipart bodies for face upload and JPEG extraction from capture answers."""

from __future__ import annotations

import json
import secrets
from typing import Any, Dict, Optional, Tuple

JPEG_SOI = b"\xff\xd8"
JPEG_EOI = b"\xff\xd9"


def build_face_multipart(record: Dict[str, Any], jpeg: bytes, boundary: Optional[str] = None) -> Tuple[bytes, str]:
    """Build the FDSetUp body: a ``FaceDataRecord`` JSON part and a ``FaceImage`` JPEG part.

    Returns:
        Tuple of (body, content_type)
    """
    boundary = boundary or "----HikEnrollBoundary" + secrets.token_hex(8)
    head = (
        f"--{boundary}\r\n"
        'Content-Disposition: form-data; name="FaceDataRecord"\r\n'
        "Content-Type: application/json\r\n\r\n"
        f"{json.dumps(record)}\r\n"
        f"--{boundary}\r\n"
        'Content-Disposition: form-data; name="FaceImage"; filename="face.jpg"\r\n'
        "Content-Type: image/jpeg\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + jpeg + tail, f"multipart/form-data; boundary={boundary}"


def extract_jpeg(payload: bytes) -> Optional[bytes]:
    """Cut the JPEG out of a multipart answer, from the first SOI to the last EOI."""
    start = payload.find(JPEG_SOI)
    end = payload.rfind(JPEG_EOI)
    if start == -1 or end == -1 or end < start:
        return None
    return payload[start : end + len(JPEG_EOI)]


def is_jpeg(data: bytes) -> bool:
    return data.startswith(JPEG_SOI)
