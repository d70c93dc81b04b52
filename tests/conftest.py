"""Shared fixtures: an in-memory terminal that speaks Digest auth and scripted ISAPI answers."""

import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

import pytest

from hikenroll_client.auth import DeviceCredentials, DigestAuthClient, DigestChallengeCache
from hikenroll_client.config import HikEnrollConfig
from hikenroll_client.config.settings import EnrollmentConfig
from hikenroll_client.errors import PhotoDownloadError, TransportError
from hikenroll_client.gateway import DeviceGateway
from hikenroll_client.transport import HTTPResponse

JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"face-pixels" * 8 + b"\xff\xd9"

DEVICE_INFO_XML = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<DeviceInfo version="2.0" xmlns="http://www.isapi.org/ver20/XMLSchema">\n'
    "<deviceName>Gate A</deviceName>\n"
    "<model>DS-K1T341AMF</model>\n"
    "<serialNumber>DS-K1T341AMF20230101</serialNumber>\n"
    "<macAddress>44:47:cc:00:11:22</macAddress>\n"
    "<firmwareVersion>V3.2.30</firmwareVersion>\n"
    "</DeviceInfo>"
)

_AUTH_PARAM = re.compile(r'(\w+)=(?:"([^"]*)"|([^,\s]*))')

Responder = Union[HTTPResponse, Callable[["RecordedRequest"], HTTPResponse]]


def json_response(status: int, data: Any) -> HTTPResponse:
    return HTTPResponse(status=status, headers={"content-type": "application/json"}, body=json.dumps(data).encode("utf-8"))


def ok_response(**extra: Any) -> HTTPResponse:
    return json_response(200, {"statusCode": 1, "statusString": "OK", "subStatusCode": "ok", **extra})


def error_response(status: int, sub_status: str, error_msg: str = "", status_string: str = "Invalid Content", status_code: int = 6) -> HTTPResponse:
    data = {"statusCode": status_code, "statusString": status_string, "subStatusCode": sub_status}
    if error_msg:
        data["errorMsg"] = error_msg
    return json_response(status, data)


def xml_response(text: str) -> HTTPResponse:
    return HTTPResponse(status=200, headers={"content-type": "application/xml"}, body=text.encode("utf-8"))


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: Dict[str, str]
    body: Optional[bytes]
    auth: Dict[str, str] = field(default_factory=dict)

    def json(self) -> Dict[str, Any]:
        return json.loads(self.body or b"{}")


class FakeDevice:
    """Transport double emulating a terminal.

    Unauthenticated requests get a 401 Digest challenge. Authenticated ones
    are verified against the configured password and routed by
    (method, path-with-query) to scripted answers; the last scripted answer of
    a route repeats.
    """

    def __init__(self, username: str = "admin", password: str = "secret", realm: str = "DS-K1T341AMF"):
        self.username = username
        self.password = password
        self.realm = realm
        self.nonce_generation = 1
        self.routes: Dict[Tuple[str, str], List[Responder]] = {}
        self.requests: List[RecordedRequest] = []
        self.probes = 0
        self.auth_attempts = 0
        self.unreachable = False
        self.stale_answers = 0  # Authenticated requests to answer with 401 before accepting
        self.opaque = ""

    @property
    def nonce(self) -> str:
        return f"4e6f6e6365{self.nonce_generation:06d}"

    def expire_nonce(self) -> None:
        self.nonce_generation += 1

    def route(self, method: str, path: str, *responses: Responder) -> None:
        self.routes[(method.upper(), path)] = list(responses)

    def requests_to(self, path_prefix: str) -> List[RecordedRequest]:
        return [r for r in self.requests if r.path.startswith(path_prefix)]

    def get_stats(self) -> Dict[str, Any]:
        return {"total_requests": self.probes + self.auth_attempts}

    def _challenge(self) -> HTTPResponse:
        header = f'Digest qop="auth", realm="{self.realm}", nonce="{self.nonce}", stale="FALSE"'
        if self.opaque:
            header += f', opaque="{self.opaque}"'
        return HTTPResponse(status=401, headers={"www-authenticate": header}, body=b"")

    def _verify(self, method: str, auth: Dict[str, str]) -> bool:
        if auth.get("nonce") != self.nonce or auth.get("username") != self.username:
            return False
        ha1 = _md5(f"{self.username}:{self.realm}:{self.password}")
        ha2 = _md5(f"{method}:{auth.get('uri')}")
        expected = _md5(f"{ha1}:{auth['nonce']}:{auth.get('nc')}:{auth.get('cnonce')}:{auth.get('qop')}:{ha2}")
        return expected == auth.get("response")

    def send(self, method: str, url: str, body: Optional[bytes] = None, headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None) -> HTTPResponse:
        if self.unreachable:
            raise TransportError(f"Network error on {method} {url}: [Errno 113] No route to host")

        parts = urlsplit(url)
        path = parts.path + (f"?{parts.query}" if parts.query else "")
        headers = dict(headers or {})

        authorization = headers.get("Authorization")
        if not authorization:
            self.probes += 1
            return self._challenge()

        self.auth_attempts += 1
        auth = {m.group(1): m.group(2) if m.group(2) is not None else m.group(3) for m in _AUTH_PARAM.finditer(authorization[len("Digest ") :])}
        if self.stale_answers > 0:
            self.stale_answers -= 1
            self.expire_nonce()
            return self._challenge()
        if not self._verify(method, auth):
            return self._challenge()

        request = RecordedRequest(method=method, path=path, headers=headers, body=body, auth=auth)
        self.requests.append(request)

        responders = self.routes.get((method, path))
        if not responders:
            return error_response(404, "notSupport", status_string="Invalid Operation", status_code=4)
        responder = responders.pop(0) if len(responders) > 1 else responders[0]
        return responder(request) if callable(responder) else responder


class MemoryPhotoStore:
    """Photo store backed by a dict of URL to bytes."""

    def __init__(self, photos: Optional[Dict[str, bytes]] = None):
        self.photos = dict(photos or {})
        self.fetched: List[str] = []

    def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        if url not in self.photos:
            raise PhotoDownloadError(f"HTTP 403 Forbidden for {url}")
        return self.photos[url]


def enrollment_routes(device: FakeDevice) -> None:
    """Answers for a device that accepts every user and face."""
    device.route("POST", "/ISAPI/AccessControl/UserInfo/Record?format=json", ok_response())
    device.route("PUT", "/ISAPI/Intelligent/FDLib/FDSetUp?format=json", ok_response())


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def credentials() -> DeviceCredentials:
    return DeviceCredentials(address="192.168.1.64", username="admin", password="secret")


@pytest.fixture
def enrollment_config() -> EnrollmentConfig:
    return EnrollmentConfig(busy_retry_delay_seconds=0.0)


@pytest.fixture
def auth_client(device: FakeDevice) -> DigestAuthClient:
    return DigestAuthClient(cache=DigestChallengeCache(), transport=device)


@pytest.fixture
def gateway(credentials: DeviceCredentials, auth_client: DigestAuthClient, enrollment_config: EnrollmentConfig) -> DeviceGateway:
    return DeviceGateway(credentials, auth_client=auth_client, enrollment_config=enrollment_config)


@pytest.fixture
def photo_store() -> MemoryPhotoStore:
    return MemoryPhotoStore()


@pytest.fixture
def config(enrollment_config: EnrollmentConfig) -> HikEnrollConfig:
    return HikEnrollConfig(enrollment=enrollment_config)
