"""HTTP Digest Authentication client for ISAPI terminals.

The terminals only accept Digest auth and generic digest helpers fail against
them, so the handshake is done here by hand:

    1. Get a challenge (cached per device, or via an unauthenticated probe)
    2. Compute the Authorization header and send the real request
    3. On 401 the nonce went stale: drop the challenge, re-probe, retry once
"""

from __future__ import annotations

import hashlib
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import DeviceConfig
from ..errors import AuthenticationError, ChallengeError, DeviceError, DeviceUnreachableError, TransportError
from ..transport import HTTPResponse, HTTPTransport, TransportConfig
from .challenge_cache import DigestChallenge, DigestChallengeCache

# Initial attempt plus one retry after a stale nonce
MAX_AUTH_ATTEMPTS = 2


class DeviceCredentials(BaseModel):
    """Network address and login of one terminal."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True, extra="forbid")

    address: str = Field(..., min_length=1, description="Device IP literal, optionally with :port")
    username: str = Field(..., min_length=1, description="Device account name")
    password: str = Field(..., min_length=1, repr=False, description="Device account password")

    @property
    def base_url(self) -> str:
        return f"http://{self.address}"


@dataclass
class DeviceResponse:
    """Successful (< 400) device answer."""

    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Dict[str, Any]:
        return HTTPResponse(self.status, self.headers, self.body).json()


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def compute_digest_response(
    username: str,
    realm: str,
    password: str,
    method: str,
    uri: str,
    nonce: str,
    nc: str,
    cnonce: str,
    qop: str = "auth",
) -> str:
    """RFC 2617 ``response`` value for qop=auth with MD5."""
    ha1 = _md5(f"{username}:{realm}:{password}")
    ha2 = _md5(f"{method}:{uri}")
    return _md5(f"{ha1}:{nonce}:{nc}:{cnonce}:{qop}:{ha2}")


class DigestAuthClient:
    """Issues Digest-authenticated requests with challenge caching."""

    def __init__(
        self,
        cache: Optional[DigestChallengeCache] = None,
        transport: Optional[HTTPTransport] = None,
        config: Optional[DeviceConfig] = None,
    ):
        """Initialize the digest client.

        Args:
            cache: Challenge cache, shared by every client of the same process
            transport: HTTP transport, a urllib one by default
            config: Device timeouts and probe path
        """
        self.config = config or DeviceConfig()
        self.cache = cache if cache is not None else DigestChallengeCache()
        self.transport = transport or HTTPTransport(
            TransportConfig(timeout_seconds=self.config.request_timeout_seconds, user_agent=self.config.user_agent)
        )

        # Statistics, shared by every thread using this client
        self._stats_lock = threading.Lock()
        self._total_requests = 0
        self._total_probes = 0
        self._total_stale_retries = 0
        self._total_auth_failures = 0
        self._last_error: Optional[str] = None

    def get_challenge(self, credentials: DeviceCredentials) -> DigestChallenge:
        """Return the cached challenge for the device, probing for one if needed."""
        cached = self.cache.get(credentials.address)
        if cached is not None:
            return cached

        url = credentials.base_url + self.config.probe_path
        with self._stats_lock:
            self._total_probes += 1
        try:
            probe = self.transport.send("GET", url, timeout=self.config.probe_timeout_seconds)
        except TransportError as e:
            self._last_error = e.message
            raise DeviceUnreachableError(f"Cannot reach device at {credentials.address}: {e.message}", credentials.address) from e

        if probe.status != 401:
            raise ChallengeError(
                f"Probe of {credentials.address} returned HTTP {probe.status} instead of a Digest challenge",
                credentials.address,
            )

        try:
            challenge = DigestChallenge.from_header(probe.header("WWW-Authenticate"))
        except ChallengeError as e:
            e.address = credentials.address
            self._last_error = e.message
            raise

        self.cache.put(credentials.address, challenge)
        return challenge

    def build_authorization(
        self,
        credentials: DeviceCredentials,
        method: str,
        uri: str,
        challenge: DigestChallenge,
        cnonce: Optional[str] = None,
    ) -> str:
        """Build the ``Authorization: Digest ...`` header value.

        Each call consumes one ``nc`` value for the challenge's nonce.
        """
        nc = self.cache.next_counter(challenge.realm, challenge.nonce)
        cnonce = cnonce or secrets.token_hex(8)
        response = compute_digest_response(
            credentials.username,
            challenge.realm,
            credentials.password,
            method.upper(),
            uri,
            challenge.nonce,
            nc,
            cnonce,
            challenge.qop,
        )

        parts = [
            f'Digest username="{credentials.username}"',
            f'realm="{challenge.realm}"',
            f'nonce="{challenge.nonce}"',
            f'uri="{uri}"',
            f"qop={challenge.qop}",
            f"nc={nc}",
            f'cnonce="{cnonce}"',
            f'response="{response}"',
        ]
        if challenge.opaque:
            parts.append(f'opaque="{challenge.opaque}"')
        return ", ".join(parts)

    def authenticated_request(
        self,
        credentials: DeviceCredentials,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> DeviceResponse:
        """Send a Digest-authenticated request to the device.

        Args:
            credentials: Target device and login
            method: HTTP method
            path: ISAPI path including query string
            body: Raw request body
            extra_headers: Additional headers (Content-Type etc.)
            timeout: Per-call timeout, defaults to the metadata timeout

        Returns:
            The device answer for statuses below 400

        Raises:
            ChallengeError: Device did not issue a Digest challenge
            AuthenticationError: 401 again after one nonce refresh
            DeviceError: Any other status >= 400
            TransportError: Connection failure or timeout (not retried)
        """
        method = method.upper()
        url = credentials.base_url + path
        headers = dict(extra_headers or {})
        if body is not None and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/json"
        timeout = timeout if timeout is not None else self.config.request_timeout_seconds

        for attempt in range(MAX_AUTH_ATTEMPTS):
            challenge = self.get_challenge(credentials)
            headers["Authorization"] = self.build_authorization(credentials, method, path, challenge)

            with self._stats_lock:
                self._total_requests += 1
            try:
                response = self.transport.send(method, url, body=body, headers=headers, timeout=timeout)
            except TransportError as e:
                e.address = credentials.address
                self._last_error = e.message
                raise

            if response.status == 401:
                # Nonce may be stale, or the credentials are wrong
                self.cache.invalidate(credentials.address)
                if attempt + 1 < MAX_AUTH_ATTEMPTS:
                    with self._stats_lock:
                        self._total_stale_retries += 1
                    logger.debug(f"{method} {path} on {credentials.address} got 401, refreshing challenge")
                    continue

                with self._stats_lock:
                    self._total_auth_failures += 1
                self._last_error = f"Authentication failed for {credentials.address}"
                logger.warning(f"Device {credentials.address} rejected credentials for user {credentials.username!r}")
                raise AuthenticationError("Invalid username or password", credentials.address)

            if response.status >= 400:
                error = DeviceError(
                    f"ISAPI {method} {path} returned {response.status}",
                    status=response.status,
                    body=response.body,
                    method=method,
                    path=path,
                    address=credentials.address,
                )
                self._last_error = str(error)
                raise error

            return DeviceResponse(status=response.status, body=response.body, headers=response.headers)

        # Unreachable: the loop either returns or raises
        raise AuthenticationError("Invalid username or password", credentials.address)

    def get_stats(self) -> Dict[str, Any]:
        """Get digest client statistics."""
        with self._stats_lock:
            return {
                "total_requests": self._total_requests,
                "total_probes": self._total_probes,
                "total_stale_retries": self._total_stale_retries,
                "total_auth_failures": self._total_auth_failures,
                "cached_devices": len(self.cache),
                "last_error": self._last_error,
            }
