"""HTTP transport for talking to access-control terminals.

This module provides the raw HTTP round trip used by the digest client. It
never raises for HTTP error statuses: every answer the device sends, 401
included, comes back as an ``HTTPResponse`` so the caller can run the Digest
handshake. Only network level failures raise, as ``TransportError``.
"""

from __future__ import annotations

import http.client
import json
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from loguru import logger

from ..errors import TransportError


@dataclass
class TransportConfig:
    """Configuration for the HTTP transport."""

    timeout_seconds: float = 15.0  # Default per-request timeout
    user_agent: str = "HikEnroll-Client/1.0.0"


@dataclass
class HTTPResponse:
    """Status, headers and raw body of one device answer."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)  # Lower-case names
    body: bytes = b""

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Dict[str, Any]:
        """Parse the body as JSON, keeping the raw text when it is not JSON."""
        if not self.body:
            return {}
        try:
            data = json.loads(self.body)
        except ValueError:
            return {"raw": self.text[:500]}
        return data if isinstance(data, dict) else {"data": data}


class HTTPTransport:
    """urllib based transport with per-call timeouts."""

    def __init__(self, config: Optional[TransportConfig] = None):
        """Initialize the HTTP transport.

        Args:
            config: Transport configuration
        """
        self.config = config or TransportConfig()

        # Statistics, shared by every thread using this transport
        self._stats_lock = threading.Lock()
        self._total_requests = 0
        self._total_failures = 0
        self._total_time = 0.0
        self._last_success: Optional[datetime] = None
        self._last_error: Optional[str] = None

    def send(
        self,
        method: str,
        url: str,
        body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HTTPResponse:
        """Send a single HTTP request.

        Args:
            method: HTTP method
            url: Absolute URL
            body: Raw request body
            headers: Request headers
            timeout: Timeout in seconds, defaults to the configured one

        Returns:
            The device answer, whatever its status

        Raises:
            TransportError: On network failure, a malformed URL or an unreadable answer
        """
        request_headers = {"User-Agent": self.config.user_agent}
        request_headers.update(headers or {})
        timeout = timeout if timeout is not None else self.config.timeout_seconds

        start_time = time.time()
        with self._stats_lock:
            self._total_requests += 1

        try:
            req = Request(url, data=body, headers=request_headers, method=method.upper())
            with urlopen(req, timeout=timeout) as response:
                result = HTTPResponse(
                    status=response.status,
                    headers={k.lower(): v for k, v in response.headers.items()},
                    body=response.read(),
                )

        except HTTPError as e:
            # Error statuses are answers, not failures
            result = HTTPResponse(
                status=e.code,
                headers={k.lower(): v for k, v in (e.headers or {}).items()},
                body=e.read() or b"",
            )
            e.close()

        except (URLError, http.client.HTTPException, ValueError, socket.timeout, TimeoutError, ConnectionError) as e:
            # HTTPException covers garbled or truncated answers, ValueError a malformed URL
            reason = getattr(e, "reason", None) or repr(e)
            error_msg = f"Network error on {method.upper()} {url}: {reason}"
            with self._stats_lock:
                self._total_failures += 1
                self._last_error = error_msg
            logger.warning(error_msg)
            raise TransportError(error_msg) from e

        elapsed = time.time() - start_time
        with self._stats_lock:
            self._total_time += elapsed
            self._last_success = datetime.now()
        logger.debug(f"{method.upper()} {url} -> {result.status} in {elapsed:.2f}s")
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get transport statistics.

        Returns:
            Dictionary with transport statistics
        """
        with self._stats_lock:
            return {
                "total_requests": self._total_requests,
                "total_failures": self._total_failures,
                "average_request_time_seconds": self._total_time / max(1, self._total_requests - self._total_failures),
                "last_success": self._last_success.isoformat() if self._last_success else None,
                "last_error": self._last_error,
            }
