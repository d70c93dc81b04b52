"""Digest challenge parsing and the per-device challenge cache.

Probing a terminal costs one extra round trip, so the most recent challenge
for each device address is kept and reused until a request using it is
rejected. The cache is an ordinary object owned by whoever hosts the gateway;
nothing here is module level state.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from loguru import logger

from ..errors import ChallengeError

_PARAM_RE = re.compile(r'(\w+)=(?:"([^"]*)"|([^\s,]+))')


@dataclass(frozen=True)
class DigestChallenge:
    """Parameters of a ``WWW-Authenticate: Digest`` challenge."""

    realm: str
    nonce: str
    qop: str = "auth"
    opaque: str = ""
    algorithm: str = "MD5"

    @classmethod
    def from_header(cls, header: Optional[str]) -> DigestChallenge:
        """Parse a ``WWW-Authenticate`` header value.

        Raises:
            ChallengeError: If the header is missing, not Digest, or lacks a nonce
        """
        if not header or not header.strip().lower().startswith("digest"):
            raise ChallengeError(f"Device did not return a Digest challenge (got {header!r})")

        params: Dict[str, str] = {}
        for match in _PARAM_RE.finditer(header.strip()[len("digest") :]):
            key, quoted, bare = match.groups()
            params[key.lower()] = quoted if quoted is not None else bare

        if "nonce" not in params:
            raise ChallengeError("Digest challenge has no nonce")

        # The terminal may offer "auth,auth-int"; only auth is supported
        offered = [q.strip() for q in params.get("qop", "auth").split(",") if q.strip()]
        qop = "auth" if "auth" in offered or not offered else offered[0]

        return cls(
            realm=params.get("realm", ""),
            nonce=params["nonce"],
            qop=qop,
            opaque=params.get("opaque", ""),
            algorithm=params.get("algorithm", "MD5"),
        )


class DigestChallengeCache:
    """Last seen challenge per device address plus per-nonce request counters."""

    def __init__(self):
        self._challenges: Dict[str, DigestChallenge] = {}
        self._counters: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def get(self, address: str) -> Optional[DigestChallenge]:
        with self._lock:
            return self._challenges.get(address)

    def put(self, address: str, challenge: DigestChallenge) -> None:
        """Store a challenge, replacing (and forgetting the counter of) any previous one."""
        with self._lock:
            previous = self._challenges.get(address)
            if previous is not None and previous != challenge:
                self._counters.pop((previous.realm, previous.nonce), None)
            self._challenges[address] = challenge
        logger.debug(f"Cached digest challenge for {address} (realm={challenge.realm!r})")

    def invalidate(self, address: str) -> None:
        with self._lock:
            challenge = self._challenges.pop(address, None)
            if challenge is not None:
                self._counters.pop((challenge.realm, challenge.nonce), None)
        if challenge is not None:
            logger.debug(f"Invalidated digest challenge for {address}")

    def next_counter(self, realm: str, nonce: str) -> str:
        """Return the next ``nc`` value for this nonce as 8 hex digits."""
        key = (realm, nonce)
        with self._lock:
            value = self._counters.get(key, 0) + 1
            self._counters[key] = value
        return f"{value:08x}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)
