"""Digest authentication module for ISAPI terminals."""

from .challenge_cache import DigestChallenge, DigestChallengeCache
from .digest_client import DeviceCredentials, DeviceResponse, DigestAuthClient, compute_digest_response

__all__ = [
    "DigestChallenge",
    "DigestChallengeCache",
    "DigestAuthClient",
    "DeviceCredentials",
    "DeviceResponse",
    "compute_digest_response",
]
