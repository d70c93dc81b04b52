"""HTTP transport module for device requests."""

from .http_transport import HTTPResponse, HTTPTransport, TransportConfig

__all__ = ["HTTPTransport", "HTTPResponse", "TransportConfig"]
