"""Tests for the urllib HTTP transport."""

import socket
import threading

import pytest

from hikenroll_client.errors import TransportError
from hikenroll_client.transport import HTTPResponse, HTTPTransport, TransportConfig


def test_response_json_variants():
    assert HTTPResponse(200, {}, b"").json() == {}
    assert HTTPResponse(200, {}, b'{"statusCode": 1}').json() == {"statusCode": 1}
    assert HTTPResponse(200, {}, b"[1, 2]").json() == {"data": [1, 2]}
    assert HTTPResponse(200, {}, b"<xml/>").json() == {"raw": "<xml/>"}


def test_header_lookup_is_case_insensitive():
    response = HTTPResponse(401, {"www-authenticate": 'Digest realm="r"'})
    assert response.header("WWW-Authenticate") == 'Digest realm="r"'
    assert response.header("X-Missing", "none") == "none"


def test_connection_refused_is_transport_error():
    transport = HTTPTransport(TransportConfig(timeout_seconds=2))

    with pytest.raises(TransportError, match="Network error"):
        transport.send("GET", "http://127.0.0.1:9/ISAPI/System/deviceInfo")

    stats = transport.get_stats()
    assert stats["total_requests"] == 1
    assert stats["total_failures"] == 1


@pytest.fixture
def garbled_server():
    """A socket that answers any request with a line that is not an HTTP status line."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)

    def answer():
        conn, _ = server.accept()
        with conn:
            conn.recv(65536)
            conn.sendall(b"GARBAGE\r\n\r\n")

    thread = threading.Thread(target=answer, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.getsockname()[1]}"
    finally:
        thread.join(timeout=2)
        server.close()


def test_garbled_answer_is_transport_error(garbled_server):
    transport = HTTPTransport(TransportConfig(timeout_seconds=2))

    with pytest.raises(TransportError, match="BadStatusLine"):
        transport.send("GET", f"{garbled_server}/ISAPI/System/deviceInfo")

    assert transport.get_stats()["total_failures"] == 1


def test_malformed_url_is_transport_error():
    transport = HTTPTransport()

    with pytest.raises(TransportError, match="Network error"):
        transport.send("GET", "not a url")


def test_stats_are_exact_under_concurrency():
    transport = HTTPTransport(TransportConfig(timeout_seconds=2))

    def hammer():
        for _ in range(5):
            with pytest.raises(TransportError):
                transport.send("GET", "http://127.0.0.1:9/")

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = transport.get_stats()
    assert stats["total_requests"] == 40
    assert stats["total_failures"] == 40
