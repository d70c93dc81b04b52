"""Tests for the Digest challenge cache and the authenticated request flow."""

import hashlib
import re
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
from loguru import logger

from hikenroll_client.auth import DeviceCredentials, DigestAuthClient, DigestChallenge, DigestChallengeCache, compute_digest_response
from hikenroll_client.errors import AuthenticationError, ChallengeError, DeviceError, DeviceUnreachableError, TransportError
from hikenroll_client.transport import HTTPResponse

from conftest import FakeDevice, error_response, ok_response

INFO_PATH = "/ISAPI/AccessControl/UserInfo/Count?format=json"


def test_golden_vector_from_rfc2617():
    """Digest response for the RFC 2617 section 3.5 example."""
    response = compute_digest_response(
        username="Mufasa",
        realm="testrealm@host.com",
        password="Circle Of Life",
        method="GET",
        uri="/dir/index.html",
        nonce="dcd98b7102dd2f0e8b11d0f600bfb0c093",
        nc="00000001",
        cnonce="0a4f113b",
        qop="auth",
    )
    assert response == "6629fae49393a05397450978507c4ef1"


def test_digest_matches_hand_computed_md5_chain():
    def md5(value: str) -> str:
        return hashlib.md5(value.encode()).hexdigest()

    ha1 = md5("admin:DS-K1T:pa55")
    ha2 = md5("PUT:/ISAPI/AccessControl/UserInfo/Delete?format=json")
    expected = md5(f"{ha1}:abc:0000000a:c1:auth:{ha2}")

    assert compute_digest_response("admin", "DS-K1T", "pa55", "PUT", "/ISAPI/AccessControl/UserInfo/Delete?format=json", "abc", "0000000a", "c1") == expected


def test_challenge_header_parsing():
    challenge = DigestChallenge.from_header('Digest realm="DS-K1T", qop="auth,auth-int", nonce="n1", opaque="op", stale="FALSE"')
    assert challenge.realm == "DS-K1T"
    assert challenge.nonce == "n1"
    assert challenge.qop == "auth"
    assert challenge.opaque == "op"

    bare = DigestChallenge.from_header('Digest realm="r", nonce="n2"')
    assert bare.qop == "auth"
    assert bare.opaque == ""


@pytest.mark.parametrize("header", [None, "", 'Basic realm="device"', 'Digest realm="r", qop="auth"'])
def test_challenge_header_rejected(header):
    with pytest.raises(ChallengeError):
        DigestChallenge.from_header(header)


def test_cache_counter_per_nonce():
    cache = DigestChallengeCache()
    assert cache.next_counter("r", "n1") == "00000001"
    assert cache.next_counter("r", "n1") == "00000002"
    assert cache.next_counter("r", "n2") == "00000001"

    for _ in range(13):
        value = cache.next_counter("r", "n1")
    assert value == "0000000f"


def test_cache_replacing_challenge_resets_counter():
    cache = DigestChallengeCache()
    first = DigestChallenge(realm="r", nonce="n1")
    cache.put("10.0.0.5", first)
    cache.next_counter("r", "n1")
    cache.next_counter("r", "n1")

    cache.put("10.0.0.5", DigestChallenge(realm="r", nonce="n2"))
    assert cache.get("10.0.0.5").nonce == "n2"
    assert cache.next_counter("r", "n1") == "00000001"

    cache.invalidate("10.0.0.5")
    assert cache.get("10.0.0.5") is None
    assert len(cache) == 0


def test_cache_counter_is_atomic_across_threads():
    cache = DigestChallengeCache()
    seen = []
    lock = threading.Lock()

    def worker():
        for _ in range(200):
            value = cache.next_counter("r", "n")
            with lock:
                seen.append(value)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 1600
    assert len(set(seen)) == 1600
    logger.info("✓ 1600 unique nc values from 8 threads")


def test_consecutive_requests_reuse_nonce_and_increment_nc(device, auth_client, credentials):
    device.route("GET", INFO_PATH, ok_response())

    auth_client.authenticated_request(credentials, "GET", INFO_PATH)
    auth_client.authenticated_request(credentials, "GET", INFO_PATH)

    assert device.probes == 1
    assert [r.auth["nc"] for r in device.requests] == ["00000001", "00000002"]
    assert device.requests[0].auth["nonce"] == device.requests[1].auth["nonce"]
    assert device.requests[0].auth["cnonce"] != device.requests[1].auth["cnonce"]
    assert device.requests[0].auth["uri"] == INFO_PATH


def test_stale_nonce_triggers_one_reprobe_and_one_retry(device, auth_client, credentials):
    device.route("GET", INFO_PATH, ok_response())
    auth_client.authenticated_request(credentials, "GET", INFO_PATH)
    assert device.probes == 1

    device.stale_answers = 1
    response = auth_client.authenticated_request(credentials, "GET", INFO_PATH)

    assert response.status == 200
    assert device.probes == 2
    assert device.auth_attempts == 3
    # The new nonce starts counting again
    assert device.requests[-1].auth["nc"] == "00000001"
    assert auth_client.get_stats()["total_stale_retries"] == 1


def test_second_401_is_authentication_error_without_third_attempt(device, credentials):
    client = DigestAuthClient(cache=DigestChallengeCache(), transport=device)
    wrong = DeviceCredentials(address=credentials.address, username="admin", password="wrong")

    with pytest.raises(AuthenticationError) as exc_info:
        client.authenticated_request(wrong, "GET", INFO_PATH)

    assert exc_info.value.address == credentials.address
    assert device.auth_attempts == 2
    assert device.probes == 2
    assert client.cache.get(credentials.address) is None
    assert client.get_stats()["total_auth_failures"] == 1


def test_error_status_raises_device_error_with_body(device, auth_client, credentials):
    device.route("POST", INFO_PATH, error_response(400, "badJsonContent", error_msg="employeeNo"))

    with pytest.raises(DeviceError) as exc_info:
        auth_client.authenticated_request(credentials, "POST", INFO_PATH, body=b"{}")

    error = exc_info.value
    assert error.status == 400
    assert error.sub_status_code == "badJsonContent"
    assert error.error_msg == "employeeNo"
    assert "badJsonContent" in error.describe()
    assert device.requests[0].headers["Content-Type"] == "application/json"


def test_probe_without_digest_challenge_is_challenge_error(credentials):
    class PlainDevice:
        def send(self, method, url, body=None, headers=None, timeout=None):
            return HTTPResponse(status=200, headers={}, body=b"<DeviceInfo/>")

    client = DigestAuthClient(transport=PlainDevice())
    with pytest.raises(ChallengeError) as exc_info:
        client.authenticated_request(credentials, "GET", INFO_PATH)
    assert not isinstance(exc_info.value, TransportError)


def test_unreachable_probe_is_both_challenge_and_transport_error(device, auth_client, credentials):
    device.unreachable = True

    with pytest.raises(DeviceUnreachableError) as exc_info:
        auth_client.authenticated_request(credentials, "GET", INFO_PATH)

    assert isinstance(exc_info.value, ChallengeError)
    assert isinstance(exc_info.value, TransportError)
    assert exc_info.value.address == credentials.address


def test_challenge_counter_is_exact_across_threads(device, auth_client, credentials):
    device.unreachable = True

    def fetch_challenges():
        for _ in range(25):
            with pytest.raises(DeviceUnreachableError):
                auth_client.authenticated_request(credentials, "GET", INFO_PATH)

    threads = [threading.Thread(target=fetch_challenges) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert auth_client.get_stats()["total_probes"] == 200


def test_transport_failure_on_real_request_is_not_retried(device, auth_client, credentials):
    device.route("GET", INFO_PATH, ok_response())
    auth_client.authenticated_request(credentials, "GET", INFO_PATH)

    device.unreachable = True
    with pytest.raises(TransportError):
        auth_client.authenticated_request(credentials, "GET", INFO_PATH)
    assert auth_client.get_stats()["total_requests"] == 2


def test_opaque_is_echoed(device, auth_client, credentials):
    device.opaque = "0123abcd"
    device.route("GET", INFO_PATH, ok_response())

    auth_client.authenticated_request(credentials, "GET", INFO_PATH)
    assert device.requests[0].auth["opaque"] == "0123abcd"


def test_credentials_hide_password():
    creds = DeviceCredentials(address=" 10.26.30.200 ", username="admin", password="hunter2")
    assert creds.address == "10.26.30.200"
    assert "hunter2" not in repr(creds)
    assert creds.base_url == "http://10.26.30.200"


# --------------------------------------------------------------------------- real HTTP


class _DigestDeviceHandler(BaseHTTPRequestHandler):
    realm = "IP Camera(E1234)"
    nonce = "6d6f636b2d6e6f6e6365"
    password = "secret"

    def log_message(self, format, *args):
        pass

    def _challenge(self):
        self.send_response(401)
        self.send_header("WWW-Authenticate", f'Digest qop="auth", realm="{self.realm}", nonce="{self.nonce}", stale="FALSE"')
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _authorized(self) -> bool:
        header = self.headers.get("Authorization", "")
        if not header.startswith("Digest "):
            return False
        params = {k: a or b for k, a, b in re.findall(r'(\w+)=(?:"([^"]*)"|([^,\s]*))', header[7:])}
        expected = compute_digest_response(
            params["username"], self.realm, self.password, self.command, self.path, params["nonce"], params["nc"], params["cnonce"], params["qop"]
        )
        return params["response"] == expected and params["uri"] == self.path

    def _answer(self, status: int, body: bytes, content_type: str):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        if not self._authorized():
            return self._challenge()
        self._answer(200, b"<DeviceInfo><model>DS-K1T341AMF</model></DeviceInfo>", "application/xml")

    def do_PUT(self):
        length = int(self.headers.get("Content-Length", "0"))
        self.rfile.read(length)
        if not self._authorized():
            return self._challenge()
        self._answer(400, b'{"statusCode":6,"subStatusCode":"employeeNoNotExist"}', "application/json")


@pytest.fixture
def http_device():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _DigestDeviceHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def test_real_http_round_trip_with_urllib(http_device):
    """Digest handshake over a real socket, including error statuses."""
    client = DigestAuthClient()
    creds = DeviceCredentials(address=http_device, username="admin", password="secret")

    response = client.authenticated_request(creds, "GET", "/ISAPI/System/deviceInfo")
    assert response.status == 200
    assert "DS-K1T341AMF" in response.text

    with pytest.raises(DeviceError) as exc_info:
        client.authenticated_request(creds, "PUT", "/ISAPI/AccessControl/UserInfo/Delete?format=json", body=b"{}")
    assert exc_info.value.status == 400
    assert exc_info.value.sub_status_code == "employeeNoNotExist"

    stats = client.get_stats()
    assert stats["total_probes"] == 1
    assert stats["total_requests"] == 2

    bad = DeviceCredentials(address=http_device, username="admin", password="nope")
    client.cache.invalidate(http_device)
    with pytest.raises(AuthenticationError):
        client.authenticated_request(bad, "GET", "/ISAPI/System/deviceInfo")
    logger.info("✓ Real HTTP digest round trip passed")
