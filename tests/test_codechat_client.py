from __future__ import annotations

import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from instance_monitor.codechat import CodeChatClient
from instance_monitor.errors import CodeChatError, ErrorKind

API_KEY = "secret-key"

INSTANCES = [
    {"id": "1", "name": "alpha", "connectionStatus": "ONLINE", "Auth": {"token": "tok-alpha"}},
    {"id": "2", "name": "beta", "connectionStatus": "OFFLINE"},
]


class _FakeCodeChatHandler(BaseHTTPRequestHandler):
    requests: list[dict] = []

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def _send(self, status: int, body: bytes, content_type: str = "application/json") -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, status: int, obj) -> None:
        self._send(status, json.dumps(obj).encode("utf-8"))

    def _record(self, method: str) -> None:
        type(self).requests.append(
            {
                "method": method,
                "path": self.path,
                "apikey": self.headers.get("apiKey"),
                "authorization": self.headers.get("Authorization"),
            }
        )

    def do_GET(self) -> None:  # noqa: N802
        self._record("GET")
        if self.headers.get("apiKey") != API_KEY:
            self._send_json(401, {"message": "Unauthorized"})
            return

        parsed = urlparse(self.path)
        if parsed.path == "/instance/fetchInstances":
            name = (parse_qs(parsed.query).get("instanceName") or [None])[0]
            if name is None:
                self._send_json(200, INSTANCES)
            elif name == "alpha":
                # Single lookups come back as a bare object.
                self._send_json(200, INSTANCES[0])
            else:
                self._send_json(404, {"message": ["Instance not found"]})
            return

        if parsed.path.startswith("/instance/fetchInstance/"):
            name = unquote(parsed.path.rsplit("/", 1)[1])
            if name == "alpha":
                self._send_json(200, {"name": "alpha", "Whatsapp": {"connection": {"state": "open"}}})
            elif name == "ghost":
                self._send_json(400, {"message": ['The "ghost" instance does not exist or is not connected']})
            elif name == "garbled":
                self._send(200, b"<html>not json</html>", "text/html")
            else:
                self._send_json(500, {"message": "Internal Server Error"})
            return

        if parsed.path.startswith("/instance/connect/"):
            name = unquote(parsed.path.rsplit("/", 1)[1])
            if name == "needs qr":
                self._send_json(200, {"base64": "data:image/png;base64,AAAA", "code": "2@abc"})
            else:
                self._send_json(200, {})
            return

        self._send_json(404, {"message": "no route"})

    def do_DELETE(self) -> None:  # noqa: N802
        self._record("DELETE")
        if self.path.startswith("/instance/logout/"):
            self._send(200, b"")
            return
        self._send_json(404, {"message": "no route"})


@pytest.fixture(scope="module")
def codechat_base_url() -> str:
    httpd = HTTPServer(("127.0.0.1", 0), _FakeCodeChatHandler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.fixture(autouse=True)
def _reset_requests() -> None:
    _FakeCodeChatHandler.requests = []


@pytest.mark.asyncio
async def test_list_instances_parses_summaries(codechat_base_url: str) -> None:
    async with CodeChatClient(codechat_base_url, API_KEY) as client:
        instances = await client.list_instances()

    assert [i.name for i in instances] == ["alpha", "beta"]
    assert instances[0].is_online and instances[0].auth_token == "tok-alpha"
    assert not instances[1].is_online and instances[1].auth_token is None
    assert _FakeCodeChatHandler.requests[0]["apikey"] == API_KEY
    assert _FakeCodeChatHandler.requests[0]["authorization"] is None


@pytest.mark.asyncio
async def test_single_lookup_is_normalized_to_list(codechat_base_url: str) -> None:
    async with CodeChatClient(codechat_base_url, API_KEY) as client:
        instances = await client.list_instances("alpha")
    assert len(instances) == 1
    assert instances[0].id == "1"


@pytest.mark.asyncio
async def test_unknown_lookup_is_not_found(codechat_base_url: str) -> None:
    async with CodeChatClient(codechat_base_url, API_KEY) as client:
        with pytest.raises(CodeChatError) as excinfo:
            await client.list_instances("nobody")
    assert excinfo.value.kind == ErrorKind.NOT_FOUND
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_detail_sends_bearer_token(codechat_base_url: str) -> None:
    async with CodeChatClient(codechat_base_url, API_KEY) as client:
        detail = await client.get_instance_detail("alpha", "tok-alpha")
    assert detail.connection_state == "open"
    assert _FakeCodeChatHandler.requests[-1]["authorization"] == "Bearer tok-alpha"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("name", "kind"),
    [
        ("ghost", ErrorKind.INSTANCE_MISSING),
        ("broken", ErrorKind.SERVER),
        ("garbled", ErrorKind.PROTOCOL),
    ],
)
async def test_detail_errors_are_classified(codechat_base_url: str, name: str, kind: ErrorKind) -> None:
    async with CodeChatClient(codechat_base_url, API_KEY) as client:
        with pytest.raises(CodeChatError) as excinfo:
            await client.get_instance_detail(name, "tok")
    assert excinfo.value.kind == kind


@pytest.mark.asyncio
async def test_wrong_api_key_is_client_error(codechat_base_url: str) -> None:
    async with CodeChatClient(codechat_base_url, "wrong") as client:
        with pytest.raises(CodeChatError) as excinfo:
            await client.list_instances()
    assert excinfo.value.kind == ErrorKind.CLIENT


@pytest.mark.asyncio
async def test_connect_detects_pairing_and_logout_quotes_name(codechat_base_url: str) -> None:
    async with CodeChatClient(codechat_base_url, API_KEY) as client:
        plain = await client.connect("alpha", "tok")
        qr = await client.connect("needs qr", "tok")
        await client.logout("needs qr", "tok")

    assert plain.requires_pairing is False
    assert qr.requires_pairing is True
    last = _FakeCodeChatHandler.requests[-1]
    assert last["method"] == "DELETE"
    assert last["path"] == "/instance/logout/needs%20qr"


@pytest.mark.asyncio
async def test_unreachable_server_is_transport_error() -> None:
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    async with CodeChatClient(f"http://127.0.0.1:{port}", API_KEY, timeout=2.0) as client:
        with pytest.raises(CodeChatError) as excinfo:
            await client.list_instances()
    assert excinfo.value.kind == ErrorKind.TRANSPORT


def test_base_url_is_required() -> None:
    with pytest.raises(ValueError):
        CodeChatClient("", API_KEY)
