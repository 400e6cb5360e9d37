from __future__ import annotations

import json

import pytest

from projectreview.errors import RemoteUnavailable
from projectreview.sync import http_client


class _ConnRequestFails:
    def __init__(self, *args, **kwargs) -> None:
        self.closed = False

    def request(self, method, path, body=None, headers=None) -> None:
        raise RuntimeError("boom")

    def close(self) -> None:
        self.closed = True


class _ConnReadFails:
    def __init__(self, *args, **kwargs) -> None:
        self.closed = False

    def request(self, method, path, body=None, headers=None) -> None:
        return

    def getresponse(self):
        return _RespReadFails()

    def close(self) -> None:
        self.closed = True


class _RespReadFails:
    status = 200

    def read(self) -> bytes:
        raise RuntimeError("read failed")


class _Resp:
    def __init__(self, status: int, raw: bytes) -> None:
        self.status = status
        self._raw = raw

    def read(self) -> bytes:
        return self._raw


class _ConnRecording:
    def __init__(self, status: int, raw: bytes) -> None:
        self.closed = False
        self.requests: list[tuple[str, str, bytes | None, dict[str, str]]] = []
        self._resp = _Resp(status, raw)

    def request(self, method, path, body=None, headers=None) -> None:
        self.requests.append((method, path, body, dict(headers or {})))

    def getresponse(self):
        return self._resp

    def close(self) -> None:
        self.closed = True


def test_request_json_closes_connection_when_request_raises(monkeypatch) -> None:
    conn = _ConnRequestFails()
    monkeypatch.setattr(http_client, "HTTPConnection", lambda *a, **k: conn)

    with pytest.raises(RuntimeError, match="boom"):
        http_client.request_json("GET", "http://127.0.0.1:9000/.json")

    assert conn.closed is True


def test_request_json_closes_connection_when_response_read_raises(monkeypatch) -> None:
    conn = _ConnReadFails()
    monkeypatch.setattr(http_client, "HTTPConnection", lambda *a, **k: conn)

    with pytest.raises(RuntimeError, match="read failed"):
        http_client.request_json("GET", "http://127.0.0.1:9000/.json")

    assert conn.closed is True


def test_request_json_sends_body_and_decodes_any_json(monkeypatch) -> None:
    conn = _ConnRecording(200, b'[1, 2]')
    monkeypatch.setattr(http_client, "HTTPSConnection", lambda *a, **k: conn)

    status, payload = http_client.request_json(
        "PUT", "https://db.example.com/projects/Foo.json?auth=t", body={"a": 1}
    )

    assert status == 200
    assert payload == [1, 2]
    method, path, body, headers = conn.requests[0]
    assert method == "PUT"
    assert path == "/projects/Foo.json?auth=t"
    assert json.loads(body or b"") == {"a": 1}
    assert headers["Content-Type"] == "application/json"
    assert conn.closed is True


def test_request_json_reports_non_json_body(monkeypatch) -> None:
    conn = _ConnRecording(502, b"<html>bad gateway</html>")
    monkeypatch.setattr(http_client, "HTTPConnection", lambda *a, **k: conn)

    status, payload = http_client.request_json("GET", "http://127.0.0.1:9000/.json")

    assert status == 502
    assert payload["error"].startswith("non_json_response")


def test_request_json_null_body_is_none(monkeypatch) -> None:
    conn = _ConnRecording(200, b"null")
    monkeypatch.setattr(http_client, "HTTPConnection", lambda *a, **k: conn)

    assert http_client.request_json("GET", "http://127.0.0.1:9000/.json") == (200, None)


def test_request_json_requires_hostname() -> None:
    with pytest.raises(ValueError, match="missing hostname"):
        http_client.request_json("GET", "/no-host")


def test_build_base_url_defaults_to_https() -> None:
    assert http_client.build_base_url(" db.example.com/ ") == "https://db.example.com"
    assert http_client.build_base_url("http://localhost:9000") == "http://localhost:9000"
    assert http_client.build_base_url("  ") == ""


def test_error_detail() -> None:
    assert http_client.error_detail({"error": "Permission denied"}) == "Permission denied"
    assert http_client.error_detail({"error": "a", "reason": "b"}) == "a:b"
    assert http_client.error_detail(["x"]) is None


def test_raise_for_reply_maps_status_to_remote_unavailable() -> None:
    http_client.raise_for_reply("GET", 200, None)
    http_client.raise_for_reply("PUT", 204, {"error": "ignored on success"})

    with pytest.raises(RemoteUnavailable, match=r"GET unauthorized \(403\)") as denied:
        http_client.raise_for_reply("GET", 403, {"error": "Permission denied"})
    assert denied.value.status == 403
    assert denied.value.detail == "Permission denied"

    with pytest.raises(RemoteUnavailable, match=r"PUT failed \(500\)$") as failed:
        http_client.raise_for_reply("PUT", 500, None)
    assert failed.value.detail is None

    with pytest.raises(RemoteUnavailable, match=r"DELETE failed \(400: Invalid path\)"):
        http_client.raise_for_reply("DELETE", 400, {"error": "Invalid path"})
