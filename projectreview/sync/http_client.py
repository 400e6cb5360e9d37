"""Minimal JSON-over-HTTP helper for the hosted document store."""

from __future__ import annotations

import json
from http.client import HTTPConnection, HTTPSConnection
from typing import Any
from urllib.parse import SplitResult, urlsplit

from ..errors import RemoteUnavailable

_SNIPPET_BYTES = 240


def build_base_url(address: str) -> str:
    """Normalise a configured database address; bare hosts get ``https://``."""

    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    if urlsplit(trimmed).scheme:
        return trimmed
    return f"https://{trimmed}"


def _connection(target: SplitResult, timeout_s: float) -> HTTPConnection:
    host = target.hostname
    if not host:
        raise ValueError("missing hostname")
    if target.scheme == "https":
        return HTTPSConnection(host, target.port or 443, timeout=timeout_s)
    return HTTPConnection(host, target.port or 80, timeout=timeout_s)


def _decode(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        snippet = raw[:_SNIPPET_BYTES].decode("utf-8", errors="replace").strip()
        return {"error": f"non_json_response: {snippet}" if snippet else "non_json_response"}


def request_json(
    method: str,
    url: str,
    *,
    body: Any = None,
    timeout_s: float = 10.0,
) -> tuple[int, Any]:
    """Send one request and decode the JSON reply.

    Returns ``(status, payload)``. The payload is any JSON value, ``None``
    for an empty body or a JSON ``null``. A reply that is not JSON comes back
    as ``{"error": "non_json_response: ..."}``.
    """

    target = urlsplit(url)
    conn = _connection(target, timeout_s)
    path = target.path or "/"
    if target.query:
        path = f"{path}?{target.query}"
    headers = {"Accept": "application/json"}
    data: bytes | None = None
    if body is not None:
        data = json.dumps(body, ensure_ascii=False).encode("utf-8")
        headers["Content-Type"] = "application/json"
        headers["Content-Length"] = str(len(data))
    try:
        conn.request(method, path, body=data, headers=headers)
        resp = conn.getresponse()
        status = int(resp.status)
        payload = _decode(resp.read())
    finally:
        conn.close()
    return status, payload


def error_detail(payload: Any) -> str | None:
    """Error text from a failed reply (``{"error": ..., "reason": ...}``)."""

    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, str):
        return None
    reason = payload.get("reason")
    return f"{error}:{reason}" if isinstance(reason, str) else error


def raise_for_reply(method: str, status: int, payload: Any) -> None:
    """Raise ``RemoteUnavailable`` for a 4xx/5xx reply; pass anything else."""

    if status < 400:
        return
    detail = error_detail(payload)
    if status in {401, 403}:
        raise RemoteUnavailable(f"{method} unauthorized ({status})", status=status, detail=detail)
    suffix = f" ({status}: {detail})" if detail else f" ({status})"
    raise RemoteUnavailable(f"{method} failed{suffix}", status=status, detail=detail)
