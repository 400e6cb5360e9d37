from __future__ import annotations

import datetime as dt
import json
import secrets
import time
from typing import Any

EPOCH_ISO = "1970-01-01T00:00:00.000Z"
_EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.UTC)
_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def format_iso(value: dt.datetime) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""

    value = value.astimezone(dt.UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def now_iso() -> str:
    return format_iso(dt.datetime.now(dt.UTC))


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ID_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_id() -> str:
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{_base36(millis)}{suffix}"


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def parse_timestamp(value: object) -> dt.datetime | None:
    """Parse an ISO-8601 string or epoch milliseconds into an aware datetime."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return _EPOCH + dt.timedelta(milliseconds=float(value))
        except OverflowError:
            return None
    if isinstance(value, str):
        return parse_iso8601(value)
    return None


def timestamp_or_epoch(value: object) -> dt.datetime:
    return parse_timestamp(value) or _EPOCH


def to_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False)


def canonical_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def from_json(text: str | None, default: Any = None) -> Any:
    if not text:
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return default
