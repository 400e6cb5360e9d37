from __future__ import annotations

import json
import os
import warnings
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/projectreview/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "remote": "PROJECTREVIEW_REMOTE",
    "firebase_url": "PROJECTREVIEW_FIREBASE_URL",
    "firebase_auth": "PROJECTREVIEW_FIREBASE_AUTH",
    "http_timeout_s": "PROJECTREVIEW_HTTP_TIMEOUT_S",
    "db_path": "PROJECTREVIEW_DB",
    "mirror_quota_bytes": "PROJECTREVIEW_MIRROR_QUOTA_BYTES",
    "poll_interval_s": "PROJECTREVIEW_POLL_INTERVAL_S",
    "realtime": "PROJECTREVIEW_REALTIME",
    "min_pull_interval_s": "PROJECTREVIEW_MIN_PULL_INTERVAL_S",
    "push_retries": "PROJECTREVIEW_PUSH_RETRIES",
    "push_backoff_s": "PROJECTREVIEW_PUSH_BACKOFF_S",
    "push_backoff_max_s": "PROJECTREVIEW_PUSH_BACKOFF_MAX_S",
    "current_user": "PROJECTREVIEW_USER",
    "team": "PROJECTREVIEW_TEAM",
}

_INT_KEYS = {"mirror_quota_bytes", "poll_interval_s", "push_retries"}
_FLOAT_KEYS = {"http_timeout_s", "min_pull_interval_s", "push_backoff_s", "push_backoff_max_s"}
_BOOL_KEYS = {"realtime"}
_LIST_KEYS = {"team"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("PROJECTREVIEW_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def _strip_jsonc(text: str) -> str:
    """Drop ``//`` and ``/* */`` comments and trailing commas outside strings."""

    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
            continue
        if text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                raise ValueError("unterminated block comment")
            i = end + 2
            continue
        if ch == ",":
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(_strip_jsonc(raw))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class ProjectReviewConfig:
    remote: str = "firebase"
    firebase_url: str | None = None
    firebase_auth: str | None = None
    http_timeout_s: float = 10.0
    db_path: str | None = None
    # Mirrors the browser's local storage budget; 0 disables the check.
    mirror_quota_bytes: int = 5_000_000
    poll_interval_s: int = 30
    realtime: bool = True
    min_pull_interval_s: float = 5.0
    push_retries: int = 3
    push_backoff_s: float = 0.5
    push_backoff_max_s: float = 8.0
    current_user: str = "Jason"
    team: list[str] = field(default_factory=lambda: ["Jason", "Ash"])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_str_list(value: object, *, key: str) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    warnings.warn(f"Invalid list for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return None


def _apply_value(cfg: ProjectReviewConfig, key: str, value: object) -> None:
    if key in _INT_KEYS:
        setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
    elif key in _FLOAT_KEYS:
        setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
    elif key in _BOOL_KEYS:
        setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
    elif key in _LIST_KEYS:
        parsed = _coerce_str_list(value, key=key)
        if parsed is not None:
            setattr(cfg, key, parsed)
    else:
        setattr(cfg, key, value)


def _apply_dict(cfg: ProjectReviewConfig, data: dict[str, Any]) -> ProjectReviewConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        _apply_value(cfg, key, value)
    return cfg


def _apply_env(cfg: ProjectReviewConfig) -> ProjectReviewConfig:
    for key, value in get_env_overrides().items():
        _apply_value(cfg, key, value)
    return cfg


def load_config(path: Path | None = None) -> ProjectReviewConfig:
    cfg = ProjectReviewConfig()
    try:
        data = read_config_file(path)
    except ValueError:
        data = {}
    cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg
