from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable

logger = logging.getLogger(__name__)

# The hosted store rejects these characters in path segments.
FORBIDDEN_KEY_CHARS_RE = re.compile(r"[.#$\[\]]")


def sanitize_key(key: str) -> str:
    """Map a natural key onto a remote-safe path segment.

    Pure function of its input: two writers sanitizing the same project name
    always address the same remote document.
    """

    return FORBIDDEN_KEY_CHARS_RE.sub("_", key)


class KeyRegistry:
    """Explicit sanitized-key -> natural-key map.

    Sanitization is not invertible, so reverse lookups go through the names
    that were actually registered instead of scanning live entities. When two
    natural keys collide on the same sanitized key the first registration wins
    and the collision is logged.
    """

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._by_sanitized: dict[str, str] = {}
        for name in names:
            self.register(name)

    def register(self, name: str) -> str:
        sanitized = sanitize_key(name)
        with self._lock:
            existing = self._by_sanitized.get(sanitized)
            if existing is None:
                self._by_sanitized[sanitized] = name
            elif existing != name:
                logger.warning(
                    "key collision: %r and %r both sanitize to %r", existing, name, sanitized
                )
        return sanitized

    def forget(self, name: str) -> None:
        sanitized = sanitize_key(name)
        with self._lock:
            if self._by_sanitized.get(sanitized) == name:
                del self._by_sanitized[sanitized]

    def natural_key(self, sanitized: str) -> str:
        with self._lock:
            return self._by_sanitized.get(sanitized, sanitized)

    def clear(self) -> None:
        with self._lock:
            self._by_sanitized.clear()

    def __contains__(self, sanitized: object) -> bool:
        with self._lock:
            return sanitized in self._by_sanitized

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_sanitized)
