from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_projectreview_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PROJECTREVIEW_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("PROJECTREVIEW_DB", str(tmp_path / "mirror.sqlite"))
    monkeypatch.setenv("PROJECTREVIEW_LOG_DIR", str(tmp_path / "logs"))
    for name in (
        "PROJECTREVIEW_REMOTE",
        "PROJECTREVIEW_FIREBASE_URL",
        "PROJECTREVIEW_FIREBASE_AUTH",
        "PROJECTREVIEW_USER",
        "PROJECTREVIEW_TEAM",
        "PROJECTREVIEW_REALTIME",
        "PROJECTREVIEW_MIRROR_QUOTA_BYTES",
    ):
        monkeypatch.delenv(name, raising=False)
