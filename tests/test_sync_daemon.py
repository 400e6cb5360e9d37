from __future__ import annotations

import threading
from pathlib import Path

from projectreview.sync import daemon


class _FlakyOrchestrator:
    def __init__(self, stop: threading.Event, ticks: int) -> None:
        self.stop = stop
        self.ticks = ticks
        self.calls = 0

    def pull(self) -> bool:
        self.calls += 1
        if self.calls >= self.ticks:
            self.stop.set()
        if self.calls == 1:
            raise RuntimeError("tick exploded")
        return True


def test_daemon_survives_failing_tick_and_logs_traceback(tmp_path: Path, monkeypatch) -> None:
    log_dir = tmp_path / "daemon-logs"
    monkeypatch.setenv("PROJECTREVIEW_LOG_DIR", str(log_dir))
    stop = threading.Event()
    orchestrator = _FlakyOrchestrator(stop, ticks=3)

    daemon.run_sync_daemon(orchestrator, 0.01, stop_event=stop)  # type: ignore[arg-type]

    assert orchestrator.calls == 3
    log_text = (log_dir / "sync-daemon.log").read_text()
    assert "RuntimeError: tick exploded" in log_text


def test_daemon_stops_before_first_tick_when_already_stopped() -> None:
    stop = threading.Event()
    stop.set()
    orchestrator = _FlakyOrchestrator(stop, ticks=1)

    daemon.run_sync_daemon(orchestrator, 60, stop_event=stop)  # type: ignore[arg-type]

    assert orchestrator.calls == 0


def test_log_path_defaults_to_home(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("PROJECTREVIEW_LOG_DIR", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))

    assert daemon.sync_daemon_log_path() == tmp_path / ".projectreview" / "sync-daemon.log"
