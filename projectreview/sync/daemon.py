from __future__ import annotations

import datetime as dt
import logging
import os
import threading
import traceback
from pathlib import Path

from .orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def run_sync_daemon(
    orchestrator: SyncOrchestrator,
    interval_s: float,
    *,
    stop_event: threading.Event | None = None,
) -> None:
    """Pull every ``interval_s`` seconds until ``stop_event`` is set.

    A failing tick is recorded in the daemon log and the loop carries on.
    """

    stop = stop_event or threading.Event()
    while not stop.wait(interval_s):
        try:
            sync_daemon_tick(orchestrator)
        except Exception as exc:
            logger.warning("sync tick failed", exc_info=exc)
            _append_sync_daemon_log(traceback.format_exc())


def sync_daemon_tick(orchestrator: SyncOrchestrator) -> bool:
    pulled = orchestrator.pull()
    if pulled:
        logger.debug("sync tick pulled remote changes")
    return pulled


def sync_daemon_log_path() -> Path:
    log_dir_value = os.environ.get("PROJECTREVIEW_LOG_DIR")
    log_dir = Path(log_dir_value).expanduser() if log_dir_value else Path.home() / ".projectreview"
    return log_dir / "sync-daemon.log"


def _append_sync_daemon_log(message: str) -> None:
    try:
        log_path = sync_daemon_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        ts = dt.datetime.now(dt.UTC).isoformat()
        with log_path.open("a", encoding="utf-8", errors="ignore") as handle:
            handle.write(f"\n[{ts}]\n{message}\n")
    except OSError as exc:
        logger.debug("could not write sync daemon log", exc_info=exc)
