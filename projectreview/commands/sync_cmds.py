from __future__ import annotations

import json
import threading
from collections.abc import Callable
from typing import Any

import typer
from rich import print

from ..config import ProjectReviewConfig
from ..sync.orchestrator import SyncOrchestrator
from .common import OpenWorkspace, workspace_session


def sync_pull_cmd(*, open_workspace: OpenWorkspace, force: bool) -> None:
    """Merge the remote tree into the local mirror."""

    with workspace_session(open_workspace) as workspace:
        if workspace.pull(force=force):
            live = len(workspace.projects())
            print(f"[green]Pulled; {live} live project(s)[/green]")
            return
        print("[yellow]Pull skipped (remote unavailable or push in flight)[/yellow]")
        raise typer.Exit(code=1)


def sync_push_cmd(*, open_workspace: OpenWorkspace) -> None:
    """Read-merge-write local entities to the remote store."""

    with workspace_session(open_workspace) as workspace:
        workspace.push()
        print("[green]Pushed[/green]")


def sync_daemon_cmd(
    *,
    open_workspace: OpenWorkspace,
    load_config: Callable[[], ProjectReviewConfig],
    run_sync_daemon: Callable[..., None],
    interval_s: float | None,
    stop_event: threading.Event | None = None,
) -> None:
    """Pull on a fixed interval until interrupted."""

    config = load_config()
    interval = interval_s or config.poll_interval_s
    if interval <= 0:
        print("[red]Interval must be positive[/red]")
        raise typer.Exit(code=1)
    with workspace_session(open_workspace) as workspace:
        orchestrator: SyncOrchestrator = workspace.orchestrator
        print(f"Polling every {interval:g}s (Ctrl+C to stop)")
        try:
            run_sync_daemon(orchestrator, interval, stop_event=stop_event)
        except KeyboardInterrupt:
            print("Stopped")


def sync_reset_cmd(*, open_workspace: OpenWorkspace) -> None:
    """Clear the local mirror and reload everything from the remote."""

    with workspace_session(open_workspace) as workspace:
        if workspace.reset_and_resync():
            print("[green]Local data cleared and reloaded from remote[/green]")
        else:
            print("[yellow]Local data cleared; remote unavailable, nothing reloaded[/yellow]")


def config_show_cmd(*, load_config: Callable[[], ProjectReviewConfig]) -> None:
    data: dict[str, Any] = load_config().to_dict()
    if data.get("firebase_auth"):
        data["firebase_auth"] = "***"
    print(json.dumps(data, indent=2, ensure_ascii=False))
