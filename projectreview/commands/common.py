from __future__ import annotations

import contextlib
import datetime as dt
import logging
import sys
from collections.abc import Callable, Iterator
from typing import Any

import typer
from rich import print

from ..config import load_config, read_config_file
from ..errors import SubmissionError, UnknownProjectError
from ..store.types import STATUS_LABELS
from ..utils import parse_timestamp
from ..workspace import Workspace

OpenWorkspace = Callable[[], Workspace]


def configure_logging(verbose: bool) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def open_workspace(*, realtime: bool = False, cold_load: bool = True) -> Workspace:
    """Open the configured workspace, by default cold-loading it from the remote."""

    workspace = Workspace.open(load_config())
    try:
        workspace.start(realtime=realtime, cold_load=cold_load)
    except BaseException:
        workspace.close()
        raise
    return workspace


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


@contextlib.contextmanager
def workspace_session(open_workspace: OpenWorkspace) -> Iterator[Workspace]:
    """Yield an open workspace, mapping user-facing errors to exit code 1."""

    try:
        workspace = open_workspace()
    except ValueError as exc:
        print(f"[red]Cannot open workspace: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    try:
        yield workspace
    except SubmissionError as exc:
        print(f"[red]Submission failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    except UnknownProjectError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        workspace.close()


def format_when(value: object) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return "-"
    return parsed.astimezone(dt.UTC).strftime("%Y-%m-%d %H:%M")


def status_label(status: object) -> str:
    return STATUS_LABELS.get(str(status), STATUS_LABELS["in_progress"])
