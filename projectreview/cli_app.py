from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.common import configure_logging, open_workspace, read_config_or_exit
from .commands.project_cmds import (
    change_log_cmd,
    feedback_add_cmd,
    feedback_list_cmd,
    notes_set_cmd,
    notes_show_cmd,
    projects_complete_cmd,
    projects_delete_cmd,
    projects_list_cmd,
    projects_show_cmd,
    projects_status_cmd,
    projects_submit_cmd,
    projects_tags_cmd,
    tasks_add_cmd,
    tasks_list_cmd,
    tasks_remove_cmd,
    tasks_toggle_cmd,
    user_cmd,
)
from .commands.sync_cmds import (
    config_show_cmd,
    sync_daemon_cmd,
    sync_pull_cmd,
    sync_push_cmd,
    sync_reset_cmd,
)
from .config import load_config
from .store.types import STATUS_IN_PROGRESS
from .sync.daemon import run_sync_daemon
from .workspace import Workspace

app = typer.Typer(help="projectreview: offline-first project tracking with shared sync")
projects_app = typer.Typer(help="Submit and manage projects")
feedback_app = typer.Typer(help="Leave and read feedback")
tasks_app = typer.Typer(help="Per-project task lists")
notes_app = typer.Typer(help="Per-project creator notes")
sync_app = typer.Typer(help="Sync with the remote store")
config_app = typer.Typer(help="Inspect configuration")
app.add_typer(projects_app, name="projects")
app.add_typer(feedback_app, name="feedback")
app.add_typer(tasks_app, name="tasks")
app.add_typer(notes_app, name="notes")
app.add_typer(sync_app, name="sync")
app.add_typer(config_app, name="config")


def _open_workspace() -> Workspace:
    return open_workspace()


def _open_local_workspace() -> Workspace:
    return open_workspace(cold_load=False)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log sync activity to stderr"),
) -> None:
    configure_logging(verbose)


@projects_app.command("list")
def projects_list(
    status: str = typer.Option(None, help="Only projects with this status"),
    tag: list[str] = typer.Option(None, "--tag", help="Only projects carrying every given tag"),
    show_all: bool = typer.Option(False, "--all", help="Include archived projects"),
) -> None:
    """List projects grouped by status."""

    projects_list_cmd(open_workspace=_open_workspace, status=status, tags=tag, show_all=show_all)


@projects_app.command("show")
def projects_show(
    name: str,
    as_json: bool = typer.Option(False, "--json", help="Print the raw document"),
) -> None:
    """Show one project."""

    projects_show_cmd(open_workspace=_open_workspace, name=name, as_json=as_json)


@projects_app.command("submit")
def projects_submit(
    name: str,
    project_type: str = typer.Option(..., "--type", help="Project type"),
    summary: str = typer.Option("", help="One-line summary"),
    tag: list[str] = typer.Option(None, "--tag", help="Tag (repeatable)"),
    status: str = typer.Option(STATUS_IN_PROGRESS, help="Initial status"),
) -> None:
    """Submit a new project and wait for it to reach the remote store."""

    projects_submit_cmd(
        open_workspace=_open_workspace,
        name=name,
        project_type=project_type,
        summary=summary,
        tags=tag,
        status=status,
    )


@projects_app.command("status")
def projects_status(name: str, status: str) -> None:
    """Set a project's status (in_progress, completed, archived)."""

    projects_status_cmd(open_workspace=_open_workspace, name=name, status=status)


@projects_app.command("tags")
def projects_tags(name: str, tags: list[str] = typer.Argument(None)) -> None:
    """Replace a project's tags."""

    projects_tags_cmd(open_workspace=_open_workspace, name=name, tags=tags or [])


@projects_app.command("delete")
def projects_delete(
    name: str,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a project with its feedback, tasks and notes."""

    if not yes:
        typer.confirm(f"Delete {name!r} and all of its data?", abort=True)
    projects_delete_cmd(open_workspace=_open_workspace, name=name)


@projects_app.command("complete")
def projects_complete(name: str) -> None:
    """Toggle this machine's completion mark for a project."""

    projects_complete_cmd(open_workspace=_open_workspace, name=name)


@feedback_app.command("add")
def feedback_add(
    name: str,
    text: str,
    author: str = typer.Option(None, help="Author (defaults to the current user)"),
) -> None:
    """Submit feedback on a project."""

    feedback_add_cmd(open_workspace=_open_workspace, name=name, text=text, author=author)


@feedback_app.command("list")
def feedback_list(name: str) -> None:
    """List feedback on a project."""

    feedback_list_cmd(open_workspace=_open_workspace, name=name)


@tasks_app.command("add")
def tasks_add(
    name: str,
    text: str,
    assignee: str = typer.Option(None, help="Assignee (defaults to the current user)"),
) -> None:
    """Add a task to a project."""

    tasks_add_cmd(open_workspace=_open_workspace, name=name, text=text, assignee=assignee)


@tasks_app.command("toggle")
def tasks_toggle(name: str, number: int = typer.Argument(..., min=1)) -> None:
    """Mark task NUMBER done or open again."""

    tasks_toggle_cmd(open_workspace=_open_workspace, name=name, number=number)


@tasks_app.command("rm")
def tasks_remove(name: str, number: int = typer.Argument(..., min=1)) -> None:
    """Remove task NUMBER."""

    tasks_remove_cmd(open_workspace=_open_workspace, name=name, number=number)


@tasks_app.command("list")
def tasks_list(name: str) -> None:
    """List a project's tasks."""

    tasks_list_cmd(open_workspace=_open_workspace, name=name)


@notes_app.command("set")
def notes_set(name: str, text: str) -> None:
    """Replace a project's notes."""

    notes_set_cmd(open_workspace=_open_workspace, name=name, text=text)


@notes_app.command("show")
def notes_show(name: str) -> None:
    """Print a project's notes."""

    notes_show_cmd(open_workspace=_open_workspace, name=name)


@app.command("log")
def change_log(
    name: str,
    limit: int = typer.Option(20, help="Number of entries to show"),
) -> None:
    """Show a project's change log, newest first."""

    change_log_cmd(open_workspace=_open_workspace, name=name, limit=limit)


@app.command("user")
def user(name: str = typer.Argument(None)) -> None:
    """Show or set the current user."""

    user_cmd(open_workspace=_open_workspace, name=name)


@sync_app.command("pull")
def sync_pull(
    force: bool = typer.Option(False, "--force", help="Ignore the pull freshness window"),
) -> None:
    """Merge remote changes into local data."""

    sync_pull_cmd(open_workspace=_open_local_workspace, force=force)


@sync_app.command("push")
def sync_push() -> None:
    """Merge local data into the remote store."""

    sync_push_cmd(open_workspace=_open_local_workspace)


@sync_app.command("daemon")
def sync_daemon(
    interval_s: float = typer.Option(None, help="Seconds between pulls"),
) -> None:
    """Pull on a fixed interval."""

    sync_daemon_cmd(
        open_workspace=_open_local_workspace,
        load_config=load_config,
        run_sync_daemon=run_sync_daemon,
        interval_s=interval_s,
    )


@sync_app.command("reset")
def sync_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Clear local data and reload it from the remote store."""

    if not yes:
        typer.confirm("Clear all local data?", abort=True)
    sync_reset_cmd(open_workspace=_open_workspace)


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""

    read_config_or_exit()
    config_show_cmd(load_config=load_config)


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
