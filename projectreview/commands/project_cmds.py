from __future__ import annotations

import json

from rich import print
from rich.markup import escape

from ..store.types import STATUS_ARCHIVED, Entity
from ..workspace import Workspace, group_by_status
from .common import OpenWorkspace, format_when, status_label, workspace_session


def projects_list_cmd(
    *,
    open_workspace: OpenWorkspace,
    status: str | None,
    tags: list[str] | None,
    show_all: bool,
) -> None:
    """List live projects grouped by status; archived ones only with ``show_all``."""

    with workspace_session(open_workspace) as workspace:
        projects = workspace.projects(status=status, tags=tags or ())
        if not show_all and not status:
            projects = [p for p in projects if p.get("status") != STATUS_ARCHIVED]
        if not projects:
            print("[dim]No projects[/dim]")
            return
        for group_status, items in group_by_status(projects).items():
            if not items:
                continue
            print(f"[bold]{status_label(group_status)}[/bold] ({len(items)})")
            for project in items:
                print(_project_line(workspace, project))


def _project_line(workspace: Workspace, project: Entity) -> str:
    name = project["projectName"]
    line = f"- {escape(name)}"
    if workspace.is_completed(name):
        line += " [green]done[/green]"
    line += f" [dim]({escape(str(project.get('projectType') or '-'))})[/dim]"
    tags_text = ", ".join(project.get("tags") or [])
    if tags_text:
        line += f" [cyan]{escape(tags_text)}[/cyan]"
    remaining = workspace.tasks_remaining(name)
    if remaining:
        line += f" [yellow]{remaining} open task(s)[/yellow]"
    return line


def projects_show_cmd(*, open_workspace: OpenWorkspace, name: str, as_json: bool) -> None:
    """Show one project with its feedback, tasks and notes."""

    with workspace_session(open_workspace) as workspace:
        project = workspace.project(name)
        if as_json:
            print(json.dumps(project, indent=2, ensure_ascii=False))
            return
        print(f"[bold]{escape(name)}[/bold] v{project.get('_version', 1)}")
        print(f"Type: {escape(str(project.get('projectType') or '-'))}")
        print(f"Status: {status_label(project.get('status'))}")
        print(f"Creator: {escape(str(project.get('creator') or '-'))}")
        print(f"Updated: {format_when(project.get('_lastModified'))}")
        if project.get("summary"):
            print(f"Summary: {escape(str(project['summary']))}")
        if project.get("tags"):
            print(f"Tags: {escape(', '.join(project['tags']))}")
        if project.get("images"):
            print(f"Images: {len(project['images'])}")
        feedback = workspace.feedback_for(name)
        print(f"Feedback: {len(feedback)}")
        tasks = workspace.tasks(name)
        print(f"Tasks: {workspace.tasks_remaining(name)} open / {len(tasks)} total")
        notes = workspace.notes(name)
        if notes:
            print(f"Notes:\n{escape(notes)}")


def projects_submit_cmd(
    *,
    open_workspace: OpenWorkspace,
    name: str,
    project_type: str,
    summary: str,
    tags: list[str] | None,
    status: str,
) -> None:
    """Submit a new project."""

    with workspace_session(open_workspace) as workspace:
        project = workspace.submit_project(
            name, project_type=project_type, summary=summary, tags=tags or (), status=status
        )
        print(f"[green]Submitted {escape(project['projectName'])}[/green]")


def projects_status_cmd(*, open_workspace: OpenWorkspace, name: str, status: str) -> None:
    with workspace_session(open_workspace) as workspace:
        workspace.update_status(name, status)
        print(f"[green]{escape(name)} is now {status_label(status)}[/green]")


def projects_tags_cmd(*, open_workspace: OpenWorkspace, name: str, tags: list[str]) -> None:
    with workspace_session(open_workspace) as workspace:
        project = workspace.set_tags(name, tags)
        print(f"[green]Tags for {escape(name)}: {escape(', '.join(project['tags'])) or 'none'}[/green]")


def projects_delete_cmd(*, open_workspace: OpenWorkspace, name: str) -> None:
    with workspace_session(open_workspace) as workspace:
        workspace.delete_project(name)
        print(f"[yellow]Deleted {escape(name)}[/yellow]")


def projects_complete_cmd(*, open_workspace: OpenWorkspace, name: str) -> None:
    """Toggle the local completion mark."""

    with workspace_session(open_workspace) as workspace:
        done = workspace.toggle_complete(name)
        state = "complete" if done else "not complete"
        print(f"{escape(name)} marked {state}")


def feedback_add_cmd(
    *, open_workspace: OpenWorkspace, name: str, text: str, author: str | None
) -> None:
    with workspace_session(open_workspace) as workspace:
        workspace.submit_feedback(name, text, author=author)
        print(f"[green]Feedback recorded for {escape(name)}[/green]")


def feedback_list_cmd(*, open_workspace: OpenWorkspace, name: str) -> None:
    with workspace_session(open_workspace) as workspace:
        workspace.project(name)
        items = workspace.feedback_for(name)
        if not items:
            print("[dim]No feedback[/dim]")
            return
        for item in items:
            text = item.get("feedbackText") or item.get("whyUseful") or ""
            author = item.get("author") or "anonymous"
            print(f"[{format_when(item.get('timestamp'))}] {escape(str(author))}: {escape(str(text))}")


def tasks_add_cmd(
    *, open_workspace: OpenWorkspace, name: str, text: str, assignee: str | None
) -> None:
    with workspace_session(open_workspace) as workspace:
        task = workspace.add_task(name, text, assignee=assignee)
        print(f"[green]Added task for {escape(task['assignee'])}[/green]")


def tasks_toggle_cmd(*, open_workspace: OpenWorkspace, name: str, number: int) -> None:
    with workspace_session(open_workspace) as workspace:
        task = workspace.toggle_task(name, number - 1)
        state = "done" if task["completed"] else "open"
        print(f"Task {number} is {state}")


def tasks_remove_cmd(*, open_workspace: OpenWorkspace, name: str, number: int) -> None:
    with workspace_session(open_workspace) as workspace:
        task = workspace.delete_task(name, number - 1)
        print(f"[yellow]Removed task: {escape(task['text'])}[/yellow]")


def tasks_list_cmd(*, open_workspace: OpenWorkspace, name: str) -> None:
    with workspace_session(open_workspace) as workspace:
        workspace.project(name)
        tasks = workspace.tasks(name)
        if not tasks:
            print("[dim]No tasks[/dim]")
            return
        for number, task in enumerate(tasks, start=1):
            mark = "x" if task.get("completed") else " "
            print(
                f"{number}. \\[{mark}] {escape(task['text'])} "
                f"[dim]({escape(task.get('assignee') or '-')})[/dim]"
            )


def notes_set_cmd(*, open_workspace: OpenWorkspace, name: str, text: str) -> None:
    with workspace_session(open_workspace) as workspace:
        workspace.save_notes(name, text)
        print(f"[green]Notes saved for {escape(name)}[/green]")


def notes_show_cmd(*, open_workspace: OpenWorkspace, name: str) -> None:
    with workspace_session(open_workspace) as workspace:
        workspace.project(name)
        notes = workspace.notes(name)
        print(escape(notes) if notes else "[dim]No notes[/dim]")


def change_log_cmd(*, open_workspace: OpenWorkspace, name: str, limit: int) -> None:
    """Show the newest change-log entries for a project."""

    with workspace_session(open_workspace) as workspace:
        entries = workspace.change_log(name)[: max(0, limit)]
        if not entries:
            print("[dim]No changes recorded[/dim]")
            return
        for entry in entries:
            print(
                f"[{format_when(entry.get('timestamp'))}] {escape(entry.get('author', '-'))} "
                f"({entry.get('actionType', '-')}) {escape(entry.get('description', ''))}"
            )


def user_cmd(*, open_workspace: OpenWorkspace, name: str | None) -> None:
    with workspace_session(open_workspace) as workspace:
        if name:
            workspace.set_current_user(name)
        print(workspace.current_user)
