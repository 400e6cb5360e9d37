"""Application-facing facade over the store and the sync orchestrator.

Every mutation updates the entity store synchronously, persists it, records a
change-log entry and queues the matching remote write. Submissions of new
projects and feedback wait for their push and raise ``SubmissionError`` on
failure; every other write is fire-and-forget.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future
from pathlib import Path
from typing import Any

from .config import ProjectReviewConfig, load_config
from .db import DEFAULT_DB_PATH
from .errors import SubmissionError, UnknownProjectError
from .keys import sanitize_key
from .store import EntityStore
from .store.entity import bump, entity_version, last_modified, natural_key, tombstone
from .store.types import (
    COLLECTION_FEEDBACK,
    COLLECTION_NOTES,
    COLLECTION_PROJECTS,
    COLLECTION_TASKS,
    KIND_FEEDBACK,
    KIND_PROJECT,
    LAST_MODIFIED_FIELD,
    NAME_FIELD,
    PROJECT_STATUSES,
    STATUS_ARCHIVED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_LABELS,
    VERSION_FIELD,
    ChangeLogEntry,
    Entity,
    Task,
)
from .sync.merge import remote_path_key
from .sync.orchestrator import SyncOrchestrator
from .sync.remote import FirebaseRemote, MemoryRemote, RemoteStore
from .utils import format_iso, generate_id, now_iso, timestamp_or_epoch

logger = logging.getLogger(__name__)


def build_remote(config: ProjectReviewConfig, store: EntityStore | None = None) -> RemoteStore:
    """Remote adapter named by ``config.remote``.

    The ``memory`` remote is seeded from the local store so offline sessions
    keep their data across runs.
    """

    if config.remote == "memory":
        return MemoryRemote(local_tree(store) if store is not None else None)
    if config.remote == "firebase":
        if not config.firebase_url:
            raise ValueError("firebase_url is not configured")
        return FirebaseRemote(
            config.firebase_url,
            auth=config.firebase_auth,
            timeout_s=config.http_timeout_s,
            poll_interval_s=config.poll_interval_s,
        )
    raise ValueError(f"unknown remote: {config.remote!r}")


def local_tree(store: EntityStore) -> dict[str, Any]:
    """Remote-shaped tree of the store's current contents."""

    with store.lock:
        projects = {remote_path_key(p): dict(p) for p in store.all(KIND_PROJECT) if natural_key(p)}
        feedback = {remote_path_key(f): dict(f) for f in store.all(KIND_FEEDBACK) if natural_key(f)}
        tasks = {sanitize_key(name): {"tasks": list(items)} for name, items in store.tasks.items()}
        notes = {sanitize_key(name): {"content": text} for name, text in store.notes.items()}
    return {
        COLLECTION_PROJECTS: projects,
        COLLECTION_FEEDBACK: feedback,
        COLLECTION_TASKS: tasks,
        COLLECTION_NOTES: notes,
    }


def group_by_status(projects: Iterable[Mapping[str, Any]]) -> dict[str, list[Entity]]:
    groups: dict[str, list[Entity]] = {status: [] for status in PROJECT_STATUSES}
    for project in projects:
        status = project.get("status")
        if status not in groups:
            status = STATUS_IN_PROGRESS
        groups[str(status)].append(dict(project))
    return groups


def filter_projects(
    projects: Iterable[Mapping[str, Any]],
    status: str | None = None,
    tags: Iterable[str] = (),
) -> list[Entity]:
    """Projects matching ``status`` and carrying every tag in ``tags``."""

    wanted = set(tags)
    matched: list[Entity] = []
    for project in projects:
        if status and (project.get("status") or STATUS_IN_PROGRESS) != status:
            continue
        project_tags = project.get("tags") or []
        if wanted and not wanted.issubset(project_tags):
            continue
        matched.append(dict(project))
    return matched


def clean_tags(tags: Iterable[str]) -> list[str]:
    cleaned: list[str] = []
    for tag in tags:
        value = str(tag).strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def _check_status(status: str) -> str:
    if status not in PROJECT_STATUSES:
        raise ValueError(f"unknown status {status!r}; expected one of {', '.join(PROJECT_STATUSES)}")
    return status


class Workspace:
    def __init__(
        self,
        store: EntityStore,
        orchestrator: SyncOrchestrator,
        *,
        default_user: str = "Jason",
        team: Iterable[str] = ("Jason", "Ash"),
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.default_user = default_user
        self.team = list(team)

    @classmethod
    def open(
        cls,
        config: ProjectReviewConfig | None = None,
        *,
        remote: RemoteStore | None = None,
        background: bool = True,
    ) -> Workspace:
        cfg = config or load_config()
        db_path = Path(cfg.db_path).expanduser() if cfg.db_path else DEFAULT_DB_PATH
        store = EntityStore.open(db_path, quota_bytes=cfg.mirror_quota_bytes)
        try:
            remote = remote or build_remote(cfg, store)
        except ValueError:
            store.close()
            raise
        orchestrator = SyncOrchestrator(
            store,
            remote,
            min_pull_interval_s=cfg.min_pull_interval_s,
            push_retries=cfg.push_retries,
            push_backoff_s=cfg.push_backoff_s,
            push_backoff_max_s=cfg.push_backoff_max_s,
            background=background,
        )
        return cls(store, orchestrator, default_user=cfg.current_user, team=cfg.team)

    def start(self, *, realtime: bool = False, cold_load: bool = True) -> bool:
        """Load state, then optionally subscribe to remote changes.

        With ``cold_load`` the remote replaces local state; otherwise the
        durable mirror is used as-is and later pulls merge into it.
        """

        if cold_load:
            loaded = self.orchestrator.cold_load()
        else:
            with self.store.lock:
                self.store.migrate_entities()
                self.store.sync_image_cache()
            loaded = False
        if realtime:
            self.orchestrator.start_realtime()
        return loaded

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Register ``callback(reason)`` for every change worth re-rendering."""

        return self.orchestrator.add_listener(callback)

    def close(self) -> None:
        try:
            self.orchestrator.wait_idle()
        finally:
            self.orchestrator.close()
            self.orchestrator.remote.close()
            self.store.close()

    # --- users ----------------------------------------------------------

    @property
    def current_user(self) -> str:
        return self.store.current_user or self.default_user

    def set_current_user(self, user: str) -> str:
        name = user.strip()
        if not name:
            raise ValueError("user name is required")
        self.store.set_current_user(name)
        return name

    # --- queries --------------------------------------------------------

    def project(self, name: str) -> Entity:
        project = self.store.live_project(name)
        if project is None:
            raise UnknownProjectError(name)
        return project

    def projects(self, status: str | None = None, tags: Iterable[str] = ()) -> list[Entity]:
        return filter_projects(self.store.list_live(KIND_PROJECT), status, tags)

    def group_by_status(self) -> dict[str, list[Entity]]:
        return group_by_status(self.store.list_live(KIND_PROJECT))

    def all_tags(self) -> list[str]:
        tags: set[str] = set()
        for project in self.store.list_live(KIND_PROJECT):
            tags.update(t for t in project.get("tags") or [] if isinstance(t, str))
        return sorted(tags)

    def feedback_for(self, name: str) -> list[Entity]:
        return [f for f in self.store.list_live(KIND_FEEDBACK) if f.get(NAME_FIELD) == name]

    def tasks(self, name: str) -> list[Task]:
        return self.store.project_tasks(name)

    def tasks_remaining(self, name: str) -> int:
        return sum(1 for task in self.store.project_tasks(name) if not task.get("completed"))

    def notes(self, name: str) -> str:
        with self.store.lock:
            return self.store.notes.get(name, "")

    def change_log(self, name: str) -> list[ChangeLogEntry]:
        return self.store.changes(name)

    def is_completed(self, name: str) -> bool:
        with self.store.lock:
            return self.store.completed.get(name, False)

    # --- submissions ----------------------------------------------------

    def submit_project(
        self,
        name: str,
        *,
        project_type: str,
        summary: str = "",
        tags: Iterable[str] = (),
        status: str = STATUS_IN_PROGRESS,
        creator: str | None = None,
        images: Iterable[Mapping[str, Any]] = (),
        **fields: Any,
    ) -> Entity:
        """Create a project and wait for it to reach the remote store."""

        project_name = name.strip()
        if not project_name:
            raise ValueError("project name is required")
        _check_status(status)
        now = now_iso()
        with self.store.lock:
            if self.store.live_project(project_name) is not None:
                raise ValueError(f"project {project_name!r} already exists")
            previous = self.store.get(KIND_PROJECT, project_name)
            version = 1
            modified = now
            if previous is not None:
                # A name reused after deletion must outrank the tombstone.
                version = entity_version(previous) + 1
                modified = format_iso(max(timestamp_or_epoch(now), last_modified(previous)))
            project: Entity = {
                **fields,
                "type": KIND_PROJECT,
                "id": generate_id(),
                "timestamp": now,
                NAME_FIELD: project_name,
                "projectType": project_type,
                "creator": creator or self.current_user,
                "summary": summary,
                "status": status,
                "tags": clean_tags(tags),
                "images": _image_records(images, now),
                VERSION_FIELD: version,
                LAST_MODIFIED_FIELD: modified,
            }
            self.store.upsert(project)
            self.store.persist()
        self._push_submission(KIND_PROJECT, project_name, previous)
        with self.store.lock:
            if project["images"]:
                self.store.cache_images(project_name, project["images"])
                self.store.persist_image_cache()
            self.store.log_change(project_name, self.current_user, "created", "Submitted project")
        return project

    def submit_feedback(self, name: str, text: str, *, author: str | None = None) -> Entity:
        """Record feedback on a live project and wait for it to reach the remote."""

        feedback_text = text.strip()
        if not feedback_text:
            raise ValueError("feedback text is required")
        now = now_iso()
        user = author or self.current_user
        with self.store.lock:
            self.project(name)
            feedback: Entity = {
                "type": KIND_FEEDBACK,
                "id": generate_id(),
                "timestamp": now,
                NAME_FIELD: name,
                "author": user,
                "feedbackText": feedback_text,
                VERSION_FIELD: 1,
                LAST_MODIFIED_FIELD: now,
            }
            self.store.upsert(feedback)
            self.store.persist()
        self._push_submission(KIND_FEEDBACK, feedback["id"], None)
        self.store.log_change(name, user, "feedback", "Submitted feedback")
        return feedback

    def _push_submission(self, kind: str, key: str, previous: Entity | None) -> None:
        """Push a new record, dropping it locally again if the push fails."""

        try:
            self.orchestrator.schedule_push(surface_errors=True).result()
        except SubmissionError:
            with self.store.lock:
                self.store.remove(kind, key)
                if previous is not None:
                    self.store.upsert(previous)
                self.store.persist()
            raise

    # --- project edits --------------------------------------------------

    def _update_project(
        self, name: str, description: str, **changes: Any
    ) -> tuple[Entity, Future[bool]]:
        with self.store.lock:
            updated = bump(self.project(name), now=now_iso(), **changes)
            self.store.upsert(updated)
            self.store.persist()
            self.store.log_change(name, self.current_user, "updated", description)
        return updated, self.orchestrator.schedule_push()

    def update_status(self, name: str, status: str) -> Entity:
        _check_status(status)
        updated, _ = self._update_project(
            name, f"Changed status to {STATUS_LABELS[status]}", status=status
        )
        return updated

    def archive(self, name: str) -> Entity:
        return self.update_status(name, STATUS_ARCHIVED)

    def complete(self, name: str) -> Entity:
        return self.update_status(name, STATUS_COMPLETED)

    def set_tags(self, name: str, tags: Iterable[str]) -> Entity:
        cleaned = clean_tags(tags)
        label = ", ".join(cleaned) if cleaned else "none"
        updated, _ = self._update_project(name, f"Set tags: {label}", tags=cleaned)
        return updated

    def add_images(self, name: str, images: Iterable[Mapping[str, Any]]) -> Entity:
        now = now_iso()
        records = _image_records(images, now)
        if not records:
            raise ValueError("no images to add")
        existing = self.project(name).get("images") or []
        combined = [*existing, *records]
        updated, _ = self._update_project(
            name, f"Added {len(records)} screenshot(s)", images=combined
        )
        with self.store.lock:
            self.store.cache_images(name, combined)
            self.store.persist_image_cache()
        return updated

    def soft_delete(self, name: str) -> Entity:
        """Tombstone a project so the deletion propagates to other writers."""

        now = now_iso()
        with self.store.lock:
            deleted = tombstone(self.project(name), now=now)
            self.store.upsert(deleted)
            self.store.persist()
            self.store.log_change(name, self.current_user, "deleted", "Deleted project")
        self.orchestrator.schedule_push()
        return deleted

    def delete_project(self, name: str) -> Entity:
        """Tombstone a project with its feedback and drop its local children."""

        now = now_iso()
        with self.store.lock:
            deleted = tombstone(self.project(name), now=now)
            self.store.upsert(deleted)
            for feedback in list(self.feedback_for(name)):
                self.store.upsert(tombstone(feedback, now=now))
            self.store.drop_children(name)
            self.store.persist()
            self.store.persist_image_cache()
            self.store.persist_change_log()
            self.store.persist_completed()
        logger.info("deleted project %r", name)
        self.orchestrator.schedule_push()
        self.orchestrator.schedule(self.orchestrator.remove_children, name)
        return deleted

    def toggle_complete(self, name: str) -> bool:
        """Flip the local-only completion mark shown on the dashboard."""

        self.project(name)
        return self.store.toggle_completed(name)

    # --- tasks and notes ------------------------------------------------

    def add_task(self, name: str, text: str, *, assignee: str | None = None) -> Task:
        task_text = text.strip()
        if not task_text:
            raise ValueError("task text is required")
        who = assignee or self.current_user
        task: Task = {
            "text": task_text,
            "assignee": who,
            "completed": False,
            "createdAt": now_iso(),
        }
        with self.store.lock:
            self.project(name)
            tasks = self.store.project_tasks(name)
            tasks.append(task)
            doc = self._save_tasks(name, tasks)
            self.store.log_change(
                name, self.current_user, "task", f'Added task: "{task_text}" (assigned to {who})'
            )
        self._queue_child_write(COLLECTION_TASKS, name, doc)
        return task

    def toggle_task(self, name: str, index: int) -> Task:
        with self.store.lock:
            self.project(name)
            tasks = self.store.project_tasks(name)
            task = tasks[_task_index(tasks, index)]
            task["completed"] = not task.get("completed", False)
            doc = self._save_tasks(name, tasks)
            verb = "Completed" if task["completed"] else "Reopened"
            self.store.log_change(name, self.current_user, "task", f'{verb} task: "{task["text"]}"')
        self._queue_child_write(COLLECTION_TASKS, name, doc)
        return task

    def delete_task(self, name: str, index: int) -> Task:
        with self.store.lock:
            self.project(name)
            tasks = self.store.project_tasks(name)
            task = tasks.pop(_task_index(tasks, index))
            doc = self._save_tasks(name, tasks)
            self.store.log_change(
                name, self.current_user, "deleted", f'Deleted task: "{task["text"]}"'
            )
        self._queue_child_write(COLLECTION_TASKS, name, doc)
        return task

    def _save_tasks(self, name: str, tasks: list[Task]) -> dict[str, Any]:
        self.store.set_tasks(name, tasks)
        self.store.persist()
        return self.orchestrator.stage_child(COLLECTION_TASKS, name)

    def _queue_child_write(self, collection: str, name: str, doc: dict[str, Any]) -> None:
        self.orchestrator.schedule(self.orchestrator.write_child, collection, name, doc)

    def save_notes(self, name: str, text: str) -> str:
        with self.store.lock:
            self.project(name)
            had_notes = bool(self.store.notes.get(name))
            self.store.set_note(name, text)
            self.store.persist()
            doc = self.orchestrator.stage_child(COLLECTION_NOTES, name)
            if had_notes:
                self.store.log_change(name, self.current_user, "updated", "Updated creator notes")
            else:
                self.store.log_change(name, self.current_user, "created", "Added creator notes")
        self._queue_child_write(COLLECTION_NOTES, name, doc)
        return text

    # --- sync -----------------------------------------------------------

    def pull(self, *, force: bool = False) -> bool:
        return self.orchestrator.pull(force=force)

    def push(self) -> bool:
        return self.orchestrator.schedule_push(surface_errors=True).result()

    def reset_and_resync(self) -> bool:
        """Forget every local mirror entry and reload from the remote."""

        self.orchestrator.wait_idle()
        self.store.clear()
        return self.orchestrator.cold_load()


def _task_index(tasks: list[Task], index: int) -> int:
    if index < 0 or index >= len(tasks):
        raise ValueError(f"no task at index {index}")
    return index


def _image_records(images: Iterable[Mapping[str, Any]], now: str) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for image in images:
        src = image.get("src")
        if not isinstance(src, str) or not src:
            raise ValueError("image record needs a src")
        records.append(
            {
                "src": src,
                "note": str(image.get("note") or ""),
                "uploadedAt": str(image.get("uploadedAt") or now),
                "filename": str(image.get("filename") or ""),
            }
        )
    return records
