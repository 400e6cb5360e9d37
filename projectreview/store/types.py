from __future__ import annotations

from typing import Any, Literal, TypedDict

# Entities travel as plain JSON documents; these are the fields the merge
# engine inspects. Everything else is payload.
TYPE_FIELD = "type"
ID_FIELD = "id"
NAME_FIELD = "projectName"
VERSION_FIELD = "_version"
LAST_MODIFIED_FIELD = "_lastModified"
DELETED_AT_FIELD = "_deletedAt"

KIND_PROJECT = "project"
KIND_FEEDBACK = "feedback"
ENTITY_KINDS = (KIND_PROJECT, KIND_FEEDBACK)

# Remote collection names, keyed by entity kind.
COLLECTION_PROJECTS = "projects"
COLLECTION_FEEDBACK = "feedback"
COLLECTION_TASKS = "tasks"
COLLECTION_NOTES = "notes"
REMOTE_COLLECTIONS = (
    COLLECTION_PROJECTS,
    COLLECTION_FEEDBACK,
    COLLECTION_TASKS,
    COLLECTION_NOTES,
)
COLLECTION_FOR_KIND = {
    KIND_PROJECT: COLLECTION_PROJECTS,
    KIND_FEEDBACK: COLLECTION_FEEDBACK,
}

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_ARCHIVED = "archived"
PROJECT_STATUSES = (STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_ARCHIVED)
STATUS_LABELS = {
    STATUS_IN_PROGRESS: "In Progress",
    STATUS_COMPLETED: "Completed",
    STATUS_ARCHIVED: "Archived",
}

CHANGE_LOG_LIMIT = 50

ActionType = Literal["created", "updated", "task", "deleted", "feedback"]

Entity = dict[str, Any]


class Task(TypedDict):
    text: str
    assignee: str
    completed: bool
    createdAt: str


class ImageRecord(TypedDict, total=False):
    src: str
    note: str
    uploadedAt: str
    filename: str


class ChangeLogEntry(TypedDict):
    timestamp: str
    author: str
    actionType: ActionType
    description: str


class RemoteTree(TypedDict):
    projects: dict[str, Entity]
    feedback: dict[str, Entity]
    tasks: dict[str, dict[str, Any]]
    notes: dict[str, dict[str, Any]]
