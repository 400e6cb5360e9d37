from __future__ import annotations

from pathlib import Path

from projectreview.config import ProjectReviewConfig
from projectreview.store.entity import is_tombstone
from projectreview.sync.remote import MemoryRemote
from projectreview.utils import canonical_json
from projectreview.workspace import Workspace


def _writer(tmp_path: Path, name: str, remote: MemoryRemote, user: str) -> Workspace:
    config = ProjectReviewConfig(
        remote="memory",
        db_path=str(tmp_path / name / "mirror.sqlite"),
        current_user=user,
        min_pull_interval_s=0.0,
    )
    workspace = Workspace.open(config, remote=remote, background=False)
    workspace.start()
    return workspace


def test_stale_writer_adopts_newer_remote_status(tmp_path: Path) -> None:
    remote = MemoryRemote()
    jason = _writer(tmp_path, "a", remote, "Jason")
    ash = None
    try:
        jason.submit_project("Foo", project_type="tool")
        ash = _writer(tmp_path, "b", remote, "Ash")
        ash.update_status("Foo", "archived")

        # Notes travel on their own channel and leave the project record alone.
        jason.save_notes("Foo", "still v1 here")
        assert jason.project("Foo")["_version"] == 1
        assert jason.pull() is True

        project = jason.project("Foo")
        assert project["_version"] == 2
        assert project["status"] == "archived"
        assert jason.notes("Foo") == "still v1 here"
    finally:
        jason.close()
        if ash is not None:
            ash.close()


def test_independent_submissions_reach_both_writers(tmp_path: Path) -> None:
    remote = MemoryRemote()
    jason = _writer(tmp_path, "a", remote, "Jason")
    ash = _writer(tmp_path, "b", remote, "Ash")
    try:
        jason.submit_project("From Jason", project_type="tool")
        ash.submit_project("From Ash", project_type="game")
        jason.pull()
        ash.pull()

        names_jason = sorted(p["projectName"] for p in jason.projects())
        names_ash = sorted(p["projectName"] for p in ash.projects())
        assert names_jason == names_ash == ["From Ash", "From Jason"]
    finally:
        jason.close()
        ash.close()


def test_deletion_propagates_over_stale_copy(tmp_path: Path) -> None:
    remote = MemoryRemote()
    jason = _writer(tmp_path, "a", remote, "Jason")
    jason.submit_project("Foo", project_type="tool")
    ash = _writer(tmp_path, "b", remote, "Ash")
    try:
        jason.delete_project("Foo")

        ash.push()
        ash.pull()

        assert ash.projects() == []
        assert is_tombstone(remote.fetch_all()["projects"]["Foo"])
    finally:
        jason.close()
        ash.close()


def test_concurrent_edits_converge(tmp_path: Path) -> None:
    remote = MemoryRemote()
    jason = _writer(tmp_path, "a", remote, "Jason")
    jason.submit_project("Foo", project_type="tool")
    ash = _writer(tmp_path, "b", remote, "Ash")
    try:
        jason.update_status("Foo", "completed")
        ash.set_tags("Foo", ["shared"])

        jason.pull()
        ash.pull()

        doc_jason = canonical_json(jason.project("Foo"))
        doc_ash = canonical_json(ash.project("Foo"))
        assert doc_jason == doc_ash
        assert canonical_json(remote.fetch_all()["projects"]["Foo"]) == doc_jason
    finally:
        jason.close()
        ash.close()


def test_realtime_writer_sees_remote_submission(tmp_path: Path) -> None:
    remote = MemoryRemote()
    jason = _writer(tmp_path, "a", remote, "Jason")
    ash = _writer(tmp_path, "b", remote, "Ash")
    reasons: list[str] = []
    try:
        ash.orchestrator.start_realtime()
        ash.subscribe(reasons.append)

        jason.submit_project("Live", project_type="tool")
        jason.add_task("Live", "review", assignee="Ash")

        assert [p["projectName"] for p in ash.projects()] == ["Live"]
        assert ash.tasks("Live")[0]["text"] == "review"
        assert "projects" in reasons
        assert "tasks" in reasons
    finally:
        jason.close()
        ash.close()
