from __future__ import annotations

from pathlib import Path

from projectreview.store import EntityStore, LocalMirror
from projectreview.store.mirror import MIRROR_ENTITIES, MIRROR_IMAGE_CACHE, MIRROR_TASKS
from projectreview.utils import EPOCH_ISO

T0 = "2026-01-01T00:00:00.000Z"


def _project(name: str, **fields) -> dict:
    return {
        "type": "project",
        "id": f"id-{name}",
        "projectName": name,
        "status": "in_progress",
        "tags": [],
        "_version": 1,
        "_lastModified": T0,
        **fields,
    }


def test_load_with_absent_mirror_is_empty(tmp_path: Path) -> None:
    store = EntityStore.open(tmp_path / "mirror.sqlite")
    try:
        assert list(store.list_live("project")) == []
        assert store.tasks == {}
        assert store.current_user is None
    finally:
        store.close()


def test_load_tolerates_corrupt_mirror(tmp_path: Path) -> None:
    mirror = LocalMirror(tmp_path / "mirror.sqlite")
    mirror.write(MIRROR_ENTITIES, "{not json")
    mirror.write(MIRROR_TASKS, '["wrong shape"]')
    store = EntityStore(mirror)
    try:
        store.load()
        assert store.all("project") == []
        assert store.tasks == {}
    finally:
        store.close()


def test_unreadable_database_file_is_moved_aside(tmp_path: Path) -> None:
    db_path = tmp_path / "mirror.sqlite"
    db_path.write_bytes(b"this is not a sqlite database" * 64)

    store = EntityStore.open(db_path)
    try:
        assert store.all("project") == []
        assert store.tasks == {}
        store.upsert(_project("Foo"))
        assert store.persist() is True
    finally:
        store.close()

    moved = list(tmp_path.glob("mirror.sqlite.corrupt-*"))
    assert len(moved) == 1
    assert moved[0].read_bytes().startswith(b"this is not a sqlite database")
    reopened = EntityStore.open(db_path)
    try:
        assert [p["projectName"] for p in reopened.all("project")] == ["Foo"]
    finally:
        reopened.close()


def test_persist_and_reload_round_trip(tmp_path: Path) -> None:
    db_path = tmp_path / "mirror.sqlite"
    store = EntityStore.open(db_path)
    store.upsert(_project("Foo.bar"))
    store.upsert({"type": "feedback", "id": "f1", "projectName": "Foo.bar", "feedbackText": "hi"})
    store.set_tasks("Foo.bar", [{"text": "t", "assignee": "Ash", "completed": False, "createdAt": T0}])
    store.set_note("Foo.bar", "notes")
    assert store.persist() is True
    store.set_current_user("Ash")
    store.close()

    reloaded = EntityStore.open(db_path)
    try:
        assert [p["projectName"] for p in reloaded.list_live("project")] == ["Foo.bar"]
        assert [f["id"] for f in reloaded.list_live("feedback")] == ["f1"]
        assert reloaded.tasks["Foo.bar"][0]["text"] == "t"
        assert reloaded.notes == {"Foo.bar": "notes"}
        assert reloaded.current_user == "Ash"
        assert reloaded.keys.natural_key("Foo_bar") == "Foo.bar"
    finally:
        reloaded.close()


def test_upsert_replaces_by_natural_key(tmp_path: Path) -> None:
    store = EntityStore.open(tmp_path / "mirror.sqlite")
    try:
        store.upsert(_project("Foo"))
        store.upsert(_project("Foo", status="archived", _version=2))

        projects = store.all("project")
        assert len(projects) == 1
        assert projects[0]["status"] == "archived"
        assert projects[0]["_version"] == 2
    finally:
        store.close()


def test_list_live_skips_tombstones_and_duplicates(tmp_path: Path) -> None:
    store = EntityStore.open(tmp_path / "mirror.sqlite")
    try:
        store.replace(
            "project",
            [
                _project("A", summary="first"),
                _project("B", _deletedAt=T0),
                _project("A", summary="second"),
                _project("C"),
            ],
        )

        live = list(store.list_live("project"))

        assert [(p["projectName"], p.get("summary")) for p in live] == [
            ("A", "first"),
            ("C", None),
        ]
        # Recomputed per call.
        store.upsert(_project("D"))
        assert [p["projectName"] for p in store.list_live("project")] == ["A", "C", "D"]
    finally:
        store.close()


def test_migrate_entities_backfills_missing_fields(tmp_path: Path) -> None:
    store = EntityStore.open(tmp_path / "mirror.sqlite")
    try:
        store.replace(
            "project",
            [
                {"type": "project", "projectName": "Old", "timestamp": T0},
                {"type": "project", "projectName": "Older"},
            ],
        )

        assert store.migrate_entities() is True
        old, older = store.all("project")

        assert old["status"] == "in_progress"
        assert old["tags"] == []
        assert old["_version"] == 1
        assert old["_lastModified"] == T0
        assert older["_lastModified"] == EPOCH_ISO
        assert store.migrate_entities() is False
    finally:
        store.close()


def test_change_log_is_newest_first_and_capped(tmp_path: Path) -> None:
    store = EntityStore.open(tmp_path / "mirror.sqlite")
    try:
        for n in range(55):
            store.log_change("Foo", "Ash", "updated", f"change {n}")

        entries = store.changes("Foo")

        assert len(entries) == 50
        assert entries[0]["description"] == "change 54"
        assert entries[-1]["description"] == "change 5"
    finally:
        store.close()


def test_image_cache_reattaches_missing_images(tmp_path: Path) -> None:
    store = EntityStore.open(tmp_path / "mirror.sqlite")
    try:
        image = {"src": "data:image/jpeg;base64,AAA", "note": "", "uploadedAt": T0, "filename": "a.jpg"}
        store.upsert(_project("Foo", images=[image]))
        store.sync_image_cache()
        assert store.cached_images("Foo") == [image]

        store.replace("project", [_project("Foo", _version=2)])
        store.sync_image_cache()

        assert store.all("project")[0]["images"] == [image]
    finally:
        store.close()


def test_quota_pressure_evicts_stale_images_then_retries(tmp_path: Path) -> None:
    mirror = LocalMirror(tmp_path / "mirror.sqlite", quota_bytes=600)
    store = EntityStore(mirror)
    try:
        store.image_cache = {"Gone": [{"src": "x" * 400}]}
        assert store.persist_image_cache() is True

        store.upsert(_project("Live", summary="y" * 150))
        assert store.persist() is True

        assert store.cached_images("Gone") is None
        assert "Gone" not in (mirror.read(MIRROR_IMAGE_CACHE) or "")
    finally:
        store.close()


def test_quota_write_dropped_when_eviction_is_not_enough(tmp_path: Path) -> None:
    mirror = LocalMirror(tmp_path / "mirror.sqlite", quota_bytes=100)
    store = EntityStore(mirror)
    try:
        store.upsert(_project("Live", summary="z" * 500))

        assert store.persist() is False
        assert [p["projectName"] for p in store.list_live("project")] == ["Live"]
        assert mirror.read(MIRROR_ENTITIES) is None
    finally:
        store.close()


def test_clear_forgets_everything(tmp_path: Path) -> None:
    store = EntityStore.open(tmp_path / "mirror.sqlite")
    try:
        store.upsert(_project("Foo"))
        store.persist()
        store.set_current_user("Ash")

        store.clear()

        assert store.all("project") == []
        assert store.current_user is None
        assert store.mirror.names() == []
    finally:
        store.close()
