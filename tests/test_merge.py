from __future__ import annotations

import pytest

from projectreview.store.entity import is_tombstone, tombstone
from projectreview.sync.merge import (
    changed_entities,
    local_wins,
    merge,
    remote_entities,
    remote_path_key,
)
from projectreview.sync.remote import MemoryRemote
from projectreview.utils import canonical_json

T0 = "2026-01-01T00:00:00.000Z"
T1 = "2026-01-01T00:00:10.000Z"
T2 = "2026-01-01T00:00:20.000Z"


def _project(name: str, version: int = 1, modified: str = T0, **fields) -> dict:
    return {
        "type": "project",
        "id": f"id-{name}",
        "projectName": name,
        "status": "in_progress",
        "_version": version,
        "_lastModified": modified,
        **fields,
    }


def _by_key(items: list[dict]) -> dict[str, str]:
    return {item["projectName"]: canonical_json(item) for item in items}


def test_merge_is_idempotent() -> None:
    items = [_project("Foo", 2, T1), _project("Bar"), _project("Gone", 3, T1, _deletedAt=T2)]

    merged = merge(items, items)

    assert _by_key(merged) == _by_key(items)
    assert _by_key(merge(merged, items)) == _by_key(merged)


def test_merge_is_commutative() -> None:
    a = [
        _project("Foo", 2, T1, status="archived"),
        _project("Bar", 1, T0),
        _project("Both", 1, T2, _deletedAt=T2),
    ]
    b = [
        _project("Foo", 1, T2),
        _project("Baz", 1, T0),
        _project("Both", 4, T1),
        _project("Bar", 1, T1, summary="newer"),
    ]

    assert _by_key(merge(a, b)) == _by_key(merge(b, a))


def test_full_tie_is_order_independent() -> None:
    left = [_project("Foo", 2, T1, summary="left")]
    right = [_project("Foo", 2, T1, summary="right")]

    first = merge(left, right)
    second = merge(right, left)

    assert _by_key(first) == _by_key(second)
    assert first[0]["summary"] == "right"


def test_identical_documents_keep_remote_copy() -> None:
    local = _project("Foo")
    remote = _project("Foo")

    assert local_wins(local, remote) is False
    assert merge([local], [remote])[0] == remote


@pytest.mark.parametrize(
    ("deleted_at", "live"),
    [
        (T2, False),  # deletion after the local edit
        (T1, True),  # deletion at the same instant as the local edit
        (T0, True),  # local edit after the deletion
    ],
)
def test_remote_tombstone_precedence(deleted_at: str, live: bool) -> None:
    local = _project("Foo", 1, T1)
    # The tombstone carries the higher version, which must not matter.
    remote = _project("Foo", 2, deleted_at, _deletedAt=deleted_at)

    merged = merge([local], [remote])

    assert len(merged) == 1
    assert is_tombstone(merged[0]) is not live
    if live:
        assert merged[0] == local


@pytest.mark.parametrize(("live_version", "dead_version"), [(1, 5), (5, 1)])
def test_tombstone_at_same_instant_keeps_live_copy(live_version: int, dead_version: int) -> None:
    live = _project("Foo", live_version, T1, summary="kept")
    dead = _project("Foo", dead_version, T1, _deletedAt=T1)

    assert local_wins(live, dead) is True
    assert local_wins(dead, live) is False
    for merged in (merge([live], [dead]), merge([dead], [live])):
        assert not is_tombstone(merged[0])
        assert merged[0]["summary"] == "kept"


def test_tombstone_is_stamped_after_last_edit() -> None:
    edited = _project("Foo", 1, T1)

    deleted = tombstone(edited, now=T1)

    assert deleted["_version"] == 2
    assert deleted["_deletedAt"] == deleted["_lastModified"] == "2026-01-01T00:00:10.001Z"
    assert is_tombstone(merge([edited], [deleted])[0])
    assert tombstone(edited, now=T2)["_deletedAt"] == T2


def test_local_tombstone_beats_stale_remote_copy() -> None:
    local = _project("Foo", 2, "2026-01-01T00:01:40.000Z", _deletedAt="2026-01-01T00:01:40.000Z")
    stale = _project("Foo", 1, "2026-01-01T00:00:50.000Z")

    merged = merge([local], [stale])

    assert is_tombstone(merged[0])
    assert merge([stale], [local])[0]["_deletedAt"] == local["_deletedAt"]


def test_newer_remote_edit_resurrects_locally_deleted_entity() -> None:
    local = _project("Foo", 2, T1, _deletedAt=T1)
    remote = _project("Foo", 3, T2, status="archived")

    merged = merge([local], [remote])

    assert not is_tombstone(merged[0])
    assert merged[0]["status"] == "archived"


def test_both_tombstones_keep_later_deletion() -> None:
    local = _project("Foo", 2, T1, _deletedAt=T1)
    remote = _project("Foo", 2, T2, _deletedAt=T2)

    assert merge([local], [remote])[0]["_deletedAt"] == T2
    assert merge([remote], [local])[0]["_deletedAt"] == T2


def test_version_dominates_timestamp() -> None:
    local = _project("Foo", 3, T0, summary="v3")
    remote = _project("Foo", 2, T2, summary="v2")

    assert merge([local], [remote])[0]["summary"] == "v3"
    assert merge([remote], [local])[0]["summary"] == "v3"


def test_timestamp_breaks_version_tie() -> None:
    older = _project("Foo", 2, T0, summary="old")
    newer = _project("Foo", 2, T1, summary="new")

    assert merge([older], [newer])[0]["summary"] == "new"
    assert merge([newer], [older])[0]["summary"] == "new"


def test_local_only_entity_is_adopted_with_defaults() -> None:
    fresh = {"type": "project", "id": "x", "projectName": "New", "timestamp": T1}

    merged = merge([fresh], [_project("Other")])

    adopted = {item["projectName"]: item for item in merged}["New"]
    assert adopted["_version"] == 1
    assert adopted["_lastModified"] == T1


def test_entities_without_key_are_dropped() -> None:
    merged = merge([{"type": "feedback", "feedbackText": "orphan"}], [])

    assert merged == []


def test_duplicate_remote_keys_collapse_to_newest() -> None:
    remote = [_project("Foo", 1, T0, summary="a"), _project("Foo", 2, T0, summary="b")]

    merged = merge([], remote)

    assert [item["summary"] for item in merged] == ["b"]


def test_archived_on_other_writer_wins_over_stale_local() -> None:
    stale_local = _project("Foo", 1, T0)
    other_writer = _project("Foo", 2, T1, status="archived")

    merged = merge([stale_local], [other_writer])

    assert merged[0]["_version"] == 2
    assert merged[0]["status"] == "archived"


def test_round_trip_through_memory_remote() -> None:
    remote = MemoryRemote()
    project = _project("Foo.bar", 1, T0, tags=["a"])
    remote.put_entity("projects", remote_path_key(project), project)

    fetched = remote_entities(remote.fetch_all()["projects"], "project")

    assert merge([], fetched) == [project]


def test_remote_entities_fill_missing_fields() -> None:
    collection = {
        "Foo_bar": {"status": "completed"},
        "broken": "not-an-object",
    }

    entities = remote_entities(collection, "project", name_for=lambda key: "Foo.bar")

    assert entities == [{"status": "completed", "type": "project", "projectName": "Foo.bar"}]
    assert remote_entities({"abc": {"feedbackText": "hi"}}, "feedback")[0]["id"] == "abc"
    assert remote_entities(None, "project") == []
    assert remote_entities(["skip", None], "feedback") == []


def test_changed_entities_skips_documents_equal_to_remote() -> None:
    same = _project("Same")
    edited = _project("Edited", 2, T1)
    merged = [same, edited]
    remote = [_project("Same"), _project("Edited")]

    assert changed_entities(merged, remote) == [edited]
