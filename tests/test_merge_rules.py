from __future__ import annotations

from dataclasses import replace

import pytest

from successmap.core.ids import canonical_bytes
from successmap.graph import ops
from successmap.graph.model import GoalMap, empty_goal_map
from successmap.sync.merge import (
    REMOTE_FAILED,
    REMOTE_FOUND,
    REMOTE_NOT_FOUND,
    RULE_EMPTY_NEW,
    RULE_LOCAL_FALLBACK,
    RULE_LOCAL_PENDING,
    RULE_REMOTE_AUTHORITATIVE,
    RULE_REMOTE_EMPTY,
    RULE_REMOTE_EMPTY_KEPT_LOCAL,
    reconcile_snapshots,
)


def _with_nodes(project_id: str, *texts: str, map_id: str | None = None) -> GoalMap:
    gm = empty_goal_map(project_id)
    for i, t in enumerate(texts):
        gm, _ = ops.add_node(gm, t, "", i // 3 + 1, node_id=f"{project_id}-{i}")
    if len(gm.nodes) > 1:
        gm = ops.add_connection(gm, gm.nodes[0].id, gm.nodes[1].id)
    return replace(gm, id=map_id) if map_id else gm


def test_remote_with_content_is_authoritative() -> None:
    remote = _with_nodes("P", "a", "b", map_id="m1")
    cached = _with_nodes("P", "old")
    d = reconcile_snapshots(project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=cached, current=None, session_revision=3)
    assert d.rule == RULE_REMOTE_AUTHORITATIVE
    assert d.goal_map.content_obj() == remote.content_obj()
    assert d.goal_map.revision == 3
    assert d.dirty is False and d.write_cache is True


def test_empty_remote_never_erases_local_content() -> None:
    local = _with_nodes("P", "a", "b", "c")
    remote = GoalMap(project_id="P", id="m9", name="Server name")
    d = reconcile_snapshots(project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=None, current=local)
    assert d.rule == RULE_REMOTE_EMPTY_KEPT_LOCAL
    assert len(d.goal_map.nodes) == 3
    assert d.goal_map.connections == local.connections
    assert d.goal_map.id == "m9"
    assert d.goal_map.name == "Server name"
    assert d.dirty is True


def test_empty_remote_falls_back_to_cache_content() -> None:
    cached = _with_nodes("P", "a")
    d = reconcile_snapshots(
        project_id="P", remote_status=REMOTE_FOUND, remote=GoalMap(project_id="P", id="m1"), cached=cached, current=None
    )
    assert d.rule == RULE_REMOTE_EMPTY_KEPT_LOCAL
    assert d.node_count == 1


def test_both_empty_takes_remote() -> None:
    remote = GoalMap(project_id="P", id="m1")
    d = reconcile_snapshots(project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=None, current=None)
    assert d.rule == RULE_REMOTE_EMPTY
    assert d.goal_map.id == "m1"
    assert d.dirty is False


@pytest.mark.parametrize("status", [REMOTE_NOT_FOUND, REMOTE_FAILED])
def test_missing_remote_uses_cache_without_rewriting_it(status: str) -> None:
    cached = _with_nodes("P", "a", "b")
    d = reconcile_snapshots(project_id="P", remote_status=status, remote=None, cached=cached, current=None)
    assert d.rule == RULE_LOCAL_FALLBACK
    assert d.goal_map.content_obj() == cached.content_obj()
    assert d.dirty is True
    assert d.write_cache is False


def test_missing_remote_prefers_memory_over_empty_cache() -> None:
    current = _with_nodes("P", "a")
    d = reconcile_snapshots(
        project_id="P", remote_status=REMOTE_FAILED, remote=None, cached=empty_goal_map("P"), current=current
    )
    assert d.rule == RULE_LOCAL_FALLBACK
    assert d.node_count == 1
    assert d.write_cache is True


def test_missing_remote_prefers_memory_newer_than_cache() -> None:
    cached = replace(_with_nodes("P", "first"), revision=1)
    current = replace(_with_nodes("P", "first", "typed while loading"), revision=2)
    d = reconcile_snapshots(
        project_id="P", remote_status=REMOTE_FAILED, remote=None, cached=cached, current=current, session_revision=2
    )
    assert d.rule == RULE_LOCAL_FALLBACK
    assert [n.text for n in d.goal_map.nodes] == ["first", "typed while loading"]
    assert d.write_cache is True

    older = replace(current, revision=0)
    d2 = reconcile_snapshots(project_id="P", remote_status=REMOTE_FAILED, remote=None, cached=cached, current=older)
    assert d2.node_count == 1
    assert d2.write_cache is False


def test_nothing_anywhere_is_a_fresh_map() -> None:
    d = reconcile_snapshots(project_id="P", remote_status=REMOTE_NOT_FOUND, remote=None, cached=None, current=None)
    assert d.rule == RULE_EMPTY_NEW
    assert d.goal_map.project_id == "P"
    assert d.goal_map.nodes == ()


def test_other_project_snapshots_are_ignored() -> None:
    foreign = _with_nodes("Q", "a")
    d = reconcile_snapshots(project_id="P", remote_status=REMOTE_FAILED, remote=None, cached=foreign, current=foreign)
    assert d.rule == RULE_EMPTY_NEW
    assert d.goal_map.project_id == "P"


def test_pending_edits_survive_in_strict_mode_only() -> None:
    current = _with_nodes("P", "a", "b")
    remote = _with_nodes("P", "server", map_id="m1")
    strict = reconcile_snapshots(
        project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=None, current=current,
        session_revision=current.revision, has_pending_edits=True, strict=True,
    )
    assert strict.rule == RULE_LOCAL_PENDING
    assert strict.goal_map.content_obj() == current.content_obj()
    assert strict.goal_map.id == "m1"

    lenient = reconcile_snapshots(
        project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=None, current=current,
        session_revision=current.revision, has_pending_edits=True, strict=False,
    )
    assert lenient.rule == RULE_REMOTE_AUTHORITATIVE


def test_unsaved_reset_survives_a_non_empty_remote_in_strict_mode() -> None:
    current = replace(empty_goal_map("P"), revision=4)
    remote = _with_nodes("P", "server", map_id="m1")
    d = reconcile_snapshots(
        project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=None, current=current,
        session_revision=4, has_pending_edits=True, strict=True, reset_pending=True,
    )
    assert d.rule == RULE_LOCAL_PENDING
    assert d.goal_map.nodes == ()
    assert d.goal_map.id == "m1"

    without_reset = reconcile_snapshots(
        project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=None, current=current,
        session_revision=4, has_pending_edits=True, strict=True,
    )
    assert without_reset.rule == RULE_REMOTE_AUTHORITATIVE


def test_reconciliation_is_idempotent() -> None:
    remote = _with_nodes("P", "a", "b", map_id="m1")
    cached = _with_nodes("P", "c")
    first = reconcile_snapshots(project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=cached, current=None, session_revision=2)
    second = reconcile_snapshots(
        project_id="P", remote_status=REMOTE_FOUND, remote=remote, cached=first.goal_map, current=first.goal_map, session_revision=2
    )
    assert second.goal_map == first.goal_map
    assert canonical_bytes(second.goal_map.to_json_obj()) == canonical_bytes(first.goal_map.to_json_obj())
    assert second.rule == first.rule


def test_found_without_snapshot_is_a_caller_error() -> None:
    with pytest.raises(ValueError):
        reconcile_snapshots(project_id="P", remote_status=REMOTE_FOUND, remote=None, cached=None, current=None)
