from __future__ import annotations

import json
from pathlib import Path

import pytest

from successmap.cache.local_cache import FileLocalCache, InMemoryLocalCache, cache_key
from successmap.graph import ops
from successmap.graph.errors import PersistenceError
from successmap.graph.model import empty_goal_map


def _gm(project_id: str = "P"):
    gm, _ = ops.add_node(empty_goal_map(project_id), "Grow revenue", "Q3", 1, node_id="n1")
    return gm


def test_cache_key_is_project_scoped() -> None:
    assert cache_key("P") == "goal-map-data:P"
    assert cache_key("P", "cynefin") == "cynefin:P"
    with pytest.raises(ValueError):
        cache_key("  ")


def test_in_memory_roundtrip_does_not_share_state() -> None:
    cache = InMemoryLocalCache()
    gm = _gm()
    cache.set(cache_key("P"), gm)
    got = cache.get(cache_key("P"))
    assert got == gm
    assert got is not gm
    assert cache.get(cache_key("Q")) is None
    assert cache.keys() == ["goal-map-data:P"]


def test_refuses_to_store_under_another_project_key() -> None:
    cache = InMemoryLocalCache()
    with pytest.raises(PersistenceError, match="refusing"):
        cache.set(cache_key("Q"), _gm("P"))


def test_file_cache_roundtrip(tmp_path: Path) -> None:
    cache = FileLocalCache(root=tmp_path / "cache")
    gm = _gm()
    cache.set(cache_key("P"), gm)
    p = cache.path_for(cache_key("P"))
    assert p.is_file()
    assert not p.with_name(p.name + ".tmp").exists()
    assert cache.get(cache_key("P")) == gm


def test_file_cache_root_from_env(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SMAP_CACHE_ROOT", str(tmp_path / "envcache"))
    cache = FileLocalCache()
    assert cache.root == tmp_path / "envcache"


def test_file_cache_ignores_foreign_or_corrupt_entries(tmp_path: Path) -> None:
    cache = FileLocalCache(root=tmp_path)
    key = cache_key("P")
    p = cache.path_for(key)

    # Entry written for project Q but stored under P's key.
    foreign = {"key": key, "goal_map": _gm("Q").to_json_obj()}
    p.write_text(json.dumps(foreign), encoding="utf-8")
    assert cache.get(key) is None

    p.write_text(json.dumps({"key": "goal-map-data:Q", "goal_map": _gm("P").to_json_obj()}), encoding="utf-8")
    assert cache.get(key) is None

    p.write_text("{oops", encoding="utf-8")
    assert cache.get(key) is None


def test_file_cache_write_failure_raises_persistence_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    cache = FileLocalCache(root=blocker)
    with pytest.raises(PersistenceError, match="cannot write"):
        cache.set(cache_key("P"), _gm())
