from __future__ import annotations

from pathlib import Path

import pytest

from successmap.policies.load import (
    DEFAULT_TOOL_WEIGHTS,
    GraphLimits,
    PolicyInvalid,
    SyncPolicy,
    load_sync_policy,
    parse_sync_policy,
)


def test_repo_policy_matches_defaults() -> None:
    pol = load_sync_policy()
    assert pol.policy_id == "sync_policy_v1"
    assert pol.graph_limits == GraphLimits(max_nodes=10, max_per_level=3, min_level=1, max_level=5)
    assert pol.stale_response_mode == "strict"
    assert pol.tool_weights == DEFAULT_TOOL_WEIGHTS
    assert pol.started_credit == 0.5


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    assert load_sync_policy(tmp_path / "nope.yaml") == SyncPolicy()


def test_env_policy_path(tmp_path: Path, monkeypatch) -> None:
    p = tmp_path / "policy.yaml"
    p.write_text("graph_limits:\n  max_nodes: 4\nstale_response_mode: lenient\n", encoding="utf-8")
    monkeypatch.setenv("SMAP_POLICY_PATH", str(p))
    pol = load_sync_policy()
    assert pol.graph_limits.max_nodes == 4
    assert pol.graph_limits.max_per_level == 3
    assert pol.stale_response_mode == "lenient"


@pytest.mark.parametrize(
    "doc, match",
    [
        ([1, 2], "mapping"),
        ({"graph_limits": {"max_nodes": "ten"}}, "max_nodes"),
        ({"graph_limits": {"min_level": 4, "max_level": 2}}, "min_level"),
        ({"stale_response_mode": "yolo"}, "stale_response_mode"),
        ({"progress": {"tool_weights": {"cynefin": -1}}}, "cynefin"),
        ({"progress": {"started_credit": 2}}, "started_credit"),
    ],
)
def test_invalid_policies(doc, match) -> None:
    with pytest.raises(PolicyInvalid, match=match):
        parse_sync_policy(doc)
