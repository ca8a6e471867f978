"""Snapshot precedence for the goal-map session.

``reconcile_snapshots`` decides which copy of the graph becomes authoritative when
the remote snapshot, the local cache snapshot and the in-memory session state
disagree. It is pure: callers perform the I/O and apply the decision.

Rules, in precedence order:

0. local_pending            unsaved in-memory edits with >=1 node, or an unsaved
                            reset, survive any fetch (strict mode only); remote
                            id/name are adopted.
1. remote_authoritative     a remote snapshot with >=1 node is taken verbatim.
2. remote_empty_kept_local  an empty remote snapshot never replaces a non-empty
                            local graph; remote metadata is adopted.
   remote_empty             both sides empty: the remote is taken as is.
3. local_fallback           remote missing or failed: the in-memory copy when it
                            is at least as new as the cache, else the cache copy.
   empty_new                nothing anywhere: a fresh empty map.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from successmap.graph.model import GoalMap, empty_goal_map

RULE_LOCAL_PENDING = "local_pending"
RULE_REMOTE_AUTHORITATIVE = "remote_authoritative"
RULE_REMOTE_EMPTY_KEPT_LOCAL = "remote_empty_kept_local"
RULE_REMOTE_EMPTY = "remote_empty"
RULE_LOCAL_FALLBACK = "local_fallback"
RULE_EMPTY_NEW = "empty_new"

# Remote fetch outcomes.
REMOTE_FOUND = "found"
REMOTE_NOT_FOUND = "not_found"
REMOTE_FAILED = "failed"


@dataclass(frozen=True)
class MergeDecision:
    rule: str
    goal_map: GoalMap
    dirty: bool
    # Whether the local cache must be rewritten to match.
    write_cache: bool = True

    @property
    def node_count(self) -> int:
        return len(self.goal_map.nodes)


def _same_project(goal_map: GoalMap | None, project_id: str) -> bool:
    return goal_map is not None and goal_map.project_id == project_id


def _adopt_metadata(local: GoalMap, remote: GoalMap) -> GoalMap:
    return replace(
        local,
        id=remote.id if remote.id is not None else local.id,
        name=remote.name or local.name,
        project_id=remote.project_id or local.project_id,
    )


def _with_session_revision(goal_map: GoalMap, revision: int) -> GoalMap:
    # Reconciliation never advances the session revision.
    return goal_map if goal_map.revision == revision else replace(goal_map, revision=revision)


def reconcile_snapshots(
    *,
    project_id: str,
    remote_status: str,
    remote: GoalMap | None,
    cached: GoalMap | None,
    current: GoalMap | None,
    session_revision: int = 0,
    has_pending_edits: bool = False,
    strict: bool = True,
    reset_pending: bool = False,
) -> MergeDecision:
    if remote_status == REMOTE_FOUND and remote is None:
        raise ValueError("remote_status=found requires a remote snapshot")

    in_memory = current if _same_project(current, project_id) else None
    cache = cached if _same_project(cached, project_id) else None

    if strict and has_pending_edits and in_memory is not None and (in_memory.has_content() or reset_pending):
        merged = _adopt_metadata(in_memory, remote) if remote is not None else in_memory
        return MergeDecision(RULE_LOCAL_PENDING, _with_session_revision(merged, session_revision), dirty=True)

    if remote_status == REMOTE_FOUND and remote is not None:
        if remote.has_content():
            return MergeDecision(
                RULE_REMOTE_AUTHORITATIVE,
                _with_session_revision(remote, session_revision),
                dirty=False,
            )
        local = in_memory if in_memory is not None and in_memory.has_content() else cache
        if local is not None and local.has_content():
            merged = _adopt_metadata(local, remote)
            return MergeDecision(
                RULE_REMOTE_EMPTY_KEPT_LOCAL,
                _with_session_revision(merged, session_revision),
                dirty=True,
            )
        return MergeDecision(RULE_REMOTE_EMPTY, _with_session_revision(remote, session_revision), dirty=False)

    if cache is not None:
        # The cache mirrors local edits, but a snapshot read before an edit (or a
        # failed cache write) can lag behind memory.
        if in_memory is not None and in_memory.has_content() and (
            in_memory.revision >= cache.revision or not cache.has_content()
        ):
            return MergeDecision(RULE_LOCAL_FALLBACK, _with_session_revision(in_memory, session_revision), dirty=True)
        return MergeDecision(
            RULE_LOCAL_FALLBACK,
            _with_session_revision(cache, session_revision),
            dirty=True,
            write_cache=False,
        )
    if in_memory is not None and in_memory.has_content():
        return MergeDecision(RULE_LOCAL_FALLBACK, _with_session_revision(in_memory, session_revision), dirty=True)
    fresh = in_memory if in_memory is not None else empty_goal_map(project_id)
    return MergeDecision(RULE_EMPTY_NEW, _with_session_revision(fresh, session_revision), dirty=True)
