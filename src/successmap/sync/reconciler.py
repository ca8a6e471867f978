from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable

from successmap.cache.local_cache import LocalCache, cache_key
from successmap.contracts.validate import GOAL_MAP_V1, ContractInvalid, require_valid
from successmap.core.ids import require_project_id
from successmap.graph import ops
from successmap.graph.errors import GraphValidationError, PersistenceError, SyncStateError
from successmap.graph.model import GoalMap, goal_map_from_json_obj
from successmap.policies.load import SyncPolicy, load_sync_policy
from successmap.remote.client import RemoteError, RemoteStore
from successmap.sync.merge import (
    REMOTE_FAILED,
    REMOTE_FOUND,
    REMOTE_NOT_FOUND,
    RULE_LOCAL_PENDING,
    RULE_REMOTE_AUTHORITATIVE,
    RULE_REMOTE_EMPTY,
    RULE_REMOTE_EMPTY_KEPT_LOCAL,
    MergeDecision,
    reconcile_snapshots,
)

logger = logging.getLogger(__name__)

UNLOADED = "unloaded"
LOADING = "loading"
RECONCILED = "reconciled"
DIRTY = "dirty"
SAVING = "saving"


@dataclass(frozen=True)
class SaveResult:
    saved: bool
    map_id: str | None = None
    revision: int | None = None
    error: str | None = None
    # The session moved to another project before the response arrived.
    discarded: bool = False
    # Nothing was pending; no request was sent.
    skipped: bool = False

    def to_json_obj(self) -> dict[str, Any]:
        return {
            "saved": self.saved,
            "map_id": self.map_id,
            "revision": self.revision,
            "error": self.error,
            "discarded": self.discarded,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class SubmitResult:
    save: SaveResult
    completed: bool
    error: str | None = None
    discarded: bool = False
    goals_replaced: bool = False

    def to_json_obj(self) -> dict[str, Any]:
        return {
            "save": self.save.to_json_obj(),
            "completed": self.completed,
            "error": self.error,
            "discarded": self.discarded,
            "goals_replaced": self.goals_replaced,
        }


@dataclass
class _Session:
    project_id: str
    goal_map: GoalMap | None = None
    unsaved: bool = False
    reset_pending: bool = False
    completed: bool = False
    loading_generation: int | None = None
    save_in_flight: bool = False
    last_decision: MergeDecision | None = None
    # Session revision when this project became active.
    base_revision: int = 0


class SyncReconciler:
    """Owns the authoritative in-memory goal map for the active project.

    Intents mutate the map synchronously and mirror it to the local cache;
    ``save``/``submit`` push it to the remote store; ``load``/``refresh``
    reconcile remote and cached snapshots into it.
    """

    def __init__(
        self,
        remote: RemoteStore,
        cache: LocalCache | None = None,
        *,
        policy: SyncPolicy | None = None,
    ) -> None:
        self.remote = remote
        self.cache = cache
        self.policy = policy or load_sync_policy()
        self._session: _Session | None = None
        self._generation = 0
        self._save_lock = asyncio.Lock()
        self._durability_degraded = cache is None
        self.warnings: list[str] = []

    # ---- read-only view -------------------------------------------------

    @property
    def project_id(self) -> str | None:
        return self._session.project_id if self._session else None

    @property
    def goal_map(self) -> GoalMap | None:
        return self._session.goal_map if self._session else None

    @property
    def revision(self) -> int:
        s = self._session
        if s is None:
            return 0
        return s.goal_map.revision if s.goal_map is not None else s.base_revision

    @property
    def state(self) -> str:
        s = self._session
        if s is None:
            return UNLOADED
        if s.loading_generation is not None:
            return LOADING
        if s.save_in_flight:
            return SAVING
        if s.goal_map is None:
            return UNLOADED
        return DIRTY if s.unsaved else RECONCILED

    @property
    def completed(self) -> bool:
        return bool(self._session and self._session.completed)

    @property
    def durability_degraded(self) -> bool:
        return self._durability_degraded

    @property
    def last_decision(self) -> MergeDecision | None:
        return self._session.last_decision if self._session else None

    def has_goal_mapping_signal(self) -> bool:
        gm = self.goal_map
        return gm is not None and gm.has_content()

    # ---- local cache ------------------------------------------------------

    def _degrade(self, err: PersistenceError) -> None:
        logger.warning("local cache unavailable, continuing in memory only: %s", err)
        if not self._durability_degraded:
            self.warnings.append(
                "Local cache is unavailable; unsaved changes will be lost if the session ends before a save."
            )
        self._durability_degraded = True

    def _cache_get(self, project_id: str) -> GoalMap | None:
        if self.cache is None or self._durability_degraded:
            return None
        try:
            return self.cache.get(cache_key(project_id))
        except PersistenceError as e:
            self._degrade(e)
            return None

    def _cache_put(self, goal_map: GoalMap) -> None:
        if self.cache is None or self._durability_degraded:
            return
        try:
            self.cache.set(cache_key(goal_map.project_id), goal_map)
        except PersistenceError as e:
            self._degrade(e)

    # ---- loading ----------------------------------------------------------

    async def load(self, project_id: str) -> MergeDecision | None:
        """Fetch and reconcile the snapshots for ``project_id``.

        Returns None when the result was discarded because another load or a
        project switch superseded it.
        """
        pid = require_project_id(project_id)
        s = self._session
        if s is None or s.project_id != pid:
            if s is not None:
                logger.info("switching project %s -> %s", s.project_id, pid)
            # Carry the session counter so revisions stay monotonic across projects.
            s = _Session(project_id=pid, base_revision=self.revision)
            self._session = s
        self._generation += 1
        gen = self._generation
        s.loading_generation = gen
        rev_at_request = s.goal_map.revision if s.goal_map is not None else s.base_revision

        remote: GoalMap | None = None
        try:
            remote = await self.remote.fetch_goal_map(pid)
            status = REMOTE_FOUND if remote is not None else REMOTE_NOT_FOUND
        except RemoteError as e:
            logger.warning("fetch goal map for project %s failed: %s", pid, e)
            status = REMOTE_FAILED

        if self._session is not s or s.loading_generation != gen:
            logger.warning("discarding stale goal map fetch for project %s (generation %d)", pid, gen)
            return None
        s.loading_generation = None
        # Read after the fetch so intents made while it was in flight are visible.
        cached = self._cache_get(pid)
        current = s.goal_map
        session_rev = current.revision if current is not None else rev_at_request
        decision = reconcile_snapshots(
            project_id=pid,
            remote_status=status,
            remote=remote,
            cached=cached,
            current=current,
            session_revision=session_rev,
            has_pending_edits=s.unsaved or s.reset_pending or (current is not None and current.revision != rev_at_request),
            strict=self.policy.stale_response_mode == "strict",
            reset_pending=s.reset_pending,
        )
        if decision.rule == RULE_REMOTE_EMPTY_KEPT_LOCAL:
            logger.warning(
                "remote goal map for %s is empty; keeping %d local goals", pid, decision.node_count
            )
        elif decision.rule not in (RULE_REMOTE_AUTHORITATIVE, RULE_REMOTE_EMPTY):
            logger.info(
                "project %s reconciled by %s (%d goals, remote=%s)",
                pid,
                decision.rule,
                decision.node_count,
                status,
            )
        violations = ops.validate(decision.goal_map, self.policy.graph_limits)
        if violations:
            logger.warning("reconciled goal map for %s has violations: %s", pid, "; ".join(map(str, violations)))

        s.goal_map = decision.goal_map
        s.unsaved = decision.dirty
        if decision.rule != RULE_LOCAL_PENDING:
            s.reset_pending = False
        s.last_decision = decision
        if decision.write_cache:
            self._cache_put(decision.goal_map)
        return decision

    async def refresh(self) -> MergeDecision | None:
        s = self._require_session()
        return await self.load(s.project_id)

    # ---- intents ----------------------------------------------------------

    def _require_session(self) -> _Session:
        if self._session is None:
            raise SyncStateError("no project loaded; call load(project_id) first")
        return self._session

    def _require_map(self) -> tuple[_Session, GoalMap]:
        s = self._require_session()
        if s.goal_map is None:
            raise SyncStateError(f"goal map for project {s.project_id} is still loading")
        return s, s.goal_map

    def _apply(self, fn: Callable[[GoalMap], GoalMap]) -> GoalMap:
        s, gm = self._require_map()
        new = fn(gm)
        if new is gm:
            return gm
        s.goal_map = new
        s.unsaved = True
        self._cache_put(new)
        return new

    def add_node(self, text: str, timeframe: str | None = "", level: int = 1) -> str:
        created: list[str] = []

        def _fn(gm: GoalMap) -> GoalMap:
            out, nid = ops.add_node(gm, text, timeframe, level, limits=self.policy.graph_limits)
            created.append(nid)
            return out

        self._apply(_fn)
        return created[0]

    def update_node(self, node_id: str, **patch: Any) -> GoalMap:
        return self._apply(lambda gm: ops.update_node(gm, node_id, patch, limits=self.policy.graph_limits))

    def remove_node(self, node_id: str) -> GoalMap:
        return self._apply(lambda gm: ops.remove_node(gm, node_id))

    def add_connection(self, source_id: str, target_id: str) -> GoalMap:
        return self._apply(lambda gm: ops.add_connection(gm, source_id, target_id))

    def remove_connection(self, source_id: str, target_id: str) -> GoalMap:
        return self._apply(lambda gm: ops.remove_connection(gm, source_id, target_id))

    def reset(self) -> GoalMap:
        s, gm = self._require_map()
        if not gm.has_content():
            return gm
        out = self._apply(ops.clear)
        s.reset_pending = True
        logger.info("goal map for project %s reset by user", s.project_id)
        return out

    # ---- persistence --------------------------------------------------------

    async def save(self) -> SaveResult:
        async with self._save_lock:
            return await self._save_locked()

    async def _save_locked(self) -> SaveResult:
        s, gm = self._require_map()
        if not s.unsaved and gm.id is not None:
            return SaveResult(saved=True, map_id=gm.id, revision=gm.revision, skipped=True)

        violations = ops.validate(gm, self.policy.graph_limits)
        if violations:
            raise GraphValidationError("goal map is invalid: " + "; ".join(map(str, violations)))
        if not gm.has_content() and not s.reset_pending:
            raise GraphValidationError("add at least one goal before saving")

        sent_rev = gm.revision
        s.save_in_flight = True
        try:
            if gm.id is None:
                doc = await self.remote.create_goal_map(gm)
            else:
                doc = await self.remote.update_goal_map(gm)
        except RemoteError as e:
            if self._session is not s:
                return SaveResult(saved=False, error=str(e), discarded=True)
            logger.warning("save goal map for project %s failed: %s", s.project_id, e)
            s.unsaved = True
            return SaveResult(saved=False, revision=sent_rev, error=str(e))
        finally:
            s.save_in_flight = False

        map_id = str(doc.get("id") if doc.get("id") is not None else gm.id)
        if self._session is not s:
            logger.warning("discarding save response for inactive project %s", s.project_id)
            return SaveResult(saved=True, map_id=map_id, revision=sent_rev, discarded=True)

        current = s.goal_map if s.goal_map is not None else gm
        if current.id != map_id:
            current = replace(current, id=map_id)
        s.goal_map = current
        if current.revision == sent_rev:
            s.unsaved = False
            s.reset_pending = False
        else:
            logger.info(
                "goal map for project %s changed during save (rev %d -> %d); still dirty",
                s.project_id,
                sent_rev,
                current.revision,
            )
            s.unsaved = True
        self._cache_put(current)
        return SaveResult(saved=True, map_id=map_id, revision=sent_rev)

    def _parse_echo(self, project_id: str, echo: list[Any]) -> GoalMap | None:
        try:
            require_valid({"goals": echo}, GOAL_MAP_V1)
        except ContractInvalid as e:
            logger.debug("completion echo for %s rejected: %s", project_id, e)
            return None
        echoed = goal_map_from_json_obj({"goals": echo}, project_id=project_id)
        if not echoed.nodes:
            return None
        violations = ops.validate(echoed, self.policy.graph_limits)
        if violations:
            logger.debug("completion echo for %s rejected: %s", project_id, "; ".join(map(str, violations)))
            return None
        return echoed

    async def submit(self) -> SubmitResult:
        """Save, then mark goal mapping complete for the project."""
        s, gm = self._require_map()
        if not gm.has_content():
            raise GraphValidationError("add at least one goal before submitting")

        saved = await self.save()
        if not saved.saved or saved.discarded:
            return SubmitResult(save=saved, completed=False, error=saved.error, discarded=saved.discarded)

        gm = s.goal_map or gm
        rev_before = gm.revision
        goals = [n.to_json_obj() for n in gm.nodes]
        try:
            doc = await self.remote.complete_goal_mapping(s.project_id, goals)
        except RemoteError as e:
            logger.warning("completion for project %s failed; saved graph retained: %s", s.project_id, e)
            return SubmitResult(save=saved, completed=False, error=str(e))

        if self._session is not s:
            return SubmitResult(save=saved, completed=True, discarded=True)
        s.completed = True

        echo = doc.get("goals")
        if not isinstance(echo, list):
            return SubmitResult(save=saved, completed=True)
        if not echo:
            logger.warning("completion for project %s echoed no goals; keeping %d local goals", s.project_id, len(gm.nodes))
            return SubmitResult(save=saved, completed=True)

        current = s.goal_map
        if current is None or current.revision != rev_before:
            return SubmitResult(save=saved, completed=True)
        echoed = self._parse_echo(s.project_id, echo)
        if echoed is None:
            logger.warning(
                "completion for project %s echoed unusable goals; keeping %d local goals",
                s.project_id,
                len(current.nodes),
            )
            return SubmitResult(save=saved, completed=True)
        if echoed.content_obj()["nodes"] == current.content_obj()["nodes"]:
            return SubmitResult(save=saved, completed=True)

        ids = set(echoed.node_ids)
        kept = tuple(c for c in current.connections if c.source_id in ids and c.target_id in ids)
        s.goal_map = replace(current, nodes=echoed.nodes, connections=kept)
        self._cache_put(s.goal_map)
        logger.info("completion for project %s replaced goals with %d server goals", s.project_id, len(echoed.nodes))
        return SubmitResult(save=saved, completed=True, goals_replaced=True)
