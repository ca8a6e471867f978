"""Derived completion state across the "get your bearings" tools.

Everything here reads tool state; nothing writes it back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from successmap.graph.model import GoalMap
from successmap.policies.load import DEFAULT_TOOL_WEIGHTS
from successmap.remote.client import RemoteError, RemoteStore
from successmap.sync.reconciler import SyncReconciler

logger = logging.getLogger(__name__)

NOT_STARTED = "not-started"
IN_PROGRESS = "in-progress"
COMPLETED = "completed"

GOAL_MAPPING = "goal-mapping"
CYNEFIN = "cynefin"
TCOF_JOURNEY = "tcof-journey"

TOOL_PRIORITY = (
    "goal-mapping",
    "cynefin",
    "tcof-journey",
    "plan-block1",
    "plan-block2",
    "plan-block3",
    "checklist",
)


@dataclass(frozen=True)
class ToolProgress:
    started: bool = False
    completed: bool = False


@dataclass(frozen=True)
class BearingsSignals:
    goal_mapping: bool = False
    cynefin: bool = False
    tcof_journey: bool = False


@dataclass(frozen=True)
class ProgressReport:
    project_id: str
    signals: BearingsSignals
    bearings_status: str
    overall_progress: int
    tools: dict[str, ToolProgress] = field(default_factory=dict)
    next_recommended_tool: str | None = None
    errors: dict[str, str] = field(default_factory=dict)

    def to_json_obj(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "bearingsStatus": self.bearings_status,
            "overallProgress": self.overall_progress,
            "nextRecommendedTool": self.next_recommended_tool,
            "signals": {
                GOAL_MAPPING: self.signals.goal_mapping,
                CYNEFIN: self.signals.cynefin,
                TCOF_JOURNEY: self.signals.tcof_journey,
            },
            "tools": {t: {"started": tp.started, "completed": tp.completed} for t, tp in sorted(self.tools.items())},
            "errors": dict(self.errors),
        }


def bearings_status(signals: BearingsSignals) -> str:
    present = [signals.goal_mapping, signals.cynefin, signals.tcof_journey]
    if all(present):
        return COMPLETED
    if any(present):
        return IN_PROGRESS
    return NOT_STARTED


def goal_map_signal(goal_map: GoalMap | None) -> bool:
    return goal_map is not None and goal_map.has_content()


def cynefin_signal(doc: Mapping[str, Any] | None) -> bool:
    if not isinstance(doc, Mapping):
        return False
    data = doc.get("data")
    if isinstance(data, Mapping):
        selections = data.get("selections")
        if isinstance(selections, list) and selections:
            return True
    return bool(doc.get("quadrant"))


def journey_signal(doc: Mapping[str, Any] | None) -> bool:
    if not isinstance(doc, Mapping):
        return False
    data = doc.get("data")
    if isinstance(data, Mapping):
        decisions = data.get("decisions")
        if isinstance(decisions, Mapping) and decisions:
            return True
    return bool(doc.get("stage"))


def overall_progress(
    tools: Mapping[str, ToolProgress],
    weights: Mapping[str, int] | None = None,
    *,
    started_credit: float = 0.5,
) -> int:
    """Weighted percentage (0-100): a completed tool earns its full weight, a started one ``started_credit``."""
    w = weights if weights is not None else DEFAULT_TOOL_WEIGHTS
    total_weight = 0
    earned = 0.0
    for tool, weight in w.items():
        total_weight += weight
        tp = tools.get(tool)
        if tp is None:
            continue
        if tp.completed:
            earned += weight
        elif tp.started:
            earned += weight * started_credit
    if total_weight <= 0:
        return 0
    return int(round(earned / total_weight * 100))


def next_recommended_tool(tools: Mapping[str, ToolProgress]) -> str | None:
    for tool in TOOL_PRIORITY:
        tp = tools.get(tool)
        if tp is None or not tp.completed:
            return tool
    return None


def tool_progress(signals: BearingsSignals, completed_tools: Iterable[str] = ()) -> dict[str, ToolProgress]:
    """Per-tool state from the bearings signals plus explicit completion flags.

    A signal marks a tool started. Cynefin and the TCOF journey count as completed
    once they have one; goal mapping only after it has been submitted.
    """
    tools = {
        GOAL_MAPPING: ToolProgress(started=signals.goal_mapping, completed=False),
        CYNEFIN: ToolProgress(started=signals.cynefin, completed=signals.cynefin),
        TCOF_JOURNEY: ToolProgress(started=signals.tcof_journey, completed=signals.tcof_journey),
    }
    for tool in completed_tools:
        tools[tool] = ToolProgress(started=True, completed=True)
    return tools


def build_report(
    project_id: str,
    signals: BearingsSignals,
    *,
    completed_tools: Iterable[str] = (),
    weights: Mapping[str, int] | None = None,
    started_credit: float = 0.5,
    errors: Mapping[str, str] | None = None,
) -> ProgressReport:
    tools = tool_progress(signals, completed_tools)
    return ProgressReport(
        project_id=project_id,
        signals=signals,
        bearings_status=bearings_status(signals),
        overall_progress=overall_progress(tools, weights, started_credit=started_credit),
        tools=tools,
        next_recommended_tool=next_recommended_tool(tools),
        errors=dict(errors or {}),
    )


async def gather_progress(
    remote: RemoteStore,
    project_id: str,
    *,
    reconciler: SyncReconciler | None = None,
    weights: Mapping[str, int] | None = None,
    started_credit: float = 0.5,
) -> ProgressReport:
    """Collect the three bearings signals and completion flags for a project.

    When ``reconciler`` is active for the project its in-memory map is used, so
    reconciled-but-unsaved goals count; otherwise the remote snapshot is read.
    A failed read counts as an absent signal.
    """
    errors: dict[str, str] = {}
    completed: set[str] = set()

    if reconciler is not None and reconciler.project_id == project_id and reconciler.goal_map is not None:
        goal_signal = reconciler.has_goal_mapping_signal()
        if reconciler.completed:
            completed.add(GOAL_MAPPING)
    else:
        try:
            goal_signal = goal_map_signal(await remote.fetch_goal_map(project_id))
        except RemoteError as e:
            logger.warning("progress: goal map fetch for %s failed: %s", project_id, e)
            errors[GOAL_MAPPING] = str(e)
            goal_signal = False

    payloads: dict[str, dict[str, Any] | None] = {}
    for tool in (CYNEFIN, TCOF_JOURNEY):
        try:
            payloads[tool] = await remote.fetch_tool_payload(tool, project_id)
        except RemoteError as e:
            logger.warning("progress: %s fetch for %s failed: %s", tool, project_id, e)
            errors[tool] = str(e)
            payloads[tool] = None

    signals = BearingsSignals(
        goal_mapping=goal_signal,
        cynefin=cynefin_signal(payloads[CYNEFIN]),
        tcof_journey=journey_signal(payloads[TCOF_JOURNEY]),
    )
    try:
        completed.update(await remote.fetch_completed_tools(project_id))
    except RemoteError as e:
        logger.warning("progress: completion flags for %s unavailable: %s", project_id, e)
        errors["completion"] = str(e)

    return build_report(
        project_id,
        signals,
        completed_tools=completed,
        weights=weights,
        started_credit=started_credit,
        errors=errors,
    )
