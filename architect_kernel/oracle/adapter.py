"""
Decision Oracle Adapter — the boundary between the simulation and the oracle.

Behavioral Contract:
- Packages a snapshot of the simulation (recent logs, world objects, goal,
  knowledge, active plan, local terrain) into an OracleRequest
- Invokes the oracle once
- Validates the raw response and repairs it into a Decision:
  missing or mistyped required fields get defaults, invalid optional
  fields are dropped, proposed plans are restarted at step 0
- Never raises for oracle faults: transport errors, timeouts and
  unparsable payloads resolve to the canonical fallback decision
"""

import logging
import math
from typing import Any, List, Optional, Sequence
from uuid import uuid4

from pydantic import ValidationError

from architect_kernel.models.decision import Decision, OracleAction, OracleRequest
from architect_kernel.models.knowledge import (
    GroundingLink,
    KnowledgeCategory,
    KnowledgeEntry,
)
from architect_kernel.models.plan import ConstructionPlan, PlanStep
from architect_kernel.models.simulation import SimulationConfig
from architect_kernel.models.world import LogEntry, Vector3, WorldObject, WorldObjectType
from architect_kernel.oracle.client import DecisionOracle, OracleError
from architect_kernel.plan.state_machine import activate_plan
from architect_kernel.terrain.sampler import TerrainSampler, terrain_height

logger = logging.getLogger(__name__)


ELEVATION_GRID_OFFSETS = (-6, -3, 0, 3, 6)
MIN_REASONING_STEPS = 3
MAX_REASONING_STEPS = 5

DEFAULT_REASON = "No rationale supplied by the oracle."
DEFAULT_TASK_LABEL = "Processing directive..."
DEFAULT_LEARNING_NOTE = "Synthesis Logic: placement completed without a recorded observation."
DEFAULT_REASONING_STEPS = [
    "Reviewing sector state",
    "Weighing candidate actions",
    "Committing to directive",
]

FALLBACK_REASON = "Oracle uplink desynchronised. Holding position while links re-align."
FALLBACK_REASONING_STEPS = [
    "Connection failure detected",
    "Re-routing synthesis request",
    "Flushing instruction cache",
]
FALLBACK_LEARNING_NOTE = "Uplink Fault: oracle unavailable during the planning phase."
FALLBACK_TASK_LABEL = "Recalibrating..."


def fallback_decision() -> Decision:
    """The canonical decision used whenever the oracle cannot answer."""
    return Decision(
        action=OracleAction.WAIT,
        reason=FALLBACK_REASON,
        reasoning_steps=list(FALLBACK_REASONING_STEPS),
        learning_note=FALLBACK_LEARNING_NOTE,
        knowledge_category=KnowledgeCategory.SYNTHESIS,
        task_label=FALLBACK_TASK_LABEL,
        fallback=True,
    )


# --- Spatial digest ---

def anchor_position(objects: Sequence[WorldObject]) -> Vector3:
    """Position of the most recently placed object, or the origin."""
    if objects:
        return objects[-1].position
    return (0.0, 0.0, 0.0)


def sample_elevation(
    center: Vector3,
    sampler: TerrainSampler = terrain_height,
) -> List[dict]:
    """Elevation on a fixed grid around ``center``."""
    cx, _, cz = center
    samples = []
    for dx in ELEVATION_GRID_OFFSETS:
        for dz in ELEVATION_GRID_OFFSETS:
            x, z = cx + dx, cz + dz
            samples.append({"x": x, "z": z, "elevation": sampler(x, z)})
    return samples


def scan_proximity(
    objects: Sequence[WorldObject],
    center: Vector3,
    radius: float,
) -> List[dict]:
    """Objects within ``radius`` of ``center`` on the ground plane."""
    cx, _, cz = center
    nearby = []
    for obj in objects:
        distance = math.hypot(obj.position[0] - cx, obj.position[2] - cz)
        if distance < radius:
            nearby.append({
                "type": obj.type.value,
                "position": list(obj.position),
                "distance": round(distance, 2),
            })
    return nearby


def build_spatial_digest(
    objects: Sequence[WorldObject],
    sampler: TerrainSampler = terrain_height,
    radius: float = 15.0,
) -> dict:
    """Local terrain and neighbourhood summary around the anchor."""
    center = anchor_position(objects)
    return {
        "center": list(center),
        "elevation": sample_elevation(center, sampler),
        "nearby": scan_proximity(objects, center, radius),
    }


# --- Prompt composition ---

def build_system_prompt(goal: str) -> str:
    """Standing instructions for the oracle."""
    categories = ", ".join(c.value for c in KnowledgeCategory)
    object_types = ", ".join(t.value for t in WorldObjectType)
    return (
        "You are the planning core of an autonomous construction simulation.\n"
        f"Long-term goal: {goal}\n"
        "Each turn choose exactly one action: PLACE an object, MOVE the builder, "
        "or WAIT.\n"
        f"Placeable object types: {object_types}.\n"
        f"File every learning note under one category: {categories}. "
        "Start learning notes with a short title followed by a colon.\n"
        "Give 3-5 short, technical reasoningSteps leading to your choice.\n"
        "If a plan is active, carry out its current step. If no plan is "
        "active, propose a plan of at least 3 steps that serves the goal.\n"
        "Respond with a single valid JSON object."
    )


def _format_position(position: Sequence[float]) -> str:
    return ",".join(f"{p:.1f}" for p in position)


def build_prompt(
    goal: str,
    digest: dict,
    knowledge_base: Sequence[KnowledgeEntry],
    active_plan: Optional[ConstructionPlan],
    history: Sequence[LogEntry],
) -> str:
    """The per-turn situation report."""
    elevation = ", ".join(
        f"[{s['x']:.1f}, {s['z']:.1f}]: elev={s['elevation']:.2f}"
        for s in digest["elevation"]
    )
    scan = " | ".join(
        f"[{n['type']}] at {_format_position(n['position'])} (dist: {n['distance']:.1f}m)"
        for n in digest["nearby"]
    ) or "Sector clear."

    lines = [
        f"GOAL: {goal}",
        f"ELEVATION_DATA: {elevation}",
        f"SCAN_RESULTS: {scan}",
        f"KNOWLEDGE_COUNT: {len(knowledge_base)}",
    ]
    if knowledge_base:
        titles = ", ".join(e.title for e in knowledge_base[-10:])
        lines.append(f"KNOWN_TOPICS: {titles}")

    lines.append(f"PLAN_ACTIVE: {active_plan is not None}")
    if active_plan is not None:
        step = active_plan.steps[min(active_plan.current_step_index, len(active_plan.steps) - 1)]
        lines.append(f"PLAN_OBJECTIVE: {active_plan.objective}")
        lines.append(
            f"CURRENT_STEP: {step.label} [{step.type.value}] at "
            f"{_format_position(step.position)} "
            f"({active_plan.current_step_index + 1}/{len(active_plan.steps)})"
        )
    else:
        lines.append("CURRENT_STEP: none, initiate a new sequence")

    if history:
        lines.append("RECENT_ACTIVITY:")
        lines.extend(f"- [{e.type.value}] {e.message}" for e in history)

    lines.append("Perform spatial reasoning and return the next command.")
    return "\n".join(lines)


# --- Response normalization ---

def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _coerce_position(value: Any) -> Optional[Vector3]:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        return None
    coords = []
    for v in value:
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            return None
        coords.append(float(v))
    return (coords[0], coords[1], coords[2])


def _coerce_object_type(value: Any) -> Optional[WorldObjectType]:
    if not isinstance(value, str):
        return None
    try:
        return WorldObjectType(value.strip().lower())
    except ValueError:
        return None


def _coerce_action(value: Any) -> OracleAction:
    if isinstance(value, str):
        try:
            return OracleAction(value.strip().upper())
        except ValueError:
            pass
    return OracleAction.WAIT


def _coerce_category(value: Any) -> KnowledgeCategory:
    if isinstance(value, str):
        for category in KnowledgeCategory:
            if category.value.lower() == value.strip().lower():
                return category
    return KnowledgeCategory.SYNTHESIS


def _coerce_reasoning_steps(value: Any) -> List[str]:
    if not isinstance(value, list):
        return list(DEFAULT_REASONING_STEPS)
    steps = [s for s in (_coerce_text(v) for v in value) if s][:MAX_REASONING_STEPS]
    # Short lists are topped up from the generic steps
    steps.extend(DEFAULT_REASONING_STEPS[len(steps):MIN_REASONING_STEPS])
    return steps


def _coerce_links(value: Any) -> List[GroundingLink]:
    if not isinstance(value, list):
        return []
    links = []
    for item in value:
        if not isinstance(item, dict):
            continue
        uri = _coerce_text(item.get("uri"))
        if not uri:
            continue
        title = _coerce_text(item.get("title"))
        links.append(GroundingLink(uri=uri, title=title) if title else GroundingLink(uri=uri))
    return links


def normalize_plan(raw: Any, goal: str) -> Optional[ConstructionPlan]:
    """
    Repair a proposed plan literal, or return None when it is unusable.

    Steps must each carry a known object type and a 3D position. Whatever
    statuses and index the oracle supplied, the plan restarts at step 0.
    """
    if not isinstance(raw, dict):
        return None

    raw_steps = raw.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        logger.warning("Discarding proposed plan: no steps")
        return None

    steps = []
    for i, raw_step in enumerate(raw_steps):
        if not isinstance(raw_step, dict):
            logger.warning("Discarding proposed plan: step %d is not an object", i)
            return None
        object_type = _coerce_object_type(raw_step.get("type"))
        position = _coerce_position(raw_step.get("position"))
        if object_type is None or position is None:
            logger.warning(
                "Discarding proposed plan: step %d has type=%r position=%r",
                i, raw_step.get("type"), raw_step.get("position"),
            )
            return None
        steps.append(PlanStep(
            label=_coerce_text(raw_step.get("label")) or f"Step {i + 1}",
            type=object_type,
            position=position,
        ))

    try:
        plan = ConstructionPlan(
            plan_id=_coerce_text(raw.get("planId")) or f"plan_{uuid4().hex[:12]}",
            objective=_coerce_text(raw.get("objective")) or goal,
            steps=steps,
            source_blueprint=_coerce_text(raw.get("sourceBlueprint")),
        )
    except ValidationError as exc:
        logger.warning("Discarding proposed plan: %s", exc)
        return None
    return activate_plan(plan)


def normalize_response(raw: Any, goal: str) -> Decision:
    """
    Turn a raw oracle payload into a Decision.

    Raises OracleError only when the payload is not a JSON object at all.
    """
    if not isinstance(raw, dict):
        raise OracleError(
            f"Oracle payload is a {type(raw).__name__}, expected an object"
        )

    return Decision(
        action=_coerce_action(raw.get("action")),
        reason=_coerce_text(raw.get("reason")) or DEFAULT_REASON,
        reasoning_steps=_coerce_reasoning_steps(raw.get("reasoningSteps")),
        learning_note=_coerce_text(raw.get("learningNote")) or DEFAULT_LEARNING_NOTE,
        knowledge_category=_coerce_category(raw.get("knowledgeCategory")),
        task_label=_coerce_text(raw.get("taskLabel")) or DEFAULT_TASK_LABEL,
        object_type=_coerce_object_type(raw.get("objectType")),
        position=_coerce_position(raw.get("position")),
        plan=normalize_plan(raw.get("plan"), goal),
        grounding_links=_coerce_links(raw.get("groundingLinks")),
    )


class DecisionOracleAdapter:
    """
    Consults the oracle for one decision per call.
    All oracle faults are absorbed into the fallback decision.
    """

    def __init__(
        self,
        oracle: DecisionOracle,
        config: Optional[SimulationConfig] = None,
    ):
        self.oracle = oracle
        self.config = config or SimulationConfig()

    def build_request(
        self,
        history: Sequence[LogEntry],
        objects: Sequence[WorldObject],
        goal: str,
        knowledge_base: Sequence[KnowledgeEntry],
        sampler: TerrainSampler = terrain_height,
        active_plan: Optional[ConstructionPlan] = None,
    ) -> OracleRequest:
        """Package a simulation snapshot for the oracle."""
        recent = list(history)[-self.config.history_window:]
        digest = build_spatial_digest(objects, sampler, self.config.scan_radius)
        return OracleRequest(
            system_prompt=build_system_prompt(goal),
            prompt=build_prompt(goal, digest, knowledge_base, active_plan, recent),
            goal=goal,
            anchor=anchor_position(objects),
            object_count=len(objects),
            knowledge_titles=[e.title for e in knowledge_base],
            active_plan=active_plan,
        )

    def decide(
        self,
        history: Sequence[LogEntry],
        objects: Sequence[WorldObject],
        goal: str,
        knowledge_base: Sequence[KnowledgeEntry],
        sampler: TerrainSampler = terrain_height,
        active_plan: Optional[ConstructionPlan] = None,
    ) -> Decision:
        """Ask the oracle what to do next. Always returns a Decision."""
        try:
            request = self.build_request(
                history, objects, goal, knowledge_base, sampler, active_plan
            )
            raw = self.oracle.complete(request)
            decision = normalize_response(raw, goal)
        except Exception as exc:
            logger.warning("Oracle fault, using fallback decision: %s", exc)
            return fallback_decision()

        logger.info(
            "Oracle decided %s (%s)%s",
            decision.action.value,
            decision.task_label,
            " with new plan" if decision.plan else "",
        )
        return decision
