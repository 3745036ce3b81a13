"""
Rule-based oracle — a deterministic stand-in for the LLM.

Answers with the same JSON shape an LLM transport would return, so the
adapter's validation path is exercised unchanged. Useful offline and in
tests.

Rules:
  no active plan  → PLACE the first layout entry as the site core and
                    propose the rest of the layout as a plan
  active plan     → PLACE the current step (position taken from the plan)
  every Nth call  → WAIT, when ``wait_every`` is set
"""

from typing import Callable, Dict, List, Optional, Tuple

from architect_kernel.models.decision import OracleRequest
from architect_kernel.models.knowledge import KnowledgeCategory
from architect_kernel.models.plan import PlanStep
from architect_kernel.models.world import WorldObjectType


# (step label, object type, x offset, z offset) relative to the anchor.
# The first entry is placed when the plan is proposed; the rest become plan steps.
SETTLEMENT_LAYOUT: List[Tuple[str, WorldObjectType, float, float]] = [
    ("Deploy habitation core", WorldObjectType.MODULAR_UNIT, 4.0, 0.0),
    ("Mount solar array", WorldObjectType.SOLAR_PANEL, 4.0, 3.0),
    ("Install rain catchment", WorldObjectType.WATER_COLLECTOR, 0.0, 4.0),
    ("Extend habitation ring", WorldObjectType.MODULAR_UNIT, 8.0, 0.0),
]

LEARNING_NOTES: Dict[WorldObjectType, Tuple[str, KnowledgeCategory]] = {
    WorldObjectType.MODULAR_UNIT: (
        "Modular Stacking: prefabricated units share load paths when aligned on a grid.",
        KnowledgeCategory.ARCHITECTURE,
    ),
    WorldObjectType.SOLAR_PANEL: (
        "Panel Orientation: tilting panels toward the equator raises daily yield.",
        KnowledgeCategory.ENERGY,
    ),
    WorldObjectType.WATER_COLLECTOR: (
        "Rain Catchment: collectors on high ground avoid runoff contamination.",
        KnowledgeCategory.ENVIRONMENT,
    ),
    WorldObjectType.WALL: (
        "Perimeter Walls: continuous walls reduce wind loading on interior units.",
        KnowledgeCategory.INFRASTRUCTURE,
    ),
    WorldObjectType.WELL: (
        "Groundwater Access: wells sited in depressions reach the water table sooner.",
        KnowledgeCategory.ENVIRONMENT,
    ),
}


class RuleBasedOracle:
    """
    Deterministic decision oracle for the prototype.
    Builds a settlement one plan step at a time.
    """

    def __init__(
        self,
        layout: Optional[List[Tuple[str, WorldObjectType, float, float]]] = None,
        wait_every: Optional[int] = None,
    ):
        self.layout = layout or SETTLEMENT_LAYOUT
        if len(self.layout) < 2:
            raise ValueError("layout needs a site core and at least one plan step")
        self.wait_every = wait_every
        self.calls = 0
        self._rules: List[Callable[[OracleRequest], Optional[dict]]] = []
        self._register_default_rules()

    def _register_default_rules(self) -> None:
        """Register rules in priority order. The first rule to answer wins."""
        self._rules = [
            self._rule_scheduled_wait,
            self._rule_continue_plan,
            self._rule_propose_plan,
        ]

    def complete(self, request: OracleRequest) -> dict:
        self.calls += 1
        for rule in self._rules:
            response = rule(request)
            if response is not None:
                return response
        return self._wait("No rule applied.")

    def _rule_scheduled_wait(self, request: OracleRequest) -> Optional[dict]:
        if self.wait_every and self.calls % self.wait_every == 0:
            return self._wait("Scheduled pause to survey the sector.")
        return None

    def _rule_continue_plan(self, request: OracleRequest) -> Optional[dict]:
        plan = request.active_plan
        if plan is None:
            return None
        step = plan.steps[plan.current_step_index]
        note, category = self._learning_for(step.type)
        return {
            "action": "PLACE",
            "objectType": step.type.value,
            "reason": f"Executing plan step {plan.current_step_index + 1}: {step.label}.",
            "reasoningSteps": [
                f"Loading step {plan.current_step_index + 1} of {len(plan.steps)}",
                f"Validating clearance for {step.type.value}",
                "Snapping coordinates to local elevation",
            ],
            "learningNote": note,
            "knowledgeCategory": category.value,
            "taskLabel": step.label,
        }

    def _rule_propose_plan(self, request: OracleRequest) -> Optional[dict]:
        ax, _, az = request.anchor
        placed = [
            PlanStep(label=label, type=object_type, position=(ax + dx, 0.0, az + dz))
            for label, object_type, dx, dz in self.layout
        ]
        core, steps = placed[0], placed[1:]
        note, category = self._learning_for(core.type)
        return {
            "action": "PLACE",
            "objectType": core.type.value,
            "position": list(core.position),
            "reason": "No active plan. Laying out a new settlement cluster.",
            "reasoningSteps": [
                "Analyzing sector density",
                f"Anchoring cluster near {ax:.1f},{az:.1f}",
                f"Sequencing {len(steps)} placement steps",
            ],
            "learningNote": note,
            "knowledgeCategory": category.value,
            "taskLabel": core.label,
            "plan": {
                "objective": request.goal,
                "steps": [
                    {
                        "label": s.label,
                        "type": s.type.value,
                        "position": list(s.position),
                        "status": "pending",
                    }
                    for s in steps
                ],
                "currentStepIndex": 0,
            },
        }

    def _learning_for(self, object_type: WorldObjectType) -> Tuple[str, KnowledgeCategory]:
        return LEARNING_NOTES.get(
            object_type,
            (
                f"Placement Survey: {object_type.value} placed on graded terrain.",
                KnowledgeCategory.SYNTHESIS,
            ),
        )

    def _wait(self, reason: str) -> dict:
        return {
            "action": "WAIT",
            "reason": reason,
            "reasoningSteps": [
                "Holding current position",
                "Re-scanning local topology",
                "Deferring placement",
            ],
            "learningNote": "Survey Pause: idle turns keep the sector map current.",
            "knowledgeCategory": KnowledgeCategory.SYNTHESIS.value,
            "taskLabel": "Standby",
        }
