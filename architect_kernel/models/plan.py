"""Construction Plan — the multi-step work the oracle proposes."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from architect_kernel.models.world import Vector3, WorldObjectType


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class PlanStep(BaseModel):
    """A single unit of work: what to place and where."""

    label: str
    type: WorldObjectType
    position: Vector3
    status: StepStatus = StepStatus.PENDING


class ConstructionPlan(BaseModel):
    """
    An ordered sequence of placement steps.

    While the plan is live exactly one step is ACTIVE and
    current_step_index points at it. Steps before it are COMPLETED,
    steps after it are PENDING.
    """

    plan_id: str
    objective: str
    steps: List[PlanStep] = Field(min_length=1)
    current_step_index: int = Field(ge=0, default=0)
    source_blueprint: Optional[str] = None

    @property
    def current_step(self) -> PlanStep:
        return self.steps[self.current_step_index]

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)
