"""Decision — the normalized record produced from one oracle response."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from architect_kernel.models.knowledge import GroundingLink, KnowledgeCategory
from architect_kernel.models.plan import ConstructionPlan
from architect_kernel.models.world import Vector3, WorldObjectType


class OracleAction(str, Enum):
    PLACE = "PLACE"
    MOVE = "MOVE"
    WAIT = "WAIT"


class Decision(BaseModel):
    """
    What the oracle chose for this tick, after validation and repair.

    Orchestration code only ever sees this type; raw oracle payloads stop
    at the adapter.
    """

    action: OracleAction = OracleAction.WAIT
    reason: str
    reasoning_steps: List[str] = Field(min_length=3, max_length=5)
    learning_note: str
    knowledge_category: KnowledgeCategory = KnowledgeCategory.SYNTHESIS
    task_label: str
    object_type: Optional[WorldObjectType] = None
    position: Optional[Vector3] = None
    plan: Optional[ConstructionPlan] = None
    grounding_links: List[GroundingLink] = []
    fallback: bool = False                  # True when the oracle call failed


class OracleRequest(BaseModel):
    """
    Everything handed to the oracle for one decision.

    LLM transports read the two prompts; structured oracles read the
    context fields.
    """

    system_prompt: str
    prompt: str
    goal: str
    anchor: Vector3 = (0.0, 0.0, 0.0)       # Last placed object, or origin
    object_count: int = 0
    knowledge_titles: List[str] = []
    active_plan: Optional[ConstructionPlan] = None
