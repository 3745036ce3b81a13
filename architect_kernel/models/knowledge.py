"""Knowledge Model — facts learned by the simulation."""

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict


class KnowledgeCategory(str, Enum):
    INFRASTRUCTURE = "Infrastructure"
    ENERGY = "Energy"
    ENVIRONMENT = "Environment"
    ARCHITECTURE = "Architecture"
    SYNTHESIS = "Synthesis"


class GroundingLink(BaseModel):
    """A citation supporting a learned fact."""

    uri: str
    title: str = "Reference Archive"


class KnowledgeEntry(BaseModel):
    """One ledger entry. Titles are unique within a ledger."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    category: KnowledgeCategory
    iteration: int                          # learning_iteration at creation
    timestamp: datetime
    links: List[GroundingLink] = []
