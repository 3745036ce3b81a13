"""Progression Stats — derived placement metrics."""

from typing import List

from pydantic import BaseModel, Field


DEFAULT_BLUEPRINTS = ["Core Protocol", "Adaptive Clustering"]


class ProgressionStats(BaseModel):
    """Derived from cumulative PLACE actions. Never authored directly."""

    total_blocks: int = Field(ge=0, default=0)
    structures_completed: int = Field(ge=0, default=0)
    complexity_level: int = Field(ge=1, default=1)
    unlocked_blueprints: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BLUEPRINTS)
    )
