"""Simulation State — the root aggregate and its configuration."""

import os
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from architect_kernel.models.knowledge import KnowledgeEntry
from architect_kernel.models.plan import ConstructionPlan
from architect_kernel.models.progression import ProgressionStats
from architect_kernel.models.world import (
    LogEntry,
    LogType,
    Vector3,
    WorldObject,
    WorldObjectType,
)


INITIAL_GOAL = "Synthesize Sustainable Modular Settlement"


class NetworkStatus(str, Enum):
    OFFLINE = "offline"
    UPLINK_ACTIVE = "uplink_active"
    SYNCING = "syncing"


class OrchestratorStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SimulationState(BaseModel):
    """
    The single mutable aggregate. Owned by the Turn Orchestrator; every
    other component receives a snapshot and returns a new value.
    """

    objects: List[WorldObject] = []
    logs: List[LogEntry] = []
    knowledge_base: List[KnowledgeEntry] = []
    current_goal: str = INITIAL_GOAL
    learning_iteration: int = Field(ge=0, default=0)
    progression: ProgressionStats = Field(default_factory=ProgressionStats)
    network_status: NetworkStatus = NetworkStatus.UPLINK_ACTIVE
    active_plan: Optional[ConstructionPlan] = None

    @classmethod
    def initial(
        cls,
        goal: str = INITIAL_GOAL,
        now: Optional[datetime] = None,
    ) -> "SimulationState":
        """Fresh session state with the boot log line."""
        now = now or datetime.utcnow()
        return cls(
            current_goal=goal,
            logs=[
                LogEntry(
                    id="log_boot",
                    type=LogType.SUCCESS,
                    message="Architect kernel online. Neural pathways clear.",
                    timestamp=now,
                )
            ],
        )


class SimulationConfig(BaseModel):
    """Configuration for the Turn Orchestrator."""

    tick_interval_seconds: float = Field(ge=0, default=4.5)
    uplink_delay_seconds: float = Field(ge=0, default=0.4)
    topology_delay_seconds: float = Field(ge=0, default=0.6)
    reasoning_delay_seconds: float = Field(ge=0, default=0.6)
    placement_delay_seconds: float = Field(ge=0, default=0.8)
    history_window: int = Field(ge=1, default=12)
    scan_radius: float = Field(gt=0, default=15.0)
    primary_structure_type: WorldObjectType = WorldObjectType.MODULAR_UNIT
    default_object_type: WorldObjectType = WorldObjectType.MODULAR_UNIT

    @classmethod
    def instant(cls, **overrides) -> "SimulationConfig":
        """A config with every artificial delay disabled."""
        values = {
            "tick_interval_seconds": 0,
            "uplink_delay_seconds": 0,
            "topology_delay_seconds": 0,
            "reasoning_delay_seconds": 0,
            "placement_delay_seconds": 0,
        }
        values.update(overrides)
        return cls(**values)


class OracleConfig(BaseModel):
    """Connection settings for the LLM oracle."""

    base_url: str = "http://localhost:11434"
    model: str = "llama3.1:8b"
    temperature: float = Field(ge=0, le=2, default=0.7)
    request_timeout_seconds: float = Field(gt=0, default=60.0)

    @classmethod
    def from_env(cls) -> "OracleConfig":
        """Read overrides from ARCHITECT_* environment variables."""
        defaults = cls()
        return cls(
            base_url=os.environ.get("ARCHITECT_OLLAMA_URL", defaults.base_url),
            model=os.environ.get("ARCHITECT_MODEL", defaults.model),
            temperature=float(
                os.environ.get("ARCHITECT_TEMPERATURE", defaults.temperature)
            ),
            request_timeout_seconds=float(
                os.environ.get(
                    "ARCHITECT_ORACLE_TIMEOUT", defaults.request_timeout_seconds
                )
            ),
        )


class RenderView(BaseModel):
    """What the rendering collaborator is allowed to see."""

    objects: List[WorldObject]
    avatar_position: Vector3
    active_plan: Optional[ConstructionPlan] = None
