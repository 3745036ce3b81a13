"""Architect Kernel data models."""

from architect_kernel.models.decision import Decision, OracleAction, OracleRequest
from architect_kernel.models.knowledge import (
    GroundingLink,
    KnowledgeCategory,
    KnowledgeEntry,
)
from architect_kernel.models.plan import ConstructionPlan, PlanStep, StepStatus
from architect_kernel.models.progression import ProgressionStats
from architect_kernel.models.simulation import (
    NetworkStatus,
    OracleConfig,
    OrchestratorStatus,
    RenderView,
    SimulationConfig,
    SimulationState,
)
from architect_kernel.models.world import (
    LogEntry,
    LogType,
    Vector3,
    WorldObject,
    WorldObjectType,
)

__all__ = [
    "ConstructionPlan",
    "Decision",
    "GroundingLink",
    "KnowledgeCategory",
    "KnowledgeEntry",
    "LogEntry",
    "LogType",
    "NetworkStatus",
    "OracleAction",
    "OracleConfig",
    "OracleRequest",
    "OrchestratorStatus",
    "PlanStep",
    "ProgressionStats",
    "RenderView",
    "SimulationConfig",
    "SimulationState",
    "StepStatus",
    "Vector3",
    "WorldObject",
    "WorldObjectType",
]
