"""World Model — placed artifacts and the simulation activity log."""

from datetime import datetime
from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict


Vector3 = Tuple[float, float, float]


class WorldObjectType(str, Enum):
    """Closed catalogue of placeable artifacts."""
    WALL = "wall"
    ROOF = "roof"
    DOOR = "door"
    CROP = "crop"
    TREE = "tree"
    WELL = "well"
    FENCE = "fence"
    MODULAR_UNIT = "modular_unit"
    SOLAR_PANEL = "solar_panel"
    WATER_COLLECTOR = "water_collector"


class WorldObject(BaseModel):
    """A placed artifact. Never modified after placement."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: WorldObjectType
    position: Vector3
    rotation: Vector3 = (0.0, 0.0, 0.0)
    scale: Vector3 = (1.0, 1.0, 1.0)
    timestamp: datetime


class LogType(str, Enum):
    ACTION = "action"
    LEARNING = "learning"
    ERROR = "error"
    SUCCESS = "success"
    THINKING = "thinking"


class LogEntry(BaseModel):
    """One line of the user-visible activity stream."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: LogType = LogType.ACTION
    message: str
    timestamp: datetime
