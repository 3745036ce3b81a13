"""
Terrain Sampler — ground elevation for any (x, z).

Pure, deterministic and defined for every real input. Placement and
movement targets are snapped to this surface.
"""

import math
from typing import Callable

from architect_kernel.models.world import Vector3


TerrainSampler = Callable[[float, float], float]

AMPLITUDE = 1.2
FREQUENCY = 0.2


def terrain_height(x: float, z: float) -> float:
    """Elevation of the rolling ground surface at (x, z)."""
    return math.sin(x * FREQUENCY) * math.cos(z * FREQUENCY) * AMPLITUDE


def snap_to_terrain(position: Vector3, sampler: TerrainSampler = terrain_height) -> Vector3:
    """Replace the vertical coordinate of a position with the ground height."""
    x, _, z = position
    return (float(x), sampler(x, z), float(z))
