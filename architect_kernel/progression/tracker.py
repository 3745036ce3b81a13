"""
Progression Tracker — tiered metrics derived from placements.

Invoked once per successful PLACE. The tier rises every
BLOCKS_PER_TIER placements, starting at tier 1.
"""

from typing import Union

from architect_kernel.models.progression import ProgressionStats
from architect_kernel.models.world import WorldObjectType


BLOCKS_PER_TIER = 5


def complexity_level_for(total_blocks: int) -> int:
    """Tier for a cumulative placement count: 0-4 → 1, 5-9 → 2, ..."""
    if total_blocks < 0:
        raise ValueError(f"total_blocks must be non-negative, got {total_blocks}")
    return total_blocks // BLOCKS_PER_TIER + 1


def update_progression(
    stats: ProgressionStats,
    object_type: Union[WorldObjectType, str],
    primary_structure_type: WorldObjectType = WorldObjectType.MODULAR_UNIT,
) -> ProgressionStats:
    """Return the stats after one more placement of ``object_type``."""
    total = stats.total_blocks + 1
    structures = stats.structures_completed
    if WorldObjectType(object_type) == primary_structure_type:
        structures += 1

    return ProgressionStats(
        total_blocks=total,
        structures_completed=structures,
        complexity_level=complexity_level_for(total),
        unlocked_blueprints=list(stats.unlocked_blueprints),
    )
