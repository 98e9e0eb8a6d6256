"""Battle-Royale match scoring.

Pure functions, no state: a placement table plus a per-kill weight.
"""
from typing import Dict, Optional

from royale.core.config import settings

PLACEMENT_POINTS: Dict[int, int] = {
    1: 10,
    2: 6,
    3: 5,
    4: 4,
    5: 3,
    6: 2,
    7: 1,
    8: 1,
    9: 0,
    10: 0,
}


def points_for_placement(position: Optional[int]) -> int:
    """Placement points for a finishing position; 0 when absent or off the table."""
    if position is None or isinstance(position, bool):
        return 0
    return PLACEMENT_POINTS.get(position, 0)


def kill_points(kills: Optional[int], weight: Optional[int] = None) -> int:
    if not kills:
        return 0
    if weight is None:
        weight = settings.KILL_POINT_WEIGHT
    return kills * weight


def total_points(position: Optional[int], kills: Optional[int], weight: Optional[int] = None) -> int:
    return points_for_placement(position) + kill_points(kills, weight)


def is_chicken_dinner(position: Optional[int]) -> bool:
    return position == 1
