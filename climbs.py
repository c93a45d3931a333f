"""
Climbs Module - Sustained-climb detection with a gain/loss hysteresis rule.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from geomath import TrackPoint, cumulative_distances, segment_distance


logger = logging.getLogger(__name__)


class ClimbState(Enum):
    IDLE = 'idle'
    IN_CLIMB = 'in_climb'


@dataclass(frozen=True)
class Climb:
    """A detected climb."""
    start_km: float            # Route distance at the climb start, 0.1 km
    gain_m: int                # High point minus start elevation, rounded
    distance_km: float         # Path length of the climb, 0.1 km
    avg_gradient_pct: int      # gain / distance * 100, rounded
    start_idx: int
    end_idx: int
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    name: str

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'start_km': self.start_km,
            'gain_m': self.gain_m,
            'distance_km': self.distance_km,
            'avg_gradient_pct': self.avg_gradient_pct,
            'start_idx': self.start_idx,
            'end_idx': self.end_idx,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
        }


def _make_climb(
    points: Sequence[TrackPoint],
    cum_km: Sequence[float],
    start_idx: int,
    end_idx: int,
    gain: float,
    dist_m: float,
    number: int
) -> Climb:
    return Climb(
        start_km=round(float(cum_km[start_idx]), 1),
        gain_m=int(round(gain)),
        distance_km=round(dist_m / 1000, 1),
        avg_gradient_pct=int(round(gain / dist_m * 100)) if dist_m > 0 else 0,
        start_idx=start_idx,
        end_idx=end_idx,
        start_time=points[start_idx].timestamp,
        end_time=points[end_idx].timestamp,
        name=f"climb {number}",
    )


def detect_climbs(
    points: Sequence[TrackPoint],
    min_gain_m: float = 50.0,
    max_loss_m: float = 20.0
) -> List[Climb]:
    """
    Find sustained climbs on the full-resolution track.

    A tentative climb opens at the first point with an elevation. Its gain is
    the high-water elevation since the start minus the start elevation. When
    elevation drops more than max_loss_m below the high-water mark, the climb
    is emitted if its gain reached min_gain_m, and a new tentative climb opens
    at the point that triggered the drop. A climb still open at the end of the
    route is emitted if it qualifies.

    Points without elevation are skipped; their distance still counts.
    
    Args:
        points: Ordered track points
        min_gain_m: Gain needed for a climb to be reported
        max_loss_m: Drop below the high point that ends a climb
        
    Returns:
        List of Climb objects named 'climb 1', 'climb 2', ...
    """
    if min_gain_m < 0 or max_loss_m < 0:
        raise ValueError("Climb thresholds must be non-negative")
    if len(points) < 2:
        return []

    cum_km = cumulative_distances(points) / 1000

    climbs = []
    state = ClimbState.IDLE
    start_idx = 0
    start_ele = 0.0
    high_water = 0.0
    gain = 0.0
    dist = 0.0

    for i, point in enumerate(points):
        if state is ClimbState.IN_CLIMB and i > 0:
            dist += segment_distance(points[i-1], point)

        if not point.has_elevation:
            continue

        if state is ClimbState.IDLE:
            state = ClimbState.IN_CLIMB
            start_idx = i
            start_ele = high_water = point.elevation
            gain = 0.0
            dist = 0.0
            continue

        if point.elevation > high_water:
            high_water = point.elevation
        gain = high_water - start_ele

        if point.elevation < high_water - max_loss_m:
            if gain >= min_gain_m:
                climbs.append(_make_climb(points, cum_km, start_idx, i, gain, dist, len(climbs) + 1))
            # Re-open at the point that ended the climb
            start_idx = i
            start_ele = high_water = point.elevation
            gain = 0.0
            dist = 0.0

    if state is ClimbState.IN_CLIMB and gain >= min_gain_m:
        end_idx = len(points) - 1
        climbs.append(_make_climb(points, cum_km, start_idx, end_idx, gain, dist, len(climbs) + 1))

    logger.debug("Detected %d climbs (min gain %.0f m, max loss %.0f m)", len(climbs), min_gain_m, max_loss_m)
    return climbs
