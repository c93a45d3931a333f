"""
GeoMath Module - Track point record, haversine distance, cumulative distance and elevation.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence
import numpy as np


# Earth radius in meters
EARTH_RADIUS_M = 6371000


@dataclass(frozen=True)
class TrackPoint:
    """A single GPS sample along a route."""
    lat: float
    lon: float
    elevation: Optional[float] = None    # meters, None when the source had no <ele>
    timestamp: Optional[datetime] = None  # None for planned (not yet run) routes

    @property
    def has_elevation(self) -> bool:
        return is_number(self.elevation)

    @property
    def has_position(self) -> bool:
        return is_number(self.lat) and is_number(self.lon)

    def to_dict(self) -> dict:
        return {
            'lat': self.lat,
            'lon': self.lon,
            'elevation': self.elevation,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }


def is_number(value) -> bool:
    """True for finite ints/floats (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
        return False
    return math.isfinite(value)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.
    
    Args:
        lat1, lon1: First point coordinates in degrees
        lat2, lon2: Second point coordinates in degrees
        
    Returns:
        Distance in meters (NaN inputs give NaN)
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)
    
    a = (math.sin(delta_lat / 2) ** 2 + 
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    
    return EARTH_RADIUS_M * c


def distance(p1: TrackPoint, p2: TrackPoint) -> float:
    """Great-circle distance between two track points in meters."""
    return haversine_distance(p1.lat, p1.lon, p2.lat, p2.lon)


def segment_distance(p1: TrackPoint, p2: TrackPoint) -> float:
    """
    Distance of one step along a route.

    Unlike distance(), a pair with malformed coordinates contributes 0
    so accumulators never turn into NaN.
    """
    if not (p1.has_position and p2.has_position):
        return 0.0
    return distance(p1, p2)


def cumulative_distances(points: Sequence[TrackPoint]) -> np.ndarray:
    """
    Compute cumulative distances along the track.
    
    Args:
        points: Ordered track points
        
    Returns:
        Array of cumulative distances in meters, first value 0
    """
    if not points:
        return np.array([])
    distances = [0.0]
    for i in range(1, len(points)):
        distances.append(distances[-1] + segment_distance(points[i-1], points[i]))
    return np.array(distances)


def total_distance(points: Sequence[TrackPoint]) -> float:
    """Total path length in meters."""
    return float(sum(segment_distance(points[i-1], points[i]) for i in range(1, len(points))))


def elevation_gain(points: Sequence[TrackPoint]) -> float:
    """
    Sum of all positive elevation deltas in meters.

    Pairs where either elevation is missing or non-numeric are skipped.
    """
    gain = 0.0
    for i in range(1, len(points)):
        prev, curr = points[i-1], points[i]
        if prev.has_elevation and curr.has_elevation:
            diff = curr.elevation - prev.elevation
            if diff > 0:
                gain += diff
    return gain


def elevation_loss(points: Sequence[TrackPoint]) -> float:
    """Sum of all negative elevation deltas in meters, as a positive number."""
    loss = 0.0
    for i in range(1, len(points)):
        prev, curr = points[i-1], points[i]
        if prev.has_elevation and curr.has_elevation:
            diff = curr.elevation - prev.elevation
            if diff < 0:
                loss -= diff
    return loss


def elapsed_seconds(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    """
    Seconds between two timestamps, or None when either is missing.

    Mixing naive and timezone-aware datetimes also yields None.
    """
    if not isinstance(start, datetime) or not isinstance(end, datetime):
        return None
    try:
        return (end - start).total_seconds()
    except TypeError:
        return None
