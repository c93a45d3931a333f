"""
Binning Module - Fixed-length route bins, grade adjustment per bin, bin-level aggregates.
"""

import logging
import math
import warnings
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence
import numpy as np

from errors import MissingTimeDataWarning
from gap_model import GradeAdjustmentModel
from geomath import TrackPoint, elapsed_seconds, segment_distance


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bin:
    """A contiguous slice of the route of roughly fixed path length."""
    distance_m: float                  # Path length (sum of step distances)
    elevation_change_m: float          # End elevation minus start elevation
    gradient_pct: float                # elevation_change / distance * 100
    elapsed_s: Optional[float]         # None without valid, increasing timestamps
    velocity_mps: Optional[float]
    pace_min_per_km: Optional[float]
    adjustment_factor: float           # 1.0 when no model is supplied
    grade_adjusted_distance_m: Optional[float]
    adjusted_time_s: Optional[float]   # Time at the target velocity on flat-equivalent distance
    start_idx: int                     # Index of first point in the source track
    end_idx: int                       # Index of last point (shared with the next bin)
    start_time: Optional[datetime]
    end_time: Optional[datetime]

    @property
    def distance_km(self) -> float:
        return self.distance_m / 1000

    @property
    def has_time(self) -> bool:
        return self.elapsed_s is not None

    @property
    def grade_adjusted_pace_min_per_km(self) -> Optional[float]:
        """Observed pace expressed on flat-equivalent distance."""
        if self.pace_min_per_km is None:
            return None
        if not math.isfinite(self.adjustment_factor) or self.adjustment_factor <= 0:
            return None
        return self.pace_min_per_km / self.adjustment_factor

    def to_dict(self) -> dict:
        """JSON-compatible representation."""
        return {
            'distance_m': self.distance_m,
            'elevation_change_m': self.elevation_change_m,
            'gradient_pct': self.gradient_pct,
            'elapsed_s': self.elapsed_s,
            'velocity_mps': self.velocity_mps,
            'pace_min_per_km': self.pace_min_per_km,
            'adjustment_factor': self.adjustment_factor,
            'grade_adjusted_distance_m': self.grade_adjusted_distance_m,
            'adjusted_time_s': self.adjusted_time_s,
            'start_idx': self.start_idx,
            'end_idx': self.end_idx,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
        }


@dataclass(frozen=True)
class GradientGroup:
    """Gradient bucket; lower bound exclusive, upper inclusive."""
    label: str
    min_pct: float
    max_pct: float
    mid_pct: float

    def contains(self, gradient_pct: float) -> bool:
        return self.min_pct < gradient_pct <= self.max_pct


GRADIENT_GROUPS = (
    GradientGroup('< -20', -math.inf, -20, -22.5),
    GradientGroup('-20 to -10', -20, -10, -15),
    GradientGroup('-10 to -5', -10, -5, -7.5),
    GradientGroup('-5 to 5', -5, 5, 0),
    GradientGroup('5 to 10', 5, 10, 7.5),
    GradientGroup('10 to 20', 10, 20, 15),
    GradientGroup('> 20', 20, math.inf, 22.5),
)


def compute_bin(
    points: Sequence[TrackPoint],
    start_idx: int,
    end_idx: int,
    distance_m: float,
    model: Optional[GradeAdjustmentModel] = None,
    target_velocity_mps: Optional[float] = None
) -> Bin:
    """
    Build one bin from its boundary points and accumulated distance.
    
    Args:
        points: Full track
        start_idx: Index of first point
        end_idx: Index of last point (inclusive)
        distance_m: Path length between them
        model: Optional grade-adjustment model
        target_velocity_mps: Optional flat-ground target velocity
        
    Returns:
        Bin with computed stats
    """
    start, end = points[start_idx], points[end_idx]

    if start.has_elevation and end.has_elevation:
        elevation_change = end.elevation - start.elevation
    else:
        elevation_change = 0.0

    if end_idx - start_idx < 1 or distance_m <= 0:
        gradient = 0.0
    else:
        gradient = elevation_change / distance_m * 100

    # Time
    elapsed = elapsed_seconds(start.timestamp, end.timestamp)
    velocity = None
    pace = None
    if elapsed is not None and elapsed > 0:
        velocity = distance_m / elapsed
        pace = (1000 / velocity) / 60 if velocity > 0 else None
    else:
        elapsed = None

    # Grade adjustment
    factor = model.evaluate(gradient) if model is not None else 1.0
    grade_adjusted_distance = None
    adjusted_time = None
    if (
        target_velocity_mps is not None
        and target_velocity_mps > 0
        and math.isfinite(factor)
        and factor > 0
    ):
        grade_adjusted_distance = distance_m * factor
        adjusted_time = grade_adjusted_distance / target_velocity_mps

    return Bin(
        distance_m=distance_m,
        elevation_change_m=elevation_change,
        gradient_pct=gradient,
        elapsed_s=elapsed,
        velocity_mps=velocity,
        pace_min_per_km=pace,
        adjustment_factor=factor,
        grade_adjusted_distance_m=grade_adjusted_distance,
        adjusted_time_s=adjusted_time,
        start_idx=start_idx,
        end_idx=end_idx,
        start_time=start.timestamp,
        end_time=end.timestamp,
    )


def bin_route(
    points: Sequence[TrackPoint],
    bin_length_m: float = 50.0,
    model: Optional[GradeAdjustmentModel] = None,
    target_velocity_mps: Optional[float] = None
) -> List[Bin]:
    """
    Partition a route into contiguous bins of about bin_length_m.

    Walks the points once, accumulating step distance. The point at which the
    running distance reaches bin_length_m closes the bin and opens the next
    one, so consecutive bins share a boundary index. Leftover distance
    becomes a final, shorter bin; trailing points that add no distance
    extend the last bin instead.
    
    Args:
        points: Ordered track points
        bin_length_m: Nominal bin length in meters
        model: Optional grade-adjustment model (factor 1.0 without one)
        target_velocity_mps: Optional flat-ground velocity for adjusted times
        
    Returns:
        List of Bin objects
    """
    if not bin_length_m > 0:
        raise ValueError(f"bin_length_m must be positive, got {bin_length_m}")
    if len(points) < 2:
        return []

    bins = []
    last_idx = 0
    cum_dist = 0.0

    for i in range(1, len(points)):
        cum_dist += segment_distance(points[i-1], points[i])
        if cum_dist >= bin_length_m:
            bins.append(compute_bin(points, last_idx, i, cum_dist, model, target_velocity_mps))
            last_idx = i
            cum_dist = 0.0

    # Partial tail bin
    if last_idx < len(points) - 1 and cum_dist > 0:
        bins.append(compute_bin(points, last_idx, len(points) - 1, cum_dist, model, target_velocity_mps))
    elif last_idx < len(points) - 1 and bins:
        # Trailing points add no distance (standing at the finish); keep their time
        last = bins.pop()
        bins.append(compute_bin(points, last.start_idx, len(points) - 1, last.distance_m, model, target_velocity_mps))

    _report_missing_time(bins)
    logger.debug("Binned %d points into %d bins of %.0f m", len(points), len(bins), bin_length_m)
    return bins


def _report_missing_time(bins: Sequence[Bin]) -> None:
    untimed = sum(1 for b in bins if not b.has_time)
    if not untimed:
        return
    if untimed == len(bins):
        logger.debug("Route has no usable time data; time fields left empty")
        return
    warnings.warn(
        f"{untimed} of {len(bins)} bins have no usable time data",
        MissingTimeDataWarning,
        stacklevel=3,
    )


def _finite(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


def has_time_data(bins: Sequence[Bin]) -> bool:
    """True when at least one bin carries elapsed time."""
    return any(b.has_time for b in bins)


def total_adjusted_time(bins: Sequence[Bin]) -> float:
    """Sum of finite adjusted times in seconds."""
    return float(sum(b.adjusted_time_s for b in bins if _finite(b.adjusted_time_s)))


def overall_grade_adjusted_pace(bins: Sequence[Bin]) -> Optional[float]:
    """
    Modelled grade-adjusted pace (min/km) over the whole route.

    Uses adjusted time over raw distance, counting only bins where both are
    finite and positive.
    """
    valid = [
        b for b in bins
        if _finite(b.distance_m) and b.distance_m > 0
        and _finite(b.adjusted_time_s) and b.adjusted_time_s > 0
    ]
    total_dist = sum(b.distance_m for b in valid)
    if not total_dist:
        return None
    total_time = sum(b.adjusted_time_s for b in valid)
    return (total_time / 60) / (total_dist / 1000)


def grade_adjusted_pace_from_bins(bins: Sequence[Bin]) -> Optional[float]:
    """Observed moving time over total grade-adjusted distance, in min/km."""
    total_time = sum(b.elapsed_s for b in bins if b.has_time)
    total_gad = sum(b.grade_adjusted_distance_m for b in bins if _finite(b.grade_adjusted_distance_m))
    if not total_time or not total_gad:
        return None
    return (total_time / 60) / (total_gad / 1000)


def average_pace_from_bins(bins: Sequence[Bin]) -> Optional[float]:
    """Observed time over raw distance of timed bins, in min/km."""
    timed = [b for b in bins if b.has_time]
    total_time = sum(b.elapsed_s for b in timed)
    total_dist = sum(b.distance_m for b in timed)
    if not total_time or not total_dist:
        return None
    return (total_time / 60) / (total_dist / 1000)


def _bins_in_group(bins: Sequence[Bin], group: GradientGroup) -> List[Bin]:
    return [b for b in bins if _finite(b.gradient_pct) and group.contains(b.gradient_pct)]


def time_by_gradient_group(bins: Sequence[Bin]) -> List[Dict]:
    """Observed seconds spent in each gradient group."""
    return [
        {
            'group': group.label,
            'total_time_s': float(sum(b.elapsed_s for b in _bins_in_group(bins, group) if b.has_time)),
        }
        for group in GRADIENT_GROUPS
    ]


def pace_by_gradient_group(bins: Sequence[Bin]) -> List[Dict]:
    """
    Average observed pace per gradient group.

    Pace is total time over total distance of the group's bins; None when the
    group has no timed distance.
    """
    results = []
    for group in GRADIENT_GROUPS:
        members = _bins_in_group(bins, group)
        total_time = sum(b.elapsed_s for b in members if b.has_time)
        total_dist = sum(b.distance_m for b in members)
        pace = None
        if total_time > 0 and total_dist > 0:
            pace = (total_time / 60) / (total_dist / 1000)
        results.append({
            'group': group.label,
            'mid_pct': group.mid_pct,
            'pace_min_per_km': pace,
        })
    return results


def pace_analysis_by_gradient(bins: Sequence[Bin]) -> Dict[str, List[float]]:
    """
    Median observed and grade-adjusted pace per whole-percent gradient.

    Groups lacking either pace are omitted.

    Returns:
        {'gradients': [...], 'medians': [...], 'grade_adjusted_medians': [...]}
    """
    groups: Dict[int, List[Bin]] = {}
    for b in bins:
        if not _finite(b.gradient_pct):
            continue
        groups.setdefault(int(round(b.gradient_pct)), []).append(b)

    gradients, medians, adj_medians = [], [], []
    for gradient in sorted(groups):
        paces = [b.pace_min_per_km for b in groups[gradient] if _finite(b.pace_min_per_km)]
        adj_paces = [
            b.grade_adjusted_pace_min_per_km for b in groups[gradient]
            if _finite(b.grade_adjusted_pace_min_per_km)
        ]
        if paces and adj_paces:
            gradients.append(gradient)
            medians.append(float(np.median(paces)))
            adj_medians.append(float(np.median(adj_paces)))

    return {'gradients': gradients, 'medians': medians, 'grade_adjusted_medians': adj_medians}


def get_bin_boundaries(bins: Sequence[Bin]) -> List[int]:
    """
    Extract boundary point indices from a bin list.
    
    Returns:
        n+1 indices for n bins, [0] for no bins
    """
    if not bins:
        return [0]
    boundaries = [bins[0].start_idx]
    for b in bins:
        boundaries.append(b.end_idx)
    return boundaries
