"""
Checkpoints Module - Checkpoint list editing, checkpoint-to-bin mapping, time projection.
"""

import bisect
import logging
import math
from dataclasses import dataclass, replace
from typing import List, Mapping, Optional, Sequence, Union
import numpy as np

from binning import Bin
from geomath import TrackPoint, cumulative_distances, elapsed_seconds


logger = logging.getLogger(__name__)

# Checkpoints closer than this (km) are the same checkpoint
KM_EPSILON = 1e-6

START_NAME = 'Start'
END_NAME = 'End'

PaceOverrides = Union[Sequence[Optional[float]], Mapping[int, Optional[float]]]


@dataclass(frozen=True)
class Checkpoint:
    """A named distance marker along the route."""
    km: float
    name: str

    def to_dict(self) -> dict:
        return {'km': self.km, 'name': self.name}


@dataclass(frozen=True)
class CheckpointProjection:
    """Modelled time at a checkpoint using the bins' adjusted times."""
    checkpoint_idx: int
    cumulative_adjusted_time_s: float
    segment_adjusted_time_s: float

    def to_dict(self) -> dict:
        return {
            'checkpoint_idx': self.checkpoint_idx,
            'cumulative_adjusted_time_s': self.cumulative_adjusted_time_s,
            'segment_adjusted_time_s': self.segment_adjusted_time_s,
        }


@dataclass(frozen=True)
class OverrideProjection:
    """Modelled time at a checkpoint using per-segment pace overrides."""
    checkpoint_idx: int
    cumulative_s: float
    segment_s: float

    def to_dict(self) -> dict:
        return {
            'checkpoint_idx': self.checkpoint_idx,
            'cumulative_s': self.cumulative_s,
            'segment_s': self.segment_s,
        }


@dataclass(frozen=True)
class CheckpointSplit:
    """Observed split statistics between a checkpoint and the previous one."""
    checkpoint_idx: int
    name: str
    km: float
    route_idx: int
    segment_km: float
    elevation_gain_m: int                  # From start of route
    elevation_gain_from_prev_m: int
    elapsed_from_start_s: Optional[float]
    elapsed_from_prev_s: Optional[float]
    avg_pace_min_per_km: Optional[float]
    grade_adjusted_pace_min_per_km: Optional[float]

    def to_dict(self) -> dict:
        return {
            'checkpoint_idx': self.checkpoint_idx,
            'name': self.name,
            'km': self.km,
            'route_idx': self.route_idx,
            'segment_km': self.segment_km,
            'elevation_gain_m': self.elevation_gain_m,
            'elevation_gain_from_prev_m': self.elevation_gain_from_prev_m,
            'elapsed_from_start_s': self.elapsed_from_start_s,
            'elapsed_from_prev_s': self.elapsed_from_prev_s,
            'avg_pace_min_per_km': self.avg_pace_min_per_km,
            'grade_adjusted_pace_min_per_km': self.grade_adjusted_pace_min_per_km,
        }


# -----------------
# List editing
# -----------------

def _same_km(a: float, b: float) -> bool:
    return abs(a - b) < KM_EPSILON


def sort_and_dedupe(checkpoints: Sequence[Checkpoint]) -> List[Checkpoint]:
    """Sort by distance and drop entries within 1e-6 km of the previous one."""
    ordered = sorted(checkpoints, key=lambda cp: cp.km)
    result = []
    for cp in ordered:
        if result and _same_km(cp.km, result[-1].km):
            continue
        result.append(cp)
    return result


def ensure_start_end(
    checkpoints: Sequence[Checkpoint],
    max_km: float,
    previous_max_km: Optional[float] = None
) -> List[Checkpoint]:
    """
    Make sure a Start at km 0 and an End at max_km are present.

    A route of zero length leaves the list as it is. When previous_max_km is
    given and equals max_km the route length has not changed, so an End that
    was deliberately deleted stays deleted; Start is always restored.
    """
    if max_km <= 0:
        return list(checkpoints)
    cps = list(checkpoints)
    if not any(_same_km(cp.km, 0.0) for cp in cps):
        cps.insert(0, Checkpoint(0.0, START_NAME))
    length_changed = previous_max_km is None or not _same_km(previous_max_km, max_km)
    if length_changed and not any(_same_km(cp.km, max_km) for cp in cps):
        cps.append(Checkpoint(max_km, END_NAME))
    return sort_and_dedupe(cps)


def add_checkpoint(
    checkpoints: Sequence[Checkpoint],
    km: float,
    max_km: float,
    name: Optional[str] = None
) -> List[Checkpoint]:
    """
    Add a checkpoint at km.

    Without a name it becomes 'Checkpoint N', N counting the checkpoints that
    are neither Start nor End.

    Raises:
        ValueError: km is not a number within [0, max_km]
    """
    if not isinstance(km, (int, float)) or not math.isfinite(km) or km < 0 or km > max_km:
        raise ValueError(f"Checkpoint distance must be within 0-{max_km:.2f} km, got {km}")
    if name is None:
        manual = sum(1 for cp in checkpoints if cp.name not in (START_NAME, END_NAME))
        name = f"Checkpoint {manual + 1}"
    return sort_and_dedupe(list(checkpoints) + [Checkpoint(float(km), name)])


def rename_checkpoint(checkpoints: Sequence[Checkpoint], idx: int, name: str) -> List[Checkpoint]:
    """Return a copy with checkpoint idx renamed."""
    if not 0 <= idx < len(checkpoints):
        raise IndexError(f"Checkpoint index {idx} out of range")
    return [replace(cp, name=name) if i == idx else cp for i, cp in enumerate(checkpoints)]


def delete_checkpoint(
    checkpoints: Sequence[Checkpoint],
    idx: int,
    max_km: float,
    allow_end: bool = False
) -> List[Checkpoint]:
    """
    Delete checkpoint idx unless it is protected.

    The checkpoint at km 0 is never deleted. The one at max_km is only
    deleted when allow_end is set (comparison views); ensure_start_end puts it
    back after the next change of route length.
    """
    if not 0 <= idx < len(checkpoints):
        raise IndexError(f"Checkpoint index {idx} out of range")
    target = checkpoints[idx]
    if _same_km(target.km, 0.0) or (not allow_end and _same_km(target.km, max_km)):
        logger.debug("Refusing to delete protected checkpoint %r", target.name)
        return list(checkpoints)
    return [cp for i, cp in enumerate(checkpoints) if i != idx]


# -----------------
# Projection
# -----------------

def _finite_or_zero(value: Optional[float]) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return float(value)


def bin_end_distances_km(bins: Sequence[Bin]) -> List[float]:
    """Cumulative distance (km) at the end of each bin."""
    ends = []
    cum = 0.0
    for b in bins:
        cum += _finite_or_zero(b.distance_m) / 1000
        ends.append(cum)
    return ends


def map_checkpoints_to_bins(checkpoints: Sequence[Checkpoint], bins: Sequence[Bin]) -> List[int]:
    """
    Index of the first bin whose end distance is >= each checkpoint.

    Checkpoints past the last bin clamp to it. Sorted checkpoints are mapped
    with a single forward-moving cursor; a step backwards re-seeks by
    bisection.
    """
    if not bins:
        return []
    ends = bin_end_distances_km(bins)
    last = len(bins) - 1

    indices = []
    cursor = 0
    prev_km = -math.inf
    for cp in checkpoints:
        if cp.km < prev_km:
            cursor = bisect.bisect_left(ends, cp.km)
        while cursor <= last and ends[cursor] < cp.km:
            cursor += 1
        indices.append(min(cursor, last))
        prev_km = cp.km
    return indices


def _segment_ranges(bin_idxs: Sequence[int]):
    """
    Yield (first_bin, last_bin) per checkpoint, inclusive; empty when first > last.

    The first checkpoint owns no bins; its range is carried into the second
    checkpoint's segment, which therefore starts at bin 0.
    """
    prev = -1
    for i, idx in enumerate(bin_idxs):
        if i == 0:
            yield 0, -1
            continue
        yield prev + 1, idx
        prev = max(prev, idx)


def project_checkpoints(
    checkpoints: Sequence[Checkpoint],
    bins: Sequence[Bin]
) -> List[CheckpointProjection]:
    """
    Modelled cumulative and segment times at each checkpoint.

    Segment time sums the bins' adjusted_time_s between the previous
    checkpoint's bin (exclusive) and this checkpoint's bin (inclusive).
    Missing or non-finite adjusted times count as 0. The first checkpoint is
    always 0/0.
    
    Args:
        checkpoints: Checkpoints, normally sorted by km
        bins: Bins from bin_route
        
    Returns:
        One CheckpointProjection per checkpoint ([] without bins)
    """
    if not bins or not checkpoints:
        return []

    times = np.array([_finite_or_zero(b.adjusted_time_s) for b in bins])
    prefix = np.concatenate([[0.0], np.cumsum(times)])

    results = []
    cumulative = 0.0
    for i, (first, last) in enumerate(_segment_ranges(map_checkpoints_to_bins(checkpoints, bins))):
        segment = float(prefix[last + 1] - prefix[first]) if last >= first else 0.0
        cumulative += segment
        results.append(CheckpointProjection(
            checkpoint_idx=i,
            cumulative_adjusted_time_s=cumulative,
            segment_adjusted_time_s=segment,
        ))
    return results


def _override_for(overrides: Optional[PaceOverrides], idx: int, default: float) -> float:
    if overrides is None:
        return default
    if isinstance(overrides, Mapping):
        pace = overrides.get(idx)
    else:
        pace = overrides[idx] if idx < len(overrides) else None
    if pace is None or not math.isfinite(pace) or pace <= 0:
        return default
    return float(pace)


def recompute_with_overrides(
    checkpoints: Sequence[Checkpoint],
    bins: Sequence[Bin],
    pace_overrides: Optional[PaceOverrides],
    default_pace_min_per_km: float
) -> List[OverrideProjection]:
    """
    Re-project checkpoint times with user-edited flat-equivalent paces.

    Each bin's time becomes grade_adjusted_distance (km) x pace x 60, the pace
    being the override for the segment the bin falls in. Nothing is
    re-binned, so 'what-if' edits are cheap.
    
    Args:
        checkpoints: Checkpoints, normally sorted by km
        bins: Bins from bin_route (with grade-adjusted distances)
        pace_overrides: Pace (min/km) per checkpoint index, applied to the
            segment ending at that checkpoint; a list or a dict. Missing,
            None or non-positive entries use the default
        default_pace_min_per_km: Pace for segments without an override
        
    Returns:
        One OverrideProjection per checkpoint ([] without bins)
    """
    if not bins or not checkpoints:
        return []

    gad_km = np.array([_finite_or_zero(b.grade_adjusted_distance_m) / 1000 for b in bins])
    prefix = np.concatenate([[0.0], np.cumsum(gad_km)])

    results = []
    cumulative = 0.0
    for i, (first, last) in enumerate(_segment_ranges(map_checkpoints_to_bins(checkpoints, bins))):
        segment = 0.0
        if last >= first:
            pace = _override_for(pace_overrides, i, default_pace_min_per_km)
            segment = float(prefix[last + 1] - prefix[first]) * pace * 60
        cumulative += segment
        results.append(OverrideProjection(checkpoint_idx=i, cumulative_s=cumulative, segment_s=segment))
    return results


# -----------------
# Observed splits
# -----------------

def nearest_route_index(cum_km: np.ndarray, km: float) -> int:
    """Index of the route point whose cumulative km is nearest km (earlier on ties)."""
    pos = int(np.searchsorted(cum_km, km))
    if pos <= 0:
        return 0
    if pos >= len(cum_km):
        return len(cum_km) - 1
    return pos if abs(cum_km[pos] - km) < abs(km - cum_km[pos - 1]) else pos - 1


def _cumulative_gain(points: Sequence[TrackPoint]) -> np.ndarray:
    gains = np.zeros(len(points))
    for i in range(1, len(points)):
        prev, curr = points[i-1], points[i]
        step = 0.0
        if prev.has_elevation and curr.has_elevation and curr.elevation > prev.elevation:
            step = curr.elevation - prev.elevation
        gains[i] = gains[i-1] + step
    return gains


def checkpoint_splits(
    checkpoints: Sequence[Checkpoint],
    points: Sequence[TrackPoint],
    bins: Sequence[Bin]
) -> List[CheckpointSplit]:
    """
    Observed time, elevation and pace between consecutive checkpoints.

    Each checkpoint is matched to the route point nearest its distance.
    Time-based fields are None when either point lacks a timestamp. Grade
    adjusted pace divides observed segment time by the grade-adjusted
    distance of the segment's bins.
    """
    if not points or not checkpoints:
        return []

    cum_km = cumulative_distances(points) / 1000
    gains = _cumulative_gain(points)
    start_time = points[0].timestamp

    gad = np.array([_finite_or_zero(b.grade_adjusted_distance_m) for b in bins])
    gad_prefix = np.concatenate([[0.0], np.cumsum(gad)])
    ranges = list(_segment_ranges(map_checkpoints_to_bins(checkpoints, bins))) if bins else []

    splits = []
    prev_idx = 0
    for i, cp in enumerate(checkpoints):
        route_idx = nearest_route_index(cum_km, cp.km)
        segment_km = cp.km if i == 0 else cp.km - checkpoints[i - 1].km

        from_start = elapsed_seconds(start_time, points[route_idx].timestamp)
        if from_start is not None and from_start < 0:
            from_start = None
        from_prev = None
        if i > 0:
            from_prev = elapsed_seconds(points[prev_idx].timestamp, points[route_idx].timestamp)
            if from_prev is not None and from_prev < 0:
                from_prev = None

        avg_pace = None
        if from_prev and segment_km > 0:
            avg_pace = (from_prev / 60) / segment_km

        gap = None
        if from_prev and ranges:
            first, last = ranges[i]
            if last >= first:
                seg_gad = float(gad_prefix[last + 1] - gad_prefix[first])
                if seg_gad > 0:
                    gap = (from_prev / 60) / (seg_gad / 1000)

        splits.append(CheckpointSplit(
            checkpoint_idx=i,
            name=cp.name,
            km=cp.km,
            route_idx=route_idx,
            segment_km=segment_km,
            elevation_gain_m=int(round(gains[route_idx])),
            elevation_gain_from_prev_m=int(round(gains[route_idx] - gains[prev_idx])),
            elapsed_from_start_s=from_start,
            elapsed_from_prev_s=from_prev,
            avg_pace_min_per_km=avg_pace,
            grade_adjusted_pace_min_per_km=gap,
        ))
        prev_idx = route_idx
    return splits
