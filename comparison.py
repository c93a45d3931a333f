"""
Comparison Module - Two-route comparison: distance trimming, snap-and-trim, checkpoint race, terrain breakdown.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from analysis import RouteAnalysis, analyze_route
from binning import Bin
from checkpoints import Checkpoint, ensure_start_end, nearest_route_index
from config import AnalysisConfig
from gap_model import GradeAdjustmentModel
from geomath import TrackPoint, cumulative_distances, elapsed_seconds
from track_io import normalize_points


logger = logging.getLogger(__name__)

# Bins within +/- this gradient (percent) count as flat terrain
FLAT_LIMIT_PCT = 3.0

SUMMARY_GROUP_LABELS = ('Downhill', 'Flat', 'Uphill')

# (label, min exclusive, max exclusive) bands for headline paces
KEY_PACE_BANDS = (
    ('Climb', 5.0, math.inf),
    ('Flat', -3.0, 3.0),
    ('Descent', -math.inf, -5.0),
)


@dataclass(frozen=True)
class CheckpointComparison:
    """Observed times of two runners at one shared checkpoint."""
    checkpoint_idx: int
    name: str
    km: float
    cumulative_s_1: Optional[float]    # Elapsed from the start of route 1
    cumulative_s_2: Optional[float]
    segment_s_1: Optional[float]       # Elapsed since the previous checkpoint
    segment_s_2: Optional[float]
    share_pct_1: Optional[int]         # Segment time as a share of the total time
    share_pct_2: Optional[int]
    leader: Optional[int]              # 1 or 2; None when tied or unknown
    margin_min: Optional[int]          # Whole minutes; 0 when tied, None when unknown

    def to_dict(self) -> dict:
        return {
            'checkpoint_idx': self.checkpoint_idx,
            'name': self.name,
            'km': self.km,
            'cumulative_s_1': self.cumulative_s_1,
            'cumulative_s_2': self.cumulative_s_2,
            'segment_s_1': self.segment_s_1,
            'segment_s_2': self.segment_s_2,
            'share_pct_1': self.share_pct_1,
            'share_pct_2': self.share_pct_2,
            'leader': self.leader,
            'margin_min': self.margin_min,
        }


@dataclass
class RouteComparison:
    """Two analysed routes and what sets them apart."""
    first: RouteAnalysis
    second: RouteAnalysis
    checkpoints: List[Checkpoint]
    rows: List[CheckpointComparison]
    terrain_time: List[Dict] = field(default_factory=list)
    key_paces: List[Dict] = field(default_factory=list)

    @property
    def max_km(self) -> float:
        return max(self.first.max_km, self.second.max_km)

    def to_dict(self) -> dict:
        return {
            'first': self.first.to_dict(),
            'second': self.second.to_dict(),
            'checkpoints': [cp.to_dict() for cp in self.checkpoints],
            'rows': [r.to_dict() for r in self.rows],
            'terrain_time': self.terrain_time,
            'key_paces': self.key_paces,
        }


# -----------------
# Route alignment
# -----------------

def trim_by_distance(points: Sequence[TrackPoint], start_km: float, end_km: float) -> List[TrackPoint]:
    """
    Keep the points whose cumulative distance lies within [start_km, end_km].

    Raises:
        ValueError: start_km is greater than end_km
    """
    if start_km > end_km:
        raise ValueError(f"start_km ({start_km}) must not exceed end_km ({end_km})")
    if not points:
        return []
    cum_m = cumulative_distances(points)
    lo, hi = start_km * 1000, end_km * 1000
    return [p for p, d in zip(points, cum_m) if lo <= d <= hi]


def snap_and_trim(
    reference: Sequence[TrackPoint],
    other: Sequence[TrackPoint]
) -> Tuple[List[TrackPoint], List[TrackPoint]]:
    """
    Put two runs of the same course on one geometry.

    Both runs are cut to the shorter run's distance. Each point of the other
    run then takes the position and elevation of the reference point nearest
    to it by cumulative distance, keeping its own timestamp, so both runs
    share distances and gradients and differ only in timing.

    Returns:
        (trimmed reference, snapped other)
    """
    if not reference or not other:
        return list(reference), list(other)

    ref_cum = cumulative_distances(reference)
    other_cum = cumulative_distances(other)
    limit = min(ref_cum[-1], other_cum[-1])

    ref_keep = [i for i, d in enumerate(ref_cum) if d <= limit]
    trimmed_ref = [reference[i] for i in ref_keep]
    ref_kept_cum = ref_cum[ref_keep]

    snapped = []
    for point, d in zip(other, other_cum):
        if d > limit:
            continue
        nearest = trimmed_ref[nearest_route_index(ref_kept_cum, d)]
        snapped.append(TrackPoint(
            lat=nearest.lat,
            lon=nearest.lon,
            elevation=nearest.elevation,
            timestamp=point.timestamp,
        ))

    logger.debug("Snapped %d points onto %d reference points (%.0f m)", len(snapped), len(trimmed_ref), limit)
    return trimmed_ref, snapped


# -----------------
# Checkpoint race
# -----------------

def comparison_checkpoints(
    checkpoints: Sequence[Checkpoint],
    max_km_1: float,
    max_km_2: float,
    previous_max_km: Optional[float] = None
) -> List[Checkpoint]:
    """Shared checkpoint list with a single End at the longer route's distance."""
    return ensure_start_end(checkpoints, max(max_km_1, max_km_2), previous_max_km)


def _elapsed_at(points: Sequence[TrackPoint], cum_km, km: float) -> Optional[float]:
    if not points:
        return None
    idx = nearest_route_index(cum_km, km)
    seconds = elapsed_seconds(points[0].timestamp, points[idx].timestamp)
    if seconds is None or seconds < 0:
        return None
    return seconds


def _total_time(points: Sequence[TrackPoint]) -> Optional[float]:
    if not points:
        return None
    seconds = elapsed_seconds(points[0].timestamp, points[-1].timestamp)
    if seconds is None or seconds < 0:
        return None
    return seconds


def _segments(cumulative: List[Optional[float]]) -> List[Optional[float]]:
    # A previous checkpoint without a time counts from the start
    segments = []
    for i, value in enumerate(cumulative):
        if i == 0:
            segments.append(0.0)
        elif value is None:
            segments.append(None)
        else:
            prev = cumulative[i - 1] if i > 1 and cumulative[i - 1] is not None else 0.0
            segments.append(value - prev)
    return segments


def _share(segment: Optional[float], total: Optional[float]) -> Optional[int]:
    if segment is None or not total:
        return None
    return int(round(segment / total * 100))


def compare_checkpoints(
    checkpoints: Sequence[Checkpoint],
    points_1: Sequence[TrackPoint],
    points_2: Sequence[TrackPoint]
) -> List[CheckpointComparison]:
    """
    Compare two runners checkpoint by checkpoint.

    Each checkpoint is matched to the nearest point of each route by
    cumulative distance. The runner with the shorter segment leads it; a
    margin that rounds to 0 minutes is a tie.

    Args:
        checkpoints: Shared checkpoint list, sorted by km
        points_1: First runner's route
        points_2: Second runner's route

    Returns:
        One CheckpointComparison per checkpoint
    """
    cum_1 = cumulative_distances(points_1) / 1000
    cum_2 = cumulative_distances(points_2) / 1000
    cumulative_1 = [_elapsed_at(points_1, cum_1, cp.km) for cp in checkpoints]
    cumulative_2 = [_elapsed_at(points_2, cum_2, cp.km) for cp in checkpoints]
    segments_1 = _segments(cumulative_1)
    segments_2 = _segments(cumulative_2)
    total_1 = _total_time(points_1)
    total_2 = _total_time(points_2)

    rows = []
    for i, cp in enumerate(checkpoints):
        s1, s2 = segments_1[i], segments_2[i]
        leader = None
        margin = None
        if i == 0:
            margin = 0
        elif s1 is not None and s2 is not None:
            margin = int(round(abs(s1 - s2) / 60))
            if margin:
                leader = 1 if s1 < s2 else 2
        rows.append(CheckpointComparison(
            checkpoint_idx=i,
            name=cp.name,
            km=cp.km,
            cumulative_s_1=cumulative_1[i],
            cumulative_s_2=cumulative_2[i],
            segment_s_1=s1,
            segment_s_2=s2,
            share_pct_1=0 if i == 0 else _share(s1, total_1),
            share_pct_2=0 if i == 0 else _share(s2, total_2),
            leader=leader,
            margin_min=margin,
        ))
    return rows


# -----------------
# Terrain breakdown
# -----------------

def summary_group(gradient_pct: float) -> Optional[str]:
    """'Downhill' below -3%, 'Uphill' above 3%, 'Flat' in between; None for NaN."""
    if gradient_pct is None or math.isnan(gradient_pct):
        return None
    if gradient_pct < -FLAT_LIMIT_PCT:
        return 'Downhill'
    if gradient_pct > FLAT_LIMIT_PCT:
        return 'Uphill'
    return 'Flat'


def time_by_summary_group(bins: Sequence[Bin]) -> Dict[str, float]:
    """Observed seconds spent on downhill, flat and uphill bins."""
    totals = {label: 0.0 for label in SUMMARY_GROUP_LABELS}
    for b in bins:
        label = summary_group(b.gradient_pct)
        if label is not None and b.has_time:
            totals[label] += b.elapsed_s
    return totals


def terrain_time_difference(bins_1: Sequence[Bin], bins_2: Sequence[Bin]) -> List[Dict]:
    """Time per terrain group for both routes; positive difference means route 1 was slower."""
    times_1 = time_by_summary_group(bins_1)
    times_2 = time_by_summary_group(bins_2)
    return [
        {
            'group': label,
            'time_1_s': times_1[label],
            'time_2_s': times_2[label],
            'difference_s': times_1[label] - times_2[label],
        }
        for label in SUMMARY_GROUP_LABELS
    ]


def average_pace_in_range(bins: Sequence[Bin], min_pct: float, max_pct: float) -> Optional[float]:
    """
    Distance-weighted observed pace (min/km) of bins with min_pct < gradient < max_pct.

    Bins without a pace are ignored; None when nothing qualifies.
    """
    selected = [
        b for b in bins
        if b.gradient_pct is not None and min_pct < b.gradient_pct < max_pct
        and b.pace_min_per_km is not None and math.isfinite(b.pace_min_per_km)
    ]
    total_dist = sum(b.distance_m for b in selected)
    if not total_dist:
        return None
    return sum(b.pace_min_per_km * b.distance_m for b in selected) / total_dist


def pace_by_summary_group(bins_1: Sequence[Bin], bins_2: Sequence[Bin]) -> List[Dict]:
    """Headline climbing, flat and descending paces for both routes."""
    return [
        {
            'group': label,
            'pace_1_min_per_km': average_pace_in_range(bins_1, lo, hi),
            'pace_2_min_per_km': average_pace_in_range(bins_2, lo, hi),
        }
        for label, lo, hi in KEY_PACE_BANDS
    ]


# -----------------
# Pipeline
# -----------------

def compare_routes(
    raw_points_1: Sequence[Any],
    raw_points_2: Sequence[Any],
    config: Optional[AnalysisConfig] = None,
    model: Optional[GradeAdjustmentModel] = None,
    checkpoints: Optional[Sequence[Checkpoint]] = None,
    snap: bool = False,
    range_km: Optional[Tuple[float, float]] = None,
    previous_max_km: Optional[float] = None
) -> RouteComparison:
    """
    Analyse two runs and compare them.

    Args:
        raw_points_1: First (reference) run
        raw_points_2: Second run
        config: Analysis settings shared by both runs
        model: Grade-adjustment model shared by both runs
        checkpoints: Shared checkpoints; Start and a single End are added
        snap: Trim both runs to the shorter one and snap run 2 onto run 1
        range_km: Optional (start_km, end_km) section of both runs to compare
        previous_max_km: Comparison length the checkpoints were last edited
            against; when unchanged a deleted End is not put back

    Returns:
        RouteComparison
    """
    points_1 = normalize_points(raw_points_1)
    points_2 = normalize_points(raw_points_2)
    if range_km is not None:
        points_1 = trim_by_distance(points_1, *range_km)
        points_2 = trim_by_distance(points_2, *range_km)
    if snap:
        points_1, points_2 = snap_and_trim(points_1, points_2)

    first = analyze_route(points_1, config, model)
    second = analyze_route(points_2, config, model)

    cps = comparison_checkpoints(checkpoints or [], first.max_km, second.max_km, previous_max_km)
    rows = compare_checkpoints(cps, first.points, second.points)

    logger.info("Compared routes of %.2f km and %.2f km over %d checkpoints",
                first.max_km, second.max_km, len(cps))
    return RouteComparison(
        first=first,
        second=second,
        checkpoints=cps,
        rows=rows,
        terrain_time=terrain_time_difference(first.bins, second.bins),
        key_paces=pace_by_summary_group(first.bins, second.bins),
    )
