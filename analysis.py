"""
Analysis Module - End-to-end route analysis: pre-processing, binning, climbs, checkpoints, summary.

Every call recomputes from the input points; nothing is cached between runs.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from binning import Bin, bin_route
from checkpoints import (
    Checkpoint, CheckpointProjection, CheckpointSplit, OverrideProjection, PaceOverrides,
    checkpoint_splits, ensure_start_end, project_checkpoints, recompute_with_overrides
)
from climbs import Climb, detect_climbs
from config import AnalysisConfig
from gap_model import GradeAdjustmentModel
from geomath import TrackPoint, total_distance
from reporting import RouteSummary, route_summary
from track_io import downsample, normalize_points, remove_pauses, smooth_elevations


logger = logging.getLogger(__name__)


@dataclass
class RouteAnalysis:
    """Everything derived from one route under one configuration."""
    points: List[TrackPoint]          # Points after pre-processing
    bins: List[Bin]
    climbs: List[Climb]
    checkpoints: List[Checkpoint]
    projections: List[CheckpointProjection]
    splits: List[CheckpointSplit]
    summary: RouteSummary
    config: AnalysisConfig
    pause_time_removed_s: float = 0.0
    overrides: List[OverrideProjection] = field(default_factory=list)

    @property
    def max_km(self) -> float:
        return self.summary.distance_km

    def to_dict(self) -> dict:
        """JSON-compatible representation (points omitted)."""
        return {
            'config': self.config.to_dict(),
            'summary': self.summary.to_dict(),
            'bins': [b.to_dict() for b in self.bins],
            'climbs': [c.to_dict() for c in self.climbs],
            'checkpoints': [cp.to_dict() for cp in self.checkpoints],
            'projections': [p.to_dict() for p in self.projections],
            'overrides': [o.to_dict() for o in self.overrides],
            'splits': [s.to_dict() for s in self.splits],
        }


def preprocess(
    points: Sequence[TrackPoint],
    config: AnalysisConfig
) -> tuple:
    """
    Apply the configured filters in order: pause removal, downsampling,
    elevation smoothing.

    Returns:
        (processed points, pause time removed in seconds)
    """
    pts = list(points)
    pause_removed = 0.0
    if config.remove_pauses and len(pts) > 1:
        pts, pause_removed = remove_pauses(pts, config.pause_threshold_s)
    if config.downsample_factor > 1:
        pts = downsample(pts, config.downsample_factor)
    if config.smooth_elevation:
        pts = smooth_elevations(pts, window=config.smoothing_window, method=config.smoothing_method)
    return pts, pause_removed


def analyze_route(
    raw_points: Sequence[Any],
    config: Optional[AnalysisConfig] = None,
    model: Optional[GradeAdjustmentModel] = None,
    checkpoints: Optional[Sequence[Checkpoint]] = None,
    pace_overrides: Optional[PaceOverrides] = None,
    previous_max_km: Optional[float] = None
) -> RouteAnalysis:
    """
    Run the full analysis pipeline.
    
    Args:
        raw_points: TrackPoints or any shape normalize_points accepts
        config: Analysis settings (defaults if omitted)
        model: Grade-adjustment model; without one every factor is 1
        checkpoints: User checkpoints; Start/End are added when missing
        pace_overrides: Optional per-segment paces for the what-if projection
        previous_max_km: Route length (km) the checkpoints were last edited
            against, e.g. the previous result's max_km. When it matches the
            current length a deleted End is not put back
        
    Returns:
        RouteAnalysis
    """
    config = config or AnalysisConfig()
    config.validate()

    points, pause_removed = preprocess(normalize_points(raw_points), config)

    bins = bin_route(points, config.bin_length_m, model, config.target_velocity_mps)
    climbs = detect_climbs(points, config.min_climb_gain_m, config.max_climb_loss_m)

    max_km = total_distance(points) / 1000
    cps = ensure_start_end(checkpoints or [], max_km, previous_max_km)
    projections = project_checkpoints(cps, bins)
    overrides = recompute_with_overrides(cps, bins, pace_overrides, config.target_pace_min_per_km)
    splits = checkpoint_splits(cps, points, bins)

    summary = route_summary(points, bins, pause_removed)
    logger.info(
        "Analyzed route: %.2f km, %d bins, %d climbs, %d checkpoints",
        summary.distance_km, len(bins), len(climbs), len(cps)
    )

    return RouteAnalysis(
        points=points,
        bins=bins,
        climbs=climbs,
        checkpoints=cps,
        projections=projections,
        splits=splits,
        summary=summary,
        config=config,
        pause_time_removed_s=pause_removed,
        overrides=overrides,
    )
