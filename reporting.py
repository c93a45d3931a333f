"""
Reporting Module - Route summary, tables as pandas DataFrames, CSV export.
"""

from dataclasses import dataclass, fields
from typing import List, Optional, Sequence
import pandas as pd

from binning import (
    Bin, average_pace_from_bins, grade_adjusted_pace_from_bins,
    has_time_data, overall_grade_adjusted_pace, total_adjusted_time
)
from checkpoints import Checkpoint, CheckpointProjection, CheckpointSplit, OverrideProjection
from climbs import Climb
from config import format_hms, format_min_sec
from geomath import TrackPoint, elapsed_seconds, elevation_gain, total_distance
from track_io import time_stopped


@dataclass(frozen=True)
class RouteSummary:
    """Headline numbers for a route."""
    distance_km: float
    elevation_gain_m: int
    total_time_s: Optional[float]           # None without time data
    average_pace_min_per_km: Optional[float]
    moving_pace_min_per_km: Optional[float]  # From timed bins
    grade_adjusted_pace_min_per_km: Optional[float]  # Observed time over grade-adjusted distance
    modelled_gap_min_per_km: Optional[float]         # Adjusted time over raw distance
    total_adjusted_time_s: float
    time_stopped_s: Optional[float]
    pause_time_removed_s: float
    has_time_data: bool

    def to_dict(self) -> dict:
        return {
            'distance_km': self.distance_km,
            'elevation_gain_m': self.elevation_gain_m,
            'total_time_s': self.total_time_s,
            'average_pace_min_per_km': self.average_pace_min_per_km,
            'moving_pace_min_per_km': self.moving_pace_min_per_km,
            'grade_adjusted_pace_min_per_km': self.grade_adjusted_pace_min_per_km,
            'modelled_gap_min_per_km': self.modelled_gap_min_per_km,
            'total_adjusted_time_s': self.total_adjusted_time_s,
            'time_stopped_s': self.time_stopped_s,
            'pause_time_removed_s': self.pause_time_removed_s,
            'has_time_data': self.has_time_data,
        }


def route_summary(
    points: Sequence[TrackPoint],
    bins: Sequence[Bin],
    pause_time_removed_s: float = 0.0
) -> RouteSummary:
    """
    Summarize a route.
    
    Args:
        points: Processed track points
        bins: Bins computed from those points
        pause_time_removed_s: Pause time already stripped by remove_pauses
        
    Returns:
        RouteSummary; time-based fields are None when time data is missing
    """
    distance_km = total_distance(points) / 1000
    total_time = None
    if points:
        total_time = elapsed_seconds(points[0].timestamp, points[-1].timestamp)
        if total_time is not None and total_time <= 0:
            total_time = None

    average_pace = None
    if total_time and distance_km > 0:
        average_pace = (total_time / 60) / distance_km

    timed = total_time is not None or has_time_data(bins)

    return RouteSummary(
        distance_km=distance_km,
        elevation_gain_m=int(round(elevation_gain(points))),
        total_time_s=total_time,
        average_pace_min_per_km=average_pace,
        moving_pace_min_per_km=average_pace_from_bins(bins),
        grade_adjusted_pace_min_per_km=grade_adjusted_pace_from_bins(bins),
        modelled_gap_min_per_km=overall_grade_adjusted_pace(bins),
        total_adjusted_time_s=total_adjusted_time(bins),
        time_stopped_s=time_stopped(points) if timed else None,
        pause_time_removed_s=pause_time_removed_s,
        has_time_data=timed,
    )


def format_summary(summary: RouteSummary) -> str:
    """Format a summary as text; time fields read 'no time data' when missing."""
    no_time = 'no time data'
    lines = [
        f"Distance:        {summary.distance_km:.2f} km",
        f"Elevation gain:  {summary.elevation_gain_m} m",
        f"Total time:      {format_hms(summary.total_time_s) if summary.has_time_data else no_time}",
        f"Average pace:    {format_min_sec(summary.average_pace_min_per_km) if summary.has_time_data else no_time}",
        f"GAP:             {format_min_sec(summary.grade_adjusted_pace_min_per_km) if summary.has_time_data else no_time}",
        f"Modelled GAP:    {format_min_sec(summary.modelled_gap_min_per_km)}",
        f"Modelled time:   {format_hms(summary.total_adjusted_time_s)}",
    ]
    if summary.pause_time_removed_s:
        lines.append(f"Pauses removed:  {format_hms(summary.pause_time_removed_s)}")
    return "\n".join(lines)


def bins_to_dataframe(bins: Sequence[Bin]) -> pd.DataFrame:
    """
    Convert bins to pandas DataFrame.
    
    Missing values stay as None/NaN rather than zero.
    """
    columns = [f.name for f in fields(Bin)]
    if not bins:
        return pd.DataFrame(columns=columns)
    df = pd.DataFrame([b.to_dict() for b in bins], columns=columns)
    df['cumulative_km'] = df['distance_m'].cumsum() / 1000
    return df


def climbs_to_dataframe(climbs: Sequence[Climb]) -> pd.DataFrame:
    """Display table of climbs."""
    data = []
    for climb in climbs:
        duration = elapsed_seconds(climb.start_time, climb.end_time)
        data.append({
            'Climb': climb.name,
            'Start (km)': climb.start_km,
            'Distance (km)': climb.distance_km,
            'Gain (m)': climb.gain_m,
            'Avg Gradient (%)': climb.avg_gradient_pct,
            'Time': format_hms(duration) if duration is not None else 'no time data',
        })
    return pd.DataFrame(data, columns=['Climb', 'Start (km)', 'Distance (km)', 'Gain (m)',
                                       'Avg Gradient (%)', 'Time'])


def checkpoints_to_dataframe(
    checkpoints: Sequence[Checkpoint],
    projections: Sequence[CheckpointProjection],
    overrides: Optional[Sequence[OverrideProjection]] = None,
    splits: Optional[Sequence[CheckpointSplit]] = None
) -> pd.DataFrame:
    """
    Checkpoint table joining modelled, what-if and observed times.
    
    Args:
        checkpoints: Checkpoint list
        projections: From project_checkpoints
        overrides: Optional output of recompute_with_overrides
        splits: Optional output of checkpoint_splits
        
    Returns:
        DataFrame with one row per checkpoint
    """
    data = []
    for i, cp in enumerate(checkpoints):
        row = {
            'Checkpoint': cp.name,
            'Km': round(cp.km, 2),
            'From Prev (km)': '-' if i == 0 else round(cp.km - checkpoints[i - 1].km, 2),
        }
        if i < len(projections):
            row['Modelled From Start'] = format_hms(projections[i].cumulative_adjusted_time_s)
            row['Modelled From Prev'] = '-' if i == 0 else format_hms(projections[i].segment_adjusted_time_s)
        if overrides is not None and i < len(overrides):
            row['New Time Overall'] = format_hms(overrides[i].cumulative_s)
            row['New Time From Prev'] = '-' if i == 0 else format_hms(overrides[i].segment_s)
        if splits is not None and i < len(splits):
            split = splits[i]
            row['Elevation Gain (m)'] = split.elevation_gain_m
            row['Gain From Prev (m)'] = split.elevation_gain_from_prev_m
            row['Elapsed'] = (format_hms(split.elapsed_from_start_s)
                              if split.elapsed_from_start_s is not None else 'no time data')
            row['Avg Pace'] = format_min_sec(split.avg_pace_min_per_km)
            row['GAP'] = format_min_sec(split.grade_adjusted_pace_min_per_km)
        data.append(row)
    return pd.DataFrame(data)


def _race_result(row, label_1: str, label_2: str) -> str:
    if row.margin_min is None:
        return '-'
    if row.leader is None:
        return 'Tied'
    winner = label_1 if row.leader == 1 else label_2
    unit = 'min' if row.margin_min == 1 else 'mins'
    return f"{winner} by {row.margin_min} {unit}"


def _share_text(share_pct: Optional[int]) -> str:
    return '-' if share_pct is None else f"{share_pct}%"


def checkpoint_comparison_to_dataframe(
    rows: Sequence,
    label_1: str = 'Runner 1',
    label_2: str = 'Runner 2'
) -> pd.DataFrame:
    """
    Side-by-side checkpoint table for two runners.

    Args:
        rows: CheckpointComparison rows from comparison.compare_checkpoints
        label_1: Display name of the first runner
        label_2: Display name of the second runner

    Returns:
        DataFrame with one row per checkpoint
    """
    data = []
    for row in rows:
        data.append({
            'Checkpoint': row.name,
            'Km': round(row.km, 2),
            f'{label_1} Elapsed': format_hms(row.cumulative_s_1),
            f'{label_1} Segment': format_hms(row.segment_s_1),
            f'{label_1} Share': _share_text(row.share_pct_1),
            f'{label_2} Elapsed': format_hms(row.cumulative_s_2),
            f'{label_2} Segment': format_hms(row.segment_s_2),
            f'{label_2} Share': _share_text(row.share_pct_2),
            'Race within the Race': _race_result(row, label_1, label_2),
        })
    return pd.DataFrame(data)


def format_climbs_table(climbs: Sequence[Climb]) -> str:
    """
    Format climbs as a text table.
    
    Args:
        climbs: List of climbs
        
    Returns:
        Formatted table string
    """
    if not climbs:
        return "No climbs"

    lines = []
    header = (
        f"{'Name':>9} | {'Start':>7} | {'Dist':>6} | {'Gain':>6} | {'Grade':>6}"
    )
    lines.append(header)
    lines.append("-" * len(header))

    for climb in climbs:
        lines.append(
            f"{climb.name:>9} | "
            f"{climb.start_km:>6.1f}k | "
            f"{climb.distance_km:>5.1f}k | "
            f"{climb.gain_m:>5d}m | "
            f"{climb.avg_gradient_pct:>5d}%"
        )

    return "\n".join(lines)


def export_bins_csv(bins: Sequence[Bin], filename: str) -> None:
    """
    Export bin table to CSV.
    
    Args:
        bins: List of bins
        filename: Output filename
    """
    bins_to_dataframe(bins).to_csv(filename, index=False)


def export_checkpoints_csv(
    checkpoints: Sequence[Checkpoint],
    projections: Sequence[CheckpointProjection],
    filename: str,
    overrides: Optional[Sequence[OverrideProjection]] = None,
    splits: Optional[Sequence[CheckpointSplit]] = None
) -> None:
    """Export the checkpoint table to CSV."""
    df = checkpoints_to_dataframe(checkpoints, projections, overrides, splits)
    df.to_csv(filename, index=False)
