"""
Tests for comparison module.
"""

import math
import pytest
import sys
import os
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from binning import Bin
from checkpoints import Checkpoint, delete_checkpoint
from geomath import TrackPoint, total_distance
from comparison import (
    trim_by_distance, snap_and_trim, comparison_checkpoints, compare_checkpoints,
    summary_group, time_by_summary_group, terrain_time_difference,
    average_pace_in_range, pace_by_summary_group, compare_routes
)


T0 = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)
DEG_PER_M = 180 / (math.pi * 6371000)


def make_track(n, step_m, elevations=None, dt_s=None):
    """Straight track along the equator."""
    points = []
    for i in range(n):
        ele = elevations[i] if elevations is not None else 100.0
        ts = T0 + timedelta(seconds=i * dt_s) if dt_s is not None else None
        points.append(TrackPoint(0.0, i * step_m * DEG_PER_M, ele, ts))
    return points


def make_bin(gradient_pct, distance_m=100.0, pace=None, elapsed_s=None):
    return Bin(
        distance_m=distance_m,
        elevation_change_m=distance_m * gradient_pct / 100,
        gradient_pct=gradient_pct,
        elapsed_s=elapsed_s,
        velocity_mps=None,
        pace_min_per_km=pace,
        adjustment_factor=1.0,
        grade_adjusted_distance_m=None,
        adjusted_time_s=None,
        start_idx=0,
        end_idx=1,
        start_time=None,
        end_time=None,
    )


class TestTrimByDistance:
    """Cutting a route to a distance window."""

    def test_window(self):
        points = make_track(11, 100.0)
        trimmed = trim_by_distance(points, 0.25, 0.75)
        assert trimmed == points[3:8]

    def test_bounds_inclusive(self):
        points = make_track(11, 100.0)
        assert trim_by_distance(points, 0, 10) == points
        assert trim_by_distance(points, 0, 0) == points[:1]

    def test_empty(self):
        assert trim_by_distance([], 0, 1) == []

    def test_reversed_window(self):
        with pytest.raises(ValueError):
            trim_by_distance(make_track(5, 100.0), 2.0, 1.0)


class TestSnapAndTrim:
    """Putting a second run on the first run's geometry."""

    @pytest.fixture
    def runs(self):
        reference = make_track(11, 100.0, elevations=[100.0 + i for i in range(11)], dt_s=30)
        other = make_track(7, 140.0, elevations=[0.0] * 7, dt_s=40)
        return reference, other

    def test_cut_to_shorter_run(self, runs):
        reference, other = runs
        trimmed, snapped = snap_and_trim(reference, other)
        assert trimmed == reference[:9]
        assert len(snapped) == len(other)

    def test_positions_from_reference(self, runs):
        reference, other = runs
        _, snapped = snap_and_trim(reference, other)
        assert [p.elevation for p in snapped] == [100.0, 101.0, 103.0, 104.0, 106.0, 107.0, 108.0]
        assert snapped[2].lon == reference[3].lon
        assert snapped[-1].lon == reference[8].lon

    def test_keeps_own_time(self, runs):
        reference, other = runs
        _, snapped = snap_and_trim(reference, other)
        assert [p.timestamp for p in snapped] == [p.timestamp for p in other]

    def test_longer_other_run_is_cut(self, runs):
        reference, other = runs
        trimmed, snapped = snap_and_trim(other, reference)
        assert trimmed == other
        assert len(snapped) == 9
        assert total_distance(snapped) == pytest.approx(total_distance(other), abs=1e-6)

    def test_empty_run(self, runs):
        reference, _ = runs
        assert snap_and_trim([], reference) == ([], reference)
        assert snap_and_trim(reference, []) == (reference, [])


class TestCheckpointRace:
    """Checkpoint-by-checkpoint comparison of two runners."""

    @pytest.fixture
    def runs(self):
        # 2 km at 100 m steps; 5:00/km against 6:40/km
        return make_track(21, 100.0, dt_s=30), make_track(21, 100.0, dt_s=40)

    def test_shared_end_at_longer_route(self):
        cps = comparison_checkpoints([Checkpoint(0.5, 'Aid')], 1.0, 2.0)
        assert [cp.name for cp in cps] == ['Start', 'Aid', 'End']
        assert cps[-1].km == 2.0

    def test_deleted_end_stays_deleted(self):
        cps = delete_checkpoint(comparison_checkpoints([], 1.0, 2.0), 1, 2.0, allow_end=True)
        assert [cp.name for cp in comparison_checkpoints(cps, 1.0, 2.0, previous_max_km=2.0)] == ['Start']
        assert [cp.name for cp in comparison_checkpoints(cps, 1.0, 2.5, previous_max_km=2.0)] == ['Start', 'End']

    def test_elapsed_and_segments(self, runs):
        cps = comparison_checkpoints([Checkpoint(1.0, 'Aid')], 2.0, 2.0)
        rows = compare_checkpoints(cps, *runs)
        assert [r.cumulative_s_1 for r in rows] == [0, 300, 600]
        assert [r.cumulative_s_2 for r in rows] == [0, 400, 800]
        assert [r.segment_s_2 for r in rows] == [0, 400, 400]
        assert [r.share_pct_1 for r in rows] == [0, 50, 50]

    def test_leader_and_margin(self, runs):
        cps = comparison_checkpoints([Checkpoint(1.0, 'Aid')], 2.0, 2.0)
        rows = compare_checkpoints(cps, *runs)
        assert rows[0].leader is None and rows[0].margin_min == 0
        assert rows[1].leader == 1
        assert rows[1].margin_min == 2

    def test_close_finish_is_tied(self):
        first = make_track(21, 100.0, dt_s=30)
        second = make_track(21, 100.0, dt_s=31)
        rows = compare_checkpoints(comparison_checkpoints([], 2.0, 2.0), first, second)
        assert rows[-1].leader is None
        assert rows[-1].margin_min == 0

    def test_missing_time_counts_from_start(self, runs):
        first, second = runs
        second = list(second)
        second[10] = TrackPoint(second[10].lat, second[10].lon, 100.0, None)
        cps = comparison_checkpoints([Checkpoint(1.0, 'Aid')], 2.0, 2.0)
        rows = compare_checkpoints(cps, first, second)
        assert rows[1].cumulative_s_2 is None
        assert rows[1].leader is None and rows[1].margin_min is None
        assert rows[2].segment_s_2 == 800
        assert rows[2].leader == 1

    def test_untimed_route(self, runs):
        first, _ = runs
        cps = comparison_checkpoints([], 2.0, 2.0)
        rows = compare_checkpoints(cps, first, make_track(21, 100.0))
        assert rows[-1].cumulative_s_2 is None
        assert rows[-1].share_pct_2 is None
        assert rows[-1].margin_min is None

    def test_to_dict(self, runs):
        rows = compare_checkpoints(comparison_checkpoints([], 2.0, 2.0), *runs)
        data = rows[-1].to_dict()
        assert data['name'] == 'End'
        assert data['leader'] == 1


class TestTerrain:
    """Terrain groups and headline paces."""

    def test_summary_group_bounds(self):
        assert summary_group(-3.0) == 'Flat'
        assert summary_group(3.0) == 'Flat'
        assert summary_group(-3.1) == 'Downhill'
        assert summary_group(3.1) == 'Uphill'
        assert summary_group(float('nan')) is None

    def test_time_by_summary_group(self):
        bins = [
            make_bin(-8, elapsed_s=60), make_bin(0, elapsed_s=30), make_bin(3, elapsed_s=20),
            make_bin(12, elapsed_s=100), make_bin(12), make_bin(float('nan'), elapsed_s=500),
        ]
        assert time_by_summary_group(bins) == {'Downhill': 60, 'Flat': 50, 'Uphill': 100}

    def test_terrain_time_difference(self):
        first = [make_bin(10, elapsed_s=200), make_bin(-10, elapsed_s=50)]
        second = [make_bin(10, elapsed_s=150), make_bin(-10, elapsed_s=80)]
        rows = {r['group']: r for r in terrain_time_difference(first, second)}
        assert rows['Uphill']['difference_s'] == 50
        assert rows['Downhill']['difference_s'] == -30
        assert rows['Flat']['difference_s'] == 0

    def test_average_pace_distance_weighted(self):
        bins = [make_bin(6, 100, 8.0), make_bin(10, 300, 12.0), make_bin(5, 100, 20.0), make_bin(9, 100)]
        assert average_pace_in_range(bins, 5, math.inf) == pytest.approx(11.0)
        assert average_pace_in_range(bins, -math.inf, -5) is None

    def test_pace_by_summary_group(self):
        first = [make_bin(8, 100, 9.0), make_bin(0, 100, 5.0), make_bin(-8, 100, 4.0)]
        second = [make_bin(8, 100, 10.0), make_bin(4, 100, 6.0)]
        rows = {r['group']: r for r in pace_by_summary_group(first, second)}
        assert rows['Climb']['pace_2_min_per_km'] == pytest.approx(10.0)
        assert rows['Flat']['pace_1_min_per_km'] == pytest.approx(5.0)
        assert rows['Flat']['pace_2_min_per_km'] is None
        assert rows['Descent']['pace_1_min_per_km'] == pytest.approx(4.0)


class TestCompareRoutes:
    """Full two-route pipeline."""

    def test_snapped_runs(self):
        # 3 km at 50 m steps; 5:00/km against 6:00/km, second run 200 m longer
        first = make_track(61, 50.0, dt_s=15)
        second = make_track(65, 50.0, dt_s=18)
        result = compare_routes(first, second, snap=True)
        assert result.first.max_km == pytest.approx(result.second.max_km)
        assert [cp.name for cp in result.checkpoints] == ['Start', 'End']
        assert result.rows[-1].leader == 1
        assert result.rows[-1].margin_min == 3

    def test_distance_window(self):
        first = make_track(61, 50.0, dt_s=15)
        second = make_track(61, 50.0, dt_s=18)
        result = compare_routes(first, second, range_km=(0.49, 1.51))
        assert result.first.max_km == pytest.approx(1.0)
        assert result.max_km == pytest.approx(1.0)

    def test_to_dict(self):
        track = make_track(21, 50.0, dt_s=15)
        data = compare_routes(track, track).to_dict()
        assert len(data['rows']) == 2
        assert [r['group'] for r in data['terrain_time']] == ['Downhill', 'Flat', 'Uphill']
        assert data['rows'][-1]['leader'] is None


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
