"""
Tests for binning module.
"""

import math
import warnings
import pytest
import sys
import os
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from errors import MissingTimeDataWarning
from gap_model import GradeAdjustmentModel, fit_grade_model
from geomath import TrackPoint, total_distance
from binning import (
    Bin, bin_route, get_bin_boundaries, has_time_data, total_adjusted_time,
    overall_grade_adjusted_pace, grade_adjusted_pace_from_bins, average_pace_from_bins,
    pace_by_gradient_group, time_by_gradient_group, pace_analysis_by_gradient,
    GRADIENT_GROUPS
)


T0 = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)

# Degrees of longitude per meter on the equator
DEG_PER_M = 180 / (math.pi * 6371000)

# 3 points ~500 m apart: +50 m then -30 m, 300 s per step
SCENARIO = [
    TrackPoint(0.0, 0.0, 100.0, T0),
    TrackPoint(0.0, 0.0045, 150.0, T0 + timedelta(seconds=300)),
    TrackPoint(0.0, 0.009, 120.0, T0 + timedelta(seconds=600)),
]


def make_track(n, step_m, elevations=None, dt_s=None):
    """Straight track along the equator."""
    points = []
    for i in range(n):
        ele = elevations[i] if elevations is not None else 100.0
        ts = T0 + timedelta(seconds=i * dt_s) if dt_s is not None else None
        points.append(TrackPoint(0.0, i * step_m * DEG_PER_M, ele, ts))
    return points


@pytest.fixture
def model():
    return fit_grade_model([-10, -5, 0, 5, 10], [1.5, 1.1, 1.0, 1.2, 1.6])


class TestScenario:
    """The three-point, two-bin reference route."""

    def test_two_bins(self):
        bins = bin_route(SCENARIO, bin_length_m=500)
        assert len(bins) == 2
        assert bins[0].start_idx == 0 and bins[0].end_idx == 1
        assert bins[1].start_idx == 1 and bins[1].end_idx == 2

    def test_gradients(self):
        bins = bin_route(SCENARIO, bin_length_m=500)
        assert bins[0].elevation_change_m == pytest.approx(50)
        assert bins[0].gradient_pct == pytest.approx(10.0, abs=0.05)
        assert bins[1].elevation_change_m == pytest.approx(-30)
        assert bins[1].gradient_pct < 0

    def test_elapsed_time(self):
        bins = bin_route(SCENARIO, bin_length_m=500)
        assert sum(b.elapsed_s for b in bins) == pytest.approx(600)
        assert bins[0].velocity_mps == pytest.approx(bins[0].distance_m / 300)
        assert bins[0].pace_min_per_km == pytest.approx(1000 / bins[0].velocity_mps / 60)


class TestBinStructure:
    """Contiguity and coverage of bins."""

    def test_contiguous(self):
        points = make_track(57, 23.0)
        bins = bin_route(points, bin_length_m=100)
        for i in range(len(bins) - 1):
            assert bins[i].end_idx == bins[i + 1].start_idx
        assert bins[0].start_idx == 0

    def test_distances_sum_to_route(self):
        points = make_track(57, 23.0)
        bins = bin_route(points, bin_length_m=100)
        assert sum(b.distance_m for b in bins) == pytest.approx(total_distance(points), rel=1e-9)

    def test_partial_tail_bin(self):
        """A route that is not a multiple of the bin length ends in a short bin."""
        points = make_track(57, 23.0)  # 1288 m
        bins = bin_route(points, bin_length_m=100)
        assert bins[-1].distance_m < 100
        assert bins[-1].end_idx == len(points) - 1
        for b in bins[:-1]:
            assert b.distance_m >= 100

    def test_exact_multiple_has_no_tail(self):
        points = make_track(11, 100.0)
        bins = bin_route(points, bin_length_m=99.9)
        assert len(bins) == 10
        assert bins[-1].end_idx == 10

    def test_stationary_finish_extends_last_bin(self):
        """Time spent standing still after the last boundary stays in the bins."""
        points = [
            TrackPoint(0.0, 0.0, 100.0, T0),
            TrackPoint(0.0, 0.0045, 100.0, T0 + timedelta(seconds=300)),
            TrackPoint(0.0, 0.0045, 100.0, T0 + timedelta(seconds=900)),
        ]
        bins = bin_route(points, bin_length_m=400)
        assert len(bins) == 1
        assert bins[0].end_idx == 2
        assert bins[0].elapsed_s == 900
        assert bins[0].distance_m == pytest.approx(total_distance(points))

    def test_boundaries(self):
        bins = bin_route(make_track(57, 23.0), bin_length_m=100)
        boundaries = get_bin_boundaries(bins)
        assert boundaries[0] == 0
        assert len(boundaries) == len(bins) + 1
        assert get_bin_boundaries([]) == [0]

    def test_too_few_points(self):
        assert bin_route([], 50) == []
        assert bin_route(make_track(1, 10.0), 50) == []

    def test_invalid_bin_length(self):
        with pytest.raises(ValueError):
            bin_route(make_track(5, 10.0), bin_length_m=0)

    def test_zero_distance_gradient(self):
        """Points stacked on one spot produce no bins."""
        points = [TrackPoint(0, 0, 100 + i) for i in range(4)]
        assert bin_route(points, 50) == []

    def test_malformed_point_contributes_zero(self):
        points = make_track(5, 30.0)
        points[2] = TrackPoint(float('nan'), 0.0, 100.0)
        bins = bin_route(points, bin_length_m=1000)
        assert len(bins) == 1
        assert math.isfinite(bins[0].distance_m)
        assert math.isfinite(bins[0].gradient_pct)


class TestTimeFields:
    """Time-derived fields degrade to None."""

    def test_no_time_data(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            bins = bin_route(make_track(20, 10.0), bin_length_m=50)
        assert bins
        assert all(b.elapsed_s is None for b in bins)
        assert all(b.velocity_mps is None and b.pace_min_per_km is None for b in bins)
        assert not has_time_data(bins)

    def test_partial_time_warns(self):
        points = make_track(20, 10.0, dt_s=5)
        points[15] = TrackPoint(points[15].lat, points[15].lon, 100.0, None)
        with pytest.warns(MissingTimeDataWarning):
            bins = bin_route(points, bin_length_m=45)
        assert has_time_data(bins)
        assert any(b.elapsed_s is None for b in bins)

    def test_zero_elapsed_is_none(self):
        """Identical timestamps never produce zero or infinite velocity."""
        points = [TrackPoint(0, i * 60 * DEG_PER_M, 100, T0) for i in range(3)]
        bins = bin_route(points, bin_length_m=50)
        assert all(b.elapsed_s is None and b.velocity_mps is None for b in bins)


class TestGradeAdjustment:
    """Grade adjustment per bin."""

    def test_no_model_factor_is_one(self):
        bins = bin_route(SCENARIO, 500, model=None, target_velocity_mps=3.0)
        assert all(b.adjustment_factor == 1.0 for b in bins)
        assert bins[0].grade_adjusted_distance_m == pytest.approx(bins[0].distance_m)
        assert bins[0].adjusted_time_s == pytest.approx(bins[0].distance_m / 3.0)

    def test_model_factor(self, model):
        bins = bin_route(SCENARIO, 500, model=model, target_velocity_mps=4.0)
        b = bins[0]
        assert b.adjustment_factor == pytest.approx(model.evaluate(b.gradient_pct))
        assert b.adjustment_factor == pytest.approx(1.6, abs=0.01)
        assert b.grade_adjusted_distance_m == pytest.approx(b.distance_m * b.adjustment_factor)
        assert b.adjusted_time_s == pytest.approx(b.grade_adjusted_distance_m / 4.0)

    def test_no_target_velocity(self, model):
        for velocity in (None, 0, -1):
            bins = bin_route(SCENARIO, 500, model=model, target_velocity_mps=velocity)
            assert all(b.grade_adjusted_distance_m is None for b in bins)
            assert all(b.adjusted_time_s is None for b in bins)

    def test_non_positive_factor(self):
        """A model giving a negative factor leaves adjusted values empty."""
        negative = GradeAdjustmentModel(coefficients=(0.0, 0.0, 0.0, 0.0, -1.0))
        bins = bin_route(SCENARIO, 500, model=negative, target_velocity_mps=3.0)
        assert all(b.adjusted_time_s is None for b in bins)

    def test_grade_adjusted_pace_property(self, model):
        bins = bin_route(SCENARIO, 500, model=model)
        b = bins[0]
        assert b.grade_adjusted_pace_min_per_km == pytest.approx(b.pace_min_per_km / b.adjustment_factor)

    def test_to_dict_serializable(self):
        import json
        bins = bin_route(SCENARIO, 500, target_velocity_mps=3.0)
        data = json.loads(json.dumps([b.to_dict() for b in bins]))
        assert data[0]['start_time'] == T0.isoformat()


class TestAggregates:
    """Route-level aggregates from bins."""

    def test_total_adjusted_time(self):
        bins = bin_route(SCENARIO, 500, target_velocity_mps=2.0)
        assert total_adjusted_time(bins) == pytest.approx(sum(b.distance_m for b in bins) / 2.0)

    def test_overall_gap_flat_factor(self):
        """With factor 1, modelled GAP equals the target pace."""
        velocity = 1000 / (5 * 60)  # 5:00 min/km
        bins = bin_route(make_track(30, 20.0), 100, target_velocity_mps=velocity)
        assert overall_grade_adjusted_pace(bins) == pytest.approx(5.0)

    def test_overall_gap_without_target(self):
        assert overall_grade_adjusted_pace(bin_route(SCENARIO, 500)) is None

    def test_average_pace(self):
        # 10 m every 3 s -> 5:00 min/km
        bins = bin_route(make_track(31, 10.0, dt_s=3), 50)
        assert average_pace_from_bins(bins) == pytest.approx(5.0)

    def test_observed_gap(self):
        bins = bin_route(make_track(31, 10.0, dt_s=3), 50, target_velocity_mps=3.0)
        assert grade_adjusted_pace_from_bins(bins) == pytest.approx(5.0)

    def test_paces_without_time(self):
        bins = bin_route(make_track(31, 10.0), 50, target_velocity_mps=3.0)
        assert average_pace_from_bins(bins) is None
        assert grade_adjusted_pace_from_bins(bins) is None

    def test_gradient_groups(self):
        bins = bin_route(SCENARIO, 500)
        paces = pace_by_gradient_group(bins)
        times = time_by_gradient_group(bins)
        assert len(paces) == len(times) == len(GRADIENT_GROUPS)
        by_label = {row['group']: row for row in times}
        assert by_label['5 to 10']['total_time_s'] == pytest.approx(300)
        assert by_label['-10 to -5']['total_time_s'] == pytest.approx(300)
        assert by_label['-5 to 5']['total_time_s'] == 0

    def test_group_bounds(self):
        """Lower bound exclusive, upper inclusive."""
        flat = next(g for g in GRADIENT_GROUPS if g.label == '-5 to 5')
        assert flat.contains(5)
        assert not flat.contains(-5)

    def test_pace_analysis_by_gradient(self, model):
        bins = bin_route(SCENARIO, 500, model=model)
        analysis = pace_analysis_by_gradient(bins)
        assert analysis['gradients'] == [-6, 10]
        assert len(analysis['medians']) == 2
        assert analysis['grade_adjusted_medians'][1] < analysis['medians'][1]


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
