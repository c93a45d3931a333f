"""
Track I/O Module - Parse GPX, normalize raw point shapes, pre-processing filters.

Everything that turns outside data into TrackPoint records lives here, so the
analysis modules only ever see one fully-typed point shape.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Sequence, Tuple
import numpy as np
import gpxpy
import gpxpy.gpx
from scipy.signal import savgol_filter

from geomath import TrackPoint, is_number, elapsed_seconds, segment_distance


logger = logging.getLogger(__name__)

# Gaps longer than this are ignored by time_stopped (device off, not stopped)
MAX_STOP_GAP_S = 2 * 60 * 60


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            logger.debug("Unparseable timestamp %r", value)
            return None
    return None


def normalize_point(raw: Any) -> TrackPoint:
    """
    Convert one raw point into a TrackPoint.

    Accepts an existing TrackPoint, a [lat, lon, ele, time] sequence (ele and
    time optional), or a mapping with lat/lon and ele|elevation and
    time|timestamp keys. Unusable coordinates become NaN so the point keeps
    its index; geometry helpers then treat it as malformed.
    """
    if isinstance(raw, TrackPoint):
        return raw

    if isinstance(raw, dict):
        lat = raw.get('lat', raw.get('latitude'))
        lon = raw.get('lon', raw.get('longitude'))
        ele = raw.get('ele', raw.get('elevation'))
        time = raw.get('time', raw.get('timestamp'))
    elif isinstance(raw, (list, tuple)) and len(raw) >= 2:
        lat, lon = raw[0], raw[1]
        ele = raw[2] if len(raw) > 2 else None
        time = raw[3] if len(raw) > 3 else None
    else:
        raise TypeError(f"Unsupported point shape: {type(raw).__name__}")

    lat_f = _to_float(lat)
    lon_f = _to_float(lon)
    return TrackPoint(
        lat=lat_f if lat_f is not None else float('nan'),
        lon=lon_f if lon_f is not None else float('nan'),
        elevation=_to_float(ele),
        timestamp=_to_datetime(time),
    )


def normalize_points(raws: Iterable[Any]) -> List[TrackPoint]:
    """Normalize a sequence of raw points; see normalize_point."""
    points = [normalize_point(raw) for raw in raws]
    malformed = sum(1 for p in points if not p.has_position)
    if malformed:
        logger.warning("%d of %d points have malformed coordinates", malformed, len(points))
    return points


def _points_from_gpx(gpx: gpxpy.gpx.GPX) -> List[TrackPoint]:
    # First track wins; fall back to the first route for planned courses
    raw_points = []
    if gpx.tracks:
        for segment in gpx.tracks[0].segments:
            raw_points.extend(segment.points)
    if not raw_points and gpx.routes:
        raw_points = list(gpx.routes[0].points)

    points = [
        TrackPoint(
            lat=point.latitude,
            lon=point.longitude,
            elevation=point.elevation,
            timestamp=point.time,
        )
        for point in raw_points
    ]
    logger.debug("Parsed %d points from GPX", len(points))
    return points


def parse_gpx(file_path: str) -> List[TrackPoint]:
    """
    Parse a GPX file and extract track points.
    
    Args:
        file_path: Path to GPX file
        
    Returns:
        List of TrackPoint objects (missing elevation/time kept as None)
    """
    with open(file_path, 'r') as f:
        gpx = gpxpy.parse(f)
    return _points_from_gpx(gpx)


def parse_gpx_from_string(gpx_string: str) -> List[TrackPoint]:
    """
    Parse GPX content from a string.
    
    Args:
        gpx_string: GPX file content as string
        
    Returns:
        List of TrackPoint objects
    """
    return _points_from_gpx(gpxpy.parse(gpx_string))


def remove_pauses(
    points: Sequence[TrackPoint],
    threshold_s: float = 120.0
) -> Tuple[List[TrackPoint], float]:
    """
    Shift timestamps so that pauses longer than the threshold disappear.

    Every gap between consecutive timed points longer than threshold_s is
    added to a running total which is subtracted from all later timestamps.
    Points without a usable time pair are passed through unchanged.

    Args:
        points: Ordered track points
        threshold_s: Gap length (seconds) treated as a pause

    Returns:
        (adjusted points, total pause time removed in seconds)
    """
    if len(points) < 2:
        return list(points), 0.0

    adjusted = [points[0]]
    total_pause = 0.0
    for i in range(1, len(points)):
        prev, curr = points[i-1], points[i]
        delta = elapsed_seconds(prev.timestamp, curr.timestamp)
        if delta is None:
            adjusted.append(curr)
            continue
        if delta > threshold_s:
            total_pause += delta
        adjusted.append(TrackPoint(
            lat=curr.lat,
            lon=curr.lon,
            elevation=curr.elevation,
            timestamp=curr.timestamp - timedelta(seconds=total_pause),
        ))

    if total_pause:
        logger.info("Removed %.0f s of pauses (threshold %.0f s)", total_pause, threshold_s)
    return adjusted, total_pause


def smooth_elevations(
    points: Sequence[TrackPoint],
    window: int = 7,
    method: str = 'rolling',
    polyorder: int = 2
) -> List[TrackPoint]:
    """
    Smooth elevation data to reduce GPS noise.
    
    Args:
        points: Ordered track points
        window: Window size in points
        method: 'rolling' for a centered mean truncated at the edges, or
            'savgol' for a Savitzky-Golay filter
        polyorder: Polynomial order for savgol filter
        
    Returns:
        New point list; points without elevation are left untouched
    """
    if not points:
        return []

    valid_idx = [i for i, p in enumerate(points) if p.has_elevation]
    if len(valid_idx) < 2 or window <= 1:
        return list(points)

    elevations = np.array([points[i].elevation for i in valid_idx], dtype=float)

    if method == 'rolling':
        half = window // 2
        smoothed = np.empty_like(elevations)
        for k in range(len(elevations)):
            lo = max(0, k - half)
            hi = min(len(elevations), k + half + 1)
            smoothed[k] = elevations[lo:hi].mean()
    elif method == 'savgol':
        # Ensure window is odd and fits the data
        if window % 2 == 0:
            window += 1
        window = min(window, len(elevations))
        if window % 2 == 0:
            window -= 1
        if window < 3:
            return list(points)
        polyorder = min(polyorder, window - 1)
        smoothed = savgol_filter(elevations, window, polyorder)
    else:
        raise ValueError(f"Unknown smoothing method: {method}")

    result = list(points)
    for k, i in enumerate(valid_idx):
        p = points[i]
        result[i] = TrackPoint(lat=p.lat, lon=p.lon, elevation=float(smoothed[k]), timestamp=p.timestamp)
    return result


def downsample(points: Sequence[TrackPoint], factor: int) -> List[TrackPoint]:
    """Keep every factor-th point (factor <= 1 keeps everything)."""
    if factor <= 1:
        return list(points)
    return [p for i, p in enumerate(points) if i % factor == 0]


def downsample_to_max(values: Sequence[Any], max_points: int = 400) -> List[Any]:
    """Thin a sequence to about max_points entries, always keeping the last one."""
    if len(values) <= max_points:
        return list(values)
    step = -(-len(values) // max_points)
    return [v for i, v in enumerate(values) if i % step == 0 or i == len(values) - 1]


def time_stopped(points: Sequence[TrackPoint], speed_threshold: float = 0.2) -> float:
    """
    Total seconds spent moving slower than speed_threshold (m/s).

    Only positive gaps up to MAX_STOP_GAP_S between timed points with valid
    coordinates are counted.
    """
    stopped = 0.0
    for i in range(1, len(points)):
        prev, curr = points[i-1], points[i]
        if not (prev.has_position and curr.has_position):
            continue
        delta = elapsed_seconds(prev.timestamp, curr.timestamp)
        if delta is None or delta <= 0 or delta >= MAX_STOP_GAP_S:
            continue
        speed = segment_distance(prev, curr) / delta
        if speed < speed_threshold:
            stopped += delta
    return stopped
