"""
Config Module - Analysis settings and pace/velocity conversions.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass
class AnalysisConfig:
    """Configuration for a route analysis run."""
    bin_length_m: float = 50.0        # Nominal bin length
    min_climb_gain_m: float = 50.0    # Gain needed before a climb is reported
    max_climb_loss_m: float = 20.0    # Drop below the high point that ends a climb
    remove_pauses: bool = False
    pause_threshold_s: float = 120.0  # Gaps longer than this are treated as pauses
    smooth_elevation: bool = False
    smoothing_window: int = 7
    smoothing_method: str = 'rolling'  # 'rolling' or 'savgol'
    downsample_factor: int = 1        # Keep every n-th point
    target_pace_min: int = 4          # Modelled flat pace, minutes part
    target_pace_sec: int = 30         # Modelled flat pace, seconds part

    @property
    def target_pace_min_per_km(self) -> float:
        return self.target_pace_min + self.target_pace_sec / 60

    @property
    def target_velocity_mps(self) -> Optional[float]:
        return pace_to_velocity(self.target_pace_min_per_km)

    def validate(self) -> None:
        """Raise ValueError for settings the engine cannot work with."""
        if not self.bin_length_m > 0:
            raise ValueError(f"bin_length_m must be positive, got {self.bin_length_m}")
        if self.min_climb_gain_m < 0 or self.max_climb_loss_m < 0:
            raise ValueError("Climb thresholds must be non-negative")
        if self.pause_threshold_s <= 0:
            raise ValueError(f"pause_threshold_s must be positive, got {self.pause_threshold_s}")
        if self.smoothing_window < 1:
            raise ValueError(f"smoothing_window must be >= 1, got {self.smoothing_window}")
        if self.smoothing_method not in ('rolling', 'savgol'):
            raise ValueError(f"Unknown smoothing method: {self.smoothing_method}")
        if self.downsample_factor < 1:
            raise ValueError(f"downsample_factor must be >= 1, got {self.downsample_factor}")
        if self.target_pace_min < 0 or not 0 <= self.target_pace_sec < 60:
            raise ValueError("Target pace must be a non-negative min:sec value")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'bin_length_m': self.bin_length_m,
            'min_climb_gain_m': self.min_climb_gain_m,
            'max_climb_loss_m': self.max_climb_loss_m,
            'remove_pauses': self.remove_pauses,
            'pause_threshold_s': self.pause_threshold_s,
            'smooth_elevation': self.smooth_elevation,
            'smoothing_window': self.smoothing_window,
            'smoothing_method': self.smoothing_method,
            'downsample_factor': self.downsample_factor,
            'target_pace_min': self.target_pace_min,
            'target_pace_sec': self.target_pace_sec,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AnalysisConfig':
        """Create from dictionary, ignoring unknown keys."""
        known = cls().to_dict().keys()
        return cls(**{k: v for k, v in data.items() if k in known})


def pace_to_velocity(pace_min_per_km: Optional[float]) -> Optional[float]:
    """
    Convert a pace in minutes per km to a velocity in m/s.

    Returns None for missing, zero or non-finite paces.
    """
    if pace_min_per_km is None or not math.isfinite(pace_min_per_km) or pace_min_per_km <= 0:
        return None
    return 1000.0 / (pace_min_per_km * 60)


def velocity_to_pace(velocity_mps: Optional[float]) -> Optional[float]:
    """Convert a velocity in m/s to a pace in minutes per km."""
    if velocity_mps is None or not math.isfinite(velocity_mps) or velocity_mps <= 0:
        return None
    return (1000.0 / velocity_mps) / 60


def format_min_sec(pace_min: Optional[float]) -> str:
    """Format decimal minutes as M:SS, or 'n/a' when unavailable."""
    if pace_min is None or not math.isfinite(pace_min) or pace_min <= 0:
        return 'n/a'
    mins = int(pace_min)
    secs = round((pace_min - mins) * 60)
    if secs == 60:
        mins += 1
        secs = 0
    return f"{mins}:{secs:02d}"


def parse_min_sec(text: str) -> Optional[float]:
    """
    Parse an 'M:SS' string into decimal minutes.

    Returns None when the string is not a valid min:sec value.
    """
    if not text:
        return None
    parts = text.strip().split(':')
    if len(parts) != 2:
        return None
    try:
        mins, secs = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if mins < 0 or secs < 0 or secs >= 60:
        return None
    return mins + secs / 60


def format_hms(seconds: Optional[float]) -> str:
    """Format seconds as HH:MM:SS, or '-' when unavailable."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return '-'
    hours = int(seconds // 3600)
    mins = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    return f"{hours:02d}:{mins:02d}:{secs:02d}"
