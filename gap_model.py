"""
Grade Adjustment Model Module - Quartic pace-factor fit, normalization, evaluation, reference CSV parsing.
"""

import csv
import io
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import numpy as np

from errors import InsufficientDataError
from geomath import is_number


logger = logging.getLogger(__name__)

# Gradients outside this range (percent) are clamped before evaluation
GRADIENT_CLAMP_PCT = 35.0

MIN_SAMPLES = 5
N_COEFFS = 5


@dataclass(frozen=True)
class GradeAdjustmentModel:
    """
    Fitted grade-adjustment polynomial.

    f(g) = a*g^4 + b*g^3 + c*g^2 + d*g + e, with g the gradient in percent.
    Coefficients are normalized by the fitted constant term, so the factor is
    1 at zero gradient. Built once by the caller and passed explicitly to
    whatever needs it.
    """
    coefficients: Tuple[float, float, float, float, float]
    n_samples: int = 0  # Reference samples used for the fit

    def __post_init__(self):
        if len(self.coefficients) != N_COEFFS:
            raise ValueError(f"Expected {N_COEFFS} coefficients, got {len(self.coefficients)}")

    def evaluate(self, gradient_pct: float) -> float:
        """Adjustment factor at a gradient; see evaluate()."""
        return evaluate(self, gradient_pct)

    def evaluate_many(self, gradients_pct: Sequence[float]) -> np.ndarray:
        """Vectorized evaluation with the same clamp policy."""
        g = np.clip(np.asarray(gradients_pct, dtype=float), -GRADIENT_CLAMP_PCT, GRADIENT_CLAMP_PCT)
        return np.polyval(self.coefficients, g)

    def format_polynomial(self, decimals: int = 10) -> str:
        """Human-readable form, e.g. '1.2e-06x⁴ + ... + 1.0'."""
        return format_poly4(self.coefficients, decimals)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'coefficients': list(self.coefficients),
            'n_samples': self.n_samples,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GradeAdjustmentModel':
        """Create from dictionary."""
        return cls(
            coefficients=tuple(float(c) for c in data['coefficients']),
            n_samples=int(data.get('n_samples', 0)),
        )


def clamp_gradient(gradient_pct: float) -> float:
    """Clamp to [-35, 35]; NaN stays NaN so it never reads as the steepest grade."""
    if math.isnan(gradient_pct):
        return gradient_pct
    return max(-GRADIENT_CLAMP_PCT, min(GRADIENT_CLAMP_PCT, gradient_pct))


def evaluate(model: GradeAdjustmentModel, gradient_pct: float) -> float:
    """
    Evaluate the adjustment factor for a gradient.

    The gradient is clamped to [-35, 35] first. Pure, so tables and charts
    can reuse it without re-deriving the polynomial.

    Args:
        model: Fitted model
        gradient_pct: Gradient in percent

    Returns:
        Pace adjustment factor
    """
    g = clamp_gradient(gradient_pct)
    a, b, c, d, e = model.coefficients
    return a * g ** 4 + b * g ** 3 + c * g ** 2 + d * g + e


def normalize_coefficients(coeffs: Sequence[float]) -> Tuple[float, ...]:
    """
    Divide all coefficients by the constant term.

    Applying this twice changes nothing. A zero (or non-finite) constant term
    cannot be normalized and raises InsufficientDataError.
    """
    if len(coeffs) != N_COEFFS:
        raise ValueError(f"Expected {N_COEFFS} coefficients, got {len(coeffs)}")
    e = coeffs[-1]
    if e == 0 or not math.isfinite(e):
        raise InsufficientDataError(
            f"Cannot normalize polynomial with constant term {e}; reference data has no usable baseline"
        )
    return tuple(float(c) / float(e) for c in coeffs)


def _valid_values(values: Sequence) -> List[float]:
    return [float(v) for v in values if is_number(v)]


def fit_poly4(gradients: Sequence[float], factors: Sequence[float]) -> np.ndarray:
    """
    Least-squares quartic fit via the normal equations.

    Builds X with rows [g^4, g^3, g^2, g, 1] and solves (X^T X) c = X^T y.

    Returns:
        Raw (unnormalized) coefficients [a, b, c, d, e]
    """
    g = np.asarray(gradients, dtype=float)
    y = np.asarray(factors, dtype=float)
    X = np.column_stack([g ** 4, g ** 3, g ** 2, g, np.ones_like(g)])
    XtX = X.T @ X
    Xty = X.T @ y
    try:
        return np.linalg.solve(XtX, Xty)
    except np.linalg.LinAlgError as e:
        raise InsufficientDataError(f"Reference gradients do not determine a quartic fit: {e}") from e


def fit_grade_model(
    gradients: Sequence[float],
    factors: Sequence[float]
) -> GradeAdjustmentModel:
    """
    Fit a grade-adjustment model to reference (gradient, factor) samples.

    Non-numeric entries are dropped from each column independently.
    
    Args:
        gradients: Reference gradients in percent
        factors: Pace adjustment factor observed at each gradient
        
    Returns:
        Normalized GradeAdjustmentModel

    Raises:
        InsufficientDataError: fewer than 5 valid samples, filtered columns of
            different length, or no usable constant term
    """
    x = _valid_values(gradients)
    y = _valid_values(factors)

    if len(x) < MIN_SAMPLES or len(y) < MIN_SAMPLES:
        raise InsufficientDataError(
            f"Need at least {MIN_SAMPLES} valid samples, got {len(x)} gradients and {len(y)} factors"
        )
    if len(x) != len(y):
        raise InsufficientDataError(
            f"Gradient and factor columns differ in length after filtering ({len(x)} vs {len(y)})"
        )

    raw = fit_poly4(x, y)
    coeffs = normalize_coefficients(raw)
    model = GradeAdjustmentModel(coefficients=coeffs, n_samples=len(x))
    logger.info("Fitted grade model from %d samples: %s", len(x), model.format_polynomial(6))
    return model


def parse_reference_csv(csv_content: str) -> Tuple[List[Optional[float]], List[Optional[float]]]:
    """
    Parse a two-column reference dataset.
    
    Expected format (first row is a header, names are not checked):
    gradient,factor
    -10,1.5
    0,1.0
    ...
    
    Rows with fewer than two columns are dropped. Cells that are not numbers
    come back as None so fit_grade_model can filter each column.

    Args:
        csv_content: CSV file content as string
        
    Returns:
        (gradients, factors)
    """
    reader = csv.reader(io.StringIO(csv_content))
    rows = [row for row in reader if any(cell.strip() for cell in row)]

    gradients = []
    factors = []
    dropped = 0
    for row in rows[1:]:
        if len(row) < 2:
            dropped += 1
            continue
        gradients.append(_parse_cell(row[0]))
        factors.append(_parse_cell(row[1]))

    if dropped:
        logger.warning("Dropped %d short rows from reference dataset", dropped)
    return gradients, factors


def _parse_cell(cell: str) -> Optional[float]:
    try:
        value = float(cell)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def load_reference_csv(file_path: str) -> Tuple[List[Optional[float]], List[Optional[float]]]:
    """Read and parse a reference dataset from disk."""
    with open(file_path, 'r', newline='') as f:
        return parse_reference_csv(f.read())


def fit_from_csv(csv_content: str) -> GradeAdjustmentModel:
    """Parse a reference dataset and fit a model in one step."""
    gradients, factors = parse_reference_csv(csv_content)
    return fit_grade_model(gradients, factors)


def format_poly4(coeffs: Sequence[float], decimals: int = 10) -> str:
    """
    Format quartic coefficients as 'ax⁴ + bx³ + cx² + dx + e'.

    Very small coefficients use scientific notation.
    """
    a, b, c, d, e = coeffs

    def _coeff(val: float, power: str) -> str:
        if abs(val) < 1e-6:
            return f"{val:.6e}x{power}"
        text = f"{val:.{decimals}f}".rstrip('0').rstrip('.')
        return f"{text}x{power}"

    def _signed(val: float, power: str) -> str:
        return f" + {_coeff(val, power)}" if val >= 0 else f" - {_coeff(abs(val), power)}"

    poly = _coeff(a, "⁴")
    poly += _signed(b, "³")
    poly += _signed(c, "²")
    poly += _signed(d, "")
    poly += f" + {e:.{decimals}f}" if e >= 0 else f" - {abs(e):.{decimals}f}"
    return poly
