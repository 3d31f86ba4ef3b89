"""AR(4) one-step forecast fit by ordinary least squares."""
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import structlog

from tradeloop.core.exceptions import SingularRegression

logger = structlog.get_logger(__name__)

AR_ORDER = 4
MIN_OBSERVATIONS = 6
PIVOT_EPSILON = 1e-8


@dataclass(frozen=True)
class Ar4Fit:
    """Fitted AR(4) model: intercept first, then lags 1..4."""

    coefficients: Tuple[float, ...]
    forecast: float


def solve_linear_system(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Solve ``matrix @ x = vector`` by Gauss-Jordan elimination with partial pivoting.

    Raises:
        SingularRegression: If a pivot magnitude falls below 1e-8
    """
    n = len(vector)
    augmented = np.column_stack([np.asarray(matrix, dtype=float), np.asarray(vector, dtype=float)])

    for i in range(n):
        pivot_row = i + int(np.argmax(np.abs(augmented[i:, i])))
        pivot = augmented[pivot_row, i]
        if abs(pivot) < PIVOT_EPSILON:
            raise SingularRegression(f"Singular normal equations at column {i} (pivot={pivot})")

        if pivot_row != i:
            augmented[[i, pivot_row]] = augmented[[pivot_row, i]]

        augmented[i, i:] /= augmented[i, i]
        for row in range(n):
            if row == i:
                continue
            factor = augmented[row, i]
            augmented[row, i:] -= factor * augmented[i, i:]

    return augmented[:, n]


def fit_ar4(values: Sequence[float]) -> Optional[Ar4Fit]:
    """Fit ``x[i] = b0 + b1*x[i-1] + ... + b4*x[i-4]`` and forecast the next value.

    Args:
        values: Observations, oldest first

    Returns:
        Ar4Fit, or None with fewer than 6 observations

    Raises:
        SingularRegression: If the normal equations are singular
    """
    if len(values) < MIN_OBSERVATIONS:
        return None

    series = np.asarray(values, dtype=float)
    # regressor rows [1, x(i-1), x(i-2), x(i-3), x(i-4)]
    rows = np.array([
        [1.0] + [series[i - lag] for lag in range(1, AR_ORDER + 1)]
        for i in range(AR_ORDER, len(series))
    ])
    targets = series[AR_ORDER:]

    coefficients = solve_linear_system(rows.T @ rows, rows.T @ targets)
    latest = np.array([1.0] + [series[-lag] for lag in range(1, AR_ORDER + 1)])
    forecast = float(coefficients @ latest)

    return Ar4Fit(coefficients=tuple(float(c) for c in coefficients), forecast=forecast)


def ar4_forecast(values: Sequence[float]) -> Optional[float]:
    """One-step AR(4) forecast.

    Falls back to the last observed value when the regression is singular.
    Returns None with fewer than 6 observations.
    """
    try:
        fit = fit_ar4(values)
    except SingularRegression as exc:
        logger.debug("ar4.singular_fallback", observations=len(values), error=str(exc))
        return float(values[-1])
    return fit.forecast if fit is not None else None
