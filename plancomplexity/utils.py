import math

from numpy import ndarray


def wrap360(value: float | ndarray) -> float | ndarray:
    """Wrap the input values to the interval [0, 360)"""
    return value % 360


def wrap180(value: float | ndarray) -> float | ndarray:
    """Wrap the input values to the interval [-180, 180)"""
    return wrap360(value + 180) - 180


def safe_divide(numerator: float, denominator: float) -> float:
    """Divide, returning 0 when the denominator is zero or not finite."""
    if denominator == 0 or not math.isfinite(denominator):
        return 0.0
    return numerator / denominator


def is_finite_positive(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0
