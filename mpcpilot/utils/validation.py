"""Input validation utilities."""

from typing import Any, Sequence, Tuple

import numpy as np


def validate_waypoints(xs: Any, ys: Any) -> Tuple[bool, str]:
    """
    Validate paired waypoint coordinate lists.

    Returns:
        (is_valid, error_message) tuple
    """
    try:
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
    except (TypeError, ValueError) as e:
        return False, f"waypoints must be numeric: {e}"

    if xs.ndim != 1 or ys.ndim != 1:
        return False, f"waypoints must be 1D, got shapes {xs.shape} and {ys.shape}"

    if len(xs) != len(ys):
        return False, f"ptsx has {len(xs)} elements but ptsy has {len(ys)}"

    if len(xs) == 0:
        return False, "no waypoints"

    if not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        return False, "waypoints contain NaN or infinite values"

    return True, ""


def validate_scalars(names: Sequence[str], values: Sequence[Any]) -> Tuple[bool, str]:
    """
    Validate that each named value is a finite number.

    Returns:
        (is_valid, error_message) tuple
    """
    for name, value in zip(names, values):
        if isinstance(value, bool):
            return False, f"{name} must be a number, got {value!r}"
        try:
            value = float(value)
        except (TypeError, ValueError):
            return False, f"{name} must be a number, got {value!r}"
        if not np.isfinite(value):
            return False, f"{name} must be finite, got {value}"

    return True, ""
