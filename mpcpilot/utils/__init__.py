"""Internal helpers."""

from .validation import validate_scalars, validate_waypoints

__all__ = ["validate_scalars", "validate_waypoints"]
