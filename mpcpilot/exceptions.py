"""
mpcpilot Exception Classes
==========================

Custom exceptions for mpcpilot error handling.
"""

from typing import Optional


class MpcPilotError(Exception):
    """Base exception for all mpcpilot errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidTelemetryError(MpcPilotError):
    """
    Raised when a telemetry record is malformed or incomplete.

    No actuation is computed for such a tick; the caller is expected to
    fall back to manual control.
    """

    def __init__(self, message: str = "Telemetry is malformed") -> None:
        super().__init__(f"Invalid telemetry: {message}")


class InsufficientWaypointsError(MpcPilotError):
    """
    Raised when too few weighted waypoints remain to fit the reference.

    A degree-3 fit needs at least four points with positive weight.
    """

    def __init__(
        self,
        message: str = "Not enough waypoints to fit the reference polynomial",
        n_points: Optional[int] = None,
    ) -> None:
        self.n_points = n_points
        super().__init__(message)


class DimensionError(MpcPilotError):
    """
    Raised when buffer or bound lengths disagree with the variable layout.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Dimension mismatch: {message}")


class InvalidInputError(MpcPilotError):
    """
    Raised when configuration or input data is invalid.

    Examples: NaN values, non-positive time step, negative cost weights.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid input: {message}")


class SessionStateError(MpcPilotError):
    """
    Raised when the controller is driven outside of a running session.

    Examples: update before reset, update after a crash was detected.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Session state error: {message}")
