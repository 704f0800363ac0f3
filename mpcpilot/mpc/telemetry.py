"""
Controller Boundary Records
===========================

What goes in and out of the controller on every tick, and the session
close codes shared with the collaborator that owns the connection.

Sign conventions: the telemetry and the outbound command use the
actuator's convention (positive steering = right turn). The model inside
the controller uses the opposite one (positive = left).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional

import numpy as np

from ..exceptions import InvalidTelemetryError
from ..result import Status
from ..utils.validation import validate_scalars, validate_waypoints

SCALAR_FIELDS = ("x", "y", "psi", "speed", "steering_angle", "throttle")


@dataclass
class Telemetry:
    """
    One inbound telemetry message.

    Attributes:
        ptsx, ptsy: Waypoints in world coordinates, paired by index
        x, y: Vehicle position (world)
        psi: Vehicle heading (world) [rad]
        speed: Vehicle speed
        steering_angle: Last commanded steering [rad], positive = right
        throttle: Last commanded throttle in [-1, 1]

    Raises:
        InvalidTelemetryError: on mismatched, empty or non-finite fields
    """
    ptsx: np.ndarray
    ptsy: np.ndarray
    x: float
    y: float
    psi: float
    speed: float
    steering_angle: float = 0.0
    throttle: float = 0.0

    def __post_init__(self):
        ok, message = validate_waypoints(self.ptsx, self.ptsy)
        if not ok:
            raise InvalidTelemetryError(message)
        values = [getattr(self, name) for name in SCALAR_FIELDS]
        ok, message = validate_scalars(SCALAR_FIELDS, values)
        if not ok:
            raise InvalidTelemetryError(message)

        self.ptsx = np.asarray(self.ptsx, dtype=np.float64)
        self.ptsy = np.asarray(self.ptsy, dtype=np.float64)
        for name in SCALAR_FIELDS:
            setattr(self, name, float(getattr(self, name)))

    @property
    def n_waypoints(self) -> int:
        return len(self.ptsx)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "Telemetry":
        """
        Build from an already-decoded telemetry message.

        Expects the keys ptsx, ptsy, x, y, psi, speed, and optionally
        steering_angle and throttle.
        """
        if not data:
            raise InvalidTelemetryError("empty message")
        required = ("ptsx", "ptsy", "x", "y", "psi", "speed")
        missing = [key for key in required if key not in data]
        if missing:
            raise InvalidTelemetryError(f"missing fields: {', '.join(missing)}")
        return cls(
            ptsx=data["ptsx"],
            ptsy=data["ptsy"],
            x=data["x"],
            y=data["y"],
            psi=data["psi"],
            speed=data["speed"],
            steering_angle=data.get("steering_angle", 0.0),
            throttle=data.get("throttle", 0.0),
        )


@dataclass
class ControlCommand:
    """
    Outbound actuation and diagnostics for one tick.

    Attributes:
        steering: Normalized steering in [-1, 1], positive = right
        throttle: Normalized throttle in [-1, 1]
        mpc_x, mpc_y: Predicted horizon positions (vehicle frame)
        next_x, next_y: Reference polynomial at each waypoint's local x
        status: Solver status of this tick's solve
        cost: Objective value of the adopted solution
        latency: Latency estimate used for the projection [s]
    """
    steering: float
    throttle: float
    mpc_x: np.ndarray = field(default_factory=lambda: np.zeros(0))
    mpc_y: np.ndarray = field(default_factory=lambda: np.zeros(0))
    next_x: np.ndarray = field(default_factory=lambda: np.zeros(0))
    next_y: np.ndarray = field(default_factory=lambda: np.zeros(0))
    status: Status = Status.UNSOLVED
    cost: float = float("nan")
    latency: float = 0.0

    def to_message(self) -> Dict[str, Any]:
        """Wire representation of the command."""
        return {
            "steering_angle": float(self.steering),
            "throttle": float(self.throttle),
            "mpc_x": [float(v) for v in self.mpc_x],
            "mpc_y": [float(v) for v in self.mpc_y],
            "next_x": [float(v) for v in self.next_x],
            "next_y": [float(v) for v in self.next_y],
        }


class CloseCode(IntEnum):
    """
    Application close codes for ending a tuning run.

    Taken from the private-use range of websocket close codes.
    """
    CRASHED = 4001
    TIMED_OUT = 4002


class RunOutcome(Enum):
    """How a session ended, from the tuning harness's point of view."""
    CRASHED = "crashed"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


def outcome_for_close_code(code: Optional[int]) -> RunOutcome:
    """
    Classify a disconnect code.

    CRASHED means the run was judged crashed; TIMED_OUT means it reached
    its time budget without crashing, which counts as a completed run.
    Anything else is an unexpected failure.
    """
    if code == CloseCode.CRASHED:
        return RunOutcome.CRASHED
    if code == CloseCode.TIMED_OUT:
        return RunOutcome.COMPLETED
    return RunOutcome.FAILED
