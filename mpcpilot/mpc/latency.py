"""
Latency Compensation
====================

The command computed from a telemetry message only takes effect some time
later. The tracker estimates that delay from the spacing of control ticks
and rolls the measured state forward by it before the solve.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ..config import ControllerConfig
from .dynamics import KinematicBicycle


@dataclass(frozen=True)
class VehicleState:
    """
    Vehicle state in the vehicle frame at the start of the horizon.

    Attributes:
        x, y: Position
        psi: Heading [rad]
        v: Speed
        cte: Cross-track error against the reference
        epsi: Heading error against the reference
    """
    x: float = 0.0
    y: float = 0.0
    psi: float = 0.0
    v: float = 0.0
    cte: float = 0.0
    epsi: float = 0.0

    def as_array(self, explicit_errors: bool = True) -> np.ndarray:
        """State vector in layout order."""
        values = [self.x, self.y, self.psi, self.v]
        if explicit_errors:
            values += [self.cte, self.epsi]
        return np.array(values, dtype=np.float64)

    def with_errors(self, cte: float, epsi: float) -> "VehicleState":
        return VehicleState(self.x, self.y, self.psi, self.v, float(cte), float(epsi))


class LatencyTracker:
    """
    Exponential moving average of the control-loop period.

        latency = alpha * dt_measured + (1 - alpha) * latency

    Seeded with config.latency_default until the first measurement.

    Args:
        config: Controller configuration
        clock: Monotonic clock returning seconds (default time.perf_counter)
    """

    def __init__(
        self,
        config: Optional[ControllerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or ControllerConfig()
        self.clock = clock or time.perf_counter
        self.alpha = self.config.latency_smoothing
        self.model = KinematicBicycle.from_config(self.config)

        self.latency = self.config.latency_default
        self.last_tick: Optional[float] = None
        self.n_ticks = 0

    def reset(self, now: Optional[float] = None) -> None:
        """Start a new session: reseed the estimate and restart the clock."""
        self.latency = self.config.latency_default
        self.last_tick = self.clock() if now is None else now
        self.n_ticks = 0

    def record_tick(self, now: Optional[float] = None) -> float:
        """
        Record a control tick and return the updated latency estimate.

        The first tick after construction only starts the clock.
        """
        if now is None:
            now = self.clock()
        if self.last_tick is not None:
            measured = max(0.0, now - self.last_tick)
            self.latency = self.alpha * measured + (1.0 - self.alpha) * self.latency
        self.last_tick = now
        self.n_ticks += 1
        return self.latency

    def project_state(
        self,
        speed: float,
        steering: float,
        throttle: float,
        latency: Optional[float] = None,
    ) -> VehicleState:
        """
        Roll the vehicle forward by the latency.

        The vehicle frame puts the car at the origin with zero heading, so
        this is one Euler step of the bicycle model from (0, 0, 0, speed)
        with the last commanded actuation.

        Args:
            speed: Measured speed
            steering: Last commanded steering [rad], model convention
                (positive = left)
            throttle: Last commanded throttle or acceleration
            latency: Step length; defaults to the current estimate

        Returns:
            Projected VehicleState (cte and epsi left at 0)
        """
        if latency is None:
            latency = self.latency
        x, y, psi, v = self.model.step(
            np.array([0.0, 0.0, 0.0, speed]), steering, throttle, latency
        )
        return VehicleState(float(x), float(y), float(psi), float(v))
