"""
Vehicle Dynamics Model
======================

Kinematic bicycle model used for the latency projection, the horizon
constraints and closed-loop simulation.

    x'   = v cos(psi)
    y'   = v sin(psi)
    psi' = v / lf * delta
    v'   = a(u, v)

Positive delta turns left (counter-clockwise). The second actuator u is
either a direct acceleration or a normalized throttle passed through a
ThrottleModel.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..config import ControllerConfig, ThrottleModel
from ..exceptions import InvalidInputError


@dataclass(frozen=True)
class KinematicBicycle:
    """
    Discrete-time kinematic bicycle, integrated with explicit Euler steps.

    Args:
        lf: Distance from the reference point to the front axle
        throttle_model: Empirical throttle mapping; None means the second
            actuator is an acceleration

    Example:
        >>> model = KinematicBicycle(lf=2.67)
        >>> state = np.array([0.0, 0.0, 0.0, 10.0])   # x, y, psi, v
        >>> model.step(state, delta=0.1, u=0.5, dt=0.05)
        array([ 0.5       ,  0.        ,  0.01872659, 10.025     ])
    """
    lf: float = 2.67
    throttle_model: Optional[ThrottleModel] = None

    def __post_init__(self):
        if not self.lf > 0:
            raise InvalidInputError(f"lf must be positive, got {self.lf}")

    @classmethod
    def from_config(cls, config: ControllerConfig) -> "KinematicBicycle":
        return cls(lf=config.lf, throttle_model=config.throttle_model)

    def acceleration(self, u, v):
        """Longitudinal acceleration produced by actuator value u at speed v."""
        if self.throttle_model is None:
            return u
        return self.throttle_model.acceleration(u, v)

    def acceleration_partials(self, u, v):
        """(d a / d u, d a / d v), elementwise."""
        if self.throttle_model is None:
            u = np.asarray(u, dtype=np.float64)
            return np.ones_like(u), np.zeros_like(u)
        return (
            self.throttle_model.d_throttle(u, v),
            self.throttle_model.d_speed(u, v),
        )

    def yaw_rate(self, v, delta):
        return v / self.lf * delta

    def step(
        self,
        state: np.ndarray,
        delta: float,
        u: float,
        dt: float,
    ) -> np.ndarray:
        """
        Advance [x, y, psi, v] by one Euler step of length dt.

        Args:
            state: Current state (4,)
            delta: Steering angle [rad], positive = left
            u: Throttle or acceleration
            dt: Step length [s]

        Returns:
            Next state (4,)
        """
        x, y, psi, v = np.asarray(state, dtype=np.float64)[:4]
        return np.array([
            x + v * np.cos(psi) * dt,
            y + v * np.sin(psi) * dt,
            psi + self.yaw_rate(v, delta) * dt,
            v + self.acceleration(u, v) * dt,
        ])

    def simulate(
        self,
        state0: np.ndarray,
        controls: np.ndarray,
        dt: float,
    ) -> np.ndarray:
        """
        Simulate over a sequence of (delta, u) pairs.

        Args:
            state0: Initial state [x, y, psi, v]
            controls: Control sequence (K, 2)
            dt: Step length

        Returns:
            State trajectory (K+1, 4) including the initial state
        """
        controls = np.asarray(controls, dtype=np.float64).reshape(-1, 2)
        K = len(controls)
        trajectory = np.zeros((K + 1, 4))
        trajectory[0] = np.asarray(state0, dtype=np.float64)[:4]

        for k in range(K):
            trajectory[k + 1] = self.step(trajectory[k], controls[k, 0], controls[k, 1], dt)

        return trajectory
