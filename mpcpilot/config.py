"""
Controller Configuration
========================

Immutable configuration records threaded through the controller, the
reference estimator and the problem formulator.

Every tunable knob lives here with its documented default. How values are
supplied (file, arguments, tuning harness) is up to the caller.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from .exceptions import InvalidInputError


FORMULATIONS = ("explicit", "inline")

# Order of the flat parameter list used by the tuning harness.
FLAT_PARAMETERS = (
    "max_runtime",
    "dt",
    "reference_speed",
    "cte",
    "epsi",
    "speed",
    "steering",
    "throttle",
    "steering_rate",
    "throttle_rate",
)


def _check_finite(name: str, value: float) -> None:
    if not math.isfinite(value):
        raise InvalidInputError(f"{name} must be finite, got {value}")


def _check_positive(name: str, value: float) -> None:
    _check_finite(name, value)
    if value <= 0:
        raise InvalidInputError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class CostWeights:
    """
    Weights of the quadratic objective terms.

    Attributes:
        cte: Cross-track error
        epsi: Heading error
        speed: Deviation from the reference speed
        steering: Steering magnitude
        throttle: Throttle (or acceleration) magnitude
        steering_rate: Change in steering between consecutive steps
        throttle_rate: Change in throttle between consecutive steps

    Smooth steering is favoured strongly by default; a low steering-rate
    weight makes the car weave at speed.
    """
    cte: float = 1.0
    epsi: float = 1.0
    speed: float = 1.0
    steering: float = 5.0
    throttle: float = 5.0
    steering_rate: float = 500.0
    throttle_rate: float = 10.0

    def __post_init__(self):
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            _check_finite(f"weight '{f.name}'", value)
            if value < 0:
                raise InvalidInputError(
                    f"weight '{f.name}' must be nonnegative, got {value}"
                )

    def as_array(self) -> np.ndarray:
        """Weights in field order."""
        return np.array([getattr(self, f.name) for f in dataclasses.fields(self)])

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "CostWeights":
        """Build weights from values given in field order."""
        names = [f.name for f in dataclasses.fields(cls)]
        if len(values) != len(names):
            raise InvalidInputError(
                f"expected {len(names)} weights, got {len(values)}"
            )
        return cls(**{name: float(v) for name, v in zip(names, values)})


@dataclass(frozen=True)
class ThrottleModel:
    """
    Empirical throttle-to-acceleration mapping.

        a(u, v) = (gain * u + offset) * (1 - v / top_speed)

    where u is the normalized throttle in [-1, 1] and v the speed. The
    coefficients come from offline calibration runs; the speed factor
    models the loss of pulling power as the car approaches top speed.

    Works elementwise on numpy arrays.
    """
    gain: float = 10.0
    offset: float = -0.5
    top_speed: float = 100.0

    def __post_init__(self):
        _check_finite("gain", self.gain)
        _check_finite("offset", self.offset)
        _check_positive("top_speed", self.top_speed)

    def acceleration(self, u, v):
        return (self.gain * u + self.offset) * (1.0 - v / self.top_speed)

    def d_throttle(self, u, v):
        """Partial derivative of acceleration with respect to throttle."""
        return self.gain * (1.0 - v / self.top_speed)

    def d_speed(self, u, v):
        """Partial derivative of acceleration with respect to speed."""
        return -(self.gain * u + self.offset) / self.top_speed


@dataclass(frozen=True)
class ControllerConfig:
    """
    Configuration for the path-tracking MPC.

    Attributes:
        # Horizon and model
        horizon: Number of timesteps N (N - 1 actuations)
        dt: Timestep duration [s]
        reference_speed: Target speed
        lf: Distance from the reference point to the front axle
        max_steering: Steering bound [rad]
        acceleration_limit: Bound on a direct acceleration actuator
        throttle_model: Empirical throttle mapping; None for direct acceleration
        formulation: "explicit" (cte/epsi as states) or "inline"
        weights: Objective weights

        # Reference estimation
        weight_step: Weight change per tick for a waypoint
        weight_epsilon: Weights at or below this are pruned
        match_tolerance: Coordinate tolerance for waypoint identity (0 = exact)

        # Latency compensation
        latency_default: Seed for the latency estimate [s]
        latency_smoothing: EMA smoothing factor

        # Solver
        solve_budget: Wall-clock budget per solve [s]
        max_iterations: Iteration limit per solve
        tolerance: Solver convergence tolerance

        # Tuning mode
        tuning: Track run statistics and crash detection
        warmup: Time before crash detection starts [s]
        max_runtime: Run length after which the run counts as complete [s]
        crash_cte: |cte| above this counts as a crash
        crash_min_speed: Speed below this counts as a crash
    """
    # Horizon and model
    horizon: int = 20
    dt: float = 0.05
    reference_speed: float = 50.0
    lf: float = 2.67
    max_steering: float = math.radians(25.0)
    acceleration_limit: float = 1.0
    throttle_model: Optional[ThrottleModel] = None
    formulation: str = "explicit"
    weights: CostWeights = field(default_factory=CostWeights)

    # Reference estimation
    weight_step: float = 0.1
    weight_epsilon: float = 1e-6
    match_tolerance: float = 0.0

    # Latency compensation
    latency_default: float = 0.15
    latency_smoothing: float = 0.1

    # Solver
    solve_budget: float = 0.5
    max_iterations: int = 200
    tolerance: float = 1e-6

    # Tuning mode
    tuning: bool = False
    warmup: float = 10.0
    max_runtime: float = 90.0
    crash_cte: float = 4.5
    crash_min_speed: float = 5.0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration parameters."""
        if int(self.horizon) != self.horizon or self.horizon < 3:
            raise InvalidInputError(f"horizon must be an integer >= 3, got {self.horizon}")
        for name in ("dt", "lf", "max_steering", "acceleration_limit",
                     "solve_budget", "tolerance", "max_runtime"):
            _check_positive(name, getattr(self, name))
        for name in ("reference_speed", "latency_default", "warmup",
                     "crash_cte", "crash_min_speed", "match_tolerance",
                     "weight_epsilon"):
            _check_finite(name, getattr(self, name))
        if self.latency_default < 0:
            raise InvalidInputError("latency_default must be nonnegative")
        if self.match_tolerance < 0:
            raise InvalidInputError("match_tolerance must be nonnegative")
        if not 0 < self.weight_step <= 1:
            raise InvalidInputError(f"weight_step must be in (0, 1], got {self.weight_step}")
        if not 0 <= self.weight_epsilon < self.weight_step:
            raise InvalidInputError("weight_epsilon must be in [0, weight_step)")
        if not 0 < self.latency_smoothing <= 1:
            raise InvalidInputError(
                f"latency_smoothing must be in (0, 1], got {self.latency_smoothing}"
            )
        if self.max_iterations < 1:
            raise InvalidInputError("max_iterations must be at least 1")
        if self.formulation not in FORMULATIONS:
            raise InvalidInputError(
                f"formulation must be one of {FORMULATIONS}, got '{self.formulation}'"
            )

    @property
    def explicit_errors(self) -> bool:
        """True if cte and heading error are state variables."""
        return self.formulation == "explicit"

    @property
    def throttle_limit(self) -> float:
        """Bound on the second actuator (throttle or acceleration)."""
        return 1.0 if self.throttle_model is not None else self.acceleration_limit

    def with_updates(self, **changes) -> "ControllerConfig":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_flat(
        cls,
        values: Sequence[float],
        **overrides,
    ) -> "ControllerConfig":
        """
        Build a tuning-mode configuration from the flat knob list.

        The order is FLAT_PARAMETERS: max_runtime, dt, reference_speed,
        followed by the seven cost weights.

        Example:
            >>> config = ControllerConfig.from_flat(
            ...     [90, 0.05, 50, 1, 1, 1, 5, 5, 500, 10]
            ... )
        """
        values = [float(v) for v in values]
        if len(values) != len(FLAT_PARAMETERS):
            raise InvalidInputError(
                f"expected {len(FLAT_PARAMETERS)} parameters "
                f"({', '.join(FLAT_PARAMETERS)}), got {len(values)}"
            )
        kwargs = dict(
            max_runtime=values[0],
            dt=values[1],
            reference_speed=values[2],
            weights=CostWeights.from_sequence(values[3:]),
            tuning=True,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    def to_flat(self) -> list:
        """Inverse of from_flat."""
        return [self.max_runtime, self.dt, self.reference_speed,
                *self.weights.as_array().tolist()]
