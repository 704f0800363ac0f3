"""
Path-Tracking Controller
========================

Receding-horizon controller for a kinematic bicycle following a waypoint
path. One instance serves one session:

    IDLE --reset()--> RUNNING --update()*--> CRASHED | TIMED_OUT
                         |
                         +--disconnect()--> DISCONNECTED

Each update fits the reference, compensates the actuation latency, solves
the horizon problem warm-started from the previous solution and returns
the first actuation of the new plan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import numpy as np

from ..config import ControllerConfig
from ..exceptions import SessionStateError
from ..result import SolveResult, Status
from ..solver import NLPSolver, solve_nlp
from .latency import LatencyTracker, VehicleState
from .layout import VariableLayout, constraint_bounds, pin_initial_state, variable_bounds
from .problem import ProblemFormulator
from .reference import ReferenceEstimator
from .telemetry import CloseCode, ControlCommand, RunOutcome, Telemetry, outcome_for_close_code

logger = logging.getLogger(__name__)


class ControllerState(Enum):
    """Session lifecycle state."""
    IDLE = "idle"
    RUNNING = "running"
    CRASHED = "crashed"
    TIMED_OUT = "timed_out"
    DISCONNECTED = "disconnected"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (
            ControllerState.CRASHED,
            ControllerState.TIMED_OUT,
            ControllerState.DISCONNECTED,
        )


@dataclass
class TuningStats:
    """
    Per-run statistics gathered in tuning mode.

    Distance and absolute cross-track error are trapezoidal integrals of
    the reported speed and |cte| over wall-clock time.
    """
    runtime: float = 0.0
    distance: float = 0.0
    total_absolute_cte: float = 0.0
    crashed: bool = False
    previous_time: Optional[float] = None
    previous_speed: float = 0.0
    previous_cte: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runtime": self.runtime,
            "distance": self.distance,
            "total_absolute_cte": self.total_absolute_cte,
            "crashed": self.crashed,
        }


class Controller:
    """
    MPC path-tracking controller.

    Args:
        config: Controller configuration
        solver: NLP solver with solve_nlp's signature
        clock: Monotonic clock in seconds (default time.perf_counter)

    Example:
        >>> controller = Controller(ControllerConfig(reference_speed=30))
        >>> controller.reset()
        >>> command = controller.update(Telemetry.from_mapping(message))
        >>> reply = command.to_message()
    """

    def __init__(
        self,
        config: Optional[ControllerConfig] = None,
        solver: Optional[NLPSolver] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or ControllerConfig()
        self.solver = solver or solve_nlp
        self.layout = VariableLayout(self.config.horizon, self.config.explicit_errors)
        self.reference = ReferenceEstimator(self.config)
        self.latency = LatencyTracker(self.config, clock)
        self.clock = self.latency.clock

        self.lower, self.upper = variable_bounds(
            self.layout, self.config.max_steering, self.config.throttle_limit
        )
        self.constraint_lower, self.constraint_upper = constraint_bounds(self.layout)

        self.state = ControllerState.IDLE
        self.vars = self.layout.zeros()
        self.stats = TuningStats()
        self.last_result: Optional[SolveResult] = None
        self.vehicle: Optional[VehicleState] = None
        self.n_updates = 0
        self._started_at = 0.0
        self._has_solution = False

    def __repr__(self) -> str:
        return (
            f"Controller(horizon={self.config.horizon}, dt={self.config.dt}, "
            f"state={self.state}, updates={self.n_updates})"
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Start a new run: clear the buffer, reference and statistics."""
        now = self.clock()
        self.vars = self.layout.zeros()
        self.reference.reset()
        self.latency.reset(now)
        self.stats = TuningStats()
        self.last_result = None
        self.vehicle = None
        self.n_updates = 0
        self._started_at = now
        self._has_solution = False
        self.state = ControllerState.RUNNING
        logger.info("session reset (tuning=%s)", self.config.tuning)

    def disconnect(self, code: Optional[int] = None) -> RunOutcome:
        """End the session and classify how it ended."""
        outcome = outcome_for_close_code(code)
        self.state = ControllerState.DISCONNECTED
        logger.info("session closed with code %s: %s", code, outcome)
        return outcome

    @property
    def close_code(self) -> Optional[CloseCode]:
        """Code the collaborator should close the connection with, if any."""
        if self.state == ControllerState.CRASHED:
            return CloseCode.CRASHED
        if self.state == ControllerState.TIMED_OUT:
            return CloseCode.TIMED_OUT
        return None

    # ------------------------------------------------------------------
    # Control tick
    # ------------------------------------------------------------------

    def update(self, telemetry: Telemetry) -> ControlCommand:
        """
        Compute the command for one telemetry message.

        Args:
            telemetry: Validated telemetry

        Returns:
            ControlCommand for this tick

        Raises:
            SessionStateError: the session is not RUNNING
            InsufficientWaypointsError: too few weighted waypoints to fit
        """
        if self.state != ControllerState.RUNNING:
            raise SessionStateError(f"update called while {self.state}")

        config = self.config
        layout = self.layout
        now = self.clock()
        latency = self.latency.record_tick(now)

        polynomial = self.reference.update(
            telemetry.ptsx, telemetry.ptsy, telemetry.x, telemetry.y, telemetry.psi
        )

        # Telemetry uses the actuator's steering convention
        projected = self.latency.project_state(
            telemetry.speed,
            -telemetry.steering_angle,
            telemetry.throttle * config.throttle_limit,
            latency,
        )
        vehicle = projected.with_errors(
            polynomial.cross_track_error(projected.x, projected.y),
            polynomial.heading_error(projected.x, projected.psi),
        )
        initial_state = vehicle.as_array(layout.explicit_errors)
        self.vehicle = vehicle

        pin_initial_state(layout, self.constraint_lower, self.constraint_upper, initial_state)
        problem = ProblemFormulator(polynomial, config, layout)
        if self._has_solution:
            x0 = self.vars.copy()
            for name, value in zip(layout.state_fields, initial_state):
                x0[layout[name].start] = value
        else:
            x0 = problem.rollout(self.vars, initial_state)

        result = self.solver(
            problem, x0, self.lower, self.upper,
            self.constraint_lower, self.constraint_upper,
            time_limit=config.solve_budget,
            max_iterations=config.max_iterations,
            tolerance=config.tolerance,
        )
        if not result.status.is_successful:
            logger.warning(
                "solve finished with status %s after %d iterations "
                "(max violation %.3g): %s",
                result.status, result.iterations,
                result.constraint_violation, result.message,
            )

        self.vars = layout.check(np.asarray(result.x, dtype=np.float64)).copy()
        self.last_result = result
        self._has_solution = True
        self.n_updates += 1

        logger.debug(
            "tick %d: status=%s cost=%.4f latency=%.4f solve_time=%.4f",
            self.n_updates, result.status, result.objective, latency, result.solve_time,
        )

        if config.tuning:
            self.track_run(now, telemetry.speed, polynomial.cross_track_error(0.0, 0.0))

        next_x, next_y = self.reference.overlay()
        return ControlCommand(
            steering=self.steer(),
            throttle=self.throttle(),
            mpc_x=self.x_values(),
            mpc_y=self.y_values(),
            next_x=next_x,
            next_y=next_y,
            status=result.status,
            cost=result.objective,
            latency=latency,
        )

    def track_run(self, now: float, speed: float, cte: float) -> None:
        """
        Accumulate tuning statistics and check for crash or timeout.

        Args:
            now: Clock reading for this tick
            speed: Reported speed
            cte: Measured cross-track error (vehicle at the origin)
        """
        stats = self.stats
        stats.runtime = now - self._started_at
        if stats.previous_time is not None:
            elapsed = now - stats.previous_time
            stats.distance += elapsed * (stats.previous_speed + speed) / 2.0
            stats.total_absolute_cte += elapsed * (abs(stats.previous_cte) + abs(cte)) / 2.0
        stats.previous_time = now
        stats.previous_speed = speed
        stats.previous_cte = cte

        config = self.config
        if stats.runtime > config.warmup and (
            abs(cte) > config.crash_cte or speed < config.crash_min_speed
        ):
            stats.crashed = True
            self.state = ControllerState.CRASHED
            logger.info(
                "crashed after %.2fs: cte=%.3f speed=%.3f distance=%.2f",
                stats.runtime, cte, speed, stats.distance,
            )
        elif stats.runtime >= config.max_runtime:
            self.state = ControllerState.TIMED_OUT
            logger.info(
                "run completed after %.2fs: distance=%.2f total |cte|=%.2f",
                stats.runtime, stats.distance, stats.total_absolute_cte,
            )

    # ------------------------------------------------------------------
    # Solution accessors
    # ------------------------------------------------------------------

    @property
    def status(self) -> Status:
        return self.last_result.status if self.last_result is not None else Status.UNSOLVED

    def steer(self) -> float:
        """Normalized steering command, actuator convention (positive = right)."""
        delta0 = self.vars[self.layout["delta"].start]
        return float(np.clip(-delta0 / self.config.max_steering, -1.0, 1.0))

    def throttle(self) -> float:
        """Normalized throttle command."""
        a0 = self.vars[self.layout["a"].start]
        return float(np.clip(a0 / self.config.throttle_limit, -1.0, 1.0))

    def series(self, name: str) -> np.ndarray:
        """Copy of one field of the current horizon plan."""
        return self.layout.get(self.vars, name).copy()

    def x_values(self) -> np.ndarray:
        return self.series("x")

    def y_values(self) -> np.ndarray:
        return self.series("y")

    def psi_values(self) -> np.ndarray:
        return self.series("psi")

    def v_values(self) -> np.ndarray:
        return self.series("v")

    def cte_values(self) -> np.ndarray:
        if "cte" in self.layout:
            return self.series("cte")
        return self._inline_errors()[0]

    def epsi_values(self) -> np.ndarray:
        if "epsi" in self.layout:
            return self.series("epsi")
        return self._inline_errors()[1]

    def delta_values(self) -> np.ndarray:
        return self.series("delta")

    def throttle_values(self) -> np.ndarray:
        return self.series("a")

    def _inline_errors(self):
        if self.reference.polynomial is None:
            zeros = np.zeros(self.config.horizon)
            return zeros, zeros.copy()
        problem = ProblemFormulator(self.reference.polynomial, self.config, self.layout)
        return problem.tracking_errors(self.vars)
