"""
Closed-Loop Simulation
======================

Drives a Controller around a polyline track with a world-frame kinematic
bicycle standing in for the vehicle. Used to exercise the controller end to
end and as the default run function of the tuner.

Each tick:
  1. the waypoints ahead of the vehicle are reported as telemetry,
  2. the controller computes a command,
  3. the plant integrates that command for one tick period,
  4. the simulated clock advances by the tick period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np

from ..exceptions import InvalidInputError
from .controller import Controller, ControllerState
from .dynamics import KinematicBicycle
from .telemetry import Telemetry

logger = logging.getLogger(__name__)


class SimulatedClock:
    """Manually advanced clock, callable like time.perf_counter."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, dt: float) -> float:
        if dt < 0:
            raise InvalidInputError(f"cannot move the clock backwards by {dt}")
        self.now += dt
        return self.now


@dataclass
class Track:
    """
    Waypoint polyline in world coordinates.

    Args:
        points: Waypoints (M, 2)
        closed: Whether the last point connects back to the first

    Example:
        >>> track = straight_track(length=200.0)
        >>> i = track.nearest(10.0, 0.5)
        >>> xs, ys = track.window(i, 6)
    """
    points: np.ndarray
    closed: bool = False

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64)
        if self.points.ndim != 2 or self.points.shape[1] != 2:
            raise InvalidInputError(
                f"track points must have shape (M, 2), got {self.points.shape}"
            )
        if len(self.points) < 4:
            raise InvalidInputError("a track needs at least 4 points")

    def __len__(self) -> int:
        return len(self.points)

    @property
    def segments(self) -> np.ndarray:
        """Segment start and end points, shape (S, 2, 2)."""
        ends = np.roll(self.points, -1, axis=0) if self.closed else self.points[1:]
        starts = self.points if self.closed else self.points[:-1]
        return np.stack([starts, ends], axis=1)

    def nearest(self, x: float, y: float) -> int:
        """Index of the waypoint closest to (x, y)."""
        d2 = np.sum((self.points - np.array([x, y])) ** 2, axis=1)
        return int(np.argmin(d2))

    def heading(self, index: int) -> float:
        """Direction of the segment leaving waypoint index."""
        i = min(index, len(self.points) - 2) if not self.closed else index % len(self.points)
        dx, dy = self.points[(i + 1) % len(self.points)] - self.points[i]
        return float(np.arctan2(dy, dx))

    def window(self, start: int, count: int):
        """
        Up to count waypoints starting at start.

        Closed tracks wrap around; open tracks stop at the last point.
        """
        if self.closed:
            idx = (start + np.arange(count)) % len(self.points)
        else:
            idx = np.arange(start, min(start + count, len(self.points)))
        return self.points[idx, 0].copy(), self.points[idx, 1].copy()

    def cross_track_error(self, x: float, y: float) -> float:
        """
        Signed distance from (x, y) to the polyline.

        Positive when the point lies to the left of the direction of travel.
        """
        seg = self.segments
        a, b = seg[:, 0], seg[:, 1]
        ab = b - a
        ap = np.array([x, y]) - a
        t = np.clip(np.sum(ap * ab, axis=1) / np.sum(ab * ab, axis=1), 0.0, 1.0)
        closest = a + t[:, None] * ab
        d = np.hypot(*(np.array([x, y]) - closest).T)
        k = int(np.argmin(d))
        side = ab[k, 0] * ap[k, 1] - ab[k, 1] * ap[k, 0]
        return float(np.copysign(d[k], side))


def straight_track(
    length: float = 1000.0,
    spacing: float = 10.0,
    heading: float = 0.0,
    origin: Sequence[float] = (0.0, 0.0),
) -> Track:
    """Straight line of waypoints."""
    s = np.arange(0.0, length + spacing / 2, spacing)
    points = np.column_stack([
        origin[0] + s * np.cos(heading),
        origin[1] + s * np.sin(heading),
    ])
    return Track(points)


def circular_track(
    radius: float = 100.0,
    n_points: int = 120,
    center: Sequence[float] = (0.0, 0.0),
) -> Track:
    """
    Closed counter-clockwise circle.

    Starts at (center_x + radius, center_y), heading +y.
    """
    theta = 2.0 * np.pi * np.arange(n_points) / n_points
    points = np.column_stack([
        center[0] + radius * np.cos(theta),
        center[1] + radius * np.sin(theta),
    ])
    return Track(points, closed=True)


def sinusoidal_track(
    length: float = 1000.0,
    amplitude: float = 10.0,
    wavelength: float = 200.0,
    spacing: float = 10.0,
) -> Track:
    """
    Gently winding road along +x.

    y = amplitude * sin(2 pi x / wavelength)
    """
    x = np.arange(0.0, length + spacing / 2, spacing)
    y = amplitude * np.sin(2.0 * np.pi * x / wavelength)
    return Track(np.column_stack([x, y]))


def simulate(
    controller: Controller,
    track: Track,
    n_steps: int,
    initial_state: Optional[Sequence[float]] = None,
    lookahead: int = 6,
    tick: float = 0.1,
    substeps: int = 5,
    clock: Optional[SimulatedClock] = None,
) -> Dict[str, Any]:
    """
    Run the controller in closed loop on a track.

    The controller's clock is replaced by a simulated one so that latency
    estimates and tuning runtimes follow simulated time. The controller is
    reset before the first tick.

    Args:
        controller: Controller to drive
        track: Track to follow
        n_steps: Maximum number of control ticks
        initial_state: World-frame [x, y, psi, v]; defaults to the first
            waypoint, facing along the track, at rest
        lookahead: Waypoints reported per tick, starting at the nearest
        tick: Simulated time between control ticks [s]
        substeps: Plant integration steps per tick
        clock: Simulated clock (a fresh one starting at 0 if omitted)

    Returns:
        Dict with arrays 'time', 'x', 'y', 'psi', 'v' (n + 1 entries),
        'steering', 'throttle', 'cte' (n entries) and the final controller
        'state'. The run stops early when the controller leaves RUNNING or
        an open track runs out of waypoints.

    Example:
        >>> controller = Controller(ControllerConfig(reference_speed=20))
        >>> history = simulate(controller, straight_track(), n_steps=100)
        >>> abs(history['cte']).max() < 1.0
        True
    """
    if n_steps < 1:
        raise InvalidInputError(f"n_steps must be positive, got {n_steps}")
    if lookahead < 4:
        raise InvalidInputError(f"lookahead must be at least 4, got {lookahead}")
    if tick <= 0 or substeps < 1:
        raise InvalidInputError("tick must be positive and substeps at least 1")

    clock = clock or SimulatedClock()
    controller.clock = clock
    controller.latency.clock = clock

    config = controller.config
    plant = KinematicBicycle.from_config(config)

    if initial_state is None:
        x0, y0 = track.points[0]
        state = np.array([x0, y0, track.heading(0), 0.0])
    else:
        state = np.asarray(initial_state, dtype=np.float64).copy()
        if state.shape != (4,):
            raise InvalidInputError(f"initial_state must have shape (4,), got {state.shape}")

    times = [clock()]
    states = [state.copy()]
    steering_history = []
    throttle_history = []
    cte_history = []

    controller.reset()
    steering, throttle = 0.0, 0.0
    h = tick / substeps

    for _ in range(n_steps):
        start = track.nearest(state[0], state[1])
        if not track.closed and len(track) - start < lookahead:
            logger.info("end of track reached at waypoint %d", start)
            break

        xs, ys = track.window(start, lookahead)
        telemetry = Telemetry(
            ptsx=xs,
            ptsy=ys,
            x=state[0],
            y=state[1],
            psi=state[2],
            speed=state[3],
            steering_angle=steering * config.max_steering,
            throttle=throttle,
        )
        command = controller.update(telemetry)
        steering, throttle = command.steering, command.throttle

        # Back to the model convention
        delta = -steering * config.max_steering
        u = throttle * config.throttle_limit
        for _ in range(substeps):
            state = plant.step(state, delta, u, h)

        clock.advance(tick)
        times.append(clock())
        states.append(state.copy())
        steering_history.append(steering)
        throttle_history.append(throttle)
        cte_history.append(track.cross_track_error(state[0], state[1]))

        if controller.state != ControllerState.RUNNING:
            break

    states = np.array(states)
    return {
        'time': np.array(times),
        'x': states[:, 0],
        'y': states[:, 1],
        'psi': states[:, 2],
        'v': states[:, 3],
        'steering': np.array(steering_history),
        'throttle': np.array(throttle_history),
        'cte': np.array(cte_history),
        'state': controller.state,
    }
