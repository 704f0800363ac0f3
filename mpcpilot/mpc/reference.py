"""
Reference Path Estimation
=========================

Turns the waypoints reported each tick into a cubic reference polynomial
in the vehicle frame, where the car sits at the origin facing along +x.

Waypoints enter and leave the reported window abruptly. Fitting the raw
set makes the reference jump between ticks, so each waypoint carries a
weight that ramps up while it keeps being reported and ramps down once it
disappears. The fit is a weighted least-squares fit using those weights.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import linalg

from ..config import ControllerConfig
from ..exceptions import InsufficientWaypointsError, InvalidInputError

logger = logging.getLogger(__name__)

DEGREE = 3
MIN_POINTS = DEGREE + 1


@dataclass(frozen=True)
class ReferencePolynomial:
    """
    Polynomial y = c0 + c1 x + c2 x^2 + c3 x^3 in the vehicle frame.

    Coefficients are stored lowest order first. Instances are never
    modified; the estimator builds a new one every tick.

    Example:
        >>> ref = ReferencePolynomial([1.0, 0.5, 0.0, 0.0])
        >>> ref.evaluate(2.0)
        2.0
        >>> ref.heading(0.0)   # atan(0.5)
        0.4636476090008061
    """
    coeffs: np.ndarray

    def __post_init__(self):
        coeffs = np.array(self.coeffs, dtype=np.float64).ravel()
        if coeffs.size == 0:
            raise InvalidInputError("polynomial needs at least one coefficient")
        if not np.all(np.isfinite(coeffs)):
            raise InvalidInputError(f"polynomial coefficients must be finite, got {coeffs}")
        coeffs.flags.writeable = False
        object.__setattr__(self, "coeffs", coeffs)

    def __len__(self) -> int:
        return len(self.coeffs)

    def __getitem__(self, i: int) -> float:
        return float(self.coeffs[i])

    @property
    def degree(self) -> int:
        return len(self.coeffs) - 1

    def evaluate(self, x):
        """Value at x (scalar or array), by Horner's scheme."""
        return horner(self.coeffs, x)

    def derivative(self, x):
        """First derivative at x."""
        return horner(_differentiate(self.coeffs), x)

    def second_derivative(self, x):
        return horner(_differentiate(_differentiate(self.coeffs)), x)

    def heading(self, x):
        """Tangent direction of the path at x [rad]."""
        return np.arctan(self.derivative(x))

    def heading_derivative(self, x):
        """d heading / d x = f''(x) / (1 + f'(x)^2)."""
        slope = self.derivative(x)
        return self.second_derivative(x) / (1.0 + slope * slope)

    def cross_track_error(self, x, y):
        """Signed lateral offset of (x, y) from the path, f(x) - y."""
        return self.evaluate(x) - y

    def heading_error(self, x, psi):
        """psi - heading(x)."""
        return psi - self.heading(x)


def horner(coeffs: Sequence[float], x):
    """Evaluate a polynomial with coefficients lowest order first."""
    result = np.zeros_like(np.asarray(x, dtype=np.float64))
    for c in reversed(coeffs):
        result = result * x + c
    if np.ndim(result) == 0:
        return float(result)
    return result


def _differentiate(coeffs: np.ndarray) -> np.ndarray:
    if len(coeffs) <= 1:
        return np.zeros(1)
    return coeffs[1:] * np.arange(1, len(coeffs))


def to_vehicle_frame(
    xs: Sequence[float],
    ys: Sequence[float],
    px: float,
    py: float,
    psi: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Transform world points into the frame of a vehicle at (px, py, psi).

    Translate by -position, then rotate by -psi.
    """
    dx = np.asarray(xs, dtype=np.float64) - px
    dy = np.asarray(ys, dtype=np.float64) - py
    c, s = np.cos(psi), np.sin(psi)
    return c * dx + s * dy, -s * dx + c * dy


def to_world_frame(
    xs: Sequence[float],
    ys: Sequence[float],
    px: float,
    py: float,
    psi: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of to_vehicle_frame."""
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    c, s = np.cos(psi), np.sin(psi)
    return px + c * xs - s * ys, py + s * xs + c * ys


def weighted_polyfit(
    x: np.ndarray,
    y: np.ndarray,
    weights: Optional[np.ndarray] = None,
    degree: int = DEGREE,
) -> np.ndarray:
    """
    Weighted least-squares polynomial fit.

    Minimizes sum_i w_i (p(x_i) - y_i)^2 by a QR decomposition of the
    design matrix with rows scaled by sqrt(w_i). If the scaled design is
    rank deficient (repeated x values, too few distinct points) the
    minimum-norm least-squares solution is returned instead, so the result
    degrades to the best lower-order fit.

    Args:
        x: Abscissae (n,)
        y: Ordinates (n,)
        weights: Nonnegative weights (n,), default all ones
        degree: Polynomial degree

    Returns:
        Coefficients (degree + 1,), lowest order first
    """
    x = np.asarray(x, dtype=np.float64).ravel()
    y = np.asarray(y, dtype=np.float64).ravel()
    if weights is None:
        weights = np.ones_like(x)
    weights = np.asarray(weights, dtype=np.float64).ravel()

    if not (len(x) == len(y) == len(weights)):
        raise InvalidInputError(
            f"x, y and weights must have equal length, got {len(x)}, {len(y)}, {len(weights)}"
        )
    if np.any(weights < 0):
        raise InvalidInputError("weights must be nonnegative")

    sqrt_w = np.sqrt(weights)
    A = np.vander(x, degree + 1, increasing=True) * sqrt_w[:, None]
    b = y * sqrt_w

    if len(x) >= degree + 1:
        Q, R = linalg.qr(A, mode="economic")
        diag = np.abs(np.diag(R))
        if diag.size and diag.min() > 1e-10 * max(diag.max(), 1.0):
            return linalg.solve_triangular(R, Q.T @ b)

    logger.debug("rank-deficient reference fit, using minimum-norm solution")
    coeffs, *_ = linalg.lstsq(A, b, cond=1e-10)
    return coeffs


@dataclass
class WeightedPoint:
    """A waypoint in world coordinates with its smoothing weight."""
    x: float
    y: float
    weight: float


class ReferenceEstimator:
    """
    Maintains smoothed waypoint weights and fits the reference polynomial.

    Each update:
      1. known points still reported gain weight_step (capped at 1),
         known points no longer reported lose weight_step,
      2. points whose weight drops to weight_epsilon or below are removed,
      3. newly reported points are appended with weight weight_step,
      4. the survivors are moved into the vehicle frame and fitted.

    Insertion order is kept across ticks, so the fitted points and the
    overlay come out in a stable order.

    Args:
        config: Controller configuration (weight_step, weight_epsilon,
            match_tolerance)

    Example:
        >>> estimator = ReferenceEstimator()
        >>> ref = estimator.update([0, 10, 20, 30], [0, 0, 0, 0], 0, 0, 0)
        >>> ref.evaluate(15.0)
        0.0
    """

    def __init__(self, config: Optional[ControllerConfig] = None) -> None:
        self.config = config or ControllerConfig()
        self.step = self.config.weight_step
        self.epsilon = self.config.weight_epsilon
        self.tolerance = self.config.match_tolerance

        self._points: List[WeightedPoint] = []
        self.polynomial: Optional[ReferencePolynomial] = None
        self.local_x = np.zeros(0)
        self.local_y = np.zeros(0)

    def reset(self) -> None:
        """Forget known waypoints for a new run."""
        self._points = []
        self.polynomial = None
        self.local_x = np.zeros(0)
        self.local_y = np.zeros(0)

    @property
    def points(self) -> List[WeightedPoint]:
        """Copies of the known points, in insertion order."""
        return [WeightedPoint(p.x, p.y, p.weight) for p in self._points]

    @property
    def weights(self) -> np.ndarray:
        return np.array([p.weight for p in self._points])

    def weight_of(self, x: float, y: float) -> float:
        """Current weight of the point at (x, y), 0 if unknown."""
        for p in self._points:
            if self._matches(p.x, p.y, x, y):
                return p.weight
        return 0.0

    def _matches(self, ax: float, ay: float, bx: float, by: float) -> bool:
        if self.tolerance == 0.0:
            return ax == bx and ay == by
        return abs(ax - bx) <= self.tolerance and abs(ay - by) <= self.tolerance

    def _is_present(self, point: WeightedPoint, xs: np.ndarray, ys: np.ndarray) -> bool:
        if self.tolerance == 0.0:
            return bool(np.any((xs == point.x) & (ys == point.y)))
        return bool(np.any(
            (np.abs(xs - point.x) <= self.tolerance)
            & (np.abs(ys - point.y) <= self.tolerance)
        ))

    def update_weights(self, xs: Sequence[float], ys: Sequence[float]) -> None:
        """Apply one tick of weight smoothing for the reported waypoints."""
        xs = np.asarray(xs, dtype=np.float64).ravel()
        ys = np.asarray(ys, dtype=np.float64).ravel()
        if xs.shape != ys.shape:
            raise InvalidInputError(
                f"waypoint x and y must have equal length, got {len(xs)} and {len(ys)}"
            )

        survivors = []
        for point in self._points:
            if self._is_present(point, xs, ys):
                if point.weight < 1.0 - self.epsilon:
                    point.weight = min(1.0, point.weight + self.step)
                if point.weight >= 1.0 - self.epsilon:
                    point.weight = 1.0
            else:
                point.weight = max(0.0, point.weight - self.step)
            if point.weight > self.epsilon:
                survivors.append(point)
        pruned = len(self._points) - len(survivors)
        self._points = survivors

        # A new point would be inserted at 2 * step and then take the same
        # decrement as an absent point, so it starts at one step.
        added = 0
        for x, y in zip(xs, ys):
            if not any(self._matches(p.x, p.y, x, y) for p in self._points):
                self._points.append(WeightedPoint(float(x), float(y), self.step))
                added += 1

        if pruned or added:
            logger.debug(
                "reference points: %d added, %d pruned, %d tracked",
                added, pruned, len(self._points),
            )

    def fit(self, px: float, py: float, psi: float) -> ReferencePolynomial:
        """Transform the known points to the vehicle frame and fit them."""
        xs = np.array([p.x for p in self._points])
        ys = np.array([p.y for p in self._points])
        self.local_x, self.local_y = to_vehicle_frame(xs, ys, px, py, psi)

        weights = self.weights
        n_effective = int(np.sum(weights > self.epsilon))
        if n_effective < MIN_POINTS:
            raise InsufficientWaypointsError(
                f"need at least {MIN_POINTS} weighted waypoints to fit the "
                f"reference, have {n_effective}",
                n_points=n_effective,
            )

        coeffs = weighted_polyfit(self.local_x, self.local_y, weights, DEGREE)
        self.polynomial = ReferencePolynomial(coeffs)
        return self.polynomial

    def update(
        self,
        xs: Sequence[float],
        ys: Sequence[float],
        px: float,
        py: float,
        psi: float,
    ) -> ReferencePolynomial:
        """
        Update the point weights and fit a new reference polynomial.

        Args:
            xs, ys: Waypoints reported this tick (world frame)
            px, py, psi: Vehicle pose (world frame)

        Returns:
            The new ReferencePolynomial

        Raises:
            InsufficientWaypointsError: fewer than four weighted points
        """
        self.update_weights(xs, ys)
        return self.fit(px, py, psi)

    def overlay(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Reference polynomial evaluated at each known point's local x.

        Used to draw the reference line over the vehicle view.
        """
        if self.polynomial is None:
            return np.zeros(0), np.zeros(0)
        xs = np.array(self.local_x, dtype=np.float64)
        return xs, np.asarray(self.polynomial.evaluate(xs), dtype=np.float64).reshape(-1)
