"""
Horizon Variable Layout
=======================

The solver works on a single flat vector. This module fixes where each
state and actuator series lives in that vector and builds the matching
variable and constraint bounds.

Layout (field-major, N timesteps, N - 1 actuations):

    [x_0..x_{N-1}, y_*, psi_*, v_*, (cte_*, epsi_*), delta_0..delta_{N-2}, a_*]

Constraint rows mirror the state part of the layout: row ``field.start``
pins the initial value of that field, row ``field.start + 1 + i`` holds the
dynamics residual from step i to step i + 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

from ..exceptions import DimensionError, InvalidInputError

# Stand-in for an unbounded variable.
INFINITY = 1.0e19

STATE_FIELDS = ("x", "y", "psi", "v")
ERROR_FIELDS = ("cte", "epsi")
ACTUATOR_FIELDS = ("delta", "a")


@dataclass(frozen=True)
class Field:
    """A contiguous run of the flat variable vector."""
    start: int
    count: int

    @property
    def stop(self) -> int:
        return self.start + self.count

    @property
    def slice(self) -> slice:
        return slice(self.start, self.stop)

    def indices(self, offset: int = 0, count: Optional[int] = None) -> np.ndarray:
        """Absolute indices of elements offset..offset+count."""
        if count is None:
            count = self.count - offset
        return np.arange(self.start + offset, self.start + offset + count)


class VariableLayout:
    """
    Offset table for the horizon variables.

    Args:
        horizon: Number of timesteps N
        explicit_errors: Carry cte and heading error as state variables

    Example:
        >>> layout = VariableLayout(horizon=20)
        >>> layout.n_vars
        158
        >>> layout["delta"]
        Field(start=120, count=19)
        >>> x_values = layout.get(z, "x")
    """

    def __init__(self, horizon: int, explicit_errors: bool = True) -> None:
        if horizon < 2:
            raise InvalidInputError(f"horizon must be at least 2, got {horizon}")

        self.horizon = int(horizon)
        self.explicit_errors = explicit_errors

        self.state_fields: Tuple[str, ...] = STATE_FIELDS + (
            ERROR_FIELDS if explicit_errors else ()
        )
        self.actuator_fields: Tuple[str, ...] = ACTUATOR_FIELDS

        fields: Dict[str, Field] = {}
        start = 0
        for name in self.state_fields:
            fields[name] = Field(start, self.horizon)
            start += self.horizon
        for name in self.actuator_fields:
            fields[name] = Field(start, self.horizon - 1)
            start += self.horizon - 1

        self._fields = fields
        self.n_vars = start
        self.n_constraints = len(self.state_fields) * self.horizon

    def __getitem__(self, name: str) -> Field:
        try:
            return self._fields[name]
        except KeyError:
            raise KeyError(
                f"unknown field '{name}', expected one of {tuple(self._fields)}"
            ) from None

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def __repr__(self) -> str:
        return (
            f"VariableLayout(horizon={self.horizon}, "
            f"fields={self.state_fields + self.actuator_fields}, "
            f"n_vars={self.n_vars})"
        )

    @property
    def n_states(self) -> int:
        return len(self.state_fields)

    @property
    def fields(self) -> Dict[str, Field]:
        """Copy of the offset table, keyed by field name."""
        return dict(self._fields)

    def check(self, z: np.ndarray) -> np.ndarray:
        """Return z as a float array, checking its length."""
        z = np.asarray(z, dtype=np.float64)
        if z.shape != (self.n_vars,):
            raise DimensionError(
                f"expected variable vector of shape ({self.n_vars},), got {z.shape}"
            )
        return z

    def get(self, z: np.ndarray, name: str) -> np.ndarray:
        """Copy of one series out of the flat vector."""
        return np.array(z[self[name].slice], dtype=np.float64)

    def set(self, z: np.ndarray, name: str, values: Union[float, Sequence[float]]) -> None:
        """Write one series (or a broadcast scalar) into the flat vector."""
        z[self[name].slice] = values

    def split(self, z: np.ndarray) -> Dict[str, np.ndarray]:
        """All series keyed by field name (views, not copies)."""
        return {name: z[f.slice] for name, f in self._fields.items()}

    def initial_state(self, z: np.ndarray) -> np.ndarray:
        """Time-0 value of every state field, in state_fields order."""
        return np.array([z[self[name].start] for name in self.state_fields])

    def zeros(self) -> np.ndarray:
        return np.zeros(self.n_vars)


def variable_bounds(
    layout: VariableLayout,
    max_steering: float,
    throttle_limit: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Box bounds for the flat variable vector.

    States are unbounded (+-1e19), steering slots are limited to
    +-max_steering and throttle slots to +-throttle_limit.

    Returns:
        (lower, upper) arrays of length layout.n_vars
    """
    if max_steering <= 0 or throttle_limit <= 0:
        raise InvalidInputError("actuator limits must be positive")

    lower = np.full(layout.n_vars, -INFINITY)
    upper = np.full(layout.n_vars, INFINITY)

    steering = layout["delta"].slice
    lower[steering] = -max_steering
    upper[steering] = max_steering

    throttle = layout["a"].slice
    lower[throttle] = -throttle_limit
    upper[throttle] = throttle_limit

    return lower, upper


def constraint_bounds(
    layout: VariableLayout,
    initial_state: Optional[Sequence[float]] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Bounds for the constraint rows.

    Every dynamics residual is an equality at 0. The initial-condition rows
    are pinned to initial_state (lower = upper), if given.

    Returns:
        (lower, upper) arrays of length layout.n_constraints
    """
    lower = np.zeros(layout.n_constraints)
    upper = np.zeros(layout.n_constraints)
    if initial_state is not None:
        pin_initial_state(layout, lower, upper, initial_state)
    return lower, upper


def pin_initial_state(
    layout: VariableLayout,
    lower: np.ndarray,
    upper: np.ndarray,
    initial_state: Sequence[float],
) -> None:
    """Set the initial-condition rows of the constraint bounds in place."""
    initial_state = np.asarray(initial_state, dtype=np.float64)
    if initial_state.shape != (layout.n_states,):
        raise DimensionError(
            f"initial state must have shape ({layout.n_states},), "
            f"got {initial_state.shape}"
        )
    for name, value in zip(layout.state_fields, initial_state):
        row = layout[name].start
        lower[row] = value
        upper[row] = value


def is_within_bounds(
    z: np.ndarray,
    lower: np.ndarray,
    upper: np.ndarray,
    tol: float = 1e-6,
) -> bool:
    """Check if z satisfies the box bounds."""
    return bool((z >= lower - tol).all() and (z <= upper + tol).all())
