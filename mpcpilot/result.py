"""
mpcpilot Result Classes
=======================

What a solve hands back to the controller.
"""

from dataclasses import dataclass
from enum import Enum

import numpy as np


class Status(Enum):
    """
    Outcome of one horizon solve.

    Attributes:
        OPTIMAL: Converged within tolerance
        INFEASIBLE: Dynamics and bounds could not be satisfied together
        MAX_ITERATIONS: Stopped at the iteration limit
        TIME_LIMIT: Stopped at the wall-clock budget
        NUMERICAL_ERROR: Evaluation or linear algebra failed
        UNSOLVED: No solve has run yet
    """
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    MAX_ITERATIONS = "max_iterations"
    TIME_LIMIT = "time_limit"
    NUMERICAL_ERROR = "numerical_error"
    UNSOLVED = "unsolved"

    def __str__(self) -> str:
        return self.value

    @property
    def is_successful(self) -> bool:
        return self == Status.OPTIMAL

    @property
    def has_solution(self) -> bool:
        """True if x is an iterate of the solve rather than the warm start."""
        return self in (
            Status.OPTIMAL,
            Status.MAX_ITERATIONS,
            Status.TIME_LIMIT,
        )


@dataclass
class SolveResult:
    """
    Result of one nonlinear solve.

    The controller adopts x whatever the status, so constraint_violation
    is kept alongside it to show how far an unconverged plan is from
    obeying the vehicle model.

    Attributes:
        status: Solver status
        objective: Objective value at x
        x: Solution vector, in the layout of the variables passed in
        iterations: Number of iterations performed
        solve_time: Wall clock time in seconds
        constraint_violation: Largest constraint bound violation at x
        message: Solver message, if any

    Example:
        >>> result = solve_nlp(problem, x0, lb, ub, cl, cu)
        >>> if not result.status.is_successful:
        ...     print(f"{result.status}: max violation {result.constraint_violation:.2e}")
    """

    status: Status
    objective: float
    x: np.ndarray
    iterations: int = 0
    solve_time: float = 0.0
    constraint_violation: float = 0.0
    message: str = ""

    def __repr__(self) -> str:
        return (
            f"SolveResult(status={self.status}, "
            f"objective={self.objective:.6g}, "
            f"violation={self.constraint_violation:.2e}, "
            f"iterations={self.iterations}, "
            f"time={self.solve_time:.4f}s)"
        )

    def summary(self) -> str:
        """One block of text describing the solve, for logs."""
        lines = [
            "-" * 40,
            f"status      {self.status}",
            f"cost        {self.objective:.6g}",
            f"violation   {self.constraint_violation:.3e}",
            f"iterations  {self.iterations}",
            f"time        {self.solve_time * 1e3:.1f} ms",
        ]
        if self.message:
            lines.append(f"message     {self.message}")
        lines.append("-" * 40)
        return "\n".join(lines)
