"""mpcpilot Solver Interface."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import numpy as np
from scipy.optimize import minimize

from .exceptions import DimensionError
from .result import SolveResult, Status

logger = logging.getLogger(__name__)

# Bounds at or beyond this magnitude are treated as absent.
INFINITE_BOUND = 1.0e19

# Any callable with solve_nlp's signature can stand in for it.
NLPSolver = Callable[..., SolveResult]


class _BudgetExceeded(Exception):
    """Raised from the iteration callback when the time budget runs out."""

    def __init__(self, x: np.ndarray) -> None:
        self.x = x
        super().__init__("solve budget exceeded")


_SLSQP_STATUS = {
    0: Status.OPTIMAL,
    4: Status.INFEASIBLE,
    9: Status.MAX_ITERATIONS,
}


def _violation(problem, x, lb, ub, constr_l, constr_u) -> float:
    """Largest amount by which x breaks a variable or constraint bound."""
    g = np.asarray(problem.constraints(x), dtype=np.float64)
    worst = 0.0
    if g.size:
        worst = max(worst, float(np.max(constr_l - g)), float(np.max(g - constr_u)))
    worst = max(worst, float(np.max(lb - x)), float(np.max(x - ub)))
    return worst


def solve_nlp(
    problem: Any,
    x0: np.ndarray,
    lb: np.ndarray,
    ub: np.ndarray,
    constraint_l: np.ndarray,
    constraint_u: np.ndarray,
    time_limit: Optional[float] = 0.5,
    max_iterations: int = 200,
    tolerance: float = 1e-6,
    verbose: bool = False,
) -> SolveResult:
    """
    Solve a bounded nonlinear program.

        minimize    problem.objective(x)
        subject to  constraint_l <= problem.constraints(x) <= constraint_u
                    lb <= x <= ub

    Uses SciPy's SLSQP with the analytic gradient and jacobian supplied by
    the problem. Rows with constraint_l == constraint_u are equalities.

    Args:
        problem: Object with objective, gradient, constraints and jacobian
        x0: Starting point (warm start)
        lb, ub: Variable bounds
        constraint_l, constraint_u: Constraint bounds
        time_limit: Wall-clock budget in seconds (None for no limit); when
            it runs out the latest iterate is returned with TIME_LIMIT
        max_iterations: Iteration limit
        tolerance: Convergence tolerance
        verbose: Print solver progress

    Returns:
        SolveResult; numerical failures are reported through the status,
        never raised
    """
    start_time = time.perf_counter()

    x0 = np.asarray(x0, dtype=np.float64).ravel()
    n = len(x0)
    lb = np.asarray(lb, dtype=np.float64).ravel()
    ub = np.asarray(ub, dtype=np.float64).ravel()
    constr_l = np.asarray(constraint_l, dtype=np.float64).ravel()
    constr_u = np.asarray(constraint_u, dtype=np.float64).ravel()

    if len(lb) != n or len(ub) != n:
        raise DimensionError(f"Bounds mismatch: lb={len(lb)}, ub={len(ub)}, n={n}")
    if len(constr_l) != len(constr_u):
        raise DimensionError(
            f"Constraint bounds mismatch: l={len(constr_l)}, u={len(constr_u)}"
        )

    x0 = np.clip(x0, lb, ub)
    bounds = [
        (l if l > -INFINITE_BOUND else None, u if u < INFINITE_BOUND else None)
        for l, u in zip(lb, ub)
    ]

    constraints = []
    eq_mask = np.abs(constr_l - constr_u) < 1e-12
    if eq_mask.any():
        b_eq = constr_l[eq_mask]
        constraints.append({
            'type': 'eq',
            'fun': lambda x, m=eq_mask, b=b_eq: problem.constraints(x)[m] - b,
            'jac': lambda x, m=eq_mask: problem.jacobian(x)[m],
        })
    ineq_mask = ~eq_mask
    lower_mask = ineq_mask & (constr_l > -INFINITE_BOUND)
    upper_mask = ineq_mask & (constr_u < INFINITE_BOUND)
    if lower_mask.any():
        l_ineq = constr_l[lower_mask]
        constraints.append({
            'type': 'ineq',
            'fun': lambda x, m=lower_mask, l=l_ineq: problem.constraints(x)[m] - l,
            'jac': lambda x, m=lower_mask: problem.jacobian(x)[m],
        })
    if upper_mask.any():
        u_ineq = constr_u[upper_mask]
        constraints.append({
            'type': 'ineq',
            'fun': lambda x, m=upper_mask, u=u_ineq: u - problem.constraints(x)[m],
            'jac': lambda x, m=upper_mask: -problem.jacobian(x)[m],
        })

    iterations = [0]
    deadline = None if time_limit is None else start_time + time_limit

    def callback(xk):
        iterations[0] += 1
        if deadline is not None and time.perf_counter() > deadline:
            raise _BudgetExceeded(np.array(xk, dtype=np.float64))

    try:
        result = minimize(
            problem.objective, x0, method='SLSQP',
            jac=problem.gradient, bounds=bounds, constraints=constraints,
            callback=callback,
            options={'maxiter': max_iterations, 'ftol': tolerance, 'disp': verbose},
        )
    except _BudgetExceeded as budget:
        x = budget.x
        return SolveResult(
            status=Status.TIME_LIMIT,
            objective=float(problem.objective(x)),
            x=x,
            iterations=iterations[0],
            solve_time=time.perf_counter() - start_time,
            constraint_violation=_violation(problem, x, lb, ub, constr_l, constr_u),
            message=f"time limit of {time_limit}s reached",
        )
    except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
        logger.warning("SLSQP failed: %s", e)
        return SolveResult(
            status=Status.NUMERICAL_ERROR,
            objective=float('nan'),
            x=x0,
            iterations=iterations[0],
            solve_time=time.perf_counter() - start_time,
            constraint_violation=float('nan'),
            message=str(e),
        )

    x = np.asarray(result.x, dtype=np.float64)
    if not np.all(np.isfinite(x)):
        return SolveResult(
            status=Status.NUMERICAL_ERROR,
            objective=float('nan'),
            x=x0,
            iterations=int(getattr(result, 'nit', 0)),
            solve_time=time.perf_counter() - start_time,
            constraint_violation=float('nan'),
            message=str(result.message),
        )

    return SolveResult(
        status=_SLSQP_STATUS.get(result.status, Status.NUMERICAL_ERROR),
        objective=float(result.fun),
        x=x,
        iterations=int(getattr(result, 'nit', iterations[0])),
        solve_time=time.perf_counter() - start_time,
        constraint_violation=_violation(problem, x, lb, ub, constr_l, constr_u),
        message=str(result.message),
    )
