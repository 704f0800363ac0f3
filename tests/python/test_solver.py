"""
Tests for the SLSQP solver adapter.
"""

import numpy as np
import pytest


class Quadratic:
    """
    minimize (x0 - 1)^2 + (x1 - 2)^2  subject to  x0 + x1 = c.
    """

    def __init__(self, c=1.0):
        self.c = c

    def objective(self, x):
        return float((x[0] - 1) ** 2 + (x[1] - 2) ** 2)

    def gradient(self, x):
        return np.array([2 * (x[0] - 1), 2 * (x[1] - 2)])

    def constraints(self, x):
        return np.array([x[0] + x[1]])

    def jacobian(self, x):
        return np.array([[1.0, 1.0]])


class Rosenbrock:
    """Rosenbrock objective, no constraints."""

    def objective(self, x):
        return float(100 * (x[1] - x[0] ** 2) ** 2 + (1 - x[0]) ** 2)

    def gradient(self, x):
        return np.array([
            -400 * x[0] * (x[1] - x[0] ** 2) - 2 * (1 - x[0]),
            200 * (x[1] - x[0] ** 2),
        ])

    def constraints(self, x):
        return np.zeros(0)

    def jacobian(self, x):
        return np.zeros((0, 2))


class RecordingQuadratic(Quadratic):
    """Quadratic that remembers every point its objective was evaluated at."""

    def __init__(self, c=1.0):
        super().__init__(c)
        self.points = []

    def objective(self, x):
        self.points.append(np.array(x, dtype=np.float64))
        return super().objective(x)


class Broken(Quadratic):

    def objective(self, x):
        raise ValueError("evaluation failed")


INF = 1e19


class TestSolveNLP:

    def test_equality_constrained(self):
        """Equality-constrained quadratic."""
        from mpcpilot import Status, solve_nlp

        result = solve_nlp(
            Quadratic(c=1.0), np.zeros(2),
            np.full(2, -INF), np.full(2, INF), [1.0], [1.0],
        )
        assert result.status == Status.OPTIMAL
        np.testing.assert_allclose(result.x, [0.0, 1.0], atol=1e-5)
        assert result.objective == pytest.approx(2.0, abs=1e-6)
        assert result.constraint_violation < 1e-6

    def test_inequality_constrained(self):
        """Active inequality constraint."""
        from mpcpilot import Status, solve_nlp

        # x0 + x1 <= 1 is active, x0 + x1 >= -5 is not
        result = solve_nlp(
            Quadratic(), np.zeros(2),
            np.full(2, -INF), np.full(2, INF), [-5.0], [1.0],
        )
        assert result.status == Status.OPTIMAL
        np.testing.assert_allclose(result.x, [0.0, 1.0], atol=1e-5)

    def test_variable_bounds(self):
        """Variable bounds."""
        from mpcpilot import Status, solve_nlp

        result = solve_nlp(
            Quadratic(), np.zeros(2),
            np.array([-INF, -INF]), np.array([INF, 0.5]), [-INF], [INF],
        )
        assert result.status == Status.OPTIMAL
        np.testing.assert_allclose(result.x, [1.0, 0.5], atol=1e-5)

    def test_warm_start_clipped_to_bounds(self):
        """Warm start is clipped into the bounds."""
        from mpcpilot import solve_nlp

        problem = RecordingQuadratic()
        result = solve_nlp(
            problem, np.array([10.0, 10.0]),
            np.zeros(2), np.full(2, 3.0), [-INF], [INF],
            tolerance=1e-10,
        )
        np.testing.assert_allclose(problem.points[0], [3.0, 3.0])
        np.testing.assert_allclose(result.x, [1.0, 2.0], atol=1e-4)

    def test_failed_solve_returns_clipped_warm_start(self):
        """Failed solve returns the clipped warm start."""
        from mpcpilot import Status, solve_nlp

        result = solve_nlp(
            Broken(), np.array([10.0, -10.0]),
            np.zeros(2), np.full(2, 3.0), [1.0], [1.0],
        )
        assert result.status == Status.NUMERICAL_ERROR
        np.testing.assert_allclose(result.x, [3.0, 0.0])

    def test_time_limit(self):
        """Time budget returns the latest iterate."""
        from mpcpilot import Status, solve_nlp

        result = solve_nlp(
            Rosenbrock(), np.array([-1.2, 1.0]),
            np.full(2, -INF), np.full(2, INF), np.zeros(0), np.zeros(0),
            time_limit=0.0,
        )
        assert result.status == Status.TIME_LIMIT
        assert result.status.has_solution
        assert result.iterations >= 1
        assert np.all(np.isfinite(result.x))

    def test_iteration_limit(self):
        """Iteration limit is reported."""
        from mpcpilot import Status, solve_nlp

        result = solve_nlp(
            Rosenbrock(), np.array([-1.2, 1.0]),
            np.full(2, -INF), np.full(2, INF), np.zeros(0), np.zeros(0),
            time_limit=None, max_iterations=2,
        )
        assert result.status == Status.MAX_ITERATIONS

    def test_numerical_error_returns_warm_start(self):
        """Evaluation errors become NUMERICAL_ERROR."""
        from mpcpilot import Status, solve_nlp

        x0 = np.array([0.25, 0.5])
        result = solve_nlp(
            Broken(), x0, np.full(2, -INF), np.full(2, INF), [1.0], [1.0],
        )
        assert result.status == Status.NUMERICAL_ERROR
        np.testing.assert_allclose(result.x, x0)

    def test_dimension_mismatch(self):
        """Reject mismatched bounds."""
        from mpcpilot import DimensionError, solve_nlp

        with pytest.raises(DimensionError):
            solve_nlp(Quadratic(), np.zeros(2), np.zeros(3), np.zeros(2), [1.0], [1.0])
        with pytest.raises(DimensionError):
            solve_nlp(Quadratic(), np.zeros(2), np.zeros(2), np.ones(2), [1.0], [1.0, 2.0])


class TestSolveResult:

    def test_summary(self):
        """Summary and status helpers."""
        from mpcpilot import SolveResult, Status

        result = SolveResult(status=Status.OPTIMAL, objective=1.5, x=np.zeros(3))
        assert "optimal" in result.summary()
        assert Status.OPTIMAL.is_successful
        assert not Status.MAX_ITERATIONS.is_successful
        assert Status.MAX_ITERATIONS.has_solution
        assert not Status.NUMERICAL_ERROR.has_solution

    def test_repr_reports_violation(self):
        """repr reports the constraint violation."""
        from mpcpilot import SolveResult, Status

        result = SolveResult(
            status=Status.TIME_LIMIT, objective=3.0, x=np.zeros(2),
            constraint_violation=0.25,
        )
        assert "violation=2.50e-01" in repr(result)
        assert "time_limit" in result.summary()
