"""
pytest configuration and fixtures for mpcpilot tests.
"""

import pytest
import numpy as np


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def small_config():
    """Short horizon so real solves stay fast."""
    from mpcpilot import ControllerConfig

    return ControllerConfig(horizon=10, reference_speed=10.0)


@pytest.fixture
def straight_waypoints():
    """Six waypoints along the world x axis."""
    xs = np.array([0.0, 10.0, 20.0, 30.0, 40.0, 50.0])
    ys = np.zeros_like(xs)
    return xs, ys


@pytest.fixture
def clock():
    """Manually advanced clock starting at 0."""
    from mpcpilot.mpc import SimulatedClock

    return SimulatedClock()


class RecordingSolver:
    """
    Stand-in NLP solver.

    Returns the warm start with chosen first actuations and records every
    call, so controller tests do not depend on the optimizer.
    """

    def __init__(self, delta0=0.0, a0=0.0, status=None):
        from mpcpilot import Status

        self.delta0 = delta0
        self.a0 = a0
        self.status = status or Status.OPTIMAL
        self.calls = []

    def __call__(self, problem, x0, lb, ub, constraint_l, constraint_u, **options):
        from mpcpilot import SolveResult

        self.calls.append({
            "problem": problem,
            "x0": np.array(x0),
            "lb": np.array(lb),
            "ub": np.array(ub),
            "constraint_l": np.array(constraint_l),
            "constraint_u": np.array(constraint_u),
            "options": options,
        })
        layout = problem.layout
        x = np.array(x0, dtype=np.float64)
        x[layout["delta"].start] = self.delta0
        x[layout["a"].start] = self.a0
        return SolveResult(
            status=self.status,
            objective=problem.objective(x),
            x=x,
            iterations=1,
        )


@pytest.fixture
def recording_solver():
    return RecordingSolver()


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
