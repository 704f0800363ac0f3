"""
mpcpilot: Model Predictive Control for Waypoint Following
=========================================================

mpcpilot steers a simulated car along a waypoint path by solving a small
nonlinear program every control tick and applying its first actuation.

Quick Start
-----------
>>> import mpcpilot
>>> controller = mpcpilot.Controller(mpcpilot.ControllerConfig(reference_speed=40))
>>> controller.reset()
>>> telemetry = mpcpilot.Telemetry.from_mapping(message)
>>> command = controller.update(telemetry)
>>> print(command.steering, command.throttle)

Tuning the cost weights in simulation:

>>> tuner = mpcpilot.CrossEntropyTuner(max_iters=5, seed=0)
>>> result = tuner.solve()
>>> print(result.best_weights)
"""

__version__ = "0.1.0"
__author__ = "mpcpilot Contributors"

# Import public API
from .config import ControllerConfig, CostWeights, ThrottleModel
from .solver import solve_nlp
from .result import SolveResult, Status
from .mpc import (
    Controller,
    ControllerState,
    Telemetry,
    ControlCommand,
    CloseCode,
    RunOutcome,
    outcome_for_close_code,
    simulate,
)
from .tuning import CrossEntropyTuner, TuningResult
from .exceptions import (
    MpcPilotError,
    InvalidTelemetryError,
    InsufficientWaypointsError,
    DimensionError,
    InvalidInputError,
    SessionStateError,
)

__all__ = [
    # Version
    "__version__",

    # Configuration
    "ControllerConfig",
    "CostWeights",
    "ThrottleModel",

    # Control
    "Controller",
    "ControllerState",
    "Telemetry",
    "ControlCommand",
    "CloseCode",
    "RunOutcome",
    "outcome_for_close_code",
    "simulate",

    # Solving
    "solve_nlp",
    "SolveResult",
    "Status",

    # Tuning
    "CrossEntropyTuner",
    "TuningResult",

    # Exceptions
    "MpcPilotError",
    "InvalidTelemetryError",
    "InsufficientWaypointsError",
    "DimensionError",
    "InvalidInputError",
    "SessionStateError",
]


def info() -> str:
    """Return information about the mpcpilot installation."""
    import platform

    import numpy
    import scipy

    lines = [
        f"mpcpilot version: {__version__}",
        f"Python version: {platform.python_version()}",
        f"Platform: {platform.platform()}",
        f"NumPy version: {numpy.__version__}",
        f"SciPy version: {scipy.__version__}",
    ]
    return "\n".join(lines)
