"""
mpcpilot Path-Tracking MPC
==========================

Receding-horizon control of a kinematic bicycle along a waypoint path.

Quick Start
-----------
>>> from mpcpilot.mpc import Controller, Telemetry
>>>
>>> controller = Controller()
>>> controller.reset()
>>> command = controller.update(Telemetry.from_mapping(message))
>>> reply = command.to_message()

Closed-Loop Simulation
----------------------
>>> from mpcpilot.mpc import simulate, circular_track
>>>
>>> history = simulate(Controller(), circular_track(), n_steps=200)

Classes
-------
Controller
    Per-session controller: reference fit, latency projection, solve
ReferenceEstimator
    Weighted waypoint memory and cubic reference fit
LatencyTracker
    Smoothed loop-latency estimate and state projection
ProblemFormulator
    Objective, constraints and their derivatives for one tick
VariableLayout
    Offsets of each field in the flat decision vector

Theory
------
At each tick the controller solves

    minimize    sum_k  w_cte cte_k^2 + w_epsi epsi_k^2 + w_v (v_k - v_ref)^2
              + actuator use + actuator rate terms
    subject to  kinematic bicycle dynamics over N steps
                |delta_k| <= max_steering, |a_k| <= throttle limit
                state_0 = latency-projected measured state

and applies the first actuation of the plan.
"""

from .dynamics import KinematicBicycle
from .layout import VariableLayout, variable_bounds, constraint_bounds
from .reference import ReferencePolynomial, ReferenceEstimator, weighted_polyfit
from .latency import LatencyTracker, VehicleState
from .problem import ProblemFormulator
from .telemetry import (
    Telemetry,
    ControlCommand,
    CloseCode,
    RunOutcome,
    outcome_for_close_code,
)
from .controller import Controller, ControllerState, TuningStats
from .simulation import (
    SimulatedClock,
    Track,
    simulate,
    straight_track,
    circular_track,
    sinusoidal_track,
)

__all__ = [
    # Controller
    "Controller",
    "ControllerState",
    "TuningStats",
    # Boundary records
    "Telemetry",
    "ControlCommand",
    "CloseCode",
    "RunOutcome",
    "outcome_for_close_code",
    # Building blocks
    "KinematicBicycle",
    "VariableLayout",
    "variable_bounds",
    "constraint_bounds",
    "ReferencePolynomial",
    "ReferenceEstimator",
    "weighted_polyfit",
    "LatencyTracker",
    "VehicleState",
    "ProblemFormulator",
    # Simulation
    "SimulatedClock",
    "Track",
    "simulate",
    "straight_track",
    "circular_track",
    "sinusoidal_track",
]
