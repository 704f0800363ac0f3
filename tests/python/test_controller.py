"""
Tests for the path-tracking controller.

Tests covering:
1. Session lifecycle
2. Command extraction and sign conventions
3. Solver wiring (warm start, pinned initial state, status handling)
4. Tuning statistics and crash detection
5. Real solves on simple roads
"""

import logging

import numpy as np
import pytest

from conftest import RecordingSolver


def _telemetry(x=0.0, y=0.0, psi=0.0, speed=10.0, steering_angle=0.0, throttle=0.0, n=6):
    from mpcpilot import Telemetry

    xs = np.arange(n) * 10.0
    return Telemetry(
        ptsx=xs, ptsy=np.zeros(n), x=x, y=y, psi=psi, speed=speed,
        steering_angle=steering_angle, throttle=throttle,
    )


@pytest.fixture
def make_controller(small_config, clock):
    from mpcpilot import Controller

    def make(solver=None, **changes):
        config = small_config.with_updates(**changes) if changes else small_config
        controller = Controller(config, solver=solver or RecordingSolver(), clock=clock)
        controller.reset()
        return controller

    return make


class TestLifecycle:

    def test_starts_idle(self, small_config):
        """New controller waits for a reset."""
        from mpcpilot import Controller, ControllerState

        controller = Controller(small_config)
        assert controller.state == ControllerState.IDLE
        assert controller.close_code is None

    def test_update_before_reset(self, small_config):
        """Update before reset is refused."""
        from mpcpilot import Controller, SessionStateError

        with pytest.raises(SessionStateError):
            Controller(small_config).update(_telemetry())

    def test_reset_clears_buffer(self, make_controller):
        """Reset clears the horizon buffer and reference."""
        controller = make_controller(RecordingSolver(delta0=0.1))
        controller.update(_telemetry())
        assert controller.n_updates == 1

        controller.reset()
        assert controller.n_updates == 0
        np.testing.assert_allclose(controller.vars, 0.0)
        assert controller.reference.points == []

    def test_disconnect(self, make_controller):
        """Disconnect classifies the close code and ends the session."""
        from mpcpilot import ControllerState, RunOutcome, SessionStateError

        controller = make_controller()
        assert controller.disconnect(4001) == RunOutcome.CRASHED
        assert controller.state == ControllerState.DISCONNECTED
        with pytest.raises(SessionStateError):
            controller.update(_telemetry())

        controller.reset()
        assert controller.disconnect(1000) == RunOutcome.FAILED

    def test_insufficient_waypoints(self, make_controller):
        """Too few waypoints reject the tick."""
        from mpcpilot import InsufficientWaypointsError

        controller = make_controller()
        with pytest.raises(InsufficientWaypointsError):
            controller.update(_telemetry(n=3))


class TestCommand:

    def test_left_plan_steers_left(self, make_controller):
        """Left model steering becomes negative actuator steering."""
        controller = make_controller(RecordingSolver(delta0=0.1))
        command = controller.update(_telemetry())

        # Positive model steering (left) is negative on the actuator
        assert command.steering == pytest.approx(-0.1 / controller.config.max_steering)

    def test_steering_clipped(self, make_controller):
        """Steering command is clipped to [-1, 1]."""
        controller = make_controller(RecordingSolver(delta0=-2.0))
        assert controller.update(_telemetry()).steering == 1.0

    def test_throttle_normalized(self, make_controller):
        """Acceleration is normalized by its limit."""
        controller = make_controller(RecordingSolver(a0=0.5), acceleration_limit=2.0)
        assert controller.update(_telemetry()).throttle == pytest.approx(0.25)

    def test_throttle_clipped(self, make_controller):
        """Throttle command is clipped to [-1, 1]."""
        controller = make_controller(RecordingSolver(a0=3.0))
        assert controller.update(_telemetry()).throttle == 1.0

    def test_command_contents(self, make_controller):
        """Command carries the plan, overlay and status."""
        from mpcpilot import Status

        controller = make_controller()
        command = controller.update(_telemetry())

        assert len(command.mpc_x) == controller.config.horizon
        assert len(command.mpc_y) == controller.config.horizon
        assert len(command.next_x) == 6
        np.testing.assert_allclose(command.next_y, 0.0, atol=1e-9)
        assert command.status == Status.OPTIMAL
        assert command.latency > 0

    def test_series_accessors(self, make_controller):
        """Every horizon series has the right length."""
        controller = make_controller()
        controller.update(_telemetry())
        horizon = controller.config.horizon

        for values in (controller.x_values(), controller.y_values(), controller.psi_values(),
                       controller.v_values(), controller.cte_values(), controller.epsi_values()):
            assert len(values) == horizon
        assert len(controller.delta_values()) == horizon - 1
        assert len(controller.throttle_values()) == horizon - 1

    def test_inline_error_series(self, make_controller):
        """Inline formulation derives cte from the reference."""
        controller = make_controller(formulation="inline")
        controller.update(_telemetry(y=-1.0))
        cte = controller.cte_values()
        assert len(cte) == controller.config.horizon
        assert cte[0] == pytest.approx(1.0, abs=1e-6)


class TestSolverWiring:

    def test_first_tick_uses_consistent_rollout(self, make_controller):
        """First tick starts from a dynamically consistent rollout."""
        solver = RecordingSolver()
        controller = make_controller(solver)
        controller.update(_telemetry(speed=10.0))

        call = solver.calls[0]
        layout = controller.layout
        g = call["problem"].constraints(call["x0"])
        for name in layout.state_fields:
            np.testing.assert_allclose(g[layout[name].indices(offset=1)], 0.0, atol=1e-9)

    def test_initial_state_pinned(self, make_controller):
        """Initial state is pinned through the constraint bounds."""
        solver = RecordingSolver()
        controller = make_controller(solver)
        controller.update(_telemetry(y=-1.0, speed=10.0))

        call = solver.calls[0]
        layout = controller.layout
        state = controller.vehicle.as_array()
        for name, value in zip(layout.state_fields, state):
            row = layout[name].start
            assert call["constraint_l"][row] == value
            assert call["constraint_u"][row] == value
            assert call["x0"][row] == value

        # Path one metre to the left, straight ahead
        assert controller.vehicle.cte == pytest.approx(1.0)
        assert controller.vehicle.epsi == pytest.approx(0.0, abs=1e-9)

    def test_warm_start_from_previous_solution(self, make_controller):
        """Later ticks warm start from the previous plan."""
        solver = RecordingSolver(delta0=0.05)
        controller = make_controller(solver)
        controller.update(_telemetry())
        previous = controller.vars.copy()
        controller.update(_telemetry(x=1.0))

        x0 = solver.calls[1]["x0"]
        layout = controller.layout
        delta = layout["delta"]
        np.testing.assert_allclose(x0[delta.slice], previous[delta.slice])

    def test_solve_options(self, make_controller):
        """Solve budget and iteration limit reach the solver."""
        solver = RecordingSolver()
        controller = make_controller(solver)
        controller.update(_telemetry())

        options = solver.calls[0]["options"]
        assert options["time_limit"] == controller.config.solve_budget
        assert options["max_iterations"] == controller.config.max_iterations

    def test_steering_telemetry_converted_to_model_convention(self, make_controller):
        """Reported steering is flipped to the model convention."""
        controller = make_controller()
        # Last command turned right
        controller.update(_telemetry(steering_angle=0.1, speed=10.0))
        assert controller.vehicle.psi < 0

    def test_non_success_adopted_and_logged(self, make_controller, caplog):
        """Unconverged plans are adopted and logged."""
        from mpcpilot import Status

        solver = RecordingSolver(delta0=0.2, status=Status.MAX_ITERATIONS)
        controller = make_controller(solver)
        with caplog.at_level(logging.WARNING, logger="mpcpilot.mpc.controller"):
            command = controller.update(_telemetry())

        assert command.status == Status.MAX_ITERATIONS
        assert controller.vars[controller.layout["delta"].start] == 0.2
        assert "max_iterations" in caplog.text


class TestTuning:

    def test_no_stats_outside_tuning(self, make_controller, clock):
        """Statistics stay untouched outside tuning mode."""
        controller = make_controller()
        clock.advance(0.1)
        controller.update(_telemetry())
        assert controller.stats.distance == 0.0

    def test_trapezoidal_integration(self, make_controller):
        """Distance and absolute cte are trapezoidal integrals."""
        controller = make_controller(tuning=True)
        controller.track_run(0.0, 10.0, 1.0)
        controller.track_run(1.0, 20.0, -3.0)

        stats = controller.stats.to_dict()
        assert stats["distance"] == pytest.approx(15.0)
        assert stats["total_absolute_cte"] == pytest.approx(2.0)
        assert stats["runtime"] == pytest.approx(1.0)
        assert not stats["crashed"]

    def test_no_crash_during_warmup(self, make_controller):
        """Crash conditions are ignored during warm-up."""
        from mpcpilot import ControllerState

        controller = make_controller(tuning=True)
        controller.track_run(5.0, 20.0, 6.0)
        controller.track_run(9.0, 1.0, 0.0)
        assert controller.state == ControllerState.RUNNING
        assert not controller.stats.crashed

    def test_crash_on_cte_after_warmup(self, make_controller):
        """Large cte after warm-up ends the run as crashed."""
        from mpcpilot import CloseCode, ControllerState, SessionStateError

        controller = make_controller(tuning=True)
        controller.track_run(10.5, 20.0, 4.0)
        assert controller.state == ControllerState.RUNNING
        controller.track_run(11.0, 20.0, -4.6)

        assert controller.stats.crashed
        assert controller.state == ControllerState.CRASHED
        assert controller.close_code == CloseCode.CRASHED
        with pytest.raises(SessionStateError):
            controller.update(_telemetry())

    def test_crash_on_low_speed_after_warmup(self, make_controller):
        """Low speed after warm-up ends the run as crashed."""
        from mpcpilot import ControllerState

        controller = make_controller(tuning=True)
        controller.track_run(12.0, 4.0, 0.0)
        assert controller.state == ControllerState.CRASHED

    def test_timeout(self, make_controller):
        """Reaching max_runtime ends the run as timed out."""
        from mpcpilot import CloseCode, ControllerState

        controller = make_controller(tuning=True, max_runtime=30.0)
        controller.track_run(29.0, 20.0, 0.1)
        assert controller.state == ControllerState.RUNNING
        controller.track_run(30.0, 20.0, 0.1)

        assert controller.state == ControllerState.TIMED_OUT
        assert controller.close_code == CloseCode.TIMED_OUT
        assert not controller.stats.crashed

    def test_update_tracks_measured_cte(self, make_controller, clock):
        """Tuning uses the measured cte of the vehicle."""
        controller = make_controller(tuning=True)
        controller.update(_telemetry(y=-1.0))
        assert controller.stats.previous_cte == pytest.approx(1.0)
        assert controller.stats.previous_speed == 10.0


@pytest.mark.integration
class TestRealSolves:
    """End-to-end ticks through the SLSQP adapter."""

    def test_on_path_keeps_straight(self, small_config, clock):
        """On the path the plan stays straight."""
        from mpcpilot import Controller

        controller = Controller(small_config, clock=clock)
        controller.reset()
        command = controller.update(_telemetry(speed=10.0))

        assert abs(command.steering) < 0.05
        assert controller.status.has_solution
        np.testing.assert_allclose(controller.y_values(), 0.0, atol=0.05)

    def test_steers_towards_path_on_left(self, small_config, clock):
        """Path to the left makes the car steer left."""
        from mpcpilot import Controller

        controller = Controller(small_config, clock=clock)
        controller.reset()
        command = controller.update(_telemetry(y=-1.0, speed=10.0))

        # Path is to the left: steer left, which is negative on the actuator
        assert command.steering < 0

    def test_accelerates_below_reference_speed(self, small_config, clock):
        """Below reference speed the car accelerates."""
        from mpcpilot import Controller

        controller = Controller(small_config, clock=clock)
        controller.reset()
        command = controller.update(_telemetry(speed=2.0))
        assert command.throttle > 0

    def test_bounds_respected(self, small_config, clock):
        """Solution respects the variable bounds."""
        from mpcpilot import Controller
        from mpcpilot.mpc.layout import is_within_bounds

        controller = Controller(small_config, clock=clock)
        controller.reset()
        controller.update(_telemetry(y=-3.0, psi=0.3, speed=10.0))
        assert is_within_bounds(controller.vars, controller.lower, controller.upper, tol=1e-6)

    def test_straight_four_point_road(self, clock):
        """Straight four-point road keeps heading and steering near zero."""
        from mpcpilot import Controller, ControllerConfig, Telemetry

        config = ControllerConfig(horizon=10, reference_speed=20.0)
        controller = Controller(config, clock=clock)
        controller.reset()
        command = controller.update(Telemetry(
            ptsx=[0.0, 10.0, 20.0, 30.0], ptsy=[0.0, 0.0, 0.0, 0.0],
            x=0.0, y=0.0, psi=0.0, speed=20.0,
        ))

        np.testing.assert_allclose(controller.psi_values(), 0.0, atol=1e-3)
        np.testing.assert_allclose(controller.delta_values(), 0.0, atol=1e-3)
        assert np.abs(controller.cte_values()).max() < 0.05
        assert abs(command.steering) < 0.01


class TestCommandBounds:

    @pytest.mark.parametrize("seed", range(5))
    def test_commands_within_bounds(self, make_controller, seed):
        """Commands stay in [-1, 1] for any in-bounds plan."""
        from mpcpilot import Status

        class RandomSolver:
            """Returns a random point inside the variable bounds."""

            def __init__(self, seed):
                self.rng = np.random.default_rng(seed)

            def __call__(self, problem, x0, lb, ub, constraint_l, constraint_u, **options):
                from mpcpilot import SolveResult

                lo = np.maximum(lb, -100.0)
                hi = np.minimum(ub, 100.0)
                x = self.rng.uniform(lo, hi)
                return SolveResult(status=Status.OPTIMAL, objective=0.0, x=x)

        controller = make_controller(RandomSolver(seed))
        for _ in range(3):
            command = controller.update(_telemetry())
            assert -1.0 <= command.steering <= 1.0
            assert -1.0 <= command.throttle <= 1.0
