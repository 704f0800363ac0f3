"""
Tests for the kinematic bicycle model.
"""

import numpy as np
import pytest


class TestKinematicBicycle:

    def test_straight_step(self):
        """Straight step moves along x."""
        from mpcpilot.mpc import KinematicBicycle

        model = KinematicBicycle()
        state = model.step(np.array([0.0, 0.0, 0.0, 10.0]), delta=0.0, u=0.0, dt=0.1)
        np.testing.assert_allclose(state, [1.0, 0.0, 0.0, 10.0])

    def test_positive_steering_turns_left(self):
        """Positive steering turns left."""
        from mpcpilot.mpc import KinematicBicycle

        model = KinematicBicycle(lf=2.67)
        state = model.step(np.array([0.0, 0.0, 0.0, 10.0]), delta=0.1, u=0.5, dt=0.05)
        np.testing.assert_allclose(state, [0.5, 0.0, 10.0 / 2.67 * 0.1 * 0.05, 10.025])
        assert state[2] > 0

    def test_throttle_model(self):
        """Throttle model maps throttle to acceleration."""
        from mpcpilot import ThrottleModel
        from mpcpilot.mpc import KinematicBicycle

        model = KinematicBicycle(throttle_model=ThrottleModel(gain=10, offset=0, top_speed=100))
        state = model.step(np.array([0.0, 0.0, 0.0, 50.0]), delta=0.0, u=1.0, dt=0.1)
        assert state[3] == pytest.approx(50.0 + 5.0 * 0.1)

    def test_acceleration_partials_direct(self):
        """Direct acceleration has unit throttle partial."""
        from mpcpilot.mpc import KinematicBicycle

        du, dv = KinematicBicycle().acceleration_partials(np.array([0.2, 0.4]), np.array([1.0, 2.0]))
        np.testing.assert_allclose(du, [1.0, 1.0])
        np.testing.assert_allclose(dv, [0.0, 0.0])

    def test_simulate_shape(self):
        """Simulate returns K + 1 states."""
        from mpcpilot.mpc import KinematicBicycle

        model = KinematicBicycle()
        controls = np.zeros((15, 2))
        traj = model.simulate(np.array([0.0, 0.0, 0.0, 5.0]), controls, dt=0.1)

        assert traj.shape == (16, 4)
        np.testing.assert_allclose(traj[-1], [7.5, 0.0, 0.0, 5.0])

    def test_invalid_lf(self):
        """Front axle distance must be positive."""
        from mpcpilot import InvalidInputError
        from mpcpilot.mpc import KinematicBicycle

        with pytest.raises(InvalidInputError):
            KinematicBicycle(lf=0.0)
