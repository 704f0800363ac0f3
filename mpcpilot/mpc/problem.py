"""
Horizon Problem Formulation
===========================

Cost and constraints of the receding-horizon problem, as a pure function of
the flat variable vector.

Decision variables (see layout.py):

    z = [x_*, y_*, psi_*, v_*, (cte_*, epsi_*), delta_*, a_*]

Problem:

    minimize    sum_k  w_cte cte_k^2 + w_epsi epsi_k^2 + w_v (v_k - v_ref)^2
              + sum_k  w_delta delta_k^2 + w_a a_k^2
              + sum_k  w_ddelta (delta_{k+1} - delta_k)^2 + w_da (a_{k+1} - a_k)^2
    subject to  g(z) = [initial state; dynamics residuals]
                cl <= g(z) <= cu

Dynamics for k = 0..N-2 (f is the reference polynomial):

    x_{k+1}    = x_k + v_k cos(psi_k) dt
    y_{k+1}    = y_k + v_k sin(psi_k) dt
    psi_{k+1}  = psi_k + v_k / lf delta_k dt
    v_{k+1}    = v_k + a(u_k, v_k) dt
    cte_{k+1}  = f(x_k) - y_k + v_k sin(epsi_k) dt
    epsi_{k+1} = psi_k - atan(f'(x_k)) + v_k delta_k / lf dt

With the "inline" formulation the last two rows are dropped and
cte_k = f(x_k) - y_k, epsi_k = psi_k - atan(f'(x_k)) are computed directly.
psi_k already includes the previous step's v delta / lf dt, so both
formulations agree on the heading-error lookahead.

Derivatives are analytic and dense; the problem is small (~160 variables).
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np

from ..config import ControllerConfig
from ..exceptions import InvalidInputError
from .dynamics import KinematicBicycle
from .layout import VariableLayout
from .reference import ReferencePolynomial


class ProblemFormulator:
    """
    Objective and constraint evaluator for one control tick.

    Closed over the configuration and a snapshot of the reference
    polynomial; holds no other state, so it can be evaluated repeatedly
    and in isolation.

    Args:
        reference: Reference polynomial for this tick
        config: Controller configuration
        layout: Variable layout (built from config if omitted)

    Example:
        >>> problem = ProblemFormulator(ReferencePolynomial([0, 0, 0, 0]))
        >>> cost, residuals = problem.evaluate(z)
    """

    def __init__(
        self,
        reference: ReferencePolynomial,
        config: Optional[ControllerConfig] = None,
        layout: Optional[VariableLayout] = None,
    ) -> None:
        self.config = config or ControllerConfig()
        self.reference = reference
        self.layout = layout or VariableLayout(
            self.config.horizon, self.config.explicit_errors
        )
        if self.layout.horizon != self.config.horizon:
            raise InvalidInputError(
                f"layout horizon {self.layout.horizon} does not match "
                f"config horizon {self.config.horizon}"
            )
        if self.layout.explicit_errors != self.config.explicit_errors:
            raise InvalidInputError("layout and config disagree on the formulation")

        self.model = KinematicBicycle.from_config(self.config)
        self.weights = self.config.weights
        self.dt = self.config.dt
        self.lf = self.config.lf
        self.reference_speed = self.config.reference_speed

    @property
    def n_vars(self) -> int:
        return self.layout.n_vars

    @property
    def n_constraints(self) -> int:
        return self.layout.n_constraints

    def _split(self, z: np.ndarray) -> Dict[str, np.ndarray]:
        return self.layout.split(self.layout.check(z))

    def tracking_errors(self, z: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Cross-track and heading error at every step."""
        s = self._split(z)
        if self.layout.explicit_errors:
            return s["cte"].copy(), s["epsi"].copy()
        x = s["x"]
        return (
            np.asarray(self.reference.cross_track_error(x, s["y"])),
            np.asarray(self.reference.heading_error(x, s["psi"])),
        )

    # ------------------------------------------------------------------
    # Objective
    # ------------------------------------------------------------------

    def objective(self, z: np.ndarray) -> float:
        """Weighted quadratic cost."""
        s = self._split(z)
        w = self.weights
        cte, epsi = self.tracking_errors(z)

        cost = w.cte * np.sum(cte ** 2)
        cost += w.epsi * np.sum(epsi ** 2)
        cost += w.speed * np.sum((s["v"] - self.reference_speed) ** 2)

        # Actuator use
        cost += w.steering * np.sum(s["delta"] ** 2)
        cost += w.throttle * np.sum(s["a"] ** 2)

        # Gap between sequential actuations
        cost += w.steering_rate * np.sum(np.diff(s["delta"]) ** 2)
        cost += w.throttle_rate * np.sum(np.diff(s["a"]) ** 2)

        return float(cost)

    def gradient(self, z: np.ndarray) -> np.ndarray:
        """Gradient of the objective."""
        s = self._split(z)
        w = self.weights
        L = self.layout
        g = np.zeros(L.n_vars)
        cte, epsi = self.tracking_errors(z)

        if L.explicit_errors:
            g[L["cte"].slice] = 2.0 * w.cte * cte
            g[L["epsi"].slice] = 2.0 * w.epsi * epsi
        else:
            x = s["x"]
            slope = self.reference.derivative(x)
            dheading = self.reference.heading_derivative(x)
            g[L["x"].slice] += 2.0 * w.cte * cte * slope - 2.0 * w.epsi * epsi * dheading
            g[L["y"].slice] += -2.0 * w.cte * cte
            g[L["psi"].slice] += 2.0 * w.epsi * epsi

        g[L["v"].slice] += 2.0 * w.speed * (s["v"] - self.reference_speed)
        g[L["delta"].slice] += 2.0 * w.steering * s["delta"]
        g[L["a"].slice] += 2.0 * w.throttle * s["a"]

        g[L["delta"].slice] += _gap_gradient(s["delta"], w.steering_rate)
        g[L["a"].slice] += _gap_gradient(s["a"], w.throttle_rate)

        return g

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    def constraints(self, z: np.ndarray) -> np.ndarray:
        """
        Constraint vector g(z).

        Row layout.field.start holds the initial value of each state field;
        the rows after it hold that field's dynamics residuals.
        """
        s = self._split(z)
        L = self.layout
        dt, lf = self.dt, self.lf
        g = np.zeros(L.n_constraints)

        for name in L.state_fields:
            g[L[name].start] = s[name][0]

        x0, x1 = s["x"][:-1], s["x"][1:]
        y0, y1 = s["y"][:-1], s["y"][1:]
        psi0, psi1 = s["psi"][:-1], s["psi"][1:]
        v0, v1 = s["v"][:-1], s["v"][1:]
        delta0 = s["delta"]
        a0 = s["a"]

        g[_rows(L, "x")] = x1 - (x0 + v0 * np.cos(psi0) * dt)
        g[_rows(L, "y")] = y1 - (y0 + v0 * np.sin(psi0) * dt)
        g[_rows(L, "psi")] = psi1 - (psi0 + v0 / lf * delta0 * dt)
        g[_rows(L, "v")] = v1 - (v0 + self.model.acceleration(a0, v0) * dt)

        if L.explicit_errors:
            cte1 = s["cte"][1:]
            epsi0, epsi1 = s["epsi"][:-1], s["epsi"][1:]
            f0 = self.reference.evaluate(x0)
            psides0 = self.reference.heading(x0)
            g[_rows(L, "cte")] = cte1 - ((f0 - y0) + v0 * np.sin(epsi0) * dt)
            g[_rows(L, "epsi")] = epsi1 - ((psi0 - psides0) + v0 * delta0 / lf * dt)

        return g

    def jacobian(self, z: np.ndarray) -> np.ndarray:
        """Jacobian of the constraint vector, shape (n_constraints, n_vars)."""
        s = self._split(z)
        L = self.layout
        dt, lf = self.dt, self.lf
        J = np.zeros((L.n_constraints, L.n_vars))

        for name in L.state_fields:
            J[L[name].start, L[name].start] = 1.0

        k = np.arange(L.horizon - 1)
        X = L["x"].start + k
        Y = L["y"].start + k
        PSI = L["psi"].start + k
        V = L["v"].start + k
        D = L["delta"].start + k
        A = L["a"].start + k

        x0 = s["x"][:-1]
        psi0 = s["psi"][:-1]
        v0 = s["v"][:-1]
        delta0 = s["delta"]
        a0 = s["a"]
        cos0, sin0 = np.cos(psi0), np.sin(psi0)

        # Each field's rows line up with the same field's variables, so the
        # next-state column of row r is r itself.
        rows = _rows(L, "x")
        J[rows, rows] = 1.0
        J[rows, X] = -1.0
        J[rows, V] = -cos0 * dt
        J[rows, PSI] = v0 * sin0 * dt

        rows = _rows(L, "y")
        J[rows, rows] = 1.0
        J[rows, Y] = -1.0
        J[rows, V] = -sin0 * dt
        J[rows, PSI] = -v0 * cos0 * dt

        rows = _rows(L, "psi")
        J[rows, rows] = 1.0
        J[rows, PSI] = -1.0
        J[rows, V] = -delta0 / lf * dt
        J[rows, D] = -v0 / lf * dt

        da_du, da_dv = self.model.acceleration_partials(a0, v0)
        rows = _rows(L, "v")
        J[rows, rows] = 1.0
        J[rows, V] = -1.0 - da_dv * dt
        J[rows, A] = -da_du * dt

        if L.explicit_errors:
            EPSI = L["epsi"].start + k
            epsi0 = s["epsi"][:-1]

            rows = _rows(L, "cte")
            J[rows, rows] = 1.0
            J[rows, X] = -self.reference.derivative(x0)
            J[rows, Y] = 1.0
            J[rows, V] = -np.sin(epsi0) * dt
            J[rows, EPSI] = -v0 * np.cos(epsi0) * dt

            rows = _rows(L, "epsi")
            J[rows, rows] = 1.0
            J[rows, PSI] = -1.0
            J[rows, X] = self.reference.heading_derivative(x0)
            J[rows, V] = -delta0 / lf * dt
            J[rows, D] = -v0 / lf * dt

        return J

    def evaluate(self, z: np.ndarray) -> Tuple[float, np.ndarray]:
        """(objective, constraint residuals) at z."""
        return self.objective(z), self.constraints(z)

    __call__ = evaluate

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def rollout(self, z: np.ndarray, initial_state: np.ndarray) -> np.ndarray:
        """
        Dynamically consistent copy of z.

        Keeps the actuators of z, sets the initial state and propagates the
        model so every dynamics residual is zero. Used to build a starting
        point when there is no previous solution to warm start from.
        """
        L = self.layout
        out = L.check(z).copy()
        initial_state = np.asarray(initial_state, dtype=np.float64)
        for name, value in zip(L.state_fields, initial_state):
            out[L[name].start] = value

        s = L.split(out)
        dt, lf = self.dt, self.lf
        for k in range(L.horizon - 1):
            x, y, psi, v = s["x"][k], s["y"][k], s["psi"][k], s["v"][k]
            delta, u = s["delta"][k], s["a"][k]
            s["x"][k + 1], s["y"][k + 1], s["psi"][k + 1], s["v"][k + 1] = (
                self.model.step(np.array([x, y, psi, v]), delta, u, dt)
            )
            if L.explicit_errors:
                s["cte"][k + 1] = (
                    self.reference.evaluate(x) - y + v * np.sin(s["epsi"][k]) * dt
                )
                s["epsi"][k + 1] = (
                    psi - self.reference.heading(x) + v * delta / lf * dt
                )
        return out


def _rows(layout: VariableLayout, name: str) -> np.ndarray:
    """Dynamics residual rows of one state field."""
    return layout[name].indices(offset=1)


def _gap_gradient(u: np.ndarray, weight: float) -> np.ndarray:
    """Gradient of weight * sum (u[k+1] - u[k])^2."""
    g = np.zeros_like(u)
    gap = np.diff(u)
    g[:-1] -= 2.0 * weight * gap
    g[1:] += 2.0 * weight * gap
    return g
