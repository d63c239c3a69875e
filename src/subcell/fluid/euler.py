"""Compressible Euler equations in two dimensions.

Conservative variables ``u = (rho, rho_v1, rho_v2, rho_e)`` with the ideal
gas closure ``p = (gamma - 1) (rho_e - |rho v|^2 / (2 rho))``.

All public methods are vectorized: the variable axis is axis 0 and any
number of trailing node/face/element axes is allowed, so the same method
serves a single node vector of shape ``(4,)`` and a full solution array
of shape ``(4, n, n, nelements)``.

The Newton-bisection hot loop works on one node at a time and cannot be
vectorized; it calls the ``@njit`` scalar cores at the bottom of this
module instead of the NumPy methods.

Entropies:
    entropy_spec: modified specific entropy of Guermond et al.,
                  s = rho_e_internal * rho^(-gamma) (minimum principle)
    entropy_math: mathematical entropy -rho * s_thermo / (gamma - 1),
                  s_thermo = log(p) - gamma * log(rho) (convex, bounded above)

References:
    H. Ranocha, "Comparison of some entropy conservative numerical fluxes
    for the Euler equations", J. Sci. Comput. 76 (2018).
    J.-L. Guermond, M. Nazarov, B. Popov, I. Tomas, "Second-order invariant
    domain preserving approximation of the Euler equations using convex
    limiting", SIAM J. Sci. Comput. 40 (2018).
"""

from __future__ import annotations

import numpy as np
from numba import njit

from subcell.constants import EULER_VARNAMES, GAMMA_AIR, NDIMS


def ln_mean(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Logarithmic mean (y - x) / log(y / x), stable for x ~ y.

    Uses the series expansion of Ismail & Roe in the form given by
    Ranocha when f^2 = ((x - y) / (x + y))^2 < 1e-4.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    f2 = (x * (x - 2.0 * y) + y * y) / (x * (x + 2.0 * y) + y * y)
    series = (x + y) / (2.0 + f2 * (2.0 / 3.0 + f2 * (2.0 / 5.0 + f2 * (2.0 / 7.0))))
    with np.errstate(divide="ignore", invalid="ignore"):
        exact = (y - x) / np.log(y / x)
    return np.where(f2 < 1.0e-4, series, exact)


class CompressibleEuler2D:
    """Ideal-gas compressible Euler equations (physics collaborator).

    Args:
        gamma: Ratio of specific heats.
    """

    nvariables = 4
    ndims = NDIMS

    def __init__(self, gamma: float = GAMMA_AIR) -> None:
        if gamma <= 1.0:
            raise ValueError(f"gamma must be > 1, got {gamma}")
        self.gamma = float(gamma)
        self.inv_gamma_minus_one = 1.0 / (self.gamma - 1.0)

    def varnames(self) -> tuple[str, ...]:
        return EULER_VARNAMES

    # --- Variable transforms ---

    def pressure(self, u: np.ndarray) -> np.ndarray:
        rho, rho_v1, rho_v2, rho_e = u[0], u[1], u[2], u[3]
        return (self.gamma - 1.0) * (rho_e - 0.5 * (rho_v1**2 + rho_v2**2) / rho)

    def prim2cons(self, prim: np.ndarray) -> np.ndarray:
        """(rho, v1, v2, p) -> (rho, rho_v1, rho_v2, rho_e)."""
        rho, v1, v2, p = prim[0], prim[1], prim[2], prim[3]
        rho_e = p * self.inv_gamma_minus_one + 0.5 * rho * (v1**2 + v2**2)
        return np.stack([rho, rho * v1, rho * v2, rho_e])

    def cons2prim(self, u: np.ndarray) -> np.ndarray:
        """(rho, rho_v1, rho_v2, rho_e) -> (rho, v1, v2, p)."""
        rho = u[0]
        return np.stack([rho, u[1] / rho, u[2] / rho, self.pressure(u)])

    def is_valid_state(self, u: np.ndarray) -> np.ndarray:
        """Positive density and positive pressure."""
        rho = u[0]
        with np.errstate(divide="ignore", invalid="ignore"):
            p = self.pressure(u)
        return (rho > 0.0) & (p > 0.0)

    # --- Fluxes and wave speeds ---

    def flux(self, u: np.ndarray, orientation: int) -> np.ndarray:
        """Physical flux in x (orientation 1) or y (orientation 2)."""
        rho, rho_v1, rho_v2, rho_e = u[0], u[1], u[2], u[3]
        v1 = rho_v1 / rho
        v2 = rho_v2 / rho
        p = (self.gamma - 1.0) * (rho_e - 0.5 * (rho_v1 * v1 + rho_v2 * v2))
        if orientation == 1:
            return np.stack([rho_v1, rho_v1 * v1 + p, rho_v1 * v2, (rho_e + p) * v1])
        return np.stack([rho_v2, rho_v2 * v1, rho_v2 * v2 + p, (rho_e + p) * v2])

    def max_abs_speed_naive(
        self, u_ll: np.ndarray, u_rr: np.ndarray, orientation: int,
    ) -> np.ndarray:
        """Upper bound max(|v_ll| + c_ll, |v_rr| + c_rr) of the signal speed."""
        rho_ll, rho_rr = u_ll[0], u_rr[0]
        v_ll = u_ll[orientation] / rho_ll
        v_rr = u_rr[orientation] / rho_rr
        c_ll = np.sqrt(np.abs(self.gamma * self.pressure(u_ll) / rho_ll))
        c_rr = np.sqrt(np.abs(self.gamma * self.pressure(u_rr) / rho_rr))
        return np.maximum(np.abs(v_ll) + c_ll, np.abs(v_rr) + c_rr)

    def flux_lax_friedrichs(
        self, u_ll: np.ndarray, u_rr: np.ndarray, orientation: int,
    ) -> np.ndarray:
        """Local Lax-Friedrichs (Rusanov) two-point flux."""
        lam = self.max_abs_speed_naive(u_ll, u_rr, orientation)
        f_ll = self.flux(u_ll, orientation)
        f_rr = self.flux(u_rr, orientation)
        return 0.5 * (f_ll + f_rr) - 0.5 * lam * (u_rr - u_ll)

    def flux_ranocha(
        self, u_ll: np.ndarray, u_rr: np.ndarray, orientation: int,
    ) -> np.ndarray:
        """Entropy-conserving and kinetic-energy-preserving two-point flux.

        Symmetric in its arguments and consistent: flux_ranocha(u, u) = flux(u).
        """
        rho_ll, rho_rr = u_ll[0], u_rr[0]
        v1_ll, v1_rr = u_ll[1] / rho_ll, u_rr[1] / rho_rr
        v2_ll, v2_rr = u_ll[2] / rho_ll, u_rr[2] / rho_rr
        p_ll, p_rr = self.pressure(u_ll), self.pressure(u_rr)

        rho_mean = ln_mean(rho_ll, rho_rr)
        inv_rho_p_mean = p_ll * p_rr / ln_mean(rho_ll * p_rr, rho_rr * p_ll)
        v1_avg = 0.5 * (v1_ll + v1_rr)
        v2_avg = 0.5 * (v2_ll + v2_rr)
        p_avg = 0.5 * (p_ll + p_rr)
        velocity_square_avg = 0.5 * (v1_ll * v1_rr + v2_ll * v2_rr)

        if orientation == 1:
            f1 = rho_mean * v1_avg
            f2 = f1 * v1_avg + p_avg
            f3 = f1 * v2_avg
            p_v = 0.5 * (p_ll * v1_rr + p_rr * v1_ll)
        else:
            f1 = rho_mean * v2_avg
            f2 = f1 * v1_avg
            f3 = f1 * v2_avg + p_avg
            p_v = 0.5 * (p_ll * v2_rr + p_rr * v2_ll)
        f4 = f1 * (velocity_square_avg + inv_rho_p_mean * self.inv_gamma_minus_one) + p_v
        return np.stack([f1, f2, f3, f4])

    # --- Entropies and their derivatives ---

    def entropy_thermodynamic(self, u: np.ndarray) -> np.ndarray:
        return np.log(self.pressure(u)) - self.gamma * np.log(u[0])

    def entropy_spec(self, u: np.ndarray) -> np.ndarray:
        """Modified specific entropy rho_e_internal * rho^(-gamma)."""
        rho = u[0]
        rho_e_internal = u[3] - 0.5 * (u[1] ** 2 + u[2] ** 2) / rho
        return rho_e_internal * rho ** (-self.gamma)

    def entropy_math(self, u: np.ndarray) -> np.ndarray:
        """Mathematical entropy -rho * s / (gamma - 1)."""
        return -u[0] * self.entropy_thermodynamic(u) * self.inv_gamma_minus_one

    def cons2entropy(self, u: np.ndarray) -> np.ndarray:
        """Entropy variables, the gradient of entropy_math w.r.t. u."""
        rho = u[0]
        v1 = u[1] / rho
        v2 = u[2] / rho
        p = self.pressure(u)
        s = np.log(p) - self.gamma * np.log(rho)
        rho_p = rho / p
        w1 = (self.gamma - s) * self.inv_gamma_minus_one - 0.5 * rho_p * (v1**2 + v2**2)
        return np.stack([w1, rho_p * v1, rho_p * v2, -rho_p])

    def cons2entropy_spec(self, u: np.ndarray) -> np.ndarray:
        """Gradient of entropy_spec w.r.t. u."""
        rho = u[0]
        v_square = (u[1] ** 2 + u[2] ** 2) / rho**2
        inv_rho_gammap1 = rho ** (-(self.gamma + 1.0))
        w1 = inv_rho_gammap1 * (0.5 * rho * (self.gamma + 1.0) * v_square - self.gamma * u[3])
        w2 = -u[1] * inv_rho_gammap1
        w3 = -u[2] * inv_rho_gammap1
        w4 = rho ** (-self.gamma)
        return np.stack([w1, w2, w3, w4])

    def dpdu(self, u: np.ndarray) -> np.ndarray:
        """Gradient of the pressure w.r.t. u."""
        rho = u[0]
        v1 = u[1] / rho
        v2 = u[2] / rho
        gm1 = self.gamma - 1.0
        return np.stack([0.5 * gm1 * (v1**2 + v2**2), -gm1 * v1, -gm1 * v2, gm1 * np.ones_like(rho)])

    def __repr__(self) -> str:
        return f"CompressibleEuler2D(gamma={self.gamma})"


# ============================================================
# Scalar kernels for the Newton-bisection loop
# ============================================================
# ``u`` is a single node state of shape (4,), ``d`` a direction in state
# space of shape (4,).  The *_dot kernels return grad(g)(u) . d without
# allocating the gradient.

@njit(cache=True)
def _pressure_core(u: np.ndarray, gamma: float) -> float:
    return (gamma - 1.0) * (u[3] - 0.5 * (u[1] * u[1] + u[2] * u[2]) / u[0])


@njit(cache=True)
def _is_valid_state_core(u: np.ndarray, gamma: float) -> bool:
    if u[0] <= 0.0:
        return False
    return _pressure_core(u, gamma) > 0.0


@njit(cache=True)
def _dpdu_dot_core(u: np.ndarray, d: np.ndarray, gamma: float) -> float:
    gm1 = gamma - 1.0
    v1 = u[1] / u[0]
    v2 = u[2] / u[0]
    return gm1 * (0.5 * (v1 * v1 + v2 * v2) * d[0] - v1 * d[1] - v2 * d[2] + d[3])


@njit(cache=True)
def _entropy_spec_core(u: np.ndarray, gamma: float) -> float:
    rho_e_internal = u[3] - 0.5 * (u[1] * u[1] + u[2] * u[2]) / u[0]
    return rho_e_internal * u[0] ** (-gamma)


@njit(cache=True)
def _entropy_spec_dot_core(u: np.ndarray, d: np.ndarray, gamma: float) -> float:
    rho = u[0]
    v_square = (u[1] * u[1] + u[2] * u[2]) / (rho * rho)
    inv_rho_gammap1 = rho ** (-(gamma + 1.0))
    w1 = inv_rho_gammap1 * (0.5 * rho * (gamma + 1.0) * v_square - gamma * u[3])
    w2 = -u[1] * inv_rho_gammap1
    w3 = -u[2] * inv_rho_gammap1
    w4 = rho ** (-gamma)
    return w1 * d[0] + w2 * d[1] + w3 * d[2] + w4 * d[3]


@njit(cache=True)
def _entropy_math_core(u: np.ndarray, gamma: float) -> float:
    p = _pressure_core(u, gamma)
    s = np.log(p) - gamma * np.log(u[0])
    return -u[0] * s / (gamma - 1.0)


@njit(cache=True)
def _entropy_math_dot_core(u: np.ndarray, d: np.ndarray, gamma: float) -> float:
    rho = u[0]
    v1 = u[1] / rho
    v2 = u[2] / rho
    p = _pressure_core(u, gamma)
    s = np.log(p) - gamma * np.log(rho)
    rho_p = rho / p
    w1 = (gamma - s) / (gamma - 1.0) - 0.5 * rho_p * (v1 * v1 + v2 * v2)
    return w1 * d[0] + rho_p * v1 * d[1] + rho_p * v2 * d[2] - rho_p * d[3]
