"""Newton-bisection solve for nonlinear IDP constraints.

For a nonlinear bound (pressure positivity, specific-entropy minimum,
mathematical-entropy maximum) there is no closed-form limiting factor.
For each node and each of its four incident faces we look for the
largest admissible fraction beta in [0, 1 - alpha] of the face's
antidiffusive contribution:

    u(beta)  = u + beta * dt * F_face
    goal     = bound - g(u(beta))
    dgoal    = -grad g(u(beta)) . (dt * F_face)

Newton steps are taken while they stay inside the bracket [beta_L, beta_R];
otherwise (or if the derivative vanishes, the state is invalid, or beta
is NaN) a bisection step narrows the bracket.  An invalid intermediate
state never aborts: it only shrinks the right end of the bracket.

The result alpha = 1 - beta may only grow.  A decrease beyond the absolute
tolerance indicates a broken limiter and is reported as ``RuntimeError``.

The per-node loop has a data-dependent iteration count, so it runs as a
numba kernel instead of NumPy array code.

Reference:
    H. Pazner, "Sparse invariant domain preserving discontinuous Galerkin
    methods with subcell convex limiting", CMAME 382 (2021).
"""

from __future__ import annotations

import logging

import numpy as np
from numba import njit

from subcell.constants import EPS
from subcell.fluid.euler import (
    _dpdu_dot_core,
    _entropy_math_core,
    _entropy_math_dot_core,
    _entropy_spec_core,
    _entropy_spec_dot_core,
    _is_valid_state_core,
    _pressure_core,
)

logger = logging.getLogger(__name__)

# Goal kinds
GOAL_PRESSURE = 0
GOAL_SPEC_ENTROPY = 1
GOAL_MATH_ENTROPY = 2

_GOAL_NAMES = {
    GOAL_PRESSURE: "pressure",
    GOAL_SPEC_ENTROPY: "spec_entropy",
    GOAL_MATH_ENTROPY: "math_entropy",
}


# ============================================================
# Scalar kernels
# ============================================================

@njit(cache=True)
def _goal_core(kind: int, bound: float, u: np.ndarray, gamma: float) -> float:
    if kind == GOAL_PRESSURE:
        return bound - _pressure_core(u, gamma)
    if kind == GOAL_SPEC_ENTROPY:
        return bound - _entropy_spec_core(u, gamma)
    return bound - _entropy_math_core(u, gamma)


@njit(cache=True)
def _dgoal_dbeta_core(kind: int, u: np.ndarray, dt_flux: np.ndarray, gamma: float) -> float:
    if kind == GOAL_PRESSURE:
        return -_dpdu_dot_core(u, dt_flux, gamma)
    if kind == GOAL_SPEC_ENTROPY:
        return -_entropy_spec_dot_core(u, dt_flux, gamma)
    return -_entropy_math_dot_core(u, dt_flux, gamma)


@njit(cache=True)
def _initial_check_core(kind: int, bound: float, goal: float, abstol: float) -> bool:
    if kind == GOAL_PRESSURE:
        return goal <= 0.0
    if kind == GOAL_SPEC_ENTROPY:
        return goal <= max(abstol, abs(bound) * abstol)
    return goal >= -max(abstol, abs(bound) * abstol)


@njit(cache=True)
def _final_check_core(kind: int, bound: float, goal: float, abstol: float) -> bool:
    if kind == GOAL_PRESSURE:
        return goal <= EPS and goal > -max(abstol, abs(bound) * abstol)
    return abs(goal) < max(abstol, abs(bound) * abstol)


@njit(cache=True)
def _newton_loop_core(
    beta: float,
    bound: float,
    u: np.ndarray,
    dt_flux: np.ndarray,
    kind: int,
    gamma: float,
    max_iterations: int,
    reltol: float,
    abstol: float,
) -> tuple[float, bool]:
    """Return ``(beta, converged)`` starting from the admissible ``beta``."""
    beta_L = 0.0
    beta_R = beta
    u_curr = u + beta * dt_flux
    goal = np.nan

    if _is_valid_state_core(u_curr, gamma):
        goal = _goal_core(kind, bound, u_curr, gamma)
        if _initial_check_core(kind, bound, goal, abstol):
            return beta, True

    for _ in range(max_iterations):
        beta_old = beta

        if _is_valid_state_core(u_curr, gamma):
            dgoal = _dgoal_dbeta_core(kind, u_curr, dt_flux, gamma)
        else:
            dgoal = 0.0

        if dgoal != 0.0:
            beta = beta - goal / dgoal

        if beta < beta_L or beta > beta_R or dgoal == 0.0 or np.isnan(beta):
            beta = 0.5 * (beta_L + beta_R)
            u_curr = u + beta * dt_flux
            if not _is_valid_state_core(u_curr, gamma):
                beta_R = beta
                continue
            goal = _goal_core(kind, bound, u_curr, gamma)
            if _initial_check_core(kind, bound, goal, abstol):
                beta_L = beta
            else:
                beta_R = beta
        else:
            u_curr = u + beta * dt_flux
            if not _is_valid_state_core(u_curr, gamma):
                beta_R = beta
                continue
            goal = _goal_core(kind, bound, u_curr, gamma)

        if abs(beta_old - beta) <= reltol:
            return beta, True
        if _final_check_core(kind, bound, goal, abstol):
            return beta, True

    return beta, False


@njit(cache=True)
def _newton_loops_alpha_core(
    alpha: np.ndarray,
    bounds: np.ndarray,
    u: np.ndarray,
    flux1: np.ndarray,
    flux2: np.ndarray,
    inverse_weights: np.ndarray,
    inverse_jacobian: np.ndarray,
    dt: float,
    gamma_constant: float,
    kind: int,
    gamma: float,
    max_iterations: int,
    reltol: float,
    abstol: float,
    info: np.ndarray,
) -> int:
    """Update ``alpha`` in place over all nodes; return the unconverged count.

    On an alpha decrease, ``info`` receives (1, element, i, j, old, new)
    and the kernel stops.
    """
    nvars = u.shape[0]
    n = u.shape[1]
    nelements = u.shape[3]
    u_node = np.empty(nvars)
    dt_flux = np.empty(nvars)
    unconverged = 0

    for element in range(nelements):
        for j in range(n):
            for i in range(n):
                for v in range(nvars):
                    u_node[v] = u[v, i, j, element]
                for face in range(4):
                    if face == 0:
                        factor = gamma_constant * inverse_jacobian[element] * inverse_weights[i]
                        for v in range(nvars):
                            dt_flux[v] = dt * factor * flux1[v, i, j, element]
                    elif face == 1:
                        factor = -gamma_constant * inverse_jacobian[element] * inverse_weights[i]
                        for v in range(nvars):
                            dt_flux[v] = dt * factor * flux1[v, i + 1, j, element]
                    elif face == 2:
                        factor = gamma_constant * inverse_jacobian[element] * inverse_weights[j]
                        for v in range(nvars):
                            dt_flux[v] = dt * factor * flux2[v, i, j, element]
                    else:
                        factor = -gamma_constant * inverse_jacobian[element] * inverse_weights[j]
                        for v in range(nvars):
                            dt_flux[v] = dt * factor * flux2[v, i, j + 1, element]

                    old_alpha = alpha[i, j, element]
                    beta, converged = _newton_loop_core(
                        1.0 - old_alpha, bounds[i, j, element], u_node, dt_flux,
                        kind, gamma, max_iterations, reltol, abstol,
                    )
                    if not converged:
                        unconverged += 1
                    new_alpha = 1.0 - beta
                    if old_alpha > new_alpha + abstol:
                        info[0] = 1.0
                        info[1] = element
                        info[2] = i
                        info[3] = j
                        info[4] = old_alpha
                        info[5] = new_alpha
                        return unconverged
                    alpha[i, j, element] = new_alpha
    return unconverged


# ============================================================
# Python wrappers
# ============================================================

def newton_bisection(
    u: np.ndarray,
    dt_flux: np.ndarray,
    bound: float,
    kind: int,
    gamma: float,
    alpha: float = 0.0,
    max_iterations: int = 10,
    tolerances: tuple[float, float] = (1.0e-12, 1.0e-14),
) -> tuple[float, bool]:
    """Solve for the admissible fraction of one face contribution.

    Args:
        u: Safe node state, shape (4,).
        dt_flux: Full face contribution ``dt * F``, shape (4,).
        bound: Value of the bound.
        kind: One of ``GOAL_PRESSURE``, ``GOAL_SPEC_ENTROPY``, ``GOAL_MATH_ENTROPY``.
        gamma: Ratio of specific heats.
        alpha: Limiting factor entering the solve.
        max_iterations: Iteration cap.
        tolerances: (relative, absolute) tolerances.

    Returns:
        ``(alpha, converged)`` with ``alpha = 1 - beta``.
    """
    reltol, abstol = tolerances
    beta, converged = _newton_loop_core(
        1.0 - alpha, float(bound),
        np.ascontiguousarray(u, dtype=np.float64),
        np.ascontiguousarray(dt_flux, dtype=np.float64),
        kind, gamma, max_iterations, reltol, abstol,
    )
    return 1.0 - beta, converged


def newton_loops_alpha(
    alpha: np.ndarray,
    bounds: np.ndarray,
    u: np.ndarray,
    flux1: np.ndarray,
    flux2: np.ndarray,
    inverse_weights: np.ndarray,
    inverse_jacobian: np.ndarray,
    dt: float,
    kind: int,
    gamma: float,
    gamma_constant: float,
    max_iterations: int,
    tolerances: tuple[float, float],
) -> int:
    """Raise ``alpha`` so that every face contribution respects ``bounds``.

    Returns the number of face solves that hit ``max_iterations``.

    Raises:
        RuntimeError: If a solve would lower an already finalized alpha.
    """
    reltol, abstol = tolerances
    info = np.zeros(6)
    unconverged = _newton_loops_alpha_core(
        alpha, bounds, u, flux1, flux2, inverse_weights, inverse_jacobian,
        float(dt), float(gamma_constant), kind, float(gamma),
        int(max_iterations), float(reltol), float(abstol), info,
    )
    if info[0] != 0.0:
        raise RuntimeError(
            f"alpha decreased during the {_GOAL_NAMES[kind]} solve at element "
            f"{int(info[1])}, node ({int(info[2])}, {int(info[3])}): "
            f"old {info[4]:.16e}, new {info[5]:.16e}"
        )
    return unconverged
