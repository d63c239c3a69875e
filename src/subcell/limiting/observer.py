"""Injectable recorders for limiting-coefficient diagnostics.

A limiter holds an ``AlphaObserver``.  With the default
``NullAlphaObserver`` the limiters skip every diagnostic computation (they
test ``observer.enabled`` once per call), so plotting output costs nothing
when it is off.

Recorders:
    IDPAlphaRecorder: running maximum of alpha and its volume-weighted,
        stage-averaged mean since the last report
    MCLAlphaRecorder: per variable the minimum face coefficient (alpha),
        the face-averaged coefficient (alpha_mean), the effective
        coefficient from the node flux budgets (alpha_eff), plus the
        pressure and entropy coefficients when those limiters are active
"""

from __future__ import annotations

import numpy as np

from subcell.constants import EPS


def node_volumes(weights: np.ndarray, inverse_jacobian: np.ndarray) -> np.ndarray:
    """Quadrature volume of every node, shape (n, n, nel)."""
    return (
        weights[:, None, None] * weights[None, :, None]
        / inverse_jacobian[None, None, :] ** 2
    )


class AlphaObserver:
    """Base observer; every hook is a no-op."""

    enabled = False

    def setup(self, nvars: int, nnodes: int, nelements: int) -> None:
        pass

    def reset(self) -> None:
        pass


class NullAlphaObserver(AlphaObserver):
    """Disabled observer."""

    def __repr__(self) -> str:
        return "NullAlphaObserver()"


class IDPAlphaRecorder(AlphaObserver):
    """Track ``alpha_max`` and the stage-averaged ``alpha_avg`` of the IDP limiter.

    Args:
        n_stages: Runge-Kutta stages per step (each stage contributes
            ``1 / n_stages`` of its volume average).
    """

    enabled = True

    def __init__(self, n_stages: int = 3) -> None:
        self.n_stages = n_stages
        self.alpha_max = 0.0
        self.alpha_avg = 0.0

    def record(self, alpha: np.ndarray, volumes: np.ndarray) -> None:
        self.alpha_max = max(self.alpha_max, float(np.max(alpha)))
        self.alpha_avg += float(np.sum(volumes * alpha)) / (self.n_stages * float(np.sum(volumes)))

    def reset(self) -> None:
        self.alpha_max = 0.0
        self.alpha_avg = 0.0

    def __repr__(self) -> str:
        return f"IDPAlphaRecorder(alpha_max={self.alpha_max:.4e}, alpha_avg={self.alpha_avg:.4e})"


class MCLAlphaRecorder(AlphaObserver):
    """Per-node coefficient arrays of the MCL limiter.

    Attributes:
        alpha: Minimum face coefficient per variable, shape (nvars, n, n, nel).
        alpha_mean: Mean face coefficient per variable.
        alpha_eff: Effective coefficient ``P / (Q + eps)`` per variable.
        alpha_pressure: Minimum pressure coefficient, shape (n, n, nel).
        alpha_mean_pressure: Mean pressure coefficient.
        alpha_entropy: Minimum entropy coefficient.
        alpha_mean_entropy: Mean entropy coefficient.
        P, Q: Limited and unlimited flux budgets per node and variable.
    """

    enabled = True

    def setup(self, nvars: int, nnodes: int, nelements: int) -> None:
        shape = (nvars, nnodes, nnodes, nelements)
        node_shape = (nnodes, nnodes, nelements)
        self.alpha = np.ones(shape)
        self.alpha_mean = np.zeros(shape)
        self.alpha_eff = np.zeros(shape)
        self.alpha_pressure = np.ones(node_shape)
        self.alpha_mean_pressure = np.zeros(node_shape)
        self.alpha_entropy = np.ones(node_shape)
        self.alpha_mean_entropy = np.zeros(node_shape)
        self.P = np.zeros(shape)
        self.Q = np.zeros(shape)

    def reset_block(self, elements: slice) -> None:
        """Reinitialize the arrays of one element block before limiting it."""
        self.alpha[..., elements] = 1.0
        self.alpha_mean[..., elements] = 0.0
        self.alpha_eff[..., elements] = 0.0
        self.alpha_pressure[..., elements] = 1.0
        self.alpha_mean_pressure[..., elements] = 0.0
        self.alpha_entropy[..., elements] = 1.0
        self.alpha_mean_entropy[..., elements] = 0.0
        self.P[..., elements] = 0.0
        self.Q[..., elements] = 0.0

    def finish_block(self, elements: slice) -> None:
        """Turn the flux budgets of one block into ``alpha_eff``."""
        self.alpha_eff[..., elements] = self.P[..., elements] / (self.Q[..., elements] + EPS)

    def __repr__(self) -> str:
        return "MCLAlphaRecorder()"
