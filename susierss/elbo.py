"""
Evidence lower bound (ELBO) of the SuSiE model on sufficient statistics and
the convergence monitor that tracks it across IBSS sweeps.
"""
from __future__ import annotations
from typing import TYPE_CHECKING, Any, Dict, List

import numpy as np

if TYPE_CHECKING:
    from .sufficient_stats import SufficientStats


def get_ER2(stats: "SufficientStats", s: Dict[str, Any]) -> float:
    """Expected residual sum of squares ``E||y - Xb||^2`` under the posterior."""
    B = s["alpha"] * s["mu"]
    betabar = np.sum(B, axis=0)
    XB2 = float(np.sum((B @ stats.XtX) * B))
    postb2 = s["alpha"] * s["mu2"]
    return float(stats.yty - 2.0 * (betabar @ stats.Xty) + betabar @ (stats.XtX @ betabar)
                 - XB2 + np.sum(stats.d * np.sum(postb2, axis=0)))


def expected_loglik(stats: "SufficientStats", s: Dict[str, Any]) -> float:
    sigma2 = s["sigma2"]
    return float(-0.5 * stats.n * np.log(2 * np.pi * sigma2) - 0.5 / sigma2 * get_ER2(stats, s))


def ser_posterior_e_loglik(dXtX: np.ndarray, XtR: np.ndarray, sigma2: float, Eb: np.ndarray,
                           Eb2: np.ndarray) -> float:
    """Posterior expected log likelihood of one layer, relative to b = 0."""
    return float(-(0.5 / sigma2) * (-2.0 * np.sum(Eb * XtR) + np.sum(dXtX * Eb2)))


def get_objective(stats: "SufficientStats", s: Dict[str, Any]) -> float:
    """ELBO: expected log likelihood minus the KL divergence of every layer."""
    return float(expected_loglik(stats, s) - np.sum(s["KL"]))


class ConvergenceMonitor:
    """Track the ELBO per sweep and decide when to stop.

    Converged once the increase over the previous sweep falls below ``tol``.
    The tolerance is absolute, in ELBO units, not relative to the ELBO
    magnitude. Budget exhausted once ``max_iter`` sweeps ran without
    converging.
    """

    def __init__(self, tol: float = 1e-3, max_iter: int = 100):
        self.tol = float(tol)
        self.max_iter = int(max_iter)
        self.trace: List[float] = []
        self.status = "initializing"

    @property
    def niter(self) -> int:
        return len(self.trace)

    @property
    def converged(self) -> bool:
        return self.status == "converged"

    @property
    def last_change(self) -> float:
        if len(self.trace) < 2:
            return np.inf
        return self.trace[-1] - self.trace[-2]

    def update(self, value: float) -> bool:
        """Append one sweep's ELBO; return True when iteration should stop."""
        prev = self.trace[-1] if self.trace else -np.inf
        self.trace.append(float(value))
        if (value - prev) < self.tol:
            self.status = "converged"
            return True
        if self.niter >= self.max_iter:
            self.status = "budget_exhausted"
            return True
        self.status = "iterating"
        return False
