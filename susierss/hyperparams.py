"""
Prior and residual variance updates used inside the IBSS loop.
"""
from __future__ import annotations
from typing import Any, Dict, Optional

import numpy as np
from scipy.optimize import minimize_scalar, root_scalar

from .elbo import get_ER2
from .errors import InvalidInputError
from .ser import ser_log_marginal, ser_log_marginal_grad
from .sufficient_stats import SufficientStats


def neg_loglik_logscale(lV: float, betahat: np.ndarray, shat2: np.ndarray, log_prior: np.ndarray) -> float:
    """Negative SER log marginal likelihood with V on the log scale."""
    return -ser_log_marginal(float(np.exp(lV)), betahat, shat2, log_prior)


def negloglik_grad_logscale(lV: float, betahat: np.ndarray, shat2: np.ndarray, log_prior: np.ndarray) -> float:
    """Derivative of ``neg_loglik_logscale`` with respect to log V (chain rule)."""
    V = float(np.exp(lV))
    return -V * ser_log_marginal_grad(V, betahat, shat2, log_prior)


def est_V_uniroot(betahat: np.ndarray, shat2: np.ndarray, log_prior: np.ndarray) -> Optional[float]:
    """Root of the log-scale gradient by bracketing and Brent's method.

    Returns None when no sign change is found in any bracket, i.e. the
    likelihood is monotone in V over the searched range.
    """
    def g(lV):
        return negloglik_grad_logscale(lV, betahat, shat2, log_prior)
    for a, b in ((-10.0, 10.0), (-20.0, 20.0), (-30.0, 30.0)):
        fa, fb = g(a), g(b)
        if np.isfinite(fa) and np.isfinite(fb) and (fa * fb <= 0):
            sol = root_scalar(g, bracket=(a, b), method="brentq", xtol=1e-8, rtol=1e-8, maxiter=200)
            if sol.converged:
                return float(np.exp(sol.root))
    return None


def estimate_prior_variance(method: str, betahat: np.ndarray, shat2: np.ndarray, log_prior: np.ndarray,
                            V_init: float, alpha: Optional[np.ndarray] = None,
                            post_mean2: Optional[np.ndarray] = None,
                            check_null_threshold: float = 0.0) -> float:
    """Update the prior variance of one layer.

    Methods: "optim" maximizes the SER marginal likelihood over log V and
    keeps ``V_init`` if that is better; "uniroot" solves for a zero gradient;
    "EM" sets V to the posterior second moment ``sum(alpha * mu2)``; "simple"
    keeps ``V_init``. Every method ends with the null check: V is set to 0
    when ``loglik(0) + check_null_threshold >= loglik(V)``, which switches the
    layer off. A non-positive optimum clamps to 0.
    """
    V = float(V_init) if (V_init is not None and np.isfinite(V_init)) else 0.0
    if method == "optim":
        def f(lV):
            return neg_loglik_logscale(lV, betahat, shat2, log_prior)
        res = minimize_scalar(f, bounds=(-30.0, 15.0), method="bounded", options={"xatol": 1e-6, "maxiter": 500})
        lV_new = float(res.x)
        if V > 0 and f(lV_new) > f(np.log(V)):
            lV_new = np.log(V)
        V = float(np.exp(lV_new))
    elif method == "uniroot":
        V_root = est_V_uniroot(betahat, shat2, log_prior)
        V = V_root if V_root is not None else V
    elif method == "EM":
        if alpha is None or post_mean2 is None:
            raise InvalidInputError("EM requires alpha and post_mean2")
        V = float(np.sum(alpha * post_mean2))
    elif method != "simple":
        raise InvalidInputError(f"Invalid option for estimate_prior_method: {method!r}")
    if not np.isfinite(V) or V <= 0:
        return 0.0
    if ser_log_marginal(0.0, betahat, shat2, log_prior) + check_null_threshold >= \
            ser_log_marginal(V, betahat, shat2, log_prior):
        V = 0.0
    return V


def estimate_residual_variance(stats: SufficientStats, s: Dict[str, Any], lowerbound: float = 0.0,
                               upperbound: float = np.inf) -> float:
    """``E||y - Xb||^2 / n`` under the current posterior, clamped to the bounds."""
    sigma2 = get_ER2(stats, s) / stats.n
    return float(min(max(sigma2, lowerbound), upperbound))
