"""
Single-effect regression (SER) on sufficient statistics.

One SuSiE layer assumes exactly one variable carries a nonzero effect with
prior ``b ~ N(0, V)``. Given residual statistics ``XtR = X^T (y - X b_{-l})``
and the diagonal ``d`` of ``X^T X``, every variable has a marginal estimate
``betahat_j = XtR_j / d_j`` with sampling variance ``shat2_j = sigma2 / d_j``,
and the layer posterior is a softmax of per-variable log Bayes factors.
"""
from __future__ import annotations
from typing import Any, Dict, Tuple

import numpy as np
from scipy.special import logsumexp


def ser_statistics(XtR: np.ndarray, dXtX: np.ndarray, residual_variance: float) -> Tuple[np.ndarray, np.ndarray]:
    """Per-variable ``betahat`` and ``shat2``.

    Variables with ``d_j = 0`` (constant columns) get ``betahat = 0`` and an
    infinite ``shat2`` so their Bayes factor is one.
    """
    d = np.asarray(dXtX, float)
    good = np.isfinite(d) & (d > 0)
    betahat = np.zeros_like(d)
    shat2 = np.full_like(d, np.inf)
    betahat[good] = XtR[good] / d[good]
    shat2[good] = residual_variance / d[good]
    return betahat, shat2


def log_bayes_factors(V: float, betahat: np.ndarray, shat2: np.ndarray) -> np.ndarray:
    """log BF of ``b_j ~ N(0, V)`` against ``b_j = 0`` for each variable.

    ``log N(betahat; 0, V + shat2) - log N(betahat; 0, shat2)``, zero where
    ``V = 0`` or ``shat2`` is not finite and positive.
    """
    lbf = np.zeros_like(betahat, dtype=float)
    mask = np.isfinite(shat2) & (shat2 > 0)
    if V > 0 and np.any(mask):
        s2 = shat2[mask]
        denom = V + s2
        lbf[mask] = 0.5 * np.log(s2 / denom) + 0.5 * betahat[mask]**2 * V / (s2 * denom)
    return lbf


def ser_log_marginal(V: float, betahat: np.ndarray, shat2: np.ndarray, log_prior: np.ndarray) -> float:
    """log of the prior-weighted average Bayes factor, ``log sum_j pi_j BF_j``."""
    return float(logsumexp(log_bayes_factors(V, betahat, shat2) + log_prior))


def ser_log_marginal_grad(V: float, betahat: np.ndarray, shat2: np.ndarray, log_prior: np.ndarray) -> float:
    """Derivative of ``ser_log_marginal`` with respect to V (not log V)."""
    lbf = log_bayes_factors(V, betahat, shat2)
    lpo = lbf + log_prior
    alpha = np.exp(lpo - logsumexp(lpo))
    mask = np.isfinite(shat2) & (shat2 > 0)
    if not np.any(mask):
        return 0.0
    denom = V + shat2[mask]
    T2 = betahat[mask]**2 / shat2[mask]
    grad_vec = 0.5 * (1.0 / denom) * ((shat2[mask] / denom) * T2 - 1.0)
    grad_vec[np.isnan(grad_vec)] = 0.0
    return float(np.sum(alpha[mask] * grad_vec))


def single_effect_regression(XtR: np.ndarray, dXtX: np.ndarray, V: float, residual_variance: float,
                             log_prior: np.ndarray) -> Dict[str, Any]:
    """Posterior of one layer given residual statistics and a prior variance.

    Parameters
    ----------
    XtR : ndarray (p,)
        ``X^T r`` for the residual r left by the other layers (``z`` minus
        the correlation-weighted fit of the other layers on the z scale).
    dXtX : ndarray (p,)
        Diagonal of ``X^T X`` (all ones for an LD matrix on the z scale).
    V : float
        Prior variance of the effect, >= 0.
    residual_variance : float
        sigma2 > 0.
    log_prior : ndarray (p,)
        Log prior inclusion weights, summing to one on the probability scale.

    Returns
    -------
    dict
        ``alpha`` (posterior inclusion probabilities of the layer), ``mu`` and
        ``post_var`` (posterior mean and variance conditional on inclusion),
        ``mu2`` (second moment), ``lbf`` (per-variable log Bayes factors),
        ``lbf_model`` (layer log Bayes factor) and ``betahat``/``shat2``.
    """
    betahat, shat2 = ser_statistics(XtR, dXtX, residual_variance)
    lbf = log_bayes_factors(V, betahat, shat2)
    lpo = lbf + log_prior
    lbf_model = float(logsumexp(lpo))
    alpha = np.exp(lpo - lbf_model)
    p = betahat.size
    post_var = np.zeros(p)
    post_mean = np.zeros(p)
    if V > 0:
        prec = 1.0 / V + np.asarray(dXtX, float) / residual_variance
        post_var = 1.0 / prec
        post_mean = post_var * XtR / residual_variance
    post_mean2 = post_var + post_mean**2
    return dict(alpha=alpha, mu=post_mean, mu2=post_mean2, post_var=post_var, lbf=lbf, lbf_model=lbf_model,
                betahat=betahat, shat2=shat2)
