"""
Iterative Bayesian Stepwise Selection (IBSS) on sufficient statistics.

The fit context is a plain dict ``s`` holding the (L, p) layer arrays
``alpha``, ``mu``, ``mu2``, ``lbf_variable``, the length-L ``V``, ``KL`` and
``lbf`` vectors, the prior weights ``pi`` and the residual variance
``sigma2``. It is created by ``init_state``, updated in place once per sweep
by ``update_each_effect`` and never shared between fits.
"""
from __future__ import annotations
from typing import Any, Dict, Optional, Union

import numpy as np

from .elbo import ConvergenceMonitor, get_objective, ser_posterior_e_loglik
from .errors import InvalidInputError, NumericalInstabilityError
from .hyperparams import estimate_prior_variance, estimate_residual_variance
from .logging_utils import get_logger
from .options import IBSSOptions
from .ser import ser_statistics, single_effect_regression
from .sufficient_stats import SufficientStats

logger = get_logger(__name__)


def normalize_prior_weights(prior_weights: Optional[np.ndarray], p: int) -> np.ndarray:
    if prior_weights is None:
        return np.repeat(1.0 / p, p)
    pw = np.asarray(prior_weights, float).ravel()
    if pw.size != p:
        raise InvalidInputError(f"Prior weights must have length p={p}, got {pw.size}")
    if not np.all(np.isfinite(pw)) or np.any(pw < 0):
        raise InvalidInputError("Prior weights must be finite and non-negative")
    if np.sum(pw) <= 0:
        raise InvalidInputError("Prior weight must be > 0 for at least one variable.")
    return pw / np.sum(pw)


def init_state(p: int, L: int, V: Union[float, np.ndarray], sigma2: float,
               prior_weights: Optional[np.ndarray] = None) -> Dict[str, Any]:
    """Fresh fit context: uniform alpha, zero effects, per-layer prior variances."""
    if not (isinstance(L, (int, np.integer)) and L >= 1):
        raise InvalidInputError(f"L must be a positive integer, got {L!r}")
    V = np.asarray(V, dtype=np.float64)
    if V.ndim == 0:
        V = np.repeat(float(V), L)
    if V.shape != (L,):
        raise InvalidInputError(f"Prior variance must be a scalar or have length L={L}")
    if not np.all(np.isfinite(V)) or np.any(V < 0):
        raise InvalidInputError("Prior variance must be finite and non-negative")
    if not (np.isfinite(sigma2) and sigma2 > 0):
        raise InvalidInputError("Residual variance sigma2 must be positive")
    pi = normalize_prior_weights(prior_weights, p)
    with np.errstate(divide="ignore"):
        log_pi = np.log(pi)
    return dict(
        alpha=np.full((L, p), 1.0 / p, dtype=np.float64),
        mu=np.zeros((L, p), dtype=np.float64),
        mu2=np.zeros((L, p), dtype=np.float64),
        KL=np.full(L, np.nan),
        lbf=np.full(L, np.nan),
        lbf_variable=np.full((L, p), np.nan),
        sigma2=float(sigma2),
        V=V.copy(),
        pi=pi,
        log_pi=log_pi,
    )


def _check_layer(res: Dict[str, Any], l: int) -> None:
    bad = ~(np.isfinite(res["alpha"]) & np.isfinite(res["mu"]) & np.isfinite(res["mu2"]))
    if np.any(bad) or not np.isfinite(res["lbf_model"]):
        idx = np.flatnonzero(bad)
        raise NumericalInstabilityError(
            f"Non-finite posterior in layer {l} at variables {idx[:10].tolist()}; "
            "the LD matrix may be near-singular or inconsistent with z",
            layer=l, variables=idx)


def update_each_effect(stats: SufficientStats, s: Dict[str, Any], options: IBSSOptions) -> Dict[str, Any]:
    """One IBSS sweep: refresh every layer against the residual of the others."""
    XtX, Xty, d = stats.XtX, stats.Xty, stats.d
    L = s["alpha"].shape[0]
    method = options.estimate_prior_method if options.estimate_prior_variance else None
    XtXr = XtX @ np.sum(s["alpha"] * s["mu"], axis=0)
    for l in range(L):
        XtXr = XtXr - XtX @ (s["alpha"][l, :] * s["mu"][l, :])
        XtR = Xty - XtXr
        if method in ("optim", "uniroot", "simple"):
            betahat, shat2 = ser_statistics(XtR, d, s["sigma2"])
            s["V"][l] = estimate_prior_variance(method, betahat, shat2, s["log_pi"], V_init=float(s["V"][l]),
                                                check_null_threshold=options.check_null_threshold)
        res = single_effect_regression(XtR, d, float(s["V"][l]), s["sigma2"], s["log_pi"])
        _check_layer(res, l)
        if method == "EM":
            s["V"][l] = estimate_prior_variance("EM", res["betahat"], res["shat2"], s["log_pi"],
                                                V_init=float(s["V"][l]), alpha=res["alpha"],
                                                post_mean2=res["mu2"],
                                                check_null_threshold=options.check_null_threshold)
        s["alpha"][l, :] = res["alpha"]
        s["mu"][l, :] = res["mu"]
        s["mu2"][l, :] = res["mu2"]
        s["lbf"][l] = res["lbf_model"]
        s["lbf_variable"][l, :] = res["lbf"]
        s["KL"][l] = -res["lbf_model"] + ser_posterior_e_loglik(d, XtR, s["sigma2"], res["alpha"] * res["mu"],
                                                               res["alpha"] * res["mu2"])
        XtXr = XtXr + XtX @ (s["alpha"][l, :] * s["mu"][l, :])
    return s


def ibss(stats: SufficientStats, s: Dict[str, Any], options: IBSSOptions,
         estimate_residual: Optional[bool] = None) -> Dict[str, Any]:
    """Run IBSS sweeps until the ELBO converges or the iteration budget is spent.

    Adds ``elbo`` (one value per sweep), ``niter``, ``converged`` and
    ``status`` to the fit context and returns it. Running out of iterations
    is reported through ``converged=False``, not raised.
    """
    if estimate_residual is None:
        estimate_residual = options.estimate_residual_variance
    lower = options.residual_variance_lowerbound
    if lower is None:
        lower = stats.varY / 1e4
    monitor = ConvergenceMonitor(tol=options.tol, max_iter=options.max_iter)
    log = logger.info if options.verbose else logger.debug
    while True:
        update_each_effect(stats, s, options)
        if estimate_residual:
            s["sigma2"] = estimate_residual_variance(stats, s, lowerbound=lower,
                                                     upperbound=options.residual_variance_upperbound)
        elbo = get_objective(stats, s)
        if not np.isfinite(elbo):
            raise NumericalInstabilityError(f"ELBO became non-finite at iteration {monitor.niter + 1}")
        if monitor.trace and elbo < monitor.trace[-1] - 1e-6 * max(1.0, abs(monitor.trace[-1])):
            logger.warning("ELBO decreased from %.6f to %.6f at iteration %d",
                           monitor.trace[-1], elbo, monitor.niter + 1)
        stop = monitor.update(elbo)
        log("iter=%03d sigma2=%.6g ELBO=%.6f active_layers=%d", monitor.niter, s["sigma2"], elbo,
            int(np.sum(s["V"] > options.prior_tol)))
        if stop:
            break
    if not monitor.converged:
        logger.warning("IBSS algorithm did not converge in %d iterations (last ELBO change %.3g)",
                       options.max_iter, monitor.last_change)
    s["elbo"] = np.asarray(monitor.trace, float)
    s["niter"] = monitor.niter
    s["converged"] = monitor.converged
    s["status"] = monitor.status
    return s
