"""
Column statistics and univariate (marginal) regression.

These produce the inputs of a summary-statistics fit from individual-level
data: per-variable ``betahat``, ``sebetahat`` and z-scores.
"""
from __future__ import annotations
from typing import Any, Dict, Optional

import numpy as np

from .errors import InvalidInputError


def compute_colSds(X: np.ndarray) -> np.ndarray:
    """Column standard deviations (ddof=1), clipped at zero against rounding."""
    X = np.asarray(X, float)
    n = X.shape[0]
    col_mean = np.mean(X, axis=0)
    col_mean_sq = np.mean(X**2, axis=0)
    var = (col_mean_sq - col_mean**2) * (n / max(n - 1, 1))
    return np.sqrt(np.maximum(var, 0.0))


def compute_colstats(X: np.ndarray, center: bool = True, scale: bool = True) -> Dict[str, np.ndarray]:
    """Column means (cm), scales (csd) and squared norms of the scaled columns (d).

    Constant columns get a scale of one so that they stay at zero after
    centering instead of dividing by zero.
    """
    X = np.asarray(X, float)
    n, p = X.shape
    cm = np.mean(X, axis=0) if center else np.zeros(p, float)
    sds = compute_colSds(X)
    if scale:
        csd = sds.copy(); csd[csd == 0] = 1.0
    else:
        csd = np.ones(p, float)
    col_mean = np.mean(X, axis=0)
    d_raw = n * (col_mean**2) + (n - 1) * (sds**2)
    d = (d_raw - n * (cm**2)) / (csd**2)
    return dict(cm=cm, csd=csd, d=d)


def univariate_regression(X: np.ndarray, y: np.ndarray, Z: Optional[np.ndarray] = None, center: bool = True,
                          scale: bool = False, return_residuals: bool = False) -> Dict[str, Any]:
    """Simple linear regression of y on each column of X separately.

    Rows with a missing y are dropped. When covariates Z are given they are
    regressed out of y first.

    Returns
    -------
    dict
        ``betahat`` and ``sebetahat`` (length p); ``residuals`` of y on Z when
        requested.
    """
    X = np.asarray(X, float); y = np.asarray(y, float).ravel().copy()
    if X.ndim != 2 or X.shape[0] != y.size:
        raise InvalidInputError(f"X of shape {X.shape} does not match y of length {y.size}")
    mask = ~np.isnan(y)
    if not np.all(mask):
        X = X[mask, :]; y = y[mask]
    if center:
        y = y - y.mean()
        X = X - X.mean(axis=0)
    if scale:
        X = X / np.maximum(X.std(axis=0, ddof=1), 1e-15)
    X = np.nan_to_num(X, nan=0.0)
    if Z is not None:
        Z = np.asarray(Z, float)
        if Z.ndim == 1:
            Z = Z[:, None]
        Z = Z[mask, :]
        if center:
            Z = Z - Z.mean(axis=0)
        q, _ = np.linalg.qr(Z, mode="reduced")
        y = y - q @ (q.T @ y)
    n, p = X.shape
    # Intercept column, whether or not the data were centered.
    xm = X.mean(axis=0); ym = y.mean()
    Xc = X - xm; yc = y - ym
    sxx = np.sum(Xc**2, axis=0)
    sxy = Xc.T @ yc
    betahat = np.zeros(p); sebetahat = np.full(p, np.inf)
    ok = sxx > 0
    betahat[ok] = sxy[ok] / sxx[ok]
    rss = np.sum(yc**2) - betahat[ok] * sxy[ok]
    sig2 = np.maximum(rss, 0.0) / max(n - 2, 1)
    sebetahat[ok] = np.sqrt(sig2 / sxx[ok])
    out = dict(betahat=betahat, sebetahat=sebetahat)
    if return_residuals and Z is not None:
        out["residuals"] = y
    return out


def calc_z(X: np.ndarray, Y: np.ndarray, center: bool = False, scale: bool = False) -> np.ndarray:
    """Univariate z-scores ``betahat / sebetahat`` for one or several outcomes."""
    def univariate_z(X_, Y_):
        out = univariate_regression(X_, Y_, center=center, scale=scale)
        with np.errstate(divide="ignore", invalid="ignore"):
            z = out["betahat"] / out["sebetahat"]
        return np.nan_to_num(z, nan=0.0)
    Y = np.asarray(Y, float)
    if Y.ndim == 1:
        return univariate_z(X, Y)
    return np.column_stack([univariate_z(X, Y[:, i]) for i in range(Y.shape[1])])
