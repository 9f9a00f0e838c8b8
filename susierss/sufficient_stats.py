"""
Sufficient statistics consumed by the IBSS core.

Both entry points (z-scores + LD matrix, and individual-level X, y) reduce
their inputs to the same ``(XtX, Xty, yty, n)`` form; ``kind`` records which
one produced them. The correlation matrix ``R`` travels along for credible
set purity.
"""
from __future__ import annotations
from typing import Any, Dict, NamedTuple, Optional

import numpy as np

from .errors import InvalidInputError
from .ld import muffled_corr, pve_adjust_z, validate_ld, validate_z
from .univariate import compute_colstats


class SufficientStats(NamedTuple):
    kind: str
    XtX: np.ndarray
    Xty: np.ndarray
    yty: float
    n: float
    R: np.ndarray
    varY: float
    extra: Dict[str, Any]

    @property
    def p(self) -> int:
        return int(self.Xty.shape[0])

    @property
    def d(self) -> np.ndarray:
        """Diagonal of XtX."""
        return np.diag(self.XtX)

    @property
    def sample_size_known(self) -> bool:
        return self.kind == "individual" or self.extra.get("n_given", False)


def rss_sufficient_stats(z: np.ndarray, R: np.ndarray, n: Optional[float] = None,
                         use_pve_adjust: bool = True) -> SufficientStats:
    """Map (z, R[, n]) to sufficient statistics.

    Without n the model is fit on the z scale: ``XtX = R``, ``Xty = z`` and
    the residual variance is fixed at one. With n, the z-scores are PVE
    adjusted and scaled as standardized genotypes and phenotype would be:
    ``XtX = (n-1) R``, ``Xty = sqrt(n-1) z``, ``yty = n-1``.
    """
    z = validate_z(z)
    R = validate_ld(R, p=z.size)
    if n is None:
        return SufficientStats(kind="rss", XtX=R, Xty=z, yty=1.0, n=1.0, R=R, varY=1.0,
                               extra=dict(n_given=False))
    n = float(n)
    if not (np.isfinite(n) and n > 2):
        raise InvalidInputError(f"Sample size n must be greater than 2, got {n!r}")
    z_tilde = pve_adjust_z(z, n) if use_pve_adjust else z.copy()
    XtX = (n - 1.0) * R
    Xty = np.sqrt(n - 1.0) * z_tilde
    yty = n - 1.0
    return SufficientStats(kind="rss", XtX=XtX, Xty=Xty, yty=yty, n=n, R=R, varY=yty / (n - 1.0),
                           extra=dict(n_given=True))


def individual_sufficient_stats(X: np.ndarray, y: np.ndarray, standardize: bool = True,
                                intercept: bool = True) -> SufficientStats:
    """Center (and scale) X and y and form XtX, Xty, yty.

    Column means, scales and the mean of y are kept in ``extra`` so that
    coefficients can be mapped back to the original scale.
    """
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64).ravel()
    if X.ndim != 2:
        raise InvalidInputError(f"X must be a 2-D matrix, got shape {X.shape}")
    n, p = X.shape
    if y.size != n:
        raise InvalidInputError(f"y has length {y.size} but X has {n} rows")
    if n < 2 or p < 1:
        raise InvalidInputError("X must have at least two rows and one column")
    if not np.all(np.isfinite(X)):
        raise InvalidInputError("X contains non-finite values (NaN/Inf).")
    if not np.all(np.isfinite(y)):
        raise InvalidInputError("y contains non-finite values (NaN/Inf).")
    mean_y = float(np.mean(y))
    y_cent = y - mean_y if intercept else y.copy()
    colstats = compute_colstats(X, center=intercept, scale=standardize)
    Xs = (X - colstats["cm"]) / colstats["csd"]
    XtX = Xs.T @ Xs
    XtX = 0.5 * (XtX + XtX.T)
    Xty = Xs.T @ y_cent
    yty = float(y_cent @ y_cent)
    varY = float(np.var(y_cent, ddof=1))
    return SufficientStats(kind="individual", XtX=XtX, Xty=Xty, yty=yty, n=float(n), R=muffled_corr(X),
                           varY=varY, extra=dict(cm=colstats["cm"], csd=colstats["csd"], mean_y=mean_y,
                                                 intercept=intercept, standardize=standardize))
