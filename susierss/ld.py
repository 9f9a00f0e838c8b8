"""
LD (correlation) matrix helpers for summary-statistics fine-mapping.

Includes input validation for z-scores and LD matrices, the correction of a
reference-panel LD matrix toward the observed z-scores, an estimate of the
LD-mismatch parameter ``s``, and a per-variable consistency check of z
against the LD matrix (conditional expectation of each z-score given the
others).
"""
from __future__ import annotations
from typing import NamedTuple, Optional, Tuple

import numpy as np
from scipy.optimize import minimize_scalar
from scipy.stats import chi2

from .errors import InconsistentSummaryStatisticsError, InvalidInputError
from .logging_utils import get_logger

logger = get_logger(__name__)

SYMMETRY_TOL = 1e-8
UNIT_TOL = 1e-6
# Genome-wide significance level for the standardized residual test of check_z.
OUTLIER_PVALUE = 5e-8


def is_symmetric_matrix(X: np.ndarray, tol: float = SYMMETRY_TOL) -> bool:
    """Return True if X is square and |X - X.T|_{max} <= tol."""
    X = np.asarray(X)
    if X.ndim != 2 or X.shape[0] != X.shape[1]:
        return False
    return bool(np.allclose(X, X.T, atol=tol, rtol=0))


def muffled_corr(X: np.ndarray) -> np.ndarray:
    """Correlation matrix of the columns of X, robust to zero-variance columns.

    Zero-variance columns get zero correlation with every other column and a
    unit diagonal.
    """
    X = np.asarray(X, float)
    n = X.shape[0]
    Xc = X - X.mean(axis=0, keepdims=True)
    sd = Xc.std(axis=0, ddof=1)
    zero = sd < 1e-15
    sd_safe = sd.copy(); sd_safe[zero] = 1.0
    Xn = Xc / sd_safe
    R = (Xn.T @ Xn) / max(n - 1, 1)
    R = 0.5 * (R + R.T)
    R[zero, :] = 0
    R[:, zero] = 0
    np.fill_diagonal(R, 1.0)
    return R


def validate_z(z: np.ndarray) -> np.ndarray:
    """Return z as a 1-D float copy; raise InvalidInputError if empty or non-finite."""
    z = np.array(z, dtype=np.float64)
    if z.ndim == 2 and 1 in z.shape:
        z = z.ravel()
    if z.ndim != 1 or z.size == 0:
        raise InvalidInputError(f"z must be a non-empty vector, got shape {np.shape(z)}")
    bad = np.flatnonzero(~np.isfinite(z))
    if bad.size:
        raise InvalidInputError(f"z contains non-finite values at indices {bad[:10].tolist()}")
    return z


def validate_ld(R: np.ndarray, p: Optional[int] = None, tol: float = SYMMETRY_TOL) -> np.ndarray:
    """Check that R is a correlation matrix and return a symmetrized float copy.

    Raises InvalidInputError when R is not square (or does not match ``p``),
    holds non-finite entries, is asymmetric beyond ``tol``, has a diagonal
    other than one, or has entries outside [-1, 1].
    """
    R = np.array(R, dtype=np.float64, copy=True)
    if R.ndim != 2 or R.shape[0] != R.shape[1]:
        raise InvalidInputError(f"R must be a square matrix, got shape {R.shape}")
    if p is not None and R.shape[0] != p:
        raise InvalidInputError(f"R shape {R.shape} incompatible with z length {p}")
    if not np.all(np.isfinite(R)):
        raise InvalidInputError("R contains non-finite values")
    if not is_symmetric_matrix(R, tol):
        raise InvalidInputError(f"R is not symmetric within tolerance {tol:g}")
    diag = np.diag(R)
    off = np.flatnonzero(np.abs(diag - 1.0) > UNIT_TOL)
    if off.size:
        raise InvalidInputError(f"R must have a unit diagonal; offending indices {off[:10].tolist()}")
    if np.max(np.abs(R)) > 1.0 + UNIT_TOL:
        raise InvalidInputError("R has entries outside [-1, 1]")
    R = 0.5 * (R + R.T)
    return R


def cov2cor(V: np.ndarray) -> np.ndarray:
    """Rescale a covariance-like matrix to unit-diagonal correlation form."""
    V = np.asarray(V, dtype=np.float64)
    if V.ndim != 2 or V.shape[0] != V.shape[1]:
        raise InvalidInputError(f"cov2cor needs a square matrix, got shape {V.shape}")
    d = np.diag(V)
    bad = np.flatnonzero(~np.isfinite(d) | (d <= 0))
    if bad.size:
        raise InvalidInputError(f"Non-positive diagonal entries at {bad[:10].tolist()}; cannot rescale")
    s = 1.0 / np.sqrt(d)
    C = V * np.outer(s, s)
    np.fill_diagonal(C, 1.0)
    return C


def regularize_ld(R_ref: np.ndarray, z: np.ndarray, w: float) -> np.ndarray:
    """Shrink a reference-panel LD matrix toward the rank-one structure of z.

    Returns ``cov2cor((1 - w) * R_ref + w * z z^T)``. A common choice of the
    weight is ``w = 1 / n_ref`` with ``n_ref`` the reference panel size; no
    default is assumed here. ``R_ref`` is not modified.
    """
    if not (np.isscalar(w) and np.isfinite(w) and 0 < w <= 1):
        raise InvalidInputError(f"Regularization weight must lie in (0, 1], got {w!r}")
    R_ref = np.asarray(R_ref, dtype=np.float64)
    if R_ref.ndim != 2 or R_ref.shape[0] != R_ref.shape[1]:
        raise InvalidInputError(f"R_ref must be a square matrix, got shape {R_ref.shape}")
    if not is_symmetric_matrix(R_ref):
        raise InvalidInputError("R_ref is not symmetric within tolerance")
    z = validate_z(z)
    if z.size != R_ref.shape[0]:
        raise InvalidInputError(f"R_ref shape {R_ref.shape} incompatible with z length {z.size}")
    M = (1.0 - w) * R_ref + w * np.outer(z, z)
    M = 0.5 * (M + M.T)
    return cov2cor(M)


def pve_adjust_z(z: np.ndarray, n: float) -> np.ndarray:
    """Shrink z-scores by the proportion of variance they explain in n samples."""
    z = np.asarray(z, float)
    adj = (n - 1.0) / (np.square(z) + n - 2.0)
    return z * np.sqrt(adj)


def _ld_eigen(R: np.ndarray, r_tol: float) -> Tuple[np.ndarray, np.ndarray]:
    """Eigen decomposition of R with eigenvalues below r_tol set to zero."""
    eigvals, eigvecs = np.linalg.eigh(R)
    eigvals = np.where(eigvals < r_tol, 0.0, eigvals)
    return eigvals, eigvecs


def _null_negloglik(s: float, eigvals: np.ndarray, zt2: np.ndarray) -> float:
    """Negative log likelihood (up to a constant) of z ~ N(0, (1-s)R + sI)."""
    d = (1.0 - s) * eigvals + s
    d = np.maximum(d, np.finfo(float).tiny)
    return float(0.5 * np.sum(np.log(d)) + 0.5 * np.sum(zt2 / d))


def estimate_s_rss(z: np.ndarray, R: np.ndarray, n: Optional[float] = None, r_tol: float = 1e-8,
                   method: str = "null-mle", eigen: Optional[Tuple[np.ndarray, np.ndarray]] = None) -> float:
    """Estimate the LD-mismatch parameter s of ``z ~ N(0, (1-s) R + s I)``.

    Small values mean z and R agree; values near one mean a large share of z
    cannot be explained by R.

    Parameters
    ----------
    z : ndarray (p,)
        z-scores.
    R : ndarray (p, p)
        LD matrix.
    n : float, optional
        Sample size of the association study; z is PVE-adjusted when given.
    r_tol : float
        Eigenvalues of R below r_tol are treated as zero.
    method : str
        "null-mle" (bounded 1-D likelihood maximization) or "null-partialmle"
        (share of the squared norm of z in the null space of R).
    eigen : tuple, optional
        Precomputed ``(eigvals, eigvecs)`` of R.

    Returns
    -------
    float
        Estimate of s in [0, 1].
    """
    z = validate_z(z)
    if n is not None:
        z = pve_adjust_z(z, n)
    eigvals, eigvecs = eigen if eigen is not None else _ld_eigen(np.asarray(R, float), r_tol)
    zt = eigvecs.T @ z
    if method == "null-partialmle":
        total = float(np.sum(z**2))
        if total == 0:
            return 0.0
        return float(np.sum(zt[eigvals == 0]**2) / total)
    if method != "null-mle":
        raise InvalidInputError(f"Unknown method for estimate_s_rss: {method!r}")
    zt2 = zt**2
    res = minimize_scalar(_null_negloglik, bounds=(0.0, 1.0), method="bounded", args=(eigvals, zt2),
                          options={"xatol": 1e-8})
    return float(np.clip(res.x, 0.0, 1.0))


class ZCheckResult(NamedTuple):
    condmean: np.ndarray
    condvar: np.ndarray
    z_std_diff: np.ndarray
    logLR: np.ndarray
    outliers: Tuple[int, ...]
    s: float


def check_z(z: np.ndarray, R: np.ndarray, n: Optional[float] = None, s: Optional[float] = None,
            r_tol: float = 1e-8, strict: bool = False, outlier_pvalue: float = OUTLIER_PVALUE) -> ZCheckResult:
    """Compare each z-score with its expectation given all other z-scores.

    Under ``z ~ N(0, Sigma)`` with ``Sigma = (1-s) R + s I`` the conditional
    distribution of ``z_i`` given ``z_{-i}`` is normal with mean
    ``z_i - (Omega z)_i / Omega_ii`` and variance ``1 / Omega_ii`` where Omega
    is the (pseudo-)inverse of Sigma. A variable with ``|z| > 2`` is reported as
    an outlier when either

    * its sign-flipped value explains it far better (log likelihood ratio
      > 2), the signature of allele mismatches between the study and the LD
      reference, or
    * its squared standardized residual ``z_std_diff**2``, divided by the
      inflation factor, exceeds the chi-square(1) quantile at
      ``outlier_pvalue`` (default 5e-8, as in DENTIST), i.e. z is far from
      what R and the other z-scores predict even with the same sign.

    With ``strict=True`` any outlier raises InconsistentSummaryStatisticsError;
    otherwise outliers are logged and returned.
    """
    z = validate_z(z)
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (z.size, z.size):
        raise InvalidInputError(f"R shape {R.shape} incompatible with z length {z.size}")
    if not (0 < outlier_pvalue < 1):
        raise InvalidInputError(f"outlier_pvalue must lie in (0, 1), got {outlier_pvalue!r}")
    if n is not None:
        z = pve_adjust_z(z, n)
    eigvals, eigvecs = _ld_eigen(R, r_tol)
    if s is None:
        s = estimate_s_rss(z, R, r_tol=r_tol, eigen=(eigvals, eigvecs))
    elif not (0 <= s <= 1):
        raise InvalidInputError(f"s must lie in [0, 1], got {s!r}")
    d = (1.0 - s) * eigvals + s
    inv_d = np.zeros_like(d)
    pos = d > r_tol
    inv_d[pos] = 1.0 / d[pos]
    precision = (eigvecs * inv_d) @ eigvecs.T
    prec_z = precision @ z
    prec_diag = np.diag(precision)
    ok = prec_diag > 0
    condmean = np.full(z.size, np.nan)
    condvar = np.full(z.size, np.nan)
    z_std_diff = np.full(z.size, np.nan)
    condmean[ok] = z[ok] - prec_z[ok] / prec_diag[ok]
    condvar[ok] = 1.0 / prec_diag[ok]
    z_std_diff[ok] = prec_z[ok] / np.sqrt(prec_diag[ok])
    inflation = 1.0
    if np.any(ok):
        inflation = max(1.0, float(np.median(z_std_diff[ok]**2) / chi2.ppf(0.5, 1)))
    logLR = np.full(z.size, np.nan)
    logLR[ok] = -2.0 * z[ok] * condmean[ok] / (inflation * condvar[ok])
    resid_stat = np.full(z.size, -np.inf)
    resid_stat[ok] = z_std_diff[ok]**2 / inflation
    flipped = np.nan_to_num(logLR, nan=-np.inf) > 2
    far = resid_stat > chi2.isf(outlier_pvalue, 1)
    flagged = ok & (np.abs(z) > 2) & (flipped | far)
    outliers = tuple(int(i) for i in np.flatnonzero(flagged))
    if outliers:
        msg = (f"{len(outliers)} z-score(s) inconsistent with the LD matrix "
               f"(s={s:.3g}): indices {list(outliers[:20])}")
        if strict:
            raise InconsistentSummaryStatisticsError(msg, outliers)
        logger.warning(msg)
    else:
        logger.debug("z-scores consistent with the LD matrix (s=%.3g)", s)
    return ZCheckResult(condmean=condmean, condvar=condvar, z_std_diff=z_std_diff, logLR=logLR,
                        outliers=outliers, s=float(s))
