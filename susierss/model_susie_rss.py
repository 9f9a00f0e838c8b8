"""
SuSiE-RSS: fine-mapping from z-scores and an LD matrix.

The z-scores and LD matrix (optionally corrected toward the z-scores when the
LD comes from a reference panel) are checked for consistency, mapped to
sufficient statistics and fit by Iterative Bayesian Stepwise Selection
(IBSS). The fit is summarized by PIPs and purity-filtered credible sets.
"""
from __future__ import annotations
from typing import Any, Optional, Union

import numpy as np

from .errors import InvalidInputError
from .ibss import ibss, init_state
from .ld import check_z as check_z_fn
from .ld import OUTLIER_PVALUE, regularize_ld, validate_ld, validate_z
from .logging_utils import get_logger
from .options import IBSSOptions
from .results import FitResult
from .summary import susie_get_cs, susie_get_pip
from .sufficient_stats import SufficientStats, rss_sufficient_stats

logger = get_logger(__name__)

# Prior variance of an effect on the z scale when no sample size is known.
Z_SCALE_PRIOR_VARIANCE = 50.0


def _check_L(L: Any) -> int:
    if isinstance(L, bool) or not isinstance(L, (int, np.integer)) or L < 1:
        raise InvalidInputError(f"L must be a positive integer, got {L!r}")
    return int(L)


def build_result(stats: SufficientStats, s: dict, options: IBSSOptions, z_check=None) -> FitResult:
    """Summarize a finished fit context into an immutable FitResult."""
    sets = susie_get_cs(s["alpha"], V=s["V"], Xcorr=stats.R, coverage=options.coverage,
                        min_abs_corr=options.min_abs_corr, prior_tol=options.prior_tol, dedup=True,
                        n_purity=options.n_purity)
    pip = susie_get_pip(s["alpha"], V=s["V"], prior_tol=options.prior_tol)
    return FitResult(alpha=s["alpha"], mu=s["mu"], mu2=s["mu2"], V=s["V"], sigma2=float(s["sigma2"]),
                     elbo=s["elbo"], niter=int(s["niter"]), converged=bool(s["converged"]), lbf=s["lbf"],
                     lbf_variable=s["lbf_variable"], KL=s["KL"], pi=s["pi"], pip=pip, sets=tuple(sets),
                     requested_coverage=float(options.coverage), prior_tol=options.prior_tol, mode=stats.kind,
                     z_check=z_check)


class SuSiE_RSS:
    """
    SuSiE on summary statistics (z-scores, LD matrix, optional sample size).

    Attributes after ``fit`` mirror the individual-data model: alpha, mu, mu2,
    sigma2, V, pip, sets, elbo, niter, converged, plus ``result`` holding the
    immutable FitResult and ``z_check`` with the consistency diagnostics.
    """
    def __init__(self,
                 L: int = 10,
                 prior_variance: Optional[Union[float, np.ndarray]] = None,
                 scaled_prior_variance: float = 0.2,
                 estimate_prior_variance: bool = True,
                 estimate_prior_method: str = "optim",
                 check_null_threshold: float = 0.0,
                 estimate_residual_variance: bool = True,
                 prior_tol: float = 1e-9,
                 residual_variance_lowerbound: Optional[float] = None,
                 residual_variance_upperbound: float = np.inf,
                 tol: float = 1e-3,
                 max_iter: int = 100,
                 coverage: float = 0.95,
                 min_abs_corr: float = 0.5,
                 n_purity: Optional[int] = None,
                 z_ld_weight: float = 0.0,
                 check_z: bool = True,
                 check_z_strict: bool = False,
                 check_z_pvalue: float = OUTLIER_PVALUE,
                 verbose: bool = False):
        self.L = _check_L(L)
        self.prior_variance = prior_variance
        self.scaled_prior_variance = float(scaled_prior_variance)
        if not (np.isfinite(z_ld_weight) and 0 <= z_ld_weight <= 1):
            raise InvalidInputError(f"z_ld_weight must lie in [0, 1], got {z_ld_weight!r}")
        self.z_ld_weight = float(z_ld_weight)
        self.check_z = bool(check_z)
        self.check_z_strict = bool(check_z_strict)
        if not (0 < check_z_pvalue < 1):
            raise InvalidInputError(f"check_z_pvalue must lie in (0, 1), got {check_z_pvalue!r}")
        self.check_z_pvalue = float(check_z_pvalue)
        self.options = IBSSOptions(
            estimate_residual_variance=bool(estimate_residual_variance),
            estimate_prior_variance=bool(estimate_prior_variance),
            estimate_prior_method=str(estimate_prior_method),
            check_null_threshold=float(check_null_threshold),
            prior_tol=float(prior_tol),
            residual_variance_lowerbound=residual_variance_lowerbound,
            residual_variance_upperbound=float(residual_variance_upperbound),
            max_iter=int(max_iter),
            tol=float(tol),
            coverage=float(coverage),
            min_abs_corr=float(min_abs_corr),
            n_purity=n_purity,
            verbose=bool(verbose),
        ).validate()
        self.result: Optional[FitResult] = None
        self.alpha: Optional[np.ndarray] = None
        self.mu: Optional[np.ndarray] = None
        self.mu2: Optional[np.ndarray] = None
        self.sigma2: Optional[float] = None
        self.V: Optional[np.ndarray] = None
        self.pip: Optional[np.ndarray] = None
        self.sets = None
        self.elbo: Optional[np.ndarray] = None
        self.niter: int = 0
        self.converged: bool = False
        self.R_used: Optional[np.ndarray] = None
        self.z_check = None

    def _prior_variance(self, stats: SufficientStats) -> Union[float, np.ndarray]:
        if self.prior_variance is not None:
            return self.prior_variance
        if stats.sample_size_known:
            return self.scaled_prior_variance * stats.varY
        return Z_SCALE_PRIOR_VARIANCE

    def fit(self,
            z: np.ndarray,
            R: np.ndarray,
            n: Optional[float] = None,
            prior_weights: Optional[np.ndarray] = None,
            residual_variance: Optional[float] = None,
            use_pve_adjust: bool = True) -> "SuSiE_RSS":
        """Fit SuSiE from z-scores and an LD matrix.

        Parameters
        ----------
        z : ndarray (p,)
            Association z-scores.
        R : ndarray (p, p)
            Signed LD correlation matrix; never modified.
        n : float, optional
            GWAS sample size. Without it the fit runs on the z scale with the
            residual variance fixed at one.
        prior_weights : ndarray (p,), optional
            Prior probability of each variable being the effect of a layer.
        residual_variance : float, optional
            Fixed residual variance; disables its estimation.
        use_pve_adjust : bool
            Shrink z by the variance it explains when n is given.

        Returns
        -------
        SuSiE_RSS
            self, with fit attributes populated.
        """
        z = validate_z(z)
        p = z.size
        if self.z_ld_weight > 0:
            R = np.asarray(R, dtype=np.float64)
            if R.shape != (p, p):
                raise InvalidInputError(f"R shape {R.shape} incompatible with z length {p}")
            logger.debug("Regularizing LD matrix toward z with weight %.4g", self.z_ld_weight)
            R = regularize_ld(R, z, self.z_ld_weight)
        R = validate_ld(R, p=p)
        z_check = None
        if self.check_z:
            z_check = check_z_fn(z, R, n=n, strict=self.check_z_strict, outlier_pvalue=self.check_z_pvalue)
        stats = rss_sufficient_stats(z, R, n=n, use_pve_adjust=use_pve_adjust)
        estimate_residual = self.options.estimate_residual_variance
        sigma2 = stats.varY
        if residual_variance is not None:
            sigma2 = float(residual_variance)
            estimate_residual = False
        if not stats.sample_size_known:
            if estimate_residual:
                logger.info("Sample size not given: residual variance fixed at 1 on the z scale")
            estimate_residual = False
            sigma2 = 1.0 if residual_variance is None else sigma2
        L = min(self.L, p)
        V = self._prior_variance(stats)
        if np.ndim(V) == 1 and L < self.L:
            V = np.asarray(V, float)[:L]
        s = init_state(p=p, L=L, V=V, sigma2=sigma2, prior_weights=prior_weights)
        s = ibss(stats, s, self.options, estimate_residual=estimate_residual)
        self.result = build_result(stats, s, self.options, z_check=z_check)
        self.R_used = R
        self.z_check = z_check
        self._copy_from_result()
        return self

    def _copy_from_result(self) -> None:
        res = self.result
        self.alpha = res.alpha
        self.mu = res.mu
        self.mu2 = res.mu2
        self.sigma2 = res.sigma2
        self.V = res.V
        self.pip = res.pip
        self.sets = res.sets
        self.elbo = res.elbo
        self.niter = res.niter
        self.converged = res.converged


def fit_rss(z: np.ndarray, R: np.ndarray, L: int = 10, n: Optional[float] = None,
            prior_weights: Optional[np.ndarray] = None, residual_variance: Optional[float] = None,
            use_pve_adjust: bool = True, **options: Any) -> FitResult:
    """Fit SuSiE-RSS and return the immutable FitResult.

    ``options`` are the keyword arguments of ``SuSiE_RSS`` (for example
    ``estimate_residual_variance``, ``estimate_prior_variance``,
    ``prior_variance``, ``max_iter``, ``tol``, ``coverage``, ``min_abs_corr``,
    ``z_ld_weight``, ``check_z``, ``check_z_strict``).

    Equivalent names used elsewhere for the same settings:

    =========================  ==================================
    elsewhere                  keyword here
    =========================  ==================================
    ``max_iterations``         ``max_iter``
    ``tolerance``              ``tol`` (absolute ELBO change)
    ``min_purity``             ``min_abs_corr``
    ``prior_variance_init``    ``prior_variance``
    =========================  ==================================
    """
    model = SuSiE_RSS(L=L, **options)
    model.fit(z, R, n=n, prior_weights=prior_weights, residual_variance=residual_variance,
              use_pve_adjust=use_pve_adjust)
    return model.result
