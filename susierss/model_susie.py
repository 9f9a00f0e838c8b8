"""
SuSiE on individual-level data.

Genotypes X and phenotype y are centered and scaled, reduced to the
sufficient statistics ``X^T X``, ``X^T y`` and ``y^T y``, and fit by the same
IBSS core as the summary-statistics model. Credible set purity uses the
correlation matrix of X.
"""
from __future__ import annotations
from typing import Any, Optional, Union

import numpy as np

from .errors import InvalidInputError
from .ibss import ibss, init_state
from .logging_utils import get_logger
from .model_susie_rss import _check_L, build_result
from .options import IBSSOptions
from .results import FitResult
from .sufficient_stats import individual_sufficient_stats
from .univariate import calc_z

logger = get_logger(__name__)


class SuSiE:
    def __init__(self,
                 L: int = 10,
                 scaled_prior_variance: Union[float, np.ndarray] = 0.2,
                 estimate_residual_variance: bool = True,
                 estimate_prior_variance: bool = True,
                 estimate_prior_method: str = "optim",
                 check_null_threshold: float = 0.0,
                 prior_tol: float = 1e-9,
                 residual_variance_lowerbound: Optional[float] = None,
                 residual_variance_upperbound: float = np.inf,
                 coverage: float = 0.95,
                 min_abs_corr: float = 0.5,
                 n_purity: Optional[int] = None,
                 max_iter: int = 100,
                 tol: float = 1e-3,
                 verbose: bool = False):
        self.L = _check_L(L)
        spv = np.asarray(scaled_prior_variance, float)
        if np.any(spv < 0):
            raise InvalidInputError("Scaled prior variance should be positive")
        self.scaled_prior_variance = spv
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
        self.lbf: Optional[np.ndarray] = None
        self.lbf_variable: Optional[np.ndarray] = None
        self.intercept: float = 0.0
        self.sigma2: float = np.nan
        self.V: Optional[np.ndarray] = None
        self.elbo: Optional[np.ndarray] = None
        self.fitted: Optional[np.ndarray] = None
        self.sets = None
        self.pip: Optional[np.ndarray] = None
        self.z: Optional[np.ndarray] = None
        self.niter: int = 0
        self.converged: bool = False
        self.X_column_scale_factors: Optional[np.ndarray] = None
        self.X_column_means: Optional[np.ndarray] = None

    def fit(self, X: np.ndarray, y: np.ndarray, residual_variance: Optional[float] = None,
            prior_weights: Optional[np.ndarray] = None, standardize: bool = True, intercept: bool = True,
            compute_univariate_zscore: bool = False) -> "SuSiE":
        """Iterative Bayesian Stepwise Selection (IBSS) on individual-level data.

        Populates credible sets, PIPs, the intercept and fitted values.
        """
        X = np.asarray(X, float); y = np.asarray(y, float).ravel()
        spv = self.scaled_prior_variance
        if np.any(spv > 1) and standardize:
            raise InvalidInputError("Scaled prior variance should be <= 1 when standardize is True")
        stats = individual_sufficient_stats(X, y, standardize=standardize, intercept=intercept)
        n, p = X.shape
        logger.debug("Fitting SuSiE on n=%d samples and p=%d variables", n, p)
        L = min(self.L, p)
        if spv.ndim == 1 and L < spv.size:
            spv = spv[:L]
        estimate_residual = self.options.estimate_residual_variance
        sigma2 = stats.varY
        if residual_variance is not None:
            sigma2 = float(residual_variance)
            estimate_residual = False
        if not sigma2 > 0:
            raise InvalidInputError("y has zero variance; residual variance cannot be initialized")
        s = init_state(p=p, L=L, V=spv * stats.varY, sigma2=sigma2, prior_weights=prior_weights)
        s = ibss(stats, s, self.options, estimate_residual=estimate_residual)
        self.result = build_result(stats, s, self.options)
        cm, csd = stats.extra["cm"], stats.extra["csd"]
        self.X_column_scale_factors = csd
        self.X_column_means = cm
        post_mean = self.result.posterior_mean()
        if intercept:
            self.intercept = float(stats.extra["mean_y"] - np.sum(cm * (post_mean / csd)))
        else:
            self.intercept = 0.0
        self.fitted = self.intercept + X @ (post_mean / csd)
        if compute_univariate_zscore:
            self.z = calc_z(X, y, center=intercept, scale=standardize)
        res = self.result
        self.alpha = res.alpha; self.mu = res.mu; self.mu2 = res.mu2
        self.lbf = res.lbf; self.lbf_variable = res.lbf_variable
        self.sigma2 = res.sigma2; self.V = res.V; self.sets = res.sets; self.pip = res.pip
        self.elbo = res.elbo; self.niter = res.niter; self.converged = res.converged
        return self

    def coef(self) -> np.ndarray:
        """Intercept followed by posterior mean coefficients on the original X scale."""
        if self.result is None:
            raise RuntimeError("Model is not fitted yet")
        return np.concatenate([[self.intercept], self.result.posterior_mean() / self.X_column_scale_factors])

    def predict(self, X: np.ndarray) -> np.ndarray:
        b = self.coef()
        X = np.asarray(X, float)
        if X.ndim != 2 or X.shape[1] != b.size - 1:
            raise InvalidInputError(f"X must have {b.size - 1} columns")
        return b[0] + X @ b[1:]


def fit_individual(X: np.ndarray, y: np.ndarray, L: int = 10, residual_variance: Optional[float] = None,
                   prior_weights: Optional[np.ndarray] = None, standardize: bool = True, intercept: bool = True,
                   **options: Any) -> FitResult:
    """Fit SuSiE on individual-level data and return the immutable FitResult."""
    model = SuSiE(L=L, **options)
    model.fit(X, y, residual_variance=residual_variance, prior_weights=prior_weights, standardize=standardize,
              intercept=intercept)
    return model.result
