"""Settings shared by the summary-statistics and individual-data fits."""
from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import numpy as np

from .errors import InvalidInputError

PRIOR_METHODS = ("optim", "uniroot", "EM", "simple")


@dataclass
class IBSSOptions:
    """Iteration, hyperparameter and credible-set settings for one fit.

    The residual variance lower bound defaults to ``1e-4 * var(y)`` of the
    data being fit; ``None`` means "derive it from the data". ``tol`` is an
    absolute bound on the ELBO increase between sweeps.
    """
    estimate_residual_variance: bool = True
    estimate_prior_variance: bool = True
    estimate_prior_method: str = "optim"
    check_null_threshold: float = 0.0
    prior_tol: float = 1e-9
    residual_variance_lowerbound: Optional[float] = None
    residual_variance_upperbound: float = np.inf
    max_iter: int = 100
    tol: float = 1e-3
    coverage: float = 0.95
    min_abs_corr: float = 0.5
    n_purity: Optional[int] = None
    verbose: bool = False

    @classmethod
    def from_kwargs(cls, **kwargs: Any) -> "IBSSOptions":
        """Build options from keyword arguments, rejecting unknown names."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(kwargs) - known)
        if unknown:
            raise InvalidInputError(f"Unknown option(s): {', '.join(unknown)}")
        return cls(**kwargs).validate()

    def replace(self, **changes: Any) -> "IBSSOptions":
        return replace(self, **changes).validate()

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def validate(self) -> "IBSSOptions":
        if self.estimate_prior_method not in PRIOR_METHODS:
            raise InvalidInputError(
                f"estimate_prior_method must be one of {PRIOR_METHODS}, got {self.estimate_prior_method!r}")
        if not (isinstance(self.max_iter, (int, np.integer)) and self.max_iter >= 1):
            raise InvalidInputError("max_iter must be a positive integer")
        if not (np.isfinite(self.tol) and self.tol > 0):
            raise InvalidInputError("tol must be a positive finite number")
        if not (0 < self.coverage <= 1):
            raise InvalidInputError("coverage must lie in (0, 1]")
        if not (0 <= self.min_abs_corr <= 1):
            raise InvalidInputError("min_abs_corr must lie in [0, 1]")
        if self.prior_tol < 0:
            raise InvalidInputError("prior_tol must be non-negative")
        if self.check_null_threshold < 0:
            raise InvalidInputError("check_null_threshold must be non-negative")
        if self.n_purity is not None and self.n_purity < 2:
            raise InvalidInputError("n_purity must be at least 2")
        lo = self.residual_variance_lowerbound
        if lo is not None and not (lo >= 0):
            raise InvalidInputError("residual_variance_lowerbound must be non-negative")
        if not (self.residual_variance_upperbound > 0):
            raise InvalidInputError("residual_variance_upperbound must be positive")
        if lo is not None and lo > self.residual_variance_upperbound:
            raise InvalidInputError("residual variance lower bound exceeds the upper bound")
        return self
