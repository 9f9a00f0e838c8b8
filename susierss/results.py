"""Immutable containers returned by the fitting routines."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .ld import ZCheckResult


def _readonly(a: np.ndarray) -> np.ndarray:
    a = np.array(a, copy=True)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class CredibleSet:
    """Variables that together carry at least the requested posterior mass of
    one effect.

    ``variables`` are listed from the highest to the lowest layer posterior
    probability. ``layers`` holds every layer that produced this exact set.
    Purity fields are None when no correlation matrix was available.
    """
    variables: Tuple[int, ...]
    coverage: float
    layers: Tuple[int, ...]
    min_abs_corr: Optional[float] = None
    mean_abs_corr: Optional[float] = None
    median_abs_corr: Optional[float] = None

    def __len__(self) -> int:
        return len(self.variables)

    def __contains__(self, j: object) -> bool:
        return j in self.variables

    @property
    def purity(self) -> Optional[float]:
        return self.min_abs_corr


@dataclass(frozen=True, eq=False)
class FitResult:
    """Snapshot of a finished SuSiE fit.

    Layer arrays have shape (L, p): ``alpha`` (single-effect inclusion
    probabilities), ``mu`` and ``mu2`` (first and second posterior moments
    conditional on inclusion), ``lbf_variable``. ``V``, ``lbf`` and ``KL`` have
    length L. ``elbo`` has one entry per sweep. All arrays are read-only.
    """
    alpha: np.ndarray
    mu: np.ndarray
    mu2: np.ndarray
    V: np.ndarray
    sigma2: float
    elbo: np.ndarray
    niter: int
    converged: bool
    lbf: np.ndarray
    lbf_variable: np.ndarray
    KL: np.ndarray
    pi: np.ndarray
    pip: np.ndarray
    sets: Tuple[CredibleSet, ...]
    requested_coverage: float
    prior_tol: float = 1e-9
    mode: str = "rss"
    z_check: Optional[ZCheckResult] = None

    def __post_init__(self):
        for name in ("alpha", "mu", "mu2", "V", "elbo", "lbf", "lbf_variable", "KL", "pi", "pip"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))
        object.__setattr__(self, "sets", tuple(self.sets))

    @property
    def status(self) -> str:
        return "converged" if self.converged else "budget_exhausted"

    @property
    def L(self) -> int:
        return int(self.alpha.shape[0])

    @property
    def p(self) -> int:
        return int(self.alpha.shape[1])

    def _active(self) -> np.ndarray:
        return np.flatnonzero(self.V > self.prior_tol)

    def posterior_mean(self) -> np.ndarray:
        """Posterior mean of the effect vector, summed over active layers."""
        keep = self._active()
        return np.sum(self.alpha[keep] * self.mu[keep], axis=0)

    def posterior_sd(self) -> np.ndarray:
        """Posterior standard deviation of the effect vector, summed over active layers."""
        keep = self._active()
        var = np.sum(self.alpha[keep] * self.mu2[keep] - (self.alpha[keep] * self.mu[keep])**2, axis=0)
        return np.sqrt(np.maximum(var, 0.0))
