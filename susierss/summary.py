"""
Posterior summaries of a SuSiE fit: posterior inclusion probabilities (PIPs)
and purity-filtered, deduplicated credible sets (CS).
"""
from __future__ import annotations
from typing import Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from .errors import InvalidInputError
from .ld import is_symmetric_matrix
from .results import CredibleSet, FitResult


def n_in_CS_x(x: np.ndarray, coverage: float = 0.9) -> int:
    """Minimal number of largest elements of x whose cumulative sum reaches coverage."""
    xs = np.sort(x)[::-1]
    csum = np.cumsum(xs)
    return int(min(np.sum(csum < coverage) + 1, x.size))


def in_CS_x(x: np.ndarray, coverage: float = 0.9) -> List[int]:
    """Indices of the CS of one layer, from most to least probable.

    Ties in x are broken by the lower index first, so the set at the
    coverage boundary is deterministic.
    """
    x = np.asarray(x, float)
    n = n_in_CS_x(x, coverage)
    o = np.argsort(-x, kind="stable")
    return [int(j) for j in o[:n]]


def in_CS(alpha: np.ndarray, coverage: float = 0.9) -> np.ndarray:
    """Credible set membership for all L effects as an (L, p) 0/1 matrix."""
    alpha = np.atleast_2d(np.asarray(alpha, float))
    status = np.zeros(alpha.shape, dtype=int)
    for l in range(alpha.shape[0]):
        status[l, in_CS_x(alpha[l, :], coverage)] = 1
    return status


def get_purity(pos: List[int], Xcorr: np.ndarray, squared: bool = False, n: Optional[int] = None,
               rng: Optional[np.random.Generator] = None) -> Tuple[float, float, float]:
    """Min / mean / median absolute correlation between members of a set.

    All pairs are used unless ``n`` is given and the set is larger, in which
    case a random subset of n members is scored.
    """
    pos = list(pos)
    if len(pos) == 1:
        return (1.0, 1.0, 1.0)
    if n is not None and len(pos) > n:
        if rng is None:
            rng = np.random.default_rng(0)
        pos = list(rng.choice(pos, size=n, replace=False))
    R = np.asarray(Xcorr)[np.ix_(pos, pos)]
    R = 0.5 * (R + R.T)
    idx = np.triu_indices(len(pos), k=1)
    vals = np.abs(R[idx])
    if squared:
        vals = vals**2
    return (float(np.min(vals)), float(np.mean(vals)), float(np.median(vals)))


def susie_get_cs(alpha: np.ndarray, V: Optional[np.ndarray] = None, Xcorr: Optional[np.ndarray] = None,
                 coverage: float = 0.95, min_abs_corr: float = 0.5, prior_tol: float = 1e-9, dedup: bool = True,
                 squared: bool = False, n_purity: Optional[int] = None) -> List[CredibleSet]:
    """Credible sets of every active layer.

    Layers whose prior variance is at or below ``prior_tol`` are switched
    off and produce no set. Identical sets from several layers are merged
    into one, keeping the first layer's claimed coverage. With a correlation
    matrix, sets whose minimum absolute pairwise correlation is below
    ``min_abs_corr`` are dropped whole. Survivors are ordered from the purest
    to the least pure.
    """
    alpha = np.atleast_2d(np.asarray(alpha, float))
    L = alpha.shape[0]
    if V is None:
        active = np.ones(L, dtype=bool)
    else:
        V = np.asarray(V, float)
        active = np.repeat(V > prior_tol, L) if V.ndim == 0 else (V > prior_tol)
        if active.shape != (L,):
            raise InvalidInputError(f"V must be a scalar or have length {L}")
    if Xcorr is not None:
        Xcorr = np.asarray(Xcorr, float)
        if Xcorr.shape != (alpha.shape[1], alpha.shape[1]):
            raise InvalidInputError(f"Correlation matrix shape {Xcorr.shape} does not match p={alpha.shape[1]}")
        if not is_symmetric_matrix(Xcorr):
            Xcorr = 0.5 * (Xcorr + Xcorr.T)
    merged: Dict[Tuple[int, ...], Dict] = {}
    order: List[Tuple[int, ...]] = []
    for l in np.flatnonzero(active):
        members = in_CS_x(alpha[l, :], coverage)
        key = tuple(sorted(members))
        if dedup and key in merged:
            merged[key]["layers"].append(int(l))
            continue
        if not dedup:
            key = key + (-1 - int(l),)
        merged[key] = dict(variables=tuple(members), coverage=float(np.sum(alpha[l, members])), layers=[int(l)])
        order.append(key)
    out = []
    rng = np.random.default_rng(0)
    for key in order:
        entry = merged[key]
        purity = (None, None, None)
        if Xcorr is not None:
            purity = get_purity(list(entry["variables"]), Xcorr, squared=squared, n=n_purity, rng=rng)
            threshold = (min_abs_corr**2) if squared else min_abs_corr
            if purity[0] < threshold:
                continue
        out.append(CredibleSet(variables=entry["variables"], coverage=entry["coverage"],
                               layers=tuple(entry["layers"]), min_abs_corr=purity[0],
                               mean_abs_corr=purity[1], median_abs_corr=purity[2]))
    if Xcorr is not None:
        out.sort(key=lambda cs: -cs.min_abs_corr)
    return out


def susie_get_pip(alpha: np.ndarray, V: Optional[np.ndarray] = None, prior_tol: float = 1e-9) -> np.ndarray:
    """PIPs ``1 - prod_l (1 - alpha_lj)`` over layers with ``V > prior_tol``.

    Layers are treated as independent, the standard SuSiE approximation.
    """
    alpha = np.atleast_2d(np.asarray(alpha, float))
    if V is None:
        include_idx = np.arange(alpha.shape[0])
    else:
        V = np.asarray(V, float)
        active = np.repeat(V > prior_tol, alpha.shape[0]) if V.ndim == 0 else (V > prior_tol)
        include_idx = np.flatnonzero(active)
    if include_idx.size == 0:
        return np.zeros(alpha.shape[1])
    alpha_use = np.nan_to_num(alpha[include_idx, :], nan=0.0, posinf=1.0, neginf=0.0)
    return 1.0 - np.prod(1.0 - alpha_use, axis=0)


class Summary(NamedTuple):
    pip: np.ndarray
    credible_sets: Tuple[CredibleSet, ...]


def summarize(result: FitResult) -> Summary:
    """PIPs and credible sets of a finished fit, without recomputation."""
    return Summary(pip=result.pip, credible_sets=result.sets)
