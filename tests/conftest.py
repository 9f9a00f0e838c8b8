import numpy as np
import pytest

from susierss import calc_z, muffled_corr


def ar1_genotypes(rng, n, n_blocks, block_size, rho, breaks=()):
    """Standardized genotype-like matrix with AR(1) correlation inside blocks.

    The chain restarts at every block start and at every index in ``breaks``,
    which removes the LD between a variable and everything before it.
    """
    p = n_blocks * block_size
    E = rng.standard_normal((n, p))
    X = np.empty((n, p))
    breaks = set(breaks)
    scale = np.sqrt(1.0 - rho**2)
    for j in range(p):
        if j % block_size == 0 or j in breaks:
            X[:, j] = E[:, j]
        else:
            X[:, j] = rho * X[:, j - 1] + scale * E[:, j]
    return X


def ar1_corr(p, rho):
    idx = np.arange(p)
    return rho ** np.abs(idx[:, None] - idx[None, :])


@pytest.fixture
def ar1():
    return ar1_corr


@pytest.fixture
def simulate():
    """Factory for small individual-level datasets with sparse effects."""
    def _simulate(seed, n=400, n_blocks=6, block_size=10, rho=0.7, n_effects=2, effect=0.5):
        rng = np.random.default_rng(seed)
        X = ar1_genotypes(rng, n, n_blocks, block_size, rho)
        p = X.shape[1]
        causal = np.sort(rng.choice(p, size=n_effects, replace=False))
        b = np.zeros(p)
        b[causal] = effect * rng.choice([-1.0, 1.0], size=n_effects)
        y = X @ b + rng.standard_normal(n)
        return dict(X=X, y=y, b=b, causal=causal, z=calc_z(X, y, center=True), R=muffled_corr(X), n=n)
    return _simulate


N_BLOCKS = 50
BLOCK_SIZE = 20
RHO = 0.8
CAUSAL = (105, 503, 817)
N_REF = 500


@pytest.fixture(scope="session")
def fine_mapping_scenario():
    """P=1000 variables in 50 LD blocks, three causal variables, n=1000.

    ``R`` is the in-sample LD. ``R_ref`` comes from an independently drawn
    reference panel of 500 samples in which each causal variable is in LD
    with neither its upstream nor its downstream neighbours.
    """
    rng = np.random.default_rng(2024)
    n = 1000
    X = ar1_genotypes(rng, n, N_BLOCKS, BLOCK_SIZE, RHO)
    p = X.shape[1]
    b = np.zeros(p)
    b[list(CAUSAL)] = [0.4, -0.4, 0.4]
    y = X @ b + rng.standard_normal(n)
    z = calc_z(X, y, center=True)
    R = muffled_corr(X)
    rng_ref = np.random.default_rng(7)
    X_ref = ar1_genotypes(rng_ref, N_REF, N_BLOCKS, BLOCK_SIZE, RHO, breaks=[j for c in CAUSAL for j in (c, c + 1)])
    R_ref = muffled_corr(X_ref)
    return dict(z=z, R=R, R_ref=R_ref, causal=CAUSAL, n=n, n_ref=N_REF)
