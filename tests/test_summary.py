import dataclasses

import numpy as np
import pytest

from susierss import CredibleSet, fit_rss, summarize, susie_get_cs, susie_get_pip
from susierss.summary import get_purity, in_CS, in_CS_x, n_in_CS_x


def test_n_in_cs_capped_at_size():
    assert n_in_CS_x(np.array([0.3, 0.3, 0.3]), coverage=0.95) == 3
    assert n_in_CS_x(np.array([0.9, 0.05, 0.05]), coverage=0.9) == 1


def test_ties_broken_by_lower_index():
    assert in_CS_x(np.full(4, 0.25), coverage=0.5) == [0, 1]
    assert in_CS_x(np.array([0.1, 0.3, 0.3, 0.3]), coverage=0.5) == [1, 2]


def test_members_listed_by_probability():
    assert in_CS_x(np.array([0.05, 0.6, 0.05, 0.3]), coverage=0.85) == [1, 3]


def test_in_cs_membership_matrix():
    alpha = np.array([[0.7, 0.3, 0.0], [0.0, 0.1, 0.9]])
    assert in_CS(alpha, coverage=0.8).tolist() == [[1, 1, 0], [0, 0, 1]]


class TestPurity:
    def test_singleton_is_pure(self):
        assert get_purity([3], np.eye(5)) == (1.0, 1.0, 1.0)

    def test_pairwise_statistics(self):
        R = np.array([[1.0, -0.8, 0.2], [-0.8, 1.0, 0.5], [0.2, 0.5, 1.0]])
        mn, mean, med = get_purity([0, 1, 2], R)
        assert mn == pytest.approx(0.2)
        assert mean == pytest.approx(0.5)
        assert med == pytest.approx(0.5)
        assert get_purity([0, 1, 2], R, squared=True)[0] == pytest.approx(0.04)

    def test_subsampled_purity_uses_n_members(self, ar1):
        R = ar1(30, 0.9)
        full = get_purity(list(range(30)), R)
        sub = get_purity(list(range(30)), R, n=5, rng=np.random.default_rng(1))
        assert sub[0] >= full[0]


class TestCredibleSets:
    def test_impure_set_dropped_whole(self):
        R = np.eye(6)
        R[0, 5] = R[5, 0] = 0.1
        alpha = np.array([[0.5, 0.0, 0.0, 0.0, 0.0, 0.5]])
        assert susie_get_cs(alpha, V=np.array([1.0]), Xcorr=R, coverage=0.95, min_abs_corr=0.5) == []
        kept = susie_get_cs(alpha, V=np.array([1.0]), Xcorr=R, coverage=0.95, min_abs_corr=0.05)
        assert len(kept) == 1
        assert set(kept[0].variables) == {0, 5}
        assert kept[0].purity == pytest.approx(0.1)

    def test_identical_sets_are_merged(self):
        alpha = np.array([[0.6, 0.4, 0.0], [0.55, 0.45, 0.0], [0.0, 0.0, 1.0]])
        sets = susie_get_cs(alpha, V=np.ones(3), coverage=0.95)
        assert len(sets) == 2
        assert sets[0].layers == (0, 1)
        assert sets[0].coverage == pytest.approx(1.0)
        assert sets[1].variables == (2,)

    def test_no_merge_without_dedup(self):
        alpha = np.array([[0.6, 0.4, 0.0], [0.55, 0.45, 0.0]])
        assert len(susie_get_cs(alpha, V=np.ones(2), coverage=0.95, dedup=False)) == 2

    def test_inactive_layer_omitted(self):
        alpha = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        sets = susie_get_cs(alpha, V=np.array([1.0, 0.0]), coverage=0.95)
        assert [cs.variables for cs in sets] == [(0,)]

    def test_sets_ordered_by_purity(self):
        R = np.eye(4)
        R[0, 1] = R[1, 0] = 0.6
        R[2, 3] = R[3, 2] = 0.95
        alpha = np.array([[0.5, 0.5, 0.0, 0.0], [0.0, 0.0, 0.5, 0.5]])
        sets = susie_get_cs(alpha, V=np.ones(2), Xcorr=R, coverage=0.95)
        assert [cs.layers for cs in sets] == [(1,), (0,)]
        assert sets[0].min_abs_corr > sets[1].min_abs_corr

    def test_coverage_reported_per_set(self):
        alpha = np.array([[0.7, 0.2, 0.1]])
        cs = susie_get_cs(alpha, V=np.ones(1), coverage=0.85)[0]
        assert cs.variables == (0, 1)
        assert cs.coverage == pytest.approx(0.9)
        assert cs.min_abs_corr is None
        assert 0 in cs and 2 not in cs
        assert len(cs) == 2


class TestPIP:
    def test_independent_layers(self):
        alpha = np.array([[0.5, 0.5, 0.0], [0.5, 0.0, 0.5]])
        assert np.allclose(susie_get_pip(alpha, V=np.ones(2)), [0.75, 0.5, 0.5])

    def test_inactive_layers_excluded(self):
        alpha = np.array([[0.5, 0.5, 0.0], [0.5, 0.0, 0.5]])
        assert np.allclose(susie_get_pip(alpha, V=np.array([1.0, 0.0])), [0.5, 0.5, 0.0])
        assert np.allclose(susie_get_pip(alpha, V=0.0), 0)


class TestResults:
    @pytest.fixture
    def result(self, simulate):
        d = simulate(77, n_effects=1, effect=0.6)
        return fit_rss(d["z"], d["R"], L=3, n=d["n"], check_z=False)

    def test_arrays_are_read_only(self, result):
        with pytest.raises(ValueError):
            result.pip[0] = 1.0
        with pytest.raises(ValueError):
            result.alpha[0, 0] = 1.0

    def test_frozen(self, result):
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.sigma2 = 2.0
        if result.sets:
            with pytest.raises(dataclasses.FrozenInstanceError):
                result.sets[0].coverage = 0.1

    def test_summarize_is_idempotent(self, result):
        first = summarize(result)
        second = summarize(result)
        assert np.array_equal(first.pip, second.pip)
        assert first.credible_sets == second.credible_sets
        assert all(isinstance(cs, CredibleSet) for cs in first.credible_sets)

    def test_pip_bounds(self, result):
        assert np.all(result.pip >= 0) and np.all(result.pip <= 1)
        for cs in result.sets:
            assert cs.coverage >= result.requested_coverage - 1e-12
            assert cs.min_abs_corr >= 0.5

    def test_posterior_sd_non_negative(self, result):
        assert np.all(result.posterior_sd() >= 0)
        assert result.posterior_mean().shape == (result.p,)
