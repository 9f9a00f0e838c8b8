import numpy as np
import pytest

from susierss import InconsistentSummaryStatisticsError, InvalidInputError, SuSiE_RSS, fit_rss
from susierss.ld import (check_z, cov2cor, estimate_s_rss, muffled_corr, pve_adjust_z, regularize_ld,
                         validate_ld, validate_z)


class TestCov2Cor:
    def test_unit_diagonal(self):
        V = np.array([[4.0, 1.0], [1.0, 9.0]])
        C = cov2cor(V)
        assert np.allclose(np.diag(C), 1.0)
        assert np.isclose(C[0, 1], 1.0 / 6.0)

    def test_idempotent_on_its_output(self):
        rng = np.random.default_rng(0)
        A = rng.standard_normal((8, 5))
        C = cov2cor(A @ A.T + 0.1 * np.eye(8))
        assert np.allclose(cov2cor(C), C)

    def test_non_positive_diagonal_raises(self):
        with pytest.raises(InvalidInputError):
            cov2cor(np.array([[1.0, 0.0], [0.0, 0.0]]))


class TestRegularizeLD:
    def test_result_is_correlation_matrix(self, ar1):
        R = ar1(10, 0.6)
        z = np.linspace(-3, 3, 10)
        Rt = regularize_ld(R, z, 0.05)
        assert np.allclose(np.diag(Rt), 1.0)
        assert np.allclose(Rt, Rt.T)
        assert np.max(np.abs(Rt)) <= 1.0 + 1e-12
        assert np.allclose(cov2cor(Rt), Rt)

    def test_input_not_modified(self, ar1):
        R = ar1(6, 0.5)
        R0 = R.copy()
        regularize_ld(R, np.ones(6), 0.2)
        assert np.array_equal(R, R0)

    def test_full_weight_gives_sign_structure_of_z(self, ar1):
        z = np.array([2.0, -1.0, 0.5, -4.0])
        Rt = regularize_ld(ar1(4, 0.3), z, 1.0)
        assert np.allclose(Rt, np.outer(np.sign(z), np.sign(z)))

    def test_weight_pulls_correlation_toward_z(self):
        R = np.eye(2)
        z = np.array([5.0, 5.0])
        assert regularize_ld(R, z, 0.01)[0, 1] > 0
        assert regularize_ld(R, z, 0.1)[0, 1] > regularize_ld(R, z, 0.01)[0, 1]

    @pytest.mark.parametrize("w", [0.0, -0.1, 1.5, np.nan])
    def test_weight_out_of_range(self, ar1, w):
        with pytest.raises(InvalidInputError):
            regularize_ld(ar1(3, 0.2), np.ones(3), w)

    def test_not_square(self):
        with pytest.raises(InvalidInputError):
            regularize_ld(np.ones((3, 2)), np.ones(3), 0.1)

    def test_not_symmetric(self):
        R = np.array([[1.0, 0.5], [0.1, 1.0]])
        with pytest.raises(InvalidInputError):
            regularize_ld(R, np.ones(2), 0.1)

    def test_degenerate_diagonal(self):
        R = np.array([[1.0, 0.0], [0.0, 0.0]])
        with pytest.raises(InvalidInputError):
            regularize_ld(R, np.array([1.0, 0.0]), 0.5)


class TestValidation:
    def test_validate_z_rejects_nan(self):
        with pytest.raises(InvalidInputError):
            validate_z([1.0, np.nan])

    def test_validate_z_accepts_column_vector(self):
        assert validate_z(np.ones((4, 1))).shape == (4,)

    def test_validate_ld_shape_mismatch(self, ar1):
        with pytest.raises(InvalidInputError):
            validate_ld(ar1(4, 0.1), p=5)

    def test_validate_ld_diagonal(self):
        with pytest.raises(InvalidInputError):
            validate_ld(np.array([[2.0, 0.1], [0.1, 1.0]]))

    def test_validate_ld_range(self):
        with pytest.raises(InvalidInputError):
            validate_ld(np.array([[1.0, 1.2], [1.2, 1.0]]))

    def test_validate_ld_returns_copy(self, ar1):
        R = ar1(3, 0.4)
        out = validate_ld(R)
        out[0, 1] = 0.0
        assert R[0, 1] == 0.4


def test_muffled_corr_zero_variance_column():
    rng = np.random.default_rng(1)
    X = rng.standard_normal((30, 3))
    X[:, 1] = 2.0
    R = muffled_corr(X)
    assert np.allclose(np.diag(R), 1.0)
    assert R[0, 1] == 0 and R[1, 2] == 0
    assert np.isclose(R[0, 2], np.corrcoef(X[:, 0], X[:, 2])[0, 1])


def test_pve_adjust_shrinks_large_z():
    z = np.array([0.0, 2.0, 20.0])
    adj = pve_adjust_z(z, 1000)
    assert adj[0] == 0
    assert np.all(np.abs(adj[1:]) < np.abs(z[1:]))


class TestCheckZ:
    def _flipped(self, ar1):
        R = ar1(30, 0.9)
        b = np.zeros(30)
        b[5] = 8.0
        z = R @ b
        z_flip = z.copy()
        z_flip[6] = -z_flip[6]
        return R, z, z_flip

    def test_consistent_z_has_no_outliers(self, ar1):
        R, z, _ = self._flipped(ar1)
        res = check_z(z, R, s=0.0)
        assert res.outliers == ()
        assert np.all(np.sign(res.condmean) == np.sign(z))
        assert np.max(np.abs(res.condmean - z)) < 2

    def test_flipped_allele_is_flagged(self, ar1):
        R, _, z_flip = self._flipped(ar1)
        res = check_z(z_flip, R, s=0.0)
        assert 6 in res.outliers
        assert res.logLR[6] > 2
        assert res.condmean[6] > 0

    def test_strict_mode_raises(self, ar1):
        R, _, z_flip = self._flipped(ar1)
        with pytest.raises(InconsistentSummaryStatisticsError) as exc:
            check_z(z_flip, R, s=0.0, strict=True)
        assert 6 in exc.value.outliers

    def test_estimated_s_flags_flip(self, ar1):
        R, _, z_flip = self._flipped(ar1)
        res = check_z(z_flip, R)
        assert 0.0 <= res.s <= 1.0
        assert 6 in res.outliers

    def test_shape_mismatch(self, ar1):
        with pytest.raises(InvalidInputError):
            check_z(np.ones(4), ar1(5, 0.1))

    def test_same_sign_excess_is_flagged(self, ar1):
        R, z, _ = self._flipped(ar1)
        z_big = z.copy()
        z_big[6] = 40.0
        res = check_z(z_big, R, s=0.0)
        assert res.logLR[6] < 0
        assert res.condmean[6] > 0
        assert 6 in res.outliers
        with pytest.raises(InconsistentSummaryStatisticsError):
            check_z(z_big, R, s=0.0, strict=True)

    def test_residual_cutoff_follows_pvalue(self, ar1):
        R, z, _ = self._flipped(ar1)
        # the causal variable has a squared standardized residual of about 6.7
        assert 5 not in check_z(z, R, s=0.0).outliers
        assert 5 in check_z(z, R, s=0.0, outlier_pvalue=0.05).outliers

    @pytest.mark.parametrize("pvalue", [0.0, 1.0, -1e-3])
    def test_invalid_pvalue(self, ar1, pvalue):
        with pytest.raises(InvalidInputError):
            check_z(np.ones(3), ar1(3, 0.1), outlier_pvalue=pvalue)

    def test_strict_fit_raises_before_iterating(self, ar1, monkeypatch):
        R, _, z_flip = self._flipped(ar1)

        def no_sweeps(*args, **kwargs):
            raise AssertionError("IBSS entered despite inconsistent z-scores")

        monkeypatch.setattr("susierss.model_susie_rss.ibss", no_sweeps)
        with pytest.raises(InconsistentSummaryStatisticsError) as exc:
            fit_rss(z_flip, R, L=3, check_z_strict=True)
        assert 6 in exc.value.outliers

    def test_lenient_fit_keeps_diagnostics(self, ar1):
        R, _, z_flip = self._flipped(ar1)
        model = SuSiE_RSS(L=3).fit(z_flip, R)
        assert 6 in model.z_check.outliers
        assert model.result.z_check is model.z_check

    def test_invalid_fit_pvalue(self):
        with pytest.raises(InvalidInputError):
            SuSiE_RSS(check_z_pvalue=2.0)


class TestEstimateS:
    def test_out_of_span_z_gives_larger_s(self):
        rng = np.random.default_rng(3)
        X = rng.standard_normal((20, 50))
        R = muffled_corr(X)
        w, U = np.linalg.eigh(R)
        null_basis = U[:, w < 1e-8]
        z_in = R @ rng.standard_normal(50)
        z_out = null_basis @ rng.standard_normal(null_basis.shape[1])
        s_in = estimate_s_rss(z_in, R)
        s_out = estimate_s_rss(z_out, R)
        assert 0.0 <= s_in <= 1.0 and 0.0 <= s_out <= 1.0
        assert s_out > s_in

    def test_partial_mle_is_null_space_share(self):
        rng = np.random.default_rng(4)
        X = rng.standard_normal((10, 30))
        R = muffled_corr(X)
        z_in = R @ rng.standard_normal(30)
        assert estimate_s_rss(z_in, R, method="null-partialmle") < 1e-8

    def test_unknown_method(self, ar1):
        with pytest.raises(InvalidInputError):
            estimate_s_rss(np.ones(3), ar1(3, 0.1), method="bogus")
