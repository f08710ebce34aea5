"""Tests for kinfit.objects -- parameter bookkeeping, chi-square and particles."""

import numpy as np
import pytest

from kinfit.objects import (
    JetFitObject,
    NeutrinoFitObject,
    ParameterFitObject,
    ParticleFitObject,
    four_momentum,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _two_params(**kwargs):
    return ParameterFitObject("ab", ["a", "b"], [1.0, 2.0], [0.5, 2.0], **kwargs)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:
    def test_basic_accessors(self):
        obj = _two_params()
        assert obj.npar == 2
        assert obj.get_param_name(1) == "b"
        assert obj.get_param(0) == 1.0
        assert obj.get_mparam(1) == 2.0
        assert obj.get_error(1) == 2.0
        assert obj.is_param_measured(0)
        assert not obj.is_param_fixed(0)
        assert obj.get_global_par_num(0) == -1

    def test_negative_error_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            ParameterFitObject("x", ["x"], [1.0], [-0.1])

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError, match="expected 2 errors"):
            ParameterFitObject("ab", ["a", "b"], [1.0, 2.0], [0.1])

    def test_missing_errors_rejected(self):
        with pytest.raises(ValueError, match="errors or covariance"):
            ParameterFitObject("x", ["x"], [1.0])

    def test_asymmetric_covariance_rejected(self):
        with pytest.raises(ValueError, match="symmetric"):
            ParameterFitObject(
                "ab", ["a", "b"], [1.0, 2.0],
                covariance=[[1.0, 0.5], [0.0, 1.0]],
            )

    def test_errors_from_covariance(self):
        obj = ParameterFitObject(
            "ab", ["a", "b"], [1.0, 2.0],
            covariance=[[4.0, 1.0], [1.0, 9.0]],
        )
        assert obj.get_error(0) == pytest.approx(2.0)
        assert obj.get_error(1) == pytest.approx(3.0)

    def test_params_is_a_copy(self):
        obj = _two_params()
        p = obj.params
        p[0] = 99.0
        assert obj.get_param(0) == 1.0


# ---------------------------------------------------------------------------
# Chi-square
# ---------------------------------------------------------------------------

class TestChi2:
    def test_zero_at_measurement(self):
        assert _two_params().chi2 == 0.0

    def test_diagonal(self):
        obj = _two_params()
        obj.set_param(0, 2.0)
        obj.set_param(1, 0.0)
        # (1/0.5)^2 + (2/2)^2
        assert obj.chi2 == pytest.approx(5.0)
        assert obj.get_chi2_param(0) == pytest.approx(4.0)
        assert obj.get_chi2_param(1) == pytest.approx(1.0)

    def test_correlated(self):
        cov = np.array([[1.0, 0.5], [0.5, 1.0]])
        obj = ParameterFitObject("ab", ["a", "b"], [0.0, 0.0], covariance=cov)
        obj.set_param(0, 1.0)
        obj.set_param(1, 1.0)
        r = np.array([1.0, 1.0])
        assert obj.chi2 == pytest.approx(r @ np.linalg.inv(cov) @ r)

    def test_per_parameter_terms_sum_to_chi2(self):
        cov = np.array([[1.0, 0.5], [0.5, 2.0]])
        obj = ParameterFitObject("ab", ["a", "b"], [0.0, 0.0], covariance=cov)
        obj.set_param(0, 1.0)
        obj.set_param(1, -0.5)
        total = obj.get_chi2_param(0) + obj.get_chi2_param(1)
        assert total == pytest.approx(obj.chi2)

    def test_zero_error_excluded(self):
        obj = ParameterFitObject("ab", ["a", "b"], [1.0, 2.0], [0.0, 2.0])
        obj.set_param(0, 5.0)
        obj.set_param(1, 4.0)
        assert obj.chi2 == pytest.approx(1.0)
        assert obj.get_chi2_param(0) == 0.0

        obj.set_global_par_num(0, 0)
        obj.set_global_par_num(1, 1)
        M = np.zeros((2, 2))
        y = np.zeros(2)
        C = np.zeros((2, 2))
        obj.add_to_global_chi2_der_matrix(M)
        obj.add_to_global_chi2_der_vector(y)
        obj.add_to_glob_cov(C)
        np.testing.assert_allclose(M, [[0.0, 0.0], [0.0, 0.5]])
        np.testing.assert_allclose(y, [0.0, 1.0])
        np.testing.assert_allclose(C, [[0.0, 0.0], [0.0, 4.0]])

    def test_fixed_and_unmeasured_excluded(self):
        obj = _two_params(fixed=[True, False], measured=[True, False])
        obj.set_param(0, 10.0)
        obj.set_param(1, 10.0)
        assert obj.chi2 == 0.0
        assert obj.get_chi2_param(0) == 0.0


# ---------------------------------------------------------------------------
# Global buffers
# ---------------------------------------------------------------------------

class TestGlobalBuffers:
    def _indexed(self, **kwargs):
        obj = _two_params(**kwargs)
        obj.set_global_par_num(0, 2)
        obj.set_global_par_num(1, 0)
        return obj

    def test_matrix_contribution(self):
        obj = self._indexed()
        M = np.zeros((3, 3))
        obj.add_to_global_chi2_der_matrix(M)
        assert M[2, 2] == pytest.approx(2.0 / 0.25)
        assert M[0, 0] == pytest.approx(2.0 / 4.0)
        assert M[1, 1] == 0.0

    def test_vector_contribution(self):
        obj = self._indexed()
        obj.set_param(0, 1.5)
        y = np.zeros(3)
        obj.add_to_global_chi2_der_vector(y)
        assert y[2] == pytest.approx(2.0 * 0.5 / 0.25)
        assert y[0] == 0.0

    def test_contributions_are_additive(self):
        obj = self._indexed()
        M = np.ones((3, 3))
        obj.add_to_global_chi2_der_matrix(M)
        assert M[2, 2] == pytest.approx(1.0 + 8.0)
        assert M[1, 2] == 1.0

    def test_measurement_covariance(self):
        obj = self._indexed()
        C = np.zeros((3, 3))
        obj.add_to_glob_cov(C)
        assert C[2, 2] == pytest.approx(0.25)
        assert C[0, 0] == pytest.approx(4.0)

    def test_update_params(self):
        obj = self._indexed()
        x = np.array([5.0, 0.0, 1.0])
        assert obj.update_params(x)
        assert obj.get_param(0) == 1.0
        assert obj.get_param(1) == 5.0
        assert not obj.update_params(x)

    def test_update_skips_fixed(self):
        obj = _two_params(fixed=[True, False])
        obj.set_global_par_num(1, 0)
        obj.update_params(np.array([7.0]))
        assert obj.get_param(0) == 1.0
        assert obj.get_param(1) == 7.0


# ---------------------------------------------------------------------------
# Fitted covariance and reset
# ---------------------------------------------------------------------------

class TestCovarianceAndReset:
    def test_set_cov_is_symmetric(self):
        obj = _two_params()
        obj.set_cov(0, 1, 0.3)
        assert obj.get_cov(1, 0) == 0.3
        assert np.allclose(obj.cov, obj.cov.T)

    def test_fit_error(self):
        obj = _two_params()
        obj.set_cov(1, 1, 0.09)
        assert obj.get_fit_error(1) == pytest.approx(0.3)
        assert obj.get_fit_error(0) == 0.0

    def test_reset(self):
        obj = _two_params()
        obj.set_param(0, 3.0)
        obj.set_cov(0, 0, 1.0)
        obj.reset()
        assert obj.get_param(0) == 1.0
        assert obj.get_cov(0, 0) == 0.0

    def test_str_mentions_flags(self):
        obj = _two_params(fixed=[True, False], measured=[True, False])
        text = str(obj)
        assert "a=1+-0.5 (fixed)" in text
        assert "(unmeasured)" in text


# ---------------------------------------------------------------------------
# Particles
# ---------------------------------------------------------------------------

class TestParticles:
    def test_massless_four_momentum(self):
        p4 = np.asarray(four_momentum(np.array([10.0, np.pi / 2, 0.0]), 0.0))
        np.testing.assert_allclose(p4, [10.0, 10.0, 0.0, 0.0], atol=1e-12)

    def test_massive_four_momentum(self):
        p4 = np.asarray(four_momentum(np.array([5.0, 0.0, 0.0]), 3.0))
        np.testing.assert_allclose(p4, [5.0, 0.0, 0.0, 4.0], atol=1e-12)

    def test_below_threshold_clipped(self):
        p4 = np.asarray(four_momentum(np.array([1.0, 0.3, 0.2]), 2.0))
        np.testing.assert_allclose(p4[1:], 0.0, atol=1e-12)

    def test_jet(self):
        jet = JetFitObject("j", 40.0, 1.0, 0.5, 4.0, 0.01, 0.02, mass=5.0)
        assert jet.npar == 3
        assert [jet.get_param_name(i) for i in range(3)] == ["E", "theta", "phi"]
        assert jet.get_error(2) == 0.02
        p4 = np.asarray(jet.four_momentum())
        assert p4[0] ** 2 - np.sum(p4[1:] ** 2) == pytest.approx(25.0)

    def test_negative_mass_rejected(self):
        with pytest.raises(ValueError, match="mass"):
            ParticleFitObject("p", 1.0, 0.0, 0.0, [1.0, 1.0, 1.0], mass=-1.0)

    def test_neutrino_unmeasured(self):
        nu = NeutrinoFitObject("nu", 20.0, 1.0, 2.0)
        assert not any(nu.is_param_measured(i) for i in range(3))
        nu.set_param(0, 50.0)
        assert nu.chi2 == 0.0
        assert nu.mass == 0.0
