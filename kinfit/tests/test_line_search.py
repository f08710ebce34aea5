"""Tests for kinfit.fitting.line_search -- backtracking along the Newton step."""

import numpy as np
import pytest

from kinfit.fitting import FitterConfig
from kinfit.fitting.line_search import LineSearchResult, optimize_scale


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _Residual:
    """Merit 0.5 |r(x)|^2 for a residual function, counting evaluations."""

    def __init__(self, fn):
        self.fn = fn
        self.calls = 0

    def __call__(self, x):
        self.calls += 1
        r = np.atleast_1d(self.fn(x))
        return 0.5 * float(r @ r), 0.0


def _linear_problem():
    A = np.array([[2.0, 0.5], [0.5, 1.0]])
    b = np.array([1.0, -2.0])
    evaluate = _Residual(lambda x: A @ x - b)
    x0 = np.zeros(2)
    r0 = A @ x0 - b
    dx = np.linalg.solve(A, r0)
    return evaluate, x0, dx, A @ r0, 0.5 * float(r0 @ r0)


# ---------------------------------------------------------------------------
# Acceptance
# ---------------------------------------------------------------------------

class TestAcceptance:
    def test_full_newton_step(self):
        evaluate, x0, dx, grad, f0 = _linear_problem()
        best = optimize_scale(evaluate, x0, dx, dx, grad, f0,
                              LineSearchResult.start(x0, 0.0, f0))
        assert best.scale == 1.0
        assert best.fval == pytest.approx(0.0, abs=1e-20)
        assert evaluate.calls == 1

    def test_backtracks_on_overshoot(self):
        # Newton on atan overshoots from x = 3
        evaluate = _Residual(lambda x: np.arctan(x))
        x0 = np.array([3.0])
        r0 = np.arctan(x0)
        deriv = 1.0 / (1.0 + x0 ** 2)
        dx = r0 / deriv
        f0 = 0.5 * float(r0 @ r0)
        config = FitterConfig(max_step=1e6)

        best = optimize_scale(evaluate, x0, dx, dx, deriv * r0, f0,
                              LineSearchResult.start(x0, 0.0, f0), config)
        assert 0.1 <= best.scale <= 0.5
        assert best.fval < f0
        assert evaluate.calls >= 2


# ---------------------------------------------------------------------------
# Safeguards
# ---------------------------------------------------------------------------

class TestSafeguards:
    def test_step_capped(self):
        evaluate = _Residual(lambda x: x - np.array([100.0, 0.0]))
        x0 = np.zeros(2)
        r0 = x0 - np.array([100.0, 0.0])
        f0 = 0.5 * float(r0 @ r0)
        best = optimize_scale(evaluate, x0, r0, r0, r0, f0,
                              LineSearchResult.start(x0, 0.0, f0))
        assert best.scale == 1.0
        np.testing.assert_allclose(best.x, [5.0, 0.0])
        assert np.max(np.abs(best.step)) == pytest.approx(5.0)

    def test_inputs_not_modified(self):
        evaluate = _Residual(lambda x: x - np.array([100.0, 0.0]))
        x0 = np.zeros(2)
        dx = np.array([-100.0, 0.0])
        before = dx.copy()
        optimize_scale(evaluate, x0, dx, dx, dx, 5000.0,
                       LineSearchResult.start(x0, 0.0, 5000.0))
        np.testing.assert_array_equal(dx, before)

    def test_zero_step_returns_best(self):
        evaluate = _Residual(lambda x: x)
        x0 = np.ones(2)
        start = LineSearchResult.start(x0, 1.0, 1.0)
        best = optimize_scale(evaluate, x0, np.zeros(2), np.zeros(2), np.ones(2), 1.0, start)
        assert best is start
        assert evaluate.calls == 0

    def test_uphill_direction_never_worse(self):
        evaluate, x0, dx, grad, f0 = _linear_problem()
        start = LineSearchResult.start(x0, 0.0, f0)
        best = optimize_scale(evaluate, x0, -dx, -dx, grad, f0, start)
        assert best.fval == f0
        assert best.scale == 0.0
        assert evaluate.calls <= FitterConfig().max_line_search_trials

    def test_nonfinite_trial_halves(self):
        # Merit is infinite for x < 0: the full step lands there
        def residual(x):
            return np.where(x < 0, np.inf, x - 0.5)

        evaluate = _Residual(residual)
        x0 = np.array([1.0])
        dx = np.array([1.5])
        f0 = 0.125
        best = optimize_scale(evaluate, x0, dx, dx, np.array([0.5]), f0,
                              LineSearchResult.start(x0, 0.0, f0))
        assert best.scale == 0.5
        assert best.fval < f0

    def test_best_threaded_between_calls(self):
        evaluate, x0, dx, grad, f0 = _linear_problem()
        better = LineSearchResult(np.array([9.0, 9.0]), 0.0, -1.0, 0.7, dx)
        best = optimize_scale(evaluate, x0, dx, dx, grad, f0, better)
        assert best is better
