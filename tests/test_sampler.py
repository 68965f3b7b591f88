import time

import numpy as np
import pytensor
import pytensor.tensor as pt
import pytest

from bayes_sir.sampler import LogDensityOp, sample_chain


def _gaussian(scales):
    scales = np.asarray(scales, dtype=float)

    def log_density(q):
        z = q / scales
        return -0.5 * float(z @ z), -q / scales ** 2

    return log_density


def test_op_exposes_value_and_gradient():
    log_density = _gaussian([1.0, 2.0])
    u = pt.dvector("u")
    logp, _ = LogDensityOp(log_density)(u)
    fn = pytensor.function([u], [logp, pytensor.grad(logp, u)])
    value, grad = fn(np.array([1.0, -2.0]))
    assert value == pytest.approx(-1.0)
    np.testing.assert_allclose(grad, [-1.0, 0.5])


def test_standard_normal_moments():
    result = sample_chain(_gaussian([1.0, 1.0]), np.array([1.5, -1.5]), 300, 1500, seed=1)
    assert result.complete
    assert result.samples.shape == (1500, 2)
    np.testing.assert_allclose(result.samples.mean(axis=0), 0.0, atol=0.15)
    np.testing.assert_allclose(result.samples.var(axis=0), 1.0, rtol=0.2)
    assert 0.5 < result.accept_stat.mean() <= 1.0
    assert result.step_size > 0


def test_adapts_to_different_scales():
    result = sample_chain(_gaussian([1.0, 10.0]), np.zeros(2), 500, 1000, seed=2)
    assert result.samples[:, 0].std() == pytest.approx(1.0, rel=0.25)
    assert result.samples[:, 1].std() == pytest.approx(10.0, rel=0.25)


def test_same_seed_same_draws():
    a = sample_chain(_gaussian([1.0, 2.0]), np.ones(2), 50, 50, seed=9)
    b = sample_chain(_gaussian([1.0, 2.0]), np.ones(2), 50, 50, seed=9)
    np.testing.assert_array_equal(a.samples, b.samples)
    c = sample_chain(_gaussian([1.0, 2.0]), np.ones(2), 50, 50, seed=10)
    assert not np.array_equal(a.samples, c.samples)


def test_treedepth_is_capped():
    result = sample_chain(_gaussian([1.0]), np.zeros(1), 30, 100, seed=3, max_treedepth=2)
    assert result.treedepth.max() <= 2
    assert result.n_leapfrog.max() <= 2 ** 2


def test_invalid_region_is_never_accepted():
    def half_line(q):
        if q[0] <= 0:
            return -np.inf, np.zeros(1)
        return -0.5 * float(q[0] ** 2), -q

    result = sample_chain(half_line, np.array([1.0]), 100, 300, seed=4)
    assert np.all(result.samples > 0)
    assert np.all(np.isfinite(result.log_density))


def test_past_deadline_returns_incomplete_chain():
    result = sample_chain(_gaussian([1.0]), np.zeros(1), 100, 100, seed=5, deadline=time.time() - 1)
    assert not result.complete
    assert result.n_draws == 0
    assert result.samples.shape == (0, 1)


def test_deadline_stops_a_running_chain():
    start = time.perf_counter()
    result = sample_chain(
        _gaussian([1.0, 1.0]), np.zeros(2), 100, 1_000_000, seed=6, deadline=time.time() + 2.0
    )
    assert not result.complete
    assert result.n_draws < 1_000_000
    assert time.perf_counter() - start < 60.0
