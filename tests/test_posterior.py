import time

import numpy as np
import pytest
from scipy.integrate import trapezoid

from bayes_sir import posterior as posterior_module
from bayes_sir.dynamics import PopulationSpec
from bayes_sir.exceptions import (
    IntegrationError,
    MassConservationError,
    SamplerInitializationError,
    ValidationError,
)
from bayes_sir.posterior import ParameterLayout, PosteriorModel
from bayes_sir.priors import Exponential, HalfNormal, Normal, Priors, TruncatedNormal


def _numeric_grad(f, u, h=1e-5):
    grad = np.zeros_like(u)
    for k in range(u.size):
        e = np.zeros_like(u)
        e[k] = h
        grad[k] = (f(u + e)[0] - f(u - e)[0]) / (2 * h)
    return grad


def test_prior_gradients():
    for dist, x in [
        (Normal(5.0, 10.0), 3.0),
        (TruncatedNormal(0.4, 0.5), 0.7),
        (HalfNormal(sigma=1.0), 1.3),
        (Exponential(5.0), 0.2),
    ]:
        h = 1e-6
        fd = (dist.logpdf(x + h) - dist.logpdf(x - h)) / (2 * h)
        assert dist.grad_logpdf(x) == pytest.approx(fd, rel=1e-5)


def test_truncated_normal_is_normalized_on_positive_axis():
    dist = TruncatedNormal(0.4, 0.5)
    x = np.linspace(1e-6, 6.0, 60_001)
    dens = np.exp([dist.logpdf(v) for v in x])
    assert trapezoid(dens, x) == pytest.approx(1.0, abs=1e-3)
    assert dist.logpdf(-0.1) == -np.inf


def test_layout_maps_unconstrained_vector():
    layout = ParameterLayout("unknown_init", Priors())
    assert layout.names == ("beta", "gamma", "phi_inv", "log_init_s_raw", "init_i")
    u = np.array([np.log(4.0), np.log(0.25), np.log(0.1), np.log(50.0), np.log(2.0)])
    p = layout.parameters(u)
    assert p.beta == pytest.approx(4.0)
    assert p.gamma == pytest.approx(0.25)
    assert p.phi == pytest.approx(10.0)
    assert p.init_s == pytest.approx(1050.0)
    assert p.init_i == pytest.approx(2.0)
    # init_s always stays above the offset.
    assert layout.parameters(np.array([0.0, 0.0, 0.0, -50.0, 0.0])).init_s > 1000.0


def test_unknown_variant_rejected():
    with pytest.raises(ValidationError):
        ParameterLayout("eight_compartments", Priors())


def test_fixed_variant_requires_population(observed):
    with pytest.raises(ValidationError):
        PosteriorModel(observed, PopulationSpec(population=None))


def test_log_density_gradient_fixed(observed, population):
    model = PosteriorModel(observed, population, rtol=1e-10, atol=1e-10)
    u = np.array([np.log(3.5), np.log(0.3), np.log(0.15)])
    lp, grad = model.log_density(u)
    assert np.isfinite(lp)
    np.testing.assert_allclose(grad, _numeric_grad(model.log_density, u), rtol=1e-3, atol=1e-2)


def test_log_density_gradient_unknown_init(observed):
    model = PosteriorModel(observed, PopulationSpec(), variant="unknown_init", rtol=1e-10, atol=1e-10)
    u = np.array([np.log(3.0), np.log(0.3), np.log(0.2), np.log(20.0), np.log(1.5)])
    lp, grad = model.log_density(u)
    assert np.isfinite(lp)
    np.testing.assert_allclose(grad, _numeric_grad(model.log_density, u), rtol=1e-3, atol=1e-2)


def test_log_density_prefers_generating_values(observed, population):
    model = PosteriorModel(observed, population)
    truth, _ = model.log_density(np.log([4.0, 0.25, 0.1]))
    wrong, _ = model.log_density(np.log([0.5, 2.0, 0.1]))
    assert truth > wrong


def test_integration_failure_is_a_rejected_proposal(observed, population, monkeypatch):
    def failing_forward(*args, **kwargs):
        raise IntegrationError("step size collapsed")

    model = PosteriorModel(observed, population)
    monkeypatch.setattr(posterior_module, "forward", failing_forward)
    lp, grad = model.log_density(np.zeros(3))
    assert lp == -np.inf
    np.testing.assert_array_equal(grad, 0.0)
    with pytest.raises(SamplerInitializationError):
        model.initial_point(np.random.default_rng(0), max_tries=5)


def test_stiff_proposal_is_rejected_quickly(observed, population):
    model = PosteriorModel(observed, population, max_num_steps=2000)
    start = time.perf_counter()
    lp, grad = model.log_density(np.array([0.0, 12.0, 0.0]))
    assert time.perf_counter() - start < 5.0
    assert lp == -np.inf
    np.testing.assert_array_equal(grad, 0.0)


def test_mass_conservation_failure_is_fatal(observed, population, monkeypatch):
    def broken_forward(*args, **kwargs):
        raise MassConservationError("S+I+R drifted")

    model = PosteriorModel(observed, population)
    monkeypatch.setattr(posterior_module, "forward", broken_forward)
    with pytest.raises(MassConservationError):
        model.log_density(np.zeros(3))


def test_initial_point_is_finite_and_within_radius(observed, population):
    model = PosteriorModel(observed, population)
    u = model.initial_point(np.random.default_rng(5), radius=2.0)
    assert u.shape == (3,)
    assert np.all(np.abs(u) <= 2.0)
    assert np.isfinite(model.log_density(u)[0])
