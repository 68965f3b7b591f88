import time

import numpy as np
import pytest

from bayes_sir.dynamics import (
    Parameters,
    PopulationSpec,
    forward,
    simulate,
    simulate_cases,
    simulate_unknown_init,
)
from bayes_sir.exceptions import IntegrationError, ValidationError


@pytest.mark.parametrize(
    "N, i0, beta, gamma",
    [
        (1000, 1, 4.0, 0.25),
        (763, 1, 1.7, 0.5),
        (5000, 50, 10.0, 10.0),
        (100, 100, 2.0, 0.1),
        (1e6, 3, 0.3, 0.2),
    ],
)
def test_mass_is_conserved(N, i0, beta, gamma):
    times = np.linspace(0.1, 50, 500)
    traj = simulate(times, N, i0, beta, gamma)
    np.testing.assert_allclose(traj.total, N, rtol=1e-6)


def test_recovered_never_decreases():
    traj = simulate(np.linspace(0.5, 60, 120), 2000, 5, 3.0, 0.3)
    assert np.all(np.diff(traj.R) >= -1e-9)


def test_no_transmission_keeps_susceptibles():
    traj = simulate(np.linspace(0.1, 30, 300), 1000, 10, 0.0, 0.5)
    np.testing.assert_allclose(traj.S, 990.0)
    assert np.all(np.diff(traj.I) <= 1e-9)
    # Pure decay: I(t) = i0 * exp(-gamma t).
    np.testing.assert_allclose(traj.I, 10 * np.exp(-0.5 * traj.times), rtol=1e-4, atol=1e-4)


def test_high_r0_epidemic_peaks_early_and_burns_out():
    times = np.linspace(0.1, 25, 250)
    traj = simulate(times, 1000, 1, 4.0, 0.25)
    peak = int(np.argmax(traj.I))
    assert 0 < peak < traj.I.size - 1
    assert times[peak] < 10
    assert traj.I[peak] > 500
    assert traj.I[-1] < 0.01 * 1000


def test_output_sampled_at_requested_times():
    times = np.array([0.5, 1.0, 7.25, 13.0])
    traj = simulate(times, 1000, 1, 2.0, 0.4)
    np.testing.assert_array_equal(traj.times, times)
    assert traj.as_array().shape == (4, 3)


def test_simulation_is_deterministic():
    times = np.arange(1.0, 15.0)
    a = simulate(times, 1000, 1, 4.0, 0.25)
    b = simulate(times, 1000, 1, 4.0, 0.25)
    np.testing.assert_array_equal(a.as_array(), b.as_array())


def test_unknown_init_matches_fixed_population():
    times = np.arange(1.0, 15.0)
    fixed = simulate(times, 1000, 2, 4.0, 0.25)
    offset = simulate_unknown_init(times, 998.0, 2.0, 4.0, 0.25)
    np.testing.assert_allclose(offset.as_array(), fixed.as_array(), rtol=1e-4, atol=1e-2)
    np.testing.assert_allclose(offset.total, 1000.0, rtol=1e-6)


def test_forward_dispatches_on_variant():
    times = np.arange(1.0, 8.0)
    fixed = forward(Parameters(2.0, 0.5), times, PopulationSpec(population=500, i0=5))
    unknown = forward(Parameters(2.0, 0.5, init_s=495.0, init_i=5.0), times)
    np.testing.assert_allclose(fixed.I, unknown.I, rtol=1e-4, atol=1e-3)


@pytest.mark.parametrize("variant", ["fixed", "unknown_init"])
def test_sensitivities_match_finite_differences(variant):
    times = np.arange(1.0, 15.0)
    pop = PopulationSpec(population=1000, i0=1)
    base = {"beta": 1.2, "gamma": 0.3}
    if variant == "unknown_init":
        base.update(init_s=1200.0, init_i=2.0)
    names = ["beta", "gamma"] + (["init_s", "init_i"] if variant == "unknown_init" else [])

    _, dI = forward(Parameters(**base), times, pop, sensitivities=True, rtol=1e-10, atol=1e-10)
    assert dI.shape == (times.size, len(names))

    for k, name in enumerate(names):
        h = 1e-5 * max(abs(base[name]), 1.0)
        up = dict(base, **{name: base[name] + h})
        down = dict(base, **{name: base[name] - h})
        I_up = forward(Parameters(**up), times, pop, rtol=1e-10, atol=1e-10).I
        I_down = forward(Parameters(**down), times, pop, rtol=1e-10, atol=1e-10).I
        fd = (I_up - I_down) / (2 * h)
        scale = np.max(np.abs(fd))
        np.testing.assert_allclose(dI[:, k], fd, rtol=1e-3, atol=1e-4 * scale)


def test_parameters_derived_quantities():
    p = Parameters(beta=4.0, gamma=0.25, phi=10.0)
    assert p.variant == "fixed"
    assert p.r0 == pytest.approx(16.0)
    assert p.recovery_time == pytest.approx(4.0)
    assert Parameters(1.0, 0.5, init_s=10.0, init_i=1.0).variant == "unknown_init"
    with pytest.raises(ValidationError):
        Parameters(1.0, 0.5, init_s=10.0)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"times": [1.0, 3.0, 2.0]},
        {"times": [1.0, 1.0, 2.0]},
        {"times": [-1.0, 1.0]},
        {"times": []},
        {"N": 0},
        {"N": -5},
        {"i0": 0},
        {"i0": 2000},
        {"beta": -1.0},
        {"gamma": float("nan")},
    ],
)
def test_invalid_inputs_fail_fast(kwargs):
    args = {"times": [1.0, 2.0, 3.0], "N": 1000, "i0": 1, "beta": 2.0, "gamma": 0.5}
    args.update(kwargs)
    with pytest.raises(ValidationError):
        simulate(args["times"], args["N"], args["i0"], args["beta"], args["gamma"])


def test_fixed_variant_needs_population():
    with pytest.raises(ValidationError):
        forward(Parameters(2.0, 0.5), [1.0, 2.0], PopulationSpec(population=None))


def test_simulate_cases_mean_matches_infected():
    times = np.arange(1.0, 15.0)
    traj = simulate(times, 1000, 1, 4.0, 0.25)
    rng = np.random.default_rng(7)
    cases = simulate_cases(times, 1000, 1, 4.0, 0.25, 10.0, rng=rng, n_replicates=10_000)
    assert cases.shape == (10_000, times.size)
    assert cases.dtype == np.int64
    assert np.all(cases >= 0)
    # Check where I(t) is large enough for a 5% relative tolerance to be meaningful.
    mask = traj.I > 5
    np.testing.assert_allclose(cases.mean(axis=0)[mask], traj.I[mask], rtol=0.05)


def test_simulate_cases_is_reproducible_with_explicit_rng():
    times = np.arange(1.0, 10.0)
    a = simulate_cases(times, 1000, 1, 4.0, 0.25, 10.0, rng=np.random.default_rng(3))
    b = simulate_cases(times, 1000, 1, 4.0, 0.25, 10.0, rng=np.random.default_rng(3))
    np.testing.assert_array_equal(a, b)


def test_grid_may_start_at_t0():
    times = np.arange(0.0, 26.0)
    traj = simulate(times, 1000, 1, 4.0, 0.25)
    np.testing.assert_array_equal(traj.as_array()[0], [999.0, 1.0, 0.0])
    np.testing.assert_allclose(traj.total, 1000.0, rtol=1e-6)
    assert times[int(np.argmax(traj.I))] < 10

    later = simulate(times[1:], 1000, 1, 4.0, 0.25)
    np.testing.assert_allclose(traj.as_array()[1:], later.as_array(), rtol=1e-6, atol=1e-6)

    only_start = simulate([0.0], 1000, 1, 4.0, 0.25)
    np.testing.assert_array_equal(only_start.I, [1.0])


def test_sensitivities_at_t0_are_initial_values():
    times = np.arange(0.0, 5.0)
    _, dI = forward(Parameters(2.0, 0.5, init_s=500.0, init_i=3.0), times, sensitivities=True)
    # d I(t0) / d(beta, gamma, init_s, init_i)
    np.testing.assert_array_equal(dI[0], [0.0, 0.0, 0.0, 1.0])


def test_stiff_proposal_hits_step_limit_quickly():
    times = np.arange(1.0, 15.0)
    start = time.perf_counter()
    with pytest.raises(IntegrationError):
        simulate(times, 1000, 1, 4.0, 1e5, max_num_steps=2_000)
    assert time.perf_counter() - start < 5.0
    # The default limit leaves ordinary parameter ranges untouched.
    simulate(times, 1000, 1, 10.0, 10.0)
