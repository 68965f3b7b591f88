import numpy as np

from bayes_sir.diagnostics import Diagnostics, compute_diagnostics


def _no_stats(n):
    return np.zeros(n, dtype=bool), np.ones(n, dtype=int)


def test_iid_chains_converge():
    draws = {"beta": np.random.default_rng(0).normal(size=(4, 500))}
    diag = compute_diagnostics(draws, *_no_stats(2000))
    assert diag.rhat["beta"] < 1.01
    assert diag.ess_bulk["beta"] > 1000
    assert diag.converged
    assert diag.n_chains == 4 and diag.n_draws == 500


def test_disagreeing_chains_do_not_converge():
    rng = np.random.default_rng(1)
    values = rng.normal(size=(4, 500))
    values[0] += 5.0
    diag = compute_diagnostics({"gamma": values}, *_no_stats(2000))
    assert diag.rhat["gamma"] > 1.05
    assert not diag.converged
    assert any("R-hat for gamma" in w for w in diag.warnings)


def test_threshold_is_configurable():
    rng = np.random.default_rng(2)
    values = rng.normal(size=(4, 500))
    values[0] += 0.3
    rhat = compute_diagnostics({"beta": values}, *_no_stats(2000)).rhat["beta"]
    assert compute_diagnostics({"beta": values}, *_no_stats(2000), rhat_threshold=rhat + 0.01).converged
    assert not compute_diagnostics({"beta": values}, *_no_stats(2000), rhat_threshold=rhat - 1e-6).converged


def test_divergences_and_treedepth_counted():
    draws = {"beta": np.random.default_rng(3).normal(size=(2, 100))}
    divergent = np.zeros(200, dtype=bool)
    divergent[[3, 50, 199]] = True
    treedepth = np.full(200, 4)
    treedepth[:7] = 10
    diag = compute_diagnostics(draws, divergent, treedepth, max_treedepth=10)
    assert diag.n_divergent == 3
    assert diag.n_max_treedepth == 7
    assert any("divergent" in w for w in diag.warnings)


def test_too_few_draws_is_not_converged():
    diag = compute_diagnostics({"beta": np.zeros((2, 2))}, *_no_stats(4))
    assert np.isnan(diag.rhat["beta"])
    assert not diag.converged


def test_incomplete_run_is_reported():
    draws = {"beta": np.random.default_rng(4).normal(size=(2, 100))}
    diag = compute_diagnostics(draws, *_no_stats(200), complete=False)
    assert not diag.complete
    assert any("incomplete" in w for w in diag.warnings)


def test_dict_round_trip():
    draws = {"beta": np.random.default_rng(5).normal(size=(2, 100))}
    diag = compute_diagnostics(draws, *_no_stats(200))
    payload = diag.to_dict()
    assert payload["converged"] == diag.converged
    restored = Diagnostics.from_dict(payload)
    assert restored.rhat == diag.rhat
    assert restored.converged == diag.converged
