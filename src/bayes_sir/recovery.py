"""Recovery of injected parameters.

Simulates case data at known parameters, calibrates the model on it and
checks whether the central credible interval of each parameter covers the
generating value. Repeating this over independent seeds estimates the
interval's empirical coverage.
"""


from dataclasses import dataclass
import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from .calibration import CalibrationResult, calibrate
from .config import DEFAULTS, chain_rng, default_times
from .datasets import ObservedSeries
from .dynamics import PopulationSpec, simulate_cases
from .metrics import credible_interval, posterior_summary

logger = logging.getLogger(__name__)

# Spawn key of the data-generating stream; never used by a chain.
DATA_STREAM = 2 ** 31 - 1


@dataclass
class TrialResult:
    trial: int
    seed: int
    truth: Dict[str, float]
    mean: Dict[str, float]
    lower: Dict[str, float]
    upper: Dict[str, float]
    converged: bool

    def covers(self, name: str) -> bool:
        return self.lower[name] <= self.truth[name] <= self.upper[name]

    def as_row(self) -> Dict[str, object]:
        row: Dict[str, object] = {"trial": self.trial, "seed": self.seed, "converged": self.converged}
        for name in self.truth:
            row[f"{name}_true"] = self.truth[name]
            row[f"{name}_mean"] = self.mean[name]
            row[f"{name}_lower"] = self.lower[name]
            row[f"{name}_upper"] = self.upper[name]
            row[f"{name}_covered"] = self.covers(name)
        return row


def summarize_trial(
    result: CalibrationResult,
    truth: Dict[str, float],
    trial: int = 0,
    seed: int = 0,
    level: float = 0.8,
) -> TrialResult:
    mean, lower, upper = {}, {}, {}
    for name in truth:
        samples = result.parameter_array(name)
        mean[name] = posterior_summary(samples)["mean"]
        lower[name], upper[name] = credible_interval(samples, level)
    return TrialResult(trial, seed, dict(truth), mean, lower, upper, result.diagnostics.converged)


def recovery_trial(
    trial: int,
    seed: int,
    beta: float = DEFAULTS.beta,
    gamma: float = DEFAULTS.gamma,
    phi: float = DEFAULTS.phi,
    population: float = DEFAULTS.population,
    i0: float = DEFAULTS.i0,
    n_days: int = DEFAULTS.n_days,
    level: float = 0.8,
    **calibrate_options,
) -> TrialResult:
    """Simulate one data set at known parameters and calibrate on it."""
    times = default_times(n_days)
    cases = simulate_cases(times, population, i0, beta, gamma, phi, rng=chain_rng(seed, DATA_STREAM))
    observed = ObservedSeries(times, cases)
    result = calibrate(
        observed,
        PopulationSpec(population=population, i0=i0),
        seed=seed,
        **calibrate_options,
    )
    summary = summarize_trial(
        result, {"beta": beta, "gamma": gamma}, trial=trial, seed=seed, level=level
    )
    logger.info(
        "Trial %d: beta %.3f [%.3f, %.3f], gamma %.3f [%.3f, %.3f]",
        trial,
        summary.mean["beta"],
        summary.lower["beta"],
        summary.upper["beta"],
        summary.mean["gamma"],
        summary.lower["gamma"],
        summary.upper["gamma"],
    )
    return summary


def coverage_rate(trials: Sequence[TrialResult], names: Optional[Sequence[str]] = None) -> Dict[str, float]:
    """Fraction of trials whose interval covers the truth, per parameter."""
    if not trials:
        return {}
    names = list(names or trials[0].truth)
    return {name: float(np.mean([t.covers(name) for t in trials])) for name in names}


def run_recovery_study(n_trials: int, seed: int = DEFAULTS.seed, **trial_options) -> List[TrialResult]:
    return [recovery_trial(i, seed + i, **trial_options) for i in range(n_trials)]
