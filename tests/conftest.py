import numpy as np
import pytest

from bayes_sir.config import default_times
from bayes_sir.datasets import ObservedSeries
from bayes_sir.dynamics import PopulationSpec, simulate_cases

N = 1000
I0 = 1.0
BETA = 4.0
GAMMA = 0.25
PHI = 10.0


@pytest.fixture
def times():
    return default_times(14)


@pytest.fixture
def population():
    return PopulationSpec(population=N, i0=I0)


@pytest.fixture
def observed(times):
    rng = np.random.default_rng(20240101)
    cases = simulate_cases(times, N, I0, BETA, GAMMA, PHI, rng=rng)
    return ObservedSeries(times, cases)
