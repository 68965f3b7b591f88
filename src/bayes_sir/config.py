"""Central defaults for SIR simulation and calibration.

Defines the Defaults dataclass with shared settings (time grid, population,
the injected parameters used for synthetic data, sampler and solver
settings, output paths), plus a helper that builds chain-scoped random
generators. Imported by scripts and modules to keep runs reproducible and
consistent.
"""


from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np


# Central defaults for reproducible runs.
@dataclass(frozen=True)
class Defaults:
    seed: int = 42
    t0: float = 0.0
    n_days: int = 14
    population: int = 1000
    i0: float = 1.0
    beta: float = 4.0
    gamma: float = 0.25
    phi: float = 10.0
    # Solver tolerances (RK45) and the mass-conservation check.
    rtol: float = 1e-6
    atol: float = 1e-6
    mass_rtol: float = 1e-6
    # RK45 steps allowed per solve before the proposal is rejected.
    max_num_steps: int = 10_000
    # Sampler settings.
    n_chains: int = 4
    n_warmup: int = 1000
    n_samples: int = 1000
    target_accept: float = 0.8
    max_treedepth: int = 10
    init_radius: float = 2.0
    rhat_threshold: float = 1.05
    runs_dir: Path = Path("runs")
    cache_dir: Path = Path("data/processed/calibration")


# Shared defaults instance used across scripts.
DEFAULTS = Defaults()


def default_times(n_days: int = DEFAULTS.n_days, t0: float = DEFAULTS.t0) -> np.ndarray:
    """Daily observation grid t0+1, ..., t0+n_days."""
    if n_days <= 0:
        raise ValueError("n_days must be positive")
    return t0 + np.arange(1, n_days + 1, dtype=float)


def chain_rng(seed: Optional[int], chain: int = 0) -> np.random.Generator:
    """Generator for one chain, derived from a top-level seed.

    The same (seed, chain) pair always yields the same stream, independent
    of how many chains run alongside it.
    """
    seq = np.random.SeedSequence(seed, spawn_key=(int(chain),))
    return np.random.default_rng(seq)
