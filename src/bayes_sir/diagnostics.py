"""Convergence diagnostics for multi-chain posterior samples.

Rank-normalized split R-hat and bulk/tail effective sample size come from
ArviZ. Problems are collected as warnings on the returned record (and
logged); nothing here raises, so callers must check ``converged`` before
trusting the draws.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
from typing import Dict, List, Mapping

import arviz as az
import numpy as np

from .config import DEFAULTS

logger = logging.getLogger(__name__)

# ArviZ needs at least this many draws per chain.
MIN_DRAWS = 4


@dataclass
class Diagnostics:
    rhat: Dict[str, float]
    ess_bulk: Dict[str, float]
    ess_tail: Dict[str, float]
    n_divergent: int = 0
    n_max_treedepth: int = 0
    n_chains: int = 0
    n_draws: int = 0
    complete: bool = True
    rhat_threshold: float = DEFAULTS.rhat_threshold
    warnings: List[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        """True when every R-hat is finite and at or below the threshold."""
        if not self.rhat:
            return False
        values = np.asarray(list(self.rhat.values()), dtype=float)
        return bool(np.all(np.isfinite(values)) and np.all(values <= self.rhat_threshold))

    def to_dict(self) -> Dict[str, object]:
        out = asdict(self)
        out["converged"] = self.converged
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Diagnostics":
        kwargs = {k: v for k, v in payload.items() if k != "converged"}
        return cls(**kwargs)


def _finite_or_nan(value) -> float:
    value = float(value)
    return value if np.isfinite(value) else float("nan")


def compute_diagnostics(
    draws: Mapping[str, np.ndarray],
    divergent: np.ndarray,
    treedepth: np.ndarray,
    max_treedepth: int = DEFAULTS.max_treedepth,
    rhat_threshold: float = DEFAULTS.rhat_threshold,
    complete: bool = True,
) -> Diagnostics:
    """Diagnose posterior draws.

    Parameters
    ----------
    draws:
        Parameter name -> array of shape ``(chain, draw)``.
    divergent, treedepth:
        Per-transition sampler statistics (any shape, flattened).
    """
    rhat: Dict[str, float] = {}
    ess_bulk: Dict[str, float] = {}
    ess_tail: Dict[str, float] = {}
    messages: List[str] = []

    n_chains, n_draws = 0, 0
    for name, values in draws.items():
        values = np.atleast_2d(np.asarray(values, dtype=float))
        n_chains, n_draws = values.shape
        if n_draws < MIN_DRAWS:
            rhat[name] = ess_bulk[name] = ess_tail[name] = float("nan")
            continue
        rhat[name] = _finite_or_nan(az.rhat(values))
        ess_bulk[name] = _finite_or_nan(az.ess(values, method="bulk"))
        ess_tail[name] = _finite_or_nan(az.ess(values, method="tail"))

    if n_draws < MIN_DRAWS:
        messages.append(f"only {n_draws} draws per chain; diagnostics unavailable")
    for name, value in rhat.items():
        if not np.isfinite(value):
            messages.append(f"R-hat for {name} could not be computed")
        elif value > rhat_threshold:
            messages.append(f"R-hat for {name} is {value:.3f} (> {rhat_threshold})")
    for name, value in ess_bulk.items():
        if np.isfinite(value) and value < 100 * max(n_chains, 1):
            messages.append(f"bulk ESS for {name} is {value:.0f}; tail and mean estimates may be unreliable")

    n_divergent = int(np.sum(np.asarray(divergent, dtype=bool)))
    if n_divergent:
        messages.append(f"{n_divergent} divergent transitions after warm-up")
    n_max_treedepth = int(np.sum(np.asarray(treedepth) >= max_treedepth))
    if n_max_treedepth:
        messages.append(f"{n_max_treedepth} transitions hit max_treedepth={max_treedepth}")
    if not complete:
        messages.append("sampling stopped early; some chains are incomplete")

    for message in messages:
        logger.warning(message)

    return Diagnostics(
        rhat=rhat,
        ess_bulk=ess_bulk,
        ess_tail=ess_tail,
        n_divergent=n_divergent,
        n_max_treedepth=n_max_treedepth,
        n_chains=int(n_chains),
        n_draws=int(n_draws),
        complete=complete,
        rhat_threshold=rhat_threshold,
        warnings=messages,
    )
