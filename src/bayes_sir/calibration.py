"""Bayesian calibration of the SIR model against observed case counts.

Runs independent NUTS chains (optionally in worker processes), then turns
every retained draw into a PosteriorDraw: parameters, derived R0 and
recovery time, the simulated trajectory, posterior-predictive replicate
counts (``yrep``) and the pointwise log-likelihood (``log_lik``) of each
observation.

Typical usage:
    result = calibrate(series, PopulationSpec(population=763, i0=1), seed=1)
    if not result.diagnostics.converged:
        print(result.diagnostics.warnings)
"""

from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
import logging
import os
import time
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import DEFAULTS, chain_rng
from .datasets import ObservedSeries
from .diagnostics import Diagnostics, compute_diagnostics
from .dynamics import Parameters, PopulationSpec, Trajectory, forward
from .exceptions import ValidationError
from .metrics import posterior_summary
from .observation import negbin_logpmf, observe_negbin
from .posterior import PosteriorModel
from .priors import Priors
from .sampler import ChainResult, sample_chain

logger = logging.getLogger(__name__)

# Constrained parameter columns reported per variant.
PARAMETER_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "fixed": ("beta", "gamma", "phi"),
    "unknown_init": ("beta", "gamma", "phi", "init_s", "init_i"),
}
DERIVED_COLUMNS: Tuple[str, ...] = ("R0", "recovery_time")
SERIES_COLUMNS: Tuple[str, ...] = ("S", "I", "R", "yrep", "log_lik")


@dataclass(frozen=True)
class SamplerSettings:
    n_chains: int = DEFAULTS.n_chains
    n_warmup: int = DEFAULTS.n_warmup
    n_samples: int = DEFAULTS.n_samples
    seed: int = DEFAULTS.seed
    target_accept: float = DEFAULTS.target_accept
    max_treedepth: int = DEFAULTS.max_treedepth
    init_radius: float = DEFAULTS.init_radius
    rhat_threshold: float = DEFAULTS.rhat_threshold
    rtol: float = DEFAULTS.rtol
    atol: float = DEFAULTS.atol
    max_num_steps: int = DEFAULTS.max_num_steps

    def validate(self) -> None:
        if self.n_chains < 1:
            raise ValidationError("n_chains must be at least 1")
        if self.n_samples < 1:
            raise ValidationError("n_samples must be at least 1")
        if self.n_warmup < 0:
            raise ValidationError("n_warmup must be non-negative")
        if not 0 < self.target_accept < 1:
            raise ValidationError("target_accept must be in (0,1)")
        if self.max_treedepth < 1:
            raise ValidationError("max_treedepth must be at least 1")


@dataclass(frozen=True, eq=False)
class PosteriorDraw:
    chain: int
    iteration: int
    params: Parameters
    trajectory: Trajectory
    yrep: np.ndarray
    log_lik: np.ndarray

    @property
    def r0(self) -> float:
        return self.params.r0

    @property
    def recovery_time(self) -> float:
        return self.params.recovery_time


@dataclass
class ChainSummary:
    chain: int
    n_draws: int
    step_size: float
    mean_accept: float
    n_divergent: int
    complete: bool
    elapsed: float


@dataclass
class _ChainTask:
    chain: int
    observed: ObservedSeries
    population: PopulationSpec
    priors: Priors
    variant: str
    settings: SamplerSettings
    deadline: Optional[float] = None


@dataclass
class ChainOutput:
    """Arrays produced by one chain; rows are retained iterations."""

    sampler: ChainResult
    params: np.ndarray
    S: np.ndarray
    I: np.ndarray
    R: np.ndarray
    yrep: np.ndarray
    log_lik: np.ndarray


def _run_chain(task: _ChainTask) -> ChainOutput:
    """Sample one chain and compute its posterior predictive quantities.

    Module-level so it can be shipped to worker processes.
    """
    settings = task.settings
    model = PosteriorModel(
        task.observed,
        task.population,
        priors=task.priors,
        variant=task.variant,
        rtol=settings.rtol,
        atol=settings.atol,
        max_num_steps=settings.max_num_steps,
    )
    rng = chain_rng(settings.seed, task.chain)
    q0 = model.initial_point(rng, radius=settings.init_radius)
    result = sample_chain(
        model.log_density,
        q0,
        settings.n_warmup,
        settings.n_samples,
        seed=int(rng.integers(2 ** 31 - 1)),
        chain=task.chain,
        target_accept=settings.target_accept,
        max_treedepth=settings.max_treedepth,
        deadline=task.deadline,
    )

    columns = PARAMETER_COLUMNS[task.variant]
    n, T = result.n_draws, len(task.observed)
    out = {name: np.empty((n, T)) for name in ("S", "I", "R", "log_lik")}
    yrep = np.empty((n, T), dtype=np.int64)
    params = np.empty((n, len(columns)))
    for i, u in enumerate(result.samples):
        p = model.layout.parameters(u)
        traj = forward(
            p,
            task.observed.times,
            task.population,
            rtol=settings.rtol,
            atol=settings.atol,
            max_num_steps=settings.max_num_steps,
        )
        params[i] = [getattr(p, c) for c in columns]
        out["S"][i], out["I"][i], out["R"][i] = traj.S, traj.I, traj.R
        yrep[i] = observe_negbin(traj.I, p.phi, rng=rng)
        out["log_lik"][i] = negbin_logpmf(task.observed.counts, traj.I, p.phi)

    logger.info(
        "Chain %d finished: %d draws, step size %.3g, %d divergences (%.1fs)",
        task.chain,
        n,
        result.step_size,
        int(result.divergent.sum()),
        result.elapsed,
    )
    return ChainOutput(result, params, out["S"], out["I"], out["R"], yrep, out["log_lik"])


def _to_parameters(variant: str, row: Sequence[float]) -> Parameters:
    values = dict(zip(PARAMETER_COLUMNS[variant], (float(x) for x in row)))
    return Parameters(**values)


def build_draws(
    variant: str,
    times: np.ndarray,
    chain: np.ndarray,
    iteration: np.ndarray,
    params: np.ndarray,
    S: np.ndarray,
    I: np.ndarray,
    R: np.ndarray,
    yrep: np.ndarray,
    log_lik: np.ndarray,
) -> List[PosteriorDraw]:
    """Assemble PosteriorDraw objects from stacked per-draw arrays."""
    return [
        PosteriorDraw(
            chain=int(chain[k]),
            iteration=int(iteration[k]),
            params=_to_parameters(variant, params[k]),
            trajectory=Trajectory(times, S[k], I[k], R[k]),
            yrep=yrep[k],
            log_lik=log_lik[k],
        )
        for k in range(len(chain))
    ]


@dataclass
class CalibrationResult:
    variant: str
    observed: ObservedSeries
    population: PopulationSpec
    settings: SamplerSettings
    draws: List[PosteriorDraw]
    diagnostics: Diagnostics
    chains: List[ChainSummary] = field(default_factory=list)

    @property
    def parameter_columns(self) -> Tuple[str, ...]:
        return PARAMETER_COLUMNS[self.variant]

    @property
    def complete(self) -> bool:
        return all(c.complete for c in self.chains)

    def __len__(self) -> int:
        return len(self.draws)

    def _value(self, draw: PosteriorDraw, name: str) -> float:
        if name == "R0":
            return draw.r0
        if name == "recovery_time":
            return draw.recovery_time
        return float(getattr(draw.params, name))

    def parameter_array(self, name: str) -> np.ndarray:
        """Draws of a parameter (or R0 / recovery_time) as ``(chain, draw)``.

        Chains are truncated to the shortest non-empty chain.
        """
        if name not in self.parameter_columns + DERIVED_COLUMNS:
            raise KeyError(name)
        per_chain: Dict[int, List[float]] = {}
        for draw in self.draws:
            per_chain.setdefault(draw.chain, []).append(self._value(draw, name))
        if not per_chain:
            return np.empty((0, 0))
        n = min(len(v) for v in per_chain.values())
        return np.asarray([per_chain[c][:n] for c in sorted(per_chain)], dtype=float)

    def to_rows(self) -> List[Dict[str, object]]:
        """Flat draws table, one row per PosteriorDraw."""
        rows = []
        for draw in self.draws:
            row: Dict[str, object] = {"chain": draw.chain, "iteration": draw.iteration}
            for name in self.parameter_columns:
                row[name] = getattr(draw.params, name)
            row["R0"] = draw.r0
            row["recovery_time"] = draw.recovery_time
            series = {
                "S": draw.trajectory.S,
                "I": draw.trajectory.I,
                "R": draw.trajectory.R,
                "yrep": draw.yrep,
                "log_lik": draw.log_lik,
            }
            for label in SERIES_COLUMNS:
                for j, value in enumerate(series[label]):
                    row[f"{label}[{j + 1}]"] = value.item()
            rows.append(row)
        return rows

    def summary_rows(self, probs: Sequence[float] = (0.05, 0.5, 0.95)) -> List[Dict[str, object]]:
        """Posterior summary per parameter and derived quantity."""
        rows = []
        for name in self.parameter_columns + DERIVED_COLUMNS:
            row: Dict[str, object] = {"parameter": name}
            row.update(posterior_summary(self.parameter_array(name), probs=probs))
            row["rhat"] = self.diagnostics.rhat.get(name, float("nan"))
            row["ess_bulk"] = self.diagnostics.ess_bulk.get(name, float("nan"))
            row["ess_tail"] = self.diagnostics.ess_tail.get(name, float("nan"))
            rows.append(row)
        return rows


def _diagnose(
    variant: str,
    outputs: Sequence[ChainOutput],
    settings: SamplerSettings,
) -> Diagnostics:
    non_empty = [o for o in outputs if o.params.shape[0] > 0]
    n = min((o.params.shape[0] for o in non_empty), default=0)
    draws = {
        name: np.asarray([o.params[:n, k] for o in non_empty]).reshape(len(non_empty), n)
        for k, name in enumerate(PARAMETER_COLUMNS[variant])
    }
    return compute_diagnostics(
        draws,
        divergent=np.concatenate([o.sampler.divergent for o in outputs]),
        treedepth=np.concatenate([o.sampler.treedepth for o in outputs]),
        max_treedepth=settings.max_treedepth,
        rhat_threshold=settings.rhat_threshold,
        complete=all(o.sampler.complete for o in outputs),
    )


def calibrate(
    observed: ObservedSeries,
    population: Optional[PopulationSpec] = None,
    priors: Optional[Priors] = None,
    variant: str = "fixed",
    n_chains: int = DEFAULTS.n_chains,
    n_warmup: int = DEFAULTS.n_warmup,
    n_samples: int = DEFAULTS.n_samples,
    seed: int = DEFAULTS.seed,
    n_jobs: Optional[int] = None,
    time_budget: Optional[float] = None,
    **sampler_options,
) -> CalibrationResult:
    """Sample the posterior of the SIR parameters given observed counts.

    Parameters
    ----------
    observed:
        Case counts aligned with their time grid.
    population:
        Population size, initial infected and integration start. Required
        (with a population size) for ``variant="fixed"``.
    variant:
        ``"fixed"`` (known N and i0) or ``"unknown_init"`` (initial
        susceptible and infected sizes are estimated).
    n_jobs:
        Worker processes for the chains; defaults to the number of cores.
        ``1`` runs chains sequentially in this process.
    time_budget:
        Wall-clock budget in seconds. Chains still running when it expires
        stop and are flagged as incomplete.
    sampler_options:
        Remaining :class:`SamplerSettings` fields (``target_accept``,
        ``max_treedepth``, ``rhat_threshold``, ...).

    Non-convergence does not raise: inspect ``result.diagnostics``.
    """
    settings = SamplerSettings(
        n_chains=n_chains, n_warmup=n_warmup, n_samples=n_samples, seed=seed, **sampler_options
    )
    settings.validate()
    population = population or PopulationSpec()
    priors = priors or Priors()
    # Fail fast on a bad variant or population before spawning workers.
    PosteriorModel(observed, population, priors=priors, variant=variant)

    deadline = time.time() + time_budget if time_budget is not None else None
    tasks = [
        _ChainTask(c, observed, population, priors, variant, settings, deadline)
        for c in range(settings.n_chains)
    ]
    n_jobs = min(n_jobs or os.cpu_count() or 1, settings.n_chains)
    logger.info(
        "Calibrating variant=%s on %d observations: %d chains x (%d warm-up + %d draws), %d worker(s)",
        variant,
        len(observed),
        settings.n_chains,
        settings.n_warmup,
        settings.n_samples,
        n_jobs,
    )

    start = time.perf_counter()
    if n_jobs == 1:
        outputs = [_run_chain(task) for task in tasks]
    else:
        with ProcessPoolExecutor(max_workers=n_jobs) as pool:
            outputs = list(pool.map(_run_chain, tasks))
    logger.info("Sampling finished in %.1fs", time.perf_counter() - start)

    diagnostics = _diagnose(variant, outputs, settings)
    chain_ids = np.concatenate(
        [np.full(o.params.shape[0], o.sampler.chain) for o in outputs]
    )
    iterations = np.concatenate([np.arange(o.params.shape[0]) for o in outputs])
    draws = build_draws(
        variant,
        observed.times,
        chain_ids,
        iterations,
        np.concatenate([o.params for o in outputs]),
        np.concatenate([o.S for o in outputs]),
        np.concatenate([o.I for o in outputs]),
        np.concatenate([o.R for o in outputs]),
        np.concatenate([o.yrep for o in outputs]),
        np.concatenate([o.log_lik for o in outputs]),
    )
    chains = [
        ChainSummary(
            chain=o.sampler.chain,
            n_draws=o.sampler.n_draws,
            step_size=o.sampler.step_size,
            mean_accept=float(np.mean(o.sampler.accept_stat)) if o.sampler.n_draws else float("nan"),
            n_divergent=int(o.sampler.divergent.sum()),
            complete=o.sampler.complete,
            elapsed=o.sampler.elapsed,
        )
        for o in outputs
    ]
    if diagnostics.converged:
        logger.info("Chains converged (max R-hat %.3f)", max(diagnostics.rhat.values()))
    else:
        logger.warning("Calibration did not converge; inspect diagnostics before using the draws")
    return CalibrationResult(
        variant=variant,
        observed=observed,
        population=population,
        settings=settings,
        draws=draws,
        diagnostics=diagnostics,
        chains=chains,
    )