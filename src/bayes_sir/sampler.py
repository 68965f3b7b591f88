"""NUTS sampling of a black-box log density with PyMC.

The posterior is defined outside PyMC as a callable ``u -> (logp, grad)``
on an unconstrained vector (priors, Jacobians and the ODE-based likelihood
are all inside it). :class:`LogDensityOp` exposes that callable to PyTensor
with its exact gradient, and :func:`sample_chain` runs one PyMC NUTS chain
on a flat vector variable with that op as the only potential.

A ``-inf`` value is an invalid point: PyMC treats the transition as
divergent and never accepts it.

One chain is one ``pm.sample`` call with its own seed, so a chain's draws
depend only on (seed, chain inputs) and not on how many chains run or in
which process.
"""


from dataclasses import dataclass
import logging
import time
from typing import Callable, Optional, Tuple

import numpy as np
import pymc as pm
import pytensor.tensor as pt
from pytensor.graph.basic import Apply
from pytensor.graph.op import Op

logger = logging.getLogger(__name__)

LogDensity = Callable[[np.ndarray], Tuple[float, np.ndarray]]

# PyMC's NUTS caps the tree depth at this value during early tuning.
EARLY_MAX_TREEDEPTH = 8


class DeadlineExceeded(KeyboardInterrupt):
    """Raised from inside a density evaluation once the wall-clock budget is spent.

    PyMC stops a running chain on ``KeyboardInterrupt`` and keeps the draws
    recorded so far.
    """


class LogDensityOp(Op):
    """PyTensor op returning ``(logp, grad)`` of a log-density callable.

    Only ``logp`` is used in the model graph; the gradient of ``logp`` is
    the op's second output, so one density evaluation serves both.
    """

    def __init__(self, log_density: LogDensity) -> None:
        self.log_density = log_density

    def make_node(self, u):
        u = pt.as_tensor_variable(u)
        return Apply(self, [u], [pt.dscalar(), pt.dvector()])

    def perform(self, node, inputs, outputs):
        (u,) = inputs
        logp, grad = self.log_density(np.asarray(u, dtype=np.float64))
        outputs[0][0] = np.asarray(logp, dtype=np.float64)
        outputs[1][0] = np.asarray(grad, dtype=np.float64)

    def grad(self, inputs, output_grads):
        _, grad = self(*inputs)
        return [output_grads[0] * grad]


@dataclass
class ChainResult:
    """Retained (post-warm-up) iterations of one chain, unconstrained scale."""

    chain: int
    samples: np.ndarray
    log_density: np.ndarray
    accept_stat: np.ndarray
    n_leapfrog: np.ndarray
    treedepth: np.ndarray
    divergent: np.ndarray
    step_size: float
    complete: bool
    elapsed: float

    @property
    def n_draws(self) -> int:
        return int(self.samples.shape[0])


def _with_deadline(log_density: LogDensity, deadline: Optional[float]) -> LogDensity:
    if deadline is None:
        return log_density

    def checked(u: np.ndarray) -> Tuple[float, np.ndarray]:
        if time.time() > deadline:
            raise DeadlineExceeded()
        return log_density(u)

    return checked


def _empty_result(chain: int, dim: int, started: float) -> ChainResult:
    return ChainResult(
        chain=chain,
        samples=np.empty((0, dim)),
        log_density=np.empty(0),
        accept_stat=np.empty(0),
        n_leapfrog=np.empty(0, dtype=int),
        treedepth=np.empty(0, dtype=int),
        divergent=np.empty(0, dtype=bool),
        step_size=float("nan"),
        complete=False,
        elapsed=time.perf_counter() - started,
    )


def sample_chain(
    log_density: LogDensity,
    q0: np.ndarray,
    n_warmup: int,
    n_samples: int,
    seed: int,
    chain: int = 0,
    target_accept: float = 0.8,
    max_treedepth: int = 10,
    deadline: Optional[float] = None,
) -> ChainResult:
    """Run one NUTS chain from ``q0`` and keep ``n_samples`` post-warm-up draws.

    Warm-up adapts the step size (dual averaging towards ``target_accept``)
    and a diagonal mass matrix. ``deadline`` is a ``time.time()`` timestamp,
    checked before every density evaluation; past it the chain stops and
    returns what it has with ``complete=False``.
    """
    started = time.perf_counter()
    q0 = np.asarray(q0, dtype=float)
    dim = q0.size
    if deadline is not None and time.time() > deadline:
        logger.warning("Chain %d not started: time budget already spent", chain)
        return _empty_result(chain, dim, started)

    op = LogDensityOp(_with_deadline(log_density, deadline))
    with pm.Model():
        u = pm.Flat("u", shape=dim)
        logp, _ = op(u)
        pm.Potential("log_density", logp)
        step = pm.NUTS(
            target_accept=target_accept,
            max_treedepth=max_treedepth,
            early_max_treedepth=min(max_treedepth, EARLY_MAX_TREEDEPTH),
        )
        try:
            trace = pm.sample(
                draws=n_samples,
                tune=n_warmup,
                chains=1,
                cores=1,
                step=step,
                initvals={"u": q0},
                random_seed=int(seed),
                progressbar=False,
                compute_convergence_checks=False,
                return_inferencedata=False,
                discard_tuned_samples=True,
            )
        except DeadlineExceeded:
            # Spent while PyMC was still checking the starting point.
            logger.warning("Chain %d stopped before its first iteration (time budget)", chain)
            return _empty_result(chain, dim, started)

    n = len(trace)
    if n == 0:
        result = _empty_result(chain, dim, started)
    else:
        result = ChainResult(
            chain=chain,
            samples=np.asarray(trace.get_values("u"), dtype=float).reshape(n, dim),
            log_density=np.asarray(trace.get_sampler_stats("model_logp"), dtype=float).reshape(n),
            accept_stat=np.asarray(trace.get_sampler_stats("mean_tree_accept"), dtype=float).reshape(n),
            n_leapfrog=np.asarray(trace.get_sampler_stats("tree_size"), dtype=int).reshape(n),
            treedepth=np.asarray(trace.get_sampler_stats("depth"), dtype=int).reshape(n),
            divergent=np.asarray(trace.get_sampler_stats("diverging"), dtype=bool).reshape(n),
            step_size=float(np.asarray(trace.get_sampler_stats("step_size")).reshape(n)[-1]),
            complete=n == n_samples,
            elapsed=time.perf_counter() - started,
        )
    if not result.complete:
        logger.warning(
            "Chain %d stopped after %d/%d draws (time budget)", chain, result.n_draws, n_samples
        )
    return result
