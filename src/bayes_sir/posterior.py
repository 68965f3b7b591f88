"""Log posterior density of the SIR calibration problem.

The sampler works on an unconstrained vector ``u``. Positive parameters are
sampled on the log scale (with the log-Jacobian added to the density); the
rest are sampled as is. The likelihood is

    cases[i] ~ NegBinomial2(mean = I(t_i), dispersion = phi)

and its gradient is obtained exactly by the chain rule through the ODE
sensitivities from :func:`bayes_sir.dynamics.forward`.
"""


from typing import Dict, Optional, Tuple

import numpy as np

from .config import DEFAULTS
from .datasets import ObservedSeries
from .dynamics import VARIANTS, Parameters, PopulationSpec, forward
from .exceptions import IntegrationError, SamplerInitializationError, ValidationError
from .observation import MIN_MEAN, clip_mean, negbin_logpmf_grad
from .priors import Priors

PARAMETER_NAMES: Dict[str, Tuple[str, ...]] = {
    "fixed": ("beta", "gamma", "phi_inv"),
    "unknown_init": ("beta", "gamma", "phi_inv", "log_init_s_raw", "init_i"),
}


class ParameterLayout:
    """Maps between the unconstrained sampler vector and :class:`Parameters`."""

    def __init__(self, variant: str, priors: Priors) -> None:
        if variant not in VARIANTS:
            raise ValidationError(f"unknown model variant {variant!r}; expected one of {VARIANTS}")
        self.variant = variant
        self.priors = priors
        self.names = PARAMETER_NAMES[variant]
        self.dists = [getattr(priors, name) for name in self.names]
        self.positive = np.array([d.support == "positive" for d in self.dists])

    @property
    def dim(self) -> int:
        return len(self.names)

    def constrain(self, u: np.ndarray) -> np.ndarray:
        with np.errstate(over="ignore"):
            return np.where(self.positive, np.exp(u), u)

    def to_parameters(self, values: np.ndarray) -> Parameters:
        v = dict(zip(self.names, (float(x) for x in values)))
        init_s = init_i = None
        if self.variant == "unknown_init":
            with np.errstate(over="ignore"):
                init_s = self.priors.init_s_offset + float(np.exp(v["log_init_s_raw"]))
            init_i = v["init_i"]
        with np.errstate(divide="ignore"):
            phi = float(np.float64(1.0) / v["phi_inv"])
        return Parameters(v["beta"], v["gamma"], phi=phi, init_s=init_s, init_i=init_i)

    def parameters(self, u: np.ndarray) -> Parameters:
        return self.to_parameters(self.constrain(u))

    def log_prior(self, u: np.ndarray) -> Tuple[float, np.ndarray]:
        """Log prior (plus log-Jacobian) and its gradient in ``u``."""
        values = self.constrain(u)
        lp = 0.0
        grad = np.zeros(self.dim)
        for k, dist in enumerate(self.dists):
            lp += dist.logpdf(values[k])
            g = dist.grad_logpdf(values[k])
            if self.positive[k]:
                # x = exp(u): dx/du = x, log|dx/du| = u.
                lp += u[k]
                grad[k] = g * values[k] + 1.0
            else:
                grad[k] = g
        return lp, grad


class PosteriorModel:
    """Prior x NegBinomial2 likelihood for one observed series."""

    def __init__(
        self,
        observed: ObservedSeries,
        population: PopulationSpec,
        priors: Optional[Priors] = None,
        variant: str = "fixed",
        rtol: float = DEFAULTS.rtol,
        atol: float = DEFAULTS.atol,
        max_num_steps: int = DEFAULTS.max_num_steps,
    ) -> None:
        self.observed = observed
        self.population = population
        self.layout = ParameterLayout(variant, priors or Priors())
        self.rtol = rtol
        self.atol = atol
        self.max_num_steps = max_num_steps
        self.cases = observed.counts.astype(float)
        if variant == "fixed" and population.population is None:
            raise ValidationError("the fixed-population model needs a population size")
        if not population.t0 <= observed.times[0]:
            raise ValidationError("observations must not start before t0")

    @property
    def dim(self) -> int:
        return self.layout.dim

    def log_density(self, u: np.ndarray) -> Tuple[float, np.ndarray]:
        """Unnormalized log posterior and its gradient.

        Proposals the ODE solver cannot integrate return ``-inf`` with a
        zero gradient, which the sampler treats as a rejected step.
        """
        u = np.asarray(u, dtype=float)
        rejected = (-np.inf, np.zeros(self.dim))
        lp, grad = self.layout.log_prior(u)
        if not np.isfinite(lp) or not np.all(np.isfinite(grad)):
            return rejected

        values = self.layout.constrain(u)
        params = self.layout.to_parameters(values)
        derived = [params.beta, params.gamma, params.phi]
        if params.variant == "unknown_init":
            derived += [params.init_s, params.init_i]
        if not np.all(np.isfinite(derived)) or params.phi <= 0:
            return rejected

        try:
            traj, dI = forward(
                params,
                self.observed.times,
                self.population,
                sensitivities=True,
                rtol=self.rtol,
                atol=self.atol,
                max_num_steps=self.max_num_steps,
            )
        except IntegrationError:
            return rejected

        mu = clip_mean(traj.I)
        ll, d_mu, d_phi = negbin_logpmf_grad(self.cases, mu, params.phi)
        total = lp + float(np.sum(ll))
        if not np.isfinite(total):
            return rejected

        # Where the mean is clipped it no longer depends on the parameters.
        d_mu = np.where(traj.I > MIN_MEAN, d_mu, 0.0)
        d_theta = d_mu @ dI

        g_nat = np.zeros(self.dim)
        g_nat[0] = d_theta[0]
        g_nat[1] = d_theta[1]
        # phi = 1 / phi_inv
        g_nat[2] = float(np.sum(d_phi)) * -(params.phi ** 2)
        if params.variant == "unknown_init":
            # init_s = offset + exp(log_init_s_raw)
            g_nat[3] = d_theta[2] * (params.init_s - self.layout.priors.init_s_offset)
            g_nat[4] = d_theta[3]
        grad = grad + g_nat * np.where(self.layout.positive, values, 1.0)
        if not np.all(np.isfinite(grad)):
            return rejected
        return total, grad

    def initial_point(
        self,
        rng: np.random.Generator,
        radius: float = DEFAULTS.init_radius,
        max_tries: int = 100,
    ) -> np.ndarray:
        """Uniform(-radius, radius) start on the unconstrained scale."""
        for _ in range(max_tries):
            u = rng.uniform(-radius, radius, size=self.dim)
            lp, grad = self.log_density(u)
            if np.isfinite(lp) and np.all(np.isfinite(grad)):
                return u
        raise SamplerInitializationError(
            f"no finite initial point after {max_tries} attempts"
        )
