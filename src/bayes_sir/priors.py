"""Prior distributions for the calibration.

Each prior exposes its log-density and the derivative of the log-density,
which the sampler needs on top of the likelihood gradient. ``support``
tells the parameter layout whether to sample on the log scale.
"""


from dataclasses import asdict, dataclass, field
from typing import Dict

import numpy as np
from scipy.stats import expon, norm


@dataclass(frozen=True)
class Normal:
    mu: float = 0.0
    sigma: float = 1.0
    support = "real"

    def logpdf(self, x: float) -> float:
        return float(norm.logpdf(x, self.mu, self.sigma))

    def grad_logpdf(self, x: float) -> float:
        return -(x - self.mu) / self.sigma ** 2


@dataclass(frozen=True)
class TruncatedNormal(Normal):
    """Normal(mu, sigma) restricted to (0, inf)."""

    support = "positive"

    def logpdf(self, x: float) -> float:
        if x <= 0:
            return -np.inf
        return float(norm.logpdf(x, self.mu, self.sigma) - norm.logsf(0.0, self.mu, self.sigma))


@dataclass(frozen=True)
class HalfNormal(TruncatedNormal):
    """Normal(0, sigma) restricted to (0, inf)."""

    mu: float = 0.0


@dataclass(frozen=True)
class Exponential:
    rate: float = 1.0
    support = "positive"

    def logpdf(self, x: float) -> float:
        return float(expon.logpdf(x, scale=1.0 / self.rate))

    def grad_logpdf(self, x: float) -> float:
        return -self.rate


def _default_beta() -> TruncatedNormal:
    return TruncatedNormal(0.0, 5.0)


def _default_gamma() -> TruncatedNormal:
    return TruncatedNormal(0.4, 0.5)


@dataclass(frozen=True)
class Priors:
    """Priors for both model variants.

    ``phi`` is sampled through ``phi_inv = 1 / phi``. In the
    unknown-initial-susceptible model ``init_s = init_s_offset +
    exp(log_init_s_raw)``, which keeps it above the offset with a heavy
    right tail.
    """

    beta: Normal = field(default_factory=_default_beta)
    gamma: Normal = field(default_factory=_default_gamma)
    phi_inv: Exponential = field(default_factory=lambda: Exponential(5.0))
    log_init_s_raw: Normal = field(default_factory=lambda: Normal(5.0, 10.0))
    init_i: Normal = field(default_factory=lambda: HalfNormal(sigma=1.0))
    init_s_offset: float = 1000.0

    def describe(self) -> Dict[str, object]:
        """JSON-friendly description, used for cache keys and run configs."""
        out: Dict[str, object] = {}
        for name in ("beta", "gamma", "phi_inv", "log_init_s_raw", "init_i"):
            dist = getattr(self, name)
            out[name] = {"dist": type(dist).__name__, **asdict(dist)}
        out["init_s_offset"] = self.init_s_offset
        return out
