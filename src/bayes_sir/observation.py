"""Negative-binomial observation model.

The latent infected trajectory ``I(t)`` produces observed case counts
``Y(t)`` through a NegBinomial2 distribution parameterized by its mean and
dispersion:

- mean ``mu = I(t)``
- variance ``mu + mu^2 / phi``

so a *lower* ``phi`` means *more* over-dispersion relative to Poisson, and
``phi -> inf`` recovers the Poisson model. In NumPy/SciPy terms this is
``nbinom(n=phi, p=phi / (phi + mu))``.
"""


from typing import Optional, Tuple

import numpy as np
from scipy.special import digamma
from scipy.stats import nbinom

from .exceptions import ValidationError

# Lower bound applied to the latent mean before it enters the observation
# model. The integrator can return I(t) a hair below zero near extinction.
MIN_MEAN = 1e-8


def _check_rng(rng: np.random.Generator) -> None:
    # Draws must come from a caller-owned (chain-local) stream.
    if not isinstance(rng, np.random.Generator):
        raise ValidationError("rng must be a numpy.random.Generator")


def clip_mean(I: np.ndarray) -> np.ndarray:
    return np.clip(np.asarray(I, dtype=float), MIN_MEAN, None)


def _check_phi(phi: float) -> None:
    if not np.isfinite(phi) or phi <= 0:
        raise ValidationError("phi must be positive and finite")


def observe_negbin(
    I: np.ndarray,
    phi: float,
    rng: np.random.Generator,
    size: Optional[int] = None,
) -> np.ndarray:
    """Draw observed counts from NegBinomial2(mean=I, dispersion=phi).

    Parameters
    ----------
    I:
        Latent infected trajectory (any shape), typically float.
    phi:
        Dispersion (> 0). Lower values imply higher over-dispersion.
    rng:
        NumPy generator owning the random stream (e.g. a chain's generator
        from :func:`bayes_sir.config.chain_rng`).
    size:
        Optional number of replicates; the result then has shape
        ``(size,) + I.shape``.

    Returns
    -------
    np.ndarray
        Integer counts (``int64``).
    """
    _check_phi(phi)
    _check_rng(rng)
    mu = np.clip(np.asarray(I, dtype=float), 0.0, None)
    p = phi / (phi + mu)
    shape = None if size is None else (int(size),) + mu.shape
    # When mu=0 -> p=1 -> sample 0.
    return rng.negative_binomial(phi, p, size=shape).astype(np.int64, copy=False)


def negbin_logpmf(y: np.ndarray, mu: np.ndarray, phi: float) -> np.ndarray:
    """Pointwise NegBinomial2 log-pmf of counts ``y`` given means ``mu``."""
    mu = clip_mean(mu)
    return nbinom.logpmf(np.asarray(y), phi, phi / (phi + mu))


def negbin_logpmf_grad(
    y: np.ndarray, mu: np.ndarray, phi: float
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Log-pmf and its partial derivatives with respect to ``mu`` and ``phi``.

    Returns ``(logpmf, dlogpmf_dmu, dlogpmf_dphi)``, all pointwise.
    ``mu`` must already be strictly positive (see :func:`clip_mean`).
    """
    y = np.asarray(y, dtype=float)
    mu = np.asarray(mu, dtype=float)
    total = phi + mu
    logp = nbinom.logpmf(y, phi, phi / total)
    d_mu = y / mu - (y + phi) / total
    d_phi = digamma(y + phi) - digamma(phi) + np.log(phi / total) + 1.0 - (y + phi) / total
    return logp, d_mu, d_phi
