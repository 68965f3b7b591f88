"""Exceptions raised by the SIR forward model and its calibration.

Non-convergence is *not* an exception: it is reported through
``Diagnostics.warnings`` so callers can decide whether to trust the draws.
"""


class SIRModelError(Exception):
    """Base class for errors raised by this package."""


class ValidationError(SIRModelError, ValueError):
    """Invalid inputs (time grid, population, counts, parameters)."""


class IntegrationError(SIRModelError, RuntimeError):
    """The ODE solver failed (step-size collapse or non-finite state)."""


class MassConservationError(SIRModelError, AssertionError):
    """S + I + R drifted away from N.

    This points at a bug in the derivative function, never at bad input,
    so it is fatal even inside the sampler.
    """


class SamplerInitializationError(SIRModelError, RuntimeError):
    """No finite starting point was found for a chain."""
