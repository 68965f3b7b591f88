"""Bayesian calibration of the SIR epidemic model.

Re-exports the forward model and calibration entry points so scripts and
notebooks can import from ``bayes_sir`` without deep module paths.
"""


from .config import DEFAULTS, chain_rng, default_times  # noqa: F401
from .exceptions import (  # noqa: F401
    IntegrationError,
    MassConservationError,
    SamplerInitializationError,
    SIRModelError,
    ValidationError,
)
from .dynamics import (  # noqa: F401
    Parameters,
    PopulationSpec,
    Trajectory,
    forward,
    simulate,
    simulate_cases,
    simulate_unknown_init,
)
from .datasets import ObservedSeries, from_counts, load_series_csv  # noqa: F401
from .priors import Exponential, HalfNormal, Normal, Priors, TruncatedNormal  # noqa: F401
from .calibration import CalibrationResult, PosteriorDraw, calibrate  # noqa: F401
from .diagnostics import Diagnostics, compute_diagnostics  # noqa: F401

__version__ = "0.1.0"
