"""SIR forward model.

Integrates

    dS/dt = -beta * S * I / N
    dI/dt =  beta * S * I / N - gamma * I
    dR/dt =  gamma * I

with ``N = S + I + R`` recomputed at every evaluation, using SciPy's
adaptive Dormand-Prince RK45 and sampling the solution exactly at the
requested times. Two parameterizations share one integrator:

- ``"fixed"``: known population ``N`` and initial infected ``i0``.
- ``"unknown_init"``: the state is integrated as an offset from the
  reference point ``(init_s, init_i, 0)``, starting at ``(0, 0, 0)``, and
  the reference is added back on output.

:func:`forward` dispatches on :attr:`Parameters.variant` and can also
integrate the forward sensitivity equations, which give the exact
derivatives of ``I(t)`` with respect to the parameters for gradient-based
sampling.
"""


from dataclasses import asdict, dataclass
from typing import Dict, Literal, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.integrate import solve_ivp

from .config import DEFAULTS
from .exceptions import IntegrationError, MassConservationError, ValidationError
from .observation import observe_negbin

Variant = Literal["fixed", "unknown_init"]
VARIANTS: Tuple[str, ...] = ("fixed", "unknown_init")

# Parameters with an ODE sensitivity, per variant (order matters).
SENSITIVITY_NAMES: Dict[str, Tuple[str, ...]] = {
    "fixed": ("beta", "gamma"),
    "unknown_init": ("beta", "gamma", "init_s", "init_i"),
}


@dataclass(frozen=True)
class Parameters:
    """One set of model parameters (one evaluation or one posterior draw).

    Leaving ``init_s``/``init_i`` unset selects the fixed-population model;
    setting both selects the unknown-initial-susceptible model.
    """

    beta: float
    gamma: float
    phi: Optional[float] = None
    init_s: Optional[float] = None
    init_i: Optional[float] = None

    def __post_init__(self) -> None:
        if (self.init_s is None) != (self.init_i is None):
            raise ValidationError("init_s and init_i must be given together")

    @property
    def variant(self) -> str:
        return "fixed" if self.init_s is None else "unknown_init"

    @property
    def r0(self) -> float:
        """Basic reproduction number beta / gamma."""
        return self.beta / self.gamma if self.gamma > 0 else float("inf")

    @property
    def recovery_time(self) -> float:
        """Mean infectious period 1 / gamma."""
        return 1.0 / self.gamma if self.gamma > 0 else float("inf")

    def as_dict(self) -> Dict[str, float]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class PopulationSpec:
    """Fixed inputs of the forward model that are not sampled."""

    population: Optional[float] = None
    i0: float = DEFAULTS.i0
    t0: float = DEFAULTS.t0


@dataclass(frozen=True, eq=False)
class Trajectory:
    times: np.ndarray
    S: np.ndarray
    I: np.ndarray
    R: np.ndarray

    @property
    def total(self) -> np.ndarray:
        return self.S + self.I + self.R

    @property
    def population(self) -> float:
        return float(self.total[0])

    def as_array(self) -> np.ndarray:
        """State as a ``(T, 3)`` array with columns S, I, R."""
        return np.column_stack([self.S, self.I, self.R])


def _validate_times(times: Sequence[float], t0: float) -> np.ndarray:
    t = np.asarray(times, dtype=float)
    if t.ndim != 1 or t.size == 0:
        raise ValidationError("times must be a non-empty 1-D sequence")
    if not np.all(np.isfinite(t)) or not np.isfinite(t0):
        raise ValidationError("times and t0 must be finite")
    if np.any(np.diff(t) <= 0):
        raise ValidationError("times must be strictly increasing")
    if not t0 <= t[0]:
        raise ValidationError("times must not start before t0")
    return t


def _validate_rates(beta: float, gamma: float) -> None:
    for name, value in (("beta", beta), ("gamma", gamma)):
        if not np.isfinite(value) or value < 0:
            raise ValidationError(f"{name} must be finite and non-negative")


def _validate_population(N: float, i0: float) -> None:
    if not np.isfinite(N) or N <= 0:
        raise ValidationError("population N must be positive")
    if not np.isfinite(i0) or not 0 < i0 <= N:
        raise ValidationError("i0 must lie in (0, N]")


def _validate_init(init_s: float, init_i: float) -> None:
    if not np.isfinite(init_s) or init_s < 0:
        raise ValidationError("init_s must be finite and non-negative")
    if not np.isfinite(init_i) or init_i <= 0:
        raise ValidationError("init_i must be positive")


def _rhs(t, z, ref, beta, gamma, n_sens):
    # Offset state z; the derivative is evaluated at the actual state.
    S, I, R = z[:3] + ref
    N = S + I + R
    infection = beta * S * I / N
    dz = np.empty_like(z)
    dz[0] = -infection
    dz[1] = infection - gamma * I
    dz[2] = gamma * I
    if n_sens:
        # d(infection)/d(S, I, R), with N = S + I + R.
        a = beta * I / N - infection / N
        b = beta * S / N - infection / N
        c = -infection / N
        jac = np.array([
            [-a, -b, -c],
            [a, b - gamma, c],
            [0.0, gamma, 0.0],
        ])
        sens = z[3:].reshape(n_sens, 3)
        dsens = sens @ jac.T
        si = S * I / N
        dsens[0] += (-si, si, 0.0)
        dsens[1] += (0.0, -I, I)
        dz[3:] = dsens.ravel()
    return dz


def _integrate(
    times: np.ndarray,
    t0: float,
    z0: np.ndarray,
    ref: np.ndarray,
    beta: float,
    gamma: float,
    sens0: Optional[np.ndarray] = None,
    rtol: float = DEFAULTS.rtol,
    atol: float = DEFAULTS.atol,
    mass_rtol: float = DEFAULTS.mass_rtol,
    max_num_steps: int = DEFAULTS.max_num_steps,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """Integrate the offset system and return ``(state (T, 3), sens (T, k, 3))``.

    An output time equal to ``t0`` gets the initial state as is. RK45 uses
    six right-hand-side evaluations per step, so the solver is stopped with
    an :class:`IntegrationError` once it has used ``6 * max_num_steps``
    evaluations.
    """
    n_sens = 0 if sens0 is None else sens0.shape[0]
    y0 = z0 if sens0 is None else np.concatenate([z0, sens0.ravel()])
    at_start = times[0] == t0
    later = times[1:] if at_start else times

    max_evaluations = 6 * max_num_steps
    evaluations = 0

    def rhs(t, z):
        nonlocal evaluations
        evaluations += 1
        if evaluations > max_evaluations:
            raise IntegrationError(f"RK45 exceeded max_num_steps={max_num_steps}")
        return _rhs(t, z, ref, beta, gamma, n_sens)

    y = np.empty((y0.size, 0))
    if later.size:
        sol = solve_ivp(
            rhs,
            (t0, float(later[-1])),
            y0,
            method="RK45",
            t_eval=later,
            rtol=rtol,
            atol=atol,
        )
        if sol.status != 0:
            raise IntegrationError(f"RK45 failed: {sol.message}")
        y = sol.y
    if at_start:
        y = np.column_stack([y0, y])
    if y.shape[1] != times.size or not np.all(np.isfinite(y)):
        raise IntegrationError("RK45 returned a non-finite or truncated solution")

    state = y[:3].T + ref
    expected = float(np.sum(z0 + ref))
    drift = np.max(np.abs(state.sum(axis=1) - expected))
    if drift > mass_rtol * expected:
        raise MassConservationError(
            f"S+I+R drifted by {drift:.3g} from N={expected:.6g}"
        )

    if sens0 is None:
        return state, None
    sens = y[3:].T.reshape(times.size, n_sens, 3)
    return state, sens


def simulate(
    times: Sequence[float],
    N: float,
    i0: float,
    beta: float,
    gamma: float,
    t0: float = DEFAULTS.t0,
    rtol: float = DEFAULTS.rtol,
    atol: float = DEFAULTS.atol,
    max_num_steps: int = DEFAULTS.max_num_steps,
) -> Trajectory:
    """Integrate the SIR model with known population size.

    Starts from S = N - i0, I = i0, R = 0 at ``t0`` (at or before
    ``times[0]``) and returns the state at exactly ``times``.
    """
    t = _validate_times(times, t0)
    _validate_population(N, i0)
    _validate_rates(beta, gamma)
    z0 = np.array([N - i0, i0, 0.0])
    state, _ = _integrate(
        t, t0, z0, np.zeros(3), beta, gamma, rtol=rtol, atol=atol, max_num_steps=max_num_steps
    )
    return Trajectory(t, state[:, 0], state[:, 1], state[:, 2])


def simulate_unknown_init(
    times: Sequence[float],
    init_s: float,
    init_i: float,
    beta: float,
    gamma: float,
    t0: float = DEFAULTS.t0,
    rtol: float = DEFAULTS.rtol,
    atol: float = DEFAULTS.atol,
    max_num_steps: int = DEFAULTS.max_num_steps,
) -> Trajectory:
    """Integrate the SIR model as offsets from ``(init_s, init_i, 0)``.

    The offset state starts at zero, so ``init_s`` and ``init_i`` never
    appear as an integration boundary; they are added back to S and I on
    output.
    """
    t = _validate_times(times, t0)
    _validate_init(init_s, init_i)
    _validate_rates(beta, gamma)
    ref = np.array([init_s, init_i, 0.0])
    state, _ = _integrate(
        t, t0, np.zeros(3), ref, beta, gamma, rtol=rtol, atol=atol, max_num_steps=max_num_steps
    )
    return Trajectory(t, state[:, 0], state[:, 1], state[:, 2])


def forward(
    params: Parameters,
    times: Sequence[float],
    population: Optional[PopulationSpec] = None,
    sensitivities: bool = False,
    rtol: float = DEFAULTS.rtol,
    atol: float = DEFAULTS.atol,
    max_num_steps: int = DEFAULTS.max_num_steps,
) -> Union[Trajectory, Tuple[Trajectory, np.ndarray]]:
    """Run the forward model for either parameterization.

    If ``sensitivities`` is True, returns ``(trajectory, dI)`` where
    ``dI[t, k]`` is the derivative of I at ``times[t]`` with respect to
    ``SENSITIVITY_NAMES[params.variant][k]``.
    """
    population = population or PopulationSpec()
    t = _validate_times(times, population.t0)
    _validate_rates(params.beta, params.gamma)
    names = SENSITIVITY_NAMES[params.variant]

    if params.variant == "fixed":
        if population.population is None:
            raise ValidationError("the fixed-population model needs a population size")
        _validate_population(population.population, population.i0)
        z0 = np.array([population.population - population.i0, population.i0, 0.0])
        ref = np.zeros(3)
        sens0 = np.zeros((len(names), 3))
    else:
        _validate_init(params.init_s, params.init_i)
        z0 = np.zeros(3)
        ref = np.array([params.init_s, params.init_i, 0.0])
        sens0 = np.zeros((len(names), 3))
        # Sensitivities are taken of the actual state, which starts at ref.
        sens0[2, 0] = 1.0
        sens0[3, 1] = 1.0

    state, sens = _integrate(
        t,
        population.t0,
        z0,
        ref,
        params.beta,
        params.gamma,
        sens0=sens0 if sensitivities else None,
        rtol=rtol,
        atol=atol,
        max_num_steps=max_num_steps,
    )
    traj = Trajectory(t, state[:, 0], state[:, 1], state[:, 2])
    if not sensitivities:
        return traj
    return traj, sens[:, :, 1]


def simulate_cases(
    times: Sequence[float],
    N: float,
    i0: float,
    beta: float,
    gamma: float,
    phi: float,
    rng: np.random.Generator,
    n_replicates: Optional[int] = None,
    t0: float = DEFAULTS.t0,
) -> np.ndarray:
    """Simulate observed case counts around the infected compartment.

    Each count is drawn from NegBinomial2(mean=I(t), dispersion=phi). With
    ``n_replicates`` the trajectory is integrated once and an
    ``(n_replicates, T)`` array is returned.
    """
    traj = simulate(times, N, i0, beta, gamma, t0=t0)
    return observe_negbin(traj.I, phi, rng=rng, size=n_replicates)
