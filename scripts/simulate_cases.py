"""Simulate a synthetic case series from the SIR model.

Integrates the SIR model at known parameters and draws NegBinomial2 case
counts around I(t). The CSV it writes (columns t, cases) is the input
format of calibrate_run.py.
Typical usage:
  python scripts/simulate_cases.py --beta 4 --gamma 0.25 --phi 10 --out data/cases.csv
"""


from __future__ import annotations

import argparse
import logging
from pathlib import Path

from bayes_sir.config import DEFAULTS, chain_rng, default_times
from bayes_sir.dynamics import simulate_cases
from bayes_sir.io import ensure_dir, save_series_csv
from bayes_sir.logging_utils import setup_logging


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate NegBinomial2 case counts from the SIR model.")
    parser.add_argument("--population", type=float, default=DEFAULTS.population)
    parser.add_argument("--i0", type=float, default=DEFAULTS.i0)
    parser.add_argument("--beta", type=float, default=DEFAULTS.beta)
    parser.add_argument("--gamma", type=float, default=DEFAULTS.gamma)
    parser.add_argument("--phi", type=float, default=DEFAULTS.phi)
    parser.add_argument("--n-days", type=int, default=DEFAULTS.n_days)
    parser.add_argument("--t0", type=float, default=DEFAULTS.t0)
    parser.add_argument("--seed", type=int, default=DEFAULTS.seed)
    parser.add_argument("--out", type=str, default="data/simulated/cases.csv")
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    setup_logging(level=args.log_level)
    logger = logging.getLogger(__name__)

    times = default_times(args.n_days, t0=args.t0)
    rng = chain_rng(args.seed)
    cases = simulate_cases(
        times,
        args.population,
        args.i0,
        args.beta,
        args.gamma,
        args.phi,
        rng=rng,
        t0=args.t0,
    )

    out_path = Path(args.out)
    ensure_dir(out_path.parent)
    save_series_csv(out_path, times, cases)
    logger.info(
        "Wrote %d days of cases to %s (beta=%s gamma=%s phi=%s, R0=%.2f)",
        times.size,
        out_path,
        args.beta,
        args.gamma,
        args.phi,
        args.beta / args.gamma,
    )


if __name__ == "__main__":
    main()
