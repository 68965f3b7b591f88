"""Calibrate the SIR model to an observed case series.

Loads a (t, cases) CSV, runs NUTS chains for the chosen model variant and
writes a run folder under runs/ with config.json, draws.csv (one row per
posterior draw, including S/I/R, yrep and log_lik per time point),
summary.csv (posterior summaries with R-hat/ESS), diagnostics.json and
run.log. Results are cached by (variant, data hash, settings) so repeated
runs on the same inputs skip sampling.
Typical usage:
  python scripts/calibrate_run.py --data data/simulated/cases.csv --population 1000
  python scripts/calibrate_run.py --data cases.csv --variant unknown_init --n-jobs 4
"""


from __future__ import annotations

from dataclasses import asdict
import argparse
from datetime import datetime
import logging
from pathlib import Path
import sys

from bayes_sir.cache import cache_exists, calibration_key, load_result, save_result
from bayes_sir.calibration import SamplerSettings, calibrate
from bayes_sir.config import DEFAULTS
from bayes_sir.datasets import load_series_csv
from bayes_sir.dynamics import PopulationSpec
from bayes_sir.io import ensure_dir, save_csv, save_json
from bayes_sir.logging_utils import setup_logging
from bayes_sir.priors import Priors


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bayesian calibration of the SIR model.")
    parser.add_argument("--data", type=str, required=True)
    parser.add_argument("--time-column", type=str, default="t")
    parser.add_argument("--count-column", type=str, default="cases")
    parser.add_argument("--variant", type=str, default="fixed", choices=["fixed", "unknown_init"])
    parser.add_argument("--population", type=float, default=DEFAULTS.population)
    parser.add_argument("--i0", type=float, default=DEFAULTS.i0)
    parser.add_argument("--t0", type=float, default=DEFAULTS.t0)
    parser.add_argument("--chains", type=int, default=DEFAULTS.n_chains)
    parser.add_argument("--warmup", type=int, default=DEFAULTS.n_warmup)
    parser.add_argument("--samples", type=int, default=DEFAULTS.n_samples)
    parser.add_argument("--seed", type=int, default=DEFAULTS.seed)
    parser.add_argument("--target-accept", type=float, default=DEFAULTS.target_accept)
    parser.add_argument("--max-treedepth", type=int, default=DEFAULTS.max_treedepth)
    parser.add_argument("--rhat-threshold", type=float, default=DEFAULTS.rhat_threshold)
    parser.add_argument("--n-jobs", type=int, default=None)
    parser.add_argument("--time-budget", type=float, default=None, help="Wall-clock budget in seconds.")
    parser.add_argument("--cache-dir", type=str, default=str(DEFAULTS.cache_dir))
    parser.add_argument("--no-cache", action="store_true")
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--log-level", type=str, default="INFO")
    parser.add_argument("--log-file", type=str, default=None)
    parser.add_argument("--no-log-file", action="store_true")
    parser.add_argument("--no-console-log", action="store_true")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when the chains did not converge.",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    out_dir = Path(args.out_dir) if args.out_dir else DEFAULTS.runs_dir / f"calibrate_{args.variant}_{timestamp}"
    ensure_dir(out_dir)

    log_file = None
    if not args.no_log_file:
        log_file = Path(args.log_file) if args.log_file else out_dir / "run.log"
    setup_logging(level=args.log_level, log_file=log_file, console=not args.no_console_log)
    logger = logging.getLogger(__name__)

    logger.info("Calibration start")
    logger.info("Output dir: %s", out_dir)

    observed = load_series_csv(args.data, time_column=args.time_column, count_column=args.count_column)
    logger.info("Loaded %d observations from %s", len(observed), args.data)

    population = PopulationSpec(
        population=args.population if args.variant == "fixed" else None,
        i0=args.i0,
        t0=args.t0,
    )
    priors = Priors()
    settings = SamplerSettings(
        n_chains=args.chains,
        n_warmup=args.warmup,
        n_samples=args.samples,
        seed=args.seed,
        target_accept=args.target_accept,
        max_treedepth=args.max_treedepth,
        rhat_threshold=args.rhat_threshold,
    )

    cache_key = calibration_key(observed, population, priors, args.variant, settings)
    logger.info("Cache key: %s", cache_key)

    if not args.no_cache and cache_exists(args.cache_dir, cache_key):
        # Fast path: identical inputs were calibrated before.
        logger.info("Loading cached calibration from %s", args.cache_dir)
        result = load_result(args.cache_dir, cache_key)
    else:
        result = calibrate(
            observed,
            population,
            priors=priors,
            variant=args.variant,
            n_chains=settings.n_chains,
            n_warmup=settings.n_warmup,
            n_samples=settings.n_samples,
            seed=settings.seed,
            n_jobs=args.n_jobs,
            time_budget=args.time_budget,
            target_accept=settings.target_accept,
            max_treedepth=settings.max_treedepth,
            rhat_threshold=settings.rhat_threshold,
        )
        # Incomplete (time-budgeted) runs are not reusable.
        if not args.no_cache and result.complete:
            logger.info("Saving calibration to cache %s", args.cache_dir)
            save_result(args.cache_dir, cache_key, result)

    config = vars(args)
    config.update({
        "timestamp": timestamp,
        "cache_key": cache_key,
        "data_fingerprint": observed.fingerprint(),
        "priors": priors.describe(),
        "settings": asdict(settings),
    })
    save_json(out_dir / "config.json", config)
    save_csv(out_dir / "draws.csv", result.to_rows())
    save_csv(out_dir / "summary.csv", result.summary_rows())
    save_json(out_dir / "diagnostics.json", {
        **result.diagnostics.to_dict(),
        "chains": [asdict(c) for c in result.chains],
    })
    logger.info("Saved %d draws to %s", len(result), out_dir / "draws.csv")

    for row in result.summary_rows():
        logger.info(
            "%-14s mean=%.4g sd=%.3g 90%%CI=[%.4g, %.4g] rhat=%.3f",
            row["parameter"],
            row["mean"],
            row["sd"],
            row["q5"],
            row["q95"],
            row["rhat"],
        )

    if not result.diagnostics.converged:
        logger.warning("Chains did not converge: %s", "; ".join(result.diagnostics.warnings))
        if args.strict:
            sys.exit(1)


if __name__ == "__main__":
    main()
