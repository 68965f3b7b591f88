"""Cache for calibration results.

A calibration is keyed by a hash of (variant, data fingerprint, population,
priors, sampler settings). Draw arrays go to ``arrays.npz`` and everything
else (settings, diagnostics, chain summaries) to ``config.json``, so a run
can be short-circuited when the same inputs come back."""


from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
import hashlib
import json
from typing import Dict, Tuple

import numpy as np

from .calibration import CalibrationResult, ChainSummary, SamplerSettings, build_draws
from .datasets import ObservedSeries
from .diagnostics import Diagnostics
from .dynamics import PopulationSpec
from .priors import Priors


def _stable_json(payload: Dict) -> str:
    """Serialize config deterministically for hashing."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def hash_config(payload: Dict, length: int = 12) -> str:
    """Create a short stable hash from a config dict."""
    raw = _stable_json(payload).encode("utf-8")
    # Truncate for readable folder names.
    return hashlib.sha256(raw).hexdigest()[:length]


def calibration_key(
    observed: ObservedSeries,
    population: PopulationSpec,
    priors: Priors,
    variant: str,
    settings: SamplerSettings,
) -> str:
    return hash_config({
        "variant": variant,
        "data": observed.fingerprint(),
        "population": asdict(population),
        "priors": priors.describe(),
        "settings": asdict(settings),
    })


def cache_paths(base_dir: Path | str, key: str) -> Tuple[Path, Path, Path]:
    """Return (dir, arrays_path, config_path) for a cache key."""
    base = Path(base_dir) / key
    return base, base / "arrays.npz", base / "config.json"


def cache_exists(base_dir: Path | str, key: str) -> bool:
    _, arrays_path, config_path = cache_paths(base_dir, key)
    return arrays_path.exists() and config_path.exists()


def save_result(base_dir: Path | str, key: str, result: CalibrationResult) -> Path:
    """Persist a calibration result under a cache key."""
    cache_dir, arrays_path, config_path = cache_paths(base_dir, key)
    cache_dir.mkdir(parents=True, exist_ok=True)

    draws = result.draws
    T = len(result.observed)
    columns = result.parameter_columns

    def stack(get, width: int, dtype=float) -> np.ndarray:
        return np.asarray([get(d) for d in draws], dtype=dtype).reshape(len(draws), width)

    np.savez_compressed(
        arrays_path,
        times=result.observed.times,
        counts=result.observed.counts,
        chain=np.asarray([d.chain for d in draws], dtype=np.int64),
        iteration=np.asarray([d.iteration for d in draws], dtype=np.int64),
        params=stack(lambda d: [getattr(d.params, c) for c in columns], len(columns)),
        S=stack(lambda d: d.trajectory.S, T),
        I=stack(lambda d: d.trajectory.I, T),
        R=stack(lambda d: d.trajectory.R, T),
        yrep=stack(lambda d: d.yrep, T, dtype=np.int64),
        log_lik=stack(lambda d: d.log_lik, T),
    )
    config = {
        "variant": result.variant,
        "population": asdict(result.population),
        "settings": asdict(result.settings),
        "diagnostics": result.diagnostics.to_dict(),
        "chains": [asdict(c) for c in result.chains],
    }
    with config_path.open("w", encoding="utf-8") as f:
        json.dump(config, f, indent=2, sort_keys=True)
    return cache_dir


def load_result(base_dir: Path | str, key: str) -> CalibrationResult:
    """Rebuild a calibration result saved by :func:`save_result`."""
    _, arrays_path, config_path = cache_paths(base_dir, key)
    with config_path.open("r", encoding="utf-8") as f:
        config = json.load(f)
    with np.load(arrays_path) as data:
        arrays = {k: data[k] for k in data.files}

    observed = ObservedSeries(arrays["times"], arrays["counts"])
    draws = build_draws(
        config["variant"],
        observed.times,
        arrays["chain"],
        arrays["iteration"],
        arrays["params"],
        arrays["S"],
        arrays["I"],
        arrays["R"],
        arrays["yrep"],
        arrays["log_lik"],
    )
    return CalibrationResult(
        variant=config["variant"],
        observed=observed,
        population=PopulationSpec(**config["population"]),
        settings=SamplerSettings(**config["settings"]),
        draws=draws,
        diagnostics=Diagnostics.from_dict(config["diagnostics"]),
        chains=[ChainSummary(**c) for c in config["chains"]],
    )
