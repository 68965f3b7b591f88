"""Posterior summaries.

Includes mean/sd/quantile summaries, central credible intervals and
coverage checks (used by recovery studies), plus timing summaries."""


from typing import Dict, Sequence, Tuple

import numpy as np


def posterior_summary(
    samples: np.ndarray, probs: Sequence[float] = (0.05, 0.5, 0.95)
) -> Dict[str, float]:
    """Mean, sd and quantiles of a 1-D (or flattened) sample."""
    samples = np.ravel(np.asarray(samples, dtype=float))
    if samples.size == 0:
        # Keep the schema stable when a run produced no draws.
        out = {"mean": float("nan"), "sd": float("nan")}
        out.update({f"q{100 * p:g}": float("nan") for p in probs})
        return out
    out = {
        "mean": float(np.mean(samples)),
        "sd": float(np.std(samples, ddof=1)) if samples.size > 1 else 0.0,
    }
    for p, q in zip(probs, np.quantile(samples, probs)):
        out[f"q{100 * p:g}"] = float(q)
    return out


def credible_interval(samples: np.ndarray, level: float = 0.8) -> Tuple[float, float]:
    """Central credible interval containing ``level`` of the posterior mass."""
    if not 0 < level < 1:
        raise ValueError("level must be in (0,1)")
    samples = np.ravel(samples)
    if samples.size == 0:
        return float("nan"), float("nan")
    tail = 0.5 * (1.0 - level)
    lo, hi = np.quantile(samples, [tail, 1.0 - tail])
    return float(lo), float(hi)


def interval_covers(samples: np.ndarray, truth: float, level: float = 0.8) -> bool:
    lo, hi = credible_interval(samples, level)
    return lo <= truth <= hi


def timing_summary(times: np.ndarray) -> Dict[str, float]:
    """Summarize timings with p50/p90 (seconds)."""
    times = np.asarray(times)
    if times.size == 0:
        return {"time_p50": 0.0, "time_p90": 0.0}
    return {
        "time_p50": float(np.percentile(times, 50)),
        "time_p90": float(np.percentile(times, 90)),
    }
