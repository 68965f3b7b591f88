"""Observed case series.

Loads a time/count series from CSV and validates it into an immutable
ObservedSeries that the calibration consumes."""


import csv
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np

from .exceptions import ValidationError


@dataclass(frozen=True, eq=False)
class ObservedSeries:
    """Observed counts aligned one-to-one with a strictly increasing time grid."""

    times: np.ndarray
    counts: np.ndarray

    def __post_init__(self) -> None:
        times = np.array(self.times, dtype=float)
        raw = np.asarray(self.counts)
        if times.ndim != 1 or times.size == 0:
            raise ValidationError("times must be a non-empty 1-D sequence")
        if raw.shape != times.shape:
            raise ValidationError("counts must align one-to-one with times")
        if not np.all(np.isfinite(times)) or np.any(np.diff(times) <= 0):
            raise ValidationError("times must be finite and strictly increasing")
        counts = np.asarray(raw, dtype=float)
        if not np.all(np.isfinite(counts)) or np.any(counts < 0):
            raise ValidationError("counts must be finite and non-negative")
        if np.any(counts != np.round(counts)):
            raise ValidationError("counts must be integers")
        counts = counts.astype(np.int64)
        # Fixed input: never mutated after construction.
        times.setflags(write=False)
        counts.setflags(write=False)
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "counts", counts)

    def __len__(self) -> int:
        return int(self.times.size)

    def fingerprint(self, length: int = 16) -> str:
        """Stable hash of the data, used as part of cache keys."""
        h = hashlib.sha256()
        h.update(self.times.astype("<f8").tobytes())
        h.update(self.counts.astype("<i8").tobytes())
        return h.hexdigest()[:length]


def from_counts(
    counts: Sequence[int],
    times: Optional[Sequence[float]] = None,
    t_start: float = 1.0,
) -> ObservedSeries:
    """Build a series from counts, defaulting to a daily grid from ``t_start``."""
    counts = np.asarray(counts)
    if times is None:
        times = t_start + np.arange(counts.size, dtype=float)
    return ObservedSeries(np.asarray(times, dtype=float), counts)


def load_series_csv(
    path: Union[Path, str],
    time_column: Optional[str] = "t",
    count_column: str = "cases",
) -> ObservedSeries:
    """Load a case series from a CSV file with a header row.

    If ``time_column`` is None or missing from the file, rows are taken as
    consecutive days starting at 1.
    """
    path = Path(path)
    with path.open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        fields = reader.fieldnames or []
        if count_column not in fields:
            raise ValidationError(f"{path}: missing column {count_column!r}")
        rows = list(reader)
    if not rows:
        raise ValidationError(f"{path}: no data rows")

    try:
        counts = [float(row[count_column]) for row in rows]
        times = None
        if time_column and time_column in fields:
            times = [float(row[time_column]) for row in rows]
    except ValueError as exc:
        raise ValidationError(f"{path}: non-numeric value ({exc})") from exc
    return from_counts(counts, times=times)
