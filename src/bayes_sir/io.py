"""Run I/O helpers.

Small utilities to create output folders and persist configs, diagnostics
and draws as JSON and CSV. Used by scripts to standardize run artifacts in
runs/.
"""


from pathlib import Path
import json
import csv
from typing import Dict, Iterable, Union


def ensure_dir(path: Union[Path, str]) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _jsonable(value):
    # NumPy scalars/arrays and Paths show up in configs and diagnostics.
    if hasattr(value, "tolist"):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def save_json(path: Union[Path, str], payload: Dict) -> None:
    path = Path(path)
    with path.open("w", encoding="utf-8") as f:
        # Stable formatting helps diffs and reproducibility.
        json.dump(payload, f, indent=2, sort_keys=True, default=_jsonable)


def save_csv(path: Union[Path, str], rows: Iterable[Dict]) -> None:
    path = Path(path)
    rows = list(rows)
    if not rows:
        # Avoid creating empty CSVs.
        return
    with path.open("w", newline="", encoding="utf-8") as f:
        # Column order follows the first row; keys first seen later are appended.
        fieldnames = list(rows[0].keys())
        seen = set(fieldnames)
        for row in rows[1:]:
            for key in row.keys():
                if key not in seen:
                    fieldnames.append(key)
                    seen.add(key)
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)


def save_series_csv(
    path: Union[Path, str], times: Iterable[float], counts: Iterable[int]
) -> None:
    """Write a case series in the layout read by ``datasets.load_series_csv``."""
    save_csv(path, ({"t": float(t), "cases": int(c)} for t, c in zip(times, counts)))
