"""Deterministic run summarisation helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Mapping

import numpy as np

_INDEX_KEYS = {"step", "epoch", "seed"}


def _extract_numeric(records: Iterable[Mapping[str, object]]) -> Mapping[str, list[float]]:
    metrics: dict[str, list[float]] = {}
    for record in records:
        for key, value in record.items():
            if key in _INDEX_KEYS:
                continue
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                metrics.setdefault(key, []).append(float(value))
    return metrics


def summarise(records: Iterable[Mapping[str, object]]) -> Mapping[str, Mapping[str, float]]:
    """Return min/max/mean/last for every numeric metric in ``records``."""

    summary: dict[str, Mapping[str, float]] = {}
    for name, values in sorted(_extract_numeric(records).items()):
        arr = np.asarray(values, dtype=np.float64)
        summary[name] = {
            "min": float(np.min(arr)),
            "max": float(np.max(arr)),
            "mean": float(np.mean(arr)),
            "last": float(arr[-1]),
        }
    return summary


def write_summary(metrics_jsonl: str | Path, out_summary_json: str | Path) -> Path:
    """Write a deterministic summary of the epoch records in ``metrics_jsonl``."""

    metrics_path = Path(metrics_jsonl)
    out_path = Path(out_summary_json)
    records = []
    if metrics_path.exists():
        for line in metrics_path.read_text().splitlines():
            if line.strip():
                record = json.loads(line)
                if "epoch" in record:
                    records.append(record)
    payload = {"source": metrics_path.name, "epochs": len(records), "metrics": summarise(records)}
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(payload, sort_keys=True, indent=2))
    return out_path
