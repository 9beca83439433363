"""Status text and CSV logging for solve results."""
from __future__ import annotations

import csv
import math
import os
from typing import Dict, List

from .solver import CalculationResult

DRIFT_OK_MS = 10.0
DRIFT_WARN_MS = 30.0

LOG_FIELDS = [
    "mode",
    "repetitions",
    "loops",
    "step_scale",
    "loop_multiplier",
    "total_ratio",
    "terminal",
    "realized_ratio",
    "error_ticks",
    "error_ms",
]


def drift_level(error_ms: float) -> str:
    if error_ms < DRIFT_OK_MS:
        return "ok"
    if error_ms < DRIFT_WARN_MS:
        return "warn"
    return "bad"


def format_drift(error_ms: float) -> str:
    if not math.isfinite(error_ms):
        return "DRIFT: --"
    return f"DRIFT: {error_ms:.2f}ms [{drift_level(error_ms)}]"


def format_result(res: CalculationResult) -> List[str]:
    """Lines describing a solve, in the order they are printed."""
    if not res.success:
        return [f"MATH ERROR: {res.message}"]
    return [
        f"{res.message}.",
        f"SOLVED: N={res.repetitions} ({res.loops:.2f} Loops)",
        f"loops={res.loops:.2f} multiplier={res.loop_multiplier:.5f} "
        f"ratio={res.total_ratio:.5f} end={res.terminal:.5f} step={res.step_scale:.6f}",
        f"realized={res.realized_ratio:.5f} error={res.error_ticks:.2f} ticks",
        format_drift(res.error_ms),
    ]


def log_row(res: CalculationResult) -> Dict[str, object]:
    return {
        "mode": res.mode.value if res.mode is not None else "",
        "repetitions": res.repetitions,
        "loops": round(res.loops, 6),
        "step_scale": res.step_scale,
        "loop_multiplier": res.loop_multiplier,
        "total_ratio": res.total_ratio,
        "terminal": res.terminal,
        "realized_ratio": res.realized_ratio,
        "error_ticks": res.error_ticks,
        "error_ms": res.error_ms,
    }


def append_solve_log(log_path: str, res: CalculationResult) -> None:
    """Append one row per solve, writing the header for a new file."""
    directory = os.path.dirname(log_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    new_file = not os.path.exists(log_path) or os.path.getsize(log_path) == 0
    with open(log_path, "a", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=LOG_FIELDS)
        if new_file:
            writer.writeheader()
        writer.writerow(log_row(res))
