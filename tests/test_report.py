from __future__ import annotations

import csv
import math
from pathlib import Path

from cyclesnap.report import append_solve_log, drift_level, format_drift, format_result
from cyclesnap.solver import FixedBeatRatio, SolveContext, solve


def test_drift_levels():
    assert drift_level(0.0) == "ok"
    assert drift_level(9.99) == "ok"
    assert drift_level(10.0) == "warn"
    assert drift_level(29.9) == "warn"
    assert drift_level(30.0) == "bad"
    assert format_drift(math.inf) == "DRIFT: --"


def test_format_result_failure():
    res = solve(FixedBeatRatio(loops=0, loop_multiplier=1.5), SolveContext([480.0], 480.0))
    assert format_result(res) == ["MATH ERROR: loops must be > 0"]


def test_solve_log_appends_rows_under_one_header(tmp_path: Path):
    ctx = SolveContext([480.0, 480.0], 960.0)
    log_path = tmp_path / "logs" / "solves.csv"
    append_solve_log(str(log_path), solve(FixedBeatRatio(loops=2, loop_multiplier=1.0), ctx))
    append_solve_log(str(log_path), solve(FixedBeatRatio(loops=3, loop_multiplier=1.0), ctx))

    with log_path.open() as f:
        rows = list(csv.DictReader(f))
    assert [int(r["repetitions"]) for r in rows] == [4, 6]
    assert float(rows[0]["error_ticks"]) == 0.0
