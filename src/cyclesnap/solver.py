"""Solve requests and the five solving modes.

Each mode fixes two of {repetitions N, per-step multiplier s, total ratio R,
terminal multiplier E} and derives the rest. Requests are one dataclass per
mode carrying only the fields that mode reads; callers that select a mode by
name (CLI, JSON config) go through `build_request`.

Loop counts and loop multipliers are the user-facing view. Internally a run
is N steps over M segments with ``loop_multiplier = s ** M``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Union

from .errors import ErrorKind
from .series_math import (
    evaluate_ratio,
    loop_to_step,
    loops_to_steps,
    measure_drift,
    safe_pow,
    solve_multiplier,
    solve_repetition_count,
    solve_repetition_count_with_fixed_end,
    step_to_loop,
)
from .timebase import DEFAULT_BPM, DEFAULT_PPQ, DEFAULT_SEGMENT_TICKS, safe_ppq


class Mode(Enum):
    TARGET_TOTAL_SCALE = "target_total_scale"  # Fixed N, R -> s
    FIXED_BEAT_RATIO = "fixed_beat_ratio"      # Fixed N, s -> R
    MATCH_BEAT_END = "match_beat_end"          # Fixed N, E -> s, R
    FIT_TO_CURVE = "fit_to_curve"              # Fixed s, R -> N
    FIT_END_AND_RATIO = "fit_end_and_ratio"    # Fixed E, R -> N, s


MODE_ALIASES = {
    "target": Mode.TARGET_TOTAL_SCALE,
    "accel": Mode.FIXED_BEAT_RATIO,
    "final": Mode.MATCH_BEAT_END,
    "curve": Mode.FIT_TO_CURVE,
    "end_fit": Mode.FIT_END_AND_RATIO,
}


def parse_mode(name: str) -> Mode:
    key = name.strip().lower().replace("-", "_")
    if key in MODE_ALIASES:
        return MODE_ALIASES[key]
    try:
        return Mode(key)
    except ValueError:
        choices = sorted([m.value for m in Mode] + list(MODE_ALIASES))
        raise ValueError(f"Unknown mode: {name!r} (choose from {', '.join(choices)})") from None


@dataclass(frozen=True)
class TargetTotalScale:
    loops: float
    total_ratio: float
    mode = Mode.TARGET_TOTAL_SCALE


@dataclass(frozen=True)
class FixedBeatRatio:
    loops: float
    loop_multiplier: float
    mode = Mode.FIXED_BEAT_RATIO


@dataclass(frozen=True)
class MatchBeatEnd:
    loops: float
    terminal: float
    mode = Mode.MATCH_BEAT_END


@dataclass(frozen=True)
class FitToCurve:
    loop_multiplier: float
    total_ratio: float
    mode = Mode.FIT_TO_CURVE


@dataclass(frozen=True)
class FitEndAndRatio:
    terminal: float
    total_ratio: float
    mode = Mode.FIT_END_AND_RATIO


SolveRequest = Union[TargetTotalScale, FixedBeatRatio, MatchBeatEnd, FitToCurve, FitEndAndRatio]


def build_request(
    mode: Mode,
    loops: float = 0.0,
    loop_multiplier: float = 0.0,
    total_ratio: float = 0.0,
    terminal: float = 0.0,
) -> SolveRequest:
    """Pick the fields a mode needs out of a flat set of inputs."""
    if mode is Mode.TARGET_TOTAL_SCALE:
        return TargetTotalScale(loops=loops, total_ratio=total_ratio)
    if mode is Mode.FIXED_BEAT_RATIO:
        return FixedBeatRatio(loops=loops, loop_multiplier=loop_multiplier)
    if mode is Mode.MATCH_BEAT_END:
        return MatchBeatEnd(loops=loops, terminal=terminal)
    if mode is Mode.FIT_TO_CURVE:
        return FitToCurve(loop_multiplier=loop_multiplier, total_ratio=total_ratio)
    return FitEndAndRatio(terminal=terminal, total_ratio=total_ratio)


@dataclass(frozen=True)
class SolveContext:
    """Source-derived inputs to a solve: the segment grid plus tempo info."""

    deltas: Sequence[float]
    source_duration: float
    bpm: float = DEFAULT_BPM
    ppq: int = DEFAULT_PPQ
    whole_loops: bool = True
    fallback_segment: float = DEFAULT_SEGMENT_TICKS

    def working_grid(self) -> tuple[List[float], float]:
        """Deltas and duration, substituting one fallback segment for an empty grid."""
        if not self.deltas or self.source_duration <= 0:
            return [self.fallback_segment], self.fallback_segment
        return list(self.deltas), float(self.source_duration)


@dataclass(frozen=True)
class CalculationResult:
    success: bool = False
    message: str = ""
    error: Optional[ErrorKind] = None
    mode: Optional[Mode] = None

    repetitions: int = 0          # N, integer steps to generate
    step_scale: float = 1.0       # s, per-step multiplier
    loop_multiplier: float = 1.0  # s ** M
    total_ratio: float = 0.0      # R, output / source duration
    terminal: float = 1.0         # E, last step scale relative to the first
    segment_count: int = 0

    realized_ratio: float = 0.0   # R after integer tick rounding
    error_ticks: float = 0.0
    error_ms: float = 0.0

    @property
    def loops(self) -> float:
        """Repetitions expressed in loops of the source pattern."""
        return self.repetitions / max(1, self.segment_count)


def _positive(value: float) -> bool:
    # NaN and inf fail here too.
    return math.isfinite(value) and value > 0


def _invalid(mode: Mode, message: str) -> CalculationResult:
    return CalculationResult(success=False, message=message, error=ErrorKind.INVALID_PARAMETER, mode=mode)


def solve(request: SolveRequest, ctx: SolveContext) -> CalculationResult:
    """Solve the unknowns of a request against a segmented source."""
    deltas, duration = ctx.working_grid()
    m = len(deltas)
    stride = m if ctx.whole_loops else 1
    mode = request.mode

    terminal: Optional[float] = None

    if isinstance(request, (TargetTotalScale, FixedBeatRatio, MatchBeatEnd)):
        if not _positive(request.loops):
            return _invalid(mode, "loops must be > 0")

    if isinstance(request, TargetTotalScale):
        if not _positive(request.total_ratio):
            return _invalid(mode, "total_ratio must be > 0")
        n = loops_to_steps(request.loops, m, ctx.whole_loops)
        ratio = request.total_ratio
        s = solve_multiplier(deltas, n, ratio, duration)
        message = "Solved Beat Ratio"

    elif isinstance(request, FixedBeatRatio):
        if not _positive(request.loop_multiplier):
            return _invalid(mode, "loop_multiplier must be > 0")
        n = loops_to_steps(request.loops, m, ctx.whole_loops)
        s = loop_to_step(request.loop_multiplier, m)
        ratio = evaluate_ratio(deltas, n, s, duration)
        message = "Calculated Total Scale"

    elif isinstance(request, MatchBeatEnd):
        if not _positive(request.terminal):
            return _invalid(mode, "terminal must be > 0")
        n = loops_to_steps(request.loops, m, ctx.whole_loops)
        s = math.pow(request.terminal, 1.0 / (n - 1)) if n > 1 else 1.0
        ratio = evaluate_ratio(deltas, n, s, duration)
        message = "Solved Ratio from End"

    elif isinstance(request, FitToCurve):
        if not _positive(request.loop_multiplier):
            return _invalid(mode, "loop_multiplier must be > 0")
        if not _positive(request.total_ratio):
            return _invalid(mode, "total_ratio must be > 0")
        s = loop_to_step(request.loop_multiplier, m)
        ratio = request.total_ratio
        n = solve_repetition_count(deltas, s, ratio, duration, stride)
        message = "Solved Repetitions (Curve)"

    elif isinstance(request, FitEndAndRatio):
        if not _positive(request.terminal):
            return _invalid(mode, "terminal must be > 0")
        if not _positive(request.total_ratio):
            return _invalid(mode, "total_ratio must be > 0")
        ratio = request.total_ratio
        n = solve_repetition_count_with_fixed_end(deltas, request.terminal, ratio, duration, stride)
        s = math.pow(request.terminal, 1.0 / (n - 1)) if n > 1 else 1.0
        terminal = request.terminal
        message = "Solved Repetitions (End+Ratio)"

    else:
        raise TypeError(f"Unsupported solve request: {request!r}")

    if terminal is None:
        terminal = safe_pow(s, n - 1) if n > 0 else 1.0

    drift = measure_drift(deltas, n, s, ratio, duration, ctx.bpm, safe_ppq(ctx.ppq))

    return CalculationResult(
        success=True,
        message=message,
        mode=mode,
        repetitions=n,
        step_scale=s,
        loop_multiplier=step_to_loop(s, m),
        total_ratio=ratio,
        terminal=terminal,
        segment_count=m,
        realized_ratio=drift.realized_ratio,
        error_ticks=drift.error_ticks,
        error_ms=drift.error_ms,
    )
