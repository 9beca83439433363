"""Geometric series math for segment time-warping.

All routines are pure functions over a list of segment durations (``deltas``)
that repeats with period ``M = len(deltas)``. Step ``k`` of a run consumes
``deltas[k % M]`` scaled by ``s ** k``, so the output/input duration ratio is

    R(N, s) = sum(deltas[k % M] * s**k for k in range(N)) / source_duration

The periodic weighting has no convenient inverse, so ``s`` is found by
bisection and ``N`` by a bounded forward scan. Every loop carries an explicit
iteration cap; callers get a best-effort nearest match, never an exception.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple

from .timebase import ms_per_tick

EPSILON = 1e-7
MAX_BISECTION_ITERS = 100
MAX_BRACKET_DOUBLINGS = 30
BISECTION_LOW = 1e-4
BISECTION_HIGH = 2.0
# Targets this close to the unscaled repeat count resolve to s = 1.0.
LINEAR_TOLERANCE = 0.001


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def safe_pow(base: float, exponent: float) -> float:
    """math.pow that saturates to inf instead of raising OverflowError."""
    try:
        return math.pow(base, exponent)
    except OverflowError:
        return math.inf


def scan_limit(segment_count: int) -> int:
    """Upper bound on candidate step counts for the forward scans."""
    return max(1000, segment_count * 100)


def loop_to_step(loop_multiplier: float, segment_count: int) -> float:
    """Per-loop multiplier -> per-step multiplier (``s = loop ** (1/M)``)."""
    return math.pow(loop_multiplier, 1.0 / segment_count)


def step_to_loop(step_multiplier: float, segment_count: int) -> float:
    """Per-step multiplier -> per-loop multiplier (``loop = s ** M``)."""
    return safe_pow(step_multiplier, segment_count)


def quantize_to_stride(steps: int, stride: int) -> int:
    """Snap a step count to the nearest multiple of stride, at least one stride."""
    if stride > 1 and steps % stride != 0:
        steps = ((steps + stride // 2) // stride) * stride
    return max(steps, stride)


def loops_to_steps(loops: float, segment_count: int, whole_loops: bool) -> int:
    """Convert a loop count to an integer step count ``N = round(loops * M)``."""
    steps = round_half_away(loops * segment_count)
    if whole_loops:
        return quantize_to_stride(steps, segment_count)
    return max(steps, 1)


def evaluate_ratio(deltas: Sequence[float], n_steps: int, s: float, source_duration: float) -> float:
    """Output/input duration ratio after ``n_steps`` steps at per-step multiplier ``s``."""
    if not deltas or source_duration <= EPSILON:
        return 0.0

    # Near s = 1 the weighted sum degenerates to a plain repeat count.
    if abs(s - 1.0) < EPSILON:
        return float(n_steps) / len(deltas)

    m = len(deltas)
    total = 0.0
    for k in range(n_steps):
        total += deltas[k % m] * safe_pow(s, k)
    return total / source_duration


def _product_ratio(deltas: Sequence[float], n_steps: int, s: float, source_duration: float) -> float:
    """evaluate_ratio with a running ``s ** k`` product instead of one pow per term."""
    if abs(s - 1.0) < EPSILON:
        return float(n_steps) / len(deltas)

    m = len(deltas)
    total = 0.0
    scale = 1.0
    for k in range(n_steps):
        total += deltas[k % m] * scale
        scale *= s
    return total / source_duration


def _iter_ratios(deltas: Sequence[float], s: float, source_duration: float, limit: int) -> Iterator[Tuple[int, float]]:
    """Yield ``(k, evaluate_ratio(deltas, k, s, ...))`` for k = 1..limit incrementally."""
    m = len(deltas)
    linear = abs(s - 1.0) < EPSILON
    total = 0.0
    for k in range(1, limit + 1):
        if linear:
            yield k, float(k) / m
            continue
        total += deltas[(k - 1) % m] * safe_pow(s, k - 1)
        yield k, total / source_duration


def solve_multiplier(deltas: Sequence[float], n_steps: int, target_ratio: float, source_duration: float) -> float:
    """Find the per-step multiplier ``s`` with ``evaluate_ratio(...) == target_ratio``.

    The ratio is monotonically increasing in ``s`` for ``s > 0``, so the root
    is bracketed by ``[1e-4, high]`` after doubling ``high`` (at most 30 times)
    and then bisected for at most 100 iterations.
    """
    if not deltas or n_steps <= 0:
        return 1.0

    linear_ratio = float(n_steps) / len(deltas)
    if abs(target_ratio - linear_ratio) < LINEAR_TOLERANCE:
        return 1.0

    low = BISECTION_LOW
    high = BISECTION_HIGH

    doublings = 0
    while evaluate_ratio(deltas, n_steps, high, source_duration) < target_ratio and doublings < MAX_BRACKET_DOUBLINGS:
        high *= 2.0
        doublings += 1

    for _ in range(MAX_BISECTION_ITERS):
        mid = low + (high - low) * 0.5
        r_mid = evaluate_ratio(deltas, n_steps, mid, source_duration)
        if abs(r_mid - target_ratio) < EPSILON:
            return mid
        if r_mid < target_ratio:
            low = mid
        else:
            high = mid
    return low + (high - low) * 0.5


def solve_repetition_count(
    deltas: Sequence[float],
    s: float,
    target_ratio: float,
    source_duration: float,
    stride: int = 1,
) -> int:
    """Find the step count (a multiple of stride) whose ratio is nearest target_ratio.

    Scans ``k = stride, 2*stride, ...`` up to ``scan_limit(M)`` and stops once
    the curve has passed the target and the error starts growing. R(k) is not
    guaranteed monotone under stride quantisation, so this is a heuristic.
    """
    stride = max(1, int(stride))
    if not deltas or source_duration <= EPSILON:
        return stride

    min_diff = math.inf
    best_n = stride
    for k, r in _iter_ratios(deltas, s, source_duration, scan_limit(len(deltas))):
        if k % stride != 0:
            continue
        diff = abs(r - target_ratio)
        if diff < min_diff:
            min_diff = diff
            best_n = k
        if r > target_ratio and diff > min_diff:
            break
    return best_n


def solve_repetition_count_with_fixed_end(
    deltas: Sequence[float],
    target_end: float,
    target_ratio: float,
    source_duration: float,
    stride: int = 1,
) -> int:
    """Find the step count when the terminal multiplier ``E = s ** (N-1)`` is pinned.

    Each candidate N derives its own ``s = E ** (1/(N-1))`` before the ratio
    is evaluated, so the ratio has to be recomputed from scratch per candidate.
    """
    stride = max(1, int(stride))
    m = len(deltas)
    if m == 0 or source_duration <= EPSILON:
        return stride

    if abs(target_end - 1.0) < LINEAR_TOLERANCE:
        return quantize_to_stride(round_half_away(target_ratio * m), stride)

    # A curve needs at least two points.
    start = max(stride, 2)

    min_diff = math.inf
    best_n = start
    for k in range(start, scan_limit(m) + 1, stride):
        s = math.pow(target_end, 1.0 / (k - 1))
        r = _product_ratio(deltas, k, s, source_duration)
        diff = abs(r - target_ratio)
        if diff < min_diff:
            min_diff = diff
            best_n = k
        if r > target_ratio and diff > min_diff:
            break
    return best_n


@dataclass(frozen=True)
class Drift:
    realized_ratio: float
    error_ticks: float
    error_ms: float


def measure_drift(
    deltas: Sequence[float],
    n_steps: int,
    s: float,
    total_ratio: float,
    source_duration: float,
    bpm: float,
    ppq: int,
) -> Drift:
    """Compare the integer-rounded realized duration against the ideal one."""
    m = len(deltas)
    quantized: float = 0
    for k in range(n_steps):
        exact = deltas[k % m] * safe_pow(s, k)
        if not math.isfinite(exact):
            quantized = math.inf
            break
        quantized += round_half_away(exact)

    if not math.isfinite(quantized):
        return Drift(realized_ratio=math.inf, error_ticks=math.inf, error_ms=math.inf)

    realized = quantized / source_duration if source_duration > 0 else 0.0
    ideal = source_duration * total_ratio
    error_ticks = abs(quantized - ideal)
    return Drift(
        realized_ratio=realized,
        error_ticks=error_ticks,
        error_ms=error_ticks * ms_per_tick(ppq, bpm),
    )
