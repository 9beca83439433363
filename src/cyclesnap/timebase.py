from __future__ import annotations

"""
Timebase utilities for converting between ticks, milliseconds and tempo.

Defaults are used whenever a source does not declare its own tempo or
time-base.
"""

from mido import bpm2tempo, tempo2bpm

DEFAULT_BPM = 120.0
DEFAULT_PPQ = 960
# Length of the synthesized segment for sources with fewer than two grid lines.
DEFAULT_SEGMENT_TICKS = 960.0


def safe_ppq(ppq: int | None, default: int = DEFAULT_PPQ) -> int:
    """Return ppq when positive, otherwise the default time-base."""
    if ppq is None or ppq <= 0:
        return default
    return int(ppq)


def safe_bpm(bpm: float | None, default: float = DEFAULT_BPM) -> float:
    if bpm is None or bpm <= 0:
        return default
    return float(bpm)


def ms_per_tick(ppq: int, bpm: float) -> float:
    """Milliseconds covered by a single tick.

    One beat lasts 60000/BPM ms and holds PPQ ticks, so one tick is
    60000 / (BPM * PPQ) ms.
    """
    return 60000.0 / (safe_bpm(bpm) * safe_ppq(ppq))


def ticks_to_ms(ticks: float, ppq: int, bpm: float) -> float:
    """Convert ticks to milliseconds (float)."""
    return float(ticks) * ms_per_tick(ppq, bpm)


def tempo_to_bpm(tempo: int) -> float:
    """Convert a set_tempo value (microseconds per beat) to BPM."""
    return float(tempo2bpm(tempo))


def bpm_to_tempo(bpm: float) -> int:
    """Convert BPM to a set_tempo value (microseconds per beat)."""
    return int(bpm2tempo(safe_bpm(bpm)))
