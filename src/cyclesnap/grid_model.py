from __future__ import annotations

"""
Grid segmentation of a multi-track MIDI source.

Every distinct timestamp in the source becomes a grid line. Consecutive grid
lines bound the segments whose durations feed the series solver, and every
event is stored in the bucket of its nearest grid line together with its
offset from that line (the groove).
"""

from bisect import bisect_left
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import mido

from .errors import ErrorKind, Result
from .timebase import DEFAULT_BPM, DEFAULT_SEGMENT_TICKS, safe_ppq, tempo_to_bpm

# Timestamps closer than this collapse into one grid line.
GRID_EPSILON = 0.001
# Events further than this past the last grid line go to the terminal bucket.
BUCKET_TOLERANCE = 1.0


@dataclass
class BucketedEvent:
    track_index: int
    message: mido.Message  # or MetaMessage
    offset: float          # ticks relative to the bucket's grid line


def is_end_of_track(msg) -> bool:
    return msg.is_meta and msg.type == "end_of_track"


def absolute_events(track: mido.MidiTrack) -> List[Tuple[int, object]]:
    """Return (absolute_tick, message) pairs for a delta-timed track."""
    out: List[Tuple[int, object]] = []
    tick = 0
    for msg in track:
        tick += int(msg.time)
        out.append((tick, msg))
    return out


def merge_tracks(midi: mido.MidiFile) -> List[Tuple[int, int, object]]:
    """All events as (tick, track_index, message), time ordered.

    The sort is stable, so equal timestamps keep track order and then the
    order within each track.
    """
    merged: List[Tuple[int, int, object]] = []
    for t_idx, track in enumerate(midi.tracks):
        for tick, msg in absolute_events(track):
            merged.append((tick, t_idx, msg))
    merged.sort(key=lambda e: e[0])
    return merged


def detect_bpm(merged: Sequence[Tuple[int, int, object]], default: float = DEFAULT_BPM) -> float:
    """BPM of the first set_tempo event; later tempo changes are ignored."""
    for _tick, _t_idx, msg in merged:
        if msg.is_meta and msg.type == "set_tempo":
            if msg.tempo > 0:
                return tempo_to_bpm(msg.tempo)
            break
    return default


def build_grid(times: Sequence[float], epsilon: float = GRID_EPSILON) -> List[float]:
    """Grid lines from sorted timestamps, always starting at 0."""
    points = [0.0]
    last = 0.0
    for t in times:
        if t > last + epsilon:
            points.append(float(t))
            last = float(t)
    return points


def segment_deltas(points: Sequence[float], fallback: float = DEFAULT_SEGMENT_TICKS) -> List[float]:
    if len(points) < 2:
        return [fallback]
    return [points[i + 1] - points[i] for i in range(len(points) - 1)]


def nearest_grid_index(points: Sequence[float], tick: float, total_duration: float,
                       tolerance: float = BUCKET_TOLERANCE) -> int:
    """Index of the grid line nearest to tick (ties go to the earlier line).

    An event more than `tolerance` away from every line and at or past the
    end of the source is assigned to the last line instead.
    """
    if not points:
        return -1
    pos = bisect_left(points, tick)
    best = min(pos, len(points) - 1)
    if pos > 0 and abs(tick - points[pos - 1]) <= abs(points[best] - tick):
        best = pos - 1
    if abs(tick - points[best]) > tolerance and tick >= total_duration:
        best = len(points) - 1
    return best


class GridModel:
    """Segmented view of a loaded MIDI source."""

    def __init__(self) -> None:
        self.clear()

    def clear(self) -> None:
        self.source: Optional[mido.MidiFile] = None
        self.loaded = False
        self.bpm = DEFAULT_BPM
        self.time_points: List[float] = []
        self.deltas: List[float] = []
        self.total_duration = 0.0
        self.buckets: List[List[BucketedEvent]] = []

    @property
    def num_tracks(self) -> int:
        return len(self.source.tracks) if self.source is not None else 0

    @property
    def ppq(self) -> int:
        return safe_ppq(self.source.ticks_per_beat if self.source is not None else None)

    @property
    def segment_count(self) -> int:
        return len(self.deltas)

    def load(self, path: Union[str, Path]) -> Result:
        """Read a MIDI file from disk and segment it."""
        self.clear()
        path = Path(path)
        if not path.is_file():
            return Result.fail(ErrorKind.SOURCE_UNAVAILABLE, f"File not found: {path}")

        try:
            fh = path.open("rb")
        except OSError:
            return Result.fail(ErrorKind.SOURCE_UNAVAILABLE, "Could not open file stream.")

        with fh:
            try:
                midi = mido.MidiFile(file=fh)
            except Exception:
                return Result.fail(ErrorKind.MALFORMED_SOURCE, "Corrupt or invalid MIDI file.")

        return self.load_midi(midi)

    def load_midi(self, midi: mido.MidiFile) -> Result:
        """Segment an already-parsed MIDI file."""
        self.clear()
        if not midi.tracks:
            return Result.fail(ErrorKind.MALFORMED_SOURCE, "MIDI file contains no tracks.")

        self.source = midi
        self.loaded = True
        self._analyze_timeline()
        self._segment_events()
        return Result.success()

    def _analyze_timeline(self) -> None:
        merged = [e for e in merge_tracks(self.source) if not is_end_of_track(e[2])]
        self.bpm = detect_bpm(merged)

        self.time_points = build_grid([tick for tick, _t, _m in merged])
        self.deltas = segment_deltas(self.time_points)
        self.total_duration = float(sum(self.deltas))

    def _segment_events(self) -> None:
        # One bucket per grid line plus a spare terminal slot.
        self.buckets = [[] for _ in range(len(self.time_points) + 1)]
        for t_idx, track in enumerate(self.source.tracks):
            for tick, msg in absolute_events(track):
                if is_end_of_track(msg):
                    continue
                idx = nearest_grid_index(self.time_points, tick, self.total_duration)
                if idx < 0:
                    continue
                offset = tick - self.time_points[idx]
                self.buckets[idx].append(BucketedEvent(t_idx, msg.copy(time=0), offset))

    def describe(self) -> str:
        if not self.loaded:
            return "no source"
        return (
            f"TRK: {self.num_tracks}  SEG: {self.segment_count}  "
            f"BPM: {self.bpm:.1f}  PPQ: {self.ppq}"
        )
