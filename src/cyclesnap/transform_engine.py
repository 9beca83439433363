"""Orchestrates loading, solving and regeneration of a time-warped MIDI file.

Connects the segmented source (GridModel) with the series solver and builds
the output file step by step: step k replays source segment ``k % M`` with
its duration and every groove offset scaled by ``s ** k``.
"""
from __future__ import annotations

import math
import os
from pathlib import Path
from typing import List, Optional, Union

from mido import MetaMessage, MidiFile

from .errors import ErrorKind, Result
from .grid_model import GridModel
from .midi_writer import TimedEvent, build_track, end_of_track, write_midi
from .series_math import safe_pow
from .solver import CalculationResult, SolveContext, SolveRequest, solve
from .timebase import bpm_to_tempo

DEBUG_ENV = "CYCLESNAP_DEBUG"


def _debug(msg: str) -> None:
    if os.environ.get(DEBUG_ENV):
        print(f"[warp-debug] {msg}")


class TransformEngine:
    def __init__(self, model: Optional[GridModel] = None) -> None:
        self.model = model or GridModel()
        self.generated: Optional[MidiFile] = None

    @property
    def is_generated(self) -> bool:
        return self.generated is not None

    def load_source(self, path: Union[str, Path]) -> Result:
        self.generated = None
        return self.model.load(path)

    def load_midi(self, midi: MidiFile) -> Result:
        self.generated = None
        return self.model.load_midi(midi)

    def solve_context(self, whole_loops: bool = True) -> SolveContext:
        return SolveContext(
            deltas=self.model.deltas,
            source_duration=self.model.total_duration,
            bpm=self.model.bpm,
            ppq=self.model.ppq,
            whole_loops=whole_loops,
        )

    def run_solver(self, request: SolveRequest, whole_loops: bool = True) -> CalculationResult:
        """Run the stateless solver against the loaded source's grid."""
        return solve(request, self.solve_context(whole_loops))

    def generate(self, steps: int, step_scale: float) -> Result:
        """Regenerate the source over `steps` steps at per-step multiplier `step_scale`."""
        if not self.model.loaded:
            return Result.fail(ErrorKind.NO_SOURCE_LOADED, "No source MIDI loaded.")

        deltas = self.model.deltas
        buckets = self.model.buckets
        segment_count = len(deltas)
        if segment_count == 0:
            return Result.fail(ErrorKind.EMPTY_SEGMENTATION, "Model is empty (no time segments).")

        num_tracks = self.model.num_tracks
        streams: List[List[TimedEvent]] = [[] for _ in range(num_tracks)]

        def add_bucket(bucket_idx: int, base_time: float, scale: float) -> None:
            if bucket_idx >= len(buckets):
                return
            for ev in buckets[bucket_idx]:
                if 0 <= ev.track_index < num_tracks:
                    streams[ev.track_index].append(TimedEvent(base_time + ev.offset * scale, ev.message))

        # Global metadata on the primary track.
        streams[0].append(TimedEvent(0.0, MetaMessage("set_tempo", tempo=bpm_to_tempo(self.model.bpm))))
        streams[0].append(TimedEvent(0.0, MetaMessage("time_signature", numerator=4, denominator=4)))

        # Events at the very start are never scaled.
        add_bucket(0, 0.0, 1.0)

        cursor = 0.0
        for k in range(steps):
            seg_idx = k % segment_count
            scale = safe_pow(step_scale, k)
            cursor += deltas[seg_idx] * scale

            next_idx = seg_idx + 1
            if next_idx == segment_count:
                # Loop boundary: the source's terminal events, then the start
                # of the next pass unless this is the final step.
                add_bucket(segment_count, cursor, scale)
                if k < steps - 1:
                    add_bucket(0, cursor, scale)
            else:
                add_bucket(next_idx, cursor, scale)

        if not math.isfinite(cursor):
            return Result.fail(ErrorKind.INVALID_PARAMETER, "Timeline overflow: multiplier too large for step count.")

        out = MidiFile(type=1, ticks_per_beat=self.model.ppq)
        for stream in streams:
            last_time = max([cursor] + [ev.time for ev in stream])
            stream.append(end_of_track(last_time))
            out.tracks.append(build_track(stream))

        _debug(
            f"steps={steps} s={step_scale:.6f} end={cursor:.3f} "
            f"events={[len(s) for s in streams]}"
        )
        self.generated = out
        return Result.success()

    def solve_and_generate(self, request: SolveRequest, whole_loops: bool = True) -> tuple[CalculationResult, Result]:
        """Solve, then regenerate only if the solve succeeded."""
        res = self.run_solver(request, whole_loops)
        if not res.success:
            return res, Result.fail(ErrorKind.INVALID_PARAMETER, "GEN FAIL: Invalid Parameters.")
        return res, self.generate(res.repetitions, res.step_scale)

    def save(self, dest: Union[str, Path]) -> Result:
        if self.generated is None:
            return Result.fail(ErrorKind.NOTHING_TO_SAVE, "Nothing to save.")
        return write_midi(self.generated, dest)

    def debug_dump(self) -> str:
        lines = ["--- DEBUG ---"]
        if self.model.loaded:
            lines.extend(_midi_summary(self.model.source, "SOURCE"))
        if self.generated is not None:
            lines.extend(_midi_summary(self.generated, "OUTPUT"))
        return "\n".join(lines) + "\n"


def _midi_summary(mid: MidiFile, title: str) -> List[str]:
    lines = ["", f"[{title}]"]
    for i, track in enumerate(mid.tracks):
        lines.append(f"Trk{i}: {len(track)} evs")
    return lines
