from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Union

from mido import MetaMessage, MidiFile, MidiTrack

from .errors import ErrorKind, Result
from .series_math import round_half_away

# Ordering of event classes sharing a timestamp.
PRIORITY_META = 0
PRIORITY_NOTE_OFF = 1
PRIORITY_NOTE_ON = 2
PRIORITY_OTHER = 3
PRIORITY_END_OF_TRACK = 4

# Timestamps closer than this count as simultaneous when sorting.
TIME_RESOLUTION = 6


@dataclass
class TimedEvent:
    time: float  # absolute ticks, not yet quantized
    message: object


def event_priority(msg) -> int:
    """Sort class of a message at a shared timestamp.

    Meta events come first so tempo/time signature apply to what follows,
    note-offs precede note-ons so a retriggered note is not cut short, and
    end_of_track is always last.
    """
    if msg.is_meta:
        return PRIORITY_END_OF_TRACK if msg.type == "end_of_track" else PRIORITY_META
    if msg.type == "note_off" or (msg.type == "note_on" and msg.velocity == 0):
        return PRIORITY_NOTE_OFF
    if msg.type == "note_on":
        return PRIORITY_NOTE_ON
    return PRIORITY_OTHER


def sort_events(events: Iterable[TimedEvent]) -> List[TimedEvent]:
    """Sort by time, then by event class; otherwise insertion order is kept."""
    return sorted(events, key=lambda ev: (round(ev.time, TIME_RESOLUTION), event_priority(ev.message)))


def build_track(events: Iterable[TimedEvent]) -> MidiTrack:
    """
    Build a delta-timed track from absolute-time events.
    Steps:
      - sort by (time, event class)
      - round each absolute time to the nearest tick
      - delta-encode times
    """
    track = MidiTrack()
    last_t = 0
    for ev in sort_events(events):
        abs_t = max(0, round_half_away(ev.time))
        delta = abs_t - last_t
        track.append(ev.message.copy(time=max(0, delta)))
        last_t = max(last_t, abs_t)
    return track


def end_of_track(time: float) -> TimedEvent:
    return TimedEvent(time, MetaMessage("end_of_track", time=0))


def track_ticks(track: MidiTrack) -> List[int]:
    """Absolute tick of every message in a delta-timed track."""
    ticks: List[int] = []
    tick = 0
    for msg in track:
        tick += int(msg.time)
        ticks.append(tick)
    return ticks


def write_midi(mid: MidiFile, out_path: Union[str, Path]) -> Result:
    """Write a MIDI file, replacing any existing file at out_path.

    Multi-track output is saved as type 1, a single track as type 0.
    """
    path = Path(out_path)
    if path.exists():
        try:
            path.unlink()
        except OSError:
            return Result.fail(ErrorKind.WRITE_FAILED, "File locked.")

    mid.type = 1 if len(mid.tracks) > 1 else 0
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        mid.save(str(path))
    except (OSError, ValueError):
        return Result.fail(ErrorKind.WRITE_FAILED, "Write error.")
    return Result.success()
