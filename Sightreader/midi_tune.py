from collections import defaultdict
from pathlib import Path
from typing import Iterable, Optional

import mido
from mido import MidiFile

from config import DRUM_CHANNEL
from pitch import round_half_up
from sr_types import ScoreEvent, TuneSlot


def slots_from_notes(notes: list[tuple[int, int, int]], tpq: int) -> list[TuneSlot]:
    """
    Turn (start_tick, end_tick, pitch) notes into consecutive slots.

    Notes starting on the same tick form one slot. A slot lasts until its
    longest note ends or the next onset, whichever is first; silence before the
    next onset (or before the first note) becomes a rest slot.
    """
    by_start = defaultdict(list)
    for start, end, pitch in notes:
        by_start[start].append((end, pitch))
    starts = sorted(by_start)
    slots: list[TuneSlot] = []
    if starts and starts[0] > 0:
        slots.append(TuneSlot(beat=0.0, duration=starts[0] / tpq))
    for i, start in enumerate(starts):
        end = max(e for e, _ in by_start[start])
        nxt = starts[i + 1] if i + 1 < len(starts) else None
        if nxt is not None:
            end = min(end, nxt)
        pitches = frozenset(p for _, p in by_start[start])
        slots.append(TuneSlot(beat=start / tpq, duration=(end - start) / tpq, pitches=pitches))
        if nxt is not None and end < nxt:
            slots.append(TuneSlot(beat=end / tpq, duration=(nxt - end) / tpq))
    return slots


class MidiTune:
    """A tune read from a standard MIDI file. Percussion (channel 10) is skipped."""

    def __init__(self, mid: MidiFile, channel: Optional[int] = None, title: Optional[str] = None):
        self.tpq = mid.ticks_per_beat
        self.title = title
        self.beats_per_measure = 4.0
        self.embedded_qpm: Optional[int] = None
        seen_time_signature = False

        notes: list[tuple[int, int, int]] = []
        sounding: dict[int, list[int]] = defaultdict(list)
        abs_ticks = 0
        for msg in mido.merge_tracks(mid.tracks):
            abs_ticks += msg.time
            if msg.is_meta:
                if msg.type == "set_tempo" and self.embedded_qpm is None:
                    self.embedded_qpm = round_half_up(mido.tempo2bpm(msg.tempo))
                elif msg.type == "time_signature" and not seen_time_signature:
                    seen_time_signature = True
                    self.beats_per_measure = msg.numerator * 4.0 / msg.denominator
                elif msg.type == "track_name" and not self.title and msg.name:
                    self.title = msg.name
                continue
            ch = getattr(msg, "channel", None)
            if ch == DRUM_CHANNEL or (channel is not None and ch != channel):
                continue
            if msg.type == "note_on" and msg.velocity > 0:
                sounding[msg.note].append(abs_ticks)
            elif msg.type in ("note_on", "note_off") and sounding.get(msg.note):
                notes.append((sounding[msg.note].pop(0), abs_ticks, msg.note))
        # notes never released end with the file
        for pitch, starts in sounding.items():
            notes.extend((s, abs_ticks, pitch) for s in starts)

        self.slots = slots_from_notes(notes, self.tpq)

    @classmethod
    def from_file(cls, path, channel: Optional[int] = None) -> "MidiTune":
        return cls(MidiFile(str(path)), channel=channel, title=Path(path).stem)

    def iter_slots(self) -> Iterable[TuneSlot]:
        return iter(self.slots)

    def mark_event(self, event: ScoreEvent, active: bool) -> None:
        """MIDI files have no glyphs to highlight."""
