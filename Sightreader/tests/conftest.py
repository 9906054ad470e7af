import time

import numpy as np
import pytest
from mido import Message, MetaMessage, MidiFile, MidiTrack

from errors import DeviceError, NetworkError, ScoreParseError
from sr_types import ScoreStats, SessionObserver, TuneSlot


class FakeCapture:
    sample_rate = 44100

    def __init__(self, device_id=None, levels=(0.5,), fail=False):
        self.device_id = device_id
        self.levels = list(levels)
        self.fail = fail
        self.opened = False
        self.closed = False
        self.reads = 0

    def open(self):
        if self.fail:
            raise DeviceError(f"permission denied for {self.device_id!r}")
        self.opened = True

    def read(self):
        level = self.levels[min(self.reads, len(self.levels) - 1)]
        self.reads += 1
        return np.full(256, level, dtype=np.float32)

    def close(self):
        self.closed = True


class CaptureFactory:
    def __init__(self, levels=(0.5,), fail_devices=()):
        self.levels = levels
        self.fail_devices = set(fail_devices)
        self.created = []

    def __call__(self, device_id):
        cap = FakeCapture(device_id, self.levels, fail=device_id in self.fail_devices)
        self.created.append(cap)
        return cap


class FakeTune:
    def __init__(self, slots, beats_per_measure=4.0, embedded_qpm=None, title="fake"):
        self.slots = list(slots)
        self.beats_per_measure = beats_per_measure
        self.embedded_qpm = embedded_qpm
        self.title = title
        self.marks = []

    def iter_slots(self):
        return iter(self.slots)

    def mark_event(self, event, active):
        self.marks.append((event.sequence_index, active))


def melody(*pitches, beats=1.0, **kw):
    """One slot per pitch, `beats` long each; None is a rest."""
    slots = [
        TuneSlot(beat=i * beats, duration=beats, pitches=frozenset() if p is None else frozenset([p]))
        for i, p in enumerate(pitches)
    ]
    return FakeTune(slots, **kw)


def parse_numbers(text):
    """Score text for tests: whitespace-separated MIDI numbers, 'z' for a rest."""
    tokens = text.split()
    if not tokens:
        raise ScoreParseError("nothing to play")
    return melody(*[None if t == "z" else int(t) for t in tokens])


class FakeGateway:
    def __init__(self, mean=None, fail=False):
        self.mean = mean
        self.fail = fail
        self.fetches = []
        self.recorded = []

    def fetch_stats(self, item_id, qpm, profile):
        self.fetches.append((item_id, qpm, profile))
        if self.fail:
            raise NetworkError("connection refused")
        if self.mean is None:
            return ScoreStats()
        return ScoreStats(min_score=0, mean_score=self.mean, max_score=100, recent_scores=(self.mean,))

    def record(self, item_id, score, qpm, profile):
        if self.fail:
            raise NetworkError("connection refused")
        self.recorded.append((item_id, score, qpm, profile))


class FakeLibrary:
    def __init__(self, docs):
        self.docs = dict(docs)
        self.fetched = []

    def fetch(self, item_id):
        self.fetched.append(item_id)
        if item_id not in self.docs:
            raise FileNotFoundError(item_id)
        return self.docs[item_id]


class RecordingObserver(SessionObserver):
    def __init__(self):
        self.statuses = []
        self.states = []
        self.countdowns = []
        self.activated = []
        self.tallies = []

    def status_changed(self, message):
        self.statuses.append(message)

    def state_changed(self, state):
        self.states.append(state)

    def countdown(self, n):
        self.countdowns.append(n)

    def event_activated(self, event):
        self.activated.append(event.sequence_index)

    def tally_changed(self, tally):
        self.tallies.append(tally)


@pytest.fixture
def wait_for():
    def _wait(predicate, timeout=3.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return predicate()
    return _wait


@pytest.fixture
def capture_factory():
    return CaptureFactory()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def simple_melody_midi(tmp_path):
    """
    Tiny 3/4 MIDI at 120 BPM: C4 (1 beat), D4 (half a beat), a half-beat rest,
    then an E4+G4 chord (1 beat), plus a kick on the drum channel.
    """
    path = tmp_path / "melody.mid"
    mid = MidiFile(ticks_per_beat=480)
    track = MidiTrack()
    mid.tracks.append(track)
    track.append(MetaMessage("set_tempo", tempo=500000, time=0))
    track.append(MetaMessage("time_signature", numerator=3, denominator=4, time=0))

    timed = [
        (0, Message("note_on", channel=9, note=36, velocity=100)),
        (0, Message("note_on", channel=0, note=60, velocity=90)),
        (10, Message("note_off", channel=9, note=36, velocity=0)),
        (480, Message("note_off", channel=0, note=60, velocity=0)),
        (480, Message("note_on", channel=0, note=62, velocity=90)),
        (720, Message("note_off", channel=0, note=62, velocity=0)),
        (960, Message("note_on", channel=0, note=64, velocity=90)),
        (960, Message("note_on", channel=0, note=67, velocity=90)),
        (1440, Message("note_off", channel=0, note=64, velocity=0)),
        (1440, Message("note_on", channel=0, note=67, velocity=0)),
    ]
    last = 0
    for tick, msg in sorted(timed, key=lambda x: x[0]):
        track.append(msg.copy(time=tick - last))
        last = tick

    mid.save(str(path))
    return str(path)
