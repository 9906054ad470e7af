import threading
import time
from typing import Callable, Optional

from score_text import milliseconds_per_beat
from sr_types import ScoreEvent, Tune

EventCallback = Callable[[Optional[ScoreEvent]], None]


class PlaybackClock:
    def __init__(self, qpm: float):
        self.ms_per_beat = milliseconds_per_beat(qpm)
        self._started_at: float | None = None

    def start(self):
        self._started_at = time.monotonic()

    def reset(self):
        self._started_at = None

    def elapsed_ms(self) -> float:
        if self._started_at is None:
            return 0.0
        return (time.monotonic() - self._started_at) * 1000.0

    def beats(self) -> float:
        return self.elapsed_ms() / self.ms_per_beat


def build_events(tune: Tune, qpm: float) -> tuple[list[ScoreEvent], float]:
    """Schedule every tune slot in wall-clock ms; also return when the last slot ends."""
    mpb = milliseconds_per_beat(qpm)
    slots = sorted(tune.iter_slots(), key=lambda s: s.beat)
    events = [
        ScoreEvent(sequence_index=i, offset_ms=s.beat * mpb, expected_pitches=frozenset(s.pitches),
                   beat=s.beat, ref=s.ref)
        for i, s in enumerate(slots)
    ]
    end_beat = max((s.beat + s.duration for s in slots), default=0.0)
    return events, end_beat * mpb


class ScoreTimeline:
    """
    Fires `on_event(event)` at each event offset and `on_event(None)` once the
    last slot has run out. `active_event` is written only from here.
    """

    def __init__(self, tune: Tune, qpm: int, on_event: Optional[EventCallback] = None):
        self.tune = tune
        self.qpm = qpm
        self.on_event = on_event
        self.clock = PlaybackClock(qpm)
        self.events, self.end_ms = build_events(tune, qpm)
        self.position = 0
        self.finished = False
        self.active_event: Optional[ScoreEvent] = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def ms_per_beat(self) -> float:
        return self.clock.ms_per_beat

    @property
    def ms_per_measure(self) -> float:
        return self.tune.beats_per_measure * self.ms_per_beat

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self):
        """Play from the beginning on a worker thread."""
        if self._thread is not None:
            return
        self.reset()
        self._stop = threading.Event()
        self.clock.start()
        self._thread = threading.Thread(target=self._worker, args=(self._stop,), daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self.clock.reset()

    def reset(self):
        self.position = 0
        self.finished = False
        self.active_event = None
        self.clock.reset()

    def advance(self, elapsed_ms: float):
        """Fire everything due at `elapsed_ms`, then the terminal event if the tune is over."""
        while self.position < len(self.events) and self.events[self.position].offset_ms <= elapsed_ms:
            if self._stop.is_set():
                return
            event = self.events[self.position]
            self.position += 1
            self.active_event = event
            if self.on_event:
                self.on_event(event)
        if self.finished or self._stop.is_set():
            return
        if self.position == len(self.events) and elapsed_ms >= self.end_ms:
            self.finished = True
            self.active_event = None
            if self.on_event:
                self.on_event(None)

    def _worker(self, stop: threading.Event):
        while not stop.is_set() and not self.finished:
            elapsed = self.clock.elapsed_ms()
            self.advance(elapsed)
            if self.finished:
                break
            if self.position < len(self.events):
                due = self.events[self.position].offset_ms
            else:
                due = self.end_ms
            # sleep in small chunks so stop() stays responsive
            stop.wait(min(0.01, max(0.0, (due - elapsed) / 1000.0)))
