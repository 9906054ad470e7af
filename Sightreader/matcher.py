import threading
from typing import Callable, Optional

from config import CHECK_INTERVAL_MS
from sr_types import ScoreEvent, Tally


class NoteMatcher:
    """
    Compares the active expected event with the latest detected note on its own
    cadence and keeps the (correct, total) tally.

    Strict: every tick inside a sounding event counts, and counts as correct
    when the detected note is one of the expected pitches.
    Ignore-duration: each event counts once, and is credited once the first
    time a matching note is heard inside its window. Credit is never revoked.
    Rests are never scored.
    """

    def __init__(self, active_event: Callable[[], Optional[ScoreEvent]], detected_note: Callable[[], int],
                 ignore_duration: bool = False, is_active: Callable[[], bool] = lambda: True,
                 on_tally: Optional[Callable[[Tally], None]] = None,
                 interval_ms: float = CHECK_INTERVAL_MS):
        self.active_event = active_event
        self.detected_note = detected_note
        self.ignore_duration = ignore_duration
        self.is_active = is_active
        self.on_tally = on_tally
        self.interval = interval_ms / 1000.0
        self.tally = Tally()
        self._event: Optional[ScoreEvent] = None
        self._counted = False
        self._found = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def score(self) -> Optional[int]:
        return self.tally.percent

    def reset(self):
        self._event = None
        self._counted = False
        self._found = False
        self.tally = Tally()
        if self.on_tally:
            self.on_tally(self.tally)

    def tick(self):
        if not self.is_active():
            return
        event = self.active_event()
        if event is not self._event:
            self._event = event
            self._counted = False
            self._found = False
        if event is None or event.is_rest:
            return

        hit = self.detected_note() in event.expected_pitches
        if self.ignore_duration:
            counted = not self._counted
            correct = hit and not self._found
            self._counted = True
            self._found = self._found or hit
            if not (counted or correct):
                return
            self.tally = self.tally.add(counted, correct)
        else:
            self.tally = self.tally.add(True, hit)
        if self.on_tally:
            self.on_tally(self.tally)

    def start(self):
        if self._thread is not None:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._worker, args=(self._stop,), daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _worker(self, stop: threading.Event):
        while not stop.wait(self.interval):
            self.tick()
