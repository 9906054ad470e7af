from typing import Optional

from pitch import midi_number_to_string
from sr_types import (PlaylistState, Reading, ScoreEvent, ScoreStats, SessionObserver, SessionState,
                      Tally)


def format_expected(event: Optional[ScoreEvent]) -> str:
    if event is None or event.is_rest:
        return "-"
    return ",".join(midi_number_to_string(p) for p in sorted(event.expected_pitches))


def format_reading(expected: Optional[ScoreEvent], reading: Reading) -> str:
    mark = ""
    if expected is not None and not expected.is_rest:
        mark = "  ok" if reading.note in expected.expected_pitches else "  x"
    volume = int(round(reading.loudness * 100))
    return f"{format_expected(expected)}/{midi_number_to_string(reading.note)}  vol={volume:3d}{mark}"


class ConsoleObserver(SessionObserver):
    """Prints session changes to the terminal; note readings only when they change."""

    def __init__(self, show_readings: bool = True):
        self.show_readings = show_readings
        self._last_reading = None
        self._last_tally = None

    def status_changed(self, message: str):
        print(message)

    def state_changed(self, state: SessionState):
        if state is SessionState.IDLE:
            self._last_tally = None

    def countdown(self, n: int):
        print(f"  {n}...")

    def event_activated(self, event: ScoreEvent):
        pass

    def reading_changed(self, expected: Optional[ScoreEvent], reading: Reading):
        if not self.show_readings:
            return
        text = f"{format_expected(expected)}/{midi_number_to_string(reading.note)}"
        if text == self._last_reading:
            return
        self._last_reading = text
        print("  " + format_reading(expected, reading))

    def tally_changed(self, tally: Tally):
        text = str(tally)
        if text != self._last_tally:
            self._last_tally = text
            print(f"  score {text}")

    def stats_changed(self, stats: Optional[ScoreStats]):
        if stats is not None and stats.available:
            print(f"History (min/mean/max): {stats}")

    def tempo_changed(self, qpm: int):
        print(f"QPM: {qpm}")

    def playlist_changed(self, playlist: PlaylistState):
        if playlist.items:
            print(f"Playlist {playlist}: {playlist.current}")

    def score_loaded(self, item_id: Optional[str]):
        print(f"Loaded: {item_id or '-'}")
