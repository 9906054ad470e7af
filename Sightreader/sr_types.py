import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol

import numpy as np

from config import SILENCE
from errors import StateError


class SessionState(enum.Enum):
    IDLE = "idle"
    COUNTING_DOWN = "counting_down"
    PLAYING = "playing"
    STOPPED = "stopped"
    TUNING = "tuning"


@dataclass(frozen=True)
class SampleFrame:
    loudness: float
    frequency_hz: Optional[float]
    timestamp: float


@dataclass(frozen=True)
class Reading:
    note: int = SILENCE     # quantized MIDI pitch, 0 = silence
    loudness: float = 0.0


@dataclass(frozen=True)
class TuneSlot:
    beat: float              # quarter-note beats from the start of the tune
    duration: float          # in beats
    pitches: frozenset = frozenset()
    ref: Any = None          # opaque glyph handle owned by the tune


@dataclass(frozen=True)
class ScoreEvent:
    sequence_index: int
    offset_ms: float
    expected_pitches: frozenset
    beat: float = 0.0
    ref: Any = None

    @property
    def is_rest(self) -> bool:
        return not self.expected_pitches


@dataclass(frozen=True)
class Tally:
    correct: int = 0
    total: int = 0

    def add(self, counted: bool, correct: bool) -> "Tally":
        return Tally(correct=self.correct + (1 if correct else 0),
                     total=self.total + (1 if counted else 0))

    @property
    def percent(self) -> Optional[int]:
        if not self.total:
            return None
        # half-up, not banker's rounding
        return int(self.correct / self.total * 100 + 0.5)

    def __str__(self):
        if self.percent is None:
            return "-"
        return f"{self.correct}/{self.total} = {self.percent}%"


@dataclass
class PlaylistState:
    items: list = field(default_factory=list)
    index: int = 0

    def clamp(self, i: int) -> int:
        return max(0, min(i, len(self.items) - 1))

    @property
    def current(self) -> str:
        if not self.items:
            raise StateError("playlist is empty")
        return self.items[self.index]

    def __str__(self):
        return f"{self.index + 1}/{len(self.items)}" if self.items else "-"


@dataclass(frozen=True)
class ScoreStats:
    min_score: Optional[float] = None
    mean_score: Optional[float] = None
    max_score: Optional[float] = None
    recent_scores: tuple = ()

    @property
    def available(self) -> bool:
        return bool(self.recent_scores)

    def __str__(self):
        if not self.available:
            return ""
        return f"{self.min_score}/{self.mean_score}/{self.max_score}"


@dataclass
class SessionFlags:
    ignore_duration: bool = False
    auto_continue: bool = False


class Tune(Protocol):
    beats_per_measure: float
    embedded_qpm: Optional[int]
    title: Optional[str]

    def iter_slots(self) -> Iterable[TuneSlot]: ...
    def mark_event(self, event: ScoreEvent, active: bool) -> None: ...


class PitchEstimator(Protocol):
    def __call__(self, buffer: np.ndarray, sample_rate: int) -> Optional[float]: ...


class CaptureDevice(Protocol):
    sample_rate: int

    def open(self) -> None: ...
    def read(self) -> np.ndarray: ...
    def close(self) -> None: ...


class StatsGateway(Protocol):
    def fetch_stats(self, item_id: str, qpm: int, profile: str) -> Optional[ScoreStats]: ...
    def record(self, item_id: str, score: int, qpm: int, profile: str) -> None: ...


class SessionObserver(Protocol):
    def status_changed(self, message: str) -> None: ...
    def state_changed(self, state: SessionState) -> None: ...
    def countdown(self, n: int) -> None: ...
    def event_activated(self, event: ScoreEvent) -> None: ...
    def event_deactivated(self, event: ScoreEvent) -> None: ...
    def reading_changed(self, expected: Optional[ScoreEvent], reading: Reading) -> None: ...
    def tally_changed(self, tally: Tally) -> None: ...
    def stats_changed(self, stats: Optional[ScoreStats]) -> None: ...
    def tempo_changed(self, qpm: int) -> None: ...
    def playlist_changed(self, playlist: PlaylistState) -> None: ...
    def score_loaded(self, item_id: Optional[str]) -> None: ...
