import threading
from typing import Callable, Optional, Union

from config import (CHECK_INTERVAL_MS, COUNTDOWN_TICK_S, COUNTDOWN_TICKS, DEFAULT_PROFILE,
                    DEFAULT_TEMPO, RESET_DELAY_S)
from errors import DeviceError, NetworkError, ScoreParseError
from matcher import NoteMatcher
from sampler import PitchSampler
from score_text import extract_tempo_directive, resolve_tempo
from sr_types import (PlaylistState, Reading, ScoreEvent, ScoreStats, SessionFlags, SessionObserver,
                      SessionState, StatsGateway, Tune)
from stats_gateway import NullStatsGateway
from timeline import ScoreTimeline

RUNNING = (SessionState.COUNTING_DOWN, SessionState.PLAYING)


class NullObserver(SessionObserver):
    pass


def should_advance(score: Optional[int], stats: Optional[ScoreStats], auto_continue: bool) -> bool:
    """Auto-continue moves on once a run scores at least the historical mean."""
    if not auto_continue or score is None or stats is None or stats.mean_score is None:
        return False
    return score >= stats.mean_score


class SessionController:
    """
    Idle -> CountingDown -> Playing -> Stopped -> (reset) -> Idle, with Tuning
    as a side mode that only runs the pitch sampler.

    Transitions are serialized by one re-entrant lock. The three loops never
    take it: they only publish their own field and call the observer, and the
    end-of-tune bookkeeping runs on its own thread.
    """

    def __init__(self, sampler: PitchSampler, gateway: Optional[StatsGateway] = None,
                 observer: Optional[SessionObserver] = None,
                 parser: Optional[Callable[[str], Tune]] = None, library=None,
                 flags: Optional[SessionFlags] = None, profile: str = DEFAULT_PROFILE,
                 device_id=None, click: Optional[Callable[[int, int], None]] = None,
                 countdown_ticks: int = COUNTDOWN_TICKS, countdown_tick_s: float = COUNTDOWN_TICK_S,
                 check_interval_ms: float = CHECK_INTERVAL_MS, reset_delay_s: float = RESET_DELAY_S):
        self.sampler = sampler
        self.sampler.on_reading = self._on_reading
        self.gateway = gateway or NullStatsGateway()
        self.observer = observer or NullObserver()
        self.parser = parser
        self.library = library
        self.flags = flags or SessionFlags()
        self.profile = profile
        self.device_id = device_id
        self.device_error: Optional[str] = None
        self.click = click
        self.countdown_ticks = countdown_ticks
        self.countdown_tick_s = countdown_tick_s
        self.check_interval_ms = check_interval_ms
        self.reset_delay_s = reset_delay_s

        self.state = SessionState.IDLE
        self.playlist = PlaylistState()
        self.tempo_override: Optional[int] = None
        self.qpm = DEFAULT_TEMPO
        self.item_id: Optional[str] = None
        self.tune: Optional[Tune] = None
        self.timeline: Optional[ScoreTimeline] = None
        self.stats: Optional[ScoreStats] = None
        self.matcher = self._new_matcher(ignore_duration=False)

        self._source: Union[str, Tune, None] = None   # unmodified score text, or a parsed tune
        self._lock = threading.RLock()
        self._countdown_cancel = threading.Event()
        self._reset_timer: threading.Timer | None = None
        self._run: object | None = None   # identifies the current Playing run
        self._auto_continue = False
        self._lit_event: Optional[ScoreEvent] = None
        self._state_before_tuning = SessionState.IDLE

    # ---------------- Queries ----------------
    @property
    def tally(self):
        return self.matcher.tally

    @property
    def can_start(self) -> bool:
        return (self.device_error is None and self.timeline is not None
                and len(self.timeline.events) > 0)

    # ---------------- Loading ----------------
    def load_text(self, text: str, item_id: Optional[str] = None) -> bool:
        with self._lock:
            self._halt()
            self._source = text
            self.item_id = item_id
            return self._rebuild()

    def load_tune(self, tune: Tune, item_id: Optional[str] = None) -> bool:
        with self._lock:
            self._halt()
            self._source = tune
            self.item_id = item_id
            return self._rebuild()

    def load_item(self, item_id: str) -> bool:
        with self._lock:
            self._halt()
            if self.library is None:
                self._status("No score library configured.")
                return False
            try:
                doc = self.library.fetch(item_id)
            except ScoreParseError as e:
                print(f"[WARN] {e}")
                self._unload()
                self._status("Invalid score text. Please try again.")
                return False
            except OSError as e:
                print(f"[WARN] Unable to load '{item_id}': {e}")
                self._unload()
                self._status("Unable to load file.")
                return False
            if isinstance(doc, str):
                return self.load_text(doc, item_id)
            return self.load_tune(doc, item_id)

    def load_playlist(self, items: list[str]) -> bool:
        with self._lock:
            self._halt()
            self.playlist = PlaylistState(items=list(items), index=0)
            self.observer.playlist_changed(self.playlist)
            if not self.playlist.items:
                return False
            return self._load_current()

    def set_tempo(self, qpm: Optional[int]) -> bool:
        """None means inherit the score's own tempo. Rebuilds a loaded score."""
        with self._lock:
            if qpm is not None and int(qpm) <= 0:
                self._status(f"Invalid tempo {qpm}. Tempo must be a positive number of quarter notes per minute.")
                return False
            self.tempo_override = int(qpm) if qpm is not None else None
            if self._source is None:
                return False
            self._halt()
            return self._rebuild()

    def _rebuild(self) -> bool:
        self.tune = None
        self.timeline = None
        try:
            if isinstance(self._source, str):
                embedded, text = extract_tempo_directive(self._source)
                self.qpm = resolve_tempo(self.tempo_override, embedded)
                tune = self._parse(text)
            else:
                tune = self._source
                self.qpm = resolve_tempo(self.tempo_override, tune.embedded_qpm)
            timeline = ScoreTimeline(tune, self.qpm, on_event=self._on_event)
            if not timeline.events:
                raise ScoreParseError("score has no notes")
        except ScoreParseError as e:
            print(f"[WARN] {e}")
            self._status("Invalid score text. Please try again.")
            return False

        self.tune, self.timeline = tune, timeline
        if self.item_id is None:
            self.item_id = getattr(tune, "title", None)
        self.matcher.reset()
        self.observer.tempo_changed(self.qpm)
        self.observer.score_loaded(self.item_id)
        self._status("File loaded. Press start to play.")
        self._refresh_stats()
        return True

    def _parse(self, text: str) -> Tune:
        if not text.strip():
            raise ScoreParseError("score text is empty")
        if self.parser is None:
            raise ScoreParseError("no parser configured for text scores")
        try:
            return self.parser(text)
        except ScoreParseError:
            raise
        except Exception as e:
            raise ScoreParseError(f"could not parse score: {e}") from e

    def _unload(self):
        self._source = None
        self.tune = None
        self.timeline = None

    # ---------------- Playlist ----------------
    def goto_index(self, i: int) -> bool:
        with self._lock:
            if not self.playlist.items:
                return False
            new_index = self.playlist.clamp(i)
            if new_index == self.playlist.index:
                return False
            self.playlist.index = new_index
            return self._load_current()

    def increment(self) -> bool:
        return self.goto_index(self.playlist.index + 1)

    def decrement(self) -> bool:
        return self.goto_index(self.playlist.index - 1)

    def _load_current(self) -> bool:
        self._halt()
        self.matcher.reset()
        self.observer.playlist_changed(self.playlist)
        if self.playlist.items:
            return self.load_item(self.playlist.current)
        if self._source is not None:
            return self._rebuild()
        return False

    # ---------------- Transitions ----------------
    def start(self) -> bool:
        with self._lock:
            if self.state in RUNNING:
                return False
            if self.state is SessionState.TUNING:
                self._status("Stop the tuner before starting.")
                return False
            if not self.can_start:
                if self.device_error:
                    self._status(f"Microphone unavailable: {self.device_error}")
                else:
                    self._status("Select a file before starting.")
                return False
            self._cancel_reset_timer()
            # flags are re-read at every start and fixed for the run
            ignore_duration = self.flags.ignore_duration
            self._auto_continue = self.flags.auto_continue
            cancel = threading.Event()
            self._countdown_cancel = cancel
            self._set_state(SessionState.COUNTING_DOWN)
            threading.Thread(target=self._countdown, args=(cancel, ignore_duration), daemon=True).start()
            return True

    def stop(self, verbose: bool = True) -> bool:
        with self._lock:
            if self.state not in RUNNING:
                return False
            self._countdown_cancel.set()
            self._run = None
            self._stop_loops()
            self._set_state(SessionState.STOPPED)
            if verbose:
                self._status("Stopped.")
            return True

    def toggle(self) -> bool:
        with self._lock:
            if self.state in RUNNING:
                return self.stop()
            return self.start()

    def reset(self) -> bool:
        with self._lock:
            if self._source is None and not self.playlist.items:
                self._status("Select a file before resetting.")
                return False
            self._halt()
            self.matcher.reset()
            if self.timeline is not None:
                self.timeline.reset()
            self._set_state(SessionState.IDLE)
            return self._load_current()

    def tune_mode(self) -> bool:
        """Toggle the tuner. Returns True when tuning was switched on."""
        with self._lock:
            if self.state is SessionState.TUNING:
                self.sampler.stop()
                self._set_state(self._state_before_tuning)
                return False
            if self.state in RUNNING:
                self._status("Stop playing before tuning.")
                return False
            try:
                self.sampler.start(self.device_id)
            except DeviceError as e:
                self._device_failed(e)
                return False
            self._state_before_tuning = self.state
            self._set_state(SessionState.TUNING)
            self._status("Tuning.")
            return True

    def select_device(self, device_id) -> bool:
        with self._lock:
            self.device_id = device_id
            self.device_error = None
            if not self.sampler.running:
                return True
            try:
                self.sampler.switch(device_id)
            except DeviceError as e:
                self._device_failed(e)
                if self.state in RUNNING:
                    self.stop(verbose=False)
                elif self.state is SessionState.TUNING:
                    self._set_state(self._state_before_tuning)
                return False
            return True

    def _countdown(self, cancel: threading.Event, ignore_duration: bool):
        for n in range(1, self.countdown_ticks + 1):
            if cancel.is_set():
                return
            self.observer.countdown(n)
            if self.click:
                self.click(n, self.countdown_ticks)
            if cancel.wait(self.countdown_tick_s):
                return
        with self._lock:
            if cancel.is_set() or self.state is not SessionState.COUNTING_DOWN:
                return
            self._begin_playing(ignore_duration)

    def _begin_playing(self, ignore_duration: bool):
        self._run = object()
        self.matcher = self._new_matcher(ignore_duration)
        self.matcher.reset()
        self.timeline.reset()
        try:
            self.sampler.start(self.device_id)
        except DeviceError as e:
            self._device_failed(e)
            self._set_state(SessionState.STOPPED)
            return
        self._set_state(SessionState.PLAYING)
        self.matcher.start()
        self.timeline.start()
        self._status("Playing.")

    def _stop_loops(self):
        self.matcher.stop()
        self.sampler.stop()
        if self.timeline is not None:
            self.timeline.stop()
        self._unlight()

    def _halt(self):
        self._cancel_reset_timer()
        self.stop(verbose=False)
        if self.state is SessionState.TUNING:
            self.sampler.stop()
            self._set_state(self._state_before_tuning)

    # ---------------- Loop callbacks ----------------
    def _on_event(self, event: Optional[ScoreEvent]):
        self._unlight()
        if event is None:
            threading.Thread(target=self._finish, args=(self.timeline,), daemon=True).start()
            return
        self._lit_event = event
        if self.tune is not None:
            self.tune.mark_event(event, True)
        self.observer.event_activated(event)

    def _on_reading(self, reading: Reading):
        expected = self.timeline.active_event if self.timeline is not None else None
        self.observer.reading_changed(expected, reading)

    def _unlight(self):
        event, self._lit_event = self._lit_event, None
        if event is None:
            return
        if self.tune is not None:
            self.tune.mark_event(event, False)
        self.observer.event_deactivated(event)

    def _finish(self, timeline: ScoreTimeline):
        with self._lock:
            if self.state is not SessionState.PLAYING or timeline is not self.timeline:
                return
            run = self._run
            score = self.matcher.score
            stats_before = self.stats
            item_id, qpm = self.item_id, self.qpm

        self._status(f"Scored {score if score is not None else '-'}.")
        if score is not None and item_id:
            self._record(item_id, score, qpm)
        self._refresh_stats()

        # the service calls ran unlocked; a stop or a new run since then owns the session
        with self._lock:
            if (self.state is not SessionState.PLAYING or self._run is not run
                    or timeline is not self.timeline):
                return
            self._stop_loops()
            self._set_state(SessionState.STOPPED)
            advance = should_advance(score, stats_before, self._auto_continue)
            self._reset_timer = threading.Timer(self.reset_delay_s, self._after_finish, args=(run, advance))
            self._reset_timer.daemon = True
            self._reset_timer.start()

    def _after_finish(self, run: object, advance: bool):
        with self._lock:
            if self.state is not SessionState.STOPPED or self._run is not run:
                return
            if advance and self.playlist.items:
                self.playlist.index = self.playlist.clamp(self.playlist.index + 1)
            self.reset()

    def _cancel_reset_timer(self):
        timer, self._reset_timer = self._reset_timer, None
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()

    # ---------------- Score service ----------------
    def _refresh_stats(self):
        if not self.item_id:
            self.stats = None
            self.observer.stats_changed(None)
            return
        try:
            stats = self.gateway.fetch_stats(self.item_id, self.qpm, self.profile)
        except NetworkError as e:
            print(f"[WARN] Error retrieving score statistics: {e}")
            return
        self.stats = stats
        self.observer.stats_changed(stats)

    def _record(self, item_id: str, score: int, qpm: int):
        try:
            self.gateway.record(item_id, score, qpm, self.profile)
        except NetworkError as e:
            print(f"[WARN] Error saving score: {e}")

    # ---------------- Helpers ----------------
    def _new_matcher(self, ignore_duration: bool) -> NoteMatcher:
        return NoteMatcher(
            active_event=lambda: self.timeline.active_event if self.timeline is not None else None,
            detected_note=lambda: self.sampler.note,
            ignore_duration=ignore_duration,
            is_active=lambda: self.state is SessionState.PLAYING,
            on_tally=self.observer.tally_changed,
            interval_ms=self.check_interval_ms,
        )

    def _device_failed(self, e: DeviceError):
        self.device_error = str(e)
        print(f"[WARN] {e}")
        self._status(f"Unable to access microphone: {e}")

    def _set_state(self, state: SessionState):
        self.state = state
        self.observer.state_changed(state)

    def _status(self, message: str):
        self.observer.status_changed(message)
