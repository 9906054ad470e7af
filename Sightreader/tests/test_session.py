import threading
import time

import pytest

from conftest import CaptureFactory, FakeGateway, FakeLibrary, melody, parse_numbers
from sampler import PitchSampler
from session import SessionController, should_advance
from sr_types import ScoreStats, SessionFlags, SessionState

SLOW_COUNTDOWN_S = 0.2


def make_session(observer, estimator=lambda b, sr: 440.0, factory=None, **kw):
    sampler = PitchSampler(factory or CaptureFactory(), estimator=estimator, interval_ms=5)
    kw.setdefault("countdown_tick_s", 0.0)
    return SessionController(sampler, observer=observer, parser=parse_numbers,
                             check_interval_ms=5, reset_delay_s=0.01, **kw)


def test_start_needs_a_score(observer):
    session = make_session(observer)
    assert not session.can_start
    assert session.start() is False
    assert session.state is SessionState.IDLE
    assert observer.statuses[-1] == "Select a file before starting."
    assert session.reset() is False
    assert observer.statuses[-1] == "Select a file before resetting."


def test_load_text_uses_embedded_tempo(observer):
    session = make_session(observer)
    assert session.load_text("Q:90\n60 62 64", item_id="scale")
    assert session.qpm == 90
    assert session.timeline.ms_per_beat == pytest.approx(60000.0 / 90)
    assert session.can_start
    assert observer.statuses[-1] == "File loaded. Press start to play."


def test_tempo_override_rebuilds_and_inherits_back(observer):
    session = make_session(observer)
    session.load_text("Q:90\n60 62 64", item_id="scale")
    old = session.timeline
    assert session.set_tempo(180)
    assert session.timeline is not old
    assert session.qpm == 180
    assert session.timeline.events[1].offset_ms == pytest.approx(60000.0 / 180)
    session.set_tempo(None)
    assert session.qpm == 90


def test_tempo_defaults_to_60(observer):
    session = make_session(observer)
    session.load_tune(melody(60, 62))
    assert session.qpm == 60
    assert session.item_id == "fake"


@pytest.mark.parametrize("text", ["", "   \n  "])
def test_empty_score_disables_start(observer, text):
    session = make_session(observer)
    assert session.load_text(text) is False
    assert not session.can_start
    assert observer.statuses[-1] == "Invalid score text. Please try again."


def test_parser_failure_is_reported(observer):
    session = make_session(observer)
    session.parser = lambda text: int("not a score")
    assert session.load_text("CDEF") is False
    assert session.timeline is None
    assert observer.statuses[-1] == "Invalid score text. Please try again."


def test_missing_item_is_reported(observer):
    session = make_session(observer, library=FakeLibrary({}))
    assert session.load_item("gone.abc") is False
    assert observer.statuses[-1] == "Unable to load file."
    assert not session.can_start


@pytest.mark.parametrize("score,advance", [(85, True), (80, True), (70, False), (None, False)])
def test_should_advance(score, advance):
    stats = ScoreStats(min_score=50, mean_score=80, max_score=95, recent_scores=(80,))
    assert should_advance(score, stats, auto_continue=True) is advance


def test_should_advance_needs_auto_continue_and_history():
    stats = ScoreStats(min_score=50, mean_score=80, max_score=95, recent_scores=(80,))
    assert not should_advance(100, stats, auto_continue=False)
    assert not should_advance(100, None, auto_continue=True)
    assert not should_advance(100, ScoreStats(), auto_continue=True)


def test_playlist_navigation_clamps(observer):
    library = FakeLibrary({"a": "60", "b": "62", "c": "64"})
    session = make_session(observer, library=library)
    session.load_playlist(["a", "b", "c"])
    assert session.playlist.index == 0
    assert session.goto_index(5)
    assert session.playlist.index == 2
    assert session.increment() is False
    assert session.playlist.index == 2
    assert session.goto_index(-3)
    assert session.playlist.index == 0
    assert session.decrement() is False
    assert session.playlist.index == 0
    assert session.increment()
    assert session.playlist.index == 1
    assert str(session.playlist) == "2/3"
    assert library.fetched == ["a", "c", "a", "b"]


def run_to_completion(session, gateway, wait_for):
    assert session.start()
    assert wait_for(lambda: gateway.recorded and session.state is SessionState.IDLE)


def test_good_run_advances_playlist(observer, wait_for):
    gateway = FakeGateway(mean=80)
    session = make_session(observer, gateway=gateway, library=FakeLibrary({"a": "69 69 69", "b": "60"}),
                           flags=SessionFlags(ignore_duration=True, auto_continue=True))
    session.set_tempo(600)
    session.load_playlist(["a", "b"])

    run_to_completion(session, gateway, wait_for)
    assert gateway.recorded == [("a", 100, 600, "default")]
    assert "Scored 100." in observer.statuses
    assert observer.countdowns == [1, 2, 3, 4, 5]
    assert observer.activated[:3] == [0, 1, 2]
    assert wait_for(lambda: session.item_id == "b")
    assert session.playlist.index == 1


def test_poor_run_stays_on_item(observer, wait_for):
    gateway = FakeGateway(mean=80)
    session = make_session(observer, estimator=lambda b, sr: None, gateway=gateway,
                           library=FakeLibrary({"a": "69 69 69", "b": "60"}),
                           flags=SessionFlags(ignore_duration=True, auto_continue=True))
    session.set_tempo(600)
    session.load_playlist(["a", "b"])

    run_to_completion(session, gateway, wait_for)
    assert gateway.recorded == [("a", 0, 600, "default")]
    assert session.playlist.index == 0
    assert session.item_id == "a"


def test_stop_during_countdown_never_plays(observer):
    factory = CaptureFactory()
    session = make_session(observer, factory=factory, countdown_tick_s=SLOW_COUNTDOWN_S)
    session.load_text("60 62")
    assert session.start()
    assert session.state is SessionState.COUNTING_DOWN
    assert session.start() is False
    assert session.stop()
    time.sleep(2 * SLOW_COUNTDOWN_S)
    assert session.state is SessionState.STOPPED
    assert SessionState.PLAYING not in observer.states
    assert factory.created == []


def test_stop_keeps_tally_and_is_idempotent(observer, wait_for):
    session = make_session(observer)
    session.load_text("69 69 69 69")
    session.start()
    assert wait_for(lambda: session.tally.total >= 3)
    assert session.stop()
    tally = session.tally
    assert session.stop() is False
    assert session.tally == tally
    assert session.state is SessionState.STOPPED
    assert observer.statuses[-1] == "Stopped."
    assert not session.sampler.running


def test_network_errors_are_not_fatal(observer, capsys):
    session = make_session(observer, gateway=FakeGateway(fail=True))
    assert session.load_text("60 62", item_id="scale")
    assert session.stats is None
    assert session.can_start
    assert "[WARN]" in capsys.readouterr().out


def test_microphone_error_blocks_start_until_device_changes(observer, wait_for):
    factory = CaptureFactory(fail_devices={"denied"})
    session = make_session(observer, factory=factory, device_id="denied")
    session.load_text("60 62")
    assert session.start()
    assert wait_for(lambda: session.state is SessionState.STOPPED)
    assert session.device_error
    assert not session.can_start
    assert session.start() is False
    assert observer.statuses[-1].startswith("Microphone unavailable")

    assert session.select_device("usb")
    assert session.device_error is None
    assert session.can_start


def test_tuning_mode(observer):
    session = make_session(observer)
    session.load_text("60 62")
    assert session.tune_mode()
    assert session.state is SessionState.TUNING
    assert session.sampler.running
    assert session.start() is False
    assert observer.statuses[-1] == "Stop the tuner before starting."
    assert session.tune_mode() is False
    assert session.state is SessionState.IDLE
    assert not session.sampler.running


def test_reset_reloads_current_score(observer, wait_for):
    session = make_session(observer)
    session.load_text("69 69 69 69")
    session.start()
    assert wait_for(lambda: session.state is SessionState.PLAYING)
    assert session.reset()
    assert session.state is SessionState.IDLE
    assert session.tally.total == 0
    assert session.can_start


@pytest.mark.parametrize("qpm", [0, -30])
def test_non_positive_tempo_is_rejected(observer, qpm):
    session = make_session(observer)
    session.load_text("60 62 64")
    assert session.set_tempo(qpm) is False
    assert session.tempo_override is None
    assert session.qpm == 60
    assert session.timeline.events[1].offset_ms == pytest.approx(1000.0)
    assert observer.statuses[-1].startswith("Invalid tempo")


class HeldGateway(FakeGateway):
    """Holds every record() until `release` is set."""

    def __init__(self, **kw):
        super().__init__(**kw)
        self.recording = threading.Event()
        self.release = threading.Event()

    def record(self, item_id, score, qpm, profile):
        self.recording.set()
        self.release.wait(5.0)
        super().record(item_id, score, qpm, profile)


def test_late_finish_leaves_next_run_alone(observer, wait_for):
    gateway = HeldGateway(mean=80)
    session = make_session(observer, gateway=gateway, library=FakeLibrary({"a": "69 69 69", "b": "60"}),
                           flags=SessionFlags(ignore_duration=True, auto_continue=True))
    session.set_tempo(600)
    session.load_playlist(["a", "b"])
    assert session.start()
    assert gateway.recording.wait(3.0)

    # first run is still being recorded: stop, slow down and play again
    assert session.stop()
    assert session.set_tempo(60)
    assert session.start()
    assert wait_for(lambda: session.state is SessionState.PLAYING)

    gateway.release.set()
    assert wait_for(lambda: gateway.recorded)
    time.sleep(0.1)
    try:
        assert gateway.recorded == [("a", 100, 600, "default")]
        assert session.state is SessionState.PLAYING
        assert session.sampler.running
        assert session.playlist.index == 0
        assert session.qpm == 60
    finally:
        session.stop()


def test_late_finish_after_stop_stays_stopped(observer, wait_for):
    gateway = HeldGateway()
    session = make_session(observer, gateway=gateway)
    session.set_tempo(600)
    session.load_text("69 69", item_id="scale")
    assert session.start()
    assert gateway.recording.wait(3.0)
    assert session.stop()

    gateway.release.set()
    assert wait_for(lambda: gateway.recorded)
    time.sleep(0.1)
    assert session.state is SessionState.STOPPED
    assert observer.statuses[-1] == "Stopped."
