import math
import threading
import time
from typing import Callable, Optional

from config import MIN_VOLUME, SAMPLE_INTERVAL_MS, SILENCE
from pitch import note_from_frequency, rms, yin_frequency
from sr_types import CaptureDevice, PitchEstimator, Reading, SampleFrame


class PitchSampler:
    """
    Polls a capture device on a fixed interval and publishes the latest Reading.

    `reading` is replaced wholesale on every tick, so other threads can read it
    without locking. A tick whose estimation overruns the interval is dropped and
    the ticks it overlapped are skipped rather than queued.

    The estimator runs on the tick thread, so a slow estimate delays the next
    tick. Audio capture itself is not held up: the device keeps filling its own
    buffer from the driver's callback thread, and the next tick reads the latest
    samples.
    """

    def __init__(self, capture_factory: Callable[[Optional[str]], CaptureDevice],
                 estimator: Optional[PitchEstimator] = None,
                 interval_ms: float = SAMPLE_INTERVAL_MS, min_volume: float = MIN_VOLUME,
                 on_reading: Optional[Callable[[Reading], None]] = None):
        self.capture_factory = capture_factory
        self.estimator = estimator or yin_frequency
        self.interval = interval_ms / 1000.0
        self.min_volume = min_volume
        self.on_reading = on_reading
        self.reading = Reading()
        self.dropped = 0
        self.device_id: Optional[str] = None
        self._capture: CaptureDevice | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None

    @property
    def note(self) -> int:
        return self.reading.note

    @property
    def loudness(self) -> float:
        return self.reading.loudness

    def start(self, device_id: Optional[str] = None) -> "PitchSampler":
        if self._thread is not None:
            return self
        capture = self.capture_factory(device_id)
        capture.open()  # DeviceError leaves us stopped
        self._capture = capture
        self.device_id = device_id
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._worker, args=(self._stop,), daemon=True)
        self._thread.start()
        return self

    def stop(self):
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._stop.set()
        if thread is not threading.current_thread():
            thread.join()
        if self._capture is not None:
            self._capture.close()
            self._capture = None
        self._publish(Reading())

    def switch(self, device_id: Optional[str]):
        """Release the current device before opening the new one."""
        was_running = self.running
        self.stop()
        self.device_id = device_id
        if was_running:
            self.start(device_id)

    def tick(self) -> Optional[SampleFrame]:
        if self._capture is None:
            return None
        started = time.monotonic()
        buf = self._capture.read()
        loudness = rms(buf)
        if loudness < self.min_volume:
            self._publish(Reading(SILENCE, loudness))
            return SampleFrame(loudness, None, started)

        freq = self.estimator(buf, self._capture.sample_rate)
        if time.monotonic() - started > self.interval:
            self.dropped += 1
            return None
        self._publish(Reading(note_from_frequency(freq), loudness))
        return SampleFrame(loudness, freq, started)

    def _publish(self, reading: Reading):
        self.reading = reading
        if self.on_reading:
            self.on_reading(reading)

    def _worker(self, stop: threading.Event):
        next_at = time.monotonic() + self.interval
        while not stop.wait(max(0.0, next_at - time.monotonic())):
            self.tick()
            next_at += self.interval
            now = time.monotonic()
            if now > next_at:
                next_at += math.ceil((now - next_at) / self.interval) * self.interval
