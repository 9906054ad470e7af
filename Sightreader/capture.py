import threading
from typing import Optional, Union

import numpy as np
import sounddevice as sd

from config import BUFFER_SIZE, SR
from errors import DeviceError


class SoundDeviceCapture:
    """
    Keeps the most recent BUFFER_SIZE mono samples from an input device.

    The PortAudio callback thread writes into a ring buffer; read() hands a
    time-ordered copy to the sampler thread under the same lock.
    """

    def __init__(self, device: Optional[Union[int, str]] = None, samplerate: int = SR,
                 buffer_size: int = BUFFER_SIZE):
        self.device = device
        self.sample_rate = samplerate
        self.buffer_size = buffer_size
        self._ring = np.zeros(buffer_size, dtype=np.float32)
        self._pos = 0
        self._lock = threading.Lock()
        self._stream = None

    def _callback(self, indata, frames, time_info, status):
        if status:
            print("[audio] status:", status)
        x = indata[:, 0] if indata.ndim > 1 else indata
        x = x[-self.buffer_size:]
        n = len(x)
        with self._lock:
            end = self._pos + n
            if end <= self.buffer_size:
                self._ring[self._pos:end] = x
            else:
                split = self.buffer_size - self._pos
                self._ring[self._pos:] = x[:split]
                self._ring[:n - split] = x[split:]
            self._pos = end % self.buffer_size

    def open(self):
        if self._stream is not None:
            return
        try:
            stream = sd.InputStream(device=self.device, channels=1, samplerate=self.sample_rate,
                                    blocksize=256, callback=self._callback, dtype="float32")
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise DeviceError(f"Could not open input device {self.device!r}: {e}") from e
        self.sample_rate = int(stream.samplerate)
        self._stream = stream

    def read(self) -> np.ndarray:
        with self._lock:
            return np.concatenate((self._ring[self._pos:], self._ring[:self._pos]))

    def close(self):
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            print(f"[WARN] Closing input device failed: {e}")
