import numpy as np
import simpleaudio as sa

from config import ACCENT_HZ, CLICK_HZ, CLICK_MS, MASTER_GAIN, SR


def click_buffer(freq: float, duration_ms: float = CLICK_MS) -> np.ndarray:
    """Decaying sine blip as 16-bit stereo frames, ready for simpleaudio."""
    n = int(SR * duration_ms / 1000.0)
    t = np.arange(n) / SR
    mono = np.sin(2 * np.pi * freq * t) * np.linspace(1.0, 0.0, n) * 0.6 * MASTER_GAIN
    return (np.repeat(mono[:, None], 2, axis=1) * 32767).astype(np.int16)


# rendered once; the countdown only hands buffers to the device
CLICKS = {False: click_buffer(CLICK_HZ), True: click_buffer(ACCENT_HZ)}


def count_in_click(n: int, total: int):
    """Countdown tick; the last one before playing is accented."""
    return sa.play_buffer(CLICKS[n == total], 2, 2, SR)
