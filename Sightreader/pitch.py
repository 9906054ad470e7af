import math
from typing import Optional

import numpy as np

from config import MAX_FREQ, MIN_FREQ, NOTE_NAMES, SILENCE, YIN_THRESHOLD


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def note_from_frequency(freq: Optional[float]) -> int:
    """MIDI note number nearest to `freq` (A4 = 440Hz = 69), or SILENCE."""
    if freq is None or not math.isfinite(freq) or freq <= 0:
        return SILENCE
    semitones = 12 * math.log2(freq / 440.0) + 69
    if not math.isfinite(semitones):
        return SILENCE
    return round_half_up(semitones)


def midi_number_to_string(number: int) -> str:
    if not number:
        return "-"
    return f"{NOTE_NAMES[number % 12]}{number // 12 - 1}"


def rms(buffer: np.ndarray) -> float:
    x = np.asarray(buffer, dtype=np.float64)
    if x.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(x * x)))


def yin_frequency(buffer: np.ndarray, sample_rate: int, threshold: float = YIN_THRESHOLD,
                  fmin: float = MIN_FREQ, fmax: float = MAX_FREQ) -> Optional[float]:
    """
    Estimate the fundamental frequency of `buffer` with the YIN algorithm.

    Returns the frequency in Hz or None when no period falls under `threshold`.
    The difference function is computed with an FFT cross-correlation so a
    2048-sample frame fits comfortably inside one sampler tick.

    Reference: De Cheveigne, A., & Kawahara, H. (2002).
    "YIN, a fundamental frequency estimator for speech and music."
    """
    x = np.asarray(buffer, dtype=np.float64).ravel()
    n = len(x)
    tau_min = max(2, int(sample_rate / fmax))
    tau_max = min(n // 2, int(sample_rate / fmin) + 1)
    if tau_max <= tau_min + 1:
        return None

    # d(tau) = sum_j (x[j] - x[j+tau])^2 over a window of w samples
    w = n - tau_max
    taus = np.arange(tau_max)
    sq = np.concatenate(([0.0], np.cumsum(x * x)))
    energy_head = sq[w]
    energy_lag = sq[taus + w] - sq[taus]
    size = 1 << int(np.ceil(np.log2(n + w)))
    spectrum = np.fft.rfft(x, size) * np.conj(np.fft.rfft(x[:w], size))
    cross = np.fft.irfft(spectrum, size)[:tau_max]
    diff = energy_head + energy_lag - 2.0 * cross
    diff[0] = 0.0

    # cumulative mean normalized difference
    cmnd = np.ones(tau_max)
    running = np.cumsum(diff[1:])
    with np.errstate(divide="ignore", invalid="ignore"):
        cmnd[1:] = np.where(running > 0, diff[1:] * taus[1:] / running, 1.0)

    below = np.nonzero(cmnd[tau_min:] < threshold)[0]
    if not len(below):
        return None
    tau = tau_min + int(below[0])
    while tau + 1 < tau_max and cmnd[tau + 1] < cmnd[tau]:
        tau += 1

    period = float(tau)
    if 0 < tau < tau_max - 1:
        a, b, c = cmnd[tau - 1], cmnd[tau], cmnd[tau + 1]
        denom = a - 2 * b + c
        if denom != 0:
            period = tau + 0.5 * (a - c) / denom
    if period <= 0:
        return None
    return sample_rate / period
