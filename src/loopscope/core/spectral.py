"""
Spectral analysis: per-frame magnitude spectra and pitch-class profiles.

The chromagram folds FFT magnitudes between ``fmin`` and ``fmax`` onto the
twelve pitch classes (0 = C ... 11 = B) using A4 = 440 Hz = pitch 57.
"""

from functools import lru_cache

import librosa
import numpy as np

from loopscope.config import ChromaConfig

# Frames transformed per FFT batch; bounds peak memory on long loops.
_FRAME_BATCH = 256


def magnitude_spectrum(frame: np.ndarray, one_sided: bool = True) -> np.ndarray:
    """
    Magnitude of the discrete Fourier transform of one frame.

    Args:
        frame: N real samples.
        one_sided: If True return the N // 2 non-negative frequency bins
            (0 .. N/2 - 1); otherwise all N bins.

    Returns:
        ``sqrt(re**2 + im**2)`` per bin.
    """
    x = np.asarray(frame, dtype=np.float64)
    n = x.shape[-1]
    if one_sided:
        return np.abs(np.fft.rfft(x))[..., : n // 2]
    return np.abs(np.fft.fft(x))


def bin_frequencies(frame_size: int, sample_rate: int) -> np.ndarray:
    """Centre frequency ``k * sr / N`` of each one-sided bin."""
    return librosa.fft_frequencies(sr=sample_rate, n_fft=frame_size)[: frame_size // 2]


def hz_to_pitch(freq) -> np.ndarray:
    """Fractional pitch number, C-rooted and 0-based (A4 = 440 Hz = 57)."""
    return 12.0 * np.log2(np.asarray(freq, dtype=np.float64) / 440.0) + 57.0


@lru_cache(maxsize=32)
def pitch_class_map(
    frame_size: int,
    sample_rate: int,
    fmin: float = 80.0,
    fmax: float = 2000.0,
) -> tuple:
    """
    Bins inside ``[fmin, fmax]`` and the pitch class each one folds into.

    Returns:
        Tuple of (bin_indices, pitch_classes), both read-only int arrays.
    """
    freqs = bin_frequencies(frame_size, sample_rate)
    bins = np.flatnonzero((freqs > 0) & (freqs >= fmin) & (freqs <= fmax))
    # Round half up so x.5 pitches land on the upper class.
    pitches = np.floor(hz_to_pitch(freqs[bins]) + 0.5).astype(int)
    classes = np.mod(pitches, 12)

    bins.flags.writeable = False
    classes.flags.writeable = False
    return bins, classes


def normalize_chroma(chroma: np.ndarray) -> np.ndarray:
    """Scale so the maximum is 1; an all-zero vector is returned unchanged."""
    chroma = np.asarray(chroma, dtype=np.float64)
    peak = chroma.max() if chroma.size else 0.0
    if peak <= 0:
        return np.zeros(12)
    return chroma / peak


def chromagram(
    samples: np.ndarray,
    sample_rate: int,
    frame_size: int = 4096,
    hop_size: int = 2048,
    fmin: float = 80.0,
    fmax: float = 2000.0,
) -> np.ndarray:
    """
    Pitch-class profile of a mono signal.

    Only full frames are analysed.  A signal shorter than one frame, or a
    silent one, yields twelve zeros.

    Args:
        samples: One channel of audio.
        sample_rate: Sample rate in Hz.
        frame_size: FFT size.
        hop_size: Distance between frame starts (frame_size for speed,
            frame_size / 2 for quality).
        fmin: Lowest bin frequency included.
        fmax: Highest bin frequency included.

    Returns:
        Array of 12 non-negative values, max 1 unless all zero.
    """
    if frame_size < 2 or hop_size < 1:
        raise ValueError(f"invalid framing: frame_size={frame_size}, hop_size={hop_size}")

    y = np.asarray(samples, dtype=np.float64)
    chroma = np.zeros(12)
    if y.ndim != 1 or len(y) < frame_size:
        return chroma

    bins, classes = pitch_class_map(frame_size, int(sample_rate), float(fmin), float(fmax))
    if len(bins) == 0:
        return chroma

    frames = np.lib.stride_tricks.sliding_window_view(y, frame_size)[::hop_size]
    energy = np.zeros(len(bins))
    for start in range(0, len(frames), _FRAME_BATCH):
        spectra = magnitude_spectrum(frames[start:start + _FRAME_BATCH])
        energy += spectra[:, bins].sum(axis=0)

    np.add.at(chroma, classes, energy)
    return normalize_chroma(chroma)


def chromagram_from_config(samples: np.ndarray, sample_rate: int, config: ChromaConfig) -> np.ndarray:
    return chromagram(
        samples,
        sample_rate,
        frame_size=config.frame_size,
        hop_size=config.hop_size,
        fmin=config.fmin,
        fmax=config.fmax,
    )
