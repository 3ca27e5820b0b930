"""Shared synthetic-signal fixtures."""

import numpy as np
import pytest

TEST_SR = 22050

# Frequencies of the fourth octave used across the tests.
C4 = 261.63
DS4 = 311.13
E4 = 329.63
G4 = 392.00
A4 = 440.00


def tone(freqs, duration: float, sr: int = TEST_SR, amps=None) -> np.ndarray:
    """Sum of sines, one per frequency."""
    t = np.arange(int(sr * duration)) / sr
    amps = amps or [0.3] * len(freqs)
    y = np.zeros_like(t)
    for f, a in zip(freqs, amps):
        y += a * np.sin(2 * np.pi * f * t)
    return y.astype(np.float32)


def clicks(interval: int, n_beats: int, click_len: int = 256) -> np.ndarray:
    """Decaying clicks every ``interval`` samples."""
    y = np.zeros(interval * n_beats, dtype=np.float32)
    burst = np.exp(-np.arange(click_len) / 32.0).astype(np.float32)
    for start in range(0, len(y), interval):
        y[start:start + click_len] = burst
    return y


@pytest.fixture
def pure_sine():
    """Two seconds of A4."""
    return tone([A4], 2.0, amps=[0.5]), TEST_SR


@pytest.fixture
def mixed_signal():
    """A4 with a click every half second (120 BPM), four seconds."""
    sr = TEST_SR
    y = tone([A4], 4.0, amps=[0.3])
    y += clicks(sr // 2, 8)
    return y, sr


@pytest.fixture
def c_major_chord():
    """C4 + E4 + G4, two seconds."""
    return tone([C4, E4, G4], 2.0), TEST_SR


@pytest.fixture
def click_track():
    """
    Clicks every 22 hops of 512 samples (117.45 BPM at 22050 Hz).

    Each click fits inside one hop, so the energy envelope has exactly one
    spike per beat.
    """
    return clicks(22 * 512, 20), TEST_SR
