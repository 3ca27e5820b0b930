"""
Loop analysis: tempo, key and chord timeline.

Tempo comes from autocorrelating a coarse energy envelope.  Key and chords
come from pitch-class profiles (see :mod:`loopscope.core.spectral`).

All functions here are pure and hold no shared state, so they are safe to
run in worker processes on copies of the samples.  Short or silent input
never raises: tempo falls back to the middle of the search range, key to
the label of an all-zero chromagram, chords to a single default event.
"""

import bisect
import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from loopscope.config import (
    NOTE_NAMES,
    AnalysisConfig,
    ChordConfig,
    KeyConfig,
    TempoConfig,
)
from loopscope.core.buffer import AudioBuffer
from loopscope.core.spectral import chromagram_from_config
from loopscope.errors import InsufficientData

logger = logging.getLogger(__name__)

MAJOR_SCALE = [0, 2, 4, 5, 7, 9, 11]
MINOR_SCALE = [0, 2, 3, 5, 7, 8, 10]   # natural minor

# Interval templates, checked in order; first match wins.
CHORD_TEMPLATES = [
    (frozenset({0, 4, 7}), ""),
    (frozenset({0, 3, 7}), "m"),
    (frozenset({0, 4, 10}), "7"),
    (frozenset({0, 4, 11}), "maj7"),
    (frozenset({0, 3, 10}), "m7"),
]


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KeyEstimate:
    """Dominant pitch class plus major/minor mode."""

    root_index: int     # 0–11  (C, C#, D … B)
    mode: str           # "Major" | "Minor"

    @property
    def root_name(self) -> str:
        return NOTE_NAMES[self.root_index % 12]

    @property
    def label(self) -> str:
        """e.g. ``"F# Minor"``."""
        return f"{self.root_name} {self.mode}"

    @property
    def scale_notes(self) -> list:
        return scale_notes(self.root_name, self.mode)

    @property
    def relative_major(self) -> str:
        # Minor keys share their notes with the major key a minor third up.
        if self.mode == "Minor":
            return NOTE_NAMES[(self.root_index + 3) % 12]
        return self.root_name

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class ChordEvent:
    """A chord label starting at ``time_seconds``."""

    time_seconds: float
    label: str

    @property
    def time_label(self) -> str:
        return f"{self.time_seconds:.1f}s"

    def to_dict(self) -> dict:
        return {"time_seconds": self.time_seconds, "label": self.label}


@dataclass
class LoopAnalysis:
    """Complete analysis of one loop."""

    bpm: int
    key: KeyEstimate
    chords: list = field(default_factory=list)  # [ChordEvent, ...]
    duration: float = 0.0
    sample_rate: int = 0


# ---------------------------------------------------------------------------
# Energy envelope + tempo
# ---------------------------------------------------------------------------

def energy_envelope(samples: np.ndarray, hop_size: int = 512) -> np.ndarray:
    """
    Mean absolute sample value per hop.

    The last hop may be shorter than ``hop_size`` and is averaged over its
    real length.

    Args:
        samples: One channel of audio.
        hop_size: Hop length in samples.

    Returns:
        Array of ``ceil(len(samples) / hop_size)`` non-negative values.
    """
    if hop_size < 1:
        raise ValueError(f"hop_size must be >= 1, got {hop_size}")

    y = np.abs(np.asarray(samples, dtype=np.float64))
    if y.size == 0:
        return np.zeros(0)

    starts = np.arange(0, len(y), hop_size)
    lengths = np.minimum(hop_size, len(y) - starts)
    return np.add.reduceat(y, starts) / lengths


def bpm_to_lag(bpm: float, sample_rate: int, hop_size: int) -> int:
    """Envelope lag (in hops) of one beat at ``bpm``."""
    return int(round(60.0 * sample_rate / (hop_size * bpm)))


def fallback_tempo(min_bpm: int = 60, max_bpm: int = 180) -> int:
    return int(round((min_bpm + max_bpm) / 2))


def estimate_tempo(
    envelope: np.ndarray,
    sample_rate: int,
    hop_size: int = 512,
    min_bpm: int = 60,
    max_bpm: int = 180,
    lag_step: int = 1,
    point_step: int = 1,
) -> int:
    """
    Estimate tempo by autocorrelating an energy envelope.

    Each candidate lag in ``[lag(max_bpm), lag(min_bpm))`` is scored by the
    mean of ``envelope[i] * envelope[i + lag]`` over its pairs.  The
    best-scoring lag (lowest lag on ties) is converted back to BPM.

    Args:
        envelope: Output of :func:`energy_envelope`.
        sample_rate: Sample rate of the source audio.
        hop_size: Hop used to build the envelope.
        min_bpm: Slowest tempo considered.
        max_bpm: Fastest tempo considered.
        lag_step: Evaluate every n-th lag (speed only).
        point_step: Visit every n-th pair per lag (speed only).

    Returns:
        BPM clamped to ``[min_bpm, max_bpm]``; the midpoint of the range
        when the envelope is too short to score any lag.
    """
    if min_bpm <= 0 or min_bpm >= max_bpm:
        raise ValueError(f"invalid BPM range [{min_bpm}, {max_bpm}]")
    if lag_step < 1 or point_step < 1:
        raise ValueError("lag_step and point_step must be >= 1")

    env = np.asarray(envelope, dtype=np.float64)
    min_lag = max(1, bpm_to_lag(max_bpm, sample_rate, hop_size))
    max_lag = bpm_to_lag(min_bpm, sample_rate, hop_size)

    try:
        lag = best_autocorrelation_lag(env, min_lag, max_lag, lag_step, point_step)
    except InsufficientData as exc:
        logger.debug("%s; using fallback tempo", exc)
        return fallback_tempo(min_bpm, max_bpm)

    bpm = int(round(60.0 * sample_rate / (hop_size * lag)))
    return int(np.clip(bpm, min_bpm, max_bpm))


def best_autocorrelation_lag(
    env: np.ndarray,
    min_lag: int,
    max_lag: int,
    lag_step: int = 1,
    point_step: int = 1,
) -> int:
    """
    Lag in ``[min_lag, max_lag)`` with the highest mean lagged product.

    Raises:
        InsufficientData: If the envelope is too short to score any lag.
    """
    if len(env) < min_lag + 1:
        raise InsufficientData(f"envelope of {len(env)} hops too short for lag {min_lag}")

    best_lag = 0
    best_corr = -np.inf
    for lag in range(min_lag, max_lag, lag_step):
        idx = np.arange(0, len(env) - lag, point_step)
        if len(idx) == 0:
            continue
        corr = float(np.mean(env[idx] * env[idx + lag]))
        if corr > best_corr:
            best_corr = corr
            best_lag = lag

    if best_lag == 0:
        raise InsufficientData(f"no lag in [{min_lag}, {max_lag}) could be scored")
    return best_lag


def _prefix(samples: np.ndarray, sample_rate: int, max_seconds: Optional[float]) -> np.ndarray:
    if max_seconds is None:
        return samples
    return samples[: int(max_seconds * sample_rate)]


def detect_tempo(
    samples: np.ndarray,
    sample_rate: int,
    config: Optional[TempoConfig] = None,
) -> int:
    """Energy envelope + autocorrelation over the configured prefix."""
    config = config or TempoConfig()
    y = _prefix(np.asarray(samples), sample_rate, config.max_seconds)
    envelope = energy_envelope(y, config.hop_size)
    return estimate_tempo(
        envelope,
        sample_rate,
        hop_size=config.hop_size,
        min_bpm=config.min_bpm,
        max_bpm=config.max_bpm,
        lag_step=config.lag_step,
        point_step=config.point_step,
    )


# ---------------------------------------------------------------------------
# Key
# ---------------------------------------------------------------------------

def estimate_key(chroma: np.ndarray) -> KeyEstimate:
    """
    Dominant pitch class, with the mode decided by its third.

    Major when the major-third bin is strictly louder than the minor-third
    bin, Minor otherwise.
    """
    chroma = np.asarray(chroma, dtype=np.float64)
    if chroma.shape != (12,):
        raise ValueError(f"chroma must have 12 elements, got shape {chroma.shape}")

    dominant = int(np.argmax(chroma))
    major_third = chroma[(dominant + 4) % 12]
    minor_third = chroma[(dominant + 3) % 12]
    mode = "Major" if major_third > minor_third else "Minor"
    return KeyEstimate(root_index=dominant, mode=mode)


def detect_key(
    samples: np.ndarray,
    sample_rate: int,
    config: Optional[KeyConfig] = None,
) -> KeyEstimate:
    """Key of the first ``config.max_seconds`` of a channel."""
    config = config or KeyConfig()
    y = _prefix(np.asarray(samples), sample_rate, config.max_seconds)
    return estimate_key(chromagram_from_config(y, sample_rate, config.chroma))


def scale_notes(root: str, mode: str) -> list:
    """
    Seven notes of the major or natural minor scale on ``root``.

    Raises:
        ValueError: For an unknown note name or mode.
    """
    if root not in NOTE_NAMES:
        raise ValueError(f"unknown note name: {root!r}")
    if mode not in ("Major", "Minor"):
        raise ValueError(f"unknown mode: {mode!r}")

    root_index = NOTE_NAMES.index(root)
    intervals = MAJOR_SCALE if mode == "Major" else MINOR_SCALE
    return [NOTE_NAMES[(root_index + i) % 12] for i in intervals]


def parse_key_label(label: str) -> KeyEstimate:
    """Inverse of :attr:`KeyEstimate.label` (``"A Minor"`` -> KeyEstimate)."""
    parts = label.split()
    if len(parts) != 2:
        raise ValueError(f"invalid key label: {label!r}")
    root, mode = parts
    if root not in NOTE_NAMES or mode not in ("Major", "Minor"):
        raise ValueError(f"invalid key label: {label!r}")
    return KeyEstimate(root_index=NOTE_NAMES.index(root), mode=mode)


# ---------------------------------------------------------------------------
# Chords
# ---------------------------------------------------------------------------

def identify_chord(chroma: np.ndarray) -> str:
    """
    Classify a chromagram as a triad or seventh chord.

    The three strongest pitch classes are sorted ascending and the lowest
    is taken as the root.  Falls back to the bare root name when no
    template matches.
    """
    chroma = np.asarray(chroma, dtype=np.float64)
    if chroma.shape != (12,):
        raise ValueError(f"chroma must have 12 elements, got shape {chroma.shape}")

    # Stable sort: equal energies keep the lower pitch class first.
    top3 = sorted(int(i) for i in np.argsort(-chroma, kind="stable")[:3])
    root = top3[0]
    intervals = frozenset((pc - root) % 12 for pc in top3)

    for template, suffix in CHORD_TEMPLATES:
        if intervals == template:
            return NOTE_NAMES[root] + suffix
    return NOTE_NAMES[root]


def detect_chords(
    samples: np.ndarray,
    sample_rate: int,
    config: Optional[ChordConfig] = None,
) -> list:
    """
    Chord timeline over fixed, non-overlapping windows.

    A tail window shorter than ``min_window_fraction`` of the nominal
    length is dropped; silent windows are skipped.  Consecutive windows
    with the same label collapse into one event.

    Returns:
        List of ChordEvent with strictly increasing times.  Never empty: a
        single ``default_label`` event at 0.0 s stands in when no window
        could be classified.
    """
    config = config or ChordConfig()
    window_size = int(config.window_seconds * sample_rate)
    if window_size < 1:
        raise ValueError(f"window of {config.window_seconds}s is empty at {sample_rate} Hz")

    y = np.asarray(samples)
    events: list = []

    for start in range(0, len(y), window_size):
        window = y[start:start + window_size]
        if len(window) < window_size * config.min_window_fraction:
            break

        chroma = chromagram_from_config(window, sample_rate, config.chroma)
        if not chroma.any():
            continue

        label = identify_chord(chroma)
        if events and events[-1].label == label:
            continue
        events.append(ChordEvent(time_seconds=start / sample_rate, label=label))

    if not events:
        logger.debug("No classifiable chord windows; using default %r", config.default_label)
        events.append(ChordEvent(time_seconds=0.0, label=config.default_label))

    return events


def chord_at(events: list, seconds: float) -> Optional[ChordEvent]:
    """
    Chord sounding at ``seconds`` into the loop.

    That is the last event starting at or before ``seconds``; None before
    the first event.  ``events`` must be in time order, as returned by
    :func:`detect_chords`.
    """
    times = [event.time_seconds for event in events]
    i = bisect.bisect_right(times, seconds)
    return events[i - 1] if i else None


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class LoopAnalyzer:
    """
    Runs tempo, key and chord detection on a buffer.

    Analysis reads channel 0 only.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        """
        Initialize the analyzer.

        Args:
            config: Analysis settings. Defaults to AnalysisConfig().
        """
        self.config = config or AnalysisConfig()

    def tempo(self, buffer: AudioBuffer) -> int:
        return detect_tempo(buffer.channel(0), buffer.sample_rate, self.config.tempo)

    def key(self, buffer: AudioBuffer) -> KeyEstimate:
        return detect_key(buffer.channel(0), buffer.sample_rate, self.config.key)

    def chords(self, buffer: AudioBuffer) -> list:
        return detect_chords(buffer.channel(0), buffer.sample_rate, self.config.chords)

    def analyze(self, buffer: AudioBuffer) -> LoopAnalysis:
        """
        Perform complete analysis of a loop.

        Args:
            buffer: Loop audio.

        Returns:
            LoopAnalysis with tempo, key and chord timeline.
        """
        return LoopAnalysis(
            bpm=self.tempo(buffer),
            key=self.key(buffer),
            chords=self.chords(buffer),
            duration=buffer.duration,
            sample_rate=buffer.sample_rate,
        )
