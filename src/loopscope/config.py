"""
Configuration dataclasses for analysis, sessions and the dispatcher.

Every component takes its config through the constructor.
"""

from dataclasses import dataclass, field
from typing import Optional

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

MAX_HISTORY_DEPTH = 10


@dataclass
class TempoConfig:
    """Energy-envelope autocorrelation settings."""

    hop_size: int = 512
    min_bpm: int = 60
    max_bpm: int = 180
    lag_step: int = 1             # evaluate every n-th candidate lag
    point_step: int = 1           # visit every n-th envelope pair
    max_seconds: Optional[float] = None   # analyse only this prefix

    @classmethod
    def fast(cls) -> "TempoConfig":
        """Coarse pass: larger hop, 10 s prefix, strided lags and pairs."""
        return cls(hop_size=2048, lag_step=5, point_step=2, max_seconds=10.0)


@dataclass
class ChromaConfig:
    """Framing and band limits for pitch-class profiles."""

    frame_size: int = 4096
    hop_size: int = 2048
    fmin: float = 80.0     # below: rumble
    fmax: float = 2000.0   # above: harmonics with little chord information


@dataclass
class KeyConfig:
    max_seconds: Optional[float] = 5.0
    chroma: ChromaConfig = field(default_factory=ChromaConfig)


@dataclass
class ChordConfig:
    window_seconds: float = 1.0
    min_window_fraction: float = 0.5
    default_label: str = "C"
    chroma: ChromaConfig = field(default_factory=ChromaConfig)


@dataclass
class AnalysisConfig:
    """Bundle of the three analysis configs."""

    tempo: TempoConfig = field(default_factory=TempoConfig)
    key: KeyConfig = field(default_factory=KeyConfig)
    chords: ChordConfig = field(default_factory=ChordConfig)

    @classmethod
    def fast(cls) -> "AnalysisConfig":
        return cls(
            tempo=TempoConfig.fast(),
            key=KeyConfig(chroma=ChromaConfig(frame_size=2048, hop_size=2048)),
        )


@dataclass
class SessionConfig:
    history_depth: int = MAX_HISTORY_DEPTH
    fade_ms: float = 5.0
    length_tolerance: float = 0.1   # seconds of overdub/base mismatch tolerated silently


@dataclass
class DispatcherConfig:
    use_workers: bool = True
    max_workers: int = 2
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
