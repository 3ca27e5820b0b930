"""
PCM buffer container and audio loading.

An :class:`AudioBuffer` is an immutable block of float32 samples laid out as
``(n_channels, frame_count)``.  Nothing in loopscope writes into a buffer
after construction; edits always produce a new buffer.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Union

import librosa
import numpy as np

from loopscope.errors import DecodeFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class AudioBuffer:
    """Immutable multi-channel PCM samples at a fixed sample rate."""

    sample_rate: int
    samples: np.ndarray  # Shape: (n_channels, frame_count), float32

    def __post_init__(self):
        if int(self.sample_rate) <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")

        data = np.array(self.samples, dtype=np.float32, copy=True)
        if data.ndim == 1:
            data = data[np.newaxis, :]
        if data.ndim != 2 or data.shape[0] == 0:
            raise ValueError(
                f"samples must have shape (n_channels, frame_count), got {data.shape}"
            )
        data.flags.writeable = False

        object.__setattr__(self, "sample_rate", int(self.sample_rate))
        object.__setattr__(self, "samples", data)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_mono(cls, samples: Sequence[float], sample_rate: int) -> "AudioBuffer":
        """Build a single-channel buffer from a 1-D sequence."""
        return cls(sample_rate=sample_rate, samples=np.asarray(samples, dtype=np.float32))

    @classmethod
    def from_channels(
        cls,
        channels: Sequence[Sequence[float]],
        sample_rate: int,
    ) -> "AudioBuffer":
        """
        Build a buffer from one sequence per channel.

        Raises:
            ValueError: If the channels differ in length or none are given.
        """
        if len(channels) == 0:
            raise ValueError("at least one channel is required")
        lengths = {len(ch) for ch in channels}
        if len(lengths) != 1:
            raise ValueError(f"all channels must have the same length, got {sorted(lengths)}")
        return cls(sample_rate=sample_rate, samples=np.vstack([
            np.asarray(ch, dtype=np.float32) for ch in channels
        ]))

    @classmethod
    def silence(cls, frame_count: int, sample_rate: int, n_channels: int = 1) -> "AudioBuffer":
        return cls(
            sample_rate=sample_rate,
            samples=np.zeros((n_channels, frame_count), dtype=np.float32),
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def n_channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return self.frame_count / self.sample_rate

    def channel(self, index: int) -> np.ndarray:
        """Read-only 1-D view of one channel."""
        return self.samples[index]

    def with_samples(self, samples: np.ndarray) -> "AudioBuffer":
        """New buffer at the same sample rate."""
        return AudioBuffer(sample_rate=self.sample_rate, samples=samples)

    def resampled(self, target_sr: int) -> "AudioBuffer":
        """Return this buffer at ``target_sr`` (self if already there)."""
        if target_sr == self.sample_rate:
            return self
        logger.debug("Resampling %d Hz -> %d Hz", self.sample_rate, target_sr)
        y = librosa.resample(
            np.asarray(self.samples, dtype=np.float32),
            orig_sr=self.sample_rate,
            target_sr=target_sr,
        )
        return AudioBuffer(sample_rate=target_sr, samples=y)

    def __eq__(self, other):
        if not isinstance(other, AudioBuffer):
            return NotImplemented
        return (
            self.sample_rate == other.sample_rate
            and self.samples.shape == other.samples.shape
            and bool(np.array_equal(self.samples, other.samples))
        )


class AudioLoader:
    """
    Decodes audio files into :class:`AudioBuffer` objects.

    Decoding goes through librosa, so anything soundfile or audioread can
    read (wav, flac, ogg, mp3) is accepted.
    """

    def __init__(self, sr: int | None = None, mono: bool = False):
        """
        Initialize the loader.

        Args:
            sr: Target sample rate. None preserves the file's rate.
            mono: Downmix to one channel if True.
        """
        self.sr = sr
        self.mono = mono

    def load(self, source: Union[str, Path, bytes]) -> AudioBuffer:
        """
        Load audio from a path or from encoded bytes.

        Args:
            source: File path, or the raw bytes of an encoded file.

        Returns:
            AudioBuffer with the decoded samples.

        Raises:
            FileNotFoundError: If ``source`` is a path that does not exist.
            DecodeFailure: If the input is not a supported audio encoding
                or decodes to no samples.
        """
        if isinstance(source, (bytes, bytearray)):
            target = io.BytesIO(source)
        else:
            target = Path(source)
            if not target.exists():
                raise FileNotFoundError(f"Audio file not found: {target}")
        try:
            y, sr_out = librosa.load(target, sr=self.sr, mono=self.mono)
        except FileNotFoundError:
            raise
        except Exception as exc:
            raise DecodeFailure(f"could not decode audio: {exc}") from exc

        if y.size == 0:
            raise DecodeFailure("decoded audio contains no samples")

        buffer = AudioBuffer(sample_rate=int(sr_out), samples=y)
        logger.debug(
            "Loaded %d channel(s), %d frames at %d Hz",
            buffer.n_channels, buffer.frame_count, buffer.sample_rate,
        )
        return buffer
