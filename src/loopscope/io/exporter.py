"""
Export module.

Writes the mixed loop as 16-bit PCM WAV and the analysis results as a
JSON report.
"""

import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

import numpy as np
from scipy.io import wavfile

from loopscope.core.analyzer import ChordEvent, KeyEstimate, LoopAnalysis
from loopscope.core.buffer import AudioBuffer
from loopscope.errors import DecodeFailure

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44


# ---------------------------------------------------------------------------
# WAV
# ---------------------------------------------------------------------------

def quantize_pcm16(samples: np.ndarray) -> np.ndarray:
    """
    Float samples to int16.

    Values are clamped to [-1, 1], then scaled by 32768 when negative and
    32767 otherwise, truncating toward zero.
    """
    x = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(x < 0, x * 32768.0, x * 32767.0)
    return np.trunc(scaled).astype(np.int16)


def encode_wav(buffer: AudioBuffer) -> bytes:
    """
    Encode a buffer as a canonical PCM WAV file.

    The result is a 44-byte RIFF/WAVE header followed by interleaved
    little-endian int16 frames.
    """
    pcm = quantize_pcm16(buffer.samples).T   # (frames, channels), interleaved
    if buffer.n_channels == 1:
        pcm = pcm[:, 0]

    out = io.BytesIO()
    wavfile.write(out, buffer.sample_rate, np.ascontiguousarray(pcm))
    return out.getvalue()


def decode_wav_bytes(data: bytes) -> AudioBuffer:
    """
    Read WAV bytes back into a float buffer.

    Integer PCM is scaled the same way :func:`quantize_pcm16` wrote it.

    Raises:
        DecodeFailure: If the bytes are not a readable WAV file.
    """
    try:
        sample_rate, pcm = wavfile.read(io.BytesIO(data))
    except (ValueError, EOFError) as exc:
        raise DecodeFailure(f"could not decode WAV data: {exc}") from exc

    pcm = pcm.T if pcm.ndim > 1 else pcm[np.newaxis, :]
    if pcm.dtype == np.int16:
        x = pcm.astype(np.float32)
        samples = np.where(x < 0, x / 32768.0, x / 32767.0)
    else:
        samples = pcm.astype(np.float32)
    return AudioBuffer(sample_rate=int(sample_rate), samples=samples)


class WavExporter:
    """Writes :class:`AudioBuffer` objects to disk as 16-bit PCM WAV."""

    def export(self, buffer: AudioBuffer, output_path: Union[str, Path]) -> Path:
        """
        Write ``buffer`` to ``output_path``.

        Returns:
            Path to written file.
        """
        output_path = Path(output_path)
        data = encode_wav(buffer)
        output_path.write_bytes(data)
        logger.info(
            "Wrote %s (%.2fs, %d channel(s), %d bytes)",
            output_path, buffer.duration, buffer.n_channels, len(data),
        )
        return output_path


# ---------------------------------------------------------------------------
# JSON report
# ---------------------------------------------------------------------------

@dataclass
class ReportMetadata:
    """Metadata header for the analysis report."""

    duration: float
    sample_rate: int
    schema_version: str = "1.0"


class ReportExporter:
    """
    Serializes loop analysis results to a JSON report.

    Layout::

        {"metadata": {...}, "tempo": {"bpm"}, "key": {...}, "chords": [...]}
    """

    def __init__(self, precision: int = 3):
        """
        Initialize the exporter.

        Args:
            precision: Decimal places for floating point values.
        """
        self.precision = precision

    def _round(self, value: float) -> float:
        return round(float(value), self.precision)

    def _key_block(self, key: KeyEstimate) -> dict[str, Any]:
        return {
            "label": key.label,
            "root": key.root_name,
            "root_index": int(key.root_index),
            "mode": key.mode,
            "relative_major": key.relative_major,
            "scale_notes": key.scale_notes,
        }

    def build_report(
        self,
        tempo: int,
        key: KeyEstimate,
        chords: list,
        duration: float,
        sample_rate: int = 0,
    ) -> dict[str, Any]:
        """
        Build the complete report dictionary.

        Args:
            tempo: Detected BPM.
            key: Detected key.
            chords: ChordEvent list, in time order.
            duration: Loop duration in seconds.
            sample_rate: Loop sample rate.

        Returns:
            Report dictionary ready for serialization.
        """
        metadata = ReportMetadata(
            duration=self._round(duration),
            sample_rate=int(sample_rate),
        )
        chord_list = [
            {"time_seconds": self._round(event.time_seconds), "label": event.label}
            for event in chords
        ]
        return {
            "metadata": {
                "duration": metadata.duration,
                "sample_rate": metadata.sample_rate,
                "n_chords": len(chord_list),
                "schema_version": metadata.schema_version,
            },
            "tempo": {"bpm": int(tempo)},
            "key": self._key_block(key),
            "chords": chord_list,
        }

    def from_analysis(self, analysis: LoopAnalysis) -> dict[str, Any]:
        return self.build_report(
            analysis.bpm,
            analysis.key,
            analysis.chords,
            analysis.duration,
            analysis.sample_rate,
        )

    def export_json(
        self,
        analysis: LoopAnalysis,
        output_path: Union[str, Path],
        indent: int = 2,
    ) -> Path:
        """
        Export the report to a JSON file.

        Returns:
            Path to written file.
        """
        report = self.from_analysis(analysis)
        output_path = Path(output_path)

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=indent)

        return output_path

    @staticmethod
    def chords_from_report(report: dict) -> list:
        """ChordEvent list back from a report's ``"chords"`` block."""
        return [
            ChordEvent(time_seconds=float(c["time_seconds"]), label=str(c["label"]))
            for c in report.get("chords", [])
        ]
