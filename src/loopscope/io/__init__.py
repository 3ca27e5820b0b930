"""Serialization of mixes and analysis reports."""

from loopscope.io.exporter import ReportExporter, WavExporter, decode_wav_bytes, encode_wav

__all__ = ["ReportExporter", "WavExporter", "encode_wav", "decode_wav_bytes"]
