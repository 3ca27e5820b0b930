"""
End-to-end analysis pipeline: load a loop, analyse it, build the report.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Union

from loopscope.config import AnalysisConfig
from loopscope.core.analyzer import LoopAnalysis, LoopAnalyzer
from loopscope.core.buffer import AudioBuffer, AudioLoader
from loopscope.io.exporter import ReportExporter

logger = logging.getLogger(__name__)


class LoopPipeline:
    """
    Loader, analyzer and report exporter wired together.

    Example:
        >>> pipeline = LoopPipeline()
        >>> result = pipeline.process("loop.wav")
        >>> result["report"]["key"]["label"]
        'A Minor'
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        sr: Optional[int] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Analysis settings.
            sr: Decode at this sample rate. None keeps the file's rate.
        """
        self.config = config or AnalysisConfig()
        self.loader = AudioLoader(sr=sr, mono=False)
        self.analyzer = LoopAnalyzer(self.config)
        self.exporter = ReportExporter()

    def analyze(self, buffer: AudioBuffer) -> LoopAnalysis:
        analysis = self.analyzer.analyze(buffer)
        logger.info(
            "Analysed %.2fs: %d BPM, %s, %d chord event(s)",
            analysis.duration, analysis.bpm, analysis.key.label, len(analysis.chords),
        )
        return analysis

    def process(
        self,
        audio_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
    ) -> dict[str, Any]:
        """
        Analyse one audio file.

        Args:
            audio_path: Input audio file.
            output_path: If given, also write the JSON report there.

        Returns:
            Dict with ``analysis`` (LoopAnalysis), ``report`` (dict),
            ``bpm``, ``duration`` and ``report_path`` (or None).
        """
        buffer = self.loader.load(audio_path)
        analysis = self.analyze(buffer)

        report_path = None
        if output_path is not None:
            report_path = self.exporter.export_json(analysis, output_path)

        return {
            "analysis": analysis,
            "report": self.exporter.from_analysis(analysis),
            "bpm": analysis.bpm,
            "duration": analysis.duration,
            "report_path": report_path,
        }
