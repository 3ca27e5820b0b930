"""Loop analysis and overdub mixing engine."""

from loopscope.core.analyzer import LoopAnalyzer
from loopscope.core.buffer import AudioBuffer, AudioLoader
from loopscope.core.compositor import LayerCompositor
from loopscope.core.dispatcher import AnalysisDispatcher
from loopscope.core.history import HistoryManager
from loopscope.core.session import LoopSession
from loopscope.io.exporter import ReportExporter, WavExporter
from loopscope.pipeline import LoopPipeline

__version__ = "0.1.0"
__all__ = [
    "AudioBuffer",
    "AudioLoader",
    "LoopAnalyzer",
    "LayerCompositor",
    "HistoryManager",
    "LoopSession",
    "AnalysisDispatcher",
    "ReportExporter",
    "WavExporter",
    "LoopPipeline",
]
