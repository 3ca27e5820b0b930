"""Core audio processing modules."""

from loopscope.core.analyzer import LoopAnalyzer
from loopscope.core.buffer import AudioBuffer, AudioLoader
from loopscope.core.compositor import LayerCompositor
from loopscope.core.history import HistoryManager
from loopscope.core.session import LoopSession

__all__ = [
    "AudioBuffer",
    "AudioLoader",
    "LoopAnalyzer",
    "LayerCompositor",
    "HistoryManager",
    "LoopSession",
]
