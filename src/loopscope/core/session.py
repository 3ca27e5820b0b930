"""
Loop session: the single owner of a composition and its edit history.

Every edit goes through :class:`LoopSession` under one lock, so concurrent
callers (a UI thread and an analysis callback, say) never interleave
mutations.  Edits other than undo/redo snapshot the current layers first.
"""

import enum
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from loopscope.config import SessionConfig
from loopscope.core.buffer import AudioBuffer
from loopscope.core.compositor import Layer, LayerCompositor, apply_fades
from loopscope.core.history import HistoryManager
from loopscope.errors import InvalidLayerIndex
from loopscope.io.exporter import WavExporter

logger = logging.getLogger(__name__)


class EditStatus(enum.Enum):
    """Outcome of an undo or redo request."""

    APPLIED = "applied"
    NOTHING_TO_UNDO = "nothing to undo"
    NOTHING_TO_REDO = "nothing to redo"

    def __bool__(self) -> bool:
        return self is EditStatus.APPLIED


class LoopSession:
    """
    Overdub looper state: base layer, overdubs, volumes, mutes, history.

    A session is idle until :meth:`start` records or loads the base layer.
    """

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config or SessionConfig()
        self._lock = threading.RLock()
        self._compositor: Optional[LayerCompositor] = None
        self._history = HistoryManager(self.config.history_depth)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._compositor is not None

    @property
    def composite(self) -> Optional[AudioBuffer]:
        with self._lock:
            return self._compositor.composite if self._compositor else None

    @property
    def layers(self) -> tuple:
        with self._lock:
            return self._compositor.layers if self._compositor else ()

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def history(self) -> HistoryManager:
        return self._history

    # ------------------------------------------------------------------
    # Composition lifecycle
    # ------------------------------------------------------------------

    def start(self, buffer: AudioBuffer, fade: bool = False) -> None:
        """
        Begin a new composition with ``buffer`` as the base layer.

        Any previous composition and its history are discarded.
        """
        if fade:
            buffer = apply_fades(buffer, self.config.fade_ms)
        with self._lock:
            self._history.clear()
            self._compositor = LayerCompositor([Layer(buffer=buffer)])
            logger.info(
                "Started loop: %.2fs, %d channel(s) at %d Hz",
                buffer.duration, buffer.n_channels, buffer.sample_rate,
            )

    def clear(self) -> None:
        """Drop the composition together with both history stacks."""
        with self._lock:
            self._compositor = None
            self._history.clear()
            logger.info("Cleared loop")

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def overdub(self, buffer: AudioBuffer, fade: bool = True) -> int:
        """
        Add a take on top of the current loop.

        Returns:
            Index of the new layer.

        Raises:
            InvalidLayerIndex: If no loop has been started.
        """
        if fade:
            buffer = apply_fades(buffer, self.config.fade_ms)
        with self._lock:
            compositor = self._require_active()
            base = compositor.layers[0].buffer
            if abs(buffer.duration - base.duration) > self.config.length_tolerance:
                logger.warning(
                    "Overdub length %.2fs differs from base loop %.2fs",
                    buffer.duration, base.duration,
                )
            self._history.snapshot(compositor.layers)
            index = compositor.add_layer(buffer)
            logger.info("Added layer %d", index)
            return index

    def set_volume(self, index: int, volume: float) -> float:
        """Set a layer's volume (clamped to [0, 1]). Returns the applied value."""
        with self._lock:
            compositor = self._require_active()
            compositor.layer(index)
            self._history.snapshot(compositor.layers)
            return compositor.set_volume(index, volume)

    def set_muted(self, index: int, muted: bool) -> None:
        with self._lock:
            compositor = self._require_active()
            compositor.layer(index)
            self._history.snapshot(compositor.layers)
            compositor.set_muted(index, muted)

    def toggle_mute(self, index: int) -> bool:
        """Flip a layer's mute flag. Returns the new flag."""
        with self._lock:
            muted = not self._require_active().layer(index).muted
            self.set_muted(index, muted)
            return muted

    def remove_last_layer(self) -> Layer:
        """
        Remove the most recent overdub.

        Raises:
            InvalidLayerIndex: If only the base layer remains.
        """
        with self._lock:
            compositor = self._require_active()
            if len(compositor) < 2:
                raise InvalidLayerIndex("the base layer cannot be removed")
            self._history.snapshot(compositor.layers)
            return compositor.remove_last_layer()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def undo(self) -> EditStatus:
        with self._lock:
            if self._compositor is None:
                logger.info(EditStatus.NOTHING_TO_UNDO.value)
                return EditStatus.NOTHING_TO_UNDO
            snap = self._history.undo(self._compositor.layers)
            if snap is None:
                logger.info(EditStatus.NOTHING_TO_UNDO.value)
                return EditStatus.NOTHING_TO_UNDO
            self._compositor.restore(snap.layers)
            logger.info("Undone: %d layer(s)", len(snap))
            return EditStatus.APPLIED

    def redo(self) -> EditStatus:
        with self._lock:
            if self._compositor is None:
                logger.info(EditStatus.NOTHING_TO_REDO.value)
                return EditStatus.NOTHING_TO_REDO
            snap = self._history.redo(self._compositor.layers)
            if snap is None:
                logger.info(EditStatus.NOTHING_TO_REDO.value)
                return EditStatus.NOTHING_TO_REDO
            self._compositor.restore(snap.layers)
            logger.info("Redone: %d layer(s)", len(snap))
            return EditStatus.APPLIED

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_wav(self, path: Union[str, Path]) -> Path:
        """Write the current composite as 16-bit PCM WAV."""
        composite = self.composite
        if composite is None:
            raise InvalidLayerIndex("no loop to export")
        return WavExporter().export(composite, path)

    def _require_active(self) -> LayerCompositor:
        if self._compositor is None:
            raise InvalidLayerIndex("no loop has been started")
        return self._compositor
