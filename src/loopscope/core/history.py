"""
Bounded undo/redo history of layer states.

Snapshots hold the layer tuple itself: layers and their buffers are
immutable, so sharing them is a full copy of the state.
"""

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional

from loopscope.config import MAX_HISTORY_DEPTH


@dataclass(frozen=True)
class HistorySnapshot:
    """Layer sequence (buffer, volume, mute per layer) at one point in time."""

    layers: tuple

    @classmethod
    def capture(cls, layers: Iterable) -> "HistorySnapshot":
        return cls(layers=tuple(layers))

    @property
    def volumes(self) -> list:
        return [layer.volume for layer in self.layers]

    @property
    def muted(self) -> list:
        return [layer.muted for layer in self.layers]

    def __len__(self) -> int:
        return len(self.layers)


class HistoryManager:
    """
    Undo and redo stacks, each capped at ``max_depth`` entries.

    Pushing onto a full stack discards its oldest entry.
    """

    def __init__(self, max_depth: int = MAX_HISTORY_DEPTH):
        if not 1 <= max_depth <= MAX_HISTORY_DEPTH:
            raise ValueError(f"max_depth must be in [1, {MAX_HISTORY_DEPTH}], got {max_depth}")
        self.max_depth = max_depth
        self._undo: deque = deque(maxlen=max_depth)
        self._redo: deque = deque(maxlen=max_depth)

    @property
    def can_undo(self) -> bool:
        return len(self._undo) > 0

    @property
    def can_redo(self) -> bool:
        return len(self._redo) > 0

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def snapshot(self, layers: Iterable) -> HistorySnapshot:
        """
        Record the state about to be changed by a fresh edit.

        A fresh edit invalidates forward history, so the redo stack is
        cleared.
        """
        snap = HistorySnapshot.capture(layers)
        self._undo.append(snap)
        self._redo.clear()
        return snap

    def undo(self, current: Iterable) -> Optional[HistorySnapshot]:
        """
        Step back one edit.

        Args:
            current: The live layer sequence, saved for redo.

        Returns:
            The state to restore, or None if there is nothing to undo.
        """
        if not self._undo:
            return None
        self._redo.append(HistorySnapshot.capture(current))
        return self._undo.pop()

    def redo(self, current: Iterable) -> Optional[HistorySnapshot]:
        """Mirror of :meth:`undo`; None if there is nothing to redo."""
        if not self._redo:
            return None
        self._undo.append(HistorySnapshot.capture(current))
        return self._redo.pop()

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
