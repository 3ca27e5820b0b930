"""Tests for the bounded undo/redo history."""

import pytest

from loopscope.config import MAX_HISTORY_DEPTH
from loopscope.core.buffer import AudioBuffer
from loopscope.core.compositor import Layer
from loopscope.core.history import HistoryManager, HistorySnapshot


def state(n: int) -> tuple:
    """``n`` silent layers, distinguishable by their volumes."""
    return tuple(
        Layer(AudioBuffer.silence(4, 8000), volume=i / 10) for i in range(n)
    )


class TestHistorySnapshot:
    def test_capture(self):
        snap = HistorySnapshot.capture(state(3))
        assert len(snap) == 3
        assert snap.volumes == [0.0, 0.1, 0.2]
        assert snap.muted == [False, False, False]

    def test_capture_copies_sequence(self):
        layers = list(state(2))
        snap = HistorySnapshot.capture(layers)
        layers.append(layers[0])
        assert len(snap) == 2


class TestHistoryManager:
    def test_starts_empty(self):
        history = HistoryManager()
        assert not history.can_undo
        assert not history.can_redo
        assert history.max_depth == 10

    def test_undo_returns_previous_state(self):
        history = HistoryManager()
        before, after = state(1), state(2)
        history.snapshot(before)
        snap = history.undo(after)
        assert snap.layers == before
        assert history.can_redo

    def test_redo_returns_undone_state(self):
        history = HistoryManager()
        before, after = state(1), state(2)
        history.snapshot(before)
        restored = history.undo(after).layers
        assert history.redo(restored).layers == after
        assert history.can_undo
        assert not history.can_redo

    def test_empty_undo_is_none(self):
        history = HistoryManager()
        assert history.undo(state(1)) is None
        assert not history.can_redo

    def test_empty_redo_is_none(self):
        assert HistoryManager().redo(state(1)) is None

    def test_new_edit_clears_redo(self):
        history = HistoryManager()
        history.snapshot(state(1))
        history.undo(state(2))
        assert history.can_redo
        history.snapshot(state(1))
        assert not history.can_redo

    def test_depth_is_capped(self):
        history = HistoryManager(max_depth=10)
        for n in range(1, 13):
            history.snapshot(state(n))
        assert history.undo_depth == 10

        undone = []
        current = state(13)
        while history.can_undo:
            snap = history.undo(current)
            undone.append(len(snap))
            current = snap.layers
        # The two oldest snapshots were discarded.
        assert undone == list(range(12, 2, -1))

    def test_redo_depth_is_capped(self):
        history = HistoryManager(max_depth=3)
        for n in range(1, 4):
            history.snapshot(state(n))
        current = state(4)
        while history.can_undo:
            current = history.undo(current).layers
        assert history.redo_depth == 3

    def test_clear(self):
        history = HistoryManager()
        history.snapshot(state(1))
        history.undo(state(2))
        history.snapshot(state(1))
        history.clear()
        assert not history.can_undo
        assert not history.can_redo

    def test_invalid_depth(self):
        with pytest.raises(ValueError):
            HistoryManager(max_depth=0)

    def test_depth_above_cap_rejected(self):
        with pytest.raises(ValueError):
            HistoryManager(max_depth=MAX_HISTORY_DEPTH + 1)
