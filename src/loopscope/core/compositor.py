"""
Per-layer mix with linear volume and mute.

Layers are summed without normalization or clipping; keeping the composite
inside [-1, 1] is left to playback/export (the WAV encoder clamps).
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Optional

import numpy as np

from loopscope.core.buffer import AudioBuffer
from loopscope.errors import InvalidLayerIndex

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Layer
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Layer:
    """One recorded or loaded take. Identity is its position in the composition."""
    buffer: AudioBuffer
    volume: float = 1.0
    muted: bool = False


def clamp_volume(volume: float) -> float:
    return float(min(1.0, max(0.0, float(volume))))


# -----------------------------------------------------------------------------
# Mixing
# -----------------------------------------------------------------------------

def mix_layers(layers: Iterable[Layer]) -> Optional[AudioBuffer]:
    """
    Sum all unmuted layers, each scaled by its volume.

    The composite spans the longest layer and the widest channel count
    (muted layers included).  A layer with fewer channels feeds its last
    channel to the remaining composite channels; a shorter layer contributes
    silence past its own end.

    Returns:
        The composite, or None when there are no layers.  A lone unmuted
        layer at full volume is returned as its own buffer.
    """
    layers = list(layers)
    if not layers:
        return None

    if len(layers) == 1 and not layers[0].muted and layers[0].volume == 1.0:
        return layers[0].buffer

    sample_rate = layers[0].buffer.sample_rate
    max_frames = max(layer.buffer.frame_count for layer in layers)
    max_channels = max(layer.buffer.n_channels for layer in layers)
    master = np.zeros((max_channels, max_frames), dtype=np.float32)

    for layer in layers:
        if layer.muted:
            continue
        src = layer.buffer
        for c in range(max_channels):
            data = src.channel(min(c, src.n_channels - 1))
            master[c, : src.frame_count] += data * np.float32(layer.volume)

    logger.debug("Mixed %d layer(s) into %d x %d", len(layers), max_channels, max_frames)
    return AudioBuffer(sample_rate=sample_rate, samples=master)


def apply_fades(buffer: AudioBuffer, fade_ms: float = 5.0) -> AudioBuffer:
    """
    Linear fade-in and fade-out over ``fade_ms`` to avoid clicks at loop edges.

    Returns a new buffer; buffers shorter than two fades are returned as is.
    """
    fade_len = int(fade_ms / 1000.0 * buffer.sample_rate)
    if fade_len <= 0 or buffer.frame_count < 2 * fade_len:
        return buffer

    fade_in = np.arange(fade_len, dtype=np.float32) / fade_len
    fade_out = np.arange(fade_len, 0, -1, dtype=np.float32) / fade_len
    data = np.array(buffer.samples, dtype=np.float32)
    data[:, :fade_len] *= fade_in
    data[:, -fade_len:] *= fade_out
    return buffer.with_samples(data)


# -----------------------------------------------------------------------------
# Layer compositor
# -----------------------------------------------------------------------------

class LayerCompositor:
    """
    Ordered layers plus the cached composite of their mix.

    Every mutation remixes before returning, so :attr:`composite` always
    reflects the current layers, volumes and mutes.
    """

    def __init__(self, layers: Iterable[Layer] = ()):
        self._layers: list[Layer] = list(layers)
        self._composite: Optional[AudioBuffer] = None
        self._remix()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def layers(self) -> tuple:
        return tuple(self._layers)

    @property
    def composite(self) -> Optional[AudioBuffer]:
        return self._composite

    @property
    def sample_rate(self) -> Optional[int]:
        if not self._layers:
            return None
        return self._layers[0].buffer.sample_rate

    def __len__(self) -> int:
        return len(self._layers)

    def layer(self, index: int) -> Layer:
        self._check_index(index)
        return self._layers[index]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_layer(self, buffer: AudioBuffer) -> int:
        """Append a full-volume, unmuted layer. Returns its index."""
        if self._layers:
            buffer = buffer.resampled(self.sample_rate)
        self._layers.append(Layer(buffer=buffer))
        self._remix()
        return len(self._layers) - 1

    def set_volume(self, index: int, volume: float) -> float:
        """Set a layer's gain, clamped to [0, 1]. Returns the applied value."""
        self._check_index(index)
        volume = clamp_volume(volume)
        self._layers[index] = replace(self._layers[index], volume=volume)
        self._remix()
        return volume

    def set_muted(self, index: int, muted: bool) -> None:
        self._check_index(index)
        self._layers[index] = replace(self._layers[index], muted=bool(muted))
        self._remix()

    def remove_last_layer(self) -> Layer:
        """
        Drop the most recent layer.

        Raises:
            InvalidLayerIndex: If only the base layer (or nothing) remains.
        """
        if len(self._layers) < 2:
            raise InvalidLayerIndex("the base layer cannot be removed")
        removed = self._layers.pop()
        self._remix()
        return removed

    def restore(self, layers: Iterable[Layer]) -> None:
        """Replace the whole layer sequence (used by undo/redo)."""
        self._layers = list(layers)
        self._remix()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_index(self, index: int) -> None:
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            raise InvalidLayerIndex(f"layer index must be an int, got {index!r}")
        if not 0 <= index < len(self._layers):
            raise InvalidLayerIndex(
                f"layer {index} out of range (composition has {len(self._layers)} layers)"
            )

    def _remix(self) -> None:
        self._composite = mix_layers(self._layers)
