"""
Exception types raised across loopscope.

Analysis code handles short or silent input locally: the lower-level
helpers raise :class:`InsufficientData` and the public detectors catch it
and fall back to a default answer.
"""


class LoopscopeError(Exception):
    """Base class for all loopscope errors."""


class DecodeFailure(LoopscopeError, ValueError):
    """Input bytes or file are not a supported audio encoding."""


class InsufficientData(LoopscopeError):
    """Buffer too short for the requested analysis window."""


class InvalidLayerIndex(LoopscopeError, IndexError):
    """A layer operation referenced a layer that does not exist or may not be removed."""
