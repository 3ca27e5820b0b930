"""
Analysis dispatcher: runs tempo/key/chord analysis off the caller's thread.

Architecture Overview
---------------------
::

    LoopSession.composite
        │
        ▼  AnalysisRequest.for_buffer(kind, buffer)   (copied samples)
    AnalysisDispatcher.submit(request)
        │
        ├─► ProcessPoolExecutor  (isolated worker, pickled copy)
        │        └─► run_request() ─► AnalysisResult | AnalysisError
        │
        └─► synchronous fallback when workers are disabled, unavailable
            or broken (same output, future already done)

Every submitted request resolves to exactly one response.  Failures are
delivered as :class:`AnalysisError` responses and never raised to the
caller.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import Future, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import numpy as np

from loopscope.config import AnalysisConfig, DispatcherConfig
from loopscope.core.analyzer import detect_chords, detect_key, detect_tempo
from loopscope.core.buffer import AudioBuffer

logger = logging.getLogger(__name__)


class AnalysisKind(enum.Enum):
    TEMPO = "tempo"
    KEY = "key"
    CHORDS = "chords"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class AnalysisRequest:
    """One analysis of one channel.  Owns a private copy of the samples."""

    kind: AnalysisKind
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        data = np.array(self.samples, dtype=np.float32, copy=True).reshape(-1)
        data.flags.writeable = False
        object.__setattr__(self, "kind", AnalysisKind(self.kind))
        object.__setattr__(self, "samples", data)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @classmethod
    def for_buffer(cls, kind: AnalysisKind, buffer: AudioBuffer) -> "AnalysisRequest":
        """Request for channel 0 of ``buffer``."""
        return cls(kind=kind, samples=buffer.channel(0), sample_rate=buffer.sample_rate)

    @classmethod
    def from_message(cls, message: dict) -> "AnalysisRequest":
        """
        Build from ``{"kind", "samples", "sampleRate"}``.

        Raises:
            KeyError: If a field is missing.
            ValueError: For an unknown kind.
        """
        return cls(
            kind=AnalysisKind(message["kind"]),
            samples=message["samples"],
            sample_rate=message["sampleRate"],
        )

    def to_message(self) -> dict:
        return {
            "kind": self.kind.value,
            "samples": self.samples.tolist(),
            "sampleRate": self.sample_rate,
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Successful response; ``result`` is a BPM, a KeyEstimate or chord events."""

    kind: AnalysisKind
    result: Any

    ok = True

    def to_message(self) -> dict:
        if self.kind is AnalysisKind.KEY:
            payload = self.result.label
        elif self.kind is AnalysisKind.CHORDS:
            payload = [event.to_dict() for event in self.result]
        else:
            payload = int(self.result)
        return {"kind": self.kind.value, "result": payload}


@dataclass(frozen=True)
class AnalysisError:
    """Failed response."""

    message: str
    kind: Optional[AnalysisKind] = None   # the request's kind, when known

    ok = False

    def to_message(self) -> dict:
        return {"kind": "error", "message": self.message}


AnalysisResponse = Union[AnalysisResult, AnalysisError]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def _tempo(request: AnalysisRequest, config: AnalysisConfig) -> int:
    return detect_tempo(request.samples, request.sample_rate, config.tempo)


def _key(request: AnalysisRequest, config: AnalysisConfig):
    return detect_key(request.samples, request.sample_rate, config.key)


def _chords(request: AnalysisRequest, config: AnalysisConfig) -> list:
    return detect_chords(request.samples, request.sample_rate, config.chords)


_HANDLERS: dict = {
    AnalysisKind.TEMPO: _tempo,
    AnalysisKind.KEY: _key,
    AnalysisKind.CHORDS: _chords,
}

if set(_HANDLERS) != set(AnalysisKind):
    raise RuntimeError("every AnalysisKind needs a handler")


def run_request(
    request: AnalysisRequest,
    config: Optional[AnalysisConfig] = None,
) -> AnalysisResponse:
    """
    Execute one request and wrap the outcome.

    Module-level so worker processes can unpickle it.  Any exception raised
    by the analysis becomes an :class:`AnalysisError`.
    """
    config = config or AnalysisConfig()
    try:
        if request.samples.size == 0:
            raise ValueError("cannot analyse an empty buffer")
        handler = _HANDLERS[request.kind]
        return AnalysisResult(kind=request.kind, result=handler(request, config))
    except Exception as exc:
        logger.debug("Analysis %s failed: %s", request.kind, exc)
        return AnalysisError(message=f"{request.kind.value} analysis failed: {exc}", kind=request.kind)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class AnalysisDispatcher:
    """
    Submits analysis requests to a worker process pool.

    Falls back to running on the caller's thread when workers are disabled
    in the config, the pool cannot be started, or it breaks mid-session.
    """

    def __init__(self, config: Optional[DispatcherConfig] = None):
        self.config = config or DispatcherConfig()
        self._executor: Optional[ProcessPoolExecutor] = None
        self._workers_failed = False

    @property
    def uses_workers(self) -> bool:
        return self.config.use_workers and not self._workers_failed

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, request: AnalysisRequest) -> Future:
        """
        Queue ``request``.

        Returns:
            Future resolving to an AnalysisResult or AnalysisError.  It
            never raises; with the synchronous fallback it is already done.
        """
        executor = self._get_executor()
        if executor is None:
            return self._run_sync(request)

        try:
            pool_future = executor.submit(run_request, request, self.config.analysis)
        except (BrokenProcessPool, RuntimeError, OSError) as exc:
            self._disable_workers(exc)
            return self._run_sync(request)

        outer: Future = Future()

        def _relay(done: Future) -> None:
            try:
                response = done.result()
            except Exception as exc:
                # Worker died or the request could not be pickled: redo it here.
                self._disable_workers(exc)
                response = run_request(request, self.config.analysis)
            outer.set_result(response)

        pool_future.add_done_callback(_relay)
        return outer

    def submit_message(self, message: dict) -> Future:
        """
        Like :meth:`submit`, for a request in message form.

        A malformed message resolves to an AnalysisError instead of raising.
        """
        try:
            request = AnalysisRequest.from_message(message)
        except (KeyError, ValueError, TypeError) as exc:
            logger.debug("Rejected analysis message: %r", exc)
            future: Future = Future()
            future.set_result(AnalysisError(message=f"invalid request: {exc!r}"))
            return future
        return self.submit(request)

    def dispatch(
        self,
        request: AnalysisRequest,
        callback: Callable[[AnalysisResponse], None],
    ) -> Future:
        """Submit and deliver the response to ``callback`` once it is ready."""
        future = self.submit(request)
        future.add_done_callback(lambda f: callback(f.result()))
        return future

    def analyze_all(self, buffer: AudioBuffer) -> dict:
        """
        Submit tempo, key and chord analysis of ``buffer``.

        Returns:
            Dict of AnalysisKind -> Future.  Completion order is unspecified.
        """
        return {
            kind: self.submit(AnalysisRequest.for_buffer(kind, buffer))
            for kind in AnalysisKind
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "AnalysisDispatcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_executor(self) -> Optional[ProcessPoolExecutor]:
        if not self.uses_workers:
            return None
        if self._executor is None:
            try:
                self._executor = ProcessPoolExecutor(max_workers=self.config.max_workers)
            except (OSError, ValueError, NotImplementedError) as exc:
                self._disable_workers(exc)
                return None
        return self._executor

    def _disable_workers(self, exc: BaseException) -> None:
        if not self._workers_failed:
            logger.warning("Analysis worker pool unavailable (%s); running synchronously", exc)
        self._workers_failed = True
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

    def _run_sync(self, request: AnalysisRequest) -> Future:
        future: Future = Future()
        future.set_result(run_request(request, self.config.analysis))
        return future
