"""
Loopscope analysis benchmark + parity validation.

Usage:
    python scripts/benchmark.py [--quick]

Modes:
    default  - 30 s loop, 3 warm-up + 5 timed runs per function
    --quick  - 8 s loop, 1 warm-up + 3 timed runs (CI-friendly)

Output: timing table + parity report printed to stdout.

Parity checks:
  * FFT magnitude spectrum against a direct O(N²) DFT on random frames
    (must agree to 1e-6 relative to the peak).
  * Full and fast tempo configs on a synthetic click track (within 3 and
    10 BPM of the true tempo respectively).
"""

import argparse
import os
import sys
import time
from typing import List

import numpy as np

# Make sure the installed package is on the path when run from repo root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from loopscope.config import AnalysisConfig, TempoConfig
from loopscope.core.analyzer import LoopAnalyzer, detect_chords, detect_key, detect_tempo
from loopscope.core.buffer import AudioBuffer
from loopscope.core.spectral import chromagram, magnitude_spectrum

_SEP = "─" * 72
SR = 44100


def _hdr(title: str) -> None:
    print(f"\n{_SEP}")
    print(f"  {title}")
    print(_SEP)


def _timeit(fn, *args, warmup: int = 2, runs: int = 5, **kwargs) -> List[float]:
    """Run fn(*args, **kwargs), discard warmup iterations, return timed samples."""
    for _ in range(warmup):
        fn(*args, **kwargs)
    times = []
    for _ in range(runs):
        t0 = time.perf_counter()
        fn(*args, **kwargs)
        times.append(time.perf_counter() - t0)
    return times


def _stats(times: List[float]) -> str:
    arr = np.array(times)
    return f"mean={arr.mean()*1000:.1f} ms  min={arr.min()*1000:.1f} ms  max={arr.max()*1000:.1f} ms"


def _test_loop(seconds: float, bpm: float = 100.0) -> np.ndarray:
    """C major triad with a click on every beat."""
    t = np.arange(int(SR * seconds)) / SR
    y = 0.2 * sum(np.sin(2 * np.pi * f * t) for f in (261.63, 329.63, 392.00))
    beat = int(round(60.0 * SR / bpm))
    burst = np.exp(-np.arange(400) / 60.0)
    for start in range(0, len(y) - len(burst), beat):
        y[start:start + len(burst)] += burst
    return y.astype(np.float32)


# ---------------------------------------------------------------------------
# Parity helpers
# ---------------------------------------------------------------------------

def _direct_dft_magnitude(x: np.ndarray) -> np.ndarray:
    n = len(x)
    k = np.arange(n // 2)[:, None]
    t = np.arange(n)[None, :]
    angle = 2 * np.pi * k * t / n
    re = (x * np.cos(angle)).sum(axis=1)
    im = -(x * np.sin(angle)).sum(axis=1)
    return np.sqrt(re ** 2 + im ** 2)


def _parity_spectrum(frame_size: int, n_frames: int = 4) -> float:
    """Worst peak-relative error between FFT and direct DFT magnitudes."""
    rng = np.random.RandomState(0)
    worst = 0.0
    for _ in range(n_frames):
        x = rng.randn(frame_size)
        fast = magnitude_spectrum(x)
        ref = _direct_dft_magnitude(x)
        worst = max(worst, float(np.max(np.abs(fast - ref)) / ref.max()))
    return worst


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(description="Loopscope analysis benchmark")
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Use an 8 s loop instead of 30 s for fast CI runs",
    )
    args = parser.parse_args()

    if args.quick:
        SECONDS = 8.0
        WARMUP, RUNS = 1, 3
        label = "8 s loop (quick mode)"
    else:
        SECONDS = 30.0
        WARMUP, RUNS = 3, 5
        label = "30 s loop (full mode)"

    print(f"\nLoopscope Analysis Benchmark  -  {label} @ {SR} Hz")
    print(f"Warm-up runs: {WARMUP}  |  Timed runs: {RUNS}")

    y = _test_loop(SECONDS)
    results = {}

    _hdr("1. detect_tempo (full)")
    t = _timeit(detect_tempo, y, SR, TempoConfig(), warmup=WARMUP, runs=RUNS)
    results["tempo_full"] = t
    print(f"  {_stats(t)}")

    _hdr("2. detect_tempo (fast)")
    t = _timeit(detect_tempo, y, SR, TempoConfig.fast(), warmup=WARMUP, runs=RUNS)
    results["tempo_fast"] = t
    print(f"  {_stats(t)}")

    _hdr("3. chromagram (4096 / hop 2048)")
    t = _timeit(chromagram, y, SR, warmup=WARMUP, runs=RUNS)
    results["chromagram"] = t
    print(f"  {_stats(t)}")

    _hdr("4. detect_key + detect_chords")
    results["key"] = _timeit(detect_key, y, SR, warmup=WARMUP, runs=RUNS)
    results["chords"] = _timeit(detect_chords, y, SR, warmup=WARMUP, runs=RUNS)
    print(f"  key:    {_stats(results['key'])}")
    print(f"  chords: {_stats(results['chords'])}")

    _hdr("5. LoopAnalyzer.analyze (full vs fast)")
    buf = AudioBuffer.from_mono(y, SR)
    results["analyze_full"] = _timeit(LoopAnalyzer().analyze, buf, warmup=1, runs=RUNS)
    results["analyze_fast"] = _timeit(
        LoopAnalyzer(AnalysisConfig.fast()).analyze, buf, warmup=1, runs=RUNS,
    )
    print(f"  full: {_stats(results['analyze_full'])}")
    print(f"  fast: {_stats(results['analyze_fast'])}")

    # ------------------------------------------------------------------
    # Parity validation
    # ------------------------------------------------------------------
    _hdr("Parity validation")
    SPECTRUM_TOL = 1e-6
    BPM_TOL = 3
    BPM_TOL_FAST = 10   # lag_step=5 at hop 2048 is coarse

    spec_err = _parity_spectrum(1024)
    clicks = _test_loop(SECONDS, bpm=100.0)
    bpm_full = detect_tempo(clicks, SR, TempoConfig())
    bpm_fast = detect_tempo(clicks, SR, TempoConfig.fast())

    checks = [
        ("magnitude_spectrum", f"rel err={spec_err:.2e}", spec_err <= SPECTRUM_TOL),
        ("tempo (full)", f"{bpm_full} BPM (true 100)", abs(bpm_full - 100) <= BPM_TOL),
        ("tempo (fast)", f"{bpm_fast} BPM (true 100)", abs(bpm_fast - 100) <= BPM_TOL_FAST),
    ]
    for name, detail, ok in checks:
        print(f"  {name:<20}  {detail:<28}  [{'PASS' if ok else 'FAIL'}]")

    if all(ok for _, _, ok in checks):
        print("\n  All parity checks PASSED.")
    else:
        print("\n  !! PARITY FAILURES DETECTED !!")
        sys.exit(1)

    # ------------------------------------------------------------------
    # Summary table
    # ------------------------------------------------------------------
    _hdr("Summary")
    rows = [(name, f"{np.mean(times)*1000:.1f}") for name, times in results.items()]
    name_w = max(len(r[0]) for r in rows) + 2
    print(f"  {'Function':<{name_w}} Time (ms, mean)")
    print(f"  {'-'*name_w} ---------------")
    for name, val in rows:
        print(f"  {name:<{name_w}} {val}")

    print(f"\n{_SEP}\n")


if __name__ == "__main__":
    main()
