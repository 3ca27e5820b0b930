"""
Loop analysis tests.

Covers:
  energy envelope
  autocorrelation tempo (range, determinism, fallback, fast mode)
  key estimation + scale notes
  chord identification and segmentation
  LoopAnalyzer end to end
"""

import numpy as np
import pytest

from loopscope.config import NOTE_NAMES, AnalysisConfig, ChordConfig, KeyConfig, TempoConfig
from loopscope.core.analyzer import (
    ChordEvent,
    KeyEstimate,
    LoopAnalysis,
    LoopAnalyzer,
    best_autocorrelation_lag,
    bpm_to_lag,
    chord_at,
    detect_chords,
    detect_key,
    detect_tempo,
    energy_envelope,
    estimate_key,
    estimate_tempo,
    fallback_tempo,
    identify_chord,
    parse_key_label,
    scale_notes,
)
from loopscope.core.buffer import AudioBuffer
from loopscope.errors import InsufficientData

from conftest import A4, C4, DS4, E4, G4, TEST_SR, tone


def chroma_of(*classes) -> np.ndarray:
    chroma = np.zeros(12)
    chroma[list(classes)] = 1.0
    return chroma


# ---------------------------------------------------------------------------
# Energy envelope
# ---------------------------------------------------------------------------

class TestEnergyEnvelope:
    def test_mean_abs_per_hop(self):
        y = np.array([1.0, -1.0, 0.5, -0.5, 2.0])
        np.testing.assert_allclose(energy_envelope(y, hop_size=2), [1.0, 0.5, 2.0])

    def test_length_is_ceil(self):
        assert len(energy_envelope(np.ones(1025), hop_size=512)) == 3

    def test_non_negative(self, mixed_signal):
        y, _ = mixed_signal
        assert np.all(energy_envelope(y) >= 0.0)

    def test_empty(self):
        assert energy_envelope(np.zeros(0)).size == 0

    def test_invalid_hop(self):
        with pytest.raises(ValueError):
            energy_envelope(np.ones(10), hop_size=0)


# ---------------------------------------------------------------------------
# Tempo
# ---------------------------------------------------------------------------

class TestTempo:
    def test_click_track_bpm(self, click_track):
        y, sr = click_track
        # One spike every 22 hops: 60 * 22050 / (512 * 22) = 117.45
        assert detect_tempo(y, sr) == 117

    def test_pure_sine_in_range(self, pure_sine):
        y, sr = pure_sine
        assert 60 <= detect_tempo(y, sr) <= 180

    def test_pure_sine_at_44100(self):
        # hop 512 at 44100 Hz searches lags [29, 86).
        y = np.sin(2 * np.pi * 440 * np.arange(2 * 44100) / 44100)
        assert 60 <= detect_tempo(y, 44100, TempoConfig(hop_size=512)) <= 180

    def test_deterministic(self, mixed_signal):
        y, sr = mixed_signal
        assert detect_tempo(y, sr) == detect_tempo(y.copy(), sr)

    def test_random_noise_in_range(self):
        rng = np.random.default_rng(7)
        for _ in range(3):
            y = rng.uniform(-1, 1, TEST_SR * 2).astype(np.float32)
            assert 60 <= detect_tempo(y, TEST_SR) <= 180

    def test_short_input_falls_back(self):
        assert detect_tempo(np.ones(100), TEST_SR) == 120

    def test_silence_in_range(self):
        assert 60 <= detect_tempo(np.zeros(TEST_SR * 2), TEST_SR) <= 180

    def test_fast_mode_in_range(self, mixed_signal):
        y, sr = mixed_signal
        assert 60 <= detect_tempo(y, sr, TempoConfig.fast()) <= 180

    def test_prefix_limits_analysis(self, click_track):
        y, sr = click_track
        config = TempoConfig(max_seconds=0.01)
        # 220 samples is a single hop, too short for any lag.
        assert detect_tempo(y, sr, config) == fallback_tempo()

    def test_bpm_to_lag(self):
        assert bpm_to_lag(180, 22050, 512) == 14
        assert bpm_to_lag(60, 22050, 512) == 43

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            estimate_tempo(np.ones(100), TEST_SR, min_bpm=180, max_bpm=60)

    def test_invalid_steps(self):
        with pytest.raises(ValueError):
            estimate_tempo(np.ones(100), TEST_SR, lag_step=0)

    def test_ties_pick_lowest_lag(self):
        # Constant envelope scores every lag equally.
        assert best_autocorrelation_lag(np.ones(100), 14, 43) == 14

    def test_short_envelope_raises_insufficient_data(self):
        with pytest.raises(InsufficientData):
            best_autocorrelation_lag(np.ones(10), 14, 43)


# ---------------------------------------------------------------------------
# Key
# ---------------------------------------------------------------------------

class TestKey:
    def test_major_third_wins(self):
        chroma = np.zeros(12)
        chroma[0] = 1.0
        chroma[4] = chroma[7] = 0.8
        key = estimate_key(chroma)
        assert key == KeyEstimate(root_index=0, mode="Major")
        assert key.label == "C Major"

    def test_minor_third(self):
        chroma = np.zeros(12)
        chroma[9] = 1.0
        chroma[0] = 0.7   # minor third of A
        chroma[4] = 0.7
        assert estimate_key(chroma).label == "A Minor"

    def test_equal_thirds_are_minor(self):
        chroma = np.zeros(12)
        chroma[2] = 1.0
        chroma[5] = chroma[6] = 0.5
        assert estimate_key(chroma).mode == "Minor"

    def test_all_zero(self):
        assert estimate_key(np.zeros(12)).label == "C Minor"

    def test_wrong_shape(self):
        with pytest.raises(ValueError):
            estimate_key(np.zeros(11))

    def test_c_major_audio(self):
        y = tone([C4, E4, G4], 3.0, amps=[0.5, 0.3, 0.3])
        assert detect_key(y, TEST_SR).label == "C Major"

    def test_a_minor_audio(self):
        y = tone([A4, 2 * C4, 2 * E4], 3.0, amps=[0.5, 0.3, 0.3])
        assert detect_key(y, TEST_SR).label == "A Minor"

    def test_label_format(self, mixed_signal):
        y, sr = mixed_signal
        root, mode = detect_key(y, sr).label.split()
        assert root in NOTE_NAMES
        assert mode in ("Major", "Minor")

    def test_relative_major(self):
        assert KeyEstimate(root_index=9, mode="Minor").relative_major == "C"
        assert KeyEstimate(root_index=7, mode="Major").relative_major == "G"

    def test_parse_label_round_trip(self):
        key = KeyEstimate(root_index=6, mode="Minor")
        assert parse_key_label(str(key)) == key

    def test_parse_label_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_key_label("H Dorian")

    def test_key_prefix_only(self):
        # Five seconds of C major then five of A: only the prefix counts.
        y = np.concatenate([
            tone([C4, E4, G4], 5.0, amps=[0.5, 0.3, 0.3]),
            tone([A4], 5.0, amps=[0.9]),
        ])
        assert detect_key(y, TEST_SR, KeyConfig(max_seconds=5.0)).root_name == "C"


class TestScaleNotes:
    def test_c_major(self):
        assert scale_notes("C", "Major") == ["C", "D", "E", "F", "G", "A", "B"]

    def test_a_minor(self):
        assert scale_notes("A", "Minor") == ["A", "B", "C", "D", "E", "F", "G"]

    def test_wraps_around(self):
        assert scale_notes("F#", "Major") == ["F#", "G#", "A#", "B", "C#", "D#", "F"]

    def test_unknown_root(self):
        with pytest.raises(ValueError):
            scale_notes("Hb", "Major")

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            scale_notes("C", "Lydian")


# ---------------------------------------------------------------------------
# Chords
# ---------------------------------------------------------------------------

class TestIdentifyChord:
    @pytest.mark.parametrize("classes, label", [
        ((0, 4, 7), "C"),
        ((0, 3, 7), "Cm"),
        ((0, 4, 10), "C7"),
        ((0, 4, 11), "Cmaj7"),
        ((0, 3, 10), "Cm7"),
        ((2, 6, 9), "D"),
        # Lowest class is the root, so G minor (2, 7, 10) reads as a bare "D".
        ((7, 10, 2), "D"),
    ])
    def test_templates(self, classes, label):
        assert identify_chord(chroma_of(*classes)) == label

    def test_no_template_returns_root(self):
        assert identify_chord(chroma_of(0, 1, 2)) == "C"

    def test_ties_prefer_lower_class(self):
        chroma = chroma_of(4, 7, 11) * 0.5
        chroma[0] = 0.5
        # C, E, G, B all equal: the three lowest are kept.
        assert identify_chord(chroma) == "C"


class TestDetectChords:
    def test_sustained_chord_collapses(self, c_major_chord):
        y, sr = c_major_chord
        assert detect_chords(y, sr) == [ChordEvent(time_seconds=0.0, label="C")]

    def test_chord_change(self):
        y = np.concatenate([
            tone([C4, E4, G4], 1.0),
            tone([C4, DS4, G4], 1.0),
        ])
        events = detect_chords(y, TEST_SR)
        assert [e.label for e in events] == ["C", "Cm"]
        assert [e.time_seconds for e in events] == [0.0, 1.0]

    def test_times_strictly_increasing(self, mixed_signal):
        y, sr = mixed_signal
        times = [e.time_seconds for e in detect_chords(y, sr, ChordConfig(window_seconds=0.5))]
        assert all(a < b for a, b in zip(times, times[1:]))

    def test_silence_gives_default_event(self):
        assert detect_chords(np.zeros(TEST_SR * 2), TEST_SR) == [
            ChordEvent(time_seconds=0.0, label="C")
        ]

    def test_short_input_gives_default_event(self):
        events = detect_chords(tone([A4], 0.2), TEST_SR)
        assert events == [ChordEvent(time_seconds=0.0, label="C")]

    def test_short_tail_is_dropped(self):
        y = np.concatenate([
            tone([C4, E4, G4], 1.0),
            tone([C4, DS4, G4], 0.4),
        ])
        assert [e.label for e in detect_chords(y, TEST_SR)] == ["C"]

    def test_empty_window_rejected(self):
        with pytest.raises(ValueError):
            detect_chords(np.ones(100), TEST_SR, ChordConfig(window_seconds=0.0))


class TestChordAt:
    EVENTS = [
        ChordEvent(time_seconds=0.0, label="C"),
        ChordEvent(time_seconds=1.0, label="Am"),
        ChordEvent(time_seconds=2.5, label="F"),
    ]

    @pytest.mark.parametrize("seconds, label", [
        (0.0, "C"),
        (0.99, "C"),
        (1.0, "Am"),
        (2.4, "Am"),
        (2.5, "F"),
        (30.0, "F"),
    ])
    def test_last_event_at_or_before(self, seconds, label):
        assert chord_at(self.EVENTS, seconds).label == label

    def test_before_first_event(self):
        assert chord_at([ChordEvent(time_seconds=1.0, label="G")], 0.5) is None

    def test_no_events(self):
        assert chord_at([], 1.0) is None

    def test_detected_timeline(self):
        y = np.concatenate([
            tone([C4, E4, G4], 1.0),
            tone([C4, DS4, G4], 1.0),
        ])
        events = detect_chords(y, TEST_SR)
        assert chord_at(events, 0.5).label == "C"
        assert chord_at(events, 1.5).label == "Cm"

    def test_event_serialization(self):
        event = ChordEvent(time_seconds=2.0, label="Am")
        assert event.time_label == "2.0s"
        assert event.to_dict() == {"time_seconds": 2.0, "label": "Am"}


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class TestLoopAnalyzer:
    def test_analyze(self, c_major_chord):
        y, sr = c_major_chord
        analysis = LoopAnalyzer().analyze(AudioBuffer.from_mono(y, sr))
        assert isinstance(analysis, LoopAnalysis)
        assert 60 <= analysis.bpm <= 180
        assert analysis.chords[0].label == "C"
        assert analysis.duration == pytest.approx(2.0)
        assert analysis.sample_rate == sr

    def test_reads_channel_zero(self, c_major_chord):
        y, sr = c_major_chord
        stereo = AudioBuffer.from_channels([y, np.zeros_like(y)], sr)
        mono = AudioBuffer.from_mono(y, sr)
        analyzer = LoopAnalyzer()
        assert analyzer.key(stereo) == analyzer.key(mono)
        assert analyzer.chords(stereo) == analyzer.chords(mono)

    def test_fast_config(self, mixed_signal):
        y, sr = mixed_signal
        analysis = LoopAnalyzer(AnalysisConfig.fast()).analyze(AudioBuffer.from_mono(y, sr))
        assert 60 <= analysis.bpm <= 180
