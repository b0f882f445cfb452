import math

import numpy as np
import pytest

from sointupy.audio import AudioBuffer
from sointupy.broker import Broker, MsgToDetector
from sointupy.detector import (
    Detector,
    LoudnessDetector,
    LoudnessType,
    OversamplerState,
    PeakDetector,
    PeakType,
    WeightingType,
)


def _sine(amplitude, frames=4410, freq=1000.0):
    t = np.arange(frames) / 44100
    s = amplitude * np.sin(2 * np.pi * freq * t)
    return np.stack([s, s], axis=1)


def test_oversample_impulse_gives_coefficients():
    state = OversamplerState()
    x = np.zeros(12)
    x[0] = 1.0
    y = state.oversample(x)
    assert len(y) == 48
    assert y[6 * 4 + 0] == pytest.approx(0.97216796875)
    assert y[0 * 4 + 3] == pytest.approx(-0.00830078125)


def test_oversample_of_silence_is_silent():
    y = OversamplerState().oversample(np.zeros(20))
    assert len(y) == 80
    assert not np.any(y)


def test_oversample_in_pieces_matches_whole():
    rng = np.random.default_rng(1)
    x = rng.uniform(-1, 1, 30)
    whole = OversamplerState().oversample(x)
    state = OversamplerState()
    pieces = np.concatenate([state.oversample(x[:5]), state.oversample(x[5:])])
    assert np.allclose(whole, pieces)


def test_silence_has_minus_infinite_loudness():
    result = LoudnessDetector().update(np.zeros((4410, 2)))
    assert result[LoudnessType.MOMENTARY] == -math.inf
    assert result[LoudnessType.INTEGRATED] == -math.inf


def test_louder_signal_is_louder():
    quiet = LoudnessDetector().update(_sine(0.1))
    loud = LoudnessDetector().update(_sine(0.8))
    assert loud[LoudnessType.MOMENTARY] > quiet[LoudnessType.MOMENTARY]


def test_steady_signal_windows_agree():
    detector = LoudnessDetector(WeightingType.NONE)
    chunk = np.full((100, 2), 0.5)
    for _ in range(30):
        result = detector.update(chunk)
    assert result[LoudnessType.MOMENTARY] == pytest.approx(result[LoudnessType.SHORT_TERM])
    assert result[LoudnessType.MAX_MOMENTARY] == pytest.approx(result[LoudnessType.MOMENTARY])
    assert result[LoudnessType.INTEGRATED] == pytest.approx(result[LoudnessType.MOMENTARY])


def test_integrated_loudness_only_after_ten_blocks():
    detector = LoudnessDetector()
    first = detector.update(_sine(0.5))
    assert first[LoudnessType.INTEGRATED] == -math.inf
    for _ in range(9):
        last = detector.update(_sine(0.5))
    assert math.isfinite(last[LoudnessType.INTEGRATED])


def test_loudness_reset_forgets_maximum():
    detector = LoudnessDetector()
    detector.update(_sine(0.5))
    detector.reset()
    result = detector.update(np.zeros((4410, 2)))
    assert result[LoudnessType.MAX_MOMENTARY] == -math.inf


def test_peak_integrated_is_at_least_window_peak():
    detector = PeakDetector()
    detector.update(_sine(0.9))
    peaks = detector.update(_sine(0.2))
    assert peaks[PeakType.INTEGRATED][0] >= peaks[0][0]
    assert peaks[PeakType.INTEGRATED][0] == pytest.approx(peaks[PeakType.INTEGRATED][1])


def test_peak_of_silence_and_reset():
    detector = PeakDetector()
    detector.update(_sine(0.9))
    detector.reset()
    peaks = detector.update(np.zeros((100, 2)))
    assert peaks[PeakType.INTEGRATED][0] == -math.inf


def _drain(q):
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items


def test_run_splits_audio_into_chunks_and_returns_buffer():
    broker = Broker()
    detector = Detector(broker)
    buf = AudioBuffer(_sine(0.5, frames=4410 * 2))
    broker.to_detector.put(MsgToDetector(data=buf))
    broker.to_detector.put(MsgToDetector(quit=True))
    detector.run()
    results = _drain(broker.to_model)
    assert len(results) == 2
    assert all(m.has_detector_result for m in results)
    assert broker.get_audio_buffer() is buf
    assert len(buf) == 0


def test_run_joins_partial_buffers():
    broker = Broker()
    detector = Detector(broker)
    broker.to_detector.put(MsgToDetector(data=AudioBuffer(_sine(0.5, frames=3000))))
    broker.to_detector.put(MsgToDetector(data=AudioBuffer(_sine(0.5, frames=1410))))
    broker.to_detector.put(MsgToDetector(quit=True))
    detector.run()
    assert len(_drain(broker.to_model)) == 1


def test_run_executes_callables_and_close_stops():
    broker = Broker()
    detector = Detector(broker)
    calls = []
    broker.to_detector.put(MsgToDetector(data=lambda: calls.append(1)))
    detector.close()
    detector.run()
    assert calls == [1]
    assert broker.to_detector.empty()