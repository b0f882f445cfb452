"""Loudness (EBU R 128 style) and true peak measurement of rendered audio."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Sequence, Tuple

import numpy as np

from sointupy.audio import AudioBuffer
from sointupy.broker import Broker, MsgToDetector, MsgToModel, try_send

CHUNK_LENGTH = 4410  # 100 ms at 44100 Hz
MAX_INTEGRATED_DATA = 10 * 60 * 60  # one hour of 100 ms blocks


class WeightingType(IntEnum):
    K = 0
    A = 1
    C = 2
    NONE = 3


class LoudnessType(IntEnum):
    MOMENTARY = 0
    SHORT_TERM = 1
    MAX_MOMENTARY = 2
    MAX_SHORT_TERM = 3
    INTEGRATED = 4


class PeakType(IntEnum):
    MOMENTARY = 0
    SHORT_TERM = 1
    INTEGRATED = 2


NUM_LOUDNESS_TYPES = len(LoudnessType)
NUM_PEAK_TYPES = len(PeakType)


@dataclass(frozen=True)
class DetectorResult:
    """Loudness values in dB, and peak values in dB indexed [row][column]."""

    loudness: Tuple[float, ...]
    peaks: Tuple[Tuple[float, float], ...]


@dataclass(frozen=True)
class _Weighting:
    coeffs: Tuple[Tuple[float, float, float, float, float], ...]  # b0, b1, b2, a1, a2
    offset: float


WEIGHTINGS = {
    WeightingType.A: _Weighting((
        (1, 2, 1, -0.1405360824207108, 0.0049375976155402),
        (1, -2, 1, -1.8849012174287920, 0.8864214718161675),
        (1, -2, 1, -1.9941388812663283, 0.9941474694445309),
    ), 0.0),
    WeightingType.C: _Weighting((
        (1, 2, 1, -0.1405360824207108, 0.0049375976155402),
        (1, -2, 1, -1.9941388812663283, 0.9941474694445309),
    ), 0.0),
    # the offset makes up for K-weighting having slightly above unity gain at 1 kHz
    WeightingType.K: _Weighting((
        (1.5308412300503476, -2.6509799951547293, 1.1690790799215869,
         -1.6636551132560204, 0.7125954280732254),
        (0.9995600645425144, -1.9991201290850289, 0.9995600645425144,
         -1.9891696736297957, 0.9891990357870394),
    ), -0.691),
    WeightingType.NONE: _Weighting((), 0.0),
}

# 4x oversampling polyphase filter of ITU-R BS.1770.
OVERSAMPLING_COEFFS = np.array([
    [0.0017089843750, 0.0109863281250, -0.0196533203125, 0.0332031250000,
     -0.0594482421875, 0.1373291015625, 0.9721679687500, -0.1022949218750,
     0.0476074218750, -0.0266113281250, 0.0148925781250, -0.0083007812500],
    [-0.0291748046875, 0.0292968750000, -0.0517578125000, 0.0891113281250,
     -0.1665039062500, 0.4650878906250, 0.7797851562500, -0.2003173828125,
     0.1015625000000, -0.0582275390625, 0.0330810546875, -0.0189208984375],
    [-0.0189208984375, 0.0330810546875, -0.058227539062, 0.1015625000000,
     -0.200317382812, 0.7797851562500, 0.4650878906250, -0.166503906250,
     0.0891113281250, -0.051757812500, 0.0292968750000, -0.0291748046875],
    [-0.0083007812500, 0.0148925781250, -0.0266113281250, 0.0476074218750,
     -0.1022949218750, 0.9721679687500, 0.1373291015625, -0.0594482421875,
     0.0332031250000, -0.0196533203125, 0.0109863281250, 0.0017089843750],
])
_HISTORY = OVERSAMPLING_COEFFS.shape[1] - 1


def _frames(chunk) -> np.ndarray:
    data = chunk.data if isinstance(chunk, AudioBuffer) else chunk
    return np.asarray(data, dtype=np.float64).reshape(-1, 2)


def _log10(value: float) -> float:
    if value == 0:
        return -math.inf
    if value < 0 or math.isnan(value):
        return math.nan
    return math.log10(value)


def _power_to_loudness(power: float, offset: float) -> float:
    return 10 * _log10(power) + offset


def _loudness_to_power(loudness: float, offset: float) -> float:
    return 10 ** ((loudness - offset) / 10)


def _mean(values) -> float:
    return float(np.mean(values)) if len(values) else 0.0


class _RingBuffer:
    """Fixed-size window that overwrites its oldest value."""

    def __init__(self, size: int) -> None:
        self.buffer = np.zeros(size)
        self.cursor = 0

    def write(self, value: float) -> None:
        self.buffer[self.cursor] = value
        self.cursor = (self.cursor + 1) % len(self.buffer)

    def reset(self) -> None:
        self.buffer[:] = 0
        self.cursor = 0


def _biquad(samples: np.ndarray, coeff: Sequence[float], state: List[float]) -> np.ndarray:
    b0, b1, b2, a1, a2 = coeff
    x1, x2, y1, y2 = state
    out = []
    for x in samples.tolist():
        y = b0 * x + b1 * x1 + b2 * x2 - a1 * y1 - a2 * y2
        x2, x1 = x1, x
        y2, y1 = y1, y
        out.append(y)
    state[:] = [x1, x2, y1, y2]
    return np.array(out, dtype=np.float64)


class OversamplerState:
    """4x oversampler that keeps the tail of the previous input as history."""

    def __init__(self) -> None:
        self.history = np.zeros(_HISTORY)

    def oversample(self, x) -> np.ndarray:
        """Return the input oversampled four times (length 4 * len(x))."""
        x = np.asarray(x, dtype=np.float64)
        extended = np.concatenate((self.history, x))
        y = np.zeros(4 * len(x))
        for phase, coeffs in enumerate(OVERSAMPLING_COEFFS):
            y[phase::4] = np.convolve(extended, coeffs, mode="valid")
        self.history = extended[-_HISTORY:].copy()
        return y

    def reset(self) -> None:
        self.history = np.zeros(_HISTORY)


class LoudnessDetector:
    """Momentary, short-term, maximum and integrated loudness of 100 ms chunks."""

    def __init__(self, weighting: WeightingType = WeightingType.K) -> None:
        self.weighting = WEIGHTINGS[WeightingType(weighting)]
        self.states = [[[0.0] * 4 for _ in range(3)] for _ in range(2)]
        self.powers = (_RingBuffer(4), _RingBuffer(30))  # 400 ms and 3 s windows
        self.averaged_powers: Tuple[List[float], List[float]] = ([], [])
        self.max_powers = [0.0, 0.0]
        self.integrated_power = 0.0

    def update(self, chunk) -> Tuple[float, ...]:
        """Analyse a chunk and return the loudness values, indexed by LoudnessType."""
        frames = _frames(chunk)
        offset = self.weighting.offset
        total = 0.0
        for chn in range(2):
            signal = frames[:, chn]
            for stage, coeff in enumerate(self.weighting.coeffs):
                signal = _biquad(signal, coeff, self.states[chn][stage])
            total += _mean(signal * signal)
        ret = [0.0] * NUM_LOUDNESS_TYPES
        for i, window in enumerate(self.powers):
            window.write(total)
            mean = _mean(window.buffer)
            if len(self.averaged_powers[i]) < MAX_INTEGRATED_DATA:
                self.averaged_powers[i].append(mean)
            self.max_powers[i] = max(self.max_powers[i], mean)
            ret[LoudnessType.MOMENTARY + i] = _power_to_loudness(mean, offset)
            ret[LoudnessType.MAX_MOMENTARY + i] = _power_to_loudness(self.max_powers[i], offset)
        if len(self.averaged_powers[0]) % 10 == 0:
            absolute = _loudness_to_power(-70, offset)
            gated = [p for p in self.averaged_powers[0] if p > absolute]
            if gated:
                relative = _mean(gated) / 10
                gated_again = [p for p in gated if p > relative]
                if gated_again:
                    self.integrated_power = _mean(gated_again)
        ret[LoudnessType.INTEGRATED] = _power_to_loudness(self.integrated_power, offset)
        return tuple(ret)

    def reset(self) -> None:
        """Forget the windows, maxima and integrated data (filter state is kept)."""
        for i, window in enumerate(self.powers):
            window.reset()
            self.averaged_powers[i].clear()
            self.max_powers[i] = 0.0
        self.integrated_power = 0.0


class PeakDetector:
    """True peak detection over short windows and the whole song."""

    def __init__(self, oversampling: bool = True) -> None:
        self.oversampling = oversampling
        self.states = (OversamplerState(), OversamplerState())
        self.windows = (
            (_RingBuffer(4), _RingBuffer(30)),
            (_RingBuffer(4), _RingBuffer(30)),
        )
        self.max_power = [0.0, 0.0]

    def update(self, chunk) -> Tuple[Tuple[float, float], ...]:
        """Analyse a chunk and return the peak values in dB."""
        frames = _frames(chunk)
        ret = [[0.0, 0.0] for _ in range(NUM_PEAK_TYPES)]
        for chn in range(2):
            oversampled = self.states[chn].oversample(frames[:, chn])
            peak = float(np.max(np.abs(oversampled), initial=0.0))
            for i, row in enumerate(self.windows):
                window = row[chn]
                window.write(peak)
                ret[chn][PeakType.MOMENTARY + i] = 10 * _log10(float(np.max(window.buffer)))
            self.max_power[chn] = max(self.max_power[chn], peak)
            ret[PeakType.INTEGRATED][chn] = 10 * _log10(self.max_power[chn])
        return tuple((a, b) for a, b in ret)

    def reset(self) -> None:
        """Clear the oversampler history, the windows and the maxima."""
        for chn in range(2):
            self.states[chn].reset()
            for window in self.windows[chn]:
                window.reset()
            self.max_power[chn] = 0.0


class Detector:
    """Consumes audio from the broker and reports loudness and peaks to the model."""

    def __init__(self, broker: Broker) -> None:
        self.broker = broker
        self.loudness_detector = LoudnessDetector(WeightingType.K)
        self.peak_detector = PeakDetector(True)

    def _analyse(self, chunk: np.ndarray) -> None:
        result = DetectorResult(
            loudness=self.loudness_detector.update(chunk),
            peaks=self.peak_detector.update(chunk),
        )
        try_send(self.broker.to_model, MsgToModel(has_detector_result=True, detector_result=result))

    def run(self) -> None:
        """Process detector messages until a quit message arrives."""
        history = np.zeros((0, 2), dtype=np.float32)
        while True:
            msg = self.broker.to_detector.get()
            if msg.reset:
                self.loudness_detector.reset()
                self.peak_detector.reset()
            if msg.quit:
                return
            data = msg.data
            if isinstance(data, AudioBuffer):
                buf = data.data
                while True:
                    if 0 < len(history) < CHUNK_LENGTH:
                        taken = min(len(buf), CHUNK_LENGTH - len(history))
                        history = np.concatenate((history, buf[:taken]))
                        if len(history) < CHUNK_LENGTH:
                            break
                        chunk = history
                        buf = buf[taken:]
                    elif len(buf) >= CHUNK_LENGTH:
                        chunk = buf[:CHUNK_LENGTH]
                        buf = buf[CHUNK_LENGTH:]
                    else:
                        history = np.array(buf, dtype=np.float32).reshape(-1, 2)
                        break
                    self._analyse(chunk)
                self.broker.put_audio_buffer(data)
            elif callable(data):
                data()

    def close(self) -> None:
        """Ask run() to return."""
        self.broker.to_detector.put(MsgToDetector(quit=True))