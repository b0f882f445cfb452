"""Instruments, units and the catalogue of unit types a patch is built from."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional, Sequence, Tuple

DisplayFunc = Callable[[int], Tuple[str, str]]

SAMPLE_RATE = 44100


class OscillatorType(IntEnum):
    """Values of the "type" parameter of an oscillator unit."""

    SINE = 0
    TRISAW = 1
    PULSE = 2
    GATE = 3
    SAMPLE = 4


def _format_float(value: float) -> str:
    """Shortest decimal text of a float, never in exponent form."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _format_fixed(value: float, digits: int) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return f"{value:.{digits}f}"


def _log10(value: float) -> float:
    if value == 0:
        return -math.inf
    if math.isinf(value):
        return math.inf
    return math.log10(value)


def _ln(value: float) -> float:
    return -math.inf if value == 0 else math.log(value)


def _divide(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return math.copysign(math.inf, numerator) if numerator else math.nan
    return numerator / denominator


def _engineering_time(seconds: float) -> Tuple[str, str]:
    if seconds < 1e-3:
        return f"{seconds * 1e6:.2f}", "us"
    if seconds < 1:
        return f"{seconds * 1e3:.2f}", "ms"
    return f"{seconds:.2f}", "s"


def _choices(names: Sequence[str]) -> DisplayFunc:
    def display(value: int) -> Tuple[str, str]:
        if 0 <= value < len(names):
            return names[value], ""
        return "???", ""

    return display


def _filter_frequency(value: int) -> Tuple[str, str]:
    # The singularity of the state-variable filter with zero resonance lies at
    # f = p / (2*pi*T), where p is the squared frequency parameter.
    freq = value / 128
    p = freq * freq
    hertz = SAMPLE_RATE * p / math.pi / 2
    return _format_fixed(hertz, 0), "Hz"


def _compressor_time(value: int) -> Tuple[str, str]:
    alpha = 2 ** (-24 * value / 128)  # smoothing factor of a first order IIR
    seconds = -1 / (SAMPLE_RATE * _ln(1 - alpha))
    return _engineering_time(seconds)


def _oscillator_transpose(value: int) -> Tuple[str, str]:
    relative = value - 64
    octaves = int(relative / 12)
    semitones = relative - octaves * 12
    if semitones == 0:
        return str(octaves), "oct"
    return str(semitones), "st"


def _envelope_time(value: int) -> Tuple[str, str]:
    return _engineering_time(2 ** (24 * value / 128) / SAMPLE_RATE)


CHANNEL_NAMES = (
    "left", "right", "aux1 left", "aux1 right",
    "aux2 left", "aux2 right", "aux3 left", "aux3 right",
)
NOTE_TRACKING_NAMES = ("fixed", "pitch", "BPM")
OSCILLATOR_TYPE_NAMES = ("sine", "trisaw", "pulse", "gate", "sample")

MAX_INT32 = 2**31 - 1


@dataclass(frozen=True)
class UnitParameter:
    """Describes one parameter that a unit type takes."""

    name: str
    min_value: int
    max_value: int
    can_set: bool
    can_modulate: bool
    display_func: Optional[DisplayFunc] = field(default=None, compare=False, repr=False)

    def display(self, value: int) -> Tuple[str, str]:
        """Return the human readable value and its unit for a raw value."""
        if self.display_func is None:
            return str(value), ""
        return self.display_func(value)


def _p(name, low, high, can_set=True, can_modulate=True, display=None) -> UnitParameter:
    return UnitParameter(name, low, high, can_set, can_modulate, display)


def _stereo() -> UnitParameter:
    return _p("stereo", 0, 1, can_modulate=False)


def _flag(name: str) -> UnitParameter:
    return _p(name, 0, 1, can_modulate=False)


UNIT_TYPES: Mapping[str, Tuple[UnitParameter, ...]] = MappingProxyType({
    "add": (_stereo(),),
    "addp": (_stereo(),),
    "pop": (_stereo(),),
    "loadnote": (_stereo(),),
    "mul": (_stereo(),),
    "mulp": (_stereo(),),
    "push": (_stereo(),),
    "xch": (_stereo(),),
    "distort": (_stereo(), _p("drive", 0, 128)),
    "hold": (_stereo(), _p("holdfreq", 0, 128)),
    "crush": (
        _stereo(),
        _p("resolution", 0, 128, display=lambda v: (_format_float(24 * v / 128), "bits")),
    ),
    "gain": (_stereo(), _p("gain", 0, 128)),
    "invgain": (_stereo(), _p("invgain", 0, 128)),
    "dbgain": (
        _stereo(),
        _p("decibels", 0, 128, display=lambda v: (_format_float(40 * (v / 64 - 1)), "dB")),
    ),
    "filter": (
        _stereo(),
        _p("frequency", 0, 128, display=_filter_frequency),
        _p("resonance", 0, 128),
        _flag("lowpass"),
        _flag("bandpass"),
        _flag("highpass"),
        _flag("negbandpass"),
        _flag("neghighpass"),
    ),
    "clip": (_stereo(),),
    "pan": (_stereo(), _p("panning", 0, 128)),
    "delay": (
        _stereo(),
        _p("pregain", 0, 128),
        _p("dry", 0, 128),
        _p("feedback", 0, 128),
        _p("damp", 0, 128),
        _p("notetracking", 0, 2, can_modulate=False, display=_choices(NOTE_TRACKING_NAMES)),
        _p("delaytime", 0, -1, can_set=False),
    ),
    "compressor": (
        _stereo(),
        _p("attack", 0, 128, display=_compressor_time),
        _p("release", 0, 128, display=_compressor_time),
        _p("invgain", 0, 128,
           display=lambda v: (_format_fixed(20 * _log10(_divide(128, v)), 2), "dB")),
        _p("threshold", 0, 128,
           display=lambda v: (_format_fixed(20 * _log10(v / 128), 2), "dB")),
        _p("ratio", 0, 128, display=lambda v: (_format_float(1 - v / 128), "")),
    ),
    "speed": (),
    "out": (_stereo(), _p("gain", 0, 128)),
    "outaux": (_stereo(), _p("outgain", 0, 128), _p("auxgain", 0, 128)),
    "aux": (
        _stereo(),
        _p("gain", 0, 128),
        _p("channel", 0, 6, can_modulate=False, display=_choices(CHANNEL_NAMES)),
    ),
    "send": (
        _stereo(),
        _p("amount", 0, 128, display=lambda v: (_format_float(v / 64 - 1), "")),
        _p("voice", 0, 32, can_modulate=False),
        _p("target", 0, MAX_INT32, can_modulate=False),
        _p("port", 0, 7, can_modulate=False),
        _flag("sendpop"),
    ),
    "envelope": (
        _stereo(),
        _p("attack", 0, 128, display=_envelope_time),
        _p("decay", 0, 128, display=_envelope_time),
        _p("sustain", 0, 128),
        _p("release", 0, 128, display=_envelope_time),
        _p("gain", 0, 128),
    ),
    "noise": (_stereo(), _p("shape", 0, 128), _p("gain", 0, 128)),
    "oscillator": (
        _stereo(),
        _p("transpose", 0, 128, display=_oscillator_transpose),
        _p("detune", 0, 128, display=lambda v: (_format_float((v - 64) / 64), "st")),
        _p("phase", 0, 128),
        _p("color", 0, 128),
        _p("shape", 0, 128),
        _p("gain", 0, 128),
        _p("frequency", 0, -1, can_set=False),
        _p("type", int(OscillatorType.SINE), int(OscillatorType.SAMPLE),
           can_modulate=False, display=_choices(OSCILLATOR_TYPE_NAMES)),
        _flag("lfo"),
        _p("unison", 0, 3, can_modulate=False),
        _p("samplestart", 0, 1720329, can_modulate=False),
        _p("loopstart", 0, 65535, can_modulate=False),
        _p("looplength", 0, 65535, can_modulate=False),
    ),
    "loadval": (
        _stereo(),
        _p("value", 0, 128, display=lambda v: (_format_float(v / 64 - 1), "")),
    ),
    "receive": (
        _stereo(),
        _p("left", 0, -1, can_set=False),
        _p("right", 0, -1, can_set=False),
    ),
    "in": (
        _stereo(),
        _p("channel", 0, 6, can_modulate=False, display=_choices(CHANNEL_NAMES)),
    ),
    "sync": (),
})

UNIT_NAMES: Tuple[str, ...] = tuple(sorted(UNIT_TYPES))

PORTS: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    name: tuple(p.name for p in params if p.can_modulate)
    for name, params in UNIT_TYPES.items()
})


def find_param_for_modulation_port(unit_name: str, index: int) -> Optional[UnitParameter]:
    """Return the parameter behind modulation port ``index`` of a unit type, or None."""
    params = UNIT_TYPES.get(unit_name)
    if params is None:
        return None
    modulatable = [p for p in params if p.can_modulate]
    if 0 <= index < len(modulatable):
        return modulatable[index]
    return None


@dataclass
class Unit:
    """A single unit of an instrument, e.g. an oscillator or a filter."""

    type: str = ""
    id: int = 0
    parameters: dict = field(default_factory=dict)
    var_args: list = field(default_factory=list)
    disabled: bool = False
    comment: str = ""

    def copy(self) -> "Unit":
        """Return a deep copy of the unit."""
        return Unit(
            type=self.type,
            id=self.id,
            parameters=dict(self.parameters),
            var_args=list(self.var_args),
            disabled=self.disabled,
            comment=self.comment,
        )

    def stack_change(self) -> int:
        """Net number of signals the unit pushes onto (or pops from) the stack."""
        if self.disabled:
            return 0
        stereo = self.parameters.get("stereo", 0)
        if self.type in ("addp", "mulp", "pop", "out", "outaux", "aux"):
            return -1 - stereo
        if self.type in ("envelope", "oscillator", "push", "noise", "receive",
                         "loadnote", "loadval", "in", "compressor"):
            return 1 + stereo
        if self.type == "pan":
            return 1 - stereo
        if self.type == "speed":
            return -1
        if self.type == "send":
            return (-1 - stereo) * self.parameters.get("sendpop", 0)
        return 0

    def stack_need(self) -> int:
        """Number of signals that must be on the stack before the unit runs."""
        if self.disabled:
            return 0
        stereo = self.parameters.get("stereo", 0)
        if self.type in ("", "envelope", "oscillator", "noise", "receive",
                         "loadnote", "loadval", "in"):
            return 0
        if self.type in ("mulp", "mul", "add", "addp", "xch"):
            return 2 * (1 + stereo)
        if self.type == "speed":
            return 1
        return 1 + stereo


@dataclass
class Instrument:
    """A list of units together with the number of polyphonic voices."""

    name: str = ""
    comment: str = ""
    num_voices: int = 0
    units: list = field(default_factory=list)
    mute: bool = False

    def copy(self) -> "Instrument":
        """Return a deep copy of the instrument."""
        return Instrument(
            name=self.name,
            comment=self.comment,
            num_voices=self.num_voices,
            units=[u.copy() for u in self.units],
            mute=self.mute,
        )


class Patch(list):
    """The list of instruments used in a song."""

    def __init__(self, instruments: Iterable[Instrument] = ()):
        super().__init__(instruments)

    def copy(self) -> "Patch":
        """Return a deep copy of the patch."""
        return Patch(instr.copy() for instr in self)

    def num_voices(self) -> int:
        """Total number of voices over all instruments."""
        return sum(instr.num_voices for instr in self)

    def num_delay_lines(self) -> int:
        """Total number of delay lines over all delay units and voices."""
        return sum(
            len(unit.var_args) * instr.num_voices
            for instr in self
            for unit in instr.units
            if unit.type == "delay"
        )

    def num_syncs(self) -> int:
        """Total number of sync outputs over all sync units and voices."""
        return sum(
            instr.num_voices
            for instr in self
            for unit in instr.units
            if unit.type == "sync"
        )

    def first_voice_for_instrument(self, instr_index: int) -> int:
        """Index of the first voice of the given instrument (cumulative sum)."""
        if instr_index < 0:
            return 0
        return sum(instr.num_voices for instr in self[:instr_index])

    def instrument_for_voice(self, voice: int) -> int:
        """Index of the instrument that plays the given voice."""
        if voice < 0:
            raise ValueError("voice cannot be negative")
        for index, instr in enumerate(self):
            if voice < instr.num_voices:
                return index
            voice -= instr.num_voices
        raise IndexError("voice number is beyond the total voices of an instrument")

    def find_unit(self, unit_id: int) -> Tuple[int, int]:
        """Return (instrument index, unit index) of the enabled unit with the id."""
        if unit_id == 0:
            raise ValueError("find_unit called with id 0")
        for instr_index, instr in enumerate(self):
            for unit_index, unit in enumerate(instr.units):
                if unit.id == unit_id and not unit.disabled:
                    return instr_index, unit_index
        raise LookupError(f"could not find a unit with id {unit_id}")