"""Import of 4klang patches (.4kp) and instruments (.4ki)."""

from __future__ import annotations

import struct
from typing import BinaryIO, Dict, List, Optional, Tuple

from sointupy.patch import PORTS, Instrument, OscillatorType, Patch, Unit

MAX_INSTRS = 16
MAX_UNITS = 64
MAX_NAME_LEN = 64
_NUM_VALS = 15
_OLD_UNUSED_SLOTS = 16

VERSION_TAGS: Dict[int, int] = {
    0x31316B34: 11,  # "4k11"
    0x32316B34: 12,  # "4k12"
    0x33316B34: 13,  # "4k13"
    0x34316B34: 14,  # "4k14"
}

# Numerators of beat fractions with denominator 48, indexed by 4klang's
# BPM-synced delay setting.
_DELAYS = (
    4, 6, 9, 8, 12, 18, 16, 24, 36, 32, 48, 72, 64, 96, 144, 128, 192, 288,
    256, 384, 576, 72, 120, 168, 216, 264, 312, 360, 144, 240, 336, 288, 288,
)

_LEFT_REVERB = (1116, 1188, 1276, 1356, 1422, 1492, 1556, 1618)
_RIGHT_REVERB = (1140, 1212, 1300, 1380, 1446, 1516, 1580, 1642)

# 4klang modulation targets: unit type and the port name of each slot.
_UNIT_PORTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("", ("", "", "", "", "", "", "", "")),
    ("envelope", ("", "", "gain", "attack", "decay", "", "release", "")),
    ("oscillator", ("", "transpose", "detune", "", "phase", "color", "shape", "gain")),
    ("filter", ("", "", "", "", "frequency", "resonance", "", "")),
    ("envelope", ("", "", "drive", "frequency", "", "", "", "")),
    ("delay", ("pregain", "feedback", "dry", "damp", "", "", "", "")),
    ("", ("", "", "", "", "", "", "", "")),
    ("", ("", "", "", "", "", "", "", "")),
    ("pan", ("panning", "", "", "", "", "", "", "")),
    ("outaux", ("auxgain", "outgain", "", "", "", "", "", "")),
    ("", ("", "", "", "", "", "", "", "")),
    ("load", ("value", "", "", "", "", "", "", "")),
)

_TargetMap = Dict[Tuple[int, int], int]


class FourKlangError(ValueError):
    """Raised when a 4klang file is malformed or of an unsupported version."""


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if data is None or len(data) < size:
        raise FourKlangError(f"unexpected end of file: wanted {size} bytes")
    return data


def _read_version(stream: BinaryIO) -> int:
    (tag,) = struct.unpack("<I", _read_exact(stream, 4))
    try:
        return VERSION_TAGS[tag]
    except KeyError:
        raise FourKlangError(f"unknown 4klang version tag: {tag}") from None


def _read_name(stream: BinaryIO) -> str:
    raw = _read_exact(stream, MAX_NAME_LEN)
    end = raw.find(b"\0")
    if end == -1:
        end = MAX_NAME_LEN
    return raw[:end].decode("utf-8", errors="replace")


def _env(vals: bytes, version: int) -> List[Unit]:
    return [Unit(type="envelope", parameters={
        "stereo": 0,
        "attack": vals[0],
        "decay": vals[1],
        "sustain": vals[2],
        "release": vals[3],
        "gain": vals[4],
    })]


def _vco(vals: bytes, version: int) -> List[Unit]:
    values = iter(vals[:8])
    transpose = next(values)
    detune = next(values)
    phase = next(values)
    gate = 0x55 if version <= 11 else next(values)
    color = next(values)
    shape = next(values)
    gain = next(values)
    flags = next(values)
    lfo = 1 if flags & 0x10 else 0
    stereo = 1 if flags & 0x40 else 0
    osc_type = int(OscillatorType.SINE)
    if flags & 0x01:
        osc_type = int(OscillatorType.SINE)
        if version <= 13:
            color = 128
    elif flags & 0x02:
        osc_type = int(OscillatorType.TRISAW)
    elif flags & 0x04:
        osc_type = int(OscillatorType.PULSE)
    elif flags & 0x08:
        return [Unit(type="noise", parameters={
            "stereo": stereo, "shape": shape, "gain": gain,
        })]
    elif flags & 0x20:
        color = gate
    return [Unit(type="oscillator", parameters={
        "stereo": stereo,
        "transpose": transpose,
        "detune": detune,
        "phase": phase,
        "color": color,
        "shape": shape,
        "gain": gain,
        "type": osc_type,
        "lfo": lfo,
    })]


def _vcf(vals: bytes, version: int) -> List[Unit]:
    flags = vals[2]
    lowpass = 1 if flags & 0x01 else 0
    highpass = 1 if flags & 0x02 else 0
    bandpass = 1 if flags & 0x04 else 0
    neghighpass = 0
    if flags & 0x08:
        lowpass = 1
        neghighpass = 1
    stereo = 1 if flags & 0x10 else 0
    return [Unit(type="filter", parameters={
        "stereo": stereo,
        "frequency": vals[0],
        "resonance": vals[1],
        "lowpass": lowpass,
        "bandpass": bandpass,
        "highpass": highpass,
        "negbandpass": 0,
        "neghighpass": neghighpass,
    })]


def _dst(vals: bytes, version: int) -> List[Unit]:
    return [
        Unit(type="distort", parameters={"drive": vals[0], "stereo": vals[2]}),
        Unit(type="hold", parameters={"holdfreq": vals[1], "stereo": vals[2]}),
    ]


def _dll(vals: bytes, version: int) -> List[Unit]:
    delay_times: List[int] = []
    note_tracking = 0
    if vals[11] > 0:
        delay_times = list(_LEFT_REVERB if vals[10] > 0 else _RIGHT_REVERB)
    else:
        sync_type = vals[9]
        if sync_type == 0:
            delay_times = [vals[8] * 16]
        elif sync_type == 1:  # relative to BPM
            note_tracking = 2
            index = vals[8] >> 2
            delay_times = [_DELAYS[index] if index < len(_DELAYS) else 48]
        elif sync_type == 2:  # note tracking
            note_tracking = 1
            delay_times = [10787]
    return [Unit(
        type="delay",
        parameters={
            "stereo": 0,
            "pregain": vals[0],
            "dry": vals[1],
            "feedback": vals[2],
            "damp": vals[3],
            "notetracking": note_tracking,
        },
        var_args=delay_times,
    )]


_FOP_TYPES = {
    1: ("pop", 0),
    2: ("addp", 0),
    3: ("mulp", 0),
    4: ("push", 0),
    5: ("xch", 0),
    6: ("add", 0),
    7: ("mul", 0),
    8: ("addp", 1),
}


def _fop(vals: bytes, version: int) -> List[Unit]:
    if vals[0] == 9:
        # 4klang loadnote gives 0..1, while here it gives -1..1
        return [
            Unit(type="loadnote", parameters={"stereo": 0}),
            Unit(type="loadval", parameters={"value": 128, "stereo": 0}),
            Unit(type="addp", parameters={"stereo": 0}),
            Unit(type="gain", parameters={"stereo": 0, "gain": 64}),
        ]
    unit_type, stereo = _FOP_TYPES.get(vals[0], ("mulp", 1))
    return [Unit(type=unit_type, parameters={"stereo": stereo})]


def _fst(vals: bytes, version: int) -> List[Unit]:
    return [Unit(type="send", parameters={
        "amount": vals[0],
        "sendpop": 1 if vals[1] & 0x40 else 0,
        "dest_stack": vals[2],
        "dest_unit": vals[3],
        "dest_slot": vals[4],
        "dest_id": vals[5],
    })]


def _pan(vals: bytes, version: int) -> List[Unit]:
    return [Unit(type="pan", parameters={"stereo": 0, "panning": vals[0]})]


def _out(vals: bytes, version: int) -> List[Unit]:
    return [Unit(type="outaux", parameters={
        "stereo": 1, "outgain": vals[0], "auxgain": vals[1],
    })]


def _acc(vals: bytes, version: int) -> List[Unit]:
    channel = 2 if vals[0] != 0 else 0
    return [Unit(type="in", parameters={"stereo": 1, "channel": channel})]


def _fld(vals: bytes, version: int) -> List[Unit]:
    return [Unit(type="loadval", parameters={"stereo": 0, "value": vals[0]})]


_UNIT_READERS = {
    1: _env, 2: _vco, 3: _vcf, 4: _dst, 5: _dll, 6: _fop,
    7: _fst, 8: _pan, 9: _out, 10: _acc, 11: _fld,
}


def _read_unit(stream: BinaryIO, version: int) -> Optional[List[Unit]]:
    unit_type = _read_exact(stream, 1)[0]
    vals = _read_exact(stream, _NUM_VALS)
    if version <= 13:
        _read_exact(stream, _OLD_UNUSED_SLOTS)  # unused slots of older versions
    reader = _UNIT_READERS.get(unit_type)
    return reader(vals, version) if reader else None


class _IdCounter:
    def __init__(self) -> None:
        self.next_id = 1

    def take(self) -> int:
        value = self.next_id
        self.next_id += 1
        return value


def _read_units(stream: BinaryIO, version: int, instr_index: int,
                targets: _TargetMap, ids: _IdCounter) -> List[Unit]:
    num_units = 32 if version <= 13 else MAX_UNITS
    units: List[Unit] = []
    for unit_index in range(num_units):
        read = _read_unit(stream, version)
        if read is None:
            continue
        targets[(instr_index, unit_index)] = ids.next_id
        for unit in read:
            unit.id = ids.take()
        units.extend(read)
    return units


def _fix_targets(instr_index: int, instr: Instrument, targets: _TargetMap) -> None:
    for unit in instr.units:
        if unit.type != "send":
            continue
        params = unit.parameters
        dest_stack = params.pop("dest_stack")
        dest_unit = params.pop("dest_unit")
        dest_slot = params.pop("dest_slot")
        dest_id = params.pop("dest_id")
        if dest_stack == 255:
            dest_stack = instr_index
        params["target"] = targets.get((dest_stack, dest_unit), 0)
        if dest_id < len(_UNIT_PORTS) and dest_slot < 8:
            if dest_id == 4 and dest_slot == 3:  # distortion is split into two units
                params["target"] += 1
                params["port"] = 0
            else:
                unit_type, port_names = _UNIT_PORTS[dest_id]
                wanted = port_names[dest_slot]
                for port, name in enumerate(PORTS.get(unit_type, ())):
                    if name == wanted:
                        params["port"] = port
                        break


def read_4klang_patch(stream: BinaryIO) -> Patch:
    """Read a 4klang patch (.4kp) from a binary stream and convert it to a Patch."""
    version = _read_version(stream)
    _read_exact(stream, 4)  # polyphony, not used
    names = [_read_name(stream) for _ in range(MAX_INSTRS)]
    targets: _TargetMap = {}
    ids = _IdCounter()
    patch = Patch()
    for instr_index, name in enumerate(names):
        units = _read_units(stream, version, instr_index, targets, ids)
        if units:
            patch.append(Instrument(name=name, num_voices=1, units=units))
    global_units = _read_units(stream, version, MAX_INSTRS, targets, ids)
    if global_units:
        patch.append(Instrument(name="Global", num_voices=1, units=global_units))
    for index, instr in enumerate(patch):
        _fix_targets(index, instr, targets)
    return patch


def read_4klang_instrument(stream: BinaryIO) -> Instrument:
    """Read a 4klang instrument (.4ki) from a binary stream and convert it."""
    version = _read_version(stream)
    name = _read_name(stream)
    targets: _TargetMap = {}
    units = _read_units(stream, version, 0, targets, _IdCounter())
    instr = Instrument(name=name, num_voices=1, units=units)
    _fix_targets(0, instr, targets)
    return instr