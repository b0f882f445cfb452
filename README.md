# sointupy

Data model and audio utilities for the Sointu modular synthesizer: patches
and songs, import of 4klang files, rendering a song through a synth you
supply, WAV and raw export, and loudness and true-peak metering.

## Modules

- `sointupy.patch`: `Unit`, `Instrument`, `Patch`, `UnitParameter` and
  `OscillatorType`, plus the catalogue of unit types (`UNIT_TYPES`,
  `UNIT_NAMES`, `PORTS`).
  - `Unit.stack_change()` and `Unit.stack_need()` give how a unit affects the
    signal stack and how many signals it needs on it.
  - `Patch.num_voices()`, `num_delay_lines()`, `num_syncs()`,
    `first_voice_for_instrument()`, `instrument_for_voice()` and
    `find_unit()`. `instrument_for_voice` raises `ValueError` for a negative
    voice and `IndexError` beyond the last voice. `find_unit` raises
    `ValueError` for id 0 and `LookupError` when no enabled unit has the id.
  - `find_param_for_modulation_port(unit_name, index)` returns the
    `UnitParameter` behind a send port, or `None`.
  - `UnitParameter.display(value)` returns a readable value and its unit,
    e.g. milliseconds for envelope times or Hz for filter frequencies.
- `sointupy.song`: `Song`, `Score`, `Track`, `Order`, `Pattern`, `SongPos`
  and `total_voices`. Reading a `Pattern` out of range gives a hold (1);
  reading an `Order` out of range gives -1. `Track.set_note` creates
  patterns as needed and, with `unique_patterns`, copies a shared pattern
  before changing it. `Song.validate()` raises `ValueError` if the song
  cannot be played.
- `sointupy.audio`: `AudioBuffer`, a stereo float32 buffer held as an
  `(n, 2)` numpy array, with `wav(pcm16)`, `raw(pcm16)`, `fill(synth)` and
  `source()`; `BufferSource`; the `Synth` and `Synther` protocols; and
  `play(synther, song, progress)`, which renders a whole song.
- `sointupy.fourklang`: `read_4klang_patch` and `read_4klang_instrument`
  convert 4klang `.4kp` and `.4ki` files (versions 11 to 14) from a binary
  stream. Malformed or unsupported input raises `FourKlangError`.
- `sointupy.broker`: `Broker` with bounded queues `to_model`, `to_player`
  and `to_detector`, a pool of audio buffers, `MsgToModel`,
  `MsgToDetector`, and `try_send`, a non-blocking put.
- `sointupy.detector`: `LoudnessDetector` (momentary, short-term, maximum
  and gated integrated loudness, K, A, C or no weighting), `PeakDetector`
  (4x oversampled true peak) and `Detector`, which reads audio from a
  broker in 100 ms chunks and posts `DetectorResult`s to `to_model`.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Examples

Import a 4klang patch and count its voices:

```python
from sointupy.fourklang import read_4klang_patch

with open("song.4kp", "rb") as stream:
    patch = read_4klang_patch(stream)

print(len(patch), "instruments,", patch.num_voices(), "voices")
```

Write a buffer to a 16-bit WAV file:

```python
from sointupy.audio import AudioBuffer

buffer = AudioBuffer([(0.0, 0.0)] * 44100)
with open("silence.wav", "wb") as out:
    out.write(buffer.wav(pcm16=True))
```

Render a song with a synther you supply. `play` calls `progress` with
values from 0 to 1 as it goes:

```python
from sointupy.audio import play

buffer = play(my_synther, song, progress=lambda p: print(f"{p:.0%}"))
```

Measure loudness in a background thread:

```python
import threading

from sointupy.broker import Broker, MsgToDetector
from sointupy.detector import Detector

broker = Broker()
detector = Detector(broker)
thread = threading.Thread(target=detector.run)
thread.start()
broker.to_detector.put(MsgToDetector(data=buffer))
detector.close()
thread.join()
result = broker.to_model.get().detector_result
```

## What it does not do

- There is no synthesizer engine: `play` and `AudioBuffer.fill` need an
  object that implements `Synther` / `Synth`.
- There is no playback to a sound device, no MIDI input and no tracker
  user interface.
- There is no command-line program and no compiler of songs into player
  code.
- Songs are not read from or written to JSON or YAML files; only 4klang
  files are imported, and audio is exported as WAV or raw bytes.