"""Stereo audio buffers, rendering songs with a synth, and WAV/raw output."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Tuple

import numpy as np

from sointupy.patch import Patch
from sointupy.song import Song

SAMPLE_RATE = 44100
NUM_CHANNELS = 2
MAX_INT32 = 2**31 - 1
_MAX_STALLED_RENDERS = 100


class AudioBuffer:
    """A buffer of stereo float32 samples, stored as an (n, 2) array."""

    __slots__ = ("data",)

    def __init__(self, frames=0):
        if isinstance(frames, (int, np.integer)):
            self.data = np.zeros((int(frames), NUM_CHANNELS), dtype=np.float32)
        else:
            self.data = np.array(frames, dtype=np.float32).reshape(-1, NUM_CHANNELS)

    def __len__(self) -> int:
        return len(self.data)

    def __getitem__(self, index):
        return self.data[index]

    def __iter__(self):
        return iter(self.data)

    def __eq__(self, other) -> bool:
        if not isinstance(other, AudioBuffer):
            return NotImplemented
        return np.array_equal(self.data, other.data)

    __hash__ = None

    def __repr__(self) -> str:
        return f"AudioBuffer({len(self)} frames)"

    def fill(self, synth: "Synth") -> None:
        """Fill the whole buffer from the synth, ignoring time limits."""
        samples, _ = synth.render(self, MAX_INT32)
        if samples != len(self):
            raise RuntimeError("synth.render should have filled the whole buffer but did not")

    def source(self) -> Callable[["AudioBuffer"], None]:
        """Return an audio source that reads this buffer from its start.

        The source raises EOFError when it cannot fill the buffer given to it.
        """
        position = 0

        def read(buf: AudioBuffer) -> None:
            nonlocal position
            chunk = self.data[position:position + len(buf)]
            buf.data[:len(chunk)] = chunk
            position += len(chunk)
            if len(chunk) < len(buf):
                raise EOFError("audio buffer exhausted")

        return read

    def wav(self, pcm16: bool) -> bytes:
        """Return the buffer as a 44100 Hz stereo WAV file (int16 or float32)."""
        return _wav_header(len(self) * NUM_CHANNELS, pcm16) + self.raw(pcm16)

    def raw(self, pcm16: bool) -> bytes:
        """Return the interleaved little-endian samples (int16 or float32)."""
        if pcm16:
            scaled = np.trunc(self.data * np.float32(32767))
            clipped = np.clip(scaled, -32768, 32767)
            return clipped.astype("<i2").tobytes()
        return self.data.astype("<f4").tobytes()


def _wav_header(buffer_length: int, pcm16: bool) -> bytes:
    """WAV header for buffer_length interleaved samples."""
    if pcm16:
        bytes_per_sample, chunk_size, fmt_chunk_size, wave_format = 2, 36, 16, 1
    else:
        bytes_per_sample, chunk_size, fmt_chunk_size, wave_format = 4, 50, 18, 3
    chunk_size += bytes_per_sample * buffer_length
    parts = [
        b"RIFF",
        struct.pack("<I", chunk_size),
        b"WAVE",
        b"fmt ",
        struct.pack(
            "<IHHIIHH",
            fmt_chunk_size,
            wave_format,
            NUM_CHANNELS,
            SAMPLE_RATE,
            SAMPLE_RATE * NUM_CHANNELS * bytes_per_sample,
            NUM_CHANNELS * bytes_per_sample,
            8 * bytes_per_sample,
        ),
    ]
    if not pcm16:
        parts.append(struct.pack("<H", 0))
        parts.append(b"fact" + struct.pack("<II", 4, buffer_length))
    parts.append(b"data" + struct.pack("<I", bytes_per_sample * buffer_length))
    return b"".join(parts)


@dataclass
class BufferSource:
    """Reads an AudioBuffer piece by piece."""

    buffer: AudioBuffer
    pos: int = field(default=0)

    def read_audio(self, buf: AudioBuffer) -> None:
        """Copy the next samples into buf; raise EOFError once the buffer is used up."""
        chunk = self.buffer.data[self.pos:self.pos + len(buf)]
        buf.data[:len(chunk)] = chunk
        self.pos += len(chunk)
        if self.pos >= len(self.buffer):
            raise EOFError("audio buffer exhausted")


class Synth(Protocol):
    """A synthesizer compiled from a patch."""

    def render(self, buffer: AudioBuffer, max_time: int) -> Tuple[int, int]:
        """Fill buffer until it is full or max_time steps passed; return (samples, time)."""

    def update(self, patch: Patch, bpm: int) -> None:
        """Recompile the patch while keeping as much state as possible."""

    def trigger(self, voice: int, note: int) -> None:
        """Trigger a note on a voice."""

    def release(self, voice: int) -> None:
        """Release the note playing on a voice."""


class Synther(Protocol):
    """Compiles a patch into a Synth."""

    def synth(self, patch: Patch, bpm: int) -> Synth:
        """Return a synth for the patch; raise if the patch is malformed."""


def play(synther: Synther, song: Song, progress: Optional[Callable[[float], None]] = None) -> AudioBuffer:
    """Render the whole song with a synth from synther and return the audio."""
    song.validate()
    synth = synther.synth(song.patch, song.bpm)
    score = song.score
    cur_voices = [score.first_voice_for_track(i) for i in range(len(score.tracks))]
    samples_per_row = song.samples_per_row()
    length_in_rows = score.length_in_rows()
    row_buffer = AudioBuffer(samples_per_row)
    chunks = []
    for row in range(length_in_rows):
        pattern_row = row % score.rows_per_pattern
        order_row = row // score.rows_per_pattern
        for t, track in enumerate(score.tracks):
            if not 0 <= order_row < len(track.order):
                continue
            pattern_index = track.order[order_row]
            if not 0 <= pattern_index < len(track.patterns):
                continue
            pattern = track.patterns[pattern_index]
            if not 0 <= pattern_row < len(pattern):
                continue
            note = pattern[pattern_row]
            if note == 1:  # hold: no action
                continue
            synth.release(cur_voices[t])
            if note > 1:
                cur_voices[t] += 1
                first = score.first_voice_for_track(t)
                if cur_voices[t] >= first + track.num_voices:
                    cur_voices[t] = first
                synth.trigger(cur_voices[t], note)
        row_time = 0
        stalled = 0
        while row_time < samples_per_row:
            samples, time = synth.render(row_buffer, samples_per_row - row_time)
            row_time += time
            chunks.append(row_buffer.data[:samples].copy())
            stalled = stalled + 1 if time == 0 else 0
            if stalled > _MAX_STALLED_RENDERS:
                raise RuntimeError(
                    "song speed modulation likely so slow that row never advances; "
                    f"error at pattern {order_row}, row {pattern_row}"
                )
        if progress is not None:
            progress((row + 1) / length_in_rows)
    if not chunks:
        return AudioBuffer(0)
    return AudioBuffer(np.concatenate(chunks))