"""Message queues shared by the player, the model and the loudness detector."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, List

from sointupy.audio import AudioBuffer
from sointupy.song import SongPos

QUEUE_SIZE = 1024


def try_send(channel: "queue.Queue", value: Any) -> bool:
    """Put value on channel without blocking; return False if the channel is full."""
    try:
        channel.put_nowait(value)
    except queue.Full:
        return False
    return True


@dataclass
class MsgToModel:
    """A message to the model.

    Frequent data (panic, song position, voice levels and detector results)
    have fields of their own; everything else travels in ``data``.
    """

    has_panic_pos_levels: bool = False
    panic: bool = False
    song_position: SongPos = field(default_factory=SongPos)
    voice_levels: tuple = ()
    has_detector_result: bool = False
    detector_result: Any = None
    trigger_channel: int = 0  # 0 = no trigger, 1 = first channel, etc.
    reset: bool = False
    data: Any = None


@dataclass
class MsgToDetector:
    """A message to the detector: an AudioBuffer to analyse or a callable to run."""

    reset: bool = False
    quit: bool = False
    data: Any = None


class Broker:
    """One bounded queue per recipient, plus a pool of reusable audio buffers."""

    def __init__(self) -> None:
        self.to_model: "queue.Queue[MsgToModel]" = queue.Queue(maxsize=QUEUE_SIZE)
        self.to_player: "queue.Queue[Any]" = queue.Queue(maxsize=QUEUE_SIZE)
        self.to_detector: "queue.Queue[MsgToDetector]" = queue.Queue(maxsize=QUEUE_SIZE)
        self._pool: List[AudioBuffer] = []
        self._lock = threading.Lock()

    def get_audio_buffer(self) -> AudioBuffer:
        """Return an empty audio buffer from the pool, or a new one."""
        with self._lock:
            if self._pool:
                return self._pool.pop()
        return AudioBuffer(0)

    def put_audio_buffer(self, buf: AudioBuffer) -> None:
        """Empty buf and return it to the pool."""
        if len(buf) > 0:
            buf.data = buf.data[:0]
        with self._lock:
            self._pool.append(buf)