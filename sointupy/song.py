"""Songs, scores, tracks and the note data of their patterns."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from sointupy.patch import Patch

SAMPLE_RATE = 44100
HOLD = 1
MAX_PATTERNS = 36


@dataclass(frozen=True)
class SongPos:
    """A position in a song: the row of the order list and the row of the pattern."""

    order_row: int = 0
    pattern_row: int = 0


class Pattern(list):
    """Notes of a pattern; rows beyond the end are holds (1)."""

    def get(self, index: int) -> int:
        """Return the note at index, or 1 (hold) if the index is out of range."""
        if 0 <= index < len(self):
            return self[index]
        return HOLD

    def set(self, index: int, value: int) -> None:
        """Set the note at index, padding the pattern with holds as needed."""
        if index < 0:
            raise IndexError("pattern index cannot be negative")
        if value == HOLD and index >= len(self):
            return
        if index >= len(self):
            self.extend([HOLD] * (index + 1 - len(self)))
        self[index] = value

    def copy(self) -> "Pattern":
        return Pattern(self)


class Order(list):
    """Pattern order of a track; rows beyond the end are -1 (no pattern)."""

    def get(self, index: int) -> int:
        """Return the pattern index at index, or -1 if out of range."""
        if 0 <= index < len(self):
            return self[index]
        return -1

    def set(self, index: int, value: int) -> None:
        """Set the pattern index at index, padding the order with -1s as needed."""
        if index < 0:
            raise IndexError("order index cannot be negative")
        if index >= len(self):
            self.extend([-1] * (index + 1 - len(self)))
        self[index] = value

    def copy(self) -> "Order":
        return Order(self)


@dataclass
class Track:
    """Patterns and order list of one track, and the voices it cycles through."""

    num_voices: int = 0
    effect: bool = False
    order: Order = field(default_factory=Order)
    patterns: list = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.order, Order):
            self.order = Order(self.order)
        self.patterns = [p if isinstance(p, Pattern) else Pattern(p) for p in self.patterns]

    def note(self, pos: SongPos) -> int:
        """Return the note at pos; anything outside the data is a hold."""
        if not 0 <= pos.order_row < len(self.order):
            return HOLD
        pat = self.order[pos.order_row]
        if not 0 <= pat < len(self.patterns):
            return HOLD
        pattern = self.patterns[pat]
        if not 0 <= pos.pattern_row < len(pattern):
            return HOLD
        return pattern[pos.pattern_row]

    def _ensure_patterns(self, count: int) -> None:
        while len(self.patterns) < count:
            self.patterns.append(Pattern())

    def set_note(self, pos: SongPos, note: int, unique_patterns: bool) -> None:
        """Set the note at pos, creating patterns as needed.

        With unique_patterns, a pattern used by several order rows is first
        copied into a new pattern so that only this order row changes.
        """
        if pos.order_row < 0 or pos.pattern_row < 0:
            return
        pat = self.order.get(pos.order_row)
        if pat < 0:
            if note == HOLD:
                return
            pat = max([-1, *self.order]) + 1
            if pat >= MAX_PATTERNS:
                return
            self.order.set(pos.order_row, pat)
        if pat >= len(self.patterns) and note == HOLD:
            return
        self._ensure_patterns(pat + 1)
        if unique_patterns:
            uses = self.order.count(pat)
            max_pat = max([0, *self.order])
            if uses > 1:
                new_pattern = Pattern(self.patterns[pat])
                pat = max_pat + 1
                if pat >= MAX_PATTERNS:
                    return
                self._ensure_patterns(pat + 1)
                self.patterns[pat] = new_pattern
                self.order.set(pos.order_row, pat)
        self.patterns[pat].set(pos.pattern_row, note)

    def copy(self) -> "Track":
        """Return a deep copy of the track."""
        return Track(
            num_voices=self.num_voices,
            effect=self.effect,
            order=Order(self.order),
            patterns=[Pattern(p) for p in self.patterns],
        )


@dataclass
class Score:
    """The arrangement of notes: tracks, rows per pattern and length in patterns."""

    tracks: list = field(default_factory=list)
    rows_per_pattern: int = 0
    length: int = 0

    def song_pos(self, song_row: int) -> SongPos:
        """Convert an absolute song row into a SongPos."""
        if self.rows_per_pattern == 0:
            return SongPos(0, 0)
        pattern_row = song_row % self.rows_per_pattern
        order_row = (song_row - pattern_row) // self.rows_per_pattern
        return SongPos(order_row, pattern_row)

    def song_row(self, pos: SongPos) -> int:
        """Convert a SongPos into an absolute song row."""
        return pos.order_row * self.rows_per_pattern + pos.pattern_row

    def wrap(self, pos: SongPos) -> SongPos:
        """Normalise pos and wrap its order row into the song length."""
        ret = self.song_pos(self.song_row(pos))
        return SongPos(ret.order_row % self.length, ret.pattern_row)

    def clamp(self, pos: SongPos) -> SongPos:
        """Normalise pos and clamp it inside the song."""
        row = min(self.song_row(pos), self.length_in_rows() - 1)
        return self.song_pos(max(row, 0))

    def copy(self) -> "Score":
        """Return a deep copy of the score."""
        return Score(
            tracks=[t.copy() for t in self.tracks],
            rows_per_pattern=self.rows_per_pattern,
            length=self.length,
        )

    def num_voices(self) -> int:
        """Total number of voices over all tracks."""
        return total_voices(self.tracks)

    def first_voice_for_track(self, track: int) -> int:
        """Index of the first voice of the given track (cumulative sum)."""
        if track < 0:
            return 0
        return total_voices(self.tracks[:track])

    def length_in_rows(self) -> int:
        """Length of the song in rows."""
        return self.rows_per_pattern * self.length


@dataclass
class Song:
    """A score and a patch, with the tempo they are played at."""

    bpm: int = 0
    rows_per_beat: int = 0
    score: Score = field(default_factory=Score)
    patch: Patch = field(default_factory=Patch)

    def __post_init__(self) -> None:
        if not isinstance(self.patch, Patch):
            self.patch = Patch(self.patch)

    def copy(self) -> "Song":
        """Return a deep copy of the song."""
        return Song(
            bpm=self.bpm,
            rows_per_beat=self.rows_per_beat,
            score=self.score.copy(),
            patch=self.patch.copy(),
        )

    def samples_per_row(self) -> int:
        """Number of samples in each row at 44100 Hz, or 0 if the tempo is unset."""
        divisor = self.bpm * self.rows_per_beat
        if divisor > 0:
            return SAMPLE_RATE * 60 // divisor
        return 0

    def validate(self) -> None:
        """Raise ValueError if the song does not look playable."""
        if self.bpm < 1:
            raise ValueError("BPM should be > 0")
        if not self.score.tracks:
            raise ValueError("song contains no tracks")
        if self.score.num_voices() > self.patch.num_voices():
            raise ValueError("Tracks use too many voices")


def total_voices(items: Iterable) -> int:
    """Sum of num_voices over tracks or instruments."""
    return sum(item.num_voices for item in items)