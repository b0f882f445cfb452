import pytest

from sointupy.patch import Instrument, Patch, Unit
from sointupy.song import Order, Pattern, Score, Song, SongPos, Track, total_voices


def test_pattern_get_out_of_range_is_hold():
    p = Pattern([60, 0])
    assert p.get(0) == 60
    assert p.get(1) == 0
    assert p.get(2) == 1
    assert p.get(-1) == 1


def test_pattern_set_pads_with_holds():
    p = Pattern()
    p.set(3, 60)
    assert p == [1, 1, 1, 60]


def test_pattern_set_hold_beyond_end_does_nothing():
    p = Pattern([60])
    p.set(5, 1)
    assert p == [60]


def test_pattern_set_negative_raises():
    with pytest.raises(IndexError):
        Pattern().set(-1, 60)


def test_order_get_and_set():
    o = Order()
    assert o.get(0) == -1
    o.set(2, 4)
    assert o == [-1, -1, 4]
    assert o.get(2) == 4
    assert o.get(5) == -1


def test_track_note_out_of_range_is_hold():
    t = Track(num_voices=1, order=[0, 5], patterns=[[60, 62]])
    assert t.note(SongPos(0, 1)) == 62
    assert t.note(SongPos(0, 2)) == 1
    assert t.note(SongPos(1, 0)) == 1
    assert t.note(SongPos(3, 0)) == 1


def test_set_note_creates_pattern():
    t = Track(num_voices=1)
    t.set_note(SongPos(0, 2), 60, False)
    assert t.order == [0]
    assert t.patterns == [[1, 1, 60]]
    assert t.note(SongPos(0, 2)) == 60


def test_set_note_hold_on_empty_track_does_nothing():
    t = Track(num_voices=1)
    t.set_note(SongPos(0, 0), 1, False)
    assert t.order == []
    assert t.patterns == []


def test_set_note_shared_pattern_without_unique():
    t = Track(num_voices=1, order=[0, 0], patterns=[[60]])
    t.set_note(SongPos(1, 0), 62, False)
    assert t.order == [0, 0]
    assert t.patterns == [[62]]


def test_set_note_shared_pattern_with_unique():
    t = Track(num_voices=1, order=[0, 0], patterns=[[60]])
    t.set_note(SongPos(1, 0), 62, True)
    assert t.order == [0, 1]
    assert t.patterns == [[60], [62]]


def test_track_copy_is_deep():
    t = Track(num_voices=2, effect=True, order=[0], patterns=[[60]])
    c = t.copy()
    c.patterns[0].set(0, 70)
    c.order.set(1, 0)
    assert t.patterns == [[60]]
    assert t.order == [0]
    assert c.num_voices == 2 and c.effect is True


def test_song_pos_round_trip():
    score = Score(rows_per_pattern=4, length=3)
    for row in range(-5, 15):
        assert score.song_row(score.song_pos(row)) == row
        assert 0 <= score.song_pos(row).pattern_row < 4


def test_song_pos_zero_rows_per_pattern():
    assert Score().song_pos(10) == SongPos(0, 0)


def test_wrap():
    score = Score(rows_per_pattern=4, length=2)
    assert score.wrap(SongPos(2, 1)) == SongPos(0, 1)
    assert score.wrap(SongPos(0, -1)) == SongPos(1, 3)


def test_clamp():
    score = Score(rows_per_pattern=4, length=2)
    assert score.clamp(SongPos(5, 0)) == SongPos(1, 3)
    assert score.clamp(SongPos(-1, 0)) == SongPos(0, 0)
    assert score.clamp(SongPos(0, 6)) == SongPos(1, 2)


def test_first_voice_for_track_and_num_voices():
    score = Score(tracks=[Track(num_voices=1), Track(num_voices=3), Track(num_voices=2)])
    assert score.first_voice_for_track(0) == 0
    assert score.first_voice_for_track(1) == 1
    assert score.first_voice_for_track(2) == 4
    assert score.first_voice_for_track(-1) == 0
    assert score.first_voice_for_track(10) == score.num_voices()


def test_length_in_rows():
    score = Score(rows_per_pattern=16, length=3)
    assert score.length_in_rows() == 16 * 3


def test_samples_per_row():
    assert Song(bpm=120, rows_per_beat=4).samples_per_row() == 5512
    assert Song(bpm=0, rows_per_beat=4).samples_per_row() == 0


def _song():
    return Song(
        bpm=100,
        rows_per_beat=4,
        score=Score(tracks=[Track(num_voices=1, order=[0], patterns=[[60]])],
                    rows_per_pattern=4, length=1),
        patch=Patch([Instrument(name="a", num_voices=1, units=[Unit(type="oscillator")])]),
    )


def test_validate_accepts_good_song():
    song = _song()
    song.validate()
    assert song.score.num_voices() <= song.patch.num_voices()


def test_validate_errors():
    song = _song()
    song.bpm = 0
    with pytest.raises(ValueError, match="BPM"):
        song.validate()
    song = _song()
    song.score.tracks = []
    with pytest.raises(ValueError, match="no tracks"):
        song.validate()
    song = _song()
    song.score.tracks[0].num_voices = 2
    with pytest.raises(ValueError, match="too many voices"):
        song.validate()


def test_song_copy_is_deep():
    song = _song()
    c = song.copy()
    c.score.tracks[0].patterns[0].set(0, 70)
    c.patch[0].units[0].parameters["gain"] = 5
    assert song.score.tracks[0].patterns[0] == [60]
    assert song.patch[0].units[0].parameters == {}
    assert c == c.copy()


def test_total_voices():
    assert total_voices([Track(num_voices=2), Track(num_voices=3)]) == 5
    assert total_voices([Instrument(num_voices=4)]) == 4
    assert total_voices([]) == 0