import pytest

from conftest import add_song
from songroom.errors import Conflict, InvalidInput, NotFound
from songroom.models import Vote
from songroom.votes import cast, song_tally


def test_first_vote_is_recorded(db, room):
    song = add_song(db)
    result = cast(db, song.id, 'guest', 'up')
    assert (result.up, result.down, result.user_vote) == (1, 0, 'up')


def test_same_vote_twice_toggles_off(db, room):
    song = add_song(db)
    cast(db, song.id, 'guest', 'down')
    result = cast(db, song.id, 'guest', 'down')
    assert result.score == 0
    assert result.user_vote is None
    assert db.query(Vote).filter(Vote.song_id == song.id, Vote.user_id == 'guest').count() == 0


def test_opposite_vote_replaces_and_moves_score_by_two(db, room):
    song = add_song(db, votes=[('host', 'up')])
    before = cast(db, song.id, 'guest', 'up').score
    after = cast(db, song.id, 'guest', 'down')
    assert before - after.score == 2
    rows = db.query(Vote).filter(Vote.song_id == song.id, Vote.user_id == 'guest').all()
    assert [row.vote_type for row in rows] == ['down']


def test_vote_on_missing_song(db, room):
    with pytest.raises(NotFound):
        cast(db, 999, 'guest', 'up')


def test_vote_on_song_from_another_room(db, room):
    song = add_song(db)
    with pytest.raises(NotFound):
        cast(db, song.id, 'guest', 'up', room_id='ZZZ999')


def test_invalid_vote_type_rejected_before_storage(db, room):
    song = add_song(db)
    with pytest.raises(InvalidInput):
        cast(db, song.id, 'guest', 'sideways')
    assert song_tally(db, song.id).score == 0


def test_closed_room_rejects_votes(db, room):
    song = add_song(db, votes=[('host', 'up')])
    room.is_active = False
    db.commit()
    with pytest.raises(Conflict):
        cast(db, song.id, 'guest', 'down')
    assert song_tally(db, song.id, 'guest').score == 1
