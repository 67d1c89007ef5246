from types import SimpleNamespace

from songroom.ranking import rank, score, tally, top


def song(song_id, is_played=False):
    return SimpleNamespace(id=song_id, is_played=is_played)


def vote(song_id, user_id, vote_type):
    return SimpleNamespace(song_id=song_id, user_id=user_id, vote_type=vote_type)


def test_rank_orders_by_score_then_submission():
    songs = [song(1), song(2), song(3), song(4)]
    votes = [vote(2, 'a', 'up'), vote(2, 'b', 'up'), vote(3, 'a', 'down'), vote(4, 'a', 'up')]
    assert [s.id for s in rank(songs, votes)] == [2, 4, 1, 3]


def test_rank_skips_played_songs():
    songs = [song(1, is_played=True), song(2), song(3)]
    assert [s.id for s in rank(songs, [vote(1, 'a', 'up')])] == [2, 3]


def test_rank_is_deterministic_for_any_input_order():
    songs = [song(5), song(3), song(9), song(1)]
    votes = [vote(9, 'a', 'up'), vote(1, 'b', 'up'), vote(5, 'c', 'down')]
    first = [s.id for s in rank(songs, votes)]
    assert first == [1, 9, 3, 5]
    for _ in range(5):
        assert [s.id for s in rank(list(reversed(songs)), list(reversed(votes)))] == first


def test_score_counts_ups_minus_downs():
    votes = [vote(1, 'a', 'up'), vote(1, 'b', 'up'), vote(1, 'c', 'down'), vote(2, 'a', 'down')]
    assert score(1, votes) == 1
    assert score(2, votes) == -1
    assert score(3, votes) == 0


def test_tally_reports_callers_vote():
    votes = [vote(1, 'a', 'up'), vote(1, 'b', 'down')]
    result = tally(1, votes, user_id='b')
    assert (result.up, result.down, result.score, result.user_vote) == (1, 1, 0, 'down')
    assert tally(1, votes, user_id='z').user_vote is None


def test_scenario_higher_score_plays_first():
    a, b = song(1), song(2)
    votes = [vote(2, 'x', 'up'), vote(2, 'y', 'up')]
    assert rank([a, b], votes) == [b, a]
    assert top([a, b], votes) is b
    assert top([], votes) is None
