from collections.abc import Iterable
from dataclasses import dataclass

UP = 'up'
DOWN = 'down'
VOTE_TYPES = (UP, DOWN)


@dataclass(frozen=True)
class Tally:
    song_id: int
    up: int = 0
    down: int = 0
    user_vote: str | None = None

    @property
    def score(self) -> int:
        return self.up - self.down


def tally(song_id: int, votes: Iterable, user_id: str | None = None) -> Tally:
    up = down = 0
    user_vote = None
    for vote in votes:
        if vote.song_id != song_id:
            continue
        if vote.vote_type == UP:
            up += 1
        elif vote.vote_type == DOWN:
            down += 1
        if user_id is not None and vote.user_id == user_id:
            user_vote = vote.vote_type
    return Tally(song_id=song_id, up=up, down=down, user_vote=user_vote)


def scores(votes: Iterable) -> dict[int, int]:
    totals: dict[int, int] = {}
    for vote in votes:
        delta = 1 if vote.vote_type == UP else -1 if vote.vote_type == DOWN else 0
        totals[vote.song_id] = totals.get(vote.song_id, 0) + delta
    return totals


def score(song_id: int, votes: Iterable) -> int:
    return scores(votes).get(song_id, 0)


def rank(songs: Iterable, votes: Iterable) -> list:
    """Return the unplayed songs ordered by (-score, id)."""
    totals = scores(votes)
    pending = [song for song in songs if not song.is_played]
    return sorted(pending, key=lambda song: (-totals.get(song.id, 0), song.id))


def top(songs: Iterable, votes: Iterable):
    ranked = rank(songs, votes)
    return ranked[0] if ranked else None
