import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import Conflict, InvalidInput, NotFound, UpstreamUnavailable
from .models import Room, Song, Vote
from .ranking import VOTE_TYPES, Tally, tally

logger = logging.getLogger(__name__)


def cast(db: Session, song_id: int, user_id: str, vote_type: str, room_id: str | None = None) -> Tally:
    """Record a vote with toggle semantics.

    Repeating the same vote removes it, the opposite vote replaces it.
    Returns the song's tally after the change.
    """
    if vote_type not in VOTE_TYPES:
        raise InvalidInput(f'vote_type must be one of {", ".join(VOTE_TYPES)}')
    if not user_id:
        raise InvalidInput('user_id is required')

    song = db.get(Song, song_id)
    if song is None or (room_id is not None and song.room_id != room_id):
        raise NotFound('Song not found')
    room = db.get(Room, song.room_id)
    if room is None or not room.is_active:
        raise Conflict('Room is closed')

    existing = db.get(Vote, (song_id, user_id))
    if existing is None:
        db.add(Vote(song_id=song_id, user_id=user_id, vote_type=vote_type))
        action = 'added'
    elif existing.vote_type == vote_type:
        db.delete(existing)
        action = 'removed'
    else:
        existing.vote_type = vote_type
        action = 'changed'

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict('Vote changed concurrently, retry') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error('Error recording vote on song %s: %s', song_id, exc, exc_info=True)
        raise UpstreamUnavailable('Failed to record vote') from exc

    logger.debug('Vote %s on song %s by %s (%s)', action, song_id, user_id, vote_type)
    return song_tally(db, song_id, user_id)


def song_tally(db: Session, song_id: int, user_id: str | None = None) -> Tally:
    votes = db.query(Vote).filter(Vote.song_id == song_id).all()
    return tally(song_id, votes, user_id)


def room_votes(db: Session, room_id: str) -> list[Vote]:
    return db.query(Vote).join(Song).filter(Song.room_id == room_id).all()
