import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import Conflict, Forbidden, NotFound, UpstreamUnavailable
from .models import Room, Song, Vote
from .playback import coordinator
from .ranking import UP
from .youtube import VideoDetails

logger = logging.getLogger(__name__)


def get_song(db: Session, room_id: str, song_id: int) -> Song:
    song = db.query(Song).filter(Song.id == song_id, Song.room_id == room_id).first()
    if song is None:
        raise NotFound('Song not found in this room')
    return song


def room_songs(db: Session, room_id: str) -> list[Song]:
    return db.query(Song).filter(Song.room_id == room_id).order_by(Song.id.asc()).all()


def ensure_not_queued(db: Session, room_id: str, source_id: str):
    duplicate = (
        db.query(Song)
        .filter(Song.room_id == room_id, Song.source_id == source_id, Song.is_played.is_(False))
        .first()
    )
    if duplicate is not None:
        raise Conflict('Song already in queue')


def add_song(db: Session, room: Room, user_id: str, details: VideoDetails) -> Song:
    """Queue a resolved video; the submitter's upvote is recorded with it."""
    ensure_not_queued(db, room.id, details.source_id)

    song = Song(
        room_id=room.id,
        source_id=details.source_id,
        title=details.title,
        thumbnail=details.thumbnail,
        duration=details.duration,
        added_by=user_id,
        is_played=False,
    )
    db.add(song)
    try:
        db.flush()
        db.add(Vote(song_id=song.id, user_id=user_id, vote_type=UP))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error('Error adding song to room %s: %s', room.id, exc, exc_info=True)
        raise UpstreamUnavailable('Failed to add song') from exc

    logger.info('Song %s (%s) added to room %s by %s', song.id, details.source_id, room.id, user_id)
    coordinator.settle(db, room.id)
    return song


def requeue_song(db: Session, room: Room, song_id: int) -> Song:
    return coordinator.requeue(db, room.id, song_id)


def remove_song(db: Session, room: Room, actor_id: str, song_id: int):
    song = get_song(db, room.id, song_id)
    if actor_id not in (song.added_by, room.host_id):
        raise Forbidden('Only the host or the submitter can remove this song')
    return coordinator.remove_song(db, room.id, song_id)
