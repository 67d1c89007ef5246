import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .config import settings
from .errors import Conflict, Forbidden, InvalidInput, NotFound, SongRoomError, UpstreamUnavailable
from .models import Participant, PlaybackState, Room, Song, Vote
from .ranking import top

logger = logging.getLogger(__name__)

IDLE = 'idle'
CUED = 'cued'
PLAYING = 'playing'


def state_name(state: PlaybackState | None) -> str:
    if state is None or state.current_song_id is None:
        return IDLE
    return PLAYING if state.is_playing else CUED


def _now():
    return datetime.now(timezone.utc)


class PlaybackCoordinator:
    def __init__(self, allow_all_controls: bool | None = None):
        self._allow_all_controls = allow_all_controls
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def allow_all_controls(self) -> bool:
        if self._allow_all_controls is None:
            return settings.allow_all_controls
        return self._allow_all_controls

    def room_lock(self, room_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = self._locks[room_id] = threading.Lock()
            return lock

    @contextmanager
    def _transition(self, db: Session, room_id: str, action: str):
        with self.room_lock(room_id):
            db.expire_all()
            try:
                yield
                db.commit()
            except SongRoomError:
                db.rollback()
                raise
            except (StaleDataError, IntegrityError) as exc:
                db.rollback()
                logger.warning('Stale %s for room %s: %s', action, room_id, exc)
                raise Conflict('Playback state changed concurrently, refresh and retry') from exc
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error('Failed to %s room %s: %s', action, room_id, exc, exc_info=True)
                raise UpstreamUnavailable('Failed to update playback state') from exc

    def get_state(self, db: Session, room_id: str) -> PlaybackState | None:
        return db.get(PlaybackState, room_id)

    def initialize(self, db: Session, room_id: str) -> PlaybackState:
        """Create the room's playback row if it does not exist yet.

        Later calls return the existing row untouched, so an in-progress room
        never regresses to a fresh snapshot.
        """
        with self._transition(db, room_id, 'initialize'):
            self._require_room(db, room_id)
            state = db.get(PlaybackState, room_id)
            if state is None:
                state = self._create(db, room_id)
                logger.info('Playback initialized for room %s (%s)', room_id, state_name(state))
        return state

    def advance(self, db: Session, room_id: str, expected_song_id: int) -> PlaybackState:
        """Retire the current song and select the next one.

        ``expected_song_id`` names the song the caller saw finish or wants to
        skip. If the room has already moved past it, the call is a no-op.
        """
        with self._transition(db, room_id, 'advance'):
            self._require_room(db, room_id)
            state = db.get(PlaybackState, room_id)
            if state is None:
                state = self._create(db, room_id)
                return state
            if state.current_song_id is None:
                return state
            if expected_song_id != state.current_song_id:
                logger.info(
                    'Ignoring advance for room %s: song %s already retired (current %s)',
                    room_id, expected_song_id, state.current_song_id,
                )
                return state

            finished = db.get(Song, state.current_song_id)
            if finished is not None:
                finished.is_played = True
            db.flush()

            nxt = self._next(db, room_id)
            self._point(state, nxt, playing=state.has_started)
            logger.info(
                'Room %s advanced from song %s to %s (%s)',
                room_id, finished.id if finished else None, state.current_song_id, state_name(state),
            )
        return state

    def set_transport(
        self,
        db: Session,
        room_id: str,
        actor_id: str,
        is_playing: bool | None = None,
        playback_position: float | None = None,
    ) -> PlaybackState:
        if is_playing is None and playback_position is None:
            raise InvalidInput('Must include is_playing or playback_position')
        if playback_position is not None and playback_position < 0:
            raise InvalidInput('playback_position must not be negative')

        with self._transition(db, room_id, 'set transport'):
            room = self._require_room(db, room_id)
            self._check_control(db, room, actor_id)
            state = db.get(PlaybackState, room_id) or self._create(db, room_id)
            if is_playing is not None:
                # an idle room has nothing to play
                state.is_playing = is_playing and state.current_song_id is not None
                if state.is_playing:
                    state.has_started = True
            if playback_position is not None:
                state.playback_position = playback_position
            state.updated_at = _now()
        return state

    def play_now(self, db: Session, room_id: str, actor_id: str, song_id: int) -> PlaybackState:
        """Jump the queue to ``song_id``, retiring every pending song before it."""
        with self._transition(db, room_id, 'play now'):
            room = self._require_room(db, room_id)
            self._check_control(db, room, actor_id)
            song = db.query(Song).filter(Song.id == song_id, Song.room_id == room_id).first()
            if song is None:
                raise NotFound('Song not found in this room')

            skipped = (
                db.query(Song)
                .filter(Song.room_id == room_id, Song.is_played.is_(False), Song.id < song_id)
                .all()
            )
            for item in skipped:
                item.is_played = True
            song.is_played = False

            state = db.get(PlaybackState, room_id) or self._create(db, room_id)
            self._point(state, song, playing=state.has_started)
            logger.info('Room %s jumped to song %s, skipped %d', room_id, song_id, len(skipped))
        return state

    def settle(self, db: Session, room_id: str) -> PlaybackState:
        """Re-establish the current-song invariant after the queue was edited."""
        with self._transition(db, room_id, 'settle'):
            self._require_room(db, room_id)
            state = self._settle(db, room_id)
        return state

    def requeue(self, db: Session, room_id: str, song_id: int) -> Song:
        """Move a played song back to the pending queue."""
        with self._transition(db, room_id, 'requeue'):
            self._require_room(db, room_id)
            song = db.query(Song).filter(Song.id == song_id, Song.room_id == room_id).first()
            if song is None:
                raise NotFound('Song not found in this room')
            if not song.is_played:
                return song
            duplicate = (
                db.query(Song)
                .filter(Song.room_id == room_id, Song.source_id == song.source_id, Song.is_played.is_(False))
                .first()
            )
            if duplicate is not None:
                raise Conflict('Song already in queue')
            song.is_played = False
            db.flush()
            self._settle(db, room_id)
            logger.info('Song %s requeued in room %s', song_id, room_id)
        return song

    def remove_song(self, db: Session, room_id: str, song_id: int) -> PlaybackState | None:
        """Delete a song and move playback off it if it was current."""
        with self._transition(db, room_id, 'remove song'):
            self._require_room(db, room_id)
            song = db.query(Song).filter(Song.id == song_id, Song.room_id == room_id).first()
            if song is None:
                raise NotFound('Song not found in this room')
            state = db.get(PlaybackState, room_id)
            if state is not None and state.current_song_id == song_id:
                song.is_played = True
                db.flush()
                self._point(state, self._next(db, room_id), playing=state.is_playing)
                db.flush()
            db.delete(song)
            logger.info('Song %s removed from room %s', song_id, room_id)
        return state

    def _require_room(self, db: Session, room_id: str) -> Room:
        room = db.get(Room, room_id)
        if room is None:
            raise NotFound('Room not found')
        if not room.is_active:
            raise Conflict('Room is closed')
        return room

    def _check_control(self, db: Session, room: Room, actor_id: str):
        if room.host_id == actor_id:
            return
        if self.allow_all_controls and db.get(Participant, (room.id, actor_id)) is not None:
            return
        raise Forbidden('Only the host can control playback')

    def _settle(self, db: Session, room_id: str) -> PlaybackState:
        state = db.get(PlaybackState, room_id)
        if state is None:
            return self._create(db, room_id)
        if state.current_song_id is not None:
            current = db.get(Song, state.current_song_id)
            if current is not None and current.room_id == room_id and not current.is_played:
                return state
            self._point(state, self._next(db, room_id), playing=state.is_playing)
        else:
            self._point(state, self._next(db, room_id), playing=state.has_started)
        logger.info('Room %s settled on song %s (%s)', room_id, state.current_song_id, state_name(state))
        return state

    def _next(self, db: Session, room_id: str) -> Song | None:
        songs = db.query(Song).filter(Song.room_id == room_id, Song.is_played.is_(False)).all()
        votes = db.query(Vote).join(Song).filter(Song.room_id == room_id, Song.is_played.is_(False)).all()
        return top(songs, votes)

    def _create(self, db: Session, room_id: str) -> PlaybackState:
        state = PlaybackState(room_id=room_id, is_playing=False, playback_position=0, has_started=False)
        self._point(state, self._next(db, room_id), playing=False)
        db.add(state)
        return state

    @staticmethod
    def _point(state: PlaybackState, song: Song | None, playing: bool):
        state.current_song_id = song.id if song is not None else None
        state.is_playing = bool(playing) and song is not None
        state.playback_position = 0
        state.updated_at = _now()


coordinator = PlaybackCoordinator()
