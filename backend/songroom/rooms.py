import logging
import secrets

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import Conflict, Forbidden, NotFound
from .models import Participant, Room

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
ROOM_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10


def generate_room_code() -> str:
    return ''.join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def normalize_code(room_id: str) -> str:
    return room_id.strip().upper()


def get_room(db: Session, room_id: str) -> Room:
    room = db.get(Room, normalize_code(room_id))
    if room is None:
        raise NotFound('Room not found')
    return room


def get_active_room(db: Session, room_id: str) -> Room:
    room = get_room(db, room_id)
    if not room.is_active:
        raise Conflict('Room is closed')
    return room


def is_participant(db: Session, room_id: str, user_id: str) -> bool:
    return db.get(Participant, (room_id, user_id)) is not None


def require_participant(db: Session, room_id: str, user_id: str) -> Room:
    room = get_room(db, room_id)
    if not is_participant(db, room.id, user_id):
        raise Forbidden('You are not a participant in this room')
    return room


def create_room(db: Session, host_id: str, display_name: str) -> Room:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_room_code()
        if db.get(Room, code) is not None:
            continue
        room = Room(id=code, host_id=host_id, is_active=True)
        db.add(room)
        db.add(Participant(room_id=code, user_id=host_id, display_name=display_name))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            continue
        logger.info('Room %s created by %s', code, host_id)
        return room
    raise Conflict('Could not allocate a room code')


def join_room(db: Session, room_id: str, user_id: str, display_name: str) -> Room:
    room = get_active_room(db, room_id)
    participant = db.get(Participant, (room.id, user_id))
    if participant is None:
        db.add(Participant(room_id=room.id, user_id=user_id, display_name=display_name))
        db.commit()
        logger.info('User %s joined room %s', user_id, room.id)
    return room


def close_room(db: Session, room_id: str, actor_id: str) -> Room:
    room = get_room(db, room_id)
    if room.host_id != actor_id:
        raise Forbidden('Only the host can close the room')
    if room.is_active:
        room.is_active = False
        db.commit()
        logger.info('Room %s closed', room.id)
    return room


def list_participants(db: Session, room_id: str) -> list[Participant]:
    return db.query(Participant).filter(Participant.room_id == room_id).order_by(Participant.joined_at.asc()).all()
