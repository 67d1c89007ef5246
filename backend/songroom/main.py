import logging
import time
from collections import defaultdict, deque

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import rooms, songs, votes
from .auth import create_token, decode_token, get_current_user
from .config import settings
from .database import Base, engine, get_db
from .errors import Conflict, InvalidInput, RateLimited, SongRoomError
from .models import PlaybackState, Room
from .playback import coordinator, state_name
from .ranking import rank, tally
from .realtime import PONG, manager
from .schemas import (
    AddSongRequest,
    AdvanceRequest,
    ParticipantOut,
    PlaybackStateOut,
    PlaybackUpdateRequest,
    PlayNowRequest,
    QueuedSongOut,
    RoomOut,
    RoomSnapshot,
    SongOut,
    TallyOut,
    TokenRequest,
    TokenResponse,
    VoteRequest,
)
from .youtube import extract_video_id, resolver

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.add_middleware(CORSMiddleware, allow_origins=['*'], allow_credentials=True, allow_methods=['*'], allow_headers=['*'])

rate_limiter: dict[str, deque] = defaultdict(deque)


def get_resolver():
    return resolver


def playback_out(state: PlaybackState | None) -> PlaybackStateOut | None:
    if state is None:
        return None
    return PlaybackStateOut(
        room_id=state.room_id,
        current_song_id=state.current_song_id,
        is_playing=state.is_playing,
        playback_position=state.playback_position,
        has_started=state.has_started,
        state=state_name(state),
        updated_at=state.updated_at,
    )


def build_snapshot(db: Session, room: Room, user_id: str) -> RoomSnapshot:
    room_songs = songs.room_songs(db, room.id)
    room_votes = votes.room_votes(db, room.id)
    queue = []
    for song in rank(room_songs, room_votes):
        t = tally(song.id, room_votes, user_id)
        queue.append(QueuedSongOut(
            **SongOut.model_validate(song).model_dump(),
            score=t.score, up=t.up, down=t.down, user_vote=t.user_vote,
        ))
    return RoomSnapshot(
        room=RoomOut.model_validate(room),
        is_host=room.host_id == user_id,
        queue=queue,
        history=[SongOut.model_validate(s) for s in room_songs if s.is_played],
        playback=playback_out(coordinator.get_state(db, room.id)),
        participants=[ParticipantOut.model_validate(p) for p in rooms.list_participants(db, room.id)],
    )


def check_rate_limit(user_id: str):
    bucket = rate_limiter[user_id]
    now = time.time()
    window = settings.queue_rate_limit_seconds
    while bucket and now - bucket[0] > window:
        bucket.popleft()
    if len(bucket) >= settings.queue_rate_limit_count:
        raise RateLimited('Rate limit exceeded')
    bucket.append(now)


@app.exception_handler(SongRoomError)
async def songroom_error_handler(request: Request, exc: SongRoomError):
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.detail, 'code': exc.code})


@app.on_event('startup')
def startup():
    Base.metadata.create_all(bind=engine)


@app.get('/health')
def health():
    return {'status': 'ok'}


@app.post('/auth/token', response_model=TokenResponse)
def issue_token(payload: TokenRequest):
    display_name = payload.display_name or payload.user_id
    token = create_token(payload.user_id, display_name)
    return TokenResponse(access_token=token, user_id=payload.user_id, display_name=display_name)


@app.post('/rooms', response_model=RoomSnapshot, status_code=201)
def create_room(db: Session = Depends(get_db), user=Depends(get_current_user)):
    room = rooms.create_room(db, user['user_id'], user['display_name'])
    return build_snapshot(db, room, user['user_id'])


@app.post('/rooms/{room_id}/join', response_model=RoomSnapshot)
async def join_room(room_id: str, db: Session = Depends(get_db), user=Depends(get_current_user)):
    room = rooms.join_room(db, room_id, user['user_id'], user['display_name'])
    if room.host_id == user['user_id']:
        coordinator.initialize(db, room.id)
    await manager.room_updated(room.id)
    return build_snapshot(db, room, user['user_id'])


@app.post('/rooms/{room_id}/close', response_model=RoomOut)
async def close_room(room_id: str, db: Session = Depends(get_db), user=Depends(get_current_user)):
    room = rooms.close_room(db, room_id, user['user_id'])
    await manager.room_updated(room.id)
    return room


@app.get('/rooms/{room_id}', response_model=RoomSnapshot)
def get_snapshot(room_id: str, db: Session = Depends(get_db), user=Depends(get_current_user)):
    room = rooms.require_participant(db, room_id, user['user_id'])
    return build_snapshot(db, room, user['user_id'])


@app.post('/rooms/{room_id}/songs', response_model=SongOut, status_code=201)
async def add_song(
    room_id: str,
    payload: AddSongRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    video_resolver=Depends(get_resolver),
):
    room = rooms.require_participant(db, room_id, user['user_id'])
    if not room.is_active:
        raise Conflict('Room is closed')
    video_id = extract_video_id(payload.url)
    if not video_id:
        raise InvalidInput('Invalid YouTube URL')
    songs.ensure_not_queued(db, room.id, video_id)
    check_rate_limit(user['user_id'])

    details = await video_resolver.fetch(video_id)
    song = songs.add_song(db, room, user['user_id'], details)
    await manager.room_updated(room.id)
    return song


@app.delete('/rooms/{room_id}/songs/{song_id}')
async def remove_song(room_id: str, song_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    room = rooms.require_participant(db, room_id, user['user_id'])
    state = songs.remove_song(db, room, user['user_id'], song_id)
    await manager.room_updated(room.id)
    return {'ok': True, 'playback': playback_out(state)}


@app.post('/rooms/{room_id}/songs/{song_id}/requeue', response_model=SongOut)
async def requeue_song(room_id: str, song_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    room = rooms.require_participant(db, room_id, user['user_id'])
    song = songs.requeue_song(db, room, song_id)
    await manager.room_updated(room.id)
    return song


@app.post('/rooms/{room_id}/songs/{song_id}/vote', response_model=TallyOut)
async def cast_vote(
    room_id: str,
    song_id: int,
    payload: VoteRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    room = rooms.require_participant(db, room_id, user['user_id'])
    result = votes.cast(db, song_id, user['user_id'], payload.vote_type, room_id=room.id)
    await manager.room_updated(room.id)
    return TallyOut(song_id=result.song_id, score=result.score, up=result.up, down=result.down, user_vote=result.user_vote)


@app.post('/rooms/{room_id}/playback/initialize', response_model=PlaybackStateOut)
async def initialize_playback(room_id: str, db: Session = Depends(get_db), user=Depends(get_current_user)):
    room = rooms.require_participant(db, room_id, user['user_id'])
    state = coordinator.initialize(db, room.id)
    await manager.room_updated(room.id)
    return playback_out(state)


@app.post('/rooms/{room_id}/playback/advance', response_model=PlaybackStateOut)
async def advance_playback(
    room_id: str,
    payload: AdvanceRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    room = rooms.require_participant(db, room_id, user['user_id'])
    state = coordinator.advance(db, room.id, expected_song_id=payload.expected_song_id)
    await manager.room_updated(room.id)
    return playback_out(state)


@app.patch('/rooms/{room_id}/playback', response_model=PlaybackStateOut)
async def update_playback(
    room_id: str,
    payload: PlaybackUpdateRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    room = rooms.require_participant(db, room_id, user['user_id'])
    state = coordinator.set_transport(db, room.id, user['user_id'], **payload.model_dump(exclude_none=True))
    await manager.room_updated(room.id)
    return playback_out(state)


@app.post('/rooms/{room_id}/playback/play-now', response_model=PlaybackStateOut)
async def play_now(
    room_id: str,
    payload: PlayNowRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    room = rooms.require_participant(db, room_id, user['user_id'])
    state = coordinator.play_now(db, room.id, user['user_id'], payload.song_id)
    await manager.room_updated(room.id)
    return playback_out(state)


@app.websocket('/rooms/{room_id}/ws')
async def room_socket(websocket: WebSocket, room_id: str, token: str = '', db: Session = Depends(get_db)):
    try:
        user = decode_token(token)
    except ValueError:
        await websocket.close(code=4401)
        return
    room = db.get(Room, rooms.normalize_code(room_id))
    if room is None:
        await websocket.close(code=4404)
        return
    if not rooms.is_participant(db, room.id, user['user_id']):
        await websocket.close(code=4403)
        return
    room_code = room.id
    db.close()

    await manager.connect(room_code, websocket)
    try:
        while True:
            message = await websocket.receive_text()
            if message == 'ping':
                await websocket.send_json({'type': PONG})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(room_code, websocket)
