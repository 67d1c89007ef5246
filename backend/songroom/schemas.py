from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class TokenRequest(BaseModel):
    user_id: str = Field(min_length=1)
    display_name: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    user_id: str
    display_name: str


class RoomOut(BaseModel):
    id: str
    host_id: str
    is_active: bool
    created_at: datetime | None

    class Config:
        from_attributes = True


class ParticipantOut(BaseModel):
    user_id: str
    display_name: str
    joined_at: datetime | None

    class Config:
        from_attributes = True


class SongOut(BaseModel):
    id: int
    room_id: str
    source_id: str
    title: str
    thumbnail: str | None
    duration: int
    added_by: str
    is_played: bool

    class Config:
        from_attributes = True


class QueuedSongOut(SongOut):
    score: int = 0
    up: int = 0
    down: int = 0
    user_vote: Literal['up', 'down'] | None = None


class PlaybackStateOut(BaseModel):
    room_id: str
    current_song_id: int | None
    is_playing: bool
    playback_position: float
    has_started: bool
    state: Literal['idle', 'cued', 'playing']
    updated_at: datetime | None


class RoomSnapshot(BaseModel):
    room: RoomOut
    is_host: bool
    queue: list[QueuedSongOut]
    history: list[SongOut]
    playback: PlaybackStateOut | None
    participants: list[ParticipantOut]


class AddSongRequest(BaseModel):
    url: str = Field(min_length=1)


class VoteRequest(BaseModel):
    vote_type: Literal['up', 'down']


class TallyOut(BaseModel):
    song_id: int
    score: int
    up: int
    down: int
    user_vote: Literal['up', 'down'] | None


class AdvanceRequest(BaseModel):
    expected_song_id: int


class PlaybackUpdateRequest(BaseModel):
    is_playing: bool | None = None
    playback_position: float | None = None


class PlayNowRequest(BaseModel):
    song_id: int
