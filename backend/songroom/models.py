from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Room(Base):
    __tablename__ = 'rooms'

    id = Column(String(6), primary_key=True)
    host_id = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Participant(Base):
    __tablename__ = 'room_participants'

    room_id = Column(String(6), ForeignKey('rooms.id'), primary_key=True)
    user_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False, default='Anonymous')
    joined_at = Column(DateTime(timezone=True), server_default=func.now())


class Song(Base):
    __tablename__ = 'songs'

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    room_id = Column(String(6), ForeignKey('rooms.id'), nullable=False, index=True)
    source_id = Column(String, nullable=False)
    title = Column(String, nullable=False, default='')
    thumbnail = Column(String, nullable=True)
    duration = Column(Integer, nullable=False, default=0)
    added_by = Column(String, nullable=False)
    is_played = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    votes = relationship('Vote', cascade='all, delete-orphan', back_populates='song')


class Vote(Base):
    __tablename__ = 'votes'

    song_id = Column(Integer, ForeignKey('songs.id'), primary_key=True)
    user_id = Column(String, primary_key=True)
    vote_type = Column(String(4), nullable=False)
    song = relationship('Song', back_populates='votes')


class PlaybackState(Base):
    __tablename__ = 'playback_state'

    room_id = Column(String(6), ForeignKey('rooms.id'), primary_key=True)
    current_song_id = Column(Integer, ForeignKey('songs.id'), nullable=True)
    is_playing = Column(Boolean, default=False, nullable=False)
    playback_position = Column(Float, default=0, nullable=False)
    has_started = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {'version_id_col': version}
