import os

os.environ.setdefault('SONGROOM_DATABASE_URL', 'sqlite://')
os.environ.setdefault('SONGROOM_SECRET_KEY', 'test-secret')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from songroom import main
from songroom.auth import create_token
from songroom.database import Base, get_db
from songroom.models import Participant, Room, Song, Vote
from songroom.youtube import VideoDetails


class FakeResolver:
    def __init__(self):
        self.calls = []

    async def fetch(self, video_id):
        self.calls.append(video_id)
        return VideoDetails(source_id=video_id, title=f'Video {video_id}', thumbnail=None, duration=200)


@pytest.fixture
def engine():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def client(session_factory, resolver):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[main.get_resolver] = lambda: resolver
    main.rate_limiter.clear()
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def auth_headers(user_id, name=None):
    return {'Authorization': f'Bearer {create_token(user_id, name or user_id)}'}


@pytest.fixture
def room(db):
    room = Room(id='ABC234', host_id='host', is_active=True)
    db.add(room)
    db.add(Participant(room_id='ABC234', user_id='host', display_name='Host'))
    db.add(Participant(room_id='ABC234', user_id='guest', display_name='Guest'))
    db.commit()
    return room


def add_song(db, room_id='ABC234', source_id=None, added_by='host', is_played=False, votes=()):
    song = Song(
        room_id=room_id,
        source_id=source_id or f'vid{db.query(Song).count() + 1}',
        title='Song',
        duration=180,
        added_by=added_by,
        is_played=is_played,
    )
    db.add(song)
    db.flush()
    for user_id, vote_type in votes:
        db.add(Vote(song_id=song.id, user_id=user_id, vote_type=vote_type))
    db.commit()
    return song
