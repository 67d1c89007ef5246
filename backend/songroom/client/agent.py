import asyncio
import logging
from typing import Protocol

from ..config import settings
from ..errors import SongRoomError
from .session import RoomSession

logger = logging.getLogger(__name__)

NEAR_END_SECONDS = 1.5


class MediaElement(Protocol):
    def load(self, source_id: str, position: float) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, position: float) -> None: ...

    def current_time(self) -> float: ...

    def duration(self) -> float: ...


class ClientPlaybackAgent:
    def __init__(
        self,
        api,
        room_id: str,
        media: MediaElement,
        notify=None,
        near_end_interval: float = 1.0,
        drift_tolerance: float | None = None,
        **session_options,
    ):
        self.api = api
        self.room_id = room_id
        self.media = media
        self.notify = notify or (lambda message: logger.warning('%s', message))
        self.near_end_interval = near_end_interval
        self.drift_tolerance = settings.drift_tolerance if drift_tolerance is None else drift_tolerance
        self.session = RoomSession(api, room_id, on_snapshot=self.apply, on_error=self._on_read_error, **session_options)

        self.snapshot = None
        self.loaded_song_id: int | None = None
        self.local_playing = False
        self._last_marker = None
        self._ended: set[int] = set()
        self._watch: asyncio.Task | None = None
        self._mounted = False

    @property
    def playback(self):
        return self.snapshot.playback if self.snapshot is not None else None

    @property
    def is_host(self) -> bool:
        return bool(self.snapshot and self.snapshot.is_host)

    def current_song(self):
        playback = self.playback
        if playback is None or playback.current_song_id is None:
            return None
        return next((song for song in self.snapshot.queue if song.id == playback.current_song_id), None)

    async def mount(self):
        if self._mounted:
            return
        self._mounted = True
        await self.session.open()
        if self.is_host and self.playback is None:
            try:
                await self.api.initialize(self.room_id)
            except SongRoomError as exc:
                self.notify(f'Could not start playback: {exc.detail}')
            else:
                await self.session.refresh()
        self._watch = asyncio.create_task(self._watch_near_end())

    async def unmount(self):
        if not self._mounted:
            return
        self._mounted = False
        if self._watch is not None:
            self._watch.cancel()
            await asyncio.gather(self._watch, return_exceptions=True)
            self._watch = None
        await self.session.close()

    async def __aenter__(self):
        await self.mount()
        return self

    async def __aexit__(self, *exc_info):
        await self.unmount()

    async def apply(self, snapshot):
        """Make the local media element match an authoritative snapshot."""
        self.snapshot = snapshot
        self._reconcile()

    def _reconcile(self):
        playback = self.playback
        song = self.current_song()
        if song is None:
            if self.loaded_song_id is not None:
                self.media.pause()
                self.loaded_song_id = None
            self._ended.clear()
            self.local_playing = False
            self._last_marker = None
            return

        marker = (song.id, playback.playback_position, playback.updated_at)
        if song.id != self.loaded_song_id:
            self.media.load(song.source_id, playback.playback_position)
            self.loaded_song_id = song.id
            # end signals only matter for the loaded song
            self._ended.clear()
        elif marker != self._last_marker:
            if abs(self.media.current_time() - playback.playback_position) > self.drift_tolerance:
                self.media.seek(playback.playback_position)
        self._last_marker = marker

        if self.local_playing != playback.is_playing:
            logger.debug('Local play state overridden by room %s', self.room_id)
        self._set_local(playback.is_playing)

    def _set_local(self, playing: bool):
        if playing:
            self.media.play()
        else:
            self.media.pause()
        self.local_playing = playing

    async def toggle_play(self) -> bool:
        if self.current_song() is None:
            return False
        previous = self.local_playing
        target = not previous
        self._set_local(target)
        try:
            state = await self.api.set_transport(
                self.room_id, is_playing=target, playback_position=self.media.current_time()
            )
        except SongRoomError as exc:
            self._set_local(previous)
            self.notify(f'Could not {"play" if target else "pause"}: {exc.detail}')
            return False
        self._accept(state)
        return True

    async def seek(self, position: float) -> bool:
        if self.current_song() is None:
            return False
        previous = self.media.current_time()
        self.media.seek(position)
        try:
            state = await self.api.set_transport(self.room_id, playback_position=position)
        except SongRoomError as exc:
            self.media.seek(previous)
            self.notify(f'Could not seek: {exc.detail}')
            return False
        self._accept(state)
        return True

    async def on_media_ended(self) -> bool:
        """Ask the room to move past the song that just ended.

        Returns False when this song's end was already reported.
        """
        song_id = self.loaded_song_id
        if song_id is None or song_id in self._ended:
            return False
        self._ended.add(song_id)
        try:
            await self.api.advance(self.room_id, expected_song_id=song_id)
        except SongRoomError as exc:
            self._ended.discard(song_id)
            self.notify(f'Could not start the next song: {exc.detail}')
            return False
        await self.session.refresh()
        return True

    async def check_near_end(self) -> bool:
        if not self.local_playing or self.loaded_song_id is None:
            return False
        duration = self.media.duration()
        position = self.media.current_time()
        if duration > 0 and position > 0 and duration - position <= NEAR_END_SECONDS:
            logger.debug('Song %s near end (%.1f/%.1f)', self.loaded_song_id, position, duration)
            return await self.on_media_ended()
        return False

    async def _watch_near_end(self):
        while True:
            await asyncio.sleep(self.near_end_interval)
            try:
                await self.check_near_end()
            except Exception:
                logger.exception('Near-end check failed in room %s', self.room_id)

    def _accept(self, state):
        if self.snapshot is None or state.current_song_id != self.loaded_song_id:
            return
        self.snapshot = self.snapshot.model_copy(update={'playback': state})
        self._reconcile()

    async def _on_read_error(self, exc: SongRoomError):
        self.notify(f'Connection problem, retrying: {exc.detail}')
