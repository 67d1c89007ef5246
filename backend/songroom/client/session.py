import asyncio
import json
import logging

import websockets
from websockets.exceptions import WebSocketException

from ..config import settings
from ..errors import SongRoomError
from ..realtime import PONG, ROOM_UPDATED

logger = logging.getLogger(__name__)

CONNECTING = 'connecting'
PUSH = 'push'
POLL = 'poll'
CLOSED = 'closed'


class RoomSession:
    def __init__(
        self,
        api,
        room_id: str,
        on_snapshot=None,
        on_error=None,
        poll_interval: float | None = None,
        heartbeat_timeout: float | None = None,
        reconnect_delay: float | None = None,
        connect=None,
    ):
        self.api = api
        self.room_id = room_id
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.poll_interval = poll_interval or settings.poll_interval
        self.heartbeat_timeout = heartbeat_timeout or max(settings.heartbeat_timeout, 2 * self.poll_interval)
        self.reconnect_delay = reconnect_delay or settings.reconnect_delay
        self.connect = connect or websockets.connect

        self.snapshot = None
        self.mode = CONNECTING
        self._closed = False
        self._socket = None
        self._supervisor: asyncio.Task | None = None
        self._poller: asyncio.Task | None = None
        self._recovered = asyncio.Event()
        self._refresh_lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self):
        if self._closed:
            raise RuntimeError('Session is closed')
        await self.refresh()
        if self._supervisor is None:
            self._supervisor = asyncio.create_task(self._supervise())
        return self

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self.mode = CLOSED
        tasks = [task for task in (self._supervisor, self._poller) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._socket is not None:
            await self._socket.close()
            self._socket = None
        self._supervisor = self._poller = None
        logger.debug('Session for room %s closed', self.room_id)

    async def __aenter__(self):
        return await self.open()

    async def __aexit__(self, *exc_info):
        await self.close()

    def notify_network_recovered(self):
        """Retry the push channel now instead of waiting for the reconnect delay."""
        self._recovered.set()

    async def refresh(self):
        async with self._refresh_lock:
            try:
                snapshot = await self.api.get_snapshot(self.room_id)
            except SongRoomError as exc:
                logger.warning('Snapshot fetch for room %s failed: %s', self.room_id, exc)
                if self.on_error is not None:
                    await self.on_error(exc)
                return self.snapshot
            self.snapshot = snapshot
            if self.on_snapshot is not None:
                await self.on_snapshot(snapshot)
            return snapshot

    async def _refresh_in_background(self):
        try:
            await self.refresh()
        except Exception:
            logger.exception('Refreshing room %s failed', self.room_id)

    async def _supervise(self):
        url = self.api.websocket_url(self.room_id)
        while not self._closed:
            try:
                async with self.connect(url, open_timeout=self.heartbeat_timeout) as socket:
                    self._socket = socket
                    self._enter_push()
                    # catch up on anything missed while polling
                    await self._refresh_in_background()
                    await self._listen(socket)
            except asyncio.CancelledError:
                raise
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.info('Push channel for room %s unavailable: %s', self.room_id, exc)
            finally:
                self._socket = None
            if self._closed:
                break
            self._enter_poll()
            await self._wait_for_retry()

    async def _listen(self, socket):
        loop = asyncio.get_running_loop()
        last_heard = loop.time()
        while True:
            try:
                raw = await asyncio.wait_for(socket.recv(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                if loop.time() - last_heard >= self.heartbeat_timeout:
                    logger.info('No heartbeat from room %s in %.1fs', self.room_id, self.heartbeat_timeout)
                    return
                await socket.send('ping')
                continue
            last_heard = loop.time()
            try:
                message = json.loads(raw)
            except ValueError:
                continue
            kind = message.get('type')
            if kind == ROOM_UPDATED:
                await self._refresh_in_background()
            elif kind != PONG:
                logger.debug('Ignoring message %r', kind)

    async def _wait_for_retry(self):
        try:
            await asyncio.wait_for(self._recovered.wait(), timeout=self.reconnect_delay)
        except asyncio.TimeoutError:
            pass
        self._recovered.clear()

    def _enter_push(self):
        if self.mode != PUSH:
            logger.info('Room %s: push channel connected', self.room_id)
        self.mode = PUSH
        if self._poller is not None:
            self._poller.cancel()
            self._poller = None

    def _enter_poll(self):
        if self.mode != POLL:
            logger.info('Room %s: polling every %.1fs', self.room_id, self.poll_interval)
        self.mode = POLL
        if self._poller is None or self._poller.done():
            self._poller = asyncio.create_task(self._poll())

    async def _poll(self):
        while True:
            await asyncio.sleep(self.poll_interval)
            await self._refresh_in_background()
