import logging

import httpx

from ..errors import UpstreamUnavailable, error_for_status
from ..schemas import PlaybackStateOut, RoomSnapshot, SongOut, TallyOut

logger = logging.getLogger(__name__)


class RoomApiClient:
    """Thin async wrapper over the room HTTP endpoints.

    Non-2xx responses are raised as the matching ``songroom.errors`` class,
    transport failures as ``UpstreamUnavailable``.
    """

    def __init__(self, base_url: str, token: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={'Authorization': f'Bearer {token}'},
        )

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    def websocket_url(self, room_id: str) -> str:
        scheme, rest = self.base_url.split('://', 1)
        ws_scheme = 'wss' if scheme == 'https' else 'ws'
        return f'{ws_scheme}://{rest}/rooms/{room_id}/ws?token={self.token}'

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning('%s %s failed: %s', method, path, exc)
            raise UpstreamUnavailable(f'Request failed: {exc}') from exc
        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                logger.warning('%s %s returned a non-JSON body', method, path)
                raise UpstreamUnavailable('Malformed response from server') from exc
        try:
            detail = response.json().get('detail')
        except ValueError:
            detail = None
        raise error_for_status(response.status_code, detail if isinstance(detail, str) else None)

    async def get_snapshot(self, room_id: str) -> RoomSnapshot:
        return RoomSnapshot.model_validate(await self._request('GET', f'/rooms/{room_id}'))

    async def join(self, room_id: str) -> RoomSnapshot:
        return RoomSnapshot.model_validate(await self._request('POST', f'/rooms/{room_id}/join'))

    async def add_song(self, room_id: str, url: str) -> SongOut:
        return SongOut.model_validate(await self._request('POST', f'/rooms/{room_id}/songs', json={'url': url}))

    async def vote(self, room_id: str, song_id: int, vote_type: str) -> TallyOut:
        data = await self._request('POST', f'/rooms/{room_id}/songs/{song_id}/vote', json={'vote_type': vote_type})
        return TallyOut.model_validate(data)

    async def initialize(self, room_id: str) -> PlaybackStateOut:
        return PlaybackStateOut.model_validate(await self._request('POST', f'/rooms/{room_id}/playback/initialize'))

    async def advance(self, room_id: str, expected_song_id: int) -> PlaybackStateOut:
        data = await self._request('POST', f'/rooms/{room_id}/playback/advance', json={'expected_song_id': expected_song_id})
        return PlaybackStateOut.model_validate(data)

    async def set_transport(self, room_id: str, is_playing: bool | None = None, playback_position: float | None = None) -> PlaybackStateOut:
        body = {}
        if is_playing is not None:
            body['is_playing'] = is_playing
        if playback_position is not None:
            body['playback_position'] = playback_position
        return PlaybackStateOut.model_validate(await self._request('PATCH', f'/rooms/{room_id}/playback', json=body))

    async def play_now(self, room_id: str, song_id: int) -> PlaybackStateOut:
        data = await self._request('POST', f'/rooms/{room_id}/playback/play-now', json={'song_id': song_id})
        return PlaybackStateOut.model_validate(data)
