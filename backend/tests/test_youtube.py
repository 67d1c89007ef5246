import asyncio

import httpx
import pytest

from songroom.errors import NotFound, UpstreamUnavailable
from songroom.youtube import VideoResolver, extract_video_id, parse_duration


@pytest.mark.parametrize('url', [
    'https://www.youtube.com/watch?v=dQw4w9WgXcQ',
    'https://youtu.be/dQw4w9WgXcQ',
    'https://www.youtube.com/embed/dQw4w9WgXcQ',
    'https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ',
    'https://youtube.com/shorts/dQw4w9WgXcQ',
    'https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42',
])
def test_extract_video_id(url):
    assert extract_video_id(url) == 'dQw4w9WgXcQ'


def test_extract_video_id_rejects_other_sites():
    assert extract_video_id('https://vimeo.com/12345') is None


def test_parse_duration():
    assert parse_duration('PT1H2M3S') == 3723
    assert parse_duration('PT4M') == 240
    assert parse_duration('PT59S') == 59
    assert parse_duration('P1D') == 0


def resolver_for(handler, api_key='key'):
    return VideoResolver(api_key=api_key, base_url='https://yt.test/v3', transport=httpx.MockTransport(handler))


def test_fetch_video_details():
    def handler(request):
        assert request.url.params['id'] == 'abc'
        assert request.url.params['key'] == 'key'
        return httpx.Response(200, json={'items': [{
            'snippet': {'title': 'Song', 'thumbnails': {'default': {'url': 'd.jpg'}, 'high': {'url': 'h.jpg'}}},
            'contentDetails': {'duration': 'PT3M30S'},
        }]})

    details = asyncio.run(resolver_for(handler).fetch('abc'))
    assert (details.source_id, details.title, details.thumbnail, details.duration) == ('abc', 'Song', 'h.jpg', 210)


def test_fetch_unknown_video():
    resolver = resolver_for(lambda request: httpx.Response(200, json={'items': []}))
    with pytest.raises(NotFound):
        asyncio.run(resolver.fetch('nope'))


@pytest.mark.parametrize('status', [403, 429, 500])
def test_fetch_upstream_failures(status):
    resolver = resolver_for(lambda request: httpx.Response(status))
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(resolver.fetch('abc'))


def test_fetch_without_api_key():
    resolver = resolver_for(lambda request: httpx.Response(200), api_key='')
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(resolver.fetch('abc'))


def test_fetch_network_error():
    def handler(request):
        raise httpx.ConnectError('down', request=request)

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(resolver_for(handler).fetch('abc'))
