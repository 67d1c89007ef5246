class SongRoomError(Exception):
    status_code = 500
    code = 'error'

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail()
        super().__init__(self.detail)

    @classmethod
    def default_detail(cls) -> str:
        return cls.code.replace('_', ' ').capitalize()


class InvalidInput(SongRoomError):
    status_code = 400
    code = 'invalid_input'


class Forbidden(SongRoomError):
    status_code = 403
    code = 'forbidden'


class NotFound(SongRoomError):
    status_code = 404
    code = 'not_found'


class Conflict(SongRoomError):
    status_code = 409
    code = 'conflict'


class RateLimited(SongRoomError):
    status_code = 429
    code = 'rate_limited'


class UpstreamUnavailable(SongRoomError):
    status_code = 503
    code = 'upstream_unavailable'


ERRORS_BY_STATUS = {cls.status_code: cls for cls in (InvalidInput, Forbidden, NotFound, Conflict, RateLimited, UpstreamUnavailable)}


def error_for_status(status_code: int, detail: str | None = None) -> SongRoomError:
    cls = ERRORS_BY_STATUS.get(status_code)
    if cls is None:
        return UpstreamUnavailable(detail or f'Unexpected status {status_code}')
    return cls(detail)
