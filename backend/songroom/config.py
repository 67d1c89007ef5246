from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', env_prefix='SONGROOM_', extra='ignore')

    app_name: str = 'Songroom API'
    secret_key: str = 'dev-secret-change-me'
    algorithm: str = 'HS256'
    access_token_expire_minutes: int = 60 * 24
    log_level: str = 'INFO'

    database_url: str = 'sqlite:///./songroom.db'

    # Playback transport is host-only unless this is switched on.
    allow_all_controls: bool = False

    queue_rate_limit_count: int = 10
    queue_rate_limit_seconds: int = 30

    youtube_api_key: str = ''
    youtube_api_url: str = 'https://www.googleapis.com/youtube/v3'
    youtube_timeout_seconds: float = 10.0

    poll_interval: float = 4.0
    heartbeat_timeout: float = 8.0
    reconnect_delay: float = 15.0
    drift_tolerance: float = 2.0


settings = Settings()
