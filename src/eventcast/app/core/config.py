from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from functools import lru_cache
import math
import os
from dotenv import load_dotenv


class Settings(BaseSettings):
    model_config = SettingsConfigDict(frozen=True)

    app_name: str = "eventcast"
    app_env: str = "development"
    log_level: str = "INFO"
    cors_allow_origins: List[str] = ["*"]
    heartbeat_interval_seconds: float = 30.0
    write_timeout_seconds: float = 5.0
    subscriber_queue_size: int = 100
    default_event_type: str = "update"

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings):
        # Environment is read and validated by get_settings()
        return (init_settings,)


def _positive(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        value = cast(raw)
    except ValueError as exc:
        raise RuntimeError(f'{name} must be a number (see .env)') from exc
    if not math.isfinite(value) or value <= 0:
        raise RuntimeError(f'{name} must be a finite number greater than zero')
    return value


@lru_cache()
def get_settings() -> Settings:
    load_dotenv()

    cors_origins = os.getenv('CORS_ALLOW_ORIGINS')
    if cors_origins:
        cors_allow_origins = [o.strip() for o in cors_origins.split(',') if o.strip()]
    else:
        cors_allow_origins = ["*"]

    default_event_type = (os.getenv('DEFAULT_EVENT_TYPE') or '').strip() or 'update'

    return Settings(
        app_name="eventcast",
        app_env=os.getenv('APP_ENV', 'development'),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        cors_allow_origins=cors_allow_origins,
        heartbeat_interval_seconds=_positive('HEARTBEAT_INTERVAL_SECONDS', '30', float),
        write_timeout_seconds=_positive('WRITE_TIMEOUT_SECONDS', '5', float),
        subscriber_queue_size=_positive('SUBSCRIBER_QUEUE_SIZE', '100', int),
        default_event_type=default_event_type,
    )
