"""
Runtime settings for the synchronizer. Each group of settings is a
dataclass that can be built from the environment with ``from_env``;
anything not present in the environment keeps its default.

Settings read by :meth:`ApiConfig.from_env`:

- `SIS_BASE_URL`, `SIS_PAGE_SIZE`, `SIS_MAX_RETRIES`,
  `SIS_RETRY_DELAY`, `SIS_TIMEOUT`, `SIS_RATE_LIMIT_DELAY`,
  `SIS_EVENTS_PAGE_SIZE`

by :meth:`AuthConfig.from_env`:

- `SIS_TOKEN_URL`, `SECRET_PREFIX`, `AUTH_MAX_RETRIES`,
  `AUTH_RETRY_DELAY`, `TOKEN_REFRESH_THRESHOLD`, `AUTH_TIMEOUT`

and by :meth:`SyncConfig.from_env`:

- `MAX_CONCURRENT_SCHOOLS`, `LOCK_DURATION_MINUTES`,
  `DEFAULT_TIME_ZONE`, `STALE_THRESHOLD_DAYS`,
  `HEALTH_CACHE_MINUTES`, `SCHEDULE_WINDOW_MINUTES`
"""
from dataclasses import dataclass
from os import environ
from typing import Callable, Mapping

from .exceptions import ConfigurationError
from .utils import BASE_URL, TOKEN_URL


def _read(env: Mapping, key: str, default, cast: Callable):
    raw = env.get(key)
    if raw is None or raw == '':
        return default
    try:
        return cast(raw)
    except ValueError as ve:
        raise ConfigurationError(key, raw) from ve


def _check_range(name: str, value, low, high):
    if not low <= value <= high:
        raise ConfigurationError(name, value)


@dataclass
class ApiConfig(object):
    base_url: str = BASE_URL
    page_size: int = 100
    max_retries: int = 5
    base_delay_seconds: float = 2.0
    timeout_seconds: float = 30.0
    rate_limit_delay_seconds: float = 5.0
    events_page_size: int = 1000

    def __post_init__(self):
        if not self.base_url.endswith('/'):
            self.base_url += '/'
        _check_range('page_size', self.page_size, 1, 10000)
        _check_range('max_retries', self.max_retries, 1, 10)
        _check_range('base_delay_seconds', self.base_delay_seconds, 0, 60)
        _check_range('timeout_seconds', self.timeout_seconds, 1, 300)
        _check_range('rate_limit_delay_seconds',
                     self.rate_limit_delay_seconds, 0, 300)
        _check_range('events_page_size', self.events_page_size, 1, 1000)

    @classmethod
    def from_env(cls, env: Mapping = None) -> 'ApiConfig':
        env = environ if env is None else env
        return cls(
            base_url=env.get('SIS_BASE_URL') or BASE_URL,
            page_size=_read(env, 'SIS_PAGE_SIZE', 100, int),
            max_retries=_read(env, 'SIS_MAX_RETRIES', 5, int),
            base_delay_seconds=_read(env, 'SIS_RETRY_DELAY', 2.0, float),
            timeout_seconds=_read(env, 'SIS_TIMEOUT', 30.0, float),
            rate_limit_delay_seconds=_read(env, 'SIS_RATE_LIMIT_DELAY',
                                           5.0, float),
            events_page_size=_read(env, 'SIS_EVENTS_PAGE_SIZE', 1000, int)
        )


@dataclass
class AuthConfig(object):
    token_url: str = TOKEN_URL
    secret_prefix: str = 'RosterSync'
    max_retries: int = 5
    initial_retry_delay: float = 2.0
    refresh_threshold: float = 75.0
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if not self.secret_prefix:
            raise ConfigurationError('secret_prefix', self.secret_prefix)
        _check_range('max_retries', self.max_retries, 1, 10)
        _check_range('initial_retry_delay', self.initial_retry_delay, 0, 60)
        _check_range('refresh_threshold', self.refresh_threshold, 1, 100)

    @classmethod
    def from_env(cls, env: Mapping = None) -> 'AuthConfig':
        env = environ if env is None else env
        return cls(
            token_url=env.get('SIS_TOKEN_URL') or TOKEN_URL,
            secret_prefix=env.get('SECRET_PREFIX') or 'RosterSync',
            max_retries=_read(env, 'AUTH_MAX_RETRIES', 5, int),
            initial_retry_delay=_read(env, 'AUTH_RETRY_DELAY', 2.0, float),
            refresh_threshold=_read(env, 'TOKEN_REFRESH_THRESHOLD',
                                    75.0, float),
            timeout_seconds=_read(env, 'AUTH_TIMEOUT', 30.0, float)
        )


@dataclass
class SyncConfig(object):
    max_concurrent_schools: int = 5
    lock_duration_minutes: int = 30
    default_time_zone: str = 'America/New_York'
    stale_threshold_days: int = 7
    health_cache_minutes: float = 5.0
    schedule_window_minutes: int = 5

    def __post_init__(self):
        _check_range('max_concurrent_schools',
                     self.max_concurrent_schools, 1, 50)
        _check_range('lock_duration_minutes',
                     self.lock_duration_minutes, 1, 24 * 60)
        _check_range('stale_threshold_days', self.stale_threshold_days,
                     1, 365)
        _check_range('schedule_window_minutes',
                     self.schedule_window_minutes, 1, 60)

    @classmethod
    def from_env(cls, env: Mapping = None) -> 'SyncConfig':
        env = environ if env is None else env
        return cls(
            max_concurrent_schools=_read(env, 'MAX_CONCURRENT_SCHOOLS',
                                         5, int),
            lock_duration_minutes=_read(env, 'LOCK_DURATION_MINUTES',
                                        30, int),
            default_time_zone=(env.get('DEFAULT_TIME_ZONE')
                               or 'America/New_York'),
            stale_threshold_days=_read(env, 'STALE_THRESHOLD_DAYS', 7, int),
            health_cache_minutes=_read(env, 'HEALTH_CACHE_MINUTES',
                                       5.0, float),
            schedule_window_minutes=_read(env, 'SCHEDULE_WINDOW_MINUTES',
                                          5, int)
        )
