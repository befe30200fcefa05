from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Event, Lock
from typing import Optional, Union
import logging

from requests.auth import HTTPBasicAuth
import requests

from .config import AuthConfig
from .credential_store import CredentialStore
from .exceptions import (SisAuthenticationError, SisMalformedJsonException,
                         SisNotAuthorizedError, SyncError)
from .utils import get_header, pause, sanitize_message, sanitize_token, utcnow

TokenType = Union[str, 'SisAccessToken']


class SisAccessToken(object):

    """
    Represents a bearer token for the SIS API.

    A token with a non-positive `expires_in` is a pre-generated,
    long-lived credential. It is never refreshed proactively.

    :param str access_token: the bearer credential
    :param str token_type: usually "Bearer"
    :param int expires_in: lifetime in seconds, <= 0 for non-expiring
    :param datetime issued_at: naive UTC issue time
    """

    def __init__(self, access_token: str, token_type: str = 'Bearer',
                 expires_in: int = 0, issued_at: datetime = None):
        self.access_token = access_token
        self.token_type = token_type or 'Bearer'
        self.expires_in = int(expires_in or 0)
        self.issued_at = utcnow() if issued_at is None else issued_at

    @property
    def non_expiring(self) -> bool:
        return self.expires_in <= 0

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.non_expiring:
            return None
        return self.issued_at + timedelta(seconds=self.expires_in)

    def expired(self, now: datetime = None) -> bool:
        if self.non_expiring:
            return False
        now = utcnow() if now is None else now
        return self.expires_at <= now

    def should_refresh(self, threshold: float = 75.0,
                       now: datetime = None) -> bool:
        """
        True once `threshold` percent of the token's lifetime has
        elapsed, or once it has expired outright.
        """
        if self.non_expiring:
            return False
        now = utcnow() if now is None else now
        if self.expired(now):
            return True
        elapsed = (now - self.issued_at).total_seconds()
        return elapsed / self.expires_in * 100 >= threshold

    @classmethod
    def from_response(cls, r: requests.Response) -> 'SisAccessToken':
        try:
            as_json = r.json()
            return cls(access_token=as_json['access_token'],
                       token_type=as_json.get('token_type', 'Bearer'),
                       expires_in=as_json.get('expires_in', 0))
        except (ValueError, KeyError, TypeError):
            raise SisMalformedJsonException(
                sanitize_message(r.text[:200])
            )

    def __str__(self):
        return self.access_token

    def __repr__(self):
        return f'SisAccessToken({sanitize_token(self.access_token)})'


@dataclass
class AuthHealthStatus(object):
    is_healthy: bool
    last_successful_auth: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None


class TokenManager(object):

    """
    Acquires, caches and refreshes SIS credentials. A pre-generated
    `AccessToken` secret in the credential store is preferred; when it
    is absent the OAuth client-credentials flow runs with the
    `ClientId` and `ClientSecret` secrets.

    Concurrent callers coalesce into a single refresh.
    """

    def __init__(self, credentials: CredentialStore,
                 config: AuthConfig = None,
                 http: requests.Session = None):
        self.credentials = credentials
        self.config = AuthConfig() if config is None else config
        self.http = requests.Session() if http is None else http
        self.logger = logging.getLogger(__name__)
        self._token = None  # type: Optional[SisAccessToken]
        self._lock = Lock()
        self.last_successful_auth = None  # type: Optional[datetime]
        self.last_error = None  # type: Optional[str]
        self.last_error_at = None  # type: Optional[datetime]

    @property
    def current_token(self) -> Optional[SisAccessToken]:
        return self._token

    def _usable(self, token: Optional[SisAccessToken]) -> bool:
        return (token is not None
                and not token.should_refresh(self.config.refresh_threshold))

    def get_token(self, force_refresh: bool = False,
                  cancel: Event = None) -> SisAccessToken:
        token = self._token
        if not force_refresh and self._usable(token):
            return token

        with self._lock:
            token = self._token
            if not force_refresh and self._usable(token):
                return token
            if token is not None:
                self.logger.debug('Token due for refresh. '
                                  'Generating new one.')
            self._token = self._authenticate(cancel)
            return self._token

    def health_status(self) -> AuthHealthStatus:
        healthy = self.last_successful_auth is not None and (
            self.last_error_at is None
            or self.last_error_at < self.last_successful_auth
        )
        return AuthHealthStatus(is_healthy=healthy,
                                last_successful_auth=self.last_successful_auth,
                                last_error=self.last_error,
                                last_error_at=self.last_error_at)

    def _authenticate(self, cancel: Event = None) -> SisAccessToken:
        try:
            static = self.credentials.get_global_secret('AccessToken',
                                                        required=False)
            if static:
                self.logger.info('Using pre-generated SIS access token '
                                 f'{sanitize_token(static)}.')
                token = SisAccessToken(static, expires_in=0)
            else:
                token = self._client_credentials(cancel)
        except SyncError as e:
            self.last_error = sanitize_message(str(e))
            self.last_error_at = utcnow()
            raise
        self.last_successful_auth = utcnow()
        return token

    def _client_credentials(self, cancel: Event = None) -> SisAccessToken:
        client_id = self.credentials.get_global_secret('ClientId')
        client_secret = self.credentials.get_global_secret('ClientSecret')
        auth = HTTPBasicAuth(client_id, client_secret)
        delay = self.config.initial_retry_delay
        for attempt in range(1, self.config.max_retries + 1):
            try:
                r = self.http.post(
                    self.config.token_url,
                    data={'grant_type': 'client_credentials'},
                    headers={'Accept': 'application/json'},
                    auth=auth,
                    timeout=self.config.timeout_seconds
                )
                if r.status_code in (400, 401, 403):
                    self.logger.error('SIS rejected client credentials '
                                      f'{sanitize_token(client_id)} with '
                                      f'status {r.status_code}.')
                    raise SisNotAuthorizedError(r.status_code)
                r.raise_for_status()
                token = SisAccessToken.from_response(r)
                self.logger.debug('Successfully retrieved new token '
                                  f'{token!r}.')
                return token
            except requests.exceptions.RequestException as e:
                msg = sanitize_message(str(e))
                if attempt == self.config.max_retries:
                    self.logger.error(f'Authentication failed after '
                                      f'{attempt} attempts: {msg}')
                    raise SisAuthenticationError(
                        f'Could not authenticate with the SIS after '
                        f'{attempt} attempts: {msg}'
                    ) from e
                self.logger.warning(f'Authentication attempt {attempt} '
                                    f'failed, retrying in {delay}s: {msg}')
                pause(delay, cancel)
                delay *= 2


class SisSession(requests.Session):

    """
    Extends the regular :class:`requests.Session` class to attach a
    current bearer token from a :class:`TokenManager` to every request.
    A 401 forces one refresh and one retry for refreshable tokens.

    :ivar logging.Logger logger: module-wide logger, accessed by
        __name__
    :ivar TokenManager token_manager: source of access tokens
    """

    def __init__(self, token_manager: TokenManager, timeout: float = 30.0):
        super().__init__()
        self.logger = logging.getLogger(__name__)
        self.logger.debug('Session opened.')
        self.token_manager = token_manager
        self.timeout = timeout

    def request(self, method, url, **kwargs):
        kwargs.setdefault('timeout', self.timeout)
        custom_args = kwargs.pop('headers', None)
        token = self.token_manager.get_token()
        r = super().request(method, url,
                            headers=get_header(token, custom_args), **kwargs)
        if r.status_code == 401 and not token.non_expiring:
            self.logger.info('Token rejected with 401. Refreshing once.')
            token = self.token_manager.get_token(force_refresh=True)
            r = super().request(method, url,
                                headers=get_header(token, custom_args),
                                **kwargs)
        return r
