from datetime import datetime, timezone
from threading import Event
from typing import Optional, Union
import re
import time

from .exceptions import SyncCancelledError


BASE_URL = 'https://api.clever.com/v3.0/'
TOKEN_URL = 'https://clever.com/oauth/tokens'
SECRET_SEPARATOR = '--'
REDACTED = '***REDACTED***'

_CONN_SECRET_REG = re.compile(
    r'(Password|Pwd|AccountKey|SharedAccessKey)\s*=\s*[^;]*',
    re.IGNORECASE
)
_URL_PASSWORD_REG = re.compile(r'(\w+://[^:/\s]+:)[^@/\s]+@')
_AUTH_HEADER_REG = re.compile(r'\b(Bearer|Basic)\s+[A-Za-z0-9\-._~+/]+=*',
                              re.IGNORECASE)
_URL_QUERY_REG = re.compile(r'(https?://[^\s?#]+)\?[^\s#]*')
_EMAIL_REG = re.compile(r'[\w.+-]+@([\w-]+\.[\w.-]+)')
_JSON_SECRET_REG = re.compile(
    r'"(access_token|refresh_token|client_secret|password|token|'
    r'id_token)"\s*:\s*"[^"]*"',
    re.IGNORECASE
)


def get_header(token, custom_args: dict = None) -> dict:
    header = {
        'Authorization': f'Bearer {token}',
        'Accept': 'application/json'
    }

    if custom_args is not None:
        header.update(custom_args)
    return header


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored at rest."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def secret_name(prefix: str, functional_name: str) -> str:
    """
    Builds the full name of a secret in the credential store, e.g.
    ``secret_name('RosterSync', 'ClientId') == 'RosterSync--ClientId'``.
    """
    if not prefix or not prefix.strip():
        raise ValueError('Secret prefix cannot be empty.')
    if not functional_name or not functional_name.strip():
        raise ValueError('Secret name cannot be empty.')
    return f'{prefix.strip()}{SECRET_SEPARATOR}{functional_name.strip()}'


def check_cancelled(cancel: Optional[Event]):
    if cancel is not None and cancel.is_set():
        raise SyncCancelledError()


def pause(seconds: float, cancel: Optional[Event] = None):
    """
    Blocks for `seconds`. When a cancellation token is given the wait
    ends early, and :class:`SyncCancelledError` is raised, as soon as
    the token is set.
    """
    if cancel is None:
        time.sleep(seconds)
        return
    if cancel.wait(seconds):
        raise SyncCancelledError()


def sanitize_token(token: Optional[str]) -> str:
    """Shows only the last four characters of a credential."""
    if not token:
        return REDACTED
    token = str(token)
    if len(token) <= 4:
        return '***'
    return '***' + token[-4:]


def sanitize_connection_string(conn: Optional[str]) -> str:
    if not conn:
        return ''
    out = _CONN_SECRET_REG.sub(lambda m: f'{m.group(1)}={REDACTED}', conn)
    return _URL_PASSWORD_REG.sub(rf'\1{REDACTED}@', out)


def sanitize_url(url: Optional[str]) -> str:
    """Drops the whole query string, which may carry cursors or ids."""
    if not url:
        return ''
    return _URL_QUERY_REG.sub(rf'\1?{REDACTED}', str(url))


def sanitize_response_body(body: Optional[str]) -> str:
    if not body:
        return ''
    return _JSON_SECRET_REG.sub(lambda m: f'"{m.group(1)}": "{REDACTED}"',
                                body)


def sanitize_message(msg: Union[str, Exception, None]) -> str:
    """
    Strips every kind of sensitive value this project knows about from
    a free-form message before it is logged or persisted.
    """
    if msg is None:
        return ''
    out = str(msg)
    out = _AUTH_HEADER_REG.sub(lambda m: f'{m.group(1)} {REDACTED}', out)
    out = sanitize_response_body(out)
    out = sanitize_connection_string(out)
    out = _URL_QUERY_REG.sub(rf'\1?{REDACTED}', out)
    return _EMAIL_REG.sub(r'***@\1', out)


def parse_int(value, default: Optional[int] = None) -> Optional[int]:
    """Parses grades like ``"9"``; ``"Kindergarten"`` yields `default`."""
    if value is None:
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parses an ISO-8601 timestamp from the SIS into naive UTC. Returns
    None for empty or unparseable input.
    """
    if not value:
        return None
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
