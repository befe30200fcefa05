from email.utils import parsedate_to_datetime
from threading import Event
from typing import Generator, Optional
from urllib.parse import urljoin
import logging

import requests

from ..config import ApiConfig
from ..exceptions import (SisConnectionException, SisMalformedJsonException,
                          SisRequestError)
from ..utils import check_cancelled, pause, sanitize_url, utcnow


class PageWalker(object):
    """
    A class designed to abstract the process of walking over multiple
    pagified responses. The SIS paginates with cursors: each page may
    carry a ``links`` entry with ``rel == "next"`` whose uri is
    followed until it is absent.

    Retries happen per page. A 429 waits for the server's
    ``Retry-After`` interval and re-requests the same page; network
    errors and 5xx responses back off exponentially. Pages that were
    already yielded are never requested again.
    """
    def __init__(self, session: requests.Session, config: ApiConfig = None,
                 logger: logging.Logger = None):
        """
        :param session: the (authenticated) session to issue requests on
        :param config: retry, page-size and url settings
        :param logger: custom logger
        """
        self.session = session
        self.config = ApiConfig() if config is None else config
        if logger is None:
            self.logger = logging.getLogger(__name__)
        else:
            self.logger = logger

    def walk(self, path: str, params: dict = None,
             cancel: Event = None) -> Generator[dict, None, None]:
        """
        A generator for walking over the pagified response JSON objects.

        :param path: endpoint path relative to the base url
        :param params: query parameters for the first page; the page
            size is added unless given
        :param cancel: cancellation token, checked between pages
        """
        params = dict(params or {})
        params.setdefault('limit', self.config.page_size)
        url = urljoin(self.config.base_url, path)
        seen_urls = set()
        current_page = 1

        while url is not None:
            check_cancelled(cancel)
            r = self.fetch(url, params=params, cancel=cancel)
            try:
                page = r.json()
            except ValueError:
                raise SisMalformedJsonException(r.text[:200])
            if not isinstance(page, dict):
                raise SisMalformedJsonException(page)

            self.logger.debug(f'Read page {current_page} of '
                              f'{sanitize_url(r.url)}.')
            yield page

            next_uri = self.next_link(page)
            if next_uri is None:
                break
            url = urljoin(self.config.base_url, next_uri)
            if url in seen_urls:
                self.logger.warning('Pagination returned a link that was '
                                    'already followed. Stopping.')
                break
            seen_urls.add(url)
            params = None
            current_page += 1

    @staticmethod
    def next_link(page: dict) -> Optional[str]:
        for link in page.get('links') or []:
            if isinstance(link, dict) and link.get('rel') == 'next':
                return link.get('uri') or None
        return None

    def fetch(self, url: str, params: dict = None,
              cancel: Event = None) -> requests.Response:
        """
        Issues a GET, retrying rate limits and transient failures.

        :raises SisConnectionException: when the network keeps failing
        :raises SisRequestError: for non-retryable statuses, or when
            retryable statuses outlast the retry ceiling
        """
        max_retries = self.config.max_retries
        attempt = 0
        while True:
            check_cancelled(cancel)
            attempt += 1
            try:
                r = self.session.get(url, params=params,
                                     timeout=self.config.timeout_seconds)
            except requests.exceptions.RequestException as e:
                if attempt >= max_retries:
                    self.logger.error(f'Request to {sanitize_url(url)} '
                                      f'failed after {attempt} attempts: '
                                      f'{type(e).__name__}')
                    raise SisConnectionException(sanitize_url(url),
                                                 attempt) from e
                self._backoff(url, attempt, type(e).__name__, cancel)
                continue

            if r.status_code == 429:
                if attempt >= max_retries:
                    self.logger.error(f'Still rate limited by the SIS after '
                                      f'{attempt} attempts on '
                                      f'{sanitize_url(url)}.')
                    raise SisRequestError(sanitize_url(url), 429, attempt)
                delay = self.retry_after(r)
                self.logger.warning(f'Rate limited on {sanitize_url(url)}. '
                                    f'Waiting {delay}s before retrying the '
                                    'same page.')
                pause(delay, cancel)
                continue

            if r.status_code >= 500:
                if attempt >= max_retries:
                    self.logger.error(f'Request to {sanitize_url(url)} '
                                      f'failed with status {r.status_code} '
                                      f'after {attempt} attempts.')
                    raise SisRequestError(sanitize_url(url), r.status_code,
                                          attempt)
                self._backoff(url, attempt, f'status {r.status_code}',
                              cancel)
                continue

            if not r.ok:
                self.logger.error(f'Request to {sanitize_url(url)} was '
                                  f'rejected with status {r.status_code}.')
                raise SisRequestError(sanitize_url(url), r.status_code,
                                      attempt)
            return r

    def retry_after(self, r: requests.Response) -> float:
        """
        Seconds to wait according to the ``Retry-After`` header, which
        may be a number of seconds or an HTTP date.
        """
        default = self.config.rate_limit_delay_seconds
        header = r.headers.get('Retry-After')
        if not header:
            return default
        try:
            return max(float(header), 0.0)
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            return default
        if when.tzinfo is not None:
            when = when.replace(tzinfo=None) - when.utcoffset()
        return max((when - utcnow()).total_seconds(), 0.0)

    def _backoff(self, url: str, attempt: int, reason: str,
                 cancel: Event = None):
        delay = self.config.base_delay_seconds * 2 ** (attempt - 1)
        self.logger.warning(f'Attempt {attempt} for {sanitize_url(url)} '
                            f'failed ({reason}). Retrying in {delay}s.')
        pause(delay, cancel)
