from threading import Event
from typing import List, Optional, Type
import logging

import requests

from . import sis_data_models as sdm
from .config import ApiConfig
from .exceptions import SisMalformedJsonException, SyncError


class SisApiClient(object):

    """
    Read-only access to the roster provider. Every list call walks all
    pages and returns one materialized list; records that cannot be
    parsed are logged and left out.

    :ivar requests.Session session: an authenticated session, usually a
        :class:`roster_synchronizer.sis_session.SisSession`
    """

    def __init__(self, session: requests.Session, config: ApiConfig = None):
        self.session = session
        self.config = ApiConfig() if config is None else config
        self.logger = logging.getLogger(__name__)
        self.walker = sdm.PageWalker(session, self.config,
                                     logger=self.logger)

    def get_students(self, school_id: str,
                     cancel: Event = None) -> List[sdm.SisStudent]:
        return self._get_all(f'schools/{school_id}/users', sdm.SisStudent,
                             params={'role': 'student'}, cancel=cancel)

    def get_teachers(self, school_id: str,
                     cancel: Event = None) -> List[sdm.SisTeacher]:
        return self._get_all(f'schools/{school_id}/users', sdm.SisTeacher,
                             params={'role': 'teacher'}, cancel=cancel)

    def get_sections(self, school_id: str,
                     cancel: Event = None) -> List[sdm.SisSection]:
        return self._get_all(f'schools/{school_id}/sections',
                             sdm.SisSection, cancel=cancel)

    def get_terms(self, cancel: Event = None) -> List[sdm.SisTerm]:
        """Terms are district-wide; the token scopes them."""
        return self._get_all('terms', sdm.SisTerm, cancel=cancel)

    def get_school_admins(self, school_id: str,
                          cancel: Event = None) -> List[sdm.SisAdmin]:
        return self._get_all(f'schools/{school_id}/users', sdm.SisAdmin,
                             params={'role': 'school_admin'}, cancel=cancel)

    def get_events(self, starting_after: str = None, school_id: str = None,
                   record_type: str = None, limit: int = None,
                   cancel: Event = None) -> List[sdm.SisEvent]:
        """
        Gets every event after the `starting_after` cursor, oldest
        first, as the SIS delivers them.

        :param starting_after: the last event id already processed
        :param school_id: only events for this school
        :param record_type: only events for this record type, e.g.
            "users"
        :param limit: page size, capped at the events maximum
        """
        limit = self.config.events_page_size if limit is None else limit
        params = {'limit': min(limit, self.config.events_page_size)}
        if starting_after:
            params['starting_after'] = starting_after
        if school_id:
            params['school'] = school_id
        if record_type:
            params['record_type'] = record_type
        return self._get_all('events', sdm.SisEvent, params=params,
                             cancel=cancel)

    def get_recent_events(self, school_id: str = None, limit: int = 100,
                          cancel: Event = None) -> List[sdm.SisEvent]:
        """
        The newest `limit` events, read as a single page from the end of
        the stream.
        """
        params = {'ending_before': 'last',
                  'limit': min(limit, self.config.events_page_size)}
        if school_id:
            params['school'] = school_id
        r = self.walker.fetch(self.config.base_url + 'events',
                              params=params, cancel=cancel)
        try:
            data = r.json().get('data') or []
        except (ValueError, AttributeError):
            raise SisMalformedJsonException(r.text[:200])
        return self._parse(data, sdm.SisEvent)

    def get_latest_event_id(self, school_id: str = None,
                            cancel: Event = None) -> Optional[str]:
        """
        The id of the newest event, used as the cursor baseline after a
        full sync. None when the stream is empty.
        """
        events = self.get_recent_events(school_id, limit=1, cancel=cancel)
        return events[-1].id if events else None

    def _get_all(self, path: str, model: Type[sdm.SisDataObject],
                 params: dict = None, cancel: Event = None) -> list:
        out = []
        seen = set()
        for page in self.walker.walk(path, params=params, cancel=cancel):
            for obj in self._parse(page.get('data') or [], model):
                if obj.id in seen:
                    self.logger.debug(f'Duplicate {model.__name__} '
                                      f'{obj.id} ignored.')
                    continue
                seen.add(obj.id)
                out.append(obj)
        self.logger.info(f'Retrieved {len(out)} {model.__name__} records '
                         f'from {path}.')
        return out

    def _parse(self, items: list, model: Type[sdm.SisDataObject]) -> list:
        out = []
        for item in items:
            try:
                out.append(model.from_json(item))
            except SyncError as e:
                self.logger.warning(f'Skipping unreadable '
                                    f'{model.__name__} record: {e}')
        return out
