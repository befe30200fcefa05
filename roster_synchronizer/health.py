"""
Health checks for the synchronizer. Each check caches its last result
for a short time (five minutes by default) so that frequent polling by
a health aggregator does not hammer the SIS or the school databases.

    - `OrphanDetectionHealthCheck` reports stale and unassociated
      records per school.
    - `EventsHealthCheck` reports whether the SIS event stream can be
      used for incremental syncs.
    - `AuthenticationHealthCheck` reports the token manager's last
      authentication outcome.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple
import logging

from sqlalchemy import exists, func, or_, true
from sqlalchemy.exc import SQLAlchemyError

from .database import (CatalogDatabase, EventsLog, School,
                       SchoolDatabaseFactory, Section, Student,
                       StudentSection, Teacher, TeacherSection)
from .exceptions import SisRequestError, SyncError
from .sis_client import SisApiClient
from .sis_session import TokenManager
from .utils import sanitize_message, utcnow


class HealthStatus(object):
    HEALTHY = 'Healthy'
    DEGRADED = 'Degraded'
    UNHEALTHY = 'Unhealthy'


@dataclass
class HealthCheckResult(object):
    status: str
    description: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


class HealthCache(object):

    """
    A small time-boxed cache shared by the checks. Concurrent callers
    asking for the same expired key wait for a single computation.
    """

    def __init__(self, ttl: timedelta = timedelta(minutes=5)):
        self.ttl = ttl
        self._entries = {}  # type: Dict[str, Tuple[datetime, Any]]
        self._lock = Lock()

    def get_or_compute(self, key: str, compute: Callable[[], Any],
                       force_refresh: bool = False):
        with self._lock:
            entry = self._entries.get(key)
            if not force_refresh and entry is not None \
                    and utcnow() - entry[0] < self.ttl:
                return entry[1]
            value = compute()
            self._entries[key] = (utcnow(), value)
            return value

    def clear(self):
        with self._lock:
            self._entries.clear()


class OrphanDetectionHealthCheck(object):

    cache_key = 'orphan_detection'

    def __init__(self, catalog: CatalogDatabase,
                 school_databases: SchoolDatabaseFactory,
                 cache: HealthCache = None, stale_days: int = 7):
        self.catalog = catalog
        self.school_databases = school_databases
        self.cache = HealthCache() if cache is None else cache
        self.stale_days = stale_days
        self.logger = logging.getLogger(__name__)

    def check(self, force_refresh: bool = False) -> HealthCheckResult:
        return self.cache.get_or_compute(self.cache_key, self._check,
                                         force_refresh)

    def _check(self) -> HealthCheckResult:
        threshold = utcnow() - timedelta(days=self.stale_days)
        with self.catalog.session() as session:
            schools = (session.query(School)
                       .filter(School.is_active == true())
                       .order_by(School.id)
                       .all())

        data = {}
        errors = []
        for school in schools:
            try:
                with self.school_databases.session(school) as s:
                    data[school.name] = self.count(s, threshold)
            except (SyncError, SQLAlchemyError) as e:
                msg = sanitize_message(str(e))
                self.logger.error(f'Orphan check failed for school '
                                  f'{school.id}: {msg}')
                errors.append(f'{school.name}: {msg}')

        stale = sum(c['stale_students'] + c['stale_teachers']
                    + c['stale_sections'] for c in data.values())
        unassociated = sum(c['students_without_sections']
                           + c['teachers_without_sections']
                           for c in data.values())
        if errors:
            data['errors'] = errors

        if stale or errors:
            return HealthCheckResult(
                HealthStatus.DEGRADED,
                f'{stale} record(s) not synced in {self.stale_days} day(s)'
                + (f'; {len(errors)} school(s) could not be checked'
                   if errors else ''),
                data
            )
        if unassociated:
            return HealthCheckResult(
                HealthStatus.HEALTHY,
                f'No stale records. Note: {unassociated} active student(s) '
                'or teacher(s) have no section.',
                data
            )
        return HealthCheckResult(HealthStatus.HEALTHY,
                                 'No stale or orphaned records.', data)

    @staticmethod
    def count(session, threshold: datetime) -> Dict[str, int]:
        def stale(model) -> int:
            return (session.query(func.count(model.id))
                    .filter(model.deleted_at.is_(None))
                    .filter(or_(model.last_synced_at.is_(None),
                                model.last_synced_at < threshold))
                    .scalar())

        def without_sections(model, column) -> int:
            return (session.query(func.count(model.id))
                    .filter(model.deleted_at.is_(None))
                    .filter(~exists().where(column == model.id))
                    .scalar())

        return {
            'stale_students': stale(Student),
            'stale_teachers': stale(Teacher),
            'stale_sections': stale(Section),
            'students_without_sections': without_sections(
                Student, StudentSection.student_id
            ),
            'teachers_without_sections': without_sections(
                Teacher, TeacherSection.teacher_id
            )
        }


class EventsHealthCheck(object):

    """
    Checks the SIS event stream. Each check is written to the
    `events_log` table along with the actions seen on the newest page
    of events.
    """

    cache_key = 'events'
    sample_size = 100

    def __init__(self, client: SisApiClient, catalog: CatalogDatabase,
                 cache: HealthCache = None):
        self.client = client
        self.catalog = catalog
        self.cache = HealthCache() if cache is None else cache
        self.logger = logging.getLogger(__name__)

    def check(self, force_refresh: bool = False) -> HealthCheckResult:
        return self.cache.get_or_compute(self.cache_key, self._check,
                                         force_refresh)

    def _check(self) -> HealthCheckResult:
        actions = Counter()
        latest = None
        accessible = False
        try:
            events = self.client.get_recent_events(limit=self.sample_size)
            accessible = True
            actions.update(e.action for e in events)
            latest = events[-1].id if events else None
        except SisRequestError as e:
            result = self._request_failed(e)
        except SyncError as e:
            msg = sanitize_message(str(e))
            self.logger.error(f'Events health check failed: {msg}')
            result = HealthCheckResult(HealthStatus.UNHEALTHY,
                                       f'Events API check failed: {msg}')
        else:
            if latest is None:
                result = HealthCheckResult(
                    HealthStatus.DEGRADED,
                    'Events API is accessible but no events are available '
                    'yet. Schools will keep running full syncs.'
                )
            else:
                result = HealthCheckResult(
                    HealthStatus.HEALTHY,
                    'Events API is accessible and has events available for '
                    'incremental sync.'
                )

        result.data.update(events_api_accessible=accessible,
                           latest_event_id=latest,
                           checked_at_utc=utcnow().isoformat())
        self._log(result, accessible, latest, actions)
        return result

    def _request_failed(self, e: SisRequestError) -> HealthCheckResult:
        if e.status_code == 403:
            return HealthCheckResult(
                HealthStatus.DEGRADED,
                'Events API is not accessible (403 Forbidden).',
                {'recommendation': 'Request the "read:events" scope in the '
                                   'SIS application settings and have the '
                                   'district approve it.'}
            )
        if e.status_code == 404:
            return HealthCheckResult(
                HealthStatus.DEGRADED,
                'Events API is not available (404 Not Found).',
                {'recommendation': 'Enable Events for this application in '
                                   'the SIS dashboard.'}
            )
        msg = sanitize_message(str(e))
        self.logger.error(f'Events health check failed: {msg}')
        return HealthCheckResult(HealthStatus.UNHEALTHY,
                                 f'Events API check failed: {msg}')

    def _log(self, result: HealthCheckResult, accessible: bool,
             latest: Optional[str], actions: Counter):
        entry = EventsLog(checked_at=utcnow(),
                          api_accessible=accessible,
                          status=result.status,
                          created_count=actions['created'],
                          updated_count=actions['updated'],
                          deleted_count=actions['deleted'],
                          latest_event_id=latest,
                          message=result.description)
        try:
            with self.catalog.session() as session:
                session.add(entry)
                session.commit()
        except SQLAlchemyError:
            self.logger.exception('Could not write the events log entry.')


class AuthenticationHealthCheck(object):

    def __init__(self, token_manager: TokenManager):
        self.token_manager = token_manager

    def check(self) -> HealthCheckResult:
        status = self.token_manager.health_status()
        data = {
            'last_successful_auth': status.last_successful_auth,
            'last_error': status.last_error,
            'last_error_at': status.last_error_at
        }
        if status.is_healthy:
            return HealthCheckResult(HealthStatus.HEALTHY,
                                     'Authenticated with the SIS.', data)
        if status.last_successful_auth is None \
                and status.last_error is None:
            return HealthCheckResult(HealthStatus.DEGRADED,
                                     'No authentication attempted yet.', data)
        return HealthCheckResult(HealthStatus.UNHEALTHY,
                                 'SIS authentication failed: '
                                 f'{status.last_error}', data)
