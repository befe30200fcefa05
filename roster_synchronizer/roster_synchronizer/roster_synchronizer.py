from concurrent.futures import ThreadPoolExecutor, as_completed
from threading import BoundedSemaphore, Event
from typing import Dict, List, Optional
import logging

from sqlalchemy import true
from sqlalchemy.orm import Session

from . import delegates
from .context import ProgressCallback, SyncContext
from .event_processor import EventProcessor
from .results import SyncResult, SyncSummary
from ..change_tracker import ChangeTracker
from ..config import SyncConfig
from ..database import (CatalogDatabase, District, School,
                        SchoolDatabaseFactory, SyncHistory, SyncStatus,
                        SyncType)
from ..exceptions import (DistrictNotFoundError, LockLostError,
                          MissingSecretError, SchoolNotFoundError,
                          SisAuthenticationError, SisRequestError,
                          SyncCancelledError, SyncError)
from ..local_time import LocalTimeService
from ..lock_service import SyncLockService, school_scope
from ..sis_client import SisApiClient
from ..utils import sanitize_message, utcnow
from ..workshop import WorkshopSyncService

EVENTS_ENTITY_TYPE = 'Events'


def is_auth_failure(e: Exception) -> bool:
    """
    True for missing or rejected SIS credentials, which fail every
    entity type of a school alike.
    """
    if isinstance(e, (SisAuthenticationError, MissingSecretError)):
        return True
    return isinstance(e, SisRequestError) and e.status_code in (401, 403)


class RosterSynchronizer(object):

    """
    A driver class that synchronizes roster data from the SIS into each
    school's database. The SIS is treated as the "master" copy that the
    school databases should match.

    Each school is synced under its own lock, either in full (every
    entity type is fetched and reconciled, then orphans are removed)
    or incrementally from the event stream, anchored on the cursor
    stored by the previous successful run.
    """

    full_sync_steps = (
        ('sync_students', 5, 30),
        ('sync_teachers', 30, 45),
        ('sync_terms', 45, 50),
        ('sync_sections', 50, 80),
        ('sync_admins', 80, 88)
    )
    """Delegate attribute, start and end percent, in sync order."""

    def __init__(self, catalog: CatalogDatabase,
                 school_databases: SchoolDatabaseFactory,
                 client: SisApiClient,
                 lock_service: SyncLockService = None,
                 workshop_service: WorkshopSyncService = None,
                 config: SyncConfig = None,
                 time_service: LocalTimeService = None,
                 acquired_by: str = 'RosterSynchronizer'):
        """
        :param catalog: the catalog database
        :param school_databases: opens each school's database
        :param client: the SIS API client
        :param lock_service: defaults to a lock service on `catalog`
        :param workshop_service: defaults to the stored-procedure
            reconciler
        :param config: sync settings, read from the environment if
            not given
        :param time_service: resolves district time zones
        :param acquired_by: name recorded on the locks this instance
            takes
        """
        self.logger = logging.getLogger(__name__)
        self.catalog = catalog
        self.school_databases = school_databases
        self.client = client
        self.config = SyncConfig.from_env() if config is None else config
        self.lock_service = SyncLockService(catalog) \
            if lock_service is None else lock_service
        self.workshop_service = WorkshopSyncService() \
            if workshop_service is None else workshop_service
        self.time_service = \
            LocalTimeService(self.config.default_time_zone) \
            if time_service is None else time_service
        self.acquired_by = acquired_by
        self._slots = BoundedSemaphore(self.config.max_concurrent_schools)

        self.sync_students = delegates.StudentDelegate(self)
        self.sync_teachers = delegates.TeacherDelegate(self)
        self.sync_terms = delegates.TermDelegate(self)
        self.sync_sections = delegates.SectionDelegate(self)
        self.sync_admins = delegates.AdminDelegate(self)
        self.event_processor = EventProcessor(self)

    def sync_all_districts(self, force_full_sync: bool = False,
                           progress: ProgressCallback = None,
                           cancel: Event = None,
                           initiated_by: str = None) -> SyncSummary:
        """Syncs every active school of every district as one batch."""
        with self.catalog.session() as session:
            rows = (session.query(School.id)
                    .join(District, District.id == School.district_id)
                    .filter(School.is_active == true())
                    .order_by(School.id)
                    .all())
        self.logger.info(f'Syncing {len(rows)} active school(s) across all '
                         'districts.')
        return self._sync_batch([r[0] for r in rows], force_full_sync,
                                progress, cancel, initiated_by)

    def sync_district(self, district_id: int, force_full_sync: bool = False,
                      progress: ProgressCallback = None,
                      cancel: Event = None,
                      initiated_by: str = None) -> SyncSummary:
        """
        Syncs every active school of one district.

        :raises DistrictNotFoundError: if the district does not exist
        """
        with self.catalog.session() as session:
            district = session.get(District, district_id)
            if district is None:
                raise DistrictNotFoundError(district_id)
            rows = (session.query(School.id)
                    .filter(School.district_id == district_id)
                    .filter(School.is_active == true())
                    .order_by(School.id)
                    .all())
            self.logger.info(f'Syncing {len(rows)} active school(s) of '
                             f'district "{district.name}".')
        return self._sync_batch([r[0] for r in rows], force_full_sync,
                                progress, cancel, initiated_by)

    def sync_school(self, school_id: int, force_full_sync: bool = False,
                    progress: ProgressCallback = None,
                    cancel: Event = None,
                    initiated_by: str = None) -> SyncResult:
        """
        Syncs one school under its lock. The run is Full when
        `force_full_sync` is set, when the school is flagged with
        `requires_full_sync`, or when no earlier run left an event
        cursor; otherwise it is Incremental.

        Failures are reported on the returned result, not raised.

        :param school_id: catalog id of the school
        :param force_full_sync: always run a full sync
        :param progress: receives :class:`SyncProgress` snapshots
        :param cancel: set to stop the sync at the next check
        :param initiated_by: the user or trigger behind the request
        """
        result = SyncResult(school_id=school_id, start_time=utcnow())
        scope = school_scope(school_id)
        lock = self.lock_service.try_acquire(
            scope, self.acquired_by, initiated_by,
            self.config.lock_duration_minutes
        )
        if not lock.success:
            holder = lock.current_holder.holder \
                if lock.current_holder is not None else 'unknown'
            result.error_message = f'Sync already running for school ' \
                                   f'{school_id} (held by {holder})'
            result.end_time = utcnow()
            self.logger.warning(result.error_message)
            return result

        try:
            with self.catalog.session() as catalog_session:
                school = catalog_session.get(School, school_id)
                if school is None:
                    raise SchoolNotFoundError(school_id)
                district = catalog_session.get(District, school.district_id)
                result.school_name = school.name
                with self.school_databases.session(school) as school_session:
                    context = SyncContext(
                        school=school,
                        district=district,
                        school_session=school_session,
                        catalog_session=catalog_session,
                        time=self.time_service.create_context(district),
                        sync_start_time=utcnow(),
                        result=result,
                        progress=progress,
                        cancel=cancel
                    )
                    cursor = self._last_cursor(catalog_session, school_id)
                    if force_full_sync or school.requires_full_sync \
                            or cursor is None:
                        self._full_sync(context, lock.lock_id)
                    else:
                        self._incremental_sync(context, cursor, lock.lock_id)
                    context.report(100, 'Sync complete' if result.success
                                   else 'Sync finished with errors')
        except SyncCancelledError as e:
            result.success = False
            result.error_message = str(e)
            self.logger.warning(f'Sync of school {school_id} was cancelled.')
        except SyncError as e:
            result.success = False
            result.error_message = sanitize_message(str(e))
            self.logger.error(f'Sync of school {school_id} failed: '
                              + result.error_message)
        except Exception as e:
            result.success = False
            result.error_message = sanitize_message(str(e))
            self.logger.exception(f'Unexpected error while syncing school '
                                  f'{school_id}: {result.error_message}')
        finally:
            self.lock_service.release(scope, lock.lock_id)
            result.end_time = utcnow()

        self.logger.info(
            f'Finished {result.sync_type or "aborted"} sync of school '
            f'{school_id} in {result.duration}: '
            f'{"success" if result.success else "failed"}, '
            f'{result.total_processed} processed, '
            f'{result.total_failed} failed, '
            f'{result.warnings_generated} warning(s).'
        )
        return result

    def _sync_batch(self, school_ids: List[int], force_full_sync: bool,
                    progress: Optional[ProgressCallback],
                    cancel: Optional[Event],
                    initiated_by: Optional[str]) -> SyncSummary:
        summary = SyncSummary(start_time=utcnow())
        if school_ids:
            workers = min(len(school_ids),
                          self.config.max_concurrent_schools)
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    executor.submit(self._run_guarded, school_id,
                                    force_full_sync, progress, cancel,
                                    initiated_by)
                    for school_id in school_ids
                ]
                for future in as_completed(futures):
                    summary.add(future.result())
        summary.end_time = utcnow()
        self.logger.info(
            f'Batch finished in {summary.duration}: '
            f'{summary.successful_schools}/{summary.total_schools} '
            f'school(s) succeeded, {summary.total_records_processed} '
            f'record(s) processed, {summary.total_records_failed} failed.'
        )
        return summary

    def _run_guarded(self, school_id: int, force_full_sync: bool,
                     progress: Optional[ProgressCallback],
                     cancel: Optional[Event],
                     initiated_by: Optional[str]) -> SyncResult:
        """
        Runs one school of a batch. Holds a slot of the instance-wide
        semaphore for the duration, and turns anything that escapes
        :meth:`sync_school` into a failed result so the rest of the
        batch carries on.
        """
        with self._slots:
            start = utcnow()
            try:
                return self.sync_school(school_id, force_full_sync,
                                        progress, cancel, initiated_by)
            except Exception as e:
                msg = sanitize_message(str(e))
                self.logger.exception(f'Unhandled error while syncing '
                                      f'school {school_id}: {msg}')
                return SyncResult(school_id=school_id, success=False,
                                  error_message=msg, start_time=start,
                                  end_time=utcnow())

    @staticmethod
    def _last_cursor(session: Session, school_id: int) -> Optional[str]:
        """
        The event cursor left by the most recent successful run, or
        None when there is none.
        """
        row = (session.query(SyncHistory.last_event_id)
               .filter(SyncHistory.school_id == school_id)
               .filter(SyncHistory.status == SyncStatus.SUCCESS)
               .filter(SyncHistory.last_event_id.isnot(None))
               .order_by(SyncHistory.end_time.desc(),
                         SyncHistory.id.desc())
               .first())
        return None if row is None else row[0]

    def _heartbeat(self, context: SyncContext, lock_id: str):
        context.check_cancelled()
        scope = school_scope(context.school.id)
        if not self.lock_service.extend(scope, lock_id,
                                        self.config.lock_duration_minutes):
            raise LockLostError(scope, lock_id)

    def _full_sync(self, context: SyncContext, lock_id: str):
        """
        Runs every delegate in order, then orphan detection, workshop
        reconciliation and the event cursor baseline.

        An entity type that fails is recorded and the remaining types
        still run; orphan detection is skipped for it, and for any type
        with failed records, whose rows were not stamped this run. The
        baseline is only written when every type succeeded.

        The school is flagged with `requires_full_sync` before anything
        else, and only a written baseline clears the flag, so a run that
        stops short of it is followed by another full sync rather than
        by events replayed from an older cursor.
        """
        result = context.result
        result.sync_type = SyncType.FULL
        school = context.school
        self.logger.info(f'Starting full sync of school {school.id} '
                         f'("{school.name}").')
        if not school.requires_full_sync:
            school.requires_full_sync = True
            school.updated_at = utcnow()
            context.catalog_session.commit()
        context.report(0, 'Starting full sync')

        histories = {}  # type: Dict[str, int]
        completed = []
        for attr, start, end in self.full_sync_steps:
            delegate = getattr(self, attr)
            self._heartbeat(context, lock_id)
            try:
                histories[delegate.entity_type] = delegate(context, start,
                                                           end)
            except (SyncCancelledError, LockLostError):
                raise
            except Exception as e:
                if is_auth_failure(e):
                    result.failed_entity_types.append(delegate.entity_type)
                    raise
                self.logger.exception(
                    f'{delegate.entity_type} sync failed for school '
                    f'{school.id}: {sanitize_message(str(e))}'
                )
                result.failed_entity_types.append(delegate.entity_type)
                continue
            if result.get(delegate.result_prefix, 'failed'):
                self.logger.warning(
                    f'Skipping orphan detection of {delegate.result_prefix} '
                    f'for school {school.id}: some records failed.'
                )
            else:
                completed.append(delegate)

        self._heartbeat(context, lock_id)
        context.report(88, 'Detecting orphaned records')
        tracker = ChangeTracker(context.catalog_session, self.logger)
        for delegate in completed:
            context.check_cancelled()
            delegate.detect_orphans(context, histories[delegate.entity_type],
                                    tracker)
        tracker.save_changes()

        if histories:
            context.report(92, 'Reconciling workshops')
            sync_id = histories.get(self.sync_sections.entity_type,
                                    max(histories.values()))
            self._run_workshop_sync(context, sync_id)

        if result.failed_entity_types:
            result.success = False
            result.error_message = 'Failed entity types: ' \
                + ', '.join(result.failed_entity_types)
            self.logger.error(f'Full sync of school {school.id} incomplete. '
                              + result.error_message)
            return

        context.report(96, 'Establishing event baseline')
        self._establish_baseline(context, list(histories.values()))
        result.success = True

    def _establish_baseline(self, context: SyncContext,
                            history_ids: List[int]):
        """
        Stores the newest event id on this run's history rows so the
        next run can go incremental, then clears `requires_full_sync`.
        Without a baseline the flag set at the start of the run stays,
        and the next run is a full sync.
        """
        school = context.school
        catalog = context.catalog_session
        try:
            latest = self.client.get_latest_event_id(school.external_id,
                                                     cancel=context.cancel)
        except SyncCancelledError:
            raise
        except SyncError as e:
            self.logger.error(f'Could not read the latest event id for '
                              f'school {school.id}: '
                              f'{sanitize_message(str(e))}. The next sync '
                              'will be a full sync.')
            return

        if latest is None:
            self.logger.warning(f'The event stream for school {school.id} '
                                'is empty. The next sync will be a full '
                                'sync.')
            return

        catalog.query(SyncHistory) \
            .filter(SyncHistory.id.in_(history_ids)) \
            .update({SyncHistory.last_event_id: latest},
                    synchronize_session=False)
        school.requires_full_sync = False
        school.updated_at = utcnow()
        catalog.commit()
        self.logger.info(f'Event baseline for school {school.id} set to '
                         f'{latest}.')

    def _incremental_sync(self, context: SyncContext, cursor: str,
                          lock_id: str):
        """
        Applies every event since `cursor` and files the run under one
        `Events` history row carrying the new cursor.
        """
        result = context.result
        result.sync_type = SyncType.INCREMENTAL
        school = context.school
        catalog = context.catalog_session
        self._heartbeat(context, lock_id)
        self.logger.info(f'Starting incremental sync of school {school.id} '
                         f'from event {cursor}.')
        context.report(0, 'Fetching events')

        history = SyncHistory(school_id=school.id,
                              entity_type=EVENTS_ENTITY_TYPE,
                              sync_type=SyncType.INCREMENTAL,
                              start_time=utcnow(),
                              status=SyncStatus.IN_PROGRESS)
        catalog.add(history)
        catalog.commit()

        try:
            events = self.client.get_events(starting_after=cursor,
                                            school_id=school.external_id,
                                            cancel=context.cancel)
            self._heartbeat(context, lock_id)
            tracker = ChangeTracker(catalog, self.logger)
            summary = self.event_processor.process_events(
                context, events, history.id, tracker
            )
            history.status = SyncStatus.SUCCESS
            history.last_event_id = summary.last_event_id or cursor
            history.records_processed = summary.total_events_processed
            history.records_updated = summary.total_changes
            history.records_failed = summary.events_failed
        except Exception as e:
            context.rollback()
            history.status = SyncStatus.FAILED
            history.error_message = sanitize_message(str(e))
            raise
        finally:
            history.end_time = utcnow()
            catalog.commit()

        self._run_workshop_sync(context, history.id)
        result.success = True

    def _run_workshop_sync(self, context: SyncContext, sync_id: int):
        workshop = self.workshop_service.execute(
            context.school_session, context.catalog_session, sync_id,
            context.workshop_tracker
        )
        context.result.workshop_result = workshop
        if not workshop.success:
            context.result.add_warning(workshop.message)
