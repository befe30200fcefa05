from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from sqlalchemy.orm import Query

from ...change_tracker import ChangeTracker
from ...database import ChangeType, SyncHistory, SyncStatus
from ...exceptions import SyncCancelledError
from ...utils import sanitize_message, utcnow

if TYPE_CHECKING:
    from ..context import SyncContext
    from ..roster_synchronizer import RosterSynchronizer


def _stamp(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


class SyncDelegate(ABC):

    """
    Abstract base class that outlines behavior common to all the
    delegate classes. Each delegate owns one entity type of a school's
    roster: the full fetch and reconcile (:meth:`sync_all`), single
    record upserts and deletes (used by the event processor too), and
    orphan detection after a full sync.

    Subclasses name the school-database model they manage in `model`
    and the fields compared on every upsert in `fields`; the shared
    upsert, delete and orphan logic works off those two attributes.
    """

    entity_type = None  # type: str
    """Name used in history, audit and log records, e.g. "Student"."""
    result_prefix = None  # type: str
    """Prefix of this entity's counters on :class:`SyncResult`."""
    model = None
    fields = ()  # type: Tuple[str, ...]
    progress_every = 10

    def __init__(self, synchronizer: RosterSynchronizer):
        """
        Stores reference to the parent synchronizer and sets the class's
        logger to that of said synchronizer. `__call__` runs
        :meth:`sync_all` so each delegate behaves more or less as if it
        were a method of the `RosterSynchronizer` class.

        :param RosterSynchronizer synchronizer: the parent synchronizer
        """
        self.sync = synchronizer
        self.logger = self.sync.logger  # For convenience

    @abstractmethod
    def fetch(self, context: SyncContext) -> List[Any]:
        """Every record of this type the SIS has for the school."""
        pass

    @abstractmethod
    def upsert(self, context: SyncContext, record, sync_id: int,
               tracker: ChangeTracker) -> bool:
        """Creates or updates one record; True if anything changed."""
        pass

    def __call__(self, context: SyncContext, start_percent: int = 0,
                 end_percent: int = 100) -> int:
        return self.sync_all(context, start_percent, end_percent)

    def sync_all(self, context: SyncContext, start_percent: int = 0,
                 end_percent: int = 100) -> int:
        """
        Fetches every record from the SIS and reconciles it with the
        school database, filing the run under a new `SyncHistory` row.

        A failing record is counted and skipped. Anything that fails the
        whole entity type marks the history row Failed and is re-raised.

        :return: the id of the `SyncHistory` row
        """
        catalog = context.catalog_session
        history = SyncHistory(school_id=context.school.id,
                              entity_type=self.entity_type,
                              sync_type=context.result.sync_type,
                              start_time=utcnow(),
                              status=SyncStatus.IN_PROGRESS)
        catalog.add(history)
        catalog.commit()
        tracker = ChangeTracker(catalog, self.logger)
        result = context.result
        processed_before = result.get(self.result_prefix, 'processed')
        updated_before = result.get(self.result_prefix, 'updated')
        failed_before = result.get(self.result_prefix, 'failed')

        try:
            self.logger.info(f'Fetching {self.result_prefix} for school '
                             f'{context.school.id}.')
            records = self.fetch(context)
            total = len(records)
            for i, record in enumerate(records, start=1):
                context.check_cancelled()
                result.increment(self.result_prefix, 'processed')
                mark = tracker.mark()
                try:
                    if self.upsert(context, record, history.id, tracker):
                        result.increment(self.result_prefix, 'updated')
                except SyncCancelledError:
                    raise
                except Exception:
                    self.logger.exception(f'Failed to sync '
                                          f'{self.entity_type} {record.id} '
                                          f'for school {context.school.id}.')
                    context.rollback()
                    tracker.discard_since(mark)
                    result.increment(self.result_prefix, 'failed')
                if i % self.progress_every == 0 or i == total:
                    span = end_percent - start_percent
                    context.report(
                        start_percent + span * i // max(total, 1),
                        f'Processing {i}/{total} {self.result_prefix}, '
                        f'{result.get(self.result_prefix, "updated")} '
                        'updated'
                    )
            tracker.save_changes()
            history.status = SyncStatus.SUCCESS
            self.logger.info(
                f'{self.entity_type} sync complete for school '
                f'{context.school.id}: {total} processed, '
                f'{result.get(self.result_prefix, "updated") - updated_before}'
                f' updated, '
                f'{result.get(self.result_prefix, "failed") - failed_before}'
                ' failed.'
            )
        except Exception as e:
            context.rollback()
            self.logger.error(f'{self.entity_type} sync failed for school '
                              f'{context.school.id}.')
            history.status = SyncStatus.FAILED
            history.error_message = sanitize_message(str(e))
            raise
        finally:
            history.records_processed = \
                result.get(self.result_prefix, 'processed') - processed_before
            history.records_updated = \
                result.get(self.result_prefix, 'updated') - updated_before
            history.records_failed = \
                result.get(self.result_prefix, 'failed') - failed_before
            history.end_time = utcnow()
            catalog.commit()
        return history.id

    def handle_delete(self, context: SyncContext, external_id: str,
                      sync_id: int, tracker: ChangeTracker) -> bool:
        """
        Soft-deletes one record. A record that is missing or already
        deleted is left alone and False is returned.
        """
        session = context.school_session
        obj = self.find(context, external_id)
        if obj is None or obj.deleted_at is not None:
            return False
        self._soft_delete(context, obj, sync_id, tracker, ChangeType.DELETED)
        session.commit()
        context.result.increment(self.result_prefix, 'deleted')
        self.logger.info(f'Deleted {self.entity_type} {external_id} for '
                         f'school {context.school.id}.')
        return True

    def detect_orphans(self, context: SyncContext, sync_id: int,
                       tracker: ChangeTracker) -> int:
        """
        Soft-deletes every active record that the just-finished full sync
        did not see, i.e. whose `last_synced_at` predates the run.

        :return: the number of records marked as orphans
        """
        orphans = self.orphan_query(context).all()
        for obj in orphans:
            self._soft_delete(context, obj, sync_id, tracker,
                              ChangeType.ORPHANED)
        if orphans:
            context.school_session.commit()
            context.result.increment(self.result_prefix, 'deleted',
                                     len(orphans))
            self.logger.info(f'Marked {len(orphans)} orphaned '
                             f'{self.result_prefix} as deleted for school '
                             f'{context.school.id}.')
        return len(orphans)

    def orphan_query(self, context: SyncContext) -> Query:
        model = self.model
        start = context.sync_start_time
        return (context.school_session.query(model)
                .filter(model.deleted_at.is_(None))
                .filter((model.last_synced_at.is_(None))
                        | (model.last_synced_at < start)))

    def find(self, context: SyncContext, external_id: str):
        return (context.school_session.query(self.model)
                .filter(self.model.external_id == external_id)
                .one_or_none())

    def snapshot(self, obj) -> Dict[str, Any]:
        out = {f: getattr(obj, f) for f in self.fields}
        out['deleted_at'] = _stamp(obj.deleted_at)
        return out

    def display_name(self, obj) -> Optional[str]:
        return getattr(obj, 'name', None)

    def apply(self, context: SyncContext, external_id: str,
              values: Dict[str, Any], sync_id: int,
              tracker: ChangeTracker) -> Tuple[Any, bool, Optional[dict]]:
        """
        Shared upsert logic. Looks the record up by external id and
        creates it, restores it, or updates it when any compared field
        differs; `last_synced_at` is stamped either way. Nothing is
        committed here.

        :return: the model object, whether it changed, and its snapshot
            from before the change (None for creations)
        """
        now = context.now()
        obj = self.find(context, external_id)
        new = dict(values, deleted_at=None)

        if obj is None:
            obj = self.model(external_id=external_id, last_synced_at=now,
                             created_at=now, updated_at=now, **values)
            context.school_session.add(obj)
            context.school_session.flush()
            tracker.track(sync_id, self.entity_type, external_id,
                          self.display_name(obj), None, new,
                          ChangeType.CREATED)
            return obj, True, None

        obj.last_synced_at = now
        old = self.snapshot(obj)
        if old == new:
            return obj, False, old

        for k, v in values.items():
            setattr(obj, k, v)
        obj.deleted_at = None
        obj.updated_at = now
        tracker.track(sync_id, self.entity_type, external_id,
                      self.display_name(obj), old, new, ChangeType.UPDATED)
        return obj, True, old

    def _soft_delete(self, context: SyncContext, obj, sync_id: int,
                     tracker: ChangeTracker, change_type: str):
        now = context.now()
        old = self.snapshot(obj)
        obj.deleted_at = now
        obj.updated_at = now
        tracker.track(sync_id, self.entity_type, obj.external_id,
                      self.display_name(obj), old,
                      dict(old, deleted_at=_stamp(now)), change_type)
