from dataclasses import dataclass, field
from datetime import datetime
from threading import Event
from typing import Callable, Optional, Set
import logging

from sqlalchemy.orm import Session

from .results import SyncProgress, SyncResult
from ..database import District, School, SyncType
from ..local_time import SchoolTimeContext
from ..utils import check_cancelled
from ..workshop import WorkshopSyncService, WorkshopSyncTracker

ProgressCallback = Callable[[SyncProgress], None]
logger = logging.getLogger(__name__)


@dataclass
class SyncContext(object):

    """
    Everything one school's sync run shares across delegates: the two
    database sessions, the running result, the time context, and the
    caller's progress callback and cancellation token.
    """

    school: School
    district: Optional[District]
    school_session: Session
    catalog_session: Session
    time: SchoolTimeContext
    sync_start_time: datetime
    result: SyncResult = field(default_factory=SyncResult)
    workshop_tracker: WorkshopSyncTracker = field(
        default_factory=WorkshopSyncTracker
    )
    progress: Optional[ProgressCallback] = None
    cancel: Optional[Event] = None
    seen_admin_ids: Set[str] = field(default_factory=set)
    _linked_section_ids: Optional[Set[int]] = None

    def now(self) -> datetime:
        return self.time.now()

    def check_cancelled(self):
        check_cancelled(self.cancel)

    def linked_section_ids(self) -> Set[int]:
        """Ids of workshop-linked sections, read once per run."""
        if self._linked_section_ids is None:
            self._linked_section_ids = WorkshopSyncService \
                .get_workshop_linked_section_ids(self.school_session)
        return self._linked_section_ids

    def report(self, percent: int, operation: str):
        """
        Pushes a snapshot to the progress callback. The callback may
        drop or fail on updates; neither affects the sync.
        """
        if self.progress is None:
            return
        r = self.result
        summary = r.events_summary
        snapshot = SyncProgress(
            percent_complete=max(0, min(100, percent)),
            current_operation=operation,
            school_id=self.school.id,
            students_processed=r.students_processed,
            students_updated=r.students_updated,
            students_failed=r.students_failed,
            teachers_processed=r.teachers_processed,
            teachers_updated=r.teachers_updated,
            teachers_failed=r.teachers_failed,
            sections_processed=r.sections_processed,
            sections_updated=r.sections_updated,
            sections_failed=r.sections_failed,
            terms_processed=r.terms_processed,
            admins_processed=r.admins_processed,
            is_incremental_sync=r.sync_type == SyncType.INCREMENTAL,
            events_processed=(summary.total_events_processed
                              if summary else 0),
            events_skipped=summary.events_skipped if summary else 0
        )
        try:
            self.progress(snapshot)
        except Exception:
            logger.exception('Progress callback failed; continuing sync.')

    def rollback(self):
        self.school_session.rollback()
        self.catalog_session.rollback()
