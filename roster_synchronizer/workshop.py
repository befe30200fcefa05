"""
Protection for workshops, which a downstream scheduling system builds
on top of sections and student grades.

Two things happen here. A :class:`WorkshopSyncTracker` records, during
one sync run, whether students joined or left workshop-linked sections
and whether any student's grade changed. Afterwards the
:class:`WorkshopSyncService` runs the downstream reconciliation through
a :class:`WorkshopReconciler` if either happened. A failed
reconciliation becomes a `WorkshopSyncFailed` warning and never fails
the sync.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Set
import json
import logging

from sqlalchemy import text
from sqlalchemy.orm import Session

from .database import SyncWarning, WarningType, Workshop, WorkshopSection
from .exceptions import WorkshopReconciliationError
from .utils import sanitize_message

logger = logging.getLogger(__name__)


class WorkshopSyncTracker(object):

    def __init__(self):
        self.has_workshop_enrollment_changes = False
        self.has_grade_changes = False
        self.students_added = 0
        self.students_removed = 0
        self.grade_changes = 0
        self.affected_section_ids = set()  # type: Set[int]

    def record_enrollment_change(self, section_id: int, added: int,
                                 removed: int):
        if added == 0 and removed == 0:
            return
        self.has_workshop_enrollment_changes = True
        self.students_added += added
        self.students_removed += removed
        self.affected_section_ids.add(section_id)

    def record_grade_change(self, student_id: int, old_grade, new_grade):
        if old_grade == new_grade:
            return
        self.has_grade_changes = True
        self.grade_changes += 1
        logger.debug(f'Student {student_id} changed grade {old_grade} -> '
                     f'{new_grade}.')

    @property
    def requires_workshop_sync(self) -> bool:
        return self.has_workshop_enrollment_changes or self.has_grade_changes

    def get_summary(self) -> str:
        if not self.requires_workshop_sync:
            return 'No workshop-relevant changes.'
        parts = []
        if self.has_workshop_enrollment_changes:
            parts.append(f'{len(self.affected_section_ids)} workshop '
                         f'section(s) changed membership '
                         f'(+{self.students_added}/-{self.students_removed})')
        if self.has_grade_changes:
            parts.append(f'{self.grade_changes} grade change(s)')
        return '; '.join(parts) + '.'


class WorkshopReconciler(ABC):
    """Port to the downstream workshop reconciliation."""

    @abstractmethod
    def run(self, school_session: Session, sync_id: int):
        pass


class SqlWorkshopReconciler(WorkshopReconciler):
    """Runs the reconciliation stored procedure in the school database."""

    procedure = 'dbo.spSyncWorkshops_FromSectionsAndGrades_WithAudit'

    def run(self, school_session: Session, sync_id: int):
        school_session.execute(
            text(f'EXEC {self.procedure} @SyncId = :sync_id'),
            {'sync_id': sync_id}
        )
        school_session.commit()


@dataclass
class WorkshopSyncResult(object):
    success: bool = True
    executed: bool = False
    message: str = ''
    warning_id: Optional[int] = None


@dataclass
class LinkedWorkshops(object):
    workshop_ids: List[int] = field(default_factory=list)
    workshop_names: List[str] = field(default_factory=list)

    def __bool__(self):
        return len(self.workshop_ids) > 0

    def to_json(self) -> str:
        return json.dumps([{'id': i, 'name': n} for i, n in
                           zip(self.workshop_ids, self.workshop_names)])


class WorkshopSyncService(object):

    def __init__(self, reconciler: WorkshopReconciler = None):
        self.reconciler = SqlWorkshopReconciler() if reconciler is None \
            else reconciler
        self.logger = logging.getLogger(__name__)

    def execute(self, school_session: Session, catalog_session: Session,
                sync_id: int,
                tracker: WorkshopSyncTracker) -> WorkshopSyncResult:
        """
        Reconciles workshops when the run touched anything they depend
        on.

        :param school_session: session on the school database
        :param catalog_session: session on the catalog, for warnings
        :param sync_id: the `SyncHistory` id the run is filed under
        :param tracker: the run's change tracker
        :return: a result; failures are reported, never raised
        """
        if not tracker.requires_workshop_sync:
            self.logger.debug('Skipping workshop sync: '
                              + tracker.get_summary())
            return WorkshopSyncResult(success=True, executed=False,
                                      message=tracker.get_summary())

        self.logger.info(f'Running workshop sync for sync {sync_id}: '
                         + tracker.get_summary())
        try:
            self.reconciler.run(school_session, sync_id)
        except Exception as e:
            school_session.rollback()
            error = WorkshopReconciliationError(sync_id, e)
            msg = sanitize_message(str(error))
            self.logger.exception(msg)
            warning = SyncWarning(
                sync_id=sync_id,
                warning_type=WarningType.WORKSHOP_SYNC_FAILED,
                entity_type='Workshop',
                message=msg,
                affected_linked_count=len(tracker.affected_section_ids)
            )
            catalog_session.add(warning)
            catalog_session.commit()
            return WorkshopSyncResult(success=False, executed=True,
                                      message=msg, warning_id=warning.id)
        return WorkshopSyncResult(success=True, executed=True,
                                  message=tracker.get_summary())

    @staticmethod
    def get_workshop_linked_section_ids(session: Session) -> Set[int]:
        rows = session.query(WorkshopSection.section_id).distinct().all()
        return {row[0] for row in rows}

    @staticmethod
    def get_linked_workshops(session: Session,
                             section_id: int) -> LinkedWorkshops:
        rows = (session.query(Workshop.id, Workshop.name)
                .join(WorkshopSection,
                      WorkshopSection.workshop_id == Workshop.id)
                .filter(WorkshopSection.section_id == section_id)
                .order_by(Workshop.name)
                .all())
        return LinkedWorkshops([r[0] for r in rows], [r[1] for r in rows])

