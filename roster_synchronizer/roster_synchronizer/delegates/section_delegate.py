from __future__ import annotations
from typing import List, Set, TYPE_CHECKING

from .base_delegate import SyncDelegate
from ...change_tracker import ChangeTracker
from ...database import (ChangeType, Section, Student, StudentSection,
                         SyncWarning, Teacher, TeacherSection, WarningType)
from ...sis_data_models import SisSection
from ...workshop import LinkedWorkshops, WorkshopSyncService

if TYPE_CHECKING:
    from ..context import SyncContext


class SectionDelegate(SyncDelegate):

    """
    Synchronizes sections and their teacher and student memberships.

    Memberships are replaced wholesale on every upsert. Sections linked
    to a workshop are protected: they are never soft-deleted by a
    delete event or by orphan detection. A `SectionDeleted` warning is
    raised instead, and a rename produces a `SectionModified` warning,
    so an operator can review the affected workshops.
    """

    entity_type = 'Section'
    result_prefix = 'sections'
    model = Section
    fields = ('name', 'period', 'subject', 'term_id')
    progress_every = 50

    def fetch(self, context: SyncContext) -> List[SisSection]:
        return self.sync.client.get_sections(context.school.external_id,
                                             cancel=context.cancel)

    def upsert(self, context: SyncContext, record: SisSection, sync_id: int,
               tracker: ChangeTracker) -> bool:
        existing = self.find(context, record.id)
        linked = (existing is not None
                  and existing.id in context.linked_section_ids())
        if linked and existing.name != record.name:
            workshops = WorkshopSyncService.get_linked_workshops(
                context.school_session, existing.id
            )
            self.add_warning(
                context, sync_id, WarningType.SECTION_MODIFIED, existing,
                workshops,
                f'Section "{existing.name}" was renamed to "{record.name}" '
                f'in the SIS. Linked workshop(s): '
                f'{", ".join(workshops.workshop_names)}.'
            )

        values = {'name': record.name,
                  'period': record.period,
                  'subject': record.subject,
                  'term_id': record.term_id}
        section, changed, _ = self.apply(context, record.id, values, sync_id,
                                         tracker)
        self.sync_members(context, section, record, linked)
        context.school_session.commit()
        return changed

    def sync_members(self, context: SyncContext, section: Section,
                     record: SisSection, linked: bool = None):
        """
        Replaces the section's teacher and student rows with the
        membership in `record`. Members unknown to the school database
        are skipped.
        """
        session = context.school_session
        if linked is None:
            linked = section.id in context.linked_section_ids()

        session.query(TeacherSection) \
            .filter(TeacherSection.section_id == section.id) \
            .delete(synchronize_session=False)
        teachers = (session.query(Teacher.id, Teacher.external_id)
                    .filter(Teacher.external_id.in_(record.teachers))
                    .all())
        for teacher_id, external_id in teachers:
            primary = external_id == record.teacher
            session.add(TeacherSection(teacher_id=teacher_id,
                                       section_id=section.id,
                                       is_primary=primary))

        before = self._student_ids(context, section.id)
        session.query(StudentSection) \
            .filter(StudentSection.section_id == section.id) \
            .delete(synchronize_session=False)
        students = (session.query(Student.id)
                    .filter(Student.external_id.in_(record.students))
                    .all())
        after = {row[0] for row in students}
        for student_id in after:
            session.add(StudentSection(student_id=student_id,
                                       section_id=section.id))

        missing = len(record.students) - len(after)
        if missing > 0:
            self.logger.debug(f'{missing} student(s) of section {record.id} '
                              'are not in the school database.')
        if linked:
            context.workshop_tracker.record_enrollment_change(
                section.id, len(after - before), len(before - after)
            )

    def record_event_received(self, context: SyncContext, external_id: str):
        section = self.find(context, external_id)
        if section is not None:
            section.last_event_received_at = context.now()
            context.school_session.commit()

    def handle_delete(self, context: SyncContext, external_id: str,
                      sync_id: int, tracker: ChangeTracker) -> bool:
        section = self.find(context, external_id)
        if section is None or section.deleted_at is not None:
            return False
        workshops = WorkshopSyncService.get_linked_workshops(
            context.school_session, section.id
        )
        if workshops:
            self.add_warning(
                context, sync_id, WarningType.SECTION_DELETED, section,
                workshops,
                f'Section "{section.name}" was deleted in the SIS but is '
                f'linked to workshop(s) '
                f'{", ".join(workshops.workshop_names)}. It was kept for '
                'manual review.'
            )
            return False
        return super().handle_delete(context, external_id, sync_id, tracker)

    def detect_orphans(self, context: SyncContext, sync_id: int,
                       tracker: ChangeTracker) -> int:
        linked_ids = context.linked_section_ids()
        deleted = 0
        for section in self.orphan_query(context).all():
            if section.id in linked_ids:
                workshops = WorkshopSyncService.get_linked_workshops(
                    context.school_session, section.id
                )
                self.add_warning(
                    context, sync_id, WarningType.SECTION_DELETED, section,
                    workshops,
                    f'Section "{section.name}" no longer exists in the SIS '
                    f'but is linked to workshop(s) '
                    f'{", ".join(workshops.workshop_names)}. It was kept for '
                    'manual review.'
                )
                context.result.sections_skipped_workshop_linked += 1
                continue
            self._soft_delete(context, section, sync_id, tracker,
                              ChangeType.ORPHANED)
            deleted += 1
        if deleted:
            context.school_session.commit()
            context.result.increment(self.result_prefix, 'deleted', deleted)
            self.logger.info(f'Marked {deleted} orphaned sections as deleted '
                             f'for school {context.school.id}.')
        return deleted

    def add_warning(self, context: SyncContext, sync_id: int,
                    warning_type: str, section: Section,
                    workshops: LinkedWorkshops, message: str) -> SyncWarning:
        warning = SyncWarning(
            sync_id=sync_id,
            warning_type=warning_type,
            entity_type=self.entity_type,
            entity_id=section.external_id,
            entity_name=section.name,
            message=message,
            affected_workshops=workshops.to_json(),
            affected_linked_count=len(workshops.workshop_ids)
        )
        context.catalog_session.add(warning)
        context.catalog_session.commit()
        context.result.add_warning(message)
        self.logger.warning(message)
        return warning

    @staticmethod
    def _student_ids(context: SyncContext, section_id: int) -> Set[int]:
        rows = (context.school_session.query(StudentSection.student_id)
                .filter(StudentSection.section_id == section_id)
                .all())
        return {row[0] for row in rows}
