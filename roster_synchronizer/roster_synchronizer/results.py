from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from ..workshop import WorkshopSyncResult

ENTITY_PREFIXES = ('students', 'teachers', 'sections', 'terms', 'admins')


@dataclass
class SyncProgress(object):
    """A progress snapshot pushed to whoever is watching a sync."""
    percent_complete: int = 0
    current_operation: str = ''
    school_id: Optional[int] = None
    students_processed: int = 0
    students_updated: int = 0
    students_failed: int = 0
    teachers_processed: int = 0
    teachers_updated: int = 0
    teachers_failed: int = 0
    sections_processed: int = 0
    sections_updated: int = 0
    sections_failed: int = 0
    terms_processed: int = 0
    admins_processed: int = 0
    is_incremental_sync: bool = False
    events_processed: int = 0
    events_skipped: int = 0


@dataclass
class EventsSummary(object):
    total_events_processed: int = 0
    student_created: int = 0
    student_updated: int = 0
    student_deleted: int = 0
    teacher_created: int = 0
    teacher_updated: int = 0
    teacher_deleted: int = 0
    section_created: int = 0
    section_updated: int = 0
    section_deleted: int = 0
    term_created: int = 0
    term_updated: int = 0
    term_deleted: int = 0
    events_skipped: int = 0
    events_failed: int = 0
    last_event_id: Optional[str] = None

    def record(self, kind: str, action: str):
        name = f'{kind}_{action}'
        setattr(self, name, getattr(self, name) + 1)

    @property
    def total_changes(self) -> int:
        return sum(getattr(self, f'{kind}_{action}')
                   for kind in ('student', 'teacher', 'section', 'term')
                   for action in ('created', 'updated', 'deleted'))

    def to_display_string(self) -> str:
        parts = []
        for kind in ('student', 'teacher', 'section', 'term'):
            counts = [(a, getattr(self, f'{kind}_{a}'))
                      for a in ('created', 'updated', 'deleted')]
            shown = ', '.join(f'{n} {a}' for a, n in counts if n)
            if shown:
                parts.append(f'{kind.capitalize()}s: {shown}')
        if self.events_skipped:
            parts.append(f'{self.events_skipped} skipped')
        if self.events_failed:
            parts.append(f'{self.events_failed} failed')
        head = f'{self.total_events_processed} event(s)'
        if not parts:
            return head
        return head + ' - ' + '; '.join(parts)


@dataclass
class SyncResult(object):

    """
    Outcome of syncing one school. Counters are kept per entity type;
    `*_deleted` counts soft deletions, whether from delete events or
    orphan detection.
    """

    school_id: Optional[int] = None
    school_name: Optional[str] = None
    sync_type: Optional[str] = None
    success: bool = False
    error_message: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    students_processed: int = 0
    students_updated: int = 0
    students_failed: int = 0
    students_deleted: int = 0
    teachers_processed: int = 0
    teachers_updated: int = 0
    teachers_failed: int = 0
    teachers_deleted: int = 0
    sections_processed: int = 0
    sections_updated: int = 0
    sections_failed: int = 0
    sections_deleted: int = 0
    terms_processed: int = 0
    terms_updated: int = 0
    terms_failed: int = 0
    terms_deleted: int = 0
    admins_processed: int = 0
    admins_updated: int = 0
    admins_failed: int = 0
    admins_deleted: int = 0

    sections_skipped_workshop_linked: int = 0
    warnings_generated: int = 0
    warnings: List[str] = field(default_factory=list)
    failed_entity_types: List[str] = field(default_factory=list)
    events_summary: Optional[EventsSummary] = None
    workshop_result: Optional[WorkshopSyncResult] = None

    def increment(self, prefix: str, stat: str, n: int = 1):
        name = f'{prefix}_{stat}'
        setattr(self, name, getattr(self, name) + n)

    def get(self, prefix: str, stat: str) -> int:
        return getattr(self, f'{prefix}_{stat}')

    def add_warning(self, message: str):
        self.warnings.append(message)
        self.warnings_generated += 1

    @property
    def total_processed(self) -> int:
        return sum(self.get(p, 'processed') for p in ENTITY_PREFIXES)

    @property
    def total_failed(self) -> int:
        return sum(self.get(p, 'failed') for p in ENTITY_PREFIXES)

    @property
    def duration(self) -> Optional[timedelta]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time


@dataclass
class SyncSummary(object):
    total_schools: int = 0
    successful_schools: int = 0
    failed_schools: int = 0
    total_records_processed: int = 0
    total_records_failed: int = 0
    school_results: List[SyncResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def add(self, result: SyncResult):
        self.school_results.append(result)
        self.total_schools += 1
        if result.success:
            self.successful_schools += 1
        else:
            self.failed_schools += 1
        self.total_records_processed += result.total_processed
        self.total_records_failed += result.total_failed

    @property
    def duration(self) -> Optional[timedelta]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time
