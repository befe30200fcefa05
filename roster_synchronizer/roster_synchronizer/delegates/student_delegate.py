from __future__ import annotations
from typing import Any, Dict, List, TYPE_CHECKING

from .base_delegate import SyncDelegate
from ...change_tracker import ChangeTracker
from ...database import Student
from ...sis_data_models import SisStudent
from ...utils import parse_int

if TYPE_CHECKING:
    from ..context import SyncContext


class StudentDelegate(SyncDelegate):

    """
    Synchronizes students. A change of grade is reported to the run's
    workshop tracker, since workshop placement depends on grade.
    """

    entity_type = 'Student'
    result_prefix = 'students'
    model = Student
    fields = ('first_name', 'middle_name', 'last_name', 'grade',
              'grade_level', 'student_number', 'state_student_id')

    def fetch(self, context: SyncContext) -> List[SisStudent]:
        return self.sync.client.get_students(context.school.external_id,
                                             cancel=context.cancel)

    @staticmethod
    def values_from(record: SisStudent) -> Dict[str, Any]:
        return {
            'first_name': record.name.first,
            'middle_name': record.name.middle,
            'last_name': record.name.last,
            'grade': parse_int(record.grade),
            'grade_level': record.grade or '0',
            'student_number': record.student_number,
            'state_student_id': record.sis_id
        }

    def display_name(self, obj: Student) -> str:
        return f'{obj.first_name} {obj.last_name}'.strip()

    def upsert(self, context: SyncContext, record: SisStudent, sync_id: int,
               tracker: ChangeTracker) -> bool:
        values = self.values_from(record)
        student, changed, old = self.apply(context, record.id, values,
                                           sync_id, tracker)
        if changed and old is not None \
                and old['grade_level'] != values['grade_level']:
            context.workshop_tracker.record_grade_change(
                student.id, old['grade_level'], values['grade_level']
            )
        context.school_session.commit()
        return changed
