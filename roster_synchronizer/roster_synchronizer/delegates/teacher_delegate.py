from __future__ import annotations
from typing import Any, Dict, List, TYPE_CHECKING

from .base_delegate import SyncDelegate
from ...change_tracker import ChangeTracker
from ...database import Teacher
from ...sis_data_models import SisTeacher

if TYPE_CHECKING:
    from ..context import SyncContext


class TeacherDelegate(SyncDelegate):

    entity_type = 'Teacher'
    result_prefix = 'teachers'
    model = Teacher
    fields = ('first_name', 'last_name', 'full_name', 'email',
              'teacher_number', 'staff_number', 'title', 'user_name')

    def fetch(self, context: SyncContext) -> List[SisTeacher]:
        return self.sync.client.get_teachers(context.school.external_id,
                                             cancel=context.cancel)

    @staticmethod
    def values_from(record: SisTeacher) -> Dict[str, Any]:
        return {
            'first_name': record.name.first,
            'last_name': record.name.last,
            'full_name': record.name.full,
            'email': record.email,
            'teacher_number': record.teacher_number,
            'staff_number': record.sis_id,
            'title': record.title,
            'user_name': record.district_username
        }

    def display_name(self, obj: Teacher) -> str:
        return obj.full_name or f'{obj.first_name} {obj.last_name}'.strip()

    def upsert(self, context: SyncContext, record: SisTeacher, sync_id: int,
               tracker: ChangeTracker) -> bool:
        _, changed, _ = self.apply(context, record.id,
                                   self.values_from(record), sync_id, tracker)
        context.school_session.commit()
        return changed
