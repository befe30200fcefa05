from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .sis_data_object import SisDataObject, get_str
from ..utils import parse_datetime


@dataclass
class SisSection(SisDataObject):

    """
    A section as the SIS describes it. `teacher` is the primary
    teacher; `teachers` and `students` hold the external ids of every
    member.
    """

    object_type = 'section'

    id: str
    name: str = ''
    school: Optional[str] = None
    course: Optional[str] = None
    term_id: Optional[str] = None
    sis_id: Optional[str] = None
    section_number: Optional[str] = None
    period: Optional[str] = None
    subject: Optional[str] = None
    grade: Optional[str] = None
    teacher: Optional[str] = None
    teachers: List[str] = field(default_factory=list)
    students: List[str] = field(default_factory=list)

    @classmethod
    def _from_record(cls, record: Dict[str, Any]) -> 'SisSection':
        teachers = [str(t) for t in record.get('teachers') or []]
        teacher = get_str(record, 'teacher')
        if teacher and teacher not in teachers:
            teachers.insert(0, teacher)
        return cls(
            id=str(record['id']),
            name=record.get('name') or '',
            school=get_str(record, 'school'),
            course=get_str(record, 'course'),
            term_id=get_str(record, 'term_id'),
            sis_id=get_str(record, 'sis_id'),
            section_number=get_str(record, 'section_number'),
            period=get_str(record, 'period'),
            subject=get_str(record, 'subject'),
            grade=get_str(record, 'grade'),
            teacher=teacher,
            teachers=teachers,
            students=[str(s) for s in record.get('students') or []]
        )


@dataclass
class SisTerm(SisDataObject):

    object_type = 'term'

    id: str
    name: Optional[str] = None
    district: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    @property
    def start(self) -> Optional[datetime]:
        return parse_datetime(self.start_date)

    @property
    def end(self) -> Optional[datetime]:
        return parse_datetime(self.end_date)

    @classmethod
    def _from_record(cls, record: Dict[str, Any]) -> 'SisTerm':
        return cls(id=str(record['id']),
                   name=record.get('name'),
                   district=get_str(record, 'district'),
                   start_date=get_str(record, 'start_date'),
                   end_date=get_str(record, 'end_date'))
