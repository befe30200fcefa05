from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .sis_data_object import SisDataObject, get_str


@dataclass
class SisName(object):
    first: str = ''
    middle: Optional[str] = None
    last: str = ''

    @classmethod
    def from_json(cls, json_obj: Optional[Dict[str, Any]]) -> 'SisName':
        if not json_obj:
            return cls()
        return cls(first=json_obj.get('first') or '',
                   middle=json_obj.get('middle'),
                   last=json_obj.get('last') or '')

    @property
    def full(self) -> str:
        return f'{self.first} {self.last}'.strip()


def get_roles(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Returns the `roles` object of a user record. The SIS sends either
    ``{"student": {...}}`` or a list of ``{"role": "student", ...}``;
    both come back as a dictionary keyed by role.
    """
    roles = record.get('roles')
    if isinstance(roles, dict):
        return roles
    if isinstance(roles, list):
        out = {}
        for entry in roles:
            if isinstance(entry, dict) and entry.get('role'):
                out[str(entry['role'])] = entry
        return out
    return {}


@dataclass
class SisStudent(SisDataObject):

    object_type = 'student'

    id: str
    name: SisName = field(default_factory=SisName)
    email: Optional[str] = None
    sis_id: Optional[str] = None
    student_number: Optional[str] = None
    grade: Optional[str] = None
    school: Optional[str] = None
    last_modified: Optional[str] = None

    @classmethod
    def _from_record(cls, record: Dict[str, Any]) -> 'SisStudent':
        role = get_roles(record).get('student') or {}
        return cls(
            id=str(record['id']),
            name=SisName.from_json(record.get('name')),
            email=get_str(record, 'email'),
            sis_id=get_str(role, 'sis_id'),
            student_number=get_str(role, 'student_number'),
            grade=get_str(role, 'grade'),
            school=get_str(role, 'school'),
            last_modified=get_str(record, 'last_modified')
        )


@dataclass
class SisTeacher(SisDataObject):

    object_type = 'teacher'

    id: str
    name: SisName = field(default_factory=SisName)
    email: Optional[str] = None
    sis_id: Optional[str] = None
    teacher_number: Optional[str] = None
    state_id: Optional[str] = None
    title: Optional[str] = None
    school: Optional[str] = None
    district_username: Optional[str] = None

    @classmethod
    def _from_record(cls, record: Dict[str, Any]) -> 'SisTeacher':
        role = get_roles(record).get('teacher') or {}
        credentials = role.get('credentials') or {}
        return cls(
            id=str(record['id']),
            name=SisName.from_json(record.get('name')),
            email=get_str(record, 'email'),
            sis_id=get_str(role, 'sis_id'),
            teacher_number=get_str(role, 'teacher_number'),
            state_id=get_str(role, 'state_id'),
            title=get_str(role, 'title'),
            school=get_str(role, 'school'),
            district_username=get_str(credentials, 'district_username')
        )


@dataclass
class SisAdmin(SisDataObject):

    """A school or district administrator."""

    object_type = 'admin'

    id: str
    name: SisName = field(default_factory=SisName)
    email: Optional[str] = None
    is_school_admin: bool = True
    schools: List[str] = field(default_factory=list)

    @property
    def role(self) -> str:
        return 'SchoolAdmin' if self.is_school_admin else 'DistrictAdmin'

    @classmethod
    def _from_record(cls, record: Dict[str, Any]) -> 'SisAdmin':
        roles = get_roles(record)
        school_role = roles.get('school_admin') or roles.get('staff')
        role = school_role or roles.get('district_admin') or {}
        schools = role.get('schools') or []
        return cls(
            id=str(record['id']),
            name=SisName.from_json(record.get('name')),
            email=get_str(record, 'email'),
            is_school_admin=school_role is not None,
            schools=[str(s) for s in schools]
        )
