"""
Change events from the SIS event stream, and the decode step that sorts
each one into a closed set of typed variants before any handler sees
it:

    - `StudentEvent` / `TeacherEvent`: user events split by role
    - `SectionEvent`
    - `TermEvent`
    - `SkippedEvent`: anything unroutable, with the reason

An event's type looks like ``"users.created"``; its `data` holds the
object kind, the changed record, and optionally the previous values.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from .sis_data_object import SisDataObject, get_str, unwrap
from .sis_section import SisSection, SisTerm
from .sis_user import SisStudent, SisTeacher, get_roles
from .. import exceptions

ACTIONS = ('created', 'updated', 'deleted')
DISTRICT_LEVEL_OBJECTS = ('course', 'district', 'school', 'district_admin')


@dataclass
class SisEvent(SisDataObject):

    id: str
    type: str = ''
    created: Optional[str] = None
    object_id: Optional[str] = None
    object_type: str = ''
    payload: Optional[Dict[str, Any]] = None
    previous_attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def action(self) -> str:
        """The lower-cased suffix of the type, e.g. "created"."""
        _, _, suffix = self.type.rpartition('.')
        return suffix.lower()

    @property
    def record_id(self) -> Optional[str]:
        if self.payload and self.payload.get('id'):
            return str(self.payload['id'])
        return self.object_id

    @classmethod
    def _from_record(cls, record: Dict[str, Any]) -> 'SisEvent':
        data = record.get('data')
        if not isinstance(data, dict):
            data = {}
        event_type = str(record.get('type') or '')
        object_type = str(data.get('object') or '').lower()
        if not object_type:
            prefix, _, _ = event_type.partition('.')
            object_type = prefix.lower()
            if object_type.endswith('s'):
                object_type = object_type[:-1]
        payload = data.get('data')
        return cls(
            id=str(record['id']),
            type=event_type,
            created=get_str(record, 'created'),
            object_id=get_str(data, 'id'),
            object_type=object_type,
            payload=payload if isinstance(payload, dict) else None,
            previous_attributes=data.get('previous_attributes') or {}
        )


@dataclass
class _Classified(object):
    event: SisEvent

    @property
    def action(self) -> str:
        return self.event.action


@dataclass
class StudentEvent(_Classified):
    record: Optional[SisStudent] = None
    external_id: str = ''


@dataclass
class TeacherEvent(_Classified):
    record: Optional[SisTeacher] = None
    external_id: str = ''


@dataclass
class SectionEvent(_Classified):
    record: Optional[SisSection] = None
    external_id: str = ''


@dataclass
class TermEvent(_Classified):
    record: Optional[SisTerm] = None
    external_id: str = ''


@dataclass
class SkippedEvent(_Classified):
    reason: str = ''


ClassifiedEvent = Union[StudentEvent, TeacherEvent, SectionEvent,
                        TermEvent, SkippedEvent]


def user_role(payload: Dict[str, Any]) -> Optional[str]:
    roles = get_roles(payload)
    for role in ('student', 'teacher'):
        if role in roles:
            return role
    return None


def classify(event: SisEvent) -> ClassifiedEvent:
    """
    Decodes an event into one of the typed variants. Never raises; any
    event that cannot be routed comes back as a :class:`SkippedEvent`.
    """
    if event.action not in ACTIONS:
        return SkippedEvent(event, f'unrecognized action "{event.type}"')
    if event.object_type in DISTRICT_LEVEL_OBJECTS:
        return SkippedEvent(event,
                            f'district-level object "{event.object_type}"')
    if event.payload is None:
        return SkippedEvent(event, 'no payload')

    payload = unwrap(event.payload)
    external_id = event.record_id
    if not external_id:
        return SkippedEvent(event, 'payload has no id')

    object_type = event.object_type
    if object_type == 'user':
        object_type = user_role(payload)
        if object_type is None:
            return SkippedEvent(event, 'user event without a student or '
                                       'teacher role')

    variants = {
        'student': (StudentEvent, SisStudent),
        'teacher': (TeacherEvent, SisTeacher),
        'section': (SectionEvent, SisSection),
        'term': (TermEvent, SisTerm)
    }
    if object_type not in variants:
        return SkippedEvent(event, f'unrecognized object "{object_type}"')

    variant, model = variants[object_type]
    if event.action == 'deleted':
        return variant(event, record=None, external_id=external_id)
    try:
        record = model.from_json(payload)
    except exceptions.SyncError as e:
        return SkippedEvent(event, f'invalid payload: {e}')
    return variant(event, record=record, external_id=external_id)
