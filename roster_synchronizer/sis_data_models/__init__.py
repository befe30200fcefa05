"""
Payload models for the SIS API and the page walker that reads them.
Every model subclasses :class:`SisDataObject` and is built with
``from_json``:

    - `SisStudent`, `SisTeacher`, `SisAdmin` (users, by role)
    - `SisSection`, `SisTerm`
    - `SisEvent`, decoded into typed variants by :func:`classify`
"""
from .page_walker import PageWalker
from .sis_data_object import SisDataObject, unwrap
from .sis_event import (ClassifiedEvent, SectionEvent, SisEvent, SkippedEvent,
                        StudentEvent, TeacherEvent, TermEvent, classify)
from .sis_section import SisSection, SisTerm
from .sis_user import SisAdmin, SisName, SisStudent, SisTeacher
