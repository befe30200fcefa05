"""
Shared fixtures for the test suite: in-memory databases, a stand-in
SIS client, and builders for SIS records.
"""
from copy import deepcopy
from typing import Dict, List
import json
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from roster_synchronizer import DictCredentialStore, RosterSynchronizer
from roster_synchronizer import sis_data_models as sdm
from roster_synchronizer.config import SyncConfig
from roster_synchronizer.database import (CatalogDatabase, District, School,
                                          SchoolBase, SchoolDatabaseFactory,
                                          Section, Workshop, WorkshopSection)
from roster_synchronizer.exceptions import SisRequestError
from roster_synchronizer.workshop import (WorkshopReconciler,
                                          WorkshopSyncService)
from .constants import DATA_DIR


def memory_engine():
    return create_engine('sqlite://',
                         connect_args={'check_same_thread': False},
                         poolclass=StaticPool)


def make_catalog() -> CatalogDatabase:
    catalog = CatalogDatabase(memory_engine())
    catalog.create_schema()
    return catalog


def load_fixture(name: str) -> dict:
    with open(DATA_DIR / f'{name}.json', 'r') as f:
        return json.load(f)


class MemorySchoolDatabases(SchoolDatabaseFactory):

    """One in-memory database per school instead of a connection string."""

    def __init__(self):
        super().__init__(DictCredentialStore('Test', {}))
        self.engines = {}

    def get_engine(self, school: School):
        engine = self.engines.get(school.id)
        if engine is None:
            engine = memory_engine()
            SchoolBase.metadata.create_all(engine)
            self.engines[school.id] = engine
        return engine

    def open(self, school_id: int) -> Session:
        return sessionmaker(bind=self.engines[school_id],
                            expire_on_commit=False)()


class FakeReconciler(WorkshopReconciler):

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def run(self, school_session, sync_id: int):
        self.calls.append(sync_id)
        if self.fail:
            raise RuntimeError('procedure failed; Password=hunter2')


class FakeSisClient(object):

    """Serves canned SIS records in place of :class:`SisApiClient`."""

    def __init__(self):
        self.students = []  # type: List[sdm.SisStudent]
        self.teachers = []  # type: List[sdm.SisTeacher]
        self.sections = []  # type: List[sdm.SisSection]
        self.terms = []  # type: List[sdm.SisTerm]
        self.admins = []  # type: List[sdm.SisAdmin]
        self.events = []  # type: List[sdm.SisEvent]
        self.latest_event_id = 'evt-100'
        self.fail_on = set()
        self.event_requests = []

    def _serve(self, name: str, records: list) -> list:
        if name in self.fail_on:
            raise SisRequestError(f'https://sis.test/{name}', 500, 5)
        return list(records)

    def get_students(self, school_id, cancel=None):
        return self._serve('get_students', self.students)

    def get_teachers(self, school_id, cancel=None):
        return self._serve('get_teachers', self.teachers)

    def get_sections(self, school_id, cancel=None):
        return self._serve('get_sections', self.sections)

    def get_terms(self, cancel=None):
        return self._serve('get_terms', self.terms)

    def get_school_admins(self, school_id, cancel=None):
        return self._serve('get_school_admins', self.admins)

    def get_events(self, starting_after=None, school_id=None,
                   record_type=None, limit=None, cancel=None):
        self.event_requests.append(starting_after)
        return self._serve('get_events', self.events)

    def get_latest_event_id(self, school_id=None, cancel=None):
        self._serve('get_latest_event_id', [])
        return self.latest_event_id


def student(id: str, first: str, last: str, grade: str = '9',
            number: str = None) -> sdm.SisStudent:
    return sdm.SisStudent.from_json({'data': {
        'id': id,
        'name': {'first': first, 'last': last},
        'roles': {'student': {'grade': grade, 'student_number': number,
                              'sis_id': f'SIS-{id}'}}
    }})


def teacher(id: str, first: str, last: str) -> sdm.SisTeacher:
    return sdm.SisTeacher.from_json({'data': {
        'id': id,
        'email': f'{first.lower()}@example.org',
        'name': {'first': first, 'last': last},
        'roles': {'teacher': {'teacher_number': id}}
    }})


def section(id: str, name: str, teacher_id: str,
            students: List[str]) -> sdm.SisSection:
    return sdm.SisSection.from_json({'data': {
        'id': id, 'name': name, 'term_id': 'term-1', 'period': '1',
        'subject': 'math', 'teacher': teacher_id, 'students': students
    }})


def term(id: str, name: str = 'Fall 2024') -> sdm.SisTerm:
    return sdm.SisTerm.from_json({'data': {
        'id': id, 'name': name, 'start_date': '2024-08-15',
        'end_date': '2024-12-20'
    }})


def admin(id: str, first: str, last: str) -> sdm.SisAdmin:
    return sdm.SisAdmin.from_json({'data': {
        'id': id,
        'email': f'{first.lower()}.{last.lower()}@example.org',
        'name': {'first': first, 'last': last},
        'roles': {'school_admin': {'schools': ['sch-1']}}
    }})


def events(*names: str) -> List[sdm.SisEvent]:
    fixtures = load_fixture('sis_events')
    return [sdm.SisEvent.from_json(deepcopy(fixtures[n])) for n in names]


def seed_school(catalog: CatalogDatabase, external_id: str = 'sch-1',
                requires_full_sync: bool = True, is_active: bool = True,
                district_id: int = None) -> int:
    """Adds a school, and a district unless one is given."""
    with catalog.session() as session:
        if district_id is None:
            district = District(external_id=f'dst-{external_id}',
                                name='Test District',
                                secret_prefix='TestDistrict',
                                time_zone='America/Chicago')
            session.add(district)
            session.flush()
            district_id = district.id
        school = School(district_id=district_id, external_id=external_id,
                        name=f'School {external_id}',
                        database_ref=f'Db{external_id}',
                        is_active=is_active,
                        requires_full_sync=requires_full_sync)
        session.add(school)
        session.commit()
        return school.id


def basic_roster(client: FakeSisClient):
    """Three students and one teacher sharing one section."""
    client.students = [student('stu-1', 'Ada', 'Lovelace'),
                       student('stu-2', 'Charles', 'Babbage'),
                       student('stu-3', 'Mary', 'Somerville')]
    client.teachers = [teacher('tch-1', 'Alan', 'Turing')]
    client.terms = [term('term-1')]
    client.sections = [section('sec-1', 'Algebra I - P1', 'tch-1',
                               ['stu-1', 'stu-2', 'stu-3'])]
    client.admins = [admin('adm-1', 'Grace', 'Hopper')]


def make_synchronizer(catalog: CatalogDatabase,
                      schools: MemorySchoolDatabases,
                      client: FakeSisClient,
                      reconciler: FakeReconciler = None,
                      **config) -> RosterSynchronizer:
    config.setdefault('max_concurrent_schools', 1)
    reconciler = FakeReconciler() if reconciler is None else reconciler
    return RosterSynchronizer(catalog, schools, client,
                              workshop_service=WorkshopSyncService(
                                  reconciler
                              ),
                              config=SyncConfig(**config))


def count_by(session: Session, model, **filters) -> int:
    return session.query(model).filter_by(**filters).count()


def to_dict(rows) -> Dict[str, object]:
    return {r.external_id: r for r in rows}


class SynchronizerTestCase(unittest.TestCase):

    """
    Sets up a catalog with one district and school, an in-memory
    database for that school, and a synchronizer reading the basic
    roster from a :class:`FakeSisClient`.
    """

    def setUp(self):
        self.catalog = make_catalog()
        self.schools = MemorySchoolDatabases()
        self.client = FakeSisClient()
        basic_roster(self.client)
        self.school_id = seed_school(self.catalog)
        self.reconciler = FakeReconciler()
        self.sync = make_synchronizer(self.catalog, self.schools,
                                      self.client, self.reconciler)

    def run_sync(self, force_full_sync: bool = False, **kwargs):
        return self.sync.sync_school(self.school_id, force_full_sync,
                                     **kwargs)

    def school_session(self) -> Session:
        session = self.schools.open(self.school_id)
        self.addCleanup(session.close)
        return session

    def catalog_session(self) -> Session:
        session = self.catalog.session_factory()
        self.addCleanup(session.close)
        return session

    def link_workshop(self, section_external_id: str,
                      name: str = 'Robotics') -> int:
        session = self.school_session()
        section = session.query(Section) \
            .filter_by(external_id=section_external_id).one()
        workshop = Workshop(name=name)
        session.add(workshop)
        session.flush()
        session.add(WorkshopSection(workshop_id=workshop.id,
                                    section_id=section.id))
        session.commit()
        return workshop.id
