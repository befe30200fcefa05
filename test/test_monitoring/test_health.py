from datetime import datetime, timedelta
from unittest.mock import Mock, patch
import unittest

from responses import matchers
import requests
import responses

from roster_synchronizer import (ApiConfig, AuthConfig, DictCredentialStore,
                                 SisApiClient, TokenManager, exceptions)
from roster_synchronizer.database import (EventsLog, School,
                                          SchoolDatabaseFactory, Section,
                                          Student, StudentSection, Teacher)
from roster_synchronizer.health import (AuthenticationHealthCheck,
                                        EventsHealthCheck, HealthCache,
                                        HealthStatus,
                                        OrphanDetectionHealthCheck)
from roster_synchronizer.utils import utcnow
from ..constants import BASE_URL, TOKEN_URL
from ..helpers import (MemorySchoolDatabases, load_fixture, make_catalog,
                       seed_school)

EVENTS_URL = BASE_URL + 'events'


class TestHealthCache(unittest.TestCase):

    def setUp(self):
        self.now = datetime(2024, 9, 2, 12, 0)
        patcher = patch('roster_synchronizer.health.utcnow',
                        side_effect=lambda: self.now)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.cache = HealthCache(ttl=timedelta(minutes=5))

    def test_cached_within_ttl(self):
        compute = Mock(side_effect=['first', 'second'])
        self.assertEqual(self.cache.get_or_compute('k', compute), 'first')
        self.now += timedelta(minutes=4)
        self.assertEqual(self.cache.get_or_compute('k', compute), 'first')
        self.assertEqual(compute.call_count, 1)

    def test_recomputed_after_ttl(self):
        compute = Mock(side_effect=['first', 'second'])
        self.cache.get_or_compute('k', compute)
        self.now += timedelta(minutes=5)
        self.assertEqual(self.cache.get_or_compute('k', compute), 'second')

    def test_force_refresh_and_clear(self):
        compute = Mock(side_effect=['first', 'second', 'third'])
        self.cache.get_or_compute('k', compute)
        self.assertEqual(self.cache.get_or_compute('k', compute, True),
                         'second')
        self.cache.clear()
        self.assertEqual(self.cache.get_or_compute('k', compute), 'third')

    def test_keys_are_separate(self):
        self.cache.get_or_compute('a', lambda: 1)
        self.assertEqual(self.cache.get_or_compute('b', lambda: 2), 2)


class TestOrphanDetectionHealthCheck(unittest.TestCase):

    def setUp(self):
        self.catalog = make_catalog()
        self.schools = MemorySchoolDatabases()
        self.school_id = seed_school(self.catalog)
        with self.catalog.session() as session:
            school = session.get(School, self.school_id)
        self.schools.get_engine(school)
        self.check = OrphanDetectionHealthCheck(self.catalog, self.schools,
                                                stale_days=7)

    def add(self, *objects):
        session = self.schools.open(self.school_id)
        session.add_all(objects)
        session.commit()
        session.close()

    def test_empty_school_healthy(self):
        result = self.check.check()
        self.assertEqual(result.status, HealthStatus.HEALTHY)
        self.assertEqual(result.data['School sch-1']['stale_students'], 0)

    def test_stale_records_degrade(self):
        self.add(Student(external_id='stu-1', first_name='Ada',
                         last_name='Lovelace',
                         last_synced_at=utcnow() - timedelta(days=10)),
                 Student(external_id='stu-2', first_name='Gone',
                         last_name='Away', last_synced_at=None,
                         deleted_at=utcnow()))
        result = self.check.check()
        self.assertEqual(result.status, HealthStatus.DEGRADED)
        self.assertEqual(result.data['School sch-1']['stale_students'], 1)
        self.assertIn('1 record(s)', result.description)

    def test_unassociated_records_noted(self):
        section = Section(external_id='sec-1', name='Algebra',
                          last_synced_at=utcnow())
        member = Student(external_id='stu-1', first_name='Ada',
                         last_name='Lovelace', last_synced_at=utcnow())
        self.add(section, member,
                 Student(external_id='stu-2', first_name='Lone',
                         last_name='Student', last_synced_at=utcnow()),
                 Teacher(external_id='tch-1', first_name='Alan',
                         last_name='Turing', last_synced_at=utcnow()))
        self.add(StudentSection(student_id=member.id, section_id=section.id))

        result = self.check.check()
        self.assertEqual(result.status, HealthStatus.HEALTHY)
        counts = result.data['School sch-1']
        self.assertEqual(counts['students_without_sections'], 1)
        self.assertEqual(counts['teachers_without_sections'], 1)
        self.assertIn('2 active', result.description)

    def test_unreachable_school_degrades(self):
        check = OrphanDetectionHealthCheck(
            self.catalog, SchoolDatabaseFactory(DictCredentialStore('T', {}))
        )
        result = check.check()
        self.assertEqual(result.status, HealthStatus.DEGRADED)
        self.assertEqual(len(result.data['errors']), 1)

    def test_result_cached(self):
        first = self.check.check()
        self.add(Student(external_id='stu-1', first_name='Ada',
                         last_name='Lovelace', last_synced_at=None))
        self.assertIs(self.check.check(), first)
        self.assertEqual(self.check.check(force_refresh=True).status,
                         HealthStatus.DEGRADED)


class TestEventsHealthCheck(unittest.TestCase):

    def setUp(self):
        self.catalog = make_catalog()
        client = SisApiClient(requests.Session(),
                              ApiConfig(base_url=BASE_URL, max_retries=1))
        self.check = EventsHealthCheck(client, self.catalog)
        self.responses = responses.RequestsMock()
        self.responses.start()

        self.addCleanup(self.responses.stop)
        self.addCleanup(self.responses.reset)

    def add_events(self, status: int = 200, data=None):
        self.responses.add(
            responses.GET, EVENTS_URL, status=status,
            json={'data': [] if data is None else data},
            match=[matchers.query_param_matcher({'ending_before': 'last',
                                                 'limit': '100'})]
        )

    def log_entries(self):
        with self.catalog.session() as session:
            return session.query(EventsLog).all()

    def test_healthy(self):
        fixtures = load_fixture('sis_events')
        self.add_events(data=[fixtures['student_created'],
                              fixtures['student_updated'],
                              fixtures['section_updated'],
                              fixtures['teacher_deleted']])
        result = self.check.check()
        self.assertEqual(result.status, HealthStatus.HEALTHY)
        self.assertTrue(result.data['events_api_accessible'])
        self.assertEqual(result.data['latest_event_id'], 'evt-103')
        self.assertIn('checked_at_utc', result.data)

        entry, = self.log_entries()
        self.assertTrue(entry.api_accessible)
        self.assertEqual(entry.status, HealthStatus.HEALTHY)
        self.assertEqual(entry.created_count, 1)
        self.assertEqual(entry.updated_count, 2)
        self.assertEqual(entry.deleted_count, 1)
        self.assertEqual(entry.latest_event_id, 'evt-103')

    def test_empty_stream_degraded(self):
        self.add_events()
        result = self.check.check()
        self.assertEqual(result.status, HealthStatus.DEGRADED)
        self.assertTrue(result.data['events_api_accessible'])
        self.assertIsNone(result.data['latest_event_id'])

    def test_forbidden(self):
        self.add_events(status=403)
        result = self.check.check()
        self.assertEqual(result.status, HealthStatus.DEGRADED)
        self.assertIn('403', result.description)
        self.assertIn('read:events', result.data['recommendation'])
        self.assertFalse(result.data['events_api_accessible'])
        self.assertFalse(self.log_entries()[0].api_accessible)

    def test_not_found(self):
        self.add_events(status=404)
        result = self.check.check()
        self.assertEqual(result.status, HealthStatus.DEGRADED)
        self.assertIn('recommendation', result.data)

    def test_server_error_unhealthy(self):
        self.add_events(status=500)
        result = self.check.check()
        self.assertEqual(result.status, HealthStatus.UNHEALTHY)
        self.assertEqual(self.log_entries()[0].status,
                         HealthStatus.UNHEALTHY)

    def test_cached(self):
        self.add_events()
        self.check.check()
        self.check.check()
        self.assertEqual(len(self.responses.calls), 1)
        self.assertEqual(len(self.log_entries()), 1)


class TestAuthenticationHealthCheck(unittest.TestCase):

    def manager(self, secrets: dict) -> TokenManager:
        return TokenManager(DictCredentialStore('Test', secrets),
                            AuthConfig(token_url=TOKEN_URL,
                                       secret_prefix='Test'))

    def test_not_attempted(self):
        result = AuthenticationHealthCheck(self.manager({})).check()
        self.assertEqual(result.status, HealthStatus.DEGRADED)

    def test_authenticated(self):
        manager = self.manager({'Test--AccessToken': 'static-1'})
        manager.get_token()
        result = AuthenticationHealthCheck(manager).check()
        self.assertTrue(result.is_healthy)
        self.assertIsNotNone(result.data['last_successful_auth'])

    def test_failed(self):
        manager = self.manager({})
        with self.assertRaises(exceptions.MissingSecretError):
            manager.get_token()
        result = AuthenticationHealthCheck(manager).check()
        self.assertEqual(result.status, HealthStatus.UNHEALTHY)
        self.assertIn('Test--ClientId', result.description)


if __name__ == '__main__':
    unittest.main()
