from copy import deepcopy
from unittest.mock import call, patch
import unittest

from requests.exceptions import ConnectionError
from responses import matchers
import requests
import responses

from roster_synchronizer import ApiConfig, SisApiClient, exceptions
from ..constants import BASE_URL
from ..helpers import load_fixture

USERS_URL = BASE_URL + 'schools/sch-1/users'
EVENTS_URL = BASE_URL + 'events'


def student_page(ids, next_after=None, limit='100') -> dict:
    page = {'data': [{'data': {'id': i, 'name': {'first': i, 'last': 'X'},
                               'roles': {'student': {'grade': '9'}}}}
                     for i in ids],
            'links': [{'rel': 'self', 'uri': '/v3.0/schools/sch-1/users'}]}
    if next_after is not None:
        page['links'].append({
            'rel': 'next',
            'uri': f'/v3.0/schools/sch-1/users?role=student&limit={limit}'
                   f'&starting_after={next_after}'
        })
    return page


class TestSisApiClient(unittest.TestCase):

    def setUp(self):
        self.config = ApiConfig(base_url=BASE_URL, max_retries=3,
                                base_delay_seconds=2.0,
                                rate_limit_delay_seconds=5.0)
        self.client = SisApiClient(requests.Session(), self.config)
        self.responses = responses.RequestsMock()
        self.responses.start()

        self.addCleanup(self.responses.stop)
        self.addCleanup(self.responses.reset)

        sleep_patcher = patch('roster_synchronizer.utils.time.sleep')
        self.sleep = sleep_patcher.start()
        self.addCleanup(sleep_patcher.stop)

    def add_page(self, page: dict, status: int = 200, headers=None,
                 **params):
        self.responses.add(
            responses.GET, USERS_URL, json=page, status=status,
            headers=headers,
            match=[matchers.query_param_matcher(params)]
        )

    def test_single_page(self):
        self.add_page(student_page(['s1', 's2']), role='student',
                      limit='100')
        students = self.client.get_students('sch-1')
        self.assertEqual([s.id for s in students], ['s1', 's2'])
        self.assertEqual(len(self.responses.calls), 1)

    def test_two_pages(self):
        self.add_page(student_page(['s1', 's2'], next_after='s2'),
                      role='student', limit='100')
        self.add_page(student_page(['s3']), role='student', limit='100',
                      starting_after='s2')
        students = self.client.get_students('sch-1')
        self.assertEqual([s.id for s in students], ['s1', 's2', 's3'])
        self.assertEqual(len(self.responses.calls), 2)

    def test_fifty_pages(self):
        client = SisApiClient(requests.Session(),
                              ApiConfig(base_url=BASE_URL, page_size=1))
        for i in range(1, 51):
            params = {'role': 'student', 'limit': '1'}
            if i > 1:
                params['starting_after'] = f's{i - 1}'
            page = student_page([f's{i}'],
                                next_after=f's{i}' if i < 50 else None,
                                limit='1')
            self.add_page(page, **params)

        students = client.get_students('sch-1')
        self.assertEqual(len(students), 50)
        self.assertEqual(students[-1].id, 's50')
        self.assertEqual(len(self.responses.calls), 50)

    def test_rate_limit_retries_same_page(self):
        self.add_page(student_page(['s1'], next_after='s1'),
                      role='student', limit='100')
        self.add_page({}, status=429, headers={'Retry-After': '7'},
                      role='student', limit='100', starting_after='s1')
        self.add_page(student_page(['s2']), role='student', limit='100',
                      starting_after='s1')

        students = self.client.get_students('sch-1')
        self.assertEqual([s.id for s in students], ['s1', 's2'])
        self.assertEqual(len(self.responses.calls), 3)
        self.sleep.assert_called_once_with(7.0)

    def test_rate_limit_default_delay(self):
        self.add_page({}, status=429, role='student', limit='100')
        self.add_page(student_page(['s1']), role='student', limit='100')
        self.client.get_students('sch-1')
        self.sleep.assert_called_once_with(5.0)

    def test_server_error_backs_off(self):
        self.add_page({}, status=503, role='student', limit='100')
        self.add_page(student_page(['s1']), role='student', limit='100')
        students = self.client.get_students('sch-1')
        self.assertEqual(len(students), 1)
        self.sleep.assert_called_once_with(2.0)

    def test_server_error_exhausts_retries(self):
        self.add_page({}, status=500, role='student', limit='100')
        with self.assertRaises(exceptions.SisRequestError) as cm:
            self.client.get_students('sch-1')
        self.assertEqual(cm.exception.status_code, 500)
        self.assertEqual(cm.exception.attempts, 3)
        self.assertEqual(self.sleep.call_args_list, [call(2.0), call(4.0)])

    def test_client_error_not_retried(self):
        self.add_page({}, status=404, role='student', limit='100')
        with self.assertRaises(exceptions.SisRequestError) as cm:
            self.client.get_students('sch-1')
        self.assertEqual(cm.exception.status_code, 404)
        self.assertEqual(len(self.responses.calls), 1)
        self.sleep.assert_not_called()

    def test_connection_error(self):
        self.responses.add(responses.GET, USERS_URL,
                           body=ConnectionError('connection refused'))
        with self.assertRaises(exceptions.SisConnectionException):
            self.client.get_students('sch-1')
        self.assertEqual(len(self.responses.calls), 3)

    def test_bad_and_duplicate_records_skipped(self):
        fixtures = load_fixture('sis_records')
        page = student_page(['s1', 's1'])
        page['data'].append(deepcopy(fixtures['incomplete_student']))
        self.add_page(page, role='student', limit='100')
        students = self.client.get_students('sch-1')
        self.assertEqual([s.id for s in students], ['s1'])

    def test_cancelled_before_first_page(self):
        from threading import Event
        cancel = Event()
        cancel.set()
        with self.assertRaises(exceptions.SyncCancelledError):
            self.client.get_students('sch-1', cancel=cancel)
        self.assertEqual(len(self.responses.calls), 0)

    def test_events_since_cursor(self):
        fixtures = load_fixture('sis_events')
        self.responses.add(
            responses.GET, EVENTS_URL,
            json={'data': [fixtures['student_created'],
                           fixtures['course_updated']]},
            match=[matchers.query_param_matcher({
                'limit': '1000', 'starting_after': 'evt-100',
                'school': 'sch-1'
            })]
        )
        events = self.client.get_events(starting_after='evt-100',
                                        school_id='sch-1')
        self.assertEqual([e.id for e in events], ['evt-101', 'evt-104'])
        self.assertEqual(events[0].object_type, 'user')

    def test_latest_event_id(self):
        fixtures = load_fixture('sis_events')
        self.responses.add(
            responses.GET, EVENTS_URL,
            json={'data': [fixtures['section_deleted']]},
            match=[matchers.query_param_matcher({
                'ending_before': 'last', 'limit': '1', 'school': 'sch-1'
            })]
        )
        self.assertEqual(self.client.get_latest_event_id('sch-1'),
                         'evt-106')

    def test_latest_event_id_empty_stream(self):
        self.responses.add(
            responses.GET, EVENTS_URL, json={'data': []},
            match=[matchers.query_param_matcher({
                'ending_before': 'last', 'limit': '1'
            })]
        )
        self.assertIsNone(self.client.get_latest_event_id())


if __name__ == '__main__':
    unittest.main()
