from datetime import datetime
import json
import unittest

from roster_synchronizer.change_tracker import ChangeTracker
from roster_synchronizer.database import (ChangeType, SyncChangeDetail,
                                          SyncHistory, SyncType)
from ..helpers import make_catalog, seed_school


class TestChangedFields(unittest.TestCase):

    def test_created_lists_populated_fields(self):
        fields = ChangeTracker.changed_fields(
            None, {'first_name': 'Ada', 'middle_name': None, 'grade': 9}
        )
        self.assertEqual(fields, ['first_name', 'grade'])

    def test_updated_lists_differences(self):
        old = {'first_name': 'Ada', 'last_name': 'Lovelace', 'grade': 9}
        new = {'first_name': 'Augusta', 'last_name': 'Lovelace',
               'grade': 10, 'email': 'a@example.org'}
        self.assertEqual(ChangeTracker.changed_fields(old, new),
                         ['first_name', 'grade', 'email'])

    def test_deleted_lists_everything(self):
        self.assertEqual(ChangeTracker.changed_fields({'a': 1, 'b': 2}, None),
                         ['a', 'b'])

    def test_nothing(self):
        self.assertEqual(ChangeTracker.changed_fields(None, None), [])


class TestChangeTracker(unittest.TestCase):

    def setUp(self):
        self.catalog = make_catalog()
        school_id = seed_school(self.catalog)
        with self.catalog.session() as session:
            history = SyncHistory(school_id=school_id, entity_type='Student',
                                  sync_type=SyncType.FULL)
            session.add(history)
            session.commit()
            self.sync_id = history.id

    def test_batches_until_saved(self):
        with self.catalog.session() as session:
            tracker = ChangeTracker(session)
            tracker.track(self.sync_id, 'Student', 'stu-1', 'Ada Lovelace',
                          None, {'first_name': 'Ada'}, ChangeType.CREATED)
            tracker.track(self.sync_id, 'Student', 'stu-2', 'Mary',
                          {'first_name': 'Mary'}, None, ChangeType.DELETED)
            self.assertEqual(session.query(SyncChangeDetail).count(), 0)

            self.assertEqual(tracker.save_changes(), 2)
            self.assertEqual(tracker.pending, [])
            self.assertEqual(tracker.save_changes(), 0)
            self.assertEqual(session.query(SyncChangeDetail).count(), 2)

    def test_discard_since_mark(self):
        with self.catalog.session() as session:
            tracker = ChangeTracker(session)
            tracker.track(self.sync_id, 'Student', 'stu-1', 'Ada Lovelace',
                          None, {'first_name': 'Ada'}, ChangeType.CREATED)
            mark = tracker.mark()
            tracker.track(self.sync_id, 'Student', 'stu-2', 'Mary',
                          None, {'first_name': 'Mary'}, ChangeType.CREATED)
            self.assertEqual(tracker.discard_since(mark), 1)
            self.assertEqual(tracker.discard_since(mark), 0)

            self.assertEqual(tracker.save_changes(), 1)
            self.assertEqual([d.entity_id for d in
                              session.query(SyncChangeDetail)], ['stu-1'])

    def test_update_keeps_only_changed_values(self):
        old = {'first_name': 'Ada', 'last_name': 'Lovelace',
               'updated_at': datetime(2024, 1, 1)}
        new = {'first_name': 'Augusta', 'last_name': 'Lovelace',
               'updated_at': datetime(2024, 9, 1, 12, 30)}
        with self.catalog.session() as session:
            tracker = ChangeTracker(session)
            detail = tracker.track(self.sync_id, 'Student', 'stu-1',
                                   'Augusta Lovelace', old, new,
                                   ChangeType.UPDATED)
            tracker.save_changes()

        self.assertEqual(detail.fields_changed, 'first_name, updated_at')
        self.assertEqual(json.loads(detail.old_values_json),
                         {'first_name': 'Ada',
                          'updated_at': '2024-01-01T00:00:00'})
        self.assertEqual(json.loads(detail.new_values_json)['first_name'],
                         'Augusta')

    def test_orphan_snapshot(self):
        with self.catalog.session() as session:
            tracker = ChangeTracker(session)
            detail = tracker.track(self.sync_id, 'Teacher', 'tch-9', None,
                                   {'first_name': 'Gone'}, None,
                                   ChangeType.ORPHANED)
        self.assertIsNone(detail.new_values_json)
        self.assertEqual(detail.entity_id, 'tch-9')


if __name__ == '__main__':
    unittest.main()
