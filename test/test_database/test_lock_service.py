from concurrent.futures import ThreadPoolExecutor
from threading import Barrier
import tempfile
import unittest

from sqlalchemy import create_engine

from roster_synchronizer.database import CatalogDatabase, SyncLock
from roster_synchronizer.lock_service import (GLOBAL_SCOPE, SyncLockService,
                                              district_scope, school_scope)
from ..helpers import make_catalog


class TestSyncLockService(unittest.TestCase):

    def setUp(self):
        self.catalog = make_catalog()
        self.locks = SyncLockService(self.catalog, machine_name='worker-1')
        self.scope = school_scope(1)

    def test_scope_names(self):
        self.assertEqual(school_scope(7), 'school:7')
        self.assertEqual(district_scope(3), 'district:3')
        self.assertEqual(GLOBAL_SCOPE, 'global')

    def test_second_caller_is_refused(self):
        first = self.locks.try_acquire(self.scope, 'Scheduler', 'nightly')
        self.assertTrue(first.success)
        self.assertIsNotNone(first.lock_id)

        second = self.locks.try_acquire(self.scope, 'AdminUI', 'jdoe')
        self.assertFalse(second.success)
        self.assertIsNone(second.lock_id)
        holder = second.current_holder
        self.assertEqual(holder.lock_id, first.lock_id)
        self.assertEqual(holder.holder, 'Scheduler (nightly) on worker-1')

    def test_scopes_are_independent(self):
        self.assertTrue(self.locks.try_acquire(school_scope(1), 'A').success)
        self.assertTrue(self.locks.try_acquire(school_scope(2), 'A').success)
        self.assertTrue(self.locks.try_acquire(district_scope(1),
                                               'A').success)

    def test_release_requires_lock_id(self):
        acquired = self.locks.try_acquire(self.scope, 'Scheduler')
        self.assertFalse(self.locks.release(self.scope, 'not-the-id'))
        self.assertTrue(self.locks.is_locked(self.scope))

        self.assertTrue(self.locks.release(self.scope, acquired.lock_id))
        self.assertFalse(self.locks.is_locked(self.scope))
        self.assertTrue(self.locks.try_acquire(self.scope, 'Other').success)

    def test_expired_lock_taken_over(self):
        stale = self.locks.try_acquire(self.scope, 'Crashed',
                                       duration_minutes=-1)
        self.assertTrue(stale.success)
        self.assertFalse(self.locks.is_locked(self.scope))

        fresh = self.locks.try_acquire(self.scope, 'Scheduler')
        self.assertTrue(fresh.success)
        self.assertNotEqual(fresh.lock_id, stale.lock_id)
        self.assertEqual(self.locks.get_lock_info(self.scope).acquired_by,
                         'Scheduler')

        # the previous holder can neither heartbeat nor release
        self.assertFalse(self.locks.extend(self.scope, stale.lock_id))
        self.assertFalse(self.locks.release(self.scope, stale.lock_id))
        self.assertTrue(self.locks.is_locked(self.scope))

    def test_extend(self):
        acquired = self.locks.try_acquire(self.scope, 'Scheduler',
                                          duration_minutes=1)
        before = self.locks.get_lock_info(self.scope)
        self.assertTrue(self.locks.extend(self.scope, acquired.lock_id,
                                          minutes=60))
        after = self.locks.get_lock_info(self.scope)
        self.assertGreater(after.expires_at, before.expires_at)
        self.assertGreaterEqual(after.last_heartbeat, before.last_heartbeat)

    def test_extend_missing_lock(self):
        self.assertFalse(self.locks.extend(self.scope, 'nothing'))

    def test_extend_with_wrong_lock_id_changes_nothing(self):
        acquired = self.locks.try_acquire(self.scope, 'Scheduler',
                                          duration_minutes=5)
        before = self.locks.get_lock_info(self.scope)
        self.assertFalse(self.locks.extend(self.scope, 'not-the-id',
                                           minutes=60))
        after = self.locks.get_lock_info(self.scope)
        self.assertEqual(after.lock_id, acquired.lock_id)
        self.assertEqual(after.expires_at, before.expires_at)
        self.assertEqual(after.last_heartbeat, before.last_heartbeat)

    def test_cleanup_expired(self):
        self.locks.try_acquire(school_scope(1), 'A', duration_minutes=-5)
        self.locks.try_acquire(school_scope(2), 'A', duration_minutes=-5)
        self.locks.try_acquire(school_scope(3), 'A')

        self.assertEqual(self.locks.cleanup_expired(), 2)
        with self.catalog.session() as session:
            remaining = [r.scope for r in session.query(SyncLock)]
        self.assertEqual(remaining, [school_scope(3)])
        self.assertEqual(self.locks.cleanup_expired(), 0)


class TestConcurrentAcquire(unittest.TestCase):

    """Many workers racing for one scope on a file-backed catalog."""

    workers = 8

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        engine = create_engine(f'sqlite:///{tmp.name}/catalog.db',
                               connect_args={'check_same_thread': False,
                                             'timeout': 30})
        self.addCleanup(engine.dispose)
        self.catalog = CatalogDatabase(engine)
        self.catalog.create_schema()
        self.locks = SyncLockService(self.catalog, machine_name='worker-1')
        self.scope = school_scope(1)

    def race(self):
        barrier = Barrier(self.workers)

        def acquire(n: int):
            barrier.wait()
            return self.locks.try_acquire(self.scope, f'Worker {n}')

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            return list(executor.map(acquire, range(self.workers)))

    def assert_single_winner(self, results):
        winners = [r for r in results if r.success]
        self.assertEqual(len(winners), 1)
        self.assertEqual(self.locks.get_lock_info(self.scope).lock_id,
                         winners[0].lock_id)
        for loser in results:
            if not loser.success:
                self.assertEqual(loser.current_holder.lock_id,
                                 winners[0].lock_id)

    def test_one_winner_for_free_scope(self):
        self.assert_single_winner(self.race())

    def test_one_winner_for_expired_lock(self):
        stale = self.locks.try_acquire(self.scope, 'Crashed',
                                       duration_minutes=-1)
        results = self.race()
        self.assert_single_winner(results)
        self.assertNotIn(stale.lock_id, [r.lock_id for r in results])


if __name__ == '__main__':
    unittest.main()
