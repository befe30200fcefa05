"""
Database-row locks that keep two workers, possibly on different
machines, from synchronizing the same scope at once. A scope is one of
``school:{id}``, ``district:{id}`` or ``global``.

A scope is held while its row exists with `expires_at` in the future.
Expired rows are taken over by the next caller, or swept by
:meth:`SyncLockService.cleanup_expired`. Every holder receives a
`lock_id` and must present it to release or extend the lock, so a
worker whose lock expired cannot free a newer holder's lock.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import logging
import socket
import uuid

from sqlalchemy import and_, delete, update
from sqlalchemy.exc import IntegrityError

from .database import CatalogDatabase, SyncLock
from .utils import utcnow

DEFAULT_LOCK_MINUTES = 30


def school_scope(school_id: int) -> str:
    return f'school:{school_id}'


def district_scope(district_id: int) -> str:
    return f'district:{district_id}'


GLOBAL_SCOPE = 'global'


@dataclass
class LockInfo(object):
    scope: str
    lock_id: str
    acquired_by: str
    initiated_by: Optional[str]
    acquired_at: datetime
    expires_at: datetime
    last_heartbeat: datetime
    machine_name: Optional[str]

    @property
    def holder(self) -> str:
        who = self.acquired_by
        if self.initiated_by:
            who += f' ({self.initiated_by})'
        if self.machine_name:
            who += f' on {self.machine_name}'
        return who

    @classmethod
    def from_row(cls, row: SyncLock) -> 'LockInfo':
        return cls(scope=row.scope, lock_id=row.lock_id,
                   acquired_by=row.acquired_by,
                   initiated_by=row.initiated_by,
                   acquired_at=row.acquired_at, expires_at=row.expires_at,
                   last_heartbeat=row.last_heartbeat,
                   machine_name=row.machine_name)


@dataclass
class LockAcquisitionResult(object):
    success: bool
    lock_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    current_holder: Optional[LockInfo] = None


class SyncLockService(object):

    def __init__(self, catalog: CatalogDatabase, machine_name: str = None):
        self.catalog = catalog
        self.machine_name = socket.gethostname() if machine_name is None \
            else machine_name
        self.logger = logging.getLogger(__name__)

    def try_acquire(self, scope: str, acquired_by: str,
                    initiated_by: str = None,
                    duration_minutes: int = DEFAULT_LOCK_MINUTES
                    ) -> LockAcquisitionResult:
        """
        Attempts to take the lock for `scope`.

        An expired row is taken over with a single conditional UPDATE;
        otherwise a new row is INSERTed and the primary key on `scope`
        rejects a second holder. Either way only one caller can win.

        :param scope: the scope to lock
        :param acquired_by: the component taking the lock, e.g.
            "Scheduler"
        :param initiated_by: the user or trigger behind the request
        :param duration_minutes: how long the lock lives without a
            heartbeat
        """
        now = utcnow()
        lock_id = uuid.uuid4().hex[:16]
        expires_at = now + timedelta(minutes=duration_minutes)
        values = dict(lock_id=lock_id, acquired_by=acquired_by,
                      initiated_by=initiated_by, acquired_at=now,
                      expires_at=expires_at, last_heartbeat=now,
                      machine_name=self.machine_name)

        with self.catalog.session() as session:
            taken_over = session.execute(
                update(SyncLock)
                .where(and_(SyncLock.scope == scope,
                            SyncLock.expires_at <= now))
                .values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount
            if taken_over:
                session.commit()
                self.logger.info(f'Took over expired lock for "{scope}" '
                                 f'as {acquired_by} ({lock_id}).')
                return LockAcquisitionResult(True, lock_id, expires_at)

            session.add(SyncLock(scope=scope, **values))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                holder = self._get_info(session, scope)
                self.logger.info(f'Lock for "{scope}" is held by '
                                 f'{holder.holder if holder else "unknown"}.')
                return LockAcquisitionResult(False, current_holder=holder)

        self.logger.debug(f'Acquired lock for "{scope}" as {acquired_by} '
                          f'({lock_id}).')
        return LockAcquisitionResult(True, lock_id, expires_at)

    def release(self, scope: str, lock_id: str) -> bool:
        with self.catalog.session() as session:
            deleted = session.execute(
                delete(SyncLock)
                .where(and_(SyncLock.scope == scope,
                            SyncLock.lock_id == lock_id))
                .execution_options(synchronize_session=False)
            ).rowcount
            session.commit()
        if not deleted:
            self.logger.warning(f'Release of "{scope}" with lock id '
                                f'{lock_id} ignored: not the holder.')
        return bool(deleted)

    def extend(self, scope: str, lock_id: str,
               minutes: int = DEFAULT_LOCK_MINUTES) -> bool:
        """
        Heartbeat: pushes `expires_at` to `minutes` from now. Fails if
        the lock is no longer held under `lock_id`.
        """
        now = utcnow()
        with self.catalog.session() as session:
            updated = session.execute(
                update(SyncLock)
                .where(and_(SyncLock.scope == scope,
                            SyncLock.lock_id == lock_id))
                .values(expires_at=now + timedelta(minutes=minutes),
                        last_heartbeat=now)
                .execution_options(synchronize_session=False)
            ).rowcount
            session.commit()
        if not updated:
            self.logger.warning(f'Could not extend lock "{scope}" with lock '
                                f'id {lock_id}: not the holder.')
        return bool(updated)

    def is_locked(self, scope: str) -> bool:
        info = self.get_lock_info(scope)
        return info is not None and info.expires_at > utcnow()

    def get_lock_info(self, scope: str) -> Optional[LockInfo]:
        with self.catalog.session() as session:
            return self._get_info(session, scope)

    def cleanup_expired(self) -> int:
        with self.catalog.session() as session:
            count = session.execute(
                delete(SyncLock)
                .where(SyncLock.expires_at <= utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            session.commit()
        if count:
            self.logger.info(f'Removed {count} expired sync lock(s).')
        return count

    @staticmethod
    def _get_info(session, scope: str) -> Optional[LockInfo]:
        row = session.get(SyncLock, scope)
        return None if row is None else LockInfo.from_row(row)
