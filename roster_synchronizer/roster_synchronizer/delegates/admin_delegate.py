from __future__ import annotations
from typing import Any, Dict, List, TYPE_CHECKING

from sqlalchemy import true
from sqlalchemy.orm import Query

from .base_delegate import SyncDelegate
from ...change_tracker import ChangeTracker
from ...database import AuthSource, ChangeType, User
from ...sis_data_models import SisAdmin

if TYPE_CHECKING:
    from ..context import SyncContext


class AdminDelegate(SyncDelegate):

    """
    Synchronizes school administrators into the catalog's `users`
    table. Only accounts whose `auth_source` is the SIS are ever
    modified; accounts managed some other way, such as bypass logins,
    are left untouched even when their email matches.
    """

    entity_type = 'Admin'
    result_prefix = 'admins'
    model = User
    fields = ('display_name', 'email', 'role', 'is_active')

    def fetch(self, context: SyncContext) -> List[SisAdmin]:
        return self.sync.client.get_school_admins(
            context.school.external_id, cancel=context.cancel
        )

    def find(self, context: SyncContext, external_id: str):
        return (context.catalog_session.query(User)
                .filter(User.external_id == external_id)
                .filter(User.auth_source == AuthSource.SIS)
                .one_or_none())

    def snapshot(self, obj: User) -> Dict[str, Any]:
        return {f: getattr(obj, f) for f in self.fields}

    def display_name(self, obj: User) -> str:
        return obj.display_name or obj.email

    def upsert(self, context: SyncContext, record: SisAdmin, sync_id: int,
               tracker: ChangeTracker) -> bool:
        session = context.catalog_session
        context.seen_admin_ids.add(record.id)
        now = context.now()
        email = record.email or ''
        new = {'display_name': record.name.full, 'email': email,
               'role': record.role, 'is_active': True}

        user = (session.query(User)
                .filter(User.external_id == record.id)
                .one_or_none())
        if user is None:
            bypass = (session.query(User)
                      .filter(User.email == email)
                      .filter(User.auth_source == AuthSource.BYPASS)
                      .first())
            if bypass is not None:
                self.logger.warning(f'Skipping admin {record.id}: a bypass '
                                    'account with the same email exists.')
                return False
            user = User(external_id=record.id, auth_source=AuthSource.SIS,
                        school_id=context.school.id,
                        district_id=context.school.district_id,
                        created_at=now, updated_at=now,
                        created_by='RosterSync', **new)
            session.add(user)
            session.commit()
            tracker.track(sync_id, self.entity_type, record.id,
                          self.display_name(user), None, new,
                          ChangeType.CREATED)
            self.logger.info(f'Created {record.role} account for school '
                             f'{context.school.id}.')
            return True

        if user.auth_source != AuthSource.SIS:
            self.logger.warning(f'Skipping update of user {user.id}: auth '
                                f'source is {user.auth_source}.')
            return False

        old = self.snapshot(user)
        if old == new:
            return False
        for k, v in new.items():
            setattr(user, k, v)
        user.updated_at = now
        session.commit()
        tracker.track(sync_id, self.entity_type, record.id,
                      self.display_name(user), old, new, ChangeType.UPDATED)
        return True

    def handle_delete(self, context: SyncContext, external_id: str,
                      sync_id: int, tracker: ChangeTracker) -> bool:
        user = self.find(context, external_id)
        if user is None or not user.is_active:
            return False
        self._deactivate(context, user, sync_id, tracker, ChangeType.DELETED)
        context.catalog_session.commit()
        context.result.increment(self.result_prefix, 'deleted')
        return True

    def orphan_query(self, context: SyncContext) -> Query:
        start = context.sync_start_time
        query = (context.catalog_session.query(User)
                 .filter(User.school_id == context.school.id)
                 .filter(User.auth_source == AuthSource.SIS)
                 .filter(User.is_active == true())
                 .filter((User.updated_at.is_(None))
                         | (User.updated_at < start)))
        if context.seen_admin_ids:
            query = query.filter(User.external_id.notin_(
                list(context.seen_admin_ids)
            ))
        return query

    def detect_orphans(self, context: SyncContext, sync_id: int,
                       tracker: ChangeTracker) -> int:
        orphans = self.orphan_query(context).all()
        for user in orphans:
            self._deactivate(context, user, sync_id, tracker,
                             ChangeType.ORPHANED)
        if orphans:
            context.catalog_session.commit()
            context.result.increment(self.result_prefix, 'deleted',
                                     len(orphans))
            self.logger.info(f'Deactivated {len(orphans)} orphaned admin '
                             f'account(s) for school {context.school.id}.')
        return len(orphans)

    def _deactivate(self, context: SyncContext, user: User, sync_id: int,
                    tracker: ChangeTracker, change_type: str):
        old = self.snapshot(user)
        user.is_active = False
        user.updated_at = context.now()
        tracker.track(sync_id, self.entity_type, user.external_id,
                      self.display_name(user), old, self.snapshot(user),
                      change_type)
