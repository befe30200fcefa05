from __future__ import annotations
from typing import List, TYPE_CHECKING

from sqlalchemy import false
from sqlalchemy.orm import Query

from .base_delegate import SyncDelegate
from ...change_tracker import ChangeTracker
from ...database import Term
from ...sis_data_models import SisTerm

if TYPE_CHECKING:
    from ..context import SyncContext

DEFAULT_TERM_NAME = 'Unnamed Term'


class TermDelegate(SyncDelegate):

    """
    Synchronizes terms. Terms entered by hand (`is_manual`) have no SIS
    counterpart and are never touched by orphan detection. A term the
    SIS sends without usable dates is skipped, but an existing local
    copy counts as seen and keeps its stored values.
    """

    entity_type = 'Term'
    result_prefix = 'terms'
    model = Term
    fields = ('name', 'start_date', 'end_date')

    def fetch(self, context: SyncContext) -> List[SisTerm]:
        return self.sync.client.get_terms(cancel=context.cancel)

    def upsert(self, context: SyncContext, record: SisTerm, sync_id: int,
               tracker: ChangeTracker) -> bool:
        start, end = record.start, record.end
        if start is None or end is None:
            self.logger.warning(f'Skipping term {record.id}: missing or '
                                f'invalid start/end date '
                                f'({record.start_date!r}, '
                                f'{record.end_date!r}).')
            # still listed by the SIS, so not an orphan
            existing = self.find(context, record.id)
            if existing is not None and existing.deleted_at is None:
                existing.last_synced_at = context.now()
                context.school_session.commit()
            return False
        values = {'name': record.name or DEFAULT_TERM_NAME,
                  'start_date': start,
                  'end_date': end}
        _, changed, _ = self.apply(context, record.id, values, sync_id,
                                   tracker)
        context.school_session.commit()
        return changed

    def orphan_query(self, context: SyncContext) -> Query:
        return (super().orphan_query(context)
                .filter(Term.is_manual == false()))
