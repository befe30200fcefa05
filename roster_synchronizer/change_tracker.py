from datetime import date, datetime
from typing import Any, Dict, List, Optional
import json
import logging

from sqlalchemy.orm import Session

from .database import ChangeType, SyncChangeDetail
from .utils import utcnow

Snapshot = Optional[Dict[str, Any]]


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _dumps(values: Dict[str, Any]) -> str:
    return json.dumps(values, default=_json_default, sort_keys=True)


class ChangeTracker(object):

    """
    Collects field-level audit rows for one sync run and writes them in
    a single batch. It knows nothing about entity types: callers pass
    plain dictionary snapshots of the record before and after the
    change (None for the side that does not exist).
    """

    def __init__(self, session: Session, logger: logging.Logger = None):
        self.session = session
        self.logger = logging.getLogger(__name__) if logger is None \
            else logger
        self.pending = []  # type: List[SyncChangeDetail]

    @staticmethod
    def changed_fields(old: Snapshot, new: Snapshot) -> List[str]:
        """
        Names of the fields that differ. For a creation these are the
        fields of `new` that carry a value.
        """
        if old is None and new is None:
            return []
        if old is None:
            return [k for k, v in new.items() if v not in (None, '')]
        if new is None:
            return list(old.keys())
        keys = list(old.keys()) + [k for k in new.keys() if k not in old]
        return [k for k in keys if old.get(k) != new.get(k)]

    def track(self, sync_id: int, entity_type: str, entity_id: str,
              entity_name: Optional[str], old: Snapshot, new: Snapshot,
              change_type: str) -> SyncChangeDetail:
        fields = self.changed_fields(old, new)
        if change_type == ChangeType.UPDATED and old is not None \
                and new is not None:
            old_values = {k: old.get(k) for k in fields}
            new_values = {k: new.get(k) for k in fields}
        else:
            old_values = old
            new_values = new

        detail = SyncChangeDetail(
            sync_id=sync_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            entity_name=entity_name,
            change_type=change_type,
            fields_changed=', '.join(fields),
            old_values_json=None if old_values is None else _dumps(old_values),
            new_values_json=None if new_values is None else _dumps(new_values),
            changed_at=utcnow()
        )
        self.pending.append(detail)
        return detail

    def mark(self) -> int:
        return len(self.pending)

    def discard_since(self, mark: int) -> int:
        """
        Drops the rows tracked after `mark`, for a record whose write
        was rolled back. Returns how many were dropped.
        """
        dropped = len(self.pending) - mark
        if dropped > 0:
            del self.pending[mark:]
            self.logger.debug(f'Discarded {dropped} change record(s) of a '
                              'rolled back write.')
        return max(dropped, 0)

    def save_changes(self) -> int:
        """Writes every pending row and returns how many were written."""
        count = len(self.pending)
        if count == 0:
            return 0
        self.session.add_all(self.pending)
        self.session.commit()
        self.pending = []
        self.logger.debug(f'Saved {count} change record(s).')
        return count
