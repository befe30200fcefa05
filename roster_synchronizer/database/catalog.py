"""
SQLAlchemy models for the central catalog: districts, schools, and the
bookkeeping shared by every sync worker (history, audit trail,
warnings, locks, schedules and event-stream snapshots).

All timestamps are naive UTC.
"""
from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Index, Integer,
                        String, Text)
from sqlalchemy.orm import declarative_base

from ..utils import utcnow

CatalogBase = declarative_base()


class SyncStatus(object):
    IN_PROGRESS = 'InProgress'
    SUCCESS = 'Success'
    FAILED = 'Failed'


class SyncType(object):
    FULL = 'Full'
    INCREMENTAL = 'Incremental'
    RECONCILIATION = 'Reconciliation'


class ChangeType(object):
    CREATED = 'Created'
    UPDATED = 'Updated'
    DELETED = 'Deleted'
    ORPHANED = 'Orphaned'


class WarningType(object):
    SECTION_DELETED = 'SectionDeleted'
    SECTION_MODIFIED = 'SectionModified'
    WORKSHOP_SYNC_FAILED = 'WorkshopSyncFailed'


class AuthSource(object):
    SIS = 'Clever'
    BYPASS = 'Bypass'


class District(CatalogBase):
    __tablename__ = 'districts'

    id = Column(Integer, primary_key=True)
    external_id = Column(String(100), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    secret_prefix = Column(String(100), nullable=False)
    time_zone = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class School(CatalogBase):
    __tablename__ = 'schools'

    id = Column(Integer, primary_key=True)
    district_id = Column(Integer, ForeignKey('districts.id'), nullable=False)
    external_id = Column(String(100), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    database_ref = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    requires_full_sync = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class SyncHistory(CatalogBase):
    __tablename__ = 'sync_history'
    __table_args__ = (
        Index('ix_sync_history_school_entity', 'school_id', 'entity_type'),
    )

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, ForeignKey('schools.id'), nullable=False)
    entity_type = Column(String(50), nullable=False)
    sync_type = Column(String(20), nullable=False)
    start_time = Column(DateTime, default=utcnow, nullable=False)
    end_time = Column(DateTime, nullable=True)
    status = Column(String(20), default=SyncStatus.IN_PROGRESS,
                    nullable=False)
    records_processed = Column(Integer, default=0, nullable=False)
    records_updated = Column(Integer, default=0, nullable=False)
    records_failed = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)
    last_event_id = Column(String(100), nullable=True)


class SyncChangeDetail(CatalogBase):
    __tablename__ = 'sync_change_details'

    id = Column(Integer, primary_key=True)
    sync_id = Column(Integer, ForeignKey('sync_history.id'), nullable=False,
                     index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=False)
    entity_name = Column(String(300), nullable=True)
    change_type = Column(String(20), nullable=False)
    fields_changed = Column(Text, nullable=True)
    old_values_json = Column(Text, nullable=True)
    new_values_json = Column(Text, nullable=True)
    changed_at = Column(DateTime, default=utcnow, nullable=False)


class SyncWarning(CatalogBase):
    __tablename__ = 'sync_warnings'

    id = Column(Integer, primary_key=True)
    sync_id = Column(Integer, ForeignKey('sync_history.id'), nullable=False,
                     index=True)
    warning_type = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=True)
    entity_name = Column(String(300), nullable=True)
    message = Column(Text, nullable=False)
    affected_workshops = Column(Text, nullable=True)
    affected_linked_count = Column(Integer, default=0, nullable=False)
    acknowledged = Column(Boolean, default=False, nullable=False)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String(200), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class SyncLock(CatalogBase):
    __tablename__ = 'sync_locks'

    scope = Column(String(100), primary_key=True)
    lock_id = Column(String(32), nullable=False)
    acquired_by = Column(String(100), nullable=False)
    initiated_by = Column(String(200), nullable=True)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    last_heartbeat = Column(DateTime, nullable=False)
    machine_name = Column(String(200), nullable=True)


class SyncSchedule(CatalogBase):
    __tablename__ = 'sync_schedules'

    id = Column(Integer, primary_key=True)
    district_id = Column(Integer, ForeignKey('districts.id'), nullable=False)
    local_hour = Column(Integer, nullable=False)
    local_minute = Column(Integer, default=0, nullable=False)
    days_of_week = Column(String(50), default='Daily', nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    last_triggered_utc = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    created_by = Column(String(200), nullable=True)


class EventsLog(CatalogBase):
    __tablename__ = 'events_log'

    id = Column(Integer, primary_key=True)
    checked_at = Column(DateTime, default=utcnow, nullable=False)
    api_accessible = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), nullable=False)
    created_count = Column(Integer, default=0, nullable=False)
    updated_count = Column(Integer, default=0, nullable=False)
    deleted_count = Column(Integer, default=0, nullable=False)
    latest_event_id = Column(String(100), nullable=True)
    message = Column(Text, nullable=True)


class User(CatalogBase):
    """Portal accounts; administrators are synced from the SIS."""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    external_id = Column(String(100), nullable=True, index=True)
    email = Column(String(300), nullable=False)
    display_name = Column(String(300), nullable=True)
    role = Column(String(50), nullable=False)
    auth_source = Column(String(20), default=AuthSource.SIS, nullable=False)
    school_id = Column(Integer, ForeignKey('schools.id'), nullable=True)
    district_id = Column(Integer, ForeignKey('districts.id'), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=True)
    created_by = Column(String(100), nullable=True)
