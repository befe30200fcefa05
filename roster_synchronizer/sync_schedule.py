from datetime import datetime, time, timedelta
from typing import FrozenSet, List, Optional
import logging

from sqlalchemy import true

from .database import CatalogDatabase, District, SyncSchedule
from .exceptions import InvalidScheduleError
from .local_time import LocalTimeService, SchoolTimeContext
from .utils import utcnow

DAILY = 'Daily'
DAY_NAMES = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')
"""Indexed by :meth:`datetime.weekday`."""


def parse_days(days_of_week: Optional[str]) -> FrozenSet[int]:
    """
    Parses a `days_of_week` value, either "Daily" or a comma separated
    list of day abbreviations such as "Mon,Wed,Fri", into a set of
    weekday numbers (Monday is 0). Full day names are accepted too.

    :raises InvalidScheduleError: on an unknown day
    """
    if not days_of_week or days_of_week.strip().lower() == DAILY.lower():
        return frozenset(range(7))
    days = set()
    for part in days_of_week.split(','):
        name = part.strip()[:3].capitalize()
        if name not in DAY_NAMES:
            raise InvalidScheduleError(f'unknown day "{part.strip()}" in '
                                       f'"{days_of_week}"')
        days.add(DAY_NAMES.index(name))
    return frozenset(days)


def validate(local_hour: int, local_minute: int, days_of_week: str):
    if not 0 <= local_hour <= 23:
        raise InvalidScheduleError(f'hour must be 0-23, got {local_hour}')
    if not 0 <= local_minute <= 59:
        raise InvalidScheduleError(f'minute must be 0-59, got '
                                   f'{local_minute}')
    parse_days(days_of_week)


class SyncScheduleService(object):

    """
    Stores the times at which districts are synced automatically and
    decides which schedules are due. Schedule times are wall-clock
    times in the district's own time zone; a schedule is due from its
    time until `window_minutes` later, once per day.
    """

    editable = ('local_hour', 'local_minute', 'days_of_week', 'enabled')

    def __init__(self, catalog: CatalogDatabase,
                 time_service: LocalTimeService = None,
                 window_minutes: int = 5):
        self.catalog = catalog
        self.time_service = LocalTimeService() if time_service is None \
            else time_service
        self.window = timedelta(minutes=window_minutes)
        self.logger = logging.getLogger(__name__)

    def create(self, district_id: int, local_hour: int,
               local_minute: int = 0, days_of_week: str = DAILY,
               enabled: bool = True, created_by: str = None) -> SyncSchedule:
        validate(local_hour, local_minute, days_of_week)
        now = utcnow()
        schedule = SyncSchedule(district_id=district_id,
                                local_hour=local_hour,
                                local_minute=local_minute,
                                days_of_week=days_of_week,
                                enabled=enabled, created_at=now,
                                updated_at=now, created_by=created_by)
        with self.catalog.session() as session:
            session.add(schedule)
            session.commit()
        self.logger.info(f'Created sync schedule {schedule.id} at '
                         f'{local_hour:02d}:{local_minute:02d} '
                         f'({days_of_week}) for district {district_id}.')
        return schedule

    def get(self, schedule_id: int) -> Optional[SyncSchedule]:
        with self.catalog.session() as session:
            return session.get(SyncSchedule, schedule_id)

    def list_for_district(self, district_id: int) -> List[SyncSchedule]:
        with self.catalog.session() as session:
            return (session.query(SyncSchedule)
                    .filter(SyncSchedule.district_id == district_id)
                    .order_by(SyncSchedule.local_hour,
                              SyncSchedule.local_minute)
                    .all())

    def update(self, schedule_id: int, **changes) -> SyncSchedule:
        """
        Changes any of the `editable` fields of a schedule.

        :raises InvalidScheduleError: if the schedule does not exist or
            the new values are invalid
        """
        unknown = set(changes) - set(self.editable)
        if unknown:
            raise InvalidScheduleError(f'cannot change '
                                       f'{", ".join(sorted(unknown))}',
                                       schedule_id)
        with self.catalog.session() as session:
            schedule = self._require(session, schedule_id)
            for k, v in changes.items():
                setattr(schedule, k, v)
            validate(schedule.local_hour, schedule.local_minute,
                     schedule.days_of_week)
            schedule.updated_at = utcnow()
            session.commit()
        self.logger.info(f'Updated sync schedule {schedule_id}: {changes}')
        return schedule

    def delete(self, schedule_id: int) -> bool:
        with self.catalog.session() as session:
            schedule = session.get(SyncSchedule, schedule_id)
            if schedule is None:
                return False
            session.delete(schedule)
            session.commit()
        self.logger.info(f'Deleted sync schedule {schedule_id}.')
        return True

    def toggle(self, schedule_id: int) -> bool:
        """Flips `enabled` and returns the new value."""
        with self.catalog.session() as session:
            schedule = self._require(session, schedule_id)
            schedule.enabled = not schedule.enabled
            schedule.updated_at = utcnow()
            session.commit()
            enabled = schedule.enabled
        self.logger.info(f'Sync schedule {schedule_id} '
                         f'{"enabled" if enabled else "disabled"}.')
        return enabled

    def get_due_schedules(self, now_utc: datetime = None
                          ) -> List[SyncSchedule]:
        now_utc = utcnow() if now_utc is None else now_utc
        with self.catalog.session() as session:
            rows = (session.query(SyncSchedule, District)
                    .join(District, District.id == SyncSchedule.district_id)
                    .filter(SyncSchedule.enabled == true())
                    .order_by(SyncSchedule.id)
                    .all())

        due = []
        for schedule, district in rows:
            try:
                if self.is_due(schedule,
                               self.time_service.create_context(district),
                               now_utc):
                    due.append(schedule)
            except InvalidScheduleError as e:
                self.logger.error(str(e))
        return due

    def is_due(self, schedule: SyncSchedule, context: SchoolTimeContext,
               now_utc: datetime) -> bool:
        try:
            days = parse_days(schedule.days_of_week)
        except InvalidScheduleError as e:
            raise InvalidScheduleError(e.msg, schedule.id) from e
        local_now = context.to_local(now_utc)
        if local_now.weekday() not in days:
            return False
        scheduled = local_now.replace(hour=schedule.local_hour,
                                      minute=schedule.local_minute,
                                      second=0, microsecond=0)
        if not scheduled <= local_now < scheduled + self.window:
            return False
        if schedule.last_triggered_utc is not None \
                and context.to_local(schedule.last_triggered_utc) \
                >= scheduled:
            self.logger.debug(f'Schedule {schedule.id} already ran at '
                              f'{schedule.last_triggered_utc} UTC.')
            return False
        self.logger.info(f'Schedule {schedule.id} is due: local time '
                         f'{local_now:%H:%M} in {context.zone_name}, '
                         f'scheduled for {scheduled:%H:%M}.')
        return True

    def mark_triggered(self, schedule_id: int, now_utc: datetime = None):
        now_utc = utcnow() if now_utc is None else now_utc
        with self.catalog.session() as session:
            schedule = self._require(session, schedule_id)
            schedule.last_triggered_utc = now_utc
            schedule.updated_at = now_utc
            session.commit()

    def get_next_run_time(self, schedule: SyncSchedule,
                          now_utc: datetime = None) -> Optional[datetime]:
        """
        The next time, in naive UTC, that `schedule` becomes due,
        looking up to a week ahead. None for disabled schedules.
        """
        if not schedule.enabled:
            return None
        now_utc = utcnow() if now_utc is None else now_utc
        with self.catalog.session() as session:
            district = session.get(District, schedule.district_id)
        context = self.time_service.create_context(district)
        days = parse_days(schedule.days_of_week)
        local_now = context.to_local(now_utc)
        at = time(schedule.local_hour, schedule.local_minute)
        for offset in range(8):
            candidate = datetime.combine(
                local_now.date() + timedelta(days=offset), at
            )
            if candidate > local_now and candidate.weekday() in days:
                return context.to_utc(candidate)
        return None

    @staticmethod
    def _require(session, schedule_id: int) -> SyncSchedule:
        schedule = session.get(SyncSchedule, schedule_id)
        if schedule is None:
            raise InvalidScheduleError('no such schedule', schedule_id)
        return schedule
