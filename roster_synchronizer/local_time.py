from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from .database import District
from .utils import utcnow

DEFAULT_TIME_ZONE = 'America/New_York'


class SchoolTimeContext(object):

    """
    A district's time zone, resolved once for the length of a sync run.
    Storage always uses :meth:`now` (naive UTC); local conversions are
    for display and schedule evaluation only.
    """

    def __init__(self, time_zone: ZoneInfo):
        self.time_zone = time_zone

    @property
    def zone_name(self) -> str:
        return self.time_zone.key

    def now(self) -> datetime:
        return utcnow()

    def local_now(self) -> datetime:
        return self.to_local(utcnow())

    def to_local(self, utc: datetime) -> datetime:
        """Naive UTC in, naive local wall-clock time out."""
        aware = utc.replace(tzinfo=timezone.utc)
        return aware.astimezone(self.time_zone).replace(tzinfo=None)

    def to_utc(self, local: datetime) -> datetime:
        aware = local.replace(tzinfo=self.time_zone)
        return aware.astimezone(timezone.utc).replace(tzinfo=None)


class LocalTimeService(object):

    def __init__(self, default_time_zone: str = DEFAULT_TIME_ZONE):
        self.logger = logging.getLogger(__name__)
        self.default_time_zone = self.resolve(default_time_zone,
                                              ZoneInfo(DEFAULT_TIME_ZONE))

    def resolve(self, name: Optional[str],
                fallback: ZoneInfo = None) -> ZoneInfo:
        fallback = self.default_time_zone if fallback is None else fallback
        if not name:
            return fallback
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            self.logger.warning(f'Unknown time zone "{name}". Using '
                                f'{fallback.key}.')
            return fallback

    def create_context(self, district: Optional[District]) -> SchoolTimeContext:
        name = district.time_zone if district is not None else None
        return SchoolTimeContext(self.resolve(name))
