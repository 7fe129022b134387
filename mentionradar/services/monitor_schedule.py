"""
Monitor active hours

Tenants can limit a monitor to certain hours and weekdays in their own
timezone, e.g. 9:00-17:00 Monday to Friday. Ranges where the start hour
is after the end hour wrap past midnight.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from mentionradar.core.clock import utc_now, ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_START_HOUR = 9
DEFAULT_END_HOUR = 17
WEEKDAYS = [1, 2, 3, 4, 5]


@dataclass
class MonitorSchedule:
    enabled: bool = False
    start_hour: Optional[int] = None
    end_hour: Optional[int] = None
    days: Optional[List[int]] = None  # 0 = Sunday, None or empty means every day
    timezone: Optional[str] = None

    @classmethod
    def from_monitor(cls, monitor) -> "MonitorSchedule":
        return cls(
            enabled=bool(monitor.schedule_enabled),
            start_hour=monitor.schedule_start_hour,
            end_hour=monitor.schedule_end_hour,
            days=monitor.schedule_days,
            timezone=monitor.schedule_timezone,
        )


def _zone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown schedule timezone {name!r}, falling back to UTC")
        return ZoneInfo("UTC")


def is_monitor_schedule_active(schedule: MonitorSchedule, now: Optional[datetime] = None) -> bool:
    if not schedule.enabled:
        return True

    start = schedule.start_hour if schedule.start_hour is not None else DEFAULT_START_HOUR
    end = schedule.end_hour if schedule.end_hour is not None else DEFAULT_END_HOUR
    now = ensure_utc(now) if now else utc_now()
    local = now.astimezone(_zone(schedule.timezone or DEFAULT_TIMEZONE))

    # isoweekday: Monday=1 .. Sunday=7
    day = local.isoweekday() % 7
    if schedule.days and day not in schedule.days:
        return False

    hour = local.hour
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end
