from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from tutordesk.config import settings


APP_TIMEZONE = settings.app_timezone or 'Europe/Paris'
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def naive_now(self) -> datetime:
        """Wall-clock time in the app timezone without tzinfo, comparable to lesson start times."""
        return self.now().replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.utcnow()


default_time_provider = TimeProvider()
