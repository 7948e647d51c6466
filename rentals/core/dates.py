"""Date helpers shared by the orchestrators."""
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def business_today(tz_name: str = "UTC") -> date:
    """Today's calendar date in the business timezone."""
    return datetime.now(ZoneInfo(tz_name)).date()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def business_date(value: datetime, tz_name: str = "UTC") -> date:
    """Calendar date of a timestamp in the business timezone."""
    return as_utc(value).astimezone(ZoneInfo(tz_name)).date()
