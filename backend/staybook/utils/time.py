from datetime import date, datetime, timezone

CALENDAR_DATE_FORMAT = "%m.%d.%Y"


def utc_now() -> datetime:
    """Current time as naive UTC, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_naive_to_aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc)


def format_calendar_date(value: date) -> str:
    return value.strftime(CALENDAR_DATE_FORMAT)
