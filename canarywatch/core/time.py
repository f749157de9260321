from datetime import UTC, date, datetime


def now_utc() -> datetime:
    # Columns are naive DateTime holding UTC.
    return datetime.now(UTC).replace(tzinfo=None)


def today_utc() -> date:
    return now_utc().date()
