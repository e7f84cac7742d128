# app/core/payout_schedule.py
from __future__ import annotations

from datetime import date, datetime

from dateutil.relativedelta import relativedelta

from app.core.errors import InvalidDate


def _as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        try:
            if "T" in s or " " in s:
                return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
            return date.fromisoformat(s)
        except ValueError as e:
            raise InvalidDate(f"Not a valid calendar date: {value!r}", value=value) from e
    raise InvalidDate(f"Unsupported date value: {value!r}", value=str(value))


def compute_payout_date(hired_or_closed_at: date | datetime | str) -> date:
    """
    Same day-of-month one calendar month later.
    relativedelta clamps to the last day of a shorter month (Jan 31 -> Feb 28/29).
    """
    return _as_date(hired_or_closed_at) + relativedelta(months=1)
