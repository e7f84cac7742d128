# tests/test_payout_schedule.py
from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from app.core.errors import InvalidDate
from app.core.payout_schedule import compute_payout_date


@pytest.mark.parametrize(
    "start, expected",
    [
        (date(2025, 3, 15), date(2025, 4, 15)),
        (date(2025, 1, 31), date(2025, 2, 28)),
        (date(2024, 1, 31), date(2024, 2, 29)),
        (date(2025, 8, 31), date(2025, 9, 30)),
        (date(2025, 12, 10), date(2026, 1, 10)),
    ],
)
def test_payout_is_one_calendar_month_later(start, expected):
    assert compute_payout_date(start) == expected


def test_accepts_datetimes_and_iso_strings():
    assert compute_payout_date(datetime(2025, 1, 31, 23, 59, tzinfo=timezone.utc)) == date(2025, 2, 28)
    assert compute_payout_date("2025-03-15") == date(2025, 4, 15)
    assert compute_payout_date("2025-03-15T10:00:00Z") == date(2025, 4, 15)


@pytest.mark.parametrize("bad", ["2025-02-30", "not-a-date", ""])
def test_invalid_dates_are_rejected(bad):
    with pytest.raises(InvalidDate):
        compute_payout_date(bad)


def test_unsupported_type_is_rejected():
    with pytest.raises(InvalidDate):
        compute_payout_date(20250315)
