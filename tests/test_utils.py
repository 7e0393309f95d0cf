from datetime import datetime, timedelta, timezone
from decimal import Decimal

from pos_shifts.utils.formatting import format_amount, to_money
from pos_shifts.utils.timezones import adapt_datetime_for_db, local_day_bounds


def test_local_day_bounds_follow_local_calendar():
    start, end = local_day_bounds(datetime(2024, 3, 1, 18, 0, tzinfo=timezone.utc))
    assert start == datetime(2024, 3, 1, 6, 0, tzinfo=timezone.utc)
    assert end - start == timedelta(days=1) - timedelta(microseconds=1)


def test_local_day_bounds_early_utc_belongs_to_previous_local_day():
    # 03:00 UTC is still Feb 29 in Tegucigalpa
    start, _ = local_day_bounds(datetime(2024, 3, 1, 3, 0, tzinfo=timezone.utc))
    assert start == datetime(2024, 2, 29, 6, 0, tzinfo=timezone.utc)


def test_adapt_datetime_for_sqlite(engine):
    value = datetime(2024, 3, 1, 0, 0, tzinfo=timezone(timedelta(hours=-6)))
    adapted = adapt_datetime_for_db(value, engine)
    assert adapted == datetime(2024, 3, 1, 6, 0)
    assert adapted.tzinfo is None


def test_money_helpers():
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(None) == Decimal("0.00")
    assert format_amount(1234567.5) == "1 234 567.50"
