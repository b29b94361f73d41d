from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_tracker.services.recurrence import (
    UnknownFrequencyError,
    advance,
    auto_description,
    is_known_frequency,
    materialize,
    schedule_anchor,
    select_due,
)


def make_charge(**overrides) -> dict:
    charge = {
        "id": uuid4(),
        "user_id": uuid4(),
        "amount": Decimal("1500"),
        "category": "Subscriptions",
        "description": "Streaming",
        "frequency": "monthly",
        "start_date": date(2024, 1, 1),
        "next_due_date": date(2024, 1, 1),
        "is_active": True,
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    charge.update(overrides)
    return charge


def test_weekly_adds_seven_days() -> None:
    assert advance(date(2024, 5, 3), "weekly") == date(2024, 5, 10)
    assert advance(date(2024, 12, 28), "weekly") == date(2025, 1, 4)


def test_monthly_clamps_to_end_of_shorter_month() -> None:
    assert advance(date(2023, 1, 31), "monthly") == date(2023, 2, 28)
    assert advance(date(2024, 1, 31), "monthly") == date(2024, 2, 29)
    assert advance(date(2024, 3, 31), "monthly") == date(2024, 4, 30)


def test_monthly_crosses_year_boundary() -> None:
    assert advance(date(2023, 12, 15), "monthly") == date(2024, 1, 15)


def test_day_anchor_restores_clamped_day() -> None:
    assert advance(date(2023, 2, 28), "monthly", day_anchor=31) == date(2023, 3, 31)
    assert advance(date(2023, 3, 31), "monthly", day_anchor=31) == date(2023, 4, 30)


def test_yearly_leap_day_falls_back_to_feb_28() -> None:
    assert advance(date(2024, 2, 29), "yearly") == date(2025, 2, 28)
    assert advance(date(2027, 2, 28), "yearly", day_anchor=29) == date(2028, 2, 29)
    assert advance(date(2023, 6, 10), "yearly") == date(2024, 6, 10)


def test_unknown_frequency_leaves_date_unchanged() -> None:
    assert advance(date(2024, 5, 3), "daily") == date(2024, 5, 3)
    assert not is_known_frequency("daily")
    assert is_known_frequency("weekly")


def test_select_due_skips_paused_and_future_charges() -> None:
    as_of = date(2024, 5, 10)
    due_today = make_charge(next_due_date=as_of)
    overdue = make_charge(next_due_date=date(2024, 4, 1))
    paused = make_charge(next_due_date=date(2024, 5, 1), is_active=False)
    future = make_charge(next_due_date=date(2024, 5, 11))

    selected = select_due([due_today, overdue, paused, future], as_of)

    assert {c["id"] for c in selected} == {due_today["id"], overdue["id"]}
    assert all(c["is_active"] and c["next_due_date"] <= as_of for c in selected)


def test_materialize_dates_transaction_at_due_date() -> None:
    charge = make_charge(frequency="weekly", next_due_date=date(2024, 5, 3), start_date=date(2024, 4, 26))

    transaction, updated = materialize(charge)

    assert transaction["date"] == date(2024, 5, 3)
    assert transaction["amount"] == Decimal("1500")
    assert transaction["category"] == "Subscriptions"
    assert transaction["description"] == "Streaming (Auto)"
    assert transaction["direction"] == "expense"
    assert transaction["user_id"] == charge["user_id"]
    assert transaction["recurring_charge_id"] == charge["id"]
    assert updated["next_due_date"] == date(2024, 5, 10)
    assert {k: v for k, v in updated.items() if k != "next_due_date"} == {
        k: v for k, v in charge.items() if k != "next_due_date"
    }
    # the input charge is left alone
    assert charge["next_due_date"] == date(2024, 5, 3)


def test_materialize_month_end_schedule_does_not_drift() -> None:
    charge = make_charge(start_date=date(2023, 1, 31), next_due_date=date(2023, 1, 31))

    _, after_jan = materialize(charge)
    assert after_jan["next_due_date"] == date(2023, 2, 28)
    assert schedule_anchor(after_jan) == 31

    _, after_feb = materialize(after_jan)
    assert after_feb["next_due_date"] == date(2023, 3, 31)


def test_materialize_rejects_unknown_frequency() -> None:
    charge = make_charge(frequency="fortnightly")
    with pytest.raises(UnknownFrequencyError):
        materialize(charge)


def test_auto_description_handles_blank_text() -> None:
    assert auto_description("Rent") == "Rent (Auto)"
    assert auto_description("") == "(Auto)"
    assert auto_description(None) == "(Auto)"
