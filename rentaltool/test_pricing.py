import datetime

import pytest

from .models import RateType
from .pricing import calculate_rental_cost, line_subtotal, rental_duration, resolve_rate


def dt(value: str) -> datetime.datetime:
    return datetime.datetime.fromisoformat(value)


def test_two_full_days():
    assert calculate_rental_cost(100, RateType.DAILY, dt("2024-01-01"), dt("2024-01-03")) == 200


def test_partial_day_rounds_up_to_one():
    cost = calculate_rental_cost(
        100, RateType.DAILY, dt("2024-01-01T10:00"), dt("2024-01-01T14:00")
    )
    assert cost == 100


def test_partial_unit_is_billed_in_full():
    assert rental_duration(RateType.HOURLY, dt("2024-01-01T10:00"), dt("2024-01-01T11:30")) == 2
    assert rental_duration(RateType.WEEKLY, dt("2024-01-01"), dt("2024-01-09")) == 2


def test_month_is_thirty_days():
    assert rental_duration(RateType.MONTHLY, dt("2024-01-01"), dt("2024-01-31")) == 1
    assert rental_duration(RateType.MONTHLY, dt("2024-01-01"), dt("2024-02-01")) == 2


@pytest.mark.parametrize("rate_type", list(RateType))
def test_same_instant_costs_one_unit(rate_type):
    moment = dt("2024-03-01T09:00")
    assert calculate_rental_cost(75, rate_type, moment, moment) == 75


@pytest.mark.parametrize("rate_type", list(RateType))
def test_end_before_start_still_costs_one_unit(rate_type):
    assert calculate_rental_cost(40, rate_type, dt("2024-03-02"), dt("2024-03-01")) == 40


@pytest.mark.parametrize("rate_type", list(RateType))
@pytest.mark.parametrize(
    "start, end",
    [
        ("2024-01-01T00:00", "2024-01-01T00:01"),
        ("2024-01-01T08:00", "2024-01-05T17:00"),
        ("2024-01-01", "2024-06-30"),
    ],
)
def test_cost_is_never_below_one_rate(rate_type, start, end):
    assert calculate_rental_cost(12.5, rate_type, dt(start), dt(end)) >= 12.5


def test_plain_dates_are_accepted():
    cost = calculate_rental_cost(
        100, RateType.DAILY, datetime.date(2024, 1, 1), datetime.date(2024, 1, 4)
    )
    assert cost == 300


def test_rate_type_given_as_string():
    assert calculate_rental_cost(10, "hourly", dt("2024-01-01T10:00"), dt("2024-01-01T13:00")) == 30


def test_unknown_rate_type_is_rejected():
    with pytest.raises(ValueError):
        calculate_rental_cost(10, "yearly", dt("2024-01-01"), dt("2024-01-02"))


def test_line_subtotal_multiplies_by_quantity():
    assert line_subtotal(100, RateType.DAILY, 3, dt("2024-01-01"), dt("2024-01-03")) == 600


def test_resolve_rate():
    pricing = {"hourly": None, "daily": 80.0}
    assert resolve_rate(pricing, RateType.DAILY) == 80.0
    assert resolve_rate(pricing, RateType.HOURLY) is None
    assert resolve_rate(pricing, RateType.WEEKLY) is None
    assert resolve_rate({}, RateType.DAILY) is None
