"""
Quote calculation and client-quote comparison.
"""

from datetime import date
from decimal import Decimal

import pytest

from errors import InvalidRange
from models import Quote, Vehicle
from pricing import calculate_deposit, quote, quotes_match, round_currency


def vehicle(rate):
    return Vehicle(id="v", daily_rate=Decimal(str(rate)))


def test_three_day_quote():
    q = quote(vehicle(300), date(2024, 6, 1), date(2024, 6, 3))
    assert q.total_days == 3
    assert q.subtotal == Decimal("900")
    assert q.deposit_amount == Decimal("270")
    assert q.final_amount == Decimal("630")


@pytest.mark.parametrize("rate", ["300", "120.50", "49.99", "5", "1"])
def test_deposit_plus_final_equals_subtotal(rate):
    q = quote(vehicle(rate), "2024-06-01", "2024-06-07")
    assert q.deposit_amount + q.final_amount == q.subtotal
    assert q.deposit_amount == q.deposit_amount.to_integral_value()


def test_deposit_rounds_half_up():
    assert round_currency(Decimal("1.5")) == Decimal("2")
    assert round_currency(Decimal("2.5")) == Decimal("3")
    assert round_currency(Decimal("2.49")) == Decimal("2")
    # 5 * 0.30 = 1.5 -> 2
    assert calculate_deposit(Decimal("5")) == Decimal("2")


def test_quote_is_deterministic():
    v = vehicle("120.50")
    assert quote(v, "2024-06-01", "2024-06-04") == quote(v, "2024-06-01", "2024-06-04")


def test_custom_deposit_rate():
    q = quote(vehicle(100), "2024-06-01", "2024-06-02", deposit_rate=Decimal("0.5"))
    assert q.deposit_amount == Decimal("100")
    assert q.final_amount == Decimal("100")


def test_quote_rejects_past_range_when_today_given():
    with pytest.raises(InvalidRange):
        quote(vehicle(300), "2024-04-01", "2024-04-03", reference_today=date(2024, 5, 1))


def test_quote_rejects_inverted_range():
    with pytest.raises(InvalidRange):
        quote(vehicle(300), "2024-06-03", "2024-06-01")


def test_quote_to_dict_uses_plain_numbers():
    data = quote(vehicle("120.50"), "2024-06-01", "2024-06-02").to_dict()
    assert data == {
        "daily_rate": 120.5,
        "total_days": 2,
        "subtotal": 241,
        "deposit_amount": 72,
        "final_amount": 169,
    }


class TestQuotesMatch:

    def server(self):
        return quote(vehicle(300), "2024-06-01", "2024-06-03")

    def test_same_figures_match(self):
        assert quotes_match(self.server(), self.server().to_dict())

    def test_within_epsilon_matches(self):
        client = dict(self.server().to_dict(), final_amount="629.995")
        assert quotes_match(self.server(), client)

    def test_different_subtotal_does_not_match(self):
        client = dict(self.server().to_dict(), subtotal=800)
        assert not quotes_match(self.server(), client)

    def test_different_day_count_does_not_match(self):
        client = dict(self.server().to_dict(), total_days=2)
        assert not quotes_match(self.server(), client)

    def test_malformed_client_quote_does_not_match(self):
        assert not quotes_match(self.server(), {"subtotal": 900})
        assert not quotes_match(self.server(), dict(self.server().to_dict(), subtotal="abc"))

    def test_accepts_quote_instances(self):
        client = Quote(Decimal("300"), 3, Decimal("900"), Decimal("270"), Decimal("630"))
        assert quotes_match(self.server(), client)

    @pytest.mark.parametrize("field,value", [
        ("subtotal", "NaN"),
        ("deposit_amount", "Infinity"),
        ("daily_rate", float("nan")),
        ("final_amount", "-inf"),
    ])
    def test_non_finite_figures_do_not_match(self, field, value):
        client = dict(self.server().to_dict(), **{field: value})
        assert not quotes_match(self.server(), client)

    @pytest.mark.parametrize("days", [3.9, "3.5", 2.9999])
    def test_fractional_day_count_does_not_match(self, days):
        client = dict(self.server().to_dict(), total_days=days)
        assert not quotes_match(self.server(), client)

    @pytest.mark.parametrize("days", [3, "3", 3.0, "3.00"])
    def test_integral_day_count_spellings_match(self, days):
        client = dict(self.server().to_dict(), total_days=days)
        assert quotes_match(self.server(), client)
