"""Unit tests for earned premium and loss ratio."""

from datetime import date

import pytest

from agency_import.analytics import earned_premium, loss_ratio, one_year_before, portfolio_loss_ratio


class TestEarnedPremium:

    def test_pro_rata_by_day(self):
        # 2024 is a leap year: 366 days, 182 elapsed by 1 July
        assert earned_premium(1000, '2024-01-01', '2025-01-01', date(2024, 7, 1)) == pytest.approx(1000 * 182 / 366)

    def test_clamped_to_term(self):
        assert earned_premium(1000, '2024-01-01', '2025-01-01', date(2023, 6, 1)) == 0.0
        assert earned_premium(1000, '2024-01-01', '2025-01-01', date(2026, 1, 1)) == 1000.0

    def test_single_day_term(self):
        assert earned_premium(300, '2024-05-05', '2024-05-05', date(2024, 5, 6)) == 300.0

    def test_missing_dates_earn_nothing(self):
        assert earned_premium(1000, None, '2025-01-01', date(2024, 7, 1)) == 0.0


def test_loss_ratio():
    assert loss_ratio(1000, 250) == 25.0
    assert loss_ratio(0, 250) == 0.0


def test_one_year_before_leap_day():
    assert one_year_before(date(2024, 2, 29)) == date(2023, 3, 1)
    assert one_year_before(date(2024, 6, 15)) == date(2023, 6, 15)


def test_portfolio_loss_ratio():
    policies = [
        {'premium_amount': 1000, 'start_date': '2024-01-01', 'end_date': '2025-01-01'},
        {'premium_amount': None, 'start_date': '2024-01-01', 'end_date': '2025-01-01'},
    ]
    claims = [
        {'claim_date': '2024-06-01', 'payment_amount': 250},
        {'claim_date': '2023-06-01', 'payment_amount': 900},
        {'claim_date': None, 'payment_amount': 50},
    ]
    result = portfolio_loss_ratio(policies, claims, as_of=date(2025, 1, 1))

    assert result == {
        'as_of': '2025-01-01',
        'since': '2024-01-01',
        'policy_count': 2,
        'claim_count': 1,
        'earned_premium': 1000.0,
        'paid_claims': 250.0,
        'loss_ratio': 25.0,
    }
