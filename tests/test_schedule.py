"""Tests for Direct Debit schedule calculation."""
from datetime import date
from decimal import Decimal

import pytest

import schedule


class TestSingleSchedule:
    """Worked examples from the club's renewal letters."""

    def test_full_home_member(self, make_member, fee_table):
        s = schedule.calculate_schedule(make_member(), Decimal("432"), 2026, fee_table)
        assert s.england_golf_fee == Decimal("12.00")
        assert s.county_fee == Decimal("6.50")
        assert s.locker_fee == Decimal("0.00")
        assert s.monthly_payment == Decimal("36.00")
        assert s.first_month_payment == Decimal("36.00")
        assert s.initial_collection_total == Decimal("54.50")
        assert s.annual_total == Decimal("450.50")
        assert s.membership_year == "2026/2027"
        assert s.collection_date == date(2026, 4, 1)
        assert s.collection_date_label == "1st April 2026"

    def test_out_of_county_home_member(self, make_member, fee_table):
        member = make_member(category="Out Of County (<100 miles)")
        s = schedule.calculate_schedule(member, Decimal("301.5"), 2026, fee_table)
        assert s.england_golf_fee == Decimal("12.00")
        assert s.county_fee == Decimal("0.00")
        assert s.monthly_payment == Decimal("25.12")
        assert s.first_month_payment == Decimal("25.18")
        assert s.initial_collection_total == Decimal("37.18")

    def test_full_away_member_with_locker(self, make_member, fee_table):
        member = make_member(home_away="A", locker_number="42")
        s = schedule.calculate_schedule(member, Decimal("432"), 2026, fee_table)
        assert s.england_golf_fee == Decimal("0.00")
        assert s.county_fee == Decimal("0.00")
        assert s.locker_fee == Decimal("10.00")
        assert s.initial_collection_total == Decimal("46.00")
        assert s.total_annual_membership == Decimal("442.00")

    def test_monthly_is_truncated_not_rounded(self, make_member, fee_table):
        s = schedule.calculate_schedule(make_member(), Decimal("327.5"), 2026, fee_table)
        assert s.monthly_payment == Decimal("27.29")
        assert s.first_month_payment == Decimal("27.31")

    @pytest.mark.parametrize("fee", ["432", "327.50", "301.50", "216", "150", "20", "99.99", "0.11", "1000.07"])
    def test_first_plus_eleven_monthly_is_the_subscription(self, make_member, fee_table, fee):
        s = schedule.calculate_schedule(make_member(), Decimal(fee), 2026, fee_table)
        assert s.first_month_payment + 11 * s.monthly_payment == Decimal(fee)
        assert s.first_month_payment >= s.monthly_payment

    def test_annual_total_is_subscription_plus_fees(self, make_member, fee_table):
        s = schedule.calculate_schedule(make_member(locker_number="1"), Decimal("327.50"), 2026, fee_table)
        assert s.annual_total == Decimal("327.50") + Decimal("12.00") + Decimal("6.50") + Decimal("10.00")

    def test_zero_fee_gives_zero_schedule(self, make_member, fee_table):
        s = schedule.calculate_schedule(make_member(national_id=None), 0, 2026, fee_table)
        assert s.monthly_payment == Decimal("0.00")
        assert s.initial_collection_total == Decimal("0.00")

    def test_float_fee_is_coerced(self, make_member, fee_table):
        s = schedule.calculate_schedule(make_member(), 327.5, 2026, fee_table)
        assert s.monthly_payment == Decimal("27.29")


class TestCollections:

    def test_twelve_collections_april_to_march(self, make_member, fee_table):
        s = schedule.calculate_schedule(make_member(), Decimal("432"), 2026, fee_table)
        assert len(s.collections) == 12
        assert s.collections[0].due_date == date(2026, 4, 1)
        assert s.collections[8].due_date == date(2026, 12, 1)
        assert s.collections[9].due_date == date(2027, 1, 1)
        assert s.collections[-1].due_date == date(2027, 3, 1)

    def test_first_collection_is_the_initial_total(self, make_member, fee_table):
        s = schedule.calculate_schedule(make_member(), Decimal("432"), 2026, fee_table)
        assert s.collections[0].is_initial
        assert s.collections[0].amount == Decimal("54.50")
        assert s.collections[0].label == "April 2026 (initial collection)"
        assert all(c.amount == Decimal("36.00") for c in s.collections[1:])
        assert s.collections[1].label == "May 2026"

    def test_collections_sum_to_annual_total(self, make_member, fee_table):
        s = schedule.calculate_schedule(make_member(locker_number="9"), Decimal("301.50"), 2026, fee_table)
        assert sum(c.amount for c in s.collections) == s.annual_total


class TestConsolidatedSchedule:

    def test_family_totals_sum_individual_figures(self, make_member, fee_table):
        payer = make_member(id=1)
        junior = make_member(id=2, first_name="Jack", category="Junior", national_id=None)
        c = schedule.calculate_consolidated_schedule(
            payer, Decimal("432"), [(junior, Decimal("20"))], 2026, fee_table
        )
        payer_s, junior_s = (fm.schedule for fm in c.family_members)
        assert junior_s.monthly_payment == Decimal("1.66")
        assert junior_s.first_month_payment == Decimal("1.74")
        assert c.total_initial_collection == payer_s.initial_collection_total + junior_s.initial_collection_total
        assert c.total_monthly_payment == Decimal("37.66")
        assert c.total_annual == c.total_initial_collection + 11 * c.total_monthly_payment
        assert c.total_annual == payer_s.annual_total + junior_s.annual_total

    def test_payer_comes_first(self, make_member, fee_table):
        payer = make_member(id=1)
        c = schedule.calculate_consolidated_schedule(payer, Decimal("432"), [], 2026, fee_table)
        assert c.family_members[0].member is payer
        assert c.membership_year == "2026/2027"
        assert len(c.collections) == 12
        assert c.collections[0].amount == c.total_initial_collection
