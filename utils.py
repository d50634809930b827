"""
utils.py
Validation, dates, CSV exports, sample data.
"""

from __future__ import annotations

from datetime import date, timedelta

import pandas as pd

import config
import db
import members
import schedule as dd_schedule
from models import Member

DD_SCHEDULE_COLUMNS = [
    "Name",
    "Membership Number",
    "CRM Membership Type",
    "DD Membership Type",
    "DD Subscription ID",
    "First Monthly Payment",
    "Subsequent Monthly Payment",
    "First Payment Date",
]


def today_iso() -> str:
    return date.today().isoformat()


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def validate_member_inputs(first_name: str, surname: str, home_away: str | None, date_of_birth: str, date_joined: str) -> list[str]:
    errors: list[str] = []
    if not first_name.strip():
        errors.append("First name is required.")
    if not surname.strip():
        errors.append("Surname is required.")
    if home_away not in ("H", "A", "V", None, ""):
        errors.append("Home/Away must be H, A or V.")
    for label, value in (("Date of birth", date_of_birth), ("Date joined", date_joined)):
        if not value:
            continue
        try:
            parse_iso(value)
        except ValueError:
            errors.append(f"{label} must be a valid ISO date (YYYY-MM-DD).")
    return errors


def members_to_csv_bytes(rows: list[Member]) -> bytes:
    df = pd.DataFrame(
        [
            {
                "id": m.id,
                "first_name": m.first_name,
                "surname": m.surname,
                "club_number": m.club_number,
                "category": m.category,
                "home_away": m.home_away,
                "payment_method": m.default_payment_method,
                "subscription_fee": None if m.subscription_fee is None else float(m.subscription_fee),
                "account_balance": float(m.account_balance),
            }
            for m in rows
        ]
    )
    return df.to_csv(index=False).encode("utf-8")


def dd_schedule_frame(year: int) -> pd.DataFrame:
    """One row per Direct Debit member with their computed first and monthly collections."""
    records = []
    for m in members.dd_members():
        s = dd_schedule.calculate_schedule(m, m.subscription_fee, year)
        records.append(
            {
                "Name": m.short_name,
                "Membership Number": m.club_number or "",
                "CRM Membership Type": m.category or "",
                "DD Membership Type": m.dd_membership_type or "",
                "DD Subscription ID": m.direct_debit_member_id or "",
                "First Monthly Payment": f"{s.initial_collection_total:.2f}",
                "Subsequent Monthly Payment": f"{s.monthly_payment:.2f}",
                "First Payment Date": s.collection_date_label,
            }
        )
    return pd.DataFrame(records, columns=DD_SCHEDULE_COLUMNS)


def dd_schedule_to_csv_bytes(year: int) -> bytes:
    return dd_schedule_frame(year).to_csv(index=False).encode("utf-8")


SAMPLE_SUBSCRIPTIONS = [
    ("Full", 432.00),
    ("Under 30", 216.00),
    ("Intermediate", 150.00),
    ("Junior", 20.00),
    ("Senior Loyalty", 327.50),
    ("Over 80", 216.00),
    ("Social", 40.00),
    ("Out Of County (<100 miles)", 301.50),
]


def insert_sample_data() -> None:
    """
    Insert subscription fees (if missing) plus a handful of members.
    Members are added on every run.
    """
    for name, fee in SAMPLE_SUBSCRIPTIONS:
        db.execute(
            """
            INSERT INTO payment_items(category, name, fee, description)
            SELECT 'Subscription', ?, ?, ?
            WHERE NOT EXISTS (SELECT 1 FROM payment_items WHERE category = 'Subscription' AND name = ?)
            """,
            (name, fee, f"{name} membership", name),
        )

    today = date.today()

    def years_ago(n: int) -> str:
        return (today - timedelta(days=365 * n + n // 4)).isoformat()

    payer_id = members.add_member(
        first_name="Alan", surname="Robson", title="Mr", club_number="1001", email="alan@example.com",
        category="Full", home_away="H", national_id="1000123456", handicap_index=14.2, locker_number="42",
        date_of_birth=years_ago(48), date_joined=years_ago(12),
        default_payment_method=config.DD_PAYMENT_METHOD, direct_debit_member_id="DD1001",
    )
    members.add_member(
        first_name="Jack", surname="Robson", club_number="1002", email="jack@example.com",
        category="Junior", home_away="H", national_id="1000123457", date_of_birth=years_ago(15),
        date_joined=years_ago(3), default_payment_method=config.DD_PAYMENT_METHOD, family_payer_id=payer_id,
    )
    members.add_member(
        first_name="Margaret", surname="Hall", title="Mrs", club_number="1003", email="margaret@example.com",
        category="Full", home_away="H", national_id="1000223344", handicap_index=22.0,
        date_of_birth=years_ago(67), date_joined=years_ago(31), default_payment_method="BACS",
    )
    members.add_member(
        first_name="Ian", surname="Forster", club_number="1004", email="ian@example.com",
        category="Out Of County (<100 miles)", home_away="H", national_id="1000998877", handicap_index=9.1,
        date_of_birth=years_ago(40), date_joined=years_ago(5), default_payment_method=config.DD_PAYMENT_METHOD,
    )
    members.add_member(
        first_name="Susan", surname="Grey", club_number="1005", email="susan@example.com",
        category="Social", date_of_birth=years_ago(58), date_joined=years_ago(8),
        default_payment_method="Over the Till",
    )
