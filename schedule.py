"""
schedule.py
Direct Debit schedules: 12 monthly collections from 1st April.

Monthly instalments are truncated to the penny and the first month absorbs
the remainder, so first + 11 * monthly always equals the subscription.
Affiliation fees and locker rental are collected in full with the first
instalment.
"""

from __future__ import annotations

from datetime import date

import fees
from models import (
    Collection,
    ConsolidatedSchedule,
    DDPaymentSchedule,
    FamilyMemberSchedule,
    Member,
    money,
    truncate_pence,
)

INSTALMENTS = 12


def membership_year(year: int) -> str:
    return f"{year}/{year + 1}"


def collection_dates(year: int) -> list[date]:
    """1st April `year` through 1st March `year + 1`."""
    dates = []
    for i in range(INSTALMENTS):
        month = (3 + i) % 12 + 1
        dates.append(date(year if month >= 4 else year + 1, month, 1))
    return dates


def _collections(year: int, initial, monthly) -> tuple[Collection, ...]:
    rows = []
    for i, due in enumerate(collection_dates(year)):
        rows.append(Collection(due_date=due, amount=initial if i == 0 else monthly, is_initial=i == 0))
    return tuple(rows)


def calculate_schedule(
    member: Member,
    subscription_fee,
    year: int,
    fee_items: fees.FeeTable | None = None,
) -> DDPaymentSchedule:
    """
    Build the DD schedule for one member.

    The fee is not validated: zero gives a zero schedule, negative input is
    the caller's problem.
    """
    subscription = money(subscription_fee)
    breakdown = fees.fee_breakdown(member, fee_items)

    monthly = truncate_pence(subscription / INSTALMENTS)
    first_month = money(subscription - (INSTALMENTS - 1) * monthly)
    initial = money(breakdown.england_golf + breakdown.county + breakdown.locker + first_month)

    return DDPaymentSchedule(
        annual_subscription=subscription,
        england_golf_fee=breakdown.england_golf,
        county_fee=breakdown.county,
        locker_fee=breakdown.locker,
        monthly_payment=monthly,
        first_month_payment=first_month,
        initial_collection_total=initial,
        collection_date=date(year, 4, 1),
        membership_year=membership_year(year),
        collections=_collections(year, initial, monthly),
    )


def calculate_consolidated_schedule(
    payer: Member,
    payer_fee,
    dependants: list[tuple[Member, object]],
    year: int,
    fee_items: fees.FeeTable | None = None,
) -> ConsolidatedSchedule:
    """
    One family DD collection: the payer's schedule plus each dependant's,
    summed from the individually rounded figures.
    """
    family = [FamilyMemberSchedule(payer, calculate_schedule(payer, payer_fee, year, fee_items))]
    for member, fee in dependants:
        family.append(FamilyMemberSchedule(member, calculate_schedule(member, fee, year, fee_items)))

    total_initial = money(sum((fm.schedule.initial_collection_total for fm in family), money(0)))
    total_monthly = money(sum((fm.schedule.monthly_payment for fm in family), money(0)))
    total_annual = money(total_initial + (INSTALMENTS - 1) * total_monthly)

    return ConsolidatedSchedule(
        payer=payer,
        family_members=tuple(family),
        total_initial_collection=total_initial,
        total_monthly_payment=total_monthly,
        total_annual=total_annual,
        collection_date=date(year, 4, 1),
        membership_year=membership_year(year),
        collections=_collections(year, total_initial, total_monthly),
    )
