"""
notices.py
Renewal notice rendering (Direct Debit, BACS, Social, subscription change).

Each render_* function returns a Notice (subject + self-contained HTML) and
depends only on its arguments, so identical input renders identical output.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

import config
import fees
import schedule as dd_schedule
from models import ConsolidatedSchedule, DDPaymentSchedule, Member, Notice, money

TEMPLATES_DIR = Path(__file__).with_name("templates")


def format_currency(amount) -> str:
    return f"£{money(amount):.2f}"


env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)
env.filters["currency"] = format_currency


def _render(template: str, **context) -> str:
    context.setdefault("club_name", config.CLUB_NAME)
    context.setdefault("club_email", config.CLUB_EMAIL)
    context.setdefault("dd_method", config.DD_PAYMENT_METHOD)
    return env.get_template(template).render(**context).strip()


def _rows(*pairs) -> list[tuple[str, object]]:
    """Fee rows with zero amounts left out."""
    return [(label, amount) for label, amount in pairs if amount and amount > 0]


def dd_renewal_subject(year: int) -> str:
    return f"{config.CLUB_SHORT_NAME} {year} Membership renewal"


def bacs_renewal_subject(year: int) -> str:
    return f"{config.CLUB_SHORT_NAME} {year} Membership Renewal - Payment Details"


def social_renewal_subject(year: int) -> str:
    return f"{config.CLUB_SHORT_NAME} {year} Social Membership Renewal"


def subscription_change_subject(year: int) -> str:
    return f"{config.CLUB_SHORT_NAME} {year} Subscription Change Notification"


def render_dd_renewal(member: Member, schedule: DDPaymentSchedule) -> Notice:
    annual_rows = [(f"{member.category} subscription", schedule.annual_subscription)] + _rows(
        ("Locker rental", schedule.locker_fee),
        ("England Golf affiliation", schedule.england_golf_fee),
        ("Northumberland County fee", schedule.county_fee),
    )
    initial_rows = _rows(
        ("England Golf Affiliation Fee", schedule.england_golf_fee),
        ("Northumberland County Fee", schedule.county_fee),
        ("Locker rental (annual)", schedule.locker_fee),
    ) + [("Membership fee (April)", schedule.first_month_payment)]

    html = _render(
        "dd_renewal.html",
        title=f"Direct Debit Renewal Notice - {schedule.membership_year}",
        heading=f"Direct Debit Renewal Notice {schedule.membership_year}",
        recipient=member.full_name,
        member=member,
        schedule=schedule,
        annual_rows=annual_rows,
        initial_rows=initial_rows,
    )
    return Notice(dd_renewal_subject(schedule.year), html)


def render_consolidated_dd_renewal(consolidated: ConsolidatedSchedule) -> Notice:
    sections = []
    for fm in consolidated.family_members:
        s = fm.schedule
        sections.append(
            {
                "name": fm.member.full_name,
                "category": fm.member.category,
                "rows": [(f"{fm.member.category} subscription", s.annual_subscription)]
                + _rows(
                    ("Locker rental", s.locker_fee),
                    ("England Golf affiliation", s.england_golf_fee),
                    ("Northumberland County fee", s.county_fee),
                ),
                "total": s.annual_total,
            }
        )

    year = consolidated.collection_date.year
    html = _render(
        "dd_consolidated.html",
        title=f"Direct Debit Renewal Notice - {consolidated.membership_year}",
        heading=f"Family Direct Debit Renewal Notice {consolidated.membership_year}",
        recipient=consolidated.payer.full_name,
        consolidated=consolidated,
        sections=sections,
        year=year,
    )
    return Notice(dd_renewal_subject(year), html)


def render_bacs_renewal(
    member: Member,
    subscription_fee,
    year: int,
    bank_details: dict[str, str],
    fee_items: fees.FeeTable | None = None,
) -> Notice:
    breakdown = fees.fee_breakdown(member, fee_items)
    subscription = money(subscription_fee)
    rows = [(f"{member.category} subscription", subscription)] + _rows(
        ("England Golf Affiliation Fee", breakdown.england_golf),
        ("Northumberland County Fee", breakdown.county),
        ("Locker Rental", breakdown.locker),
    )
    total = subscription + breakdown.england_golf + breakdown.county + breakdown.locker

    html = _render(
        "bacs_renewal.html",
        title=bacs_renewal_subject(year),
        heading=f"Membership Renewal {year}/{year + 1}",
        recipient=member.full_name,
        member=member,
        year=year,
        rows=rows,
        total=total,
        bank=bank_details,
    )
    return Notice(bacs_renewal_subject(year), html)


def render_social_renewal(member: Member, fee, year: int, bank_details: dict[str, str]) -> Notice:
    html = _render(
        "social_renewal.html",
        title=social_renewal_subject(year),
        heading=f"Social Membership Renewal {year}/{year + 1}",
        recipient=member.full_name,
        member=member,
        year=year,
        rows=[("Social membership subscription", money(fee))],
        total=money(fee),
        bank=bank_details,
    )
    return Notice(social_renewal_subject(year), html)


def render_subscription_change(
    member: Member,
    old_category: str,
    new_category: str,
    subscription_fee,
    year: int,
    bank_details: dict[str, str],
    fee_items: fees.FeeTable | None = None,
) -> Notice:
    """Notice of a category change; `member` should already carry the new category."""
    breakdown = fees.fee_breakdown(member, fee_items)
    subscription = money(subscription_fee)
    rows = [(f"{new_category} subscription", subscription)] + _rows(
        ("England Golf Affiliation Fee", breakdown.england_golf),
        ("Northumberland County Fee", breakdown.county),
        ("Locker Rental", breakdown.locker),
    )
    total = subscription + breakdown.england_golf + breakdown.county + breakdown.locker
    dd = None
    if member.default_payment_method == config.DD_PAYMENT_METHOD:
        dd = dd_schedule.calculate_schedule(member, subscription, year, fee_items)

    html = _render(
        "subscription_change.html",
        title=subscription_change_subject(year),
        heading="Subscription Change Notification",
        recipient=member.full_name,
        member=member,
        old_category=old_category,
        new_category=new_category,
        year=year,
        rows=rows,
        total=total,
        schedule=dd,
        bank=bank_details,
    )
    return Notice(subscription_change_subject(year), html)
