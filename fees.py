"""
fees.py
Fee rules: turn a member's attributes into subscription, England Golf,
County and Locker charges.
"""

from __future__ import annotations

from typing import Callable

import config
import db
from models import FeeBreakdown, FeeItem, FeeKind, LineItem, Member, money

FeeTable = dict[FeeKind, FeeItem]
AffiliationRules = Callable[[Member], tuple[FeeKind, ...]]

_EGU_AND_COUNTY = (FeeKind.ENGLAND_GOLF, FeeKind.NORTHUMBERLAND_COUNTY)
_EGU_ONLY = (FeeKind.ENGLAND_GOLF,)


def load_fee_items() -> FeeTable:
    """Active 'Fee' rows from payment_items, keyed by kind."""
    rows = db.fetch_all("SELECT id, name, fee FROM payment_items WHERE category = 'Fee' AND active = 1")
    table: FeeTable = {}
    for r in rows:
        kind = FeeKind.from_name(r["name"])
        if kind is not None:
            table[kind] = FeeItem(id=r["id"], name=r["name"], fee=money(r["fee"]))
    return table


def default_fee_items() -> FeeTable:
    table: FeeTable = {}
    for name, fee in config.DEFAULT_FEES.items():
        kind = FeeKind.from_name(name)
        table[kind] = FeeItem(id=None, name=name, fee=money(fee))
    return table


def egu_rules_for_invoicing(member: Member) -> tuple[FeeKind, ...]:
    """
    England Golf / County rules used when writing invoices.
    Out-of-county members only pay England Golf here when they are Home;
    Away members pay it through their home club.
    """
    if not member.has_cdh:
        return ()
    out_of_county = member.parsed_category.is_out_of_county
    if member.is_home and not out_of_county:
        return _EGU_AND_COUNTY
    if out_of_county and member.is_home and member.has_home_handicap:
        return _EGU_ONLY
    return ()


def egu_rules_for_notices(member: Member) -> tuple[FeeKind, ...]:
    """
    England Golf / County rules used in renewal notices.
    Same as invoicing except the out-of-county branch does not look at
    the Home/Away flag.
    """
    if not member.has_cdh:
        return ()
    out_of_county = member.parsed_category.is_out_of_county
    if member.is_home and not out_of_county:
        return _EGU_AND_COUNTY
    if out_of_county and member.has_home_handicap:
        return _EGU_ONLY
    return ()


def _extra_fee_kinds(member: Member, is_social: bool | None, rules: AffiliationRules) -> list[FeeKind]:
    # a Social category never pays affiliation or locker fees
    if is_social or member.parsed_category.is_social:
        return []
    kinds = list(rules(member))
    if member.has_locker:
        kinds.append(FeeKind.LOCKER)
    return kinds


def calculate_line_items(
    member: Member,
    fee_items: FeeTable,
    is_social: bool | None = None,
    rules: AffiliationRules = egu_rules_for_invoicing,
) -> list[LineItem]:
    """
    Ordered charges for a member: Subscription, England Golf, County, Locker.

    Returns an empty list when the member's category has no subscription
    fee; callers treat that as "cannot invoice".
    """
    if member.subscription_fee is None:
        return []

    items = [
        LineItem(
            payment_item_id=member.subscription_item_id,
            description=f"{member.category} subscription",
            unit_price=money(member.subscription_fee),
        )
    ]
    for kind in _extra_fee_kinds(member, is_social, rules):
        item = fee_items.get(kind)
        if item is None:
            continue
        items.append(LineItem(payment_item_id=item.id, description=kind.value, unit_price=item.fee, kind=kind))
    return items


def fee_breakdown(
    member: Member,
    fee_items: FeeTable | None = None,
    is_social: bool | None = None,
    rules: AffiliationRules = egu_rules_for_notices,
) -> FeeBreakdown:
    """England Golf / County / Locker amounts for a member (zero when not charged)."""
    if fee_items is None:
        fee_items = default_fee_items()
    amounts = {}
    for kind in _extra_fee_kinds(member, is_social, rules):
        item = fee_items.get(kind)
        if item is not None:
            amounts[kind] = item.fee
    zero = money(0)
    return FeeBreakdown(
        england_golf=amounts.get(FeeKind.ENGLAND_GOLF, zero),
        county=amounts.get(FeeKind.NORTHUMBERLAND_COUNTY, zero),
        locker=amounts.get(FeeKind.LOCKER, zero),
    )


def total(items: list[LineItem]):
    return money(sum((i.unit_price for i in items), money(0)))
