"""
models.py
Domain types: members, categories, fees, schedules, invoices.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from enum import Enum

PENNY = Decimal("0.01")

HOME = "H"
AWAY = "A"
VISITOR = "V"

# Categories whose subscription never changes automatically
NON_AUTO_MANAGED = (
    "social",
    "twilight",
    "out of county",
    "honorary",
    "gratis",
    "retention",
    "resigned",
    "winter",
    "pga professional",
    "international",
    "life",
)

_PREFIX_RE = re.compile(r"^([A-Z0-9])\)\s*", re.IGNORECASE)
_LOCATION_RE = re.compile(r"\s+(Home|Away)$", re.IGNORECASE)


def money(value) -> Decimal:
    """Coerce a stored amount (float, str, Decimal, None) to pence."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(PENNY, rounding=ROUND_HALF_UP)


def truncate_pence(value: Decimal) -> Decimal:
    return value.quantize(PENNY, rounding=ROUND_DOWN)


class FeeKind(Enum):
    ENGLAND_GOLF = "England Golf"
    NORTHUMBERLAND_COUNTY = "Northumberland County"
    LOCKER = "Locker"

    @classmethod
    def from_name(cls, name: str | None) -> "FeeKind | None":
        if not name:
            return None
        key = name.strip().lower()
        for kind in cls:
            if kind.value.lower() == key:
                return kind
        return None


@dataclass(frozen=True)
class Category:
    """A stored category string split into its parts.

    "A) Full Home" -> prefix "A", base "Full", location "Home".
    """

    raw: str | None
    base: str | None
    prefix: str | None = None
    location: str | None = None

    @classmethod
    def parse(cls, raw: str | None) -> "Category":
        if not raw:
            return cls(raw=raw, base=None)
        text = raw.strip()
        prefix = None
        m = _PREFIX_RE.match(text)
        if m:
            prefix = m.group(1).upper()
            text = text[m.end():]
        location = None
        m = _LOCATION_RE.search(text)
        if m:
            location = m.group(1).capitalize()
            text = text[: m.start()]
        if text == "Junior Academy":
            text = "Junior"
        return cls(raw=raw, base=text, prefix=prefix, location=location)

    @property
    def is_social(self) -> bool:
        return "social" in (self.raw or "").lower()

    @property
    def is_out_of_county(self) -> bool:
        return "out of county" in (self.raw or "").lower()

    @property
    def is_winter(self) -> bool:
        return (self.raw or "").strip().lower() == "winter"

    @property
    def is_auto_managed(self) -> bool:
        # new members without a category are managed
        if not self.raw:
            return True
        lower = self.raw.lower()
        return not any(excluded in lower for excluded in NON_AUTO_MANAGED)


@dataclass
class Member:
    id: int | None
    first_name: str
    surname: str
    category: str | None = None
    title: str | None = None
    club_number: str | None = None
    email: str | None = None
    home_away: str | None = None  # 'H', 'A' or 'V'
    national_id: str | None = None  # CDH number
    handicap_index: float | None = None
    locker_number: str | None = None
    date_of_birth: str | None = None
    date_joined: str | None = None
    default_payment_method: str | None = None
    direct_debit_member_id: str | None = None
    dd_membership_type: str | None = None
    family_payer_id: int | None = None
    account_balance: Decimal = Decimal("0.00")
    subscription_fee: Decimal | None = None
    subscription_item_id: int | None = None

    @classmethod
    def from_row(cls, row) -> "Member":
        keys = set(row.keys())

        def col(name, default=None):
            return row[name] if name in keys else default

        fee = col("subscription_fee")
        return cls(
            id=col("id"),
            first_name=col("first_name") or "",
            surname=col("surname") or "",
            category=col("category"),
            title=col("title"),
            club_number=col("club_number"),
            email=col("email"),
            home_away=col("home_away"),
            national_id=col("national_id"),
            handicap_index=col("handicap_index"),
            locker_number=col("locker_number"),
            date_of_birth=col("date_of_birth"),
            date_joined=col("date_joined"),
            default_payment_method=col("default_payment_method"),
            direct_debit_member_id=col("direct_debit_member_id"),
            dd_membership_type=col("dd_membership_type"),
            family_payer_id=col("family_payer_id"),
            account_balance=money(col("account_balance", 0)),
            subscription_fee=None if fee is None else money(fee),
            subscription_item_id=col("subscription_item_id"),
        )

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.title, self.first_name, self.surname) if p)

    @property
    def short_name(self) -> str:
        return f"{self.first_name} {self.surname}".strip()

    @property
    def parsed_category(self) -> Category:
        return Category.parse(self.category)

    @property
    def has_cdh(self) -> bool:
        return bool(self.national_id and str(self.national_id).strip())

    @property
    def is_home(self) -> bool:
        return self.home_away == HOME

    @property
    def has_home_handicap(self) -> bool:
        return self.handicap_index is not None

    @property
    def has_locker(self) -> bool:
        return bool(self.locker_number and str(self.locker_number).strip())

    @property
    def has_email(self) -> bool:
        return bool(self.email and self.email.strip())


@dataclass(frozen=True)
class FeeItem:
    id: int | None
    name: str
    fee: Decimal
    category: str = "Fee"  # 'Fee' or 'Subscription'
    active: bool = True


@dataclass(frozen=True)
class LineItem:
    payment_item_id: int | None
    description: str
    unit_price: Decimal
    kind: FeeKind | None = None  # None for the subscription line


@dataclass(frozen=True)
class FeeBreakdown:
    england_golf: Decimal = Decimal("0.00")
    county: Decimal = Decimal("0.00")
    locker: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class Collection:
    due_date: date
    amount: Decimal
    is_initial: bool = False

    @property
    def label(self) -> str:
        text = self.due_date.strftime("%B %Y")
        return f"{text} (initial collection)" if self.is_initial else text


@dataclass(frozen=True)
class DDPaymentSchedule:
    annual_subscription: Decimal
    england_golf_fee: Decimal
    county_fee: Decimal
    locker_fee: Decimal
    monthly_payment: Decimal
    first_month_payment: Decimal
    initial_collection_total: Decimal
    collection_date: date
    membership_year: str  # "2026/2027"
    collections: tuple[Collection, ...] = ()

    @property
    def year(self) -> int:
        return self.collection_date.year

    @property
    def total_annual_membership(self) -> Decimal:
        return self.annual_subscription + self.locker_fee

    @property
    def annual_total(self) -> Decimal:
        return self.initial_collection_total + 11 * self.monthly_payment

    @property
    def collection_date_label(self) -> str:
        return f"1st April {self.collection_date.year}"


@dataclass(frozen=True)
class FamilyMemberSchedule:
    member: Member
    schedule: DDPaymentSchedule


@dataclass(frozen=True)
class ConsolidatedSchedule:
    payer: Member
    family_members: tuple[FamilyMemberSchedule, ...]
    total_initial_collection: Decimal
    total_monthly_payment: Decimal
    total_annual: Decimal
    collection_date: date
    membership_year: str
    collections: tuple[Collection, ...] = ()


@dataclass(frozen=True)
class SubscriptionDecision:
    new_type: str | None
    reason: str


@dataclass(frozen=True)
class SubscriptionChange:
    member_id: int | None
    member_name: str
    current_subscription: str | None
    new_subscription: str
    reason: str
    age_on_april_1: int | None
    years_of_membership: int | None


@dataclass(frozen=True)
class Invoice:
    id: int
    invoice_number: str
    member_id: int
    period_start: str
    period_end: str
    subtotal: Decimal
    total: Decimal
    status: str  # draft/sent/paid/cancelled
    balance_charge: Decimal = Decimal("0.00")

    @classmethod
    def from_row(cls, row) -> "Invoice":
        return cls(
            id=row["id"],
            invoice_number=row["invoice_number"],
            member_id=row["member_id"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            subtotal=money(row["subtotal"]),
            total=money(row["total"]),
            status=row["status"],
            balance_charge=money(row["balance_charge"]),
        )


@dataclass(frozen=True)
class InvoiceItem:
    id: int
    invoice_id: int
    payment_item_id: int | None
    description: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class Payment:
    id: int | None
    member_id: int
    invoice_id: int | None
    amount: Decimal
    payment_date: str
    payment_method: str
    reference: str | None = None


@dataclass(frozen=True)
class PaymentLineItem:
    id: int | None
    payment_id: int
    invoice_item_id: int | None
    payment_item_id: int | None
    description: str
    amount: Decimal


@dataclass(frozen=True)
class InvoiceResult:
    success: bool
    invoice_number: str | None = None
    error: str | None = None

    @property
    def created(self) -> bool:
        return self.success and self.invoice_number != ALREADY_EXISTS


ALREADY_EXISTS = "already_exists"


@dataclass
class BatchResult:
    """Outcome of one batch call; call again while remaining > 0."""

    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    remaining: int = 0
    errors: list[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)


@dataclass(frozen=True)
class Notice:
    subject: str
    html: str
