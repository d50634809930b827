"""
subscription_rules.py
Age and tenure based subscription categories, evaluated on 1st April.

Priority (first match wins):
1. Life: 50+ years of membership at any point in the calendar year
2. Over 80: age 80+ on 1st April
3. Senior Loyalty: age 65+ and 25+ years of membership on 1st April
4. Age band: Full (30+), Under 30 (21-29), Intermediate (18-20), Junior (<18)
"""

from __future__ import annotations

from datetime import date, datetime

from models import Category, Member, SubscriptionChange, SubscriptionDecision

JUNIOR = "Junior"
INTERMEDIATE = "Intermediate"
UNDER_30 = "Under 30"
FULL = "Full"
SENIOR_LOYALTY = "Senior Loyalty"
OVER_80 = "Over 80"
LIFE = "Life"

# Never moved down by the age-band rule
PROTECTED = (LIFE, OVER_80, SENIOR_LOYALTY)


def parse_date(value) -> date | None:
    """ISO date (or datetime prefix) -> date; None when missing or malformed."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def april_first(reference: date) -> date:
    return date(reference.year, 4, 1)


def _whole_years(start: date, as_of: date) -> int:
    years = as_of.year - start.year
    if (as_of.month, as_of.day) < (start.month, start.day):
        years -= 1
    return years


def age_on(date_of_birth, as_of: date) -> int | None:
    dob = parse_date(date_of_birth)
    if dob is None:
        return None
    return _whole_years(dob, as_of)


def years_of_membership(date_joined, as_of: date) -> int | None:
    joined = parse_date(date_joined)
    if joined is None:
        return None
    return max(0, _whole_years(joined, as_of))


def years_of_membership_in_year(date_joined, year: int) -> int | None:
    # 31st December: counts anyone reaching the milestone during the year
    return years_of_membership(date_joined, date(year, 12, 31))


def age_band(age: int) -> tuple[str, str]:
    if age >= 30:
        return FULL, f"Age 30+ on 1st April (age {age})"
    if age >= 21:
        return UNDER_30, f"Age 21-29 on 1st April (age {age})"
    if age >= 18:
        return INTERMEDIATE, f"Age 18-20 on 1st April (age {age})"
    return JUNIOR, f"Under 18 on 1st April (age {age})"


def calculate_subscription_type(member: Member, reference_date: date | None = None) -> SubscriptionDecision:
    """Recommended category for a member, or new_type=None when no change is needed."""
    today = reference_date or date.today()
    april = april_first(today)
    category = Category.parse(member.category)
    current = category.base

    if not category.is_auto_managed:
        return SubscriptionDecision(None, f"{member.category} is not auto-managed")

    age = age_on(member.date_of_birth, april)
    if age is None:
        return SubscriptionDecision(None, "No date of birth")

    years_in_year = years_of_membership_in_year(member.date_joined, today.year)
    years_on_april = years_of_membership(member.date_joined, april)

    if years_in_year is not None and years_in_year >= 50:
        if current == LIFE:
            return SubscriptionDecision(None, "Already Life member")
        return SubscriptionDecision(LIFE, f"50+ years of membership ({years_in_year} years)")

    if age >= 80:
        if current == OVER_80:
            return SubscriptionDecision(None, "Already Over 80")
        return SubscriptionDecision(OVER_80, f"Age 80+ on 1st April (age {age})")

    if age >= 65 and years_on_april is not None and years_on_april >= 25:
        if current in PROTECTED:
            return SubscriptionDecision(None, "Already Senior Loyalty or higher")
        return SubscriptionDecision(
            SENIOR_LOYALTY,
            f"Age 65+ ({age}) with 25+ years membership ({years_on_april} years) on 1st April",
        )

    if current in PROTECTED:
        return SubscriptionDecision(None, f"Already {current}")

    correct, why = age_band(age)
    if current != correct:
        return SubscriptionDecision(correct, f"{current or 'None'} → {correct}: {why}")
    return SubscriptionDecision(None, "No change required")


def calculate_default_subscription_type(
    date_of_birth,
    date_joined,
    reference_date: date | None = None,
) -> SubscriptionDecision:
    """Category for a brand-new member; Full when there is no date of birth."""
    today = reference_date or date.today()
    april = april_first(today)

    age = age_on(date_of_birth, april)
    if age is None:
        return SubscriptionDecision(FULL, "No date of birth - defaulting to Full")

    years_in_year = years_of_membership_in_year(date_joined, today.year)
    if years_in_year is not None and years_in_year >= 50:
        return SubscriptionDecision(LIFE, f"50+ years of membership ({years_in_year} years)")
    if age >= 80:
        return SubscriptionDecision(OVER_80, f"Age 80+ on 1st April (age {age})")
    years = years_of_membership(date_joined, today)
    if age >= 65 and years is not None and years >= 25:
        return SubscriptionDecision(SENIOR_LOYALTY, f"Age 65+ ({age}) with 25+ years membership ({years} years)")

    correct, why = age_band(age)
    return SubscriptionDecision(correct, why)


def review_subscription_changes(members: list[Member], reference_date: date | None = None) -> list[SubscriptionChange]:
    today = reference_date or date.today()
    april = april_first(today)
    changes = []
    for m in members:
        if not m.parsed_category.is_auto_managed:
            continue
        decision = calculate_subscription_type(m, today)
        if decision.new_type is None:
            continue
        changes.append(
            SubscriptionChange(
                member_id=m.id,
                member_name=m.short_name,
                current_subscription=m.category,
                new_subscription=decision.new_type,
                reason=decision.reason,
                age_on_april_1=age_on(m.date_of_birth, april),
                years_of_membership=years_of_membership_in_year(m.date_joined, today.year),
            )
        )
    return changes
