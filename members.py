"""
members.py
Member lookups joined with their subscription fee, and member updates.
"""

from __future__ import annotations

import config
import db
from models import Member

# Joins the active Subscription item whose name matches the category (or an override)
_SELECT = """
    SELECT m.*, p.fee AS subscription_fee, p.id AS subscription_item_id
    FROM members m
    LEFT JOIN payment_items p
        ON p.name = {category} AND p.category = 'Subscription' AND p.active = 1
"""

RENEWAL_TYPES = ("dd_renewal", "bacs_renewal", "social_renewal")

MEMBER_COLUMNS = (
    "title", "first_name", "surname", "club_number", "email", "category", "home_away",
    "national_id", "handicap_index", "locker_number", "date_of_birth", "date_joined",
    "default_payment_method", "direct_debit_member_id", "dd_membership_type", "family_payer_id",
)


def get_member(member_id: int, category: str | None = None) -> Member | None:
    """Member by id; with `category`, the fee is looked up for that category instead."""
    if category is None:
        row = db.fetch_one(_SELECT.format(category="m.category") + " WHERE m.id = ?", (member_id,))
    else:
        row = db.fetch_one(_SELECT.format(category="?") + " WHERE m.id = ?", (category, member_id))
    return Member.from_row(row) if row else None


def list_members(search: str = "") -> list[Member]:
    sql = _SELECT.format(category="m.category") + " WHERE 1=1"
    params: list = []
    if search.strip():
        sql += " AND (m.first_name LIKE ? OR m.surname LIKE ? OR m.club_number LIKE ?)"
        like = f"%{search.strip()}%"
        params.extend([like, like, like])
    sql += " ORDER BY m.surname, m.first_name"
    return [Member.from_row(r) for r in db.fetch_all(sql, tuple(params))]


def get_dependants(payer_id: int) -> list[Member]:
    rows = db.fetch_all(
        _SELECT.format(category="m.category") + " WHERE m.family_payer_id = ? ORDER BY m.surname, m.first_name",
        (payer_id,),
    )
    return [Member.from_row(r) for r in rows]


def dd_members() -> list[Member]:
    """Direct Debit members with a resolvable subscription fee."""
    rows = db.fetch_all(
        _SELECT.format(category="m.category")
        + " WHERE m.default_payment_method = ? AND p.fee IS NOT NULL ORDER BY m.surname, m.first_name",
        (config.DD_PAYMENT_METHOD,),
    )
    return [Member.from_row(r) for r in rows]


def renewal_candidates(renewal_type: str, year: int, retry_failed: bool = False) -> list[Member]:
    """
    Members still to receive this year's renewal notice of the given type.
    DD dependants are excluded (covered by the payer's consolidated notice),
    as are winter members and anyone without an email address. Members whose
    send already failed this year are only included with retry_failed.
    """
    if renewal_type not in RENEWAL_TYPES:
        raise ValueError(f"Unknown renewal type: {renewal_type}")

    sql = (
        _SELECT.format(category="m.category")
        + """
        LEFT JOIN sent_emails se
            ON se.member_id = m.id AND se.email_type = ? AND se.year = ? {status}
        WHERE m.email IS NOT NULL AND m.email <> ''
          AND se.id IS NULL
        """.format(status="AND se.status = 'sent'" if retry_failed else "")
    )
    params: list = [renewal_type, year]
    if renewal_type == "dd_renewal":
        sql += (
            " AND m.default_payment_method = ? AND m.family_payer_id IS NULL"
            " AND LOWER(m.category) NOT LIKE '%social%' AND LOWER(m.category) <> 'winter'"
        )
        params.append(config.DD_PAYMENT_METHOD)
    elif renewal_type == "bacs_renewal":
        placeholders = ",".join("?" for _ in config.BACS_PAYMENT_METHODS)
        sql += (
            f" AND m.default_payment_method IN ({placeholders})"
            " AND LOWER(m.category) NOT LIKE '%social%' AND LOWER(m.category) <> 'winter'"
        )
        params.extend(config.BACS_PAYMENT_METHODS)
    else:
        sql += " AND LOWER(m.category) LIKE '%social%'"
    sql += " ORDER BY m.surname, m.first_name"
    return [Member.from_row(r) for r in db.fetch_all(sql, tuple(params))]


def invoice_candidates(renewal_type: str, year: int, period_start: str, period_end: str) -> list[Member]:
    """
    Members successfully sent this renewal type who have no live invoice for
    the period yet. DD dependants are covered by their payer's notice; other
    renewal types only invoice the member who was sent the notice.
    """
    sent_to = "se.member_id = m.id"
    if renewal_type == "dd_renewal":
        sent_to = "(se.member_id = m.id OR se.member_id = m.family_payer_id)"
    rows = db.fetch_all(
        _SELECT.format(category="m.category")
        + f"""
        JOIN sent_emails se
            ON {sent_to}
        LEFT JOIN invoices inv
            ON inv.member_id = m.id AND inv.period_start = ? AND inv.period_end = ? AND inv.status != 'cancelled'
        WHERE se.email_type = ? AND se.year = ? AND se.status = 'sent'
          AND inv.id IS NULL
        GROUP BY m.id
        ORDER BY m.surname, m.first_name
        """,
        (period_start, period_end, renewal_type, year),
    )
    return [Member.from_row(r) for r in rows]


def add_member(**fields) -> int:
    cols = [c for c in MEMBER_COLUMNS if c in fields]
    placeholders = ",".join("?" for _ in cols)
    return db.execute(
        f"INSERT INTO members({','.join(cols)}) VALUES({placeholders})",
        tuple(fields[c] for c in cols),
    )


def update_member(member_id: int, **fields) -> None:
    cols = [c for c in MEMBER_COLUMNS if c in fields]
    if not cols:
        return
    assignments = ", ".join(f"{c}=?" for c in cols)
    db.execute(
        f"UPDATE members SET {assignments} WHERE id=?",
        tuple(fields[c] for c in cols) + (member_id,),
    )


def update_category(member_id: int, category: str) -> None:
    db.execute("UPDATE members SET category = ? WHERE id = ?", (category, member_id))


def subscription_categories() -> list[str]:
    rows = db.fetch_all(
        "SELECT name FROM payment_items WHERE category = 'Subscription' AND active = 1 ORDER BY name"
    )
    return [r["name"] for r in rows]
