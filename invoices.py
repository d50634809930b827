"""
invoices.py
Invoice/ledger writer: renewal invoices, DD payments and balance bookkeeping.

A member has at most one non-cancelled invoice per membership period.
Draft (non-DD) invoices add their total to the member's account balance;
DD invoices are written as paid with a matching payment and never touch the
balance. The amount added at creation is stored on the invoice
(balance_charge) and is what deletion or cancellation reverses.
"""

from __future__ import annotations

import json
import logging
import sqlite3

import config
import db
import fees
from models import ALREADY_EXISTS, Invoice, InvoiceItem, InvoiceResult, Member, money

logger = logging.getLogger(__name__)


class InvoiceNotFound(Exception):
    pass


def period_bounds(year: int) -> tuple[str, str]:
    return f"{year}-04-01", f"{year + 1}-03-31"


def next_invoice_number(conn: sqlite3.Connection, year: int) -> str:
    """
    INV-{year}-{NNN}. The per-year counter is bumped inside the caller's
    transaction and never falls below the highest number already issued.
    """
    prefix = f"INV-{year}-"
    highest = 0
    for r in conn.execute("SELECT invoice_number FROM invoices WHERE invoice_number LIKE ?", (f"{prefix}%",)):
        tail = r["invoice_number"][len(prefix):]
        if tail.isdigit():
            highest = max(highest, int(tail))

    conn.execute(
        """
        INSERT INTO invoice_counters(year, last_seq) VALUES(?, ?)
        ON CONFLICT(year) DO UPDATE SET last_seq = MAX(last_seq, excluded.last_seq - 1) + 1
        """,
        (year, highest + 1),
    )
    seq = conn.execute("SELECT last_seq FROM invoice_counters WHERE year = ?", (year,)).fetchone()["last_seq"]
    return f"{prefix}{seq:03d}"


def generate_invoice_for_member(
    member: Member,
    fee_items: fees.FeeTable,
    year: int,
    is_dd: bool,
    is_social: bool | None = None,
    period_start: str | None = None,
    period_end: str | None = None,
    created_by: str = "renewal-batch",
) -> InvoiceResult:
    """
    Create the renewal invoice for a member.

    Returns success with invoice_number 'already_exists' when the member
    already has a live invoice for the period, and success=False with an
    error message when nothing can be invoiced or the write fails.
    """
    start, end = period_bounds(year)
    start = period_start or start
    end = period_end or end

    try:
        with db.transaction() as conn:
            existing = conn.execute(
                """
                SELECT id FROM invoices
                WHERE member_id = ? AND period_start = ? AND period_end = ? AND status != 'cancelled'
                LIMIT 1
                """,
                (member.id, start, end),
            ).fetchone()
            if existing:
                return InvoiceResult(True, ALREADY_EXISTS)

            items = fees.calculate_line_items(member, fee_items, is_social)
            if not items:
                return InvoiceResult(False, error=f"No subscription fee for category {member.category}")

            total = fees.total(items)
            invoice_number = next_invoice_number(conn, year)
            balance_charge = money(0) if is_dd else total

            invoice_id = conn.execute(
                """
                INSERT INTO invoices(invoice_number, member_id, period_start, period_end,
                    subtotal, total, balance_charge, status, created_by)
                VALUES(?,?,?,?,?,?,?,?,?)
                """,
                (invoice_number, member.id, start, end, total, total, balance_charge,
                 "paid" if is_dd else "draft", created_by),
            ).lastrowid

            invoice_item_ids = []
            for item in items:
                item_id = conn.execute(
                    """
                    INSERT INTO invoice_items(invoice_id, payment_item_id, description, quantity, unit_price, line_total)
                    VALUES(?,?,?,1,?,?)
                    """,
                    (invoice_id, item.payment_item_id, item.description, item.unit_price, item.unit_price),
                ).lastrowid
                invoice_item_ids.append((item_id, item))

            if is_dd:
                conn.execute(
                    "UPDATE members SET date_renewed = ?, date_expires = ?, date_subscription_paid = ? WHERE id = ?",
                    (start, end, start, member.id),
                )
                payment_id = conn.execute(
                    """
                    INSERT INTO payments(member_id, invoice_id, amount, payment_date, payment_method,
                        payment_type, reference, notes, recorded_by)
                    VALUES(?,?,?,?,?,'subscription',?,'Auto-recorded from DD renewal',?)
                    """,
                    (member.id, invoice_id, total, start, config.DD_PAYMENT_METHOD, invoice_number, created_by),
                ).lastrowid
                conn.executemany(
                    """
                    INSERT INTO payment_line_items(payment_id, invoice_item_id, payment_item_id, description, amount)
                    VALUES(?,?,?,?,?)
                    """,
                    [(payment_id, item_id, item.payment_item_id, item.description, item.unit_price)
                     for item_id, item in invoice_item_ids],
                )
            else:
                conn.execute(
                    "UPDATE members SET account_balance = ROUND(account_balance + ?, 2) WHERE id = ?",
                    (total, member.id),
                )
    except sqlite3.Error as e:
        logger.error("Invoice for member %s failed: %s", member.id, e)
        return InvoiceResult(False, error=str(e))

    logger.info("Created %s for member %s (%s, total %s)", invoice_number, member.id, "DD" if is_dd else "draft", total)
    return InvoiceResult(True, invoice_number)


def _remove(conn: sqlite3.Connection, row) -> None:
    invoice_id = row["id"]
    if row["status"] != "cancelled":
        conn.execute(
            "UPDATE members SET account_balance = ROUND(account_balance - ?, 2) WHERE id = ?",
            (row["balance_charge"], row["member_id"]),
        )
    conn.execute(
        "DELETE FROM payment_line_items WHERE payment_id IN (SELECT id FROM payments WHERE invoice_id = ?)",
        (invoice_id,),
    )
    conn.execute("DELETE FROM payments WHERE invoice_id = ?", (invoice_id,))
    conn.execute("DELETE FROM invoice_items WHERE invoice_id = ?", (invoice_id,))
    conn.execute("DELETE FROM invoices WHERE id = ?", (invoice_id,))
    conn.execute("UPDATE members SET date_renewed = NULL WHERE id = ?", (row["member_id"],))


def delete_invoice(invoice_id: int, user: str = "system") -> Invoice:
    """Delete an invoice with its items and payments, reversing its balance charge."""
    with db.transaction() as conn:
        row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
        if row is None:
            raise InvoiceNotFound(invoice_id)
        _remove(conn, row)
        db.log_action(user, "delete_invoice", "invoice", invoice_id,
                      json.dumps({"invoice_number": row["invoice_number"]}), conn=conn)
    logger.info("Deleted invoice %s", row["invoice_number"])
    return Invoice.from_row(row)


def cancel_invoice(invoice_id: int, user: str = "system") -> Invoice:
    with db.transaction() as conn:
        row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
        if row is None:
            raise InvoiceNotFound(invoice_id)
        if row["status"] != "cancelled":
            conn.execute(
                "UPDATE members SET account_balance = ROUND(account_balance - ?, 2) WHERE id = ?",
                (row["balance_charge"], row["member_id"]),
            )
            conn.execute("UPDATE invoices SET status = 'cancelled' WHERE id = ?", (invoice_id,))
            db.log_action(user, "cancel_invoice", "invoice", invoice_id,
                          json.dumps({"invoice_number": row["invoice_number"]}), conn=conn)
        row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
    return Invoice.from_row(row)


def delete_period_invoices(member_id: int, period_start: str, user: str = "system") -> int:
    """Remove every live invoice a member has for the period starting on period_start."""
    with db.transaction() as conn:
        rows = conn.execute(
            "SELECT * FROM invoices WHERE member_id = ? AND period_start = ? AND status != 'cancelled'",
            (member_id, period_start),
        ).fetchall()
        for row in rows:
            _remove(conn, row)
            db.log_action(user, "delete_invoice", "invoice", row["id"],
                          json.dumps({"invoice_number": row["invoice_number"], "reason": "subscription change"}),
                          conn=conn)
    return len(rows)


def member_invoices(member_id: int) -> list[Invoice]:
    rows = db.fetch_all("SELECT * FROM invoices WHERE member_id = ? ORDER BY period_start DESC, id DESC", (member_id,))
    return [Invoice.from_row(r) for r in rows]


def invoice_items(invoice_id: int) -> list[InvoiceItem]:
    rows = db.fetch_all("SELECT * FROM invoice_items WHERE invoice_id = ? ORDER BY id", (invoice_id,))
    return [
        InvoiceItem(
            id=r["id"],
            invoice_id=r["invoice_id"],
            payment_item_id=r["payment_item_id"],
            description=r["description"],
            quantity=r["quantity"],
            unit_price=money(r["unit_price"]),
            line_total=money(r["line_total"]),
        )
        for r in rows
    ]


def invoice_summary(year: int | None = None) -> list[sqlite3.Row]:
    sql = """
        SELECT i.id, i.invoice_number, i.member_id, m.first_name || ' ' || m.surname AS member,
               i.period_start, i.period_end, i.total, i.status
        FROM invoices i JOIN members m ON m.id = i.member_id
    """
    params: tuple = ()
    if year is not None:
        sql += " WHERE i.period_start = ?"
        params = (period_bounds(year)[0],)
    sql += " ORDER BY i.invoice_number DESC"
    return db.fetch_all(sql, params)
