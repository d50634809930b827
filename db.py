"""
db.py
SQLite helpers + initialization (creates DB/tables, seeds fee items, default admin, etc.)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

import config

logger = logging.getLogger(__name__)

DB_FILE = config.DB_FILE

# Amounts are stored as REAL, rounded to pence by the callers
sqlite3.register_adapter(Decimal, float)


def _connect(**kwargs) -> sqlite3.Connection:
    conn = sqlite3.connect(DB_FILE, check_same_thread=False, **kwargs)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_conn():
    conn = _connect()
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


@contextmanager
def transaction():
    """
    Multi-statement write under a single write lock.
    Everything inside commits together or not at all.
    """
    conn = _connect(isolation_level=None)
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def executemany(sql: str, seq_of_params: list[tuple]) -> None:
    with get_conn() as conn:
        conn.executemany(sql, seq_of_params)


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS admin_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'admin' CHECK(role IN ('admin','viewer')),
        last_login TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT,
        first_name TEXT NOT NULL,
        surname TEXT NOT NULL,
        club_number TEXT,
        email TEXT,
        category TEXT,
        home_away TEXT CHECK(home_away IN ('H','A','V') OR home_away IS NULL),
        national_id TEXT,
        handicap_index REAL,
        locker_number TEXT,
        date_of_birth TEXT,
        date_joined TEXT,
        date_renewed TEXT,
        date_expires TEXT,
        date_subscription_paid TEXT,
        default_payment_method TEXT,
        direct_debit_member_id TEXT,
        dd_membership_type TEXT,
        family_payer_id INTEGER REFERENCES members(id) ON DELETE SET NULL,
        account_balance REAL NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payment_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        category TEXT NOT NULL CHECK(category IN ('Subscription','Fee')),
        name TEXT NOT NULL,
        fee REAL NOT NULL,
        description TEXT,
        active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        invoice_number TEXT NOT NULL UNIQUE,
        member_id INTEGER NOT NULL REFERENCES members(id),
        invoice_date TEXT NOT NULL DEFAULT (date('now')),
        period_start TEXT NOT NULL,
        period_end TEXT NOT NULL,
        subtotal REAL NOT NULL,
        total REAL NOT NULL,
        balance_charge REAL NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'draft' CHECK(status IN ('draft','sent','paid','cancelled')),
        created_by TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        invoice_id INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
        payment_item_id INTEGER REFERENCES payment_items(id),
        description TEXT NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 1,
        unit_price REAL NOT NULL,
        line_total REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        member_id INTEGER NOT NULL REFERENCES members(id) ON DELETE CASCADE,
        invoice_id INTEGER REFERENCES invoices(id),
        amount REAL NOT NULL,
        payment_date TEXT NOT NULL,
        payment_method TEXT NOT NULL,
        payment_type TEXT NOT NULL DEFAULT 'subscription',
        reference TEXT,
        notes TEXT,
        recorded_by TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payment_line_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        payment_id INTEGER NOT NULL REFERENCES payments(id) ON DELETE CASCADE,
        invoice_item_id INTEGER REFERENCES invoice_items(id),
        payment_item_id INTEGER REFERENCES payment_items(id),
        description TEXT NOT NULL,
        amount REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice_counters (
        year INTEGER PRIMARY KEY,
        last_seq INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sent_emails (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        member_id INTEGER NOT NULL REFERENCES members(id) ON DELETE CASCADE,
        email_type TEXT NOT NULL,
        email_address TEXT NOT NULL,
        year INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'sent',
        error TEXT,
        sent_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_name TEXT NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id INTEGER,
        details TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    # Small settings table (bank details, first-login password change)
    """
    CREATE TABLE IF NOT EXISTS app_settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_invoices_member_period ON invoices(member_id, period_start, period_end)",
    "CREATE INDEX IF NOT EXISTS idx_sent_emails_type_year ON sent_emails(email_type, year)",
    "CREATE INDEX IF NOT EXISTS idx_members_family_payer ON members(family_payer_id)",
]


def _create_tables() -> None:
    with get_conn() as conn:
        for statement in _SCHEMA:
            conn.execute(statement)


def _seed_fee_items() -> None:
    for name, fee in config.DEFAULT_FEES.items():
        execute(
            """
            INSERT INTO payment_items(category, name, fee, description)
            SELECT 'Fee', ?, ?, ?
            WHERE NOT EXISTS (SELECT 1 FROM payment_items WHERE category = 'Fee' AND name = ?)
            """,
            (name, fee, f"{name} fee", name),
        )


def get_setting(key: str, default: str | None = None) -> str | None:
    row = fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
    if row:
        return str(row["value"])
    return default


def set_setting(key: str, value: str) -> None:
    execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def get_bank_details() -> dict[str, str]:
    return {key: get_setting(key, default) or "" for key, default in config.DEFAULT_BANK_DETAILS.items()}


def log_action(user_name: str, action: str, entity_type: str, entity_id: int | None, details: str = "", conn=None) -> None:
    sql = "INSERT INTO audit_log(user_name, action, entity_type, entity_id, details) VALUES(?,?,?,?,?)"
    params = (user_name, action, entity_type, entity_id, details)
    if conn is not None:
        conn.execute(sql, params)
    else:
        execute(sql, params)


def init_db(default_admin_hash: str) -> None:
    """
    Initialize the database.
    - Create tables
    - Seed England Golf / County / Locker fee items and bank details
    - Insert default admin (admin/admin123) if no admin exists
    - Force password change on first login
    """
    _create_tables()
    _seed_fee_items()
    for key, value in config.DEFAULT_BANK_DETAILS.items():
        if get_setting(key) is None:
            set_setting(key, value)

    admin = fetch_one("SELECT id FROM admin_users LIMIT 1")
    if not admin:
        now = datetime.now(timezone.utc).isoformat(timespec="seconds")
        execute(
            "INSERT INTO admin_users(username, password_hash, created_at) VALUES(?,?,?)",
            ("admin", default_admin_hash, now),
        )
        set_setting("force_password_change", "1")
        logger.info("Created default admin user")
    elif get_setting("force_password_change") is None:
        set_setting("force_password_change", "0")


def is_force_password_change() -> bool:
    return get_setting("force_password_change") == "1"


def clear_force_password_change() -> None:
    set_setting("force_password_change", "0")
