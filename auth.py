"""
auth.py
Club office logins: bcrypt password hashes, admin/viewer roles, last login.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import bcrypt

import db

logger = logging.getLogger(__name__)

ROLES = ("admin", "viewer")


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    """
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_to_bcrypt_secret(password), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_to_bcrypt_secret(password), password_hash.encode("utf-8"))


def get_user(username: str):
    return db.fetch_one("SELECT * FROM admin_users WHERE username = ?", (username,))


def login(username: str, password: str) -> bool:
    user = get_user(username)
    if not user or not verify_password(password, user["password_hash"]):
        logger.warning("Failed login for %r", username)
        return False
    db.execute(
        "UPDATE admin_users SET last_login = ? WHERE id = ?",
        (datetime.now(timezone.utc).isoformat(timespec="seconds"), user["id"]),
    )
    return True


def can_edit(username: str | None) -> bool:
    """Viewers may look but not run batches or change the ledger."""
    if not username:
        return False
    user = get_user(username)
    return bool(user and user["role"] == "admin")


def add_user(username: str, password: str, role: str = "viewer") -> int:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    return db.execute(
        "INSERT INTO admin_users(username, password_hash, role, created_at) VALUES(?,?,?,?)",
        (username, hash_password(password), role, datetime.now(timezone.utc).isoformat(timespec="seconds")),
    )


def change_password(username: str, new_password: str) -> None:
    db.execute(
        "UPDATE admin_users SET password_hash = ? WHERE username = ?",
        (hash_password(new_password), username),
    )
    db.clear_force_password_change()
    db.log_action(username, "change_password", "admin_user", None)
