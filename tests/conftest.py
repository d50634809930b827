# tests/conftest.py
"""Shared fixtures: a throwaway club database, fee tables and member factories."""
from decimal import Decimal

import pytest

import config
import db
import members
from mailer import SendResult
from models import FeeItem, FeeKind, Member

# Not a real bcrypt hash; init_db only stores it
ADMIN_HASH = "$2b$12$testtesttesttesttesttuJ8m0Yp0fQn3Zb3r9Yx1vH3xk9tQ1rXy"


@pytest.fixture
def club_db(tmp_path, monkeypatch):
    """Fresh SQLite file with tables, fee items and the default admin."""
    path = tmp_path / "club.db"
    monkeypatch.setattr(db, "DB_FILE", path)
    db.init_db(ADMIN_HASH)
    return path


@pytest.fixture
def fee_table():
    return {
        FeeKind.ENGLAND_GOLF: FeeItem(id=1, name="England Golf", fee=Decimal("12.00")),
        FeeKind.NORTHUMBERLAND_COUNTY: FeeItem(id=2, name="Northumberland County", fee=Decimal("6.50")),
        FeeKind.LOCKER: FeeItem(id=3, name="Locker", fee=Decimal("10.00")),
    }


@pytest.fixture
def make_member():
    """Build an in-memory Member; defaults describe a Full Home member with a CDH number."""
    def _make(**overrides):
        fields = dict(
            id=1,
            first_name="Alan",
            surname="Robson",
            category="Full",
            email="alan@example.com",
            home_away="H",
            national_id="1000123456",
            handicap_index=14.2,
            subscription_fee=Decimal("432.00"),
        )
        fields.update(overrides)
        return Member(**fields)
    return _make


@pytest.fixture
def add_subscription(club_db):
    """Insert an active Subscription item."""
    def _add(name, fee):
        return db.execute(
            "INSERT INTO payment_items(category, name, fee) VALUES('Subscription', ?, ?)",
            (name, Decimal(str(fee))),
        )
    return _add


@pytest.fixture
def add_member(club_db):
    """Insert a member row and return it reloaded with its subscription fee."""
    def _add(**overrides):
        fields = dict(
            first_name="Alan",
            surname="Robson",
            email="alan@example.com",
            category="Full",
            home_away="H",
            national_id="1000123456",
            handicap_index=14.2,
            date_of_birth="1978-06-15",
            date_joined="2014-04-01",
            default_payment_method="BACS",
        )
        fields.update(overrides)
        member_id = members.add_member(**fields)
        return members.get_member(member_id)
    return _add


class FakeMailer:
    """Records sends; addresses listed in fail_for come back as failures."""

    def __init__(self, fail_for=(), raise_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)

    def send(self, to, subject, html):
        if to in self.raise_for:
            raise ConnectionError(f"connection reset sending to {to}")
        if to in self.fail_for:
            return SendResult(False, "SendMail failed (400): mailbox unavailable")
        self.sent.append((to, subject, html))
        return SendResult(True)


@pytest.fixture
def fake_mailer():
    return FakeMailer()


@pytest.fixture
def make_mailer():
    return FakeMailer


@pytest.fixture
def dd_method():
    return config.DD_PAYMENT_METHOD
