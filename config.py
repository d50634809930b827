"""
config.py
Club constants and environment overrides.
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path


def set_value(name: str, default=None):
    """Return the environment value for name, falling back to default."""
    if name in os.environ:
        return os.environ[name]
    return default


DB_FILE = Path(set_value("CLUB_DB_FILE", str(Path(__file__).with_name("club.db"))))

LOG_LEVEL = set_value("CLUB_LOG_LEVEL", "INFO")

CLUB_NAME = set_value("CLUB_NAME", "Alnmouth Village Golf Club")
CLUB_SHORT_NAME = set_value("CLUB_SHORT_NAME", "AVGC")
CLUB_EMAIL = set_value("CLUB_EMAIL", "subscriptions@AlnmouthVillage.Golf")

# Bulk operations are resumed by calling again until nothing remains
BATCH_SIZE = int(set_value("CLUB_BATCH_SIZE", 40))
EMAIL_DELAY_SECONDS = float(set_value("CLUB_EMAIL_DELAY", 0.1))

# Reference fees, seeded into payment_items on first run
DEFAULT_FEES = {
    "England Golf": Decimal("12.00"),
    "Northumberland County": Decimal("6.50"),
    "Locker": Decimal("10.00"),
}

DD_PAYMENT_METHOD = "Clubwise Direct Debit"
BACS_PAYMENT_METHODS = ("BACS", "Over the Till", "Standing Order", "Cheque")

DEFAULT_BANK_DETAILS = {
    "bank_name": "Barclays Bank",
    "sort_code": "",
    "account_number": "",
    "account_name": CLUB_NAME,
}

AZURE_TENANT_ID = set_value("AZURE_TENANT_ID")
AZURE_CLIENT_ID = set_value("AZURE_CLIENT_ID")
AZURE_CLIENT_SECRET = set_value("AZURE_CLIENT_SECRET")
AZURE_SERVICE_USER = set_value("AZURE_SERVICE_USER")
AZURE_SERVICE_PASSWORD = set_value("AZURE_SERVICE_PASSWORD")
