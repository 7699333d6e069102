# backend/o2c/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/o2c.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///o2c.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    DEFAULT_CURRENCY = os.environ.get("O2C_DEFAULT_CURRENCY", "USD")

    # Business key padding: ORD-2026-001, INV-2026-0001
    ORDER_NUMBER_PAD = int(os.environ.get("O2C_ORDER_NUMBER_PAD", "3"))
    INVOICE_NUMBER_PAD = int(os.environ.get("O2C_INVOICE_NUMBER_PAD", "4"))

    DEFAULT_PAYMENT_TERMS_DAYS = int(os.environ.get("O2C_PAYMENT_TERMS_DAYS", "30"))

    # LOW/MEDIUM audit events older than this are removed by the retention sweep
    AUDIT_RETENTION_DAYS = int(os.environ.get("O2C_AUDIT_RETENTION_DAYS", "365"))
