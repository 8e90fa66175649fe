# backend/app/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/payouts.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///payouts.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Deployment-wide payout defaults. Organization settings override these;
    # both are frozen into a PayoutConfig once per transaction.
    # Cutoff hour and rounding mode must match the deployment's accounting rules.
    PAYOUT_BUSINESS_DAY_CUTOFF_HOUR = int(os.environ.get("PAYOUT_BUSINESS_DAY_CUTOFF_HOUR", "0"))
    PAYOUT_ROUNDING_MODE = os.environ.get("PAYOUT_ROUNDING_MODE", "HALF_UP")
    PAYOUT_DEFAULT_SERVICE_COMMISSION_BPS = int(os.environ.get("PAYOUT_DEFAULT_SERVICE_COMMISSION_BPS", "0"))
    PAYOUT_DEFAULT_PRODUCT_COMMISSION_BPS = int(os.environ.get("PAYOUT_DEFAULT_PRODUCT_COMMISSION_BPS", "0"))
    PAYOUT_TIPS_AFFECT_COMMISSION = _env_bool("PAYOUT_TIPS_AFFECT_COMMISSION", False)
