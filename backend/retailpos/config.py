# backend/retailpos/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from .money import PointsRounding


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Store
    STORE_CURRENCY_CODE = os.environ.get("STORE_CURRENCY_CODE", "IDR")

    # Inventory
    STORE_LOW_STOCK_THRESHOLD = int(os.environ.get("STORE_LOW_STOCK_THRESHOLD", "10"))

    # Dashboard
    STORE_DASHBOARD_DEFAULT_RANGE_DAYS = int(os.environ.get("STORE_DASHBOARD_DEFAULT_RANGE_DAYS", "14"))
    STORE_DASHBOARD_MAX_RANGE_DAYS = int(os.environ.get("STORE_DASHBOARD_MAX_RANGE_DAYS", "90"))

    # Loyalty
    STORE_LOYALTY_POINTS_PER_CURRENCY = os.environ.get("STORE_LOYALTY_POINTS_PER_CURRENCY", "1")
    STORE_LOYALTY_CURRENCY_PER_POINT = os.environ.get("STORE_LOYALTY_CURRENCY_PER_POINT", "0.01")
    STORE_LOYALTY_MINIMUM_REDEEMABLE_POINTS = int(os.environ.get("STORE_LOYALTY_MINIMUM_REDEEMABLE_POINTS", "100"))
    STORE_LOYALTY_EARNING_ROUNDING = os.environ.get("STORE_LOYALTY_EARNING_ROUNDING", "down")  # down|nearest|up


@dataclass(frozen=True)
class StoreSettings:
    """
    Explicit configuration value passed into settlement, loyalty and reporting.

    Built from the Flask config once per call site; tests construct it
    directly to pin loyalty rates and thresholds.
    """
    currency_code: str = "IDR"
    low_stock_threshold: int = 10
    dashboard_default_range_days: int = 14
    dashboard_max_range_days: int = 90
    loyalty_points_per_currency: Decimal = Decimal("1")
    loyalty_currency_per_point: Decimal = Decimal("0.01")
    loyalty_minimum_redeemable_points: int = 100
    loyalty_earning_rounding: PointsRounding = PointsRounding.DOWN

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "StoreSettings":
        defaults = cls()

        def _decimal(key: str, fallback: Decimal) -> Decimal:
            raw = config.get(key)
            if raw is None or raw == "":
                return fallback
            value = Decimal(str(raw))
            return value if value > 0 else Decimal(0)

        def _int(key: str, fallback: int) -> int:
            raw = config.get(key)
            if raw is None or raw == "":
                return fallback
            return int(raw)

        return cls(
            currency_code=str(config.get("STORE_CURRENCY_CODE") or defaults.currency_code),
            low_stock_threshold=_int("STORE_LOW_STOCK_THRESHOLD", defaults.low_stock_threshold),
            dashboard_default_range_days=_int(
                "STORE_DASHBOARD_DEFAULT_RANGE_DAYS", defaults.dashboard_default_range_days
            ),
            dashboard_max_range_days=_int("STORE_DASHBOARD_MAX_RANGE_DAYS", defaults.dashboard_max_range_days),
            loyalty_points_per_currency=_decimal(
                "STORE_LOYALTY_POINTS_PER_CURRENCY", defaults.loyalty_points_per_currency
            ),
            loyalty_currency_per_point=_decimal(
                "STORE_LOYALTY_CURRENCY_PER_POINT", defaults.loyalty_currency_per_point
            ),
            loyalty_minimum_redeemable_points=max(
                _int("STORE_LOYALTY_MINIMUM_REDEEMABLE_POINTS", defaults.loyalty_minimum_redeemable_points), 0
            ),
            loyalty_earning_rounding=PointsRounding.parse(
                config.get("STORE_LOYALTY_EARNING_ROUNDING", defaults.loyalty_earning_rounding.value)
            ),
        )


def current_settings() -> StoreSettings:
    """Settings for the active Flask app."""
    from flask import current_app

    return StoreSettings.from_mapping(current_app.config)


def resolve_settings(settings: StoreSettings | None) -> StoreSettings:
    return settings if settings is not None else current_settings()
