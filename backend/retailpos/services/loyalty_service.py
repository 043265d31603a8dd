"""
Loyalty adjustment calculator and finalizer.

preview() is pure: it quotes redemption and earning for a settlement total
without touching the database. finalize() commits a quote as ledger rows
against the customer's cached balance, inside the settlement's atomic unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func

from ..config import StoreSettings, resolve_settings
from ..extensions import db
from ..models import Customer, CustomerLoyaltyTransaction, Transaction
from ..models.customers import LOYALTY_TYPE_EARN, LOYALTY_TYPE_REDEEM
from ..money import CENTS_PER_UNIT, decimal_to_cents, format_cents, round_points, to_cents
from ..validation import InvalidStateError, NotFoundError, optional_int


@dataclass(frozen=True)
class LoyaltyAdjustment:
    pre_redemption_total_cents: int
    net_total_cents: int
    points_earned: int
    points_redeemed: int
    redemption_value_cents: int

    def has_changes(self) -> bool:
        return self.points_earned > 0 or self.points_redeemed > 0

    def to_dict(self) -> dict:
        return {
            "pre_redemption_total_cents": self.pre_redemption_total_cents,
            "pre_redemption_total": format_cents(self.pre_redemption_total_cents),
            "net_total_cents": self.net_total_cents,
            "net_total": format_cents(self.net_total_cents),
            "points_earned": self.points_earned,
            "points_redeemed": self.points_redeemed,
            "redemption_value_cents": self.redemption_value_cents,
            "redemption_value": format_cents(self.redemption_value_cents),
        }


def _redeemable_points(
    *,
    requested: int,
    available: int,
    total_cents: int,
    currency_per_point: Decimal,
    minimum_redeemable: int,
) -> int:
    if requested <= 0 or available <= 0 or currency_per_point <= 0:
        return 0

    cents_per_point = currency_per_point * CENTS_PER_UNIT
    # floor(total / currency_per_point)
    max_by_value = int(Decimal(total_cents) // cents_per_point)

    points = min(requested, available, max_by_value)
    if points < minimum_redeemable:
        return 0
    return max(points, 0)


def preview(
    customer: Customer | None,
    total_cents: int,
    requested_points: int | None,
    settings: StoreSettings,
) -> LoyaltyAdjustment:
    """
    Quote point redemption and earning for a settlement total.

    - No customer: total unchanged, zero points.
    - Redeemed points = min(requested, balance, floor(total / currency_per_point)),
      zeroed below the minimum redeemable threshold.
    - Points are earned on the net (post-redemption) total.
    """
    pre_redemption_total = max(total_cents, 0)

    if customer is None:
        return LoyaltyAdjustment(pre_redemption_total, pre_redemption_total, 0, 0, 0)

    points_to_redeem = _redeemable_points(
        requested=max(requested_points or 0, 0),
        available=max(customer.loyalty_points or 0, 0),
        total_cents=pre_redemption_total,
        currency_per_point=settings.loyalty_currency_per_point,
        minimum_redeemable=settings.loyalty_minimum_redeemable_points,
    )

    redemption_value = 0
    if points_to_redeem > 0:
        redemption_value = decimal_to_cents(points_to_redeem * settings.loyalty_currency_per_point)
        redemption_value = min(redemption_value, pre_redemption_total)

    net_total = max(pre_redemption_total - redemption_value, 0)

    points_earned = 0
    if settings.loyalty_points_per_currency > 0:
        raw_points = Decimal(net_total) / CENTS_PER_UNIT * settings.loyalty_points_per_currency
        points_earned = round_points(raw_points, settings.loyalty_earning_rounding)

    return LoyaltyAdjustment(
        pre_redemption_total_cents=pre_redemption_total,
        net_total_cents=net_total,
        points_earned=points_earned,
        points_redeemed=points_to_redeem,
        redemption_value_cents=redemption_value,
    )


def preview_loyalty(
    customer_id: int | None = None,
    *,
    total,
    requested_points=None,
    settings: StoreSettings | None = None,
) -> LoyaltyAdjustment:
    """Read-only quote callable before settlement (total is a currency amount)."""
    settings = resolve_settings(settings)
    total_cents = to_cents(total, "total")
    requested = optional_int(requested_points, "loyalty_points_to_redeem", minimum=0)
    customer_id = optional_int(customer_id, "customer_id", minimum=1)

    customer = None
    if customer_id is not None:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found", field="customer_id")

    return preview(customer, total_cents, requested, settings)


def finalize(
    customer: Customer | None,
    transaction: Transaction,
    adjustment: LoyaltyAdjustment,
) -> list[CustomerLoyaltyTransaction]:
    """
    Commit a preview as ledger rows and update the cached balance.

    Runs inside the settlement's atomic unit (the caller holds the customer
    row lock). A redemption larger than the current balance means the balance
    moved after the preview; that aborts the whole settlement instead of
    clamping the redemption.
    """
    if customer is None or transaction.customer_id is None or not adjustment.has_changes():
        return []

    balance = int(customer.loyalty_points or 0)
    entries = []

    if adjustment.points_redeemed > 0:
        if balance < adjustment.points_redeemed:
            raise InvalidStateError(
                "Customer does not have enough loyalty points to redeem.",
                field="loyalty_points_to_redeem",
                details={
                    "customer_id": customer.id,
                    "balance": balance,
                    "points_redeemed": adjustment.points_redeemed,
                },
            )

        balance -= adjustment.points_redeemed
        entries.append(CustomerLoyaltyTransaction(
            customer_id=customer.id,
            transaction_id=transaction.id,
            type=LOYALTY_TYPE_REDEEM,
            points_change=-adjustment.points_redeemed,
            points_balance=balance,
            amount_cents=adjustment.redemption_value_cents,
        ))

    if adjustment.points_earned > 0:
        balance += adjustment.points_earned
        entries.append(CustomerLoyaltyTransaction(
            customer_id=customer.id,
            transaction_id=transaction.id,
            type=LOYALTY_TYPE_EARN,
            points_change=adjustment.points_earned,
            points_balance=balance,
            amount_cents=adjustment.net_total_cents,
        ))

    db.session.add_all(entries)
    customer.loyalty_points = balance
    db.session.flush()
    return entries


def loyalty_history(customer_id: int) -> list[CustomerLoyaltyTransaction]:
    """Ledger rows in creation order."""
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError(f"Customer {customer_id} not found", field="customer_id")
    return (
        db.session.query(CustomerLoyaltyTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerLoyaltyTransaction.id.asc())
        .all()
    )


def reconstruct_balance(customer_id: int) -> int:
    """Balance rebuilt from the ledger (SUM of points_change)."""
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError(f"Customer {customer_id} not found", field="customer_id")
    total = (
        db.session.query(func.coalesce(func.sum(CustomerLoyaltyTransaction.points_change), 0))
        .filter(CustomerLoyaltyTransaction.customer_id == customer_id)
        .scalar()
    )
    return int(total or 0)
