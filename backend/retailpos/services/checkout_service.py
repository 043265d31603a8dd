"""
Checkout settlement engine.

WHY: Turns a cart into a committed Transaction while decrementing the stock
ledger, with cent-exact tax/discount/loyalty amounts.

SETTLEMENT UNIT (all or nothing):
1. Shape validation (no locks held)
2. Lock products (ascending id), then ledger rows (ascending key)
3. Stock check against the locked ledger rows
4. Price lines, aggregate order totals, loyalty preview
5. Insert Transaction + items, decrement ledger rows and Product.stock
6. Loyalty finalize, commit
Any failure rolls back every step; nothing is retried here.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..config import StoreSettings, resolve_settings
from ..extensions import db
from ..models import Customer, Product, StockLevel, Transaction, TransactionItem
from ..models.sales import PAYMENT_METHODS
from ..money import apply_rate, format_cents, multiply_cents, to_cents, to_rate_bps
from ..time_utils import utcnow
from ..validation import (
    MAX_AMOUNT_CENTS,
    MAX_LINE_QUANTITY,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    clean_text,
    optional_int,
    require_int,
)
from . import loyalty_service
from .concurrency import atomic_unit, lock_for_update
from .stock_service import get_default_location, get_location, lock_products, lock_stock_levels


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_VALUE = "value"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_VALUE)

_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class Discount:
    type: str
    value: int  # bps for percentage, cents for value


@dataclass(frozen=True)
class PricedLine:
    product: Product
    quantity: int
    unit_price_cents: int
    unit_cost_cents: int
    line_subtotal_cents: int
    line_tax_cents: int
    line_total_cents: int
    line_cost_cents: int


@dataclass(frozen=True)
class OrderTotals:
    subtotal_cents: int
    tax_total_cents: int
    discount_total_cents: int
    total_cents: int
    items_count: int


def generate_transaction_number(now: datetime | None = None) -> str:
    """TRX-<yyyymmdd>-<hhmmss>-<4 random uppercase alphanumerics>."""
    moment = now or utcnow()
    suffix = "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(4))
    return f"TRX-{moment:%Y%m%d}-{moment:%H%M%S}-{suffix}"


def line_amounts(unit_price_cents: int, quantity: int, tax_rate_bps: int) -> tuple[int, int, int]:
    """(line_subtotal, line_tax, line_total), each rounded at its own step."""
    line_subtotal = multiply_cents(unit_price_cents, quantity)
    line_tax = apply_rate(line_subtotal, tax_rate_bps)
    return line_subtotal, line_tax, line_subtotal + line_tax


def price_line(product: Product, quantity: int, tax_rate_bps: int) -> PricedLine:
    unit_price = product.price_cents or 0
    unit_cost = product.cost_price_cents or 0
    line_subtotal, line_tax, line_total = line_amounts(unit_price, quantity, tax_rate_bps)
    return PricedLine(
        product=product,
        quantity=quantity,
        unit_price_cents=unit_price,
        unit_cost_cents=unit_cost,
        line_subtotal_cents=line_subtotal,
        line_tax_cents=line_tax,
        line_total_cents=line_total,
        line_cost_cents=multiply_cents(unit_cost, quantity),
    )


def compute_discount(subtotal_cents: int, tax_total_cents: int, discount: Discount | None) -> int:
    """
    Discount amount in cents.

    A percentage applies to the tax-inclusive total (subtotal + tax); a fixed
    value is capped at the subtotal.
    """
    if discount is None:
        return 0
    if discount.type == DISCOUNT_PERCENTAGE:
        gross = subtotal_cents + tax_total_cents
        return min(max(apply_rate(gross, discount.value), 0), gross)
    return min(max(discount.value, 0), subtotal_cents)


def calculate_order(lines: list[PricedLine], discount: Discount | None = None) -> OrderTotals:
    subtotal = sum(line.line_subtotal_cents for line in lines)
    tax_total = sum(line.line_tax_cents for line in lines)
    if subtotal + tax_total > MAX_AMOUNT_CENTS or any(line.line_cost_cents > MAX_AMOUNT_CENTS for line in lines):
        raise ValidationError(
            f"Transaction total cannot exceed {format_cents(MAX_AMOUNT_CENTS)}", field="items"
        )
    discount_total = compute_discount(subtotal, tax_total, discount)
    return OrderTotals(
        subtotal_cents=subtotal,
        tax_total_cents=tax_total,
        discount_total_cents=discount_total,
        total_cents=max(subtotal + tax_total - discount_total, 0),
        items_count=sum(line.quantity for line in lines),
    )


def _normalize_items(items) -> list[CartLine]:
    if not items:
        raise ValidationError("Add at least one product before completing the transaction.", field="items")
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list", field="items")

    cart = []
    for index, raw in enumerate(items):
        if isinstance(raw, dict):
            product_id, quantity = raw.get("product_id"), raw.get("quantity")
        elif isinstance(raw, (list, tuple)) and len(raw) == 2:
            product_id, quantity = raw
        else:
            raise ValidationError(f"items[{index}] must have a product_id and a quantity", field="items")

        product_id = require_int(product_id, f"items[{index}].product_id", minimum=1)
        quantity = require_int(quantity, f"items[{index}].quantity")
        if quantity < 1:
            raise ValidationError("Each product must have a quantity of at least 1.", field="items")
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(
                f"Each product can have a quantity of at most {MAX_LINE_QUANTITY}.", field="items"
            )
        cart.append(CartLine(product_id=product_id, quantity=quantity))
    return cart


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _validate_discount(discount_type, discount_value) -> Discount | None:
    if _blank(discount_type) and _blank(discount_value):
        return None
    if _blank(discount_type):
        raise ValidationError("Select a discount type when providing a discount value.", field="discount_type")
    if _blank(discount_value):
        raise ValidationError("Provide a value for the selected discount type.", field="discount_value")

    discount_type = str(discount_type).strip().lower()
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(
            f"discount_type must be one of: {', '.join(DISCOUNT_TYPES)}", field="discount_type"
        )

    if discount_type == DISCOUNT_PERCENTAGE:
        value = to_rate_bps(discount_value, "discount_value", maximum_percent=100)
    else:
        value = to_cents(discount_value, "discount_value")
    return Discount(type=discount_type, value=value)


def _quantities_by_product(cart: list[CartLine]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in cart:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def _ensure_available(
    products: dict[int, Product],
    levels: dict[tuple[int, int], StockLevel],
    requested: dict[int, int],
    location_id: int,
) -> None:
    for product_id, quantity in requested.items():
        product = products[product_id]
        level = levels.get((product_id, location_id))
        on_hand = level.quantity if level is not None else 0
        if on_hand < quantity or product.stock < quantity:
            raise ValidationError(
                f"Insufficient stock for {product.name}.",
                field="items",
                details={
                    "product_id": product_id,
                    "location_id": location_id,
                    "requested_quantity": quantity,
                    "on_hand": on_hand,
                },
            )


def settle(
    *,
    items,
    tax_rate,
    payment_method: str,
    amount_paid,
    discount_type: str | None = None,
    discount_value=None,
    customer_id: int | None = None,
    loyalty_points_to_redeem: int | None = None,
    location_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
    settings: StoreSettings | None = None,
    now: datetime | None = None,
) -> Transaction:
    """
    Settle a cart into a committed Transaction.

    Args:
        items: [{"product_id": int, "quantity": int}, ...] or [(product_id, quantity), ...]
        tax_rate: percent with 2 decimals ("11.00"); required, never defaulted
        payment_method: cash | card | bank_transfer | e_wallet | other
        amount_paid: currency amount tendered; must cover the amount due (total less loyalty redemption)
        discount_type / discount_value: both or neither
        customer_id / loyalty_points_to_redeem: optional loyalty participation
        location_id: ledger location to sell from (default location when None)

    Raises:
        ValidationError: malformed input, insufficient stock, underpayment
        NotFoundError: unknown product, location or customer
        InvalidStateError: loyalty balance moved between preview and finalize
        StorageFailure: data store error (retryable for lock conflicts)
    """
    settings = resolve_settings(settings)

    # Shape checks first so a malformed request never takes a lock
    cart = _normalize_items(items)
    if _blank(tax_rate):
        raise ValidationError("tax_rate is required", field="tax_rate")
    tax_rate_bps = to_rate_bps(tax_rate, "tax_rate")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}", field="payment_method"
        )
    amount_paid_cents = to_cents(amount_paid, "amount_paid")
    discount = _validate_discount(discount_type, discount_value)
    customer_id = optional_int(customer_id, "customer_id", minimum=1)
    points_requested = optional_int(loyalty_points_to_redeem, "loyalty_points_to_redeem", minimum=0)
    if points_requested is not None and customer_id is None:
        raise ValidationError(
            "Select a customer before redeeming loyalty points.", field="loyalty_points_to_redeem"
        )
    location_id = optional_int(location_id, "location_id", minimum=1)
    user_id = optional_int(user_id, "user_id", minimum=1)
    notes = clean_text(notes, "notes", max_length=1000)
    moment = now or utcnow()

    try:
        with atomic_unit("Settlement"):
            location = get_location(location_id) if location_id is not None else get_default_location()

            requested = _quantities_by_product(cart)
            products = lock_products(requested.keys(), field="items")
            levels = lock_stock_levels((product_id, location.id) for product_id in requested)
            _ensure_available(products, levels, requested, location.id)

            priced = [price_line(products[line.product_id], line.quantity, tax_rate_bps) for line in cart]
            totals = calculate_order(priced, discount)

            customer = None
            if customer_id is not None:
                customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
                if customer is None:
                    raise NotFoundError(f"Customer {customer_id} not found", field="customer_id")

            adjustment = loyalty_service.preview(customer, totals.total_cents, points_requested, settings)
            amount_due = adjustment.net_total_cents

            if amount_paid_cents < amount_due:
                raise ValidationError(
                    "Amount paid must be at least the total due.",
                    field="amount_paid",
                    details={"total_due_cents": amount_due, "amount_paid_cents": amount_paid_cents},
                )

            transaction = Transaction(
                number=generate_transaction_number(moment),
                user_id=user_id,
                customer_id=customer_id,
                location_id=location.id,
                items_count=totals.items_count,
                ppn_rate_bps=tax_rate_bps,
                subtotal_cents=totals.subtotal_cents,
                tax_total_cents=totals.tax_total_cents,
                discount_type=discount.type if discount else None,
                discount_value=discount.value if discount else None,
                discount_total_cents=totals.discount_total_cents,
                loyalty_redemption_cents=adjustment.redemption_value_cents,
                loyalty_points_redeemed=adjustment.points_redeemed,
                loyalty_points_earned=adjustment.points_earned,
                total_cents=totals.total_cents,
                amount_due_cents=amount_due,
                payment_method=payment_method,
                amount_paid_cents=amount_paid_cents,
                change_due_cents=amount_paid_cents - amount_due,
                notes=notes,
                created_at=moment,
            )
            db.session.add(transaction)

            for line in priced:
                product = line.product
                levels[(product.id, location.id)].quantity -= line.quantity
                product.stock -= line.quantity

                transaction.items.append(TransactionItem(
                    product_id=product.id,
                    barcode=product.barcode,
                    name=product.name,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    unit_cost_cents=line.unit_cost_cents,
                    tax_rate_bps=tax_rate_bps,
                    tax_amount_cents=line.line_tax_cents,
                    line_total_cents=line.line_total_cents,
                    line_cost_cents=line.line_cost_cents,
                ))

            db.session.flush()
            loyalty_service.finalize(customer, transaction, adjustment)
    except (ValidationError, NotFoundError, InvalidStateError) as exc:
        current_app.logger.warning("Settlement rejected: %s", exc.message)
        raise

    current_app.logger.info(
        "Settled transaction %s: %d item(s), total %s cents, location %s",
        transaction.number, transaction.items_count, transaction.total_cents, transaction.location_id,
    )
    return transaction


def get_transaction_receipt(transaction_id: int) -> dict:
    """Transaction with its line items and loyalty ledger rows."""
    transaction = db.session.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", field="transaction_id")

    return {
        **transaction.to_dict(),
        "items": [item.to_dict() for item in transaction.items],
        "loyalty": [entry.to_dict() for entry in transaction.loyalty_transactions],
    }
