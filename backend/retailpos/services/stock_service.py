# Overview: Stock ledger repository; per (product, location) on-hand rows and their locking contract.

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryAdjustment, InventoryLocation, Product, StockLevel
from ..validation import NotFoundError, ValidationError, clean_text, require_int
from .concurrency import atomic_unit, lock_for_update
"""
Stock Ledger Invariants (authoritative)

- StockLevel.quantity is the on-hand quantity of one product at one location; never negative.
- Product.stock is the denormalized total; it equals SUM(StockLevel.quantity) for the product.
- Writers (settlement, transfer, adjustment, receiving) lock every row they touch
  before reading the quantity they decide on, and hold the lock until the unit commits.
- Lock order is fixed: products by ascending id, then ledger rows by ascending
  (product_id, location_id). Readers never lock.
"""


def get_location(location_id: int, *, field: str = "location_id") -> InventoryLocation:
    location = db.session.get(InventoryLocation, location_id)
    if location is None:
        raise NotFoundError(f"Inventory location {location_id} not found", field=field)
    return location


def get_default_location() -> InventoryLocation:
    location = (
        db.session.query(InventoryLocation)
        .filter(InventoryLocation.is_default.is_(True))
        .order_by(InventoryLocation.id.asc())
        .first()
    )
    if location is None:
        raise NotFoundError("No default inventory location is configured", field="location_id")
    return location


def get_stock_level(product_id: int, location_id: int) -> StockLevel | None:
    """Read-only lookup; takes no lock."""
    return db.session.query(StockLevel).filter_by(product_id=product_id, location_id=location_id).first()


def location_quantity(product_id: int, location_id: int) -> int:
    level = get_stock_level(product_id, location_id)
    return level.quantity if level is not None else 0


def ledger_total(product_id: int) -> int:
    """SUM of ledger quantities across every location for one product."""
    total = (
        db.session.query(func.coalesce(func.sum(StockLevel.quantity), 0))
        .filter(StockLevel.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def stock_summary(product_id: int) -> dict:
    """Per-location breakdown next to the denormalized total."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", field="product_id")

    levels = (
        db.session.query(StockLevel)
        .filter_by(product_id=product_id)
        .order_by(StockLevel.location_id.asc())
        .all()
    )
    total = sum(level.quantity for level in levels)
    return {
        "product_id": product.id,
        "name": product.name,
        "stock": product.stock,
        "ledger_total": total,
        "in_sync": total == product.stock,
        "levels": [level.to_dict() for level in levels],
    }


def lock_products(product_ids: Iterable[int], *, field: str = "product_id") -> dict[int, Product]:
    """
    Lock product rows in ascending id order.

    Raises NotFoundError for the first id that does not exist.
    """
    products: dict[int, Product] = {}
    for product_id in sorted(set(product_ids)):
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", field=field, details={"product_id": product_id})
        products[product_id] = product
    return products


def _create_stock_level(product_id: int, location_id: int) -> StockLevel | None:
    """
    Insert a zero-quantity ledger row inside a savepoint.

    Returns None when a concurrent unit inserted the same (product, location)
    first; the caller then locks the committed row instead. FOR UPDATE cannot
    lock a row that does not exist yet, so the unique constraint arbitrates.
    """
    savepoint = db.session.begin_nested()
    try:
        level = StockLevel(product_id=product_id, location_id=location_id, quantity=0)
        db.session.add(level)
        db.session.flush()
        savepoint.commit()
        return level
    except IntegrityError:
        savepoint.rollback()
        current_app.logger.info(
            "Stock level for product %s at location %s was created concurrently", product_id, location_id
        )
        return None


def lock_stock_levels(
    keys: Iterable[tuple[int, int]],
    *,
    create_missing: Iterable[tuple[int, int]] = (),
) -> dict[tuple[int, int], StockLevel]:
    """
    Lock ledger rows in ascending (product_id, location_id) order.

    Keys listed in create_missing get a zero-quantity row when absent; other
    absent keys are simply missing from the result. Must run inside an atomic
    unit so the locks are held until commit.
    """
    creatable = set(create_missing)
    levels: dict[tuple[int, int], StockLevel] = {}

    for product_id, location_id in sorted(set(keys) | creatable):
        query = db.session.query(StockLevel).filter_by(product_id=product_id, location_id=location_id)
        level = lock_for_update(query).first()

        if level is None and (product_id, location_id) in creatable:
            level = _create_stock_level(product_id, location_id)
            if level is None:
                level = lock_for_update(query).one()

        if level is not None:
            levels[(product_id, location_id)] = level

    return levels


def low_stock_query(threshold: int):
    """Products at or below their reorder point (threshold when none is set)."""
    effective_reorder_point = func.coalesce(Product.reorder_point, threshold)
    return db.session.query(Product).filter(Product.stock <= effective_reorder_point)


def low_stock_products(threshold: int, *, limit: int | None = None) -> list[Product]:
    query = low_stock_query(threshold).order_by(Product.stock.asc(), Product.name.asc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def _validate_adjustments(adjustments) -> list[dict]:
    if not isinstance(adjustments, (list, tuple)) or not adjustments:
        raise ValidationError("Provide at least one adjustment", field="adjustments")

    cleaned = []
    for index, payload in enumerate(adjustments):
        if not isinstance(payload, dict):
            raise ValidationError(f"adjustments[{index}] must be an object", field="adjustments")
        product_id = require_int(payload.get("product_id"), f"adjustments[{index}].product_id", minimum=1)
        delta = require_int(payload.get("quantity_delta"), f"adjustments[{index}].quantity_delta")
        if delta == 0:
            raise ValidationError(
                f"adjustments[{index}].quantity_delta must be non-zero",
                field=f"adjustments[{index}].quantity_delta",
            )
        reason = clean_text(payload.get("reason"), f"adjustments[{index}].reason", max_length=255)
        if reason is None:
            raise ValidationError(f"adjustments[{index}].reason is required", field=f"adjustments[{index}].reason")
        cleaned.append({
            "product_id": product_id,
            "quantity_delta": delta,
            "reason": reason,
            "notes": clean_text(payload.get("notes"), f"adjustments[{index}].notes"),
        })
    return cleaned


def adjust_inventory(*, location_id: int, adjustments, user_id: int) -> list[InventoryAdjustment]:
    """
    Apply manual stock corrections at one location.

    Each adjustment changes the location's ledger row and the product's
    denormalized stock by quantity_delta and appends an InventoryAdjustment
    audit row. The whole batch is one atomic unit: a delta that would take
    either quantity below zero aborts every adjustment in the batch.
    """
    location_id = require_int(location_id, "location_id", minimum=1)
    user_id = require_int(user_id, "user_id", minimum=1)
    cleaned = _validate_adjustments(adjustments)

    with atomic_unit("Inventory adjustment"):
        get_location(location_id)
        products = lock_products((row["product_id"] for row in cleaned), field="adjustments")
        levels = lock_stock_levels(
            (),
            create_missing=[(row["product_id"], location_id) for row in cleaned],
        )

        records = []
        for row in cleaned:
            product = products[row["product_id"]]
            level = levels[(product.id, location_id)]
            delta = row["quantity_delta"]

            if level.quantity + delta < 0 or product.stock + delta < 0:
                raise ValidationError(
                    f"Adjustment would make stock of {product.name} negative.",
                    field="adjustments",
                    details={
                        "product_id": product.id,
                        "location_quantity": level.quantity,
                        "stock": product.stock,
                        "quantity_delta": delta,
                    },
                )

            level.quantity += delta
            product.stock += delta

            record = InventoryAdjustment(
                product_id=product.id,
                location_id=location_id,
                user_id=user_id,
                quantity_delta=delta,
                reason=row["reason"],
                notes=row["notes"],
            )
            db.session.add(record)
            records.append(record)

        db.session.flush()

    current_app.logger.info(
        "Applied %d inventory adjustment(s) at location %s by user %s",
        len(records), location_id, user_id,
    )
    return records
