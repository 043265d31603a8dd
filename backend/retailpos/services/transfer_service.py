"""
Location-to-location inventory transfer.

WHY: Move on-hand units of one product between two inventory locations
without changing the product's total stock. Each transfer is immediate
(no approval workflow) and leaves one InventoryTransfer audit row.

INVARIANTS:
- source quantity decreases by exactly `quantity`, destination increases by it
- Product.stock is never touched
- the source ledger row never goes negative
- both ledger rows are locked (ascending key order) before the source
  quantity is read
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import InventoryTransfer, Product
from ..validation import NotFoundError, ValidationError, clean_text, require_int
from .concurrency import atomic_unit
from .stock_service import get_location, lock_stock_levels


INSUFFICIENT_SOURCE_MESSAGE = "The source location does not have enough on-hand quantity for this transfer."


def transfer(
    *,
    product_id: int,
    source_location_id: int,
    destination_location_id: int,
    quantity: int,
    user_id: int,
    notes: str | None = None,
) -> InventoryTransfer:
    """
    Move `quantity` units of a product from one location to another.

    Raises:
        ValidationError: bad quantity, same source and destination, or the
            source holds fewer than `quantity` units
        NotFoundError: unknown product or location
        StorageFailure: data store error (retryable for lock conflicts)
    """
    product_id = require_int(product_id, "product_id", minimum=1)
    source_location_id = require_int(source_location_id, "source_location_id", minimum=1)
    destination_location_id = require_int(destination_location_id, "destination_location_id", minimum=1)
    quantity = require_int(quantity, "quantity")
    user_id = require_int(user_id, "user_id", minimum=1)
    notes = clean_text(notes, "notes", max_length=1000)

    if quantity < 1:
        raise ValidationError("quantity must be at least 1", field="quantity")
    if source_location_id == destination_location_id:
        raise ValidationError(
            "Source and destination locations must be different.", field="destination_location_id"
        )

    try:
        with atomic_unit("Inventory transfer"):
            if db.session.get(Product, product_id) is None:
                raise NotFoundError(f"Product {product_id} not found", field="product_id")
            get_location(source_location_id, field="source_location_id")
            get_location(destination_location_id, field="destination_location_id")

            source_key = (product_id, source_location_id)
            destination_key = (product_id, destination_location_id)
            levels = lock_stock_levels([source_key], create_missing=[destination_key])

            source = levels.get(source_key)
            on_hand = source.quantity if source is not None else 0
            if on_hand < quantity:
                raise ValidationError(
                    INSUFFICIENT_SOURCE_MESSAGE,
                    field="quantity",
                    details={"on_hand": on_hand, "requested_quantity": quantity},
                )

            source.quantity -= quantity
            levels[destination_key].quantity += quantity

            record = InventoryTransfer(
                product_id=product_id,
                source_location_id=source_location_id,
                destination_location_id=destination_location_id,
                quantity=quantity,
                user_id=user_id,
                notes=notes,
            )
            db.session.add(record)
            db.session.flush()
    except (ValidationError, NotFoundError) as exc:
        current_app.logger.warning("Inventory transfer rejected: %s", exc.message)
        raise

    current_app.logger.info(
        "Transferred %d unit(s) of product %s from location %s to %s (user %s)",
        quantity, product_id, source_location_id, destination_location_id, user_id,
    )
    return record


def recent_transfers(limit: int = 50) -> list[InventoryTransfer]:
    """Newest transfers first."""
    limit = require_int(limit, "limit", minimum=1)
    return (
        db.session.query(InventoryTransfer)
        .order_by(InventoryTransfer.created_at.desc(), InventoryTransfer.id.desc())
        .limit(limit)
        .all()
    )
