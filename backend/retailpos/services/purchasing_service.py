"""
Purchase order receiving.

Receiving is the only path that adds new units to the store: each received
quantity increments the order item, the product's total stock and the
ledger row of the receiving location in one atomic unit.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import PurchaseOrder
from ..models.purchasing import PO_STATUS_PARTIAL, PO_STATUS_RECEIVED
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, require_int
from .concurrency import atomic_unit, lock_for_update
from .stock_service import get_location, lock_products, lock_stock_levels


def _validate_items(items) -> list[tuple[int, int]]:
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Provide at least one item to receive", field="items")

    cleaned = []
    for index, payload in enumerate(items):
        if not isinstance(payload, dict):
            raise ValidationError(f"items[{index}] must be an object", field="items")
        item_id = require_int(payload.get("id"), f"items[{index}].id", minimum=1)
        quantity = require_int(payload.get("quantity_received"), f"items[{index}].quantity_received", minimum=0)
        cleaned.append((item_id, quantity))
    return cleaned


def receive_purchase_order(
    purchase_order_id: int,
    *,
    location_id: int,
    items,
    now: datetime | None = None,
) -> PurchaseOrder:
    """
    Receive goods against an ordered or partially received purchase order.

    Args:
        items: [{"id": <purchase order item id>, "quantity_received": int}, ...]

    Quantities are clamped to what is still outstanding on each item; ids
    that do not belong to the order are skipped. The order becomes
    "received" (with received_at) once nothing is outstanding, otherwise
    "partial".

    Raises:
        ValidationError: order not receivable, or nothing was received
        NotFoundError: unknown order or location
    """
    purchase_order_id = require_int(purchase_order_id, "purchase_order_id", minimum=1)
    location_id = require_int(location_id, "location_id", minimum=1)
    requested = _validate_items(items)
    moment = now or utcnow()

    with atomic_unit("Purchase order receiving"):
        order = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=purchase_order_id)).first()
        if order is None:
            raise NotFoundError(f"Purchase order {purchase_order_id} not found", field="purchase_order_id")
        if not order.is_receivable:
            raise ValidationError(
                f"Purchase order {order.reference} cannot be received in {order.status} status.",
                field="status",
            )
        get_location(location_id)

        items_by_id = {item.id: item for item in order.items}
        receipts: dict[int, int] = {}
        for item_id, quantity in requested:
            item = items_by_id.get(item_id)
            if item is None:
                continue
            already = receipts.get(item_id, 0)
            receive_quantity = min(item.remaining_quantity - already, quantity)
            if receive_quantity > 0:
                receipts[item_id] = already + receive_quantity

        if not receipts:
            raise ValidationError("No items were received for this purchase order.", field="items")

        product_ids = {items_by_id[item_id].product_id for item_id in receipts}
        products = lock_products(product_ids, field="items")
        levels = lock_stock_levels((), create_missing=[(product_id, location_id) for product_id in product_ids])

        for item_id, quantity in receipts.items():
            item = items_by_id[item_id]
            item.quantity_received = (item.quantity_received or 0) + quantity
            products[item.product_id].stock += quantity
            levels[(item.product_id, location_id)].quantity += quantity

        if any(item.remaining_quantity > 0 for item in order.items):
            order.status = PO_STATUS_PARTIAL
            order.received_at = None
        else:
            order.status = PO_STATUS_RECEIVED
            order.received_at = moment

        db.session.flush()

    current_app.logger.info(
        "Received %d unit(s) on purchase order %s at location %s (status %s)",
        sum(receipts.values()), order.reference, location_id, order.status,
    )
    return order
