from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..time_utils import end_of_day, to_utc_z, utcnow


PO_STATUS_DRAFT = "draft"
PO_STATUS_ORDERED = "ordered"
PO_STATUS_PARTIAL = "partial"
PO_STATUS_RECEIVED = "received"
PO_STATUS_CANCELLED = "cancelled"

RECEIVABLE_STATUSES = (PO_STATUS_ORDERED, PO_STATUS_PARTIAL)


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_email = db.Column(db.String(255), nullable=True)
    lead_time_days = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_email": self.contact_email,
            "lead_time_days": self.lead_time_days,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrder(db.Model):
    """
    Purchase order from a supplier.

    LIFECYCLE:
    draft -> ordered -> partial -> received (cancelled before receiving)

    received_at is set only when every item is fully received; it is the
    timestamp supplier on-time metrics compare against expected_date.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(64), nullable=False, unique=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=PO_STATUS_DRAFT, index=True)

    expected_date = db.Column(db.Date, nullable=True)
    ordered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )

    @property
    def is_receivable(self) -> bool:
        return self.status in RECEIVABLE_STATUSES

    @property
    def total_quantity_ordered(self) -> int:
        return sum(item.quantity_ordered for item in self.items)

    @property
    def total_quantity_received(self) -> int:
        return sum(item.quantity_received or 0 for item in self.items)

    @property
    def outstanding_quantity(self) -> int:
        return max(self.total_quantity_ordered - self.total_quantity_received, 0)

    @property
    def fulfillment_rate(self) -> float | None:
        ordered = self.total_quantity_ordered
        if ordered <= 0:
            return None
        return round(min(self.total_quantity_received / ordered, 1), 4)

    @property
    def actual_lead_time_days(self) -> float | None:
        if self.ordered_at is None or self.received_at is None:
            return None
        return round((self.received_at - self.ordered_at).total_seconds() / 86400, 2)

    def schedule_variance_days(self, now: datetime | None = None) -> float | None:
        """
        Days between expected date and delivery, both taken at end of day.

        <= 0 means on time. Orders not yet received are measured against `now`.
        """
        if self.expected_date is None:
            return None
        expected = end_of_day(datetime.combine(self.expected_date, datetime.min.time()))
        comparison = end_of_day(self.received_at or now or utcnow())
        return round((comparison - expected).total_seconds() / 86400, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "supplier_id": self.supplier_id,
            "status": self.status,
            "expected_date": self.expected_date.isoformat() if self.expected_date else None,
            "ordered_at": to_utc_z(self.ordered_at),
            "received_at": to_utc_z(self.received_at),
            "total_cost_cents": self.total_cost_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.CheckConstraint("quantity_received <= quantity_ordered", name="ck_po_items_not_over_received"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(
        db.Integer, db.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity_ordered = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    @property
    def remaining_quantity(self) -> int:
        return max(self.quantity_ordered - (self.quantity_received or 0), 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "quantity_ordered": self.quantity_ordered,
            "quantity_received": self.quantity_received,
            "unit_cost_cents": self.unit_cost_cents,
        }
