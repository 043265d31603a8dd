from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_BANK_TRANSFER = "bank_transfer"
PAYMENT_E_WALLET = "e_wallet"
PAYMENT_OTHER = "other"

PAYMENT_METHODS = (
    PAYMENT_CASH,
    PAYMENT_CARD,
    PAYMENT_BANK_TRANSFER,
    PAYMENT_E_WALLET,
    PAYMENT_OTHER,
)


class Transaction(db.Model):
    """
    Committed sale (settlement result).

    IMMUTABLE: Created exactly once per checkout by checkout_service.settle();
    never updated or deleted by the core. All amounts are cents, ppn_rate_bps is
    the tax rate snapshot in hundredths of a percent.

    AMOUNTS:
    total = subtotal + tax_total - discount_total
    amount_due = total - loyalty_redemption (what the customer pays)
    change_due = amount_paid - amount_due
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_transactions_number"),
        db.Index("ix_transactions_created", "created_at"),
        db.Index("ix_transactions_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "TRX-20251020-141503-X7QK")
    number = db.Column(db.String(32), nullable=False)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=True, index=True)

    items_count = db.Column(db.Integer, nullable=False, default=0)
    ppn_rate_bps = db.Column(db.Integer, nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_total_cents = db.Column(db.Integer, nullable=False)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=True)  # bps for percentage, cents for value
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_redemption_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_due_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("transactions", lazy=True))
    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransactionItem.id",
    )

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} number={self.number!r} total_cents={self.total_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "location_id": self.location_id,
            "items_count": self.items_count,
            "ppn_rate_bps": self.ppn_rate_bps,
            "subtotal_cents": self.subtotal_cents,
            "tax_total_cents": self.tax_total_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_total_cents": self.discount_total_cents,
            "loyalty_redemption_cents": self.loyalty_redemption_cents,
            "loyalty_points_redeemed": self.loyalty_points_redeemed,
            "loyalty_points_earned": self.loyalty_points_earned,
            "total_cents": self.total_cents,
            "amount_due_cents": self.amount_due_cents,
            "payment_method": self.payment_method,
            "amount_paid_cents": self.amount_paid_cents,
            "change_due_cents": self.change_due_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class TransactionItem(db.Model):
    """
    Line item of a committed transaction.

    barcode/name/unit_price/unit_cost are snapshots taken at settlement so
    historical reports are unaffected by later product edits.
    """
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_transaction_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    barcode = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    tax_amount_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    line_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    @property
    def line_subtotal_cents(self) -> int:
        return self.line_total_cents - self.tax_amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "barcode": self.barcode,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_amount_cents": self.tax_amount_cents,
            "line_total_cents": self.line_total_cents,
            "line_cost_cents": self.line_cost_cents,
        }
