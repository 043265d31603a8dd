from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


LOYALTY_TYPE_EARN = "earn"
LOYALTY_TYPE_REDEEM = "redeem"


class Customer(db.Model):
    """
    Customer master data and cached loyalty balance.

    loyalty_points is the fast-path source of truth for the balance. It is
    mutated only by loyalty_service.finalize(), always together with an
    appended CustomerLoyaltyTransaction row.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("loyalty_number", name="uq_customers_loyalty_number"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_loyalty_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    loyalty_number = db.Column(db.String(64), nullable=True)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    enrolled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} loyalty_points={self.loyalty_points}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "loyalty_number": self.loyalty_number,
            "loyalty_points": self.loyalty_points,
            "enrolled_at": to_utc_z(self.enrolled_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerLoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    TRANSACTION TYPES:
    - earn: points earned from a settlement (points_change > 0)
    - redeem: points spent against a settlement (points_change < 0)

    points_balance is the customer balance right after this row.
    transaction_id is a weak back-reference: nulled if the transaction is
    removed, never cascaded to the customer.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "customer_loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, index=True
    )

    type = db.Column(db.String(16), nullable=False, index=True)  # earn, redeem
    points_change = db.Column(db.Integer, nullable=False)
    points_balance = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    customer = db.relationship(
        "Customer",
        backref=db.backref("loyalty_transactions", lazy=True, cascade="all, delete-orphan"),
    )
    transaction = db.relationship("Transaction", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_id": self.transaction_id,
            "type": self.type,
            "points_change": self.points_change,
            "points_balance": self.points_balance,
            "amount_cents": self.amount_cents,
            "created_at": to_utc_z(self.created_at),
        }
