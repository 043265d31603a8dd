from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    Product.stock is a denormalized total of on-hand units across all
    locations. The per-location truth lives in StockLevel rows.
    - Settlement, adjustment and receiving change both stock and the ledger row
    - Transfers move units between ledger rows and never touch stock
    - stock must never go negative (CHECK constraint + service validation)

    Money is stored in cents (price_cents, cost_price_cents).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)

    barcode = db.Column(db.String(64), nullable=True, unique=True)
    supplier_sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    # NULL means "use the configured low-stock threshold"
    reorder_point = db.Column(db.Integer, nullable=True)
    reorder_quantity = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} barcode={self.barcode!r} name={self.name!r} stock={self.stock}>"

    def effective_reorder_point(self, fallback: int) -> int:
        return self.reorder_point if self.reorder_point is not None else fallback

    def is_below_reorder_point(self, fallback: int) -> bool:
        return self.stock <= self.effective_reorder_point(fallback)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "barcode": self.barcode,
            "supplier_sku": self.supplier_sku,
            "name": self.name,
            "stock": self.stock,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "reorder_point": self.reorder_point,
            "reorder_quantity": self.reorder_quantity,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLocation(db.Model):
    """A physical place stock is held (shop floor, back room, warehouse)."""
    __tablename__ = "inventory_locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<InventoryLocation id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_default": self.is_default,
            "created_at": to_utc_z(self.created_at),
        }


class StockLevel(db.Model):
    """
    Stock ledger row: on-hand quantity of one product at one location.

    LOCKING CONTRACT:
    Rows are only mutated through stock_service.lock_stock_levels(), which
    takes SELECT ... FOR UPDATE in ascending (product_id, location_id) order.
    Settlement, transfer, adjustment and receiving all go through it, so two
    writers contending on the same rows always lock them in the same order.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_stock_levels_product_location"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_levels_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = db.Column(
        db.Integer, db.ForeignKey("inventory_locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    product = db.relationship("Product", backref=db.backref("stock_levels", lazy=True))
    location = db.relationship("InventoryLocation", backref=db.backref("stock_levels", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def key(self) -> tuple[int, int]:
        return (self.product_id, self.location_id)

    def __repr__(self) -> str:
        return f"<StockLevel product_id={self.product_id} location_id={self.location_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransfer(db.Model):
    """
    Audit row for one completed location-to-location move.

    IMMUTABLE: Written once by transfer_service.transfer(), never updated.
    """
    __tablename__ = "inventory_transfers"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_inventory_transfers_quantity_positive"),
        db.Index("ix_inventory_transfers_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    source_location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False)
    destination_location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    product = db.relationship("Product")
    source_location = db.relationship("InventoryLocation", foreign_keys=[source_location_id])
    destination_location = db.relationship("InventoryLocation", foreign_keys=[destination_location_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "source_location_id": self.source_location_id,
            "destination_location_id": self.destination_location_id,
            "quantity": self.quantity,
            "user_id": self.user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryAdjustment(db.Model):
    """
    Audit row for a manual stock correction at one location.

    quantity_delta is signed (shrinkage negative, found stock positive).
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.CheckConstraint("quantity_delta <> 0", name="ck_inventory_adjustments_delta_non_zero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    product = db.relationship("Product")
    location = db.relationship("InventoryLocation")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "user_id": self.user_id,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
