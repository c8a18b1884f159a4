from __future__ import annotations

from ..extensions import db
from wms.time_utils import to_utc_z, utcnow


ADJUSTMENT_TYPES = ("increase", "decrease", "recount", "damage", "expiry", "theft", "correction")
ADJUSTMENT_REASONS = (
    "physical_count",
    "damaged_goods",
    "expired_goods",
    "theft_loss",
    "system_error",
    "supplier_error",
    "found_goods",
    "other",
)
TRANSFER_TYPES = ("internal", "external", "emergency", "rebalance")
TRANSFER_PRIORITIES = ("low", "normal", "high", "urgent")


class StockAdjustment(db.Model):
    """
    Reconciliation document between counted and system quantities.

    LIFECYCLE:
    1. draft: created, items editable
    2. pending: submitted for review, items still editable
    3. approved: reviewed by a user other than the creator
    4. applied: deltas written to Product.quantity with one StockMovement each
    5. cancelled: abandoned at any point before applied

    Totals (total_items, total_value_adjustment_cents) are recomputed from the
    items every time the item set changes.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.UniqueConstraint("adjustment_number", name="uq_stock_adjustments_number"),
        db.Index("ix_stock_adjustments_status_date", "status", "adjustment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "ADJ202401150001"
    adjustment_number = db.Column(db.String(32), nullable=False)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    # draft, pending, approved, applied, cancelled
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    adjustment_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    notes = db.Column(db.Text, nullable=True)

    total_items = db.Column(db.Integer, nullable=False, default=0)
    total_value_adjustment_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    applied_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse")
    location = db.relationship("Location")
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    items = db.relationship(
        "StockAdjustmentItem",
        back_populates="adjustment",
        cascade="all, delete-orphan",
        order_by="StockAdjustmentItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockAdjustment id={self.id} number={self.adjustment_number!r} status={self.status}>"

    def recalculate_totals(self) -> None:
        self.total_items = len(self.items)
        self.total_value_adjustment_cents = sum(item.value_adjustment_cents or 0 for item in self.items)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "adjustment_number": self.adjustment_number,
            "warehouse_id": self.warehouse_id,
            "location_id": self.location_id,
            "type": self.type,
            "reason": self.reason,
            "status": self.status,
            "adjustment_date": to_utc_z(self.adjustment_date),
            "notes": self.notes,
            "total_items": self.total_items,
            "total_value_adjustment_cents": self.total_value_adjustment_cents,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "applied_by_user_id": self.applied_by_user_id,
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_at": to_utc_z(self.approved_at),
            "applied_at": to_utc_z(self.applied_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class StockAdjustmentItem(db.Model):
    """
    One product line on an adjustment.

    quantity_adjustment = adjusted_quantity - current_quantity and
    value_adjustment_cents = quantity_adjustment * unit_cost_cents; both are
    recomputed by recalculate() before every flush that touches the line.
    """
    __tablename__ = "stock_adjustment_items"
    __table_args__ = (
        db.UniqueConstraint("stock_adjustment_id", "product_id", name="uq_adjustment_items_product"),
        db.CheckConstraint("current_quantity >= 0", name="ck_adjustment_items_current"),
        db.CheckConstraint("adjusted_quantity >= 0", name="ck_adjustment_items_adjusted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_adjustment_id = db.Column(db.Integer, db.ForeignKey("stock_adjustments.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    current_quantity = db.Column(db.Integer, nullable=False)
    adjusted_quantity = db.Column(db.Integer, nullable=False)
    quantity_adjustment = db.Column(db.Integer, nullable=False, default=0)

    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    value_adjustment_cents = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    adjustment = db.relationship("StockAdjustment", back_populates="items")
    product = db.relationship("Product")

    def recalculate(self) -> None:
        self.quantity_adjustment = self.adjusted_quantity - self.current_quantity
        self.value_adjustment_cents = self.quantity_adjustment * (self.unit_cost_cents or 0)

    @property
    def adjustment_type(self) -> str:
        if self.quantity_adjustment > 0:
            return "increase"
        if self.quantity_adjustment < 0:
            return "decrease"
        return "no_change"

    @property
    def variance_percentage(self) -> float:
        if self.current_quantity == 0:
            return 100.0 if self.adjusted_quantity > 0 else 0.0
        return round(self.quantity_adjustment / self.current_quantity * 100, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_adjustment_id": self.stock_adjustment_id,
            "product_id": self.product_id,
            "current_quantity": self.current_quantity,
            "adjusted_quantity": self.adjusted_quantity,
            "quantity_adjustment": self.quantity_adjustment,
            "unit_cost_cents": self.unit_cost_cents,
            "value_adjustment_cents": self.value_adjustment_cents,
            "adjustment_type": self.adjustment_type,
            "variance_percentage": self.variance_percentage,
            "reason": self.reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class StockTransfer(db.Model):
    """
    Movement of stock between two (warehouse, location) pairs.

    LIFECYCLE:
    1. draft: created, items editable
    2. pending: approved for shipping, items still editable
    3. in_transit: shipped; source availability verified at start
    4. completed: received; source decremented and destination credited,
       two StockMovement rows per item (transfer_out, transfer_in)
    5. cancelled: abandoned at any point before completed
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("transfer_number", name="uq_stock_transfers_number"),
        db.Index("ix_stock_transfers_status_date", "status", "transfer_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "TR2024010001"
    transfer_number = db.Column(db.String(32), nullable=False)

    from_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    to_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    # draft, pending, in_transit, completed, cancelled
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    type = db.Column(db.String(16), nullable=False, default="internal")
    priority = db.Column(db.String(16), nullable=False, default="normal")

    transfer_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    tracking_number = db.Column(db.String(128), nullable=True)
    carrier = db.Column(db.String(128), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    receiving_notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    total_items = db.Column(db.Integer, nullable=False, default=0)
    total_quantity = db.Column(db.Integer, nullable=False, default=0)
    total_value_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    shipped_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    from_warehouse = db.relationship("Warehouse", foreign_keys=[from_warehouse_id])
    to_warehouse = db.relationship("Warehouse", foreign_keys=[to_warehouse_id])
    from_location = db.relationship("Location", foreign_keys=[from_location_id])
    to_location = db.relationship("Location", foreign_keys=[to_location_id])
    items = db.relationship(
        "StockTransferItem",
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="StockTransferItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockTransfer id={self.id} number={self.transfer_number!r} status={self.status}>"

    @property
    def is_overdue(self) -> bool:
        if self.expected_date is None or self.status in ("completed", "cancelled"):
            return False
        return self.expected_date < utcnow()

    def recalculate_totals(self) -> None:
        self.total_items = len(self.items)
        self.total_quantity = sum(item.quantity for item in self.items)
        self.total_value_cents = sum(
            item.quantity * (item.unit_cost_cents or 0) for item in self.items
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transfer_number": self.transfer_number,
            "from_warehouse_id": self.from_warehouse_id,
            "from_location_id": self.from_location_id,
            "to_warehouse_id": self.to_warehouse_id,
            "to_location_id": self.to_location_id,
            "status": self.status,
            "type": self.type,
            "priority": self.priority,
            "transfer_date": to_utc_z(self.transfer_date),
            "expected_date": to_utc_z(self.expected_date),
            "shipped_at": to_utc_z(self.shipped_at),
            "completed_date": to_utc_z(self.completed_date),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "reason": self.reason,
            "notes": self.notes,
            "receiving_notes": self.receiving_notes,
            "cancellation_reason": self.cancellation_reason,
            "total_items": self.total_items,
            "total_quantity": self.total_quantity,
            "total_value_cents": self.total_value_cents,
            "is_overdue": self.is_overdue,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "shipped_by_user_id": self.shipped_by_user_id,
            "received_by_user_id": self.received_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class StockTransferItem(db.Model):
    __tablename__ = "stock_transfer_items"
    __table_args__ = (
        db.UniqueConstraint("stock_transfer_id", "product_id", name="uq_transfer_items_product"),
        db.CheckConstraint("quantity > 0", name="ck_transfer_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=True)

    # Cost snapshot taken when the line is written
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transfer = db.relationship("StockTransfer", back_populates="items")
    product = db.relationship("Product")

    @property
    def pending_quantity(self) -> int:
        return self.quantity - (self.quantity_received or 0)

    @property
    def status(self) -> str:
        received = self.quantity_received or 0
        if received <= 0:
            return "pending"
        if received < self.quantity:
            return "partial"
        return "completed"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_transfer_id": self.stock_transfer_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "quantity_received": self.quantity_received,
            "pending_quantity": self.pending_quantity,
            "status": self.status,
            "unit_cost_cents": self.unit_cost_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type, per-period document sequences.

    WHY: Prevent two concurrent requests from allocating the same
    adjustment / transfer / sale / invoice number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    # "20240115" for daily sequences, "202401" for monthly, "" for unbounded
    period = db.Column(db.String(16), nullable=False, default="")
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
