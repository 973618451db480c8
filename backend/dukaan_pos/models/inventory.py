from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

REASON_RESTOCK = "restock"
REASON_SALE = "sale"
REASON_ADJUSTMENT = "adjustment"
DELTA_REASONS = (REASON_RESTOCK, REASON_SALE, REASON_ADJUSTMENT)


class InventoryDelta(db.Model):
    """
    Append-only stock log. SUM(delta) per SKU is the authoritative on-hand
    quantity; nothing stores a mutable count. Rows are never updated or
    deleted, a void appends a compensating adjustment instead.
    """
    __tablename__ = "inventory_deltas"
    __table_args__ = (
        db.Index("ix_inventory_deltas_sku_id", "sku", "id"),
        db.CheckConstraint("delta != 0", name="ck_inventory_deltas_nonzero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), db.ForeignKey("products.sku"), nullable=False)
    delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(16), nullable=False, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "delta": self.delta,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
            "invoice_id": self.invoice_id,
            "note": self.note,
        }
