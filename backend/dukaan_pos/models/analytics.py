from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

EVENT_COMMITTED = "invoice.committed"
EVENT_VOIDED = "invoice.voided"

GRANULARITIES = ("hour", "day", "month")

# Dimension value used on invoice-level buckets, which are not split by SKU.
# Blank, so it can never collide with a catalog SKU (those are non-blank).
ALL_SKUS = ""


class InvoiceEvent(db.Model):
    """
    Durable, commit-ordered event log (outbox).

    Rows are written in the same DB transaction as the invoice commit or void
    they describe. id order is commit order; replaying every row from an empty
    state must reproduce the live rollups exactly.
    """
    __tablename__ = "invoice_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    # Business time of the original sale. Void events carry the sale's time so
    # the reversal lands in the same windows.
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    payload = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    ingested_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    def payload_dict(self) -> dict:
        return json.loads(self.payload)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "invoice_id": self.invoice_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "payload": self.payload_dict(),
            "created_at": to_utc_z(self.created_at),
            "ingested_at": to_utc_z(self.ingested_at) if self.ingested_at else None,
        }


class RollupBucket(db.Model):
    """
    Pre-aggregated totals keyed by (granularity, window_start, store, cashier, sku).

    sku == ALL_SKUS ("") rows hold whole-invoice contributions; per-SKU rows hold the
    contribution of that SKU's lines only, so invoice counts are never double
    counted when no SKU filter is given.
    """
    __tablename__ = "rollup_buckets"
    __table_args__ = (
        db.UniqueConstraint(
            "granularity", "window_start", "store_id", "cashier_id", "sku",
            name="uq_rollup_buckets_key",
        ),
        db.Index("ix_rollup_buckets_window", "granularity", "window_start"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    granularity = db.Column(db.String(8), nullable=False)
    window_start = db.Column(db.DateTime(timezone=True), nullable=False)
    store_id = db.Column(db.String(64), nullable=False)
    cashier_id = db.Column(db.String(64), nullable=False)
    sku = db.Column(db.String(64), nullable=False)

    invoice_count = db.Column(db.Integer, nullable=False, default=0)
    void_count = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
