from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z

STATUS_COMMITTED = "COMMITTED"
STATUS_VOIDED = "VOIDED"


class Invoice(db.Model):
    """
    Committed invoice. DRAFT carts live in memory and only reach this table
    on commit; from then on the row is immutable except for the terminal
    COMMITTED -> VOIDED transition.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_store_created", "store_id", "created_at"),
        db.CheckConstraint("total_cents = subtotal_cents + tax_cents", name="ck_invoices_total"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.String(32), nullable=False, unique=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_COMMITTED, index=True)

    # Opaque identities supplied by the calling layer
    cashier_id = db.Column(db.String(64), nullable=False, index=True)
    store_id = db.Column(db.String(64), nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        order_by="InvoiceLine.line_no",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def number(self) -> str:
        return f"INV-{self.id:06d}"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "status": self.status,
            "cashier_id": self.cashier_id,
            "store_id": self.store_id,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "subtotal": format_cents(self.subtotal_cents),
            "tax": format_cents(self.tax_cents),
            "total": format_cents(self.total_cents),
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """Line snapshot: price and tax rate as they were when the SKU was scanned."""
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_no", name="uq_invoice_lines_invoice_line_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)

    sku = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "line_no": self.line_no,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "line_total_cents": self.line_total_cents,
            "tax_cents": self.tax_cents,
        }
