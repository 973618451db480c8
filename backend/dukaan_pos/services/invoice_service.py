# Overview: Invoice engine: DRAFT carts built from scans, atomic commit
# against the inventory ledger, and voids with compensating deltas.

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable

from flask import current_app

from ..errors import InsufficientStock, InvalidTransition, NotFound, StaleReservation
from ..extensions import db
from ..models import Invoice, InvoiceLine, InvoiceEvent
from ..models.analytics import EVENT_COMMITTED, EVENT_VOIDED
from ..models.inventory import REASON_ADJUSTMENT
from ..models.invoices import STATUS_COMMITTED, STATUS_VOIDED
from ..money import compute_totals, format_cents, line_subtotal_cents, line_tax_cents
from ..time_utils import to_utc_z, utcnow
from .catalog_service import Catalog
from .concurrency import KeyedLocks, lock_for_update
from .event_service import EventBus, InvoiceEventMessage, record_event
from .inventory_service import DeltaSpec, InventoryLedger, Reservation

"""
Invoice lifecycle (authoritative)

DRAFT (in-memory cart) -> COMMITTED (invoices row) -> VOIDED (terminal)

- add_line snapshots price and tax rate and holds stock for the line.
- commit converts every hold to a sale delta, writes the invoice and its
  event in one transaction, or changes nothing and leaves the cart DRAFT.
- void appends compensating adjustment deltas and a negative event; history
  is never deleted.
- A cart that is not committed releases its holds on every exit path
  (cart_scope). Idle carts are abandoned by expire_idle_carts(), which
  open_cart() also runs at most once per idle timeout.
"""

CART_DRAFT = "DRAFT"
CART_COMMITTED = "COMMITTED"
CART_ABANDONED = "ABANDONED"


@dataclass(frozen=True)
class CartLine:
    id: str
    sku: str
    name: str
    quantity: int
    unit_price_cents: int
    tax_rate_bps: int
    reservation: Reservation

    @property
    def line_total_cents(self) -> int:
        return line_subtotal_cents(self.unit_price_cents, self.quantity)

    @property
    def tax_cents(self) -> int:
        return line_tax_cents(self.unit_price_cents, self.quantity, self.tax_rate_bps)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "line_total_cents": self.line_total_cents,
            "tax_cents": self.tax_cents,
            "line_total": format_cents(self.line_total_cents),
            "reservation_expires_at": to_utc_z(self.reservation.expires_at),
        }


@dataclass
class Cart:
    id: str
    created_at: datetime
    touched_at: datetime
    status: str = CART_DRAFT
    lines: list[CartLine] = field(default_factory=list)
    invoice_id: int | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def totals(self):
        return compute_totals((l.unit_price_cents, l.quantity, l.tax_rate_bps) for l in self.lines)

    def to_dict(self) -> dict:
        totals = self.totals()
        return {
            "id": self.id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "invoice_id": self.invoice_id,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal_cents": totals.subtotal_cents,
            "tax_cents": totals.tax_cents,
            "total_cents": totals.total_cents,
            "subtotal": format_cents(totals.subtotal_cents),
            "tax": format_cents(totals.tax_cents),
            "total": format_cents(totals.total_cents),
        }


class InvoiceEngine:
    def __init__(
        self,
        catalog: Catalog,
        ledger: InventoryLedger,
        bus: EventBus,
        *,
        cart_idle_timeout: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.catalog = catalog
        self.ledger = ledger
        self.bus = bus
        self.cart_idle_timeout = cart_idle_timeout
        self.clock = clock
        self._carts: dict[str, Cart] = {}
        self._carts_lock = threading.Lock()
        self._last_sweep: datetime | None = None
        self._invoice_locks = KeyedLocks()

    # -- carts -----------------------------------------------------------------

    def open_cart(self) -> Cart:
        now = self.clock()
        self._sweep_if_due(now)
        cart = Cart(id=uuid.uuid4().hex, created_at=now, touched_at=now)
        with self._carts_lock:
            self._carts[cart.id] = cart
        return cart

    def _sweep_if_due(self, now: datetime) -> None:
        """Abandon idle carts at most once per idle timeout, piggybacking on new carts."""
        with self._carts_lock:
            due = self._last_sweep is None or now - self._last_sweep >= self.cart_idle_timeout
            if due:
                self._last_sweep = now
        if due:
            expired = self.expire_idle_carts(now)
            if expired:
                current_app.logger.info("Idle cart sweep abandoned %d cart(s)", len(expired))

    def get_cart(self, cart_id: str) -> Cart:
        with self._carts_lock:
            cart = self._carts.get(cart_id)
        if cart is None:
            raise NotFound("Cart not found", details={"cart_id": cart_id})
        return cart

    def _require_draft(self, cart: Cart) -> None:
        if cart.status != CART_DRAFT:
            raise InvalidTransition(
                f"Cart is {cart.status}, only DRAFT carts can change",
                details={"cart_id": cart.id, "status": cart.status},
            )

    @contextmanager
    def cart_scope(self):
        """Open a cart that is abandoned (holds released) unless committed inside the block."""
        cart = self.open_cart()
        try:
            yield cart
        finally:
            if cart.status == CART_DRAFT:
                self.abandon(cart.id)

    def preview_line(self, sku: str, quantity: int = 1) -> dict:
        """Price a scan without holding stock."""
        entry = self.catalog.lookup(sku)
        available = self.ledger.available(sku)
        if available < quantity:
            raise InsufficientStock(
                "Insufficient stock",
                details={"sku": sku, "requested_quantity": quantity, "available": available},
            )
        subtotal = line_subtotal_cents(entry.unit_price_cents, quantity)
        tax = line_tax_cents(entry.unit_price_cents, quantity, entry.tax_rate_bps)
        line = entry.to_dict()
        line.update({
            "quantity": quantity,
            "line_total_cents": subtotal,
            "tax_cents": tax,
            "line_total": format_cents(subtotal),
            "available": available,
        })
        return line

    def add_line(self, cart_id: str, sku: str, quantity: int = 1) -> CartLine:
        cart = self.get_cart(cart_id)
        with cart.lock:
            self._require_draft(cart)
            entry = self.catalog.lookup(sku)
            reservation = self.ledger.reserve(sku, quantity)
            line = CartLine(
                id=uuid.uuid4().hex,
                sku=entry.sku,
                name=entry.name,
                quantity=quantity,
                unit_price_cents=entry.unit_price_cents,
                tax_rate_bps=entry.tax_rate_bps,
                reservation=reservation,
            )
            cart.lines.append(line)
            cart.touched_at = self.clock()
            return line

    def remove_line(self, cart_id: str, line_id: str) -> CartLine:
        cart = self.get_cart(cart_id)
        with cart.lock:
            self._require_draft(cart)
            for i, line in enumerate(cart.lines):
                if line.id == line_id:
                    del cart.lines[i]
                    self.ledger.release(line.reservation)
                    cart.touched_at = self.clock()
                    return line
        raise NotFound("Cart line not found", details={"cart_id": cart_id, "line_id": line_id})

    def abandon(self, cart_id: str) -> Cart:
        cart = self.get_cart(cart_id)
        with cart.lock:
            self._require_draft(cart)
            released = self.ledger.release_all(line.reservation for line in cart.lines)
            cart.status = CART_ABANDONED
        with self._carts_lock:
            self._carts.pop(cart.id, None)
        current_app.logger.info("Cart %s abandoned, %d hold(s) released", cart.id, released)
        return cart

    def expire_idle_carts(self, now: datetime | None = None) -> list[str]:
        now = now or self.clock()
        with self._carts_lock:
            idle = [c.id for c in self._carts.values() if c.touched_at + self.cart_idle_timeout <= now]
        expired = []
        for cart_id in idle:
            try:
                self.abandon(cart_id)
            except (NotFound, InvalidTransition):
                # committed or abandoned by its owner in the meantime
                continue
            expired.append(cart_id)
        return expired

    # -- commit ----------------------------------------------------------------

    def commit(self, cart_id: str, *, cashier_id: str, store_id: str) -> Invoice:
        cart = self.get_cart(cart_id)
        with cart.lock:
            self._require_draft(cart)
            if not cart.lines:
                raise InvalidTransition("Cannot commit an empty cart", details={"cart_id": cart.id})

            totals = cart.totals()
            created_at = self.clock()
            lines = list(cart.lines)

            def write(deltas):
                invoice = Invoice(
                    cart_id=cart.id,
                    status=STATUS_COMMITTED,
                    cashier_id=cashier_id,
                    store_id=store_id,
                    subtotal_cents=totals.subtotal_cents,
                    tax_cents=totals.tax_cents,
                    total_cents=totals.total_cents,
                    created_at=created_at,
                )
                for line_no, line in enumerate(lines, start=1):
                    invoice.lines.append(InvoiceLine(
                        line_no=line_no,
                        sku=line.sku,
                        name=line.name,
                        quantity=line.quantity,
                        unit_price_cents=line.unit_price_cents,
                        tax_rate_bps=line.tax_rate_bps,
                        line_total_cents=line.line_total_cents,
                        tax_cents=line.tax_cents,
                    ))
                db.session.add(invoice)
                db.session.flush()
                for delta in deltas:
                    delta.invoice_id = invoice.id
                event = record_event(EVENT_COMMITTED, invoice)
                return invoice, event

            try:
                invoice, event = self.ledger.commit_reservations(
                    [line.reservation for line in lines],
                    write=write,
                    note=f"Cart {cart.id}",
                )
            except StaleReservation as exc:
                stale_ids = set(exc.details.get("reservation_ids", []))
                exc.details["line_ids"] = [l.id for l in lines if l.reservation.id in stale_ids]
                exc.details["cart_id"] = cart.id
                raise

            cart.status = CART_COMMITTED
            cart.invoice_id = invoice.id

        with self._carts_lock:
            self._carts.pop(cart.id, None)

        current_app.logger.info(
            "Invoice %s committed: store=%s cashier=%s lines=%d total=%s",
            invoice.number, store_id, cashier_id, len(lines), format_cents(totals.total_cents),
        )
        self._deliver(event)
        return invoice

    def create_invoice(self, *, cashier_id: str, store_id: str, items: Iterable[tuple[str, int]]) -> Invoice:
        """One-shot scan-and-commit; every hold is released if anything fails."""
        with self.cart_scope() as cart:
            for sku, quantity in items:
                self.add_line(cart.id, sku, quantity)
            return self.commit(cart.id, cashier_id=cashier_id, store_id=store_id)

    def _deliver(self, event: InvoiceEvent) -> None:
        self.bus.publish(InvoiceEventMessage.from_record(event))

    # -- committed invoices ----------------------------------------------------

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFound("Invoice not found", details={"invoice_id": invoice_id})
        return invoice

    def void(self, invoice_id: int, reason: str | None = None) -> Invoice:
        """COMMITTED -> VOIDED: restore stock and emit a compensating event."""
        with self._invoice_locks.hold([invoice_id]):
            invoice = self.get_invoice(invoice_id)
            if invoice.status != STATUS_COMMITTED:
                raise InvalidTransition(
                    "Only COMMITTED invoices can be voided",
                    details={"invoice_id": invoice_id, "status": invoice.status},
                )
            specs = [
                DeltaSpec(
                    sku=line.sku,
                    delta=line.quantity,
                    reason=REASON_ADJUSTMENT,
                    invoice_id=invoice.id,
                    note=f"Void {invoice.number}",
                )
                for line in invoice.lines
            ]
            voided_at = self.clock()
            recorded: list[InvoiceEvent] = []

            def write(rows):
                locked = lock_for_update(
                    db.session.query(Invoice).filter_by(id=invoice_id).populate_existing()
                ).first()
                if locked.status != STATUS_COMMITTED:
                    raise InvalidTransition(
                        "Only COMMITTED invoices can be voided",
                        details={"invoice_id": invoice_id, "status": locked.status},
                    )
                locked.status = STATUS_VOIDED
                locked.voided_at = voided_at
                locked.void_reason = reason
                recorded[:] = [record_event(EVENT_VOIDED, locked)]

            self.ledger.post_deltas(specs, write=write)
            invoice = self.get_invoice(invoice_id)

        current_app.logger.info("Invoice %s voided: %s", invoice.number, reason or "no reason given")
        self._deliver(recorded[0])
        return invoice
