# Overview: Invoice event log (outbox) and in-process delivery to subscribers.

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from flask import current_app

from ..errors import InvariantViolation
from ..extensions import db
from ..models import Invoice, InvoiceEvent
from ..models.analytics import EVENT_COMMITTED, EVENT_VOIDED
from ..time_utils import parse_iso_datetime, to_utc_z

"""
Event log invariants (authoritative)

- An event row is written in the same DB transaction as the commit or void
  it records, so the log never misses or invents an invoice transition.
- Events are immutable facts named in the past tense; a void is a new,
  compensating event, never an edit of the committed one.
- Delivery happens after the transaction commits. A failed delivery leaves
  the row pending (ingested_at IS NULL) and drain_pending() retries it in
  commit order.
"""


@dataclass(frozen=True)
class LineContribution:
    sku: str
    quantity: int
    subtotal_cents: int
    tax_cents: int

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents


@dataclass(frozen=True)
class InvoiceEventMessage:
    event_id: int
    event_type: str
    invoice_id: int
    store_id: str
    cashier_id: str
    occurred_at: datetime
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    lines: tuple[LineContribution, ...]

    @property
    def sign(self) -> int:
        """+1 adds the invoice to rollups, -1 reverses it."""
        return -1 if self.event_type == EVENT_VOIDED else 1

    @classmethod
    def from_record(cls, record: InvoiceEvent) -> "InvoiceEventMessage":
        payload = record.payload_dict()
        return cls(
            event_id=record.id,
            event_type=record.event_type,
            invoice_id=record.invoice_id,
            store_id=payload["store_id"],
            cashier_id=payload["cashier_id"],
            occurred_at=parse_iso_datetime(payload["occurred_at"]),
            subtotal_cents=payload["subtotal_cents"],
            tax_cents=payload["tax_cents"],
            total_cents=payload["total_cents"],
            lines=tuple(
                LineContribution(
                    sku=line["sku"],
                    quantity=line["quantity"],
                    subtotal_cents=line["subtotal_cents"],
                    tax_cents=line["tax_cents"],
                )
                for line in payload["lines"]
            ),
        )


def _payload_for(invoice: Invoice) -> dict:
    return {
        "invoice_number": invoice.number,
        "store_id": invoice.store_id,
        "cashier_id": invoice.cashier_id,
        "occurred_at": to_utc_z(invoice.created_at),
        "subtotal_cents": invoice.subtotal_cents,
        "tax_cents": invoice.tax_cents,
        "total_cents": invoice.total_cents,
        "lines": [
            {
                "sku": line.sku,
                "quantity": line.quantity,
                "subtotal_cents": line.line_total_cents,
                "tax_cents": line.tax_cents,
            }
            for line in invoice.lines
        ],
    }


def record_event(event_type: str, invoice: Invoice) -> InvoiceEvent:
    """
    Append an event row for the invoice inside the caller's transaction.

    No commit here; the invoice transition and its event land together.
    """
    if event_type not in (EVENT_COMMITTED, EVENT_VOIDED):
        raise ValueError(f"unknown event type {event_type!r}")
    event = InvoiceEvent(
        event_type=event_type,
        invoice_id=invoice.id,
        occurred_at=invoice.created_at,
        payload=json.dumps(_payload_for(invoice), sort_keys=True),
    )
    db.session.add(event)
    db.session.flush()
    return event


def load_events(*, pending_only: bool = False, ingested_only: bool = False) -> list[InvoiceEventMessage]:
    """Events in commit order."""
    q = db.session.query(InvoiceEvent)
    if pending_only:
        q = q.filter(InvoiceEvent.ingested_at.is_(None))
    if ingested_only:
        q = q.filter(InvoiceEvent.ingested_at.isnot(None))
    return [InvoiceEventMessage.from_record(rec) for rec in q.order_by(InvoiceEvent.id.asc()).all()]


class EventBus:
    """Direct, synchronous delivery of committed-invoice events to subscribers."""

    def __init__(self) -> None:
        self._handlers: list[Callable[[InvoiceEventMessage], None]] = []
        self._drain_lock = threading.Lock()

    def subscribe(self, handler: Callable[[InvoiceEventMessage], None]) -> None:
        self._handlers.append(handler)

    def publish(self, message: InvoiceEventMessage) -> bool:
        """
        Deliver one event. Returns False if a handler failed; the event then
        stays pending in the log for drain_pending().
        """
        for handler in self._handlers:
            try:
                handler(message)
            except InvariantViolation:
                raise
            except Exception:
                current_app.logger.exception(
                    "Event delivery failed; event %s (%s, invoice %s) left pending",
                    message.event_id, message.event_type, message.invoice_id,
                )
                return False
        return True

    def drain_pending(self) -> int:
        """Re-deliver every pending event in commit order. Stops at the first failure."""
        delivered = 0
        with self._drain_lock:
            for message in load_events(pending_only=True):
                if not self.publish(message):
                    break
                delivered += 1
        if delivered:
            current_app.logger.info("Drained %d pending invoice event(s)", delivered)
        return delivered
