# Overview: Inventory ledger: append-only stock deltas, a cached on-hand view
# and reservations (temporary holds) against it.

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Sequence, TypeVar

from flask import current_app
from sqlalchemy import func

from ..errors import InsufficientStock, InvariantViolation, StaleReservation, ValidationError
from ..extensions import db
from ..models import InventoryDelta
from ..models.inventory import DELTA_REASONS, REASON_ADJUSTMENT, REASON_RESTOCK, REASON_SALE
from ..time_utils import utcnow
from .concurrency import KeyedLocks, begin_write, run_with_retry

"""
Inventory invariants (authoritative)

- On hand is SUM(delta) over inventory_deltas for the SKU; the in-memory
  figure is a cache of that sum, only changed after the matching rows commit.
- available = on_hand - outstanding reservations, and is never negative:
  reserve() refuses holds beyond it, negative adjustments may not eat into
  stock that is already held.
- Every mutation of one SKU (reserve, release, expire, commit, apply) runs
  under that SKU's lock. Multi-SKU operations take the locks in sorted order.
- Converting holds to sale deltas is all-or-nothing: one stale hold fails the
  whole batch and nothing is written.
"""

T = TypeVar("T")


@dataclass(frozen=True)
class Reservation:
    id: str
    sku: str
    quantity: int
    created_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class StockEntry:
    sku: str
    quantity_on_hand: int
    reserved: int

    @property
    def available(self) -> int:
        return self.quantity_on_hand - self.reserved

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "quantity_on_hand": self.quantity_on_hand,
            "reserved": self.reserved,
            "available": self.available,
        }


@dataclass(frozen=True)
class DeltaSpec:
    """An InventoryDelta that has not been appended yet."""
    sku: str
    delta: int
    reason: str
    note: str | None = None
    invoice_id: int | None = None


class InventoryLedger:
    def __init__(self, reservation_timeout: timedelta, clock: Callable[[], datetime] = utcnow) -> None:
        self.reservation_timeout = reservation_timeout
        self.clock = clock
        self._locks = KeyedLocks()
        self._on_hand: dict[str, int] = {}
        self._held: dict[str, dict[str, Reservation]] = {}

    # -- cache helpers; callers hold the SKU lock ---------------------------

    def _load_on_hand(self, sku: str) -> int:
        q = db.session.query(
            func.coalesce(func.sum(InventoryDelta.delta), 0)
        ).filter(InventoryDelta.sku == sku)
        return int(q.scalar() or 0)

    def _on_hand_locked(self, sku: str) -> int:
        if sku not in self._on_hand:
            self._on_hand[sku] = self._load_on_hand(sku)
        return self._on_hand[sku]

    def _reserved_locked(self, sku: str) -> int:
        return sum(r.quantity for r in self._held.get(sku, {}).values())

    def _expire_locked(self, sku: str, now: datetime) -> list[Reservation]:
        held = self._held.get(sku)
        if not held:
            return []
        expired = [r for r in held.values() if r.expires_at <= now]
        for r in expired:
            del held[r.id]
        if expired:
            current_app.logger.info(
                "Expired %d stale reservation(s) on %s (%d units)",
                len(expired), sku, sum(r.quantity for r in expired),
            )
        return expired

    def _is_held_locked(self, reservation: Reservation) -> bool:
        return reservation.id in self._held.get(reservation.sku, {})

    def _violation(self, message: str, **state) -> InvariantViolation:
        current_app.logger.critical("Inventory invariant violated: %s state=%r", message, state)
        return InvariantViolation(message, details=state)

    # -- reads ---------------------------------------------------------------

    def quantity_on_hand(self, sku: str) -> int:
        with self._locks.hold([sku]):
            return self._on_hand_locked(sku)

    def stock(self, sku: str) -> StockEntry:
        with self._locks.hold([sku]):
            self._expire_locked(sku, self.clock())
            return StockEntry(
                sku=sku,
                quantity_on_hand=self._on_hand_locked(sku),
                reserved=self._reserved_locked(sku),
            )

    def available(self, sku: str) -> int:
        return self.stock(sku).available

    def is_held(self, reservation: Reservation) -> bool:
        with self._locks.hold([reservation.sku]):
            self._expire_locked(reservation.sku, self.clock())
            return self._is_held_locked(reservation)

    def history(self, sku: str, limit: int = 200) -> list[InventoryDelta]:
        return (
            db.session.query(InventoryDelta)
            .filter_by(sku=sku)
            .order_by(InventoryDelta.id.desc())
            .limit(limit)
            .all()
        )

    # -- reservations ----------------------------------------------------------

    def reserve(self, sku: str, quantity: int) -> Reservation:
        """Compare-and-decrement against available stock; raises InsufficientStock."""
        if quantity <= 0:
            raise ValidationError("quantity must be > 0")
        with self._locks.hold([sku]):
            now = self.clock()
            self._expire_locked(sku, now)
            on_hand = self._on_hand_locked(sku)
            available = on_hand - self._reserved_locked(sku)
            if available < quantity:
                raise InsufficientStock(
                    "Insufficient stock",
                    details={"sku": sku, "requested_quantity": quantity, "available": available},
                )
            reservation = Reservation(
                id=uuid.uuid4().hex,
                sku=sku,
                quantity=quantity,
                created_at=now,
                expires_at=now + self.reservation_timeout,
            )
            self._held.setdefault(sku, {})[reservation.id] = reservation
            return reservation

    def release(self, reservation: Reservation) -> bool:
        """Drop a hold. Idempotent: releasing an expired or settled hold is a no-op."""
        with self._locks.hold([reservation.sku]):
            return self._held.get(reservation.sku, {}).pop(reservation.id, None) is not None

    def release_all(self, reservations: Iterable[Reservation]) -> int:
        return sum(1 for r in list(reservations) if self.release(r))

    def expire_stale(self, now: datetime | None = None) -> list[Reservation]:
        """Sweep every SKU and release holds past their deadline."""
        now = now or self.clock()
        released = []
        for sku in list(self._held.keys()):
            with self._locks.hold([sku]):
                released.extend(self._expire_locked(sku, now))
        return released

    # -- settlement ------------------------------------------------------------

    def commit(self, reservation: Reservation, *, note: str | None = None) -> None:
        self.commit_reservations([reservation], note=note)

    def commit_reservations(
        self,
        reservations: Sequence[Reservation],
        *,
        write: Callable[[list[InventoryDelta]], T] | None = None,
        note: str | None = None,
    ) -> T | None:
        """
        Convert holds into sale deltas, all or nothing.

        write(deltas) runs inside the same DB transaction before the deltas
        are added, so the caller can persist its own rows (the invoice) and
        stamp invoice_id on them. Its return value is returned.
        """
        if not reservations:
            raise ValidationError("no reservations to commit")
        skus = {r.sku for r in reservations}
        with self._locks.hold(skus):
            now = self.clock()
            for sku in skus:
                self._expire_locked(sku, now)
            stale = [r for r in reservations if not self._is_held_locked(r)]
            if stale:
                raise StaleReservation(
                    "Reservation expired or released before commit",
                    details={
                        "reservation_ids": [r.id for r in stale],
                        "skus": sorted({r.sku for r in stale}),
                    },
                )

            outgoing: dict[str, int] = {}
            for r in reservations:
                outgoing[r.sku] = outgoing.get(r.sku, 0) + r.quantity
            for sku, qty in outgoing.items():
                on_hand = self._on_hand_locked(sku)
                if on_hand - qty < 0:
                    raise self._violation(
                        "held stock exceeds on hand",
                        sku=sku, on_hand=on_hand, committing=qty,
                        reserved=self._reserved_locked(sku),
                    )

            def _op():
                begin_write()
                deltas = [
                    InventoryDelta(
                        sku=r.sku,
                        delta=-r.quantity,
                        reason=REASON_SALE,
                        occurred_at=now,
                        note=note,
                    )
                    for r in reservations
                ]
                result = write(deltas) if write is not None else None
                db.session.add_all(deltas)
                db.session.commit()
                return result

            result = run_with_retry(_op)

            for r in reservations:
                del self._held[r.sku][r.id]
            for sku, qty in outgoing.items():
                self._on_hand[sku] -= qty
            return result

    def apply(self, delta: DeltaSpec) -> InventoryDelta:
        """Append one restock / adjustment delta."""
        return self.post_deltas([delta])[0]

    def post_deltas(
        self,
        specs: Sequence[DeltaSpec],
        *,
        write: Callable[[list[InventoryDelta]], None] | None = None,
    ) -> list[InventoryDelta]:
        """
        Append several deltas atomically (void compensation, bulk restock).

        Negative deltas may only consume unreserved stock.
        """
        if not specs:
            raise ValidationError("no deltas to post")
        for spec in specs:
            if spec.reason not in DELTA_REASONS:
                raise ValidationError(f"invalid reason: {spec.reason}")
            if spec.delta == 0:
                raise ValidationError("delta must be non-zero")
            if spec.reason == REASON_RESTOCK and spec.delta < 0:
                raise ValidationError("restock delta must be positive")

        net: dict[str, int] = {}
        for spec in specs:
            net[spec.sku] = net.get(spec.sku, 0) + spec.delta

        with self._locks.hold(net.keys()):
            now = self.clock()
            for sku, change in net.items():
                self._expire_locked(sku, now)
                on_hand = self._on_hand_locked(sku)
                if change >= 0:
                    continue
                available = on_hand - self._reserved_locked(sku)
                if available + change < 0:
                    raise InsufficientStock(
                        "Adjustment would make available stock negative",
                        details={"sku": sku, "delta": change, "available": available},
                    )

            def _op():
                begin_write()
                rows = [
                    InventoryDelta(
                        sku=spec.sku,
                        delta=spec.delta,
                        reason=spec.reason,
                        occurred_at=now,
                        invoice_id=spec.invoice_id,
                        note=spec.note,
                    )
                    for spec in specs
                ]
                if write is not None:
                    write(rows)
                db.session.add_all(rows)
                db.session.commit()
                return rows

            rows = run_with_retry(_op)

            for sku, change in net.items():
                self._on_hand[sku] += change
            return rows

    def restock(self, sku: str, quantity: int, note: str | None = None) -> InventoryDelta:
        return self.apply(DeltaSpec(sku=sku, delta=quantity, reason=REASON_RESTOCK, note=note))

    def adjust(self, sku: str, delta: int, note: str | None = None) -> InventoryDelta:
        return self.apply(DeltaSpec(sku=sku, delta=delta, reason=REASON_ADJUSTMENT, note=note))

    # -- audit -----------------------------------------------------------------

    def verify(self, sku: str) -> StockEntry:
        """Recompute on hand from the log; divergence or negative stock is fatal."""
        with self._locks.hold([sku]):
            logged = self._load_on_hand(sku)
            cached = self._on_hand.get(sku, logged)
            reserved = self._reserved_locked(sku)
            if logged != cached:
                raise self._violation("cached on hand diverged from ledger", sku=sku, logged=logged, cached=cached)
            if logged < 0 or logged - reserved < 0:
                raise self._violation("negative stock", sku=sku, on_hand=logged, reserved=reserved)
            return StockEntry(sku=sku, quantity_on_hand=logged, reserved=reserved)
