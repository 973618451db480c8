# Overview: Incrementally maintained sales rollups and the summary queries
# answered from them.

from __future__ import annotations

import threading
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Iterable, Mapping, NamedTuple

from flask import current_app

from ..errors import InvalidFilter, InvariantViolation
from ..extensions import db
from ..models import InvoiceEvent, RollupBucket
from ..models.analytics import ALL_SKUS, EVENT_VOIDED, GRANULARITIES
from ..money import format_cents
from ..time_utils import ceil_hour, floor_day, floor_hour, floor_month, next_month, to_utc_z, utcnow
from .concurrency import KeyedLocks, begin_write, run_with_retry
from .event_service import InvoiceEventMessage, load_events
from .filter_service import DIMENSION_CASHIER, DIMENSION_SKU, DIMENSION_STORE, DIMENSIONS, FilterCatalog

"""
Analytics invariants (authoritative)

- A bucket's totals equal the sum of contributions of every ingested event
  whose (window, store, cashier, sku) matches its key. Commits contribute
  +1 invoice and their amounts, voids contribute -1 and the negated amounts
  plus one void_count, in the windows of the original sale.
- Contributions are plain sums, so the result does not depend on ingest
  order, and replaying the event log from empty reproduces the live state.
- Queries add up buckets covering the requested range and never read
  invoices, so their cost is bounded by the number of buckets in range.
"""

MAX_SERIES_WINDOWS = 5000
# Month stepping past this would leave the datetime range
MAX_RANGE_END = datetime(9999, 12, 1)


class BucketKey(NamedTuple):
    granularity: str
    window_start: datetime
    store_id: str
    cashier_id: str
    sku: str

    @property
    def window(self) -> tuple[str, datetime]:
        return (self.granularity, self.window_start)

    @property
    def dimensions(self) -> tuple[str, str, str]:
        return (self.store_id, self.cashier_id, self.sku)


@dataclass(frozen=True)
class BucketTotals:
    invoice_count: int = 0
    void_count: int = 0
    quantity: int = 0
    subtotal_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0

    def __add__(self, other: "BucketTotals") -> "BucketTotals":
        return BucketTotals(**{
            f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)
        })

    @classmethod
    def from_row(cls, row: RollupBucket) -> "BucketTotals":
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})

    def to_dict(self) -> dict:
        return {
            "count": self.invoice_count,
            "void_count": self.void_count,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "subtotal": format_cents(self.subtotal_cents),
            "tax": format_cents(self.tax_cents),
            "total": format_cents(self.total_cents),
        }


ZERO = BucketTotals()


@dataclass(frozen=True)
class Summary:
    filters: Mapping[str, str]
    start: datetime
    end: datetime
    totals: BucketTotals
    buckets_scanned: int

    def to_dict(self) -> dict:
        data = {
            "filters": dict(self.filters),
            "start": to_utc_z(self.start),
            "end": to_utc_z(self.end),
            "buckets_scanned": self.buckets_scanned,
        }
        data.update(self.totals.to_dict())
        return data


def window_start(granularity: str, dt: datetime) -> datetime:
    if granularity == "hour":
        return floor_hour(dt)
    if granularity == "day":
        return floor_day(dt)
    if granularity == "month":
        return floor_month(dt)
    raise ValueError(f"unknown granularity {granularity!r}")


def next_window(granularity: str, start: datetime) -> datetime:
    if granularity == "hour":
        return start + timedelta(hours=1)
    if granularity == "day":
        return start + timedelta(days=1)
    return next_month(start)


def cover_range(start: datetime, end: datetime) -> list[tuple[str, datetime]]:
    """
    Cover the hour-aligned range [start, end) with the fewest windows:
    whole months where possible, then whole days, then hours.
    """
    windows = []
    cursor = start
    while cursor < end:
        if cursor == floor_month(cursor) and next_month(cursor) <= end:
            granularity = "month"
        elif cursor == floor_day(cursor) and cursor + timedelta(days=1) <= end:
            granularity = "day"
        else:
            granularity = "hour"
        windows.append((granularity, cursor))
        cursor = next_window(granularity, cursor)
    return windows


def contributions(message: InvoiceEventMessage) -> dict[BucketKey, BucketTotals]:
    """Every bucket delta one event produces, at every granularity."""
    sign = message.sign
    voided = 1 if message.event_type == EVENT_VOIDED else 0

    per_sku: dict[str, list[int]] = {}
    for line in message.lines:
        acc = per_sku.setdefault(line.sku, [0, 0, 0])
        acc[0] += line.quantity
        acc[1] += line.subtotal_cents
        acc[2] += line.tax_cents

    invoice_delta = BucketTotals(
        invoice_count=sign,
        void_count=voided,
        quantity=sign * sum(acc[0] for acc in per_sku.values()),
        subtotal_cents=sign * message.subtotal_cents,
        tax_cents=sign * message.tax_cents,
        total_cents=sign * message.total_cents,
    )
    sku_deltas = {
        sku: BucketTotals(
            invoice_count=sign,
            void_count=voided,
            quantity=sign * qty,
            subtotal_cents=sign * subtotal,
            tax_cents=sign * tax,
            total_cents=sign * (subtotal + tax),
        )
        for sku, (qty, subtotal, tax) in per_sku.items()
    }

    result: dict[BucketKey, BucketTotals] = {}
    for granularity in GRANULARITIES:
        start = window_start(granularity, message.occurred_at)
        result[BucketKey(granularity, start, message.store_id, message.cashier_id, ALL_SKUS)] = invoice_delta
        for sku, delta in sku_deltas.items():
            result[BucketKey(granularity, start, message.store_id, message.cashier_id, sku)] = delta
    return result


def replay(messages: Iterable[InvoiceEventMessage]) -> dict[BucketKey, BucketTotals]:
    """Fold an event sequence into rollups from empty state."""
    state: dict[BucketKey, BucketTotals] = {}
    for message in messages:
        for key, delta in contributions(message).items():
            state[key] = state.get(key, ZERO) + delta
    return state


class AnalyticsAggregator:
    """
    Ingest updates every affected bucket under that bucket's lock, persists
    the new totals and then publishes them as a fresh immutable per-window
    mapping. Queries read whatever mapping is current and never lock.
    """

    def __init__(self, filters: FilterCatalog) -> None:
        self.filters = filters
        self._locks = KeyedLocks()
        self._index: dict[tuple[str, datetime], Mapping[tuple[str, str, str], BucketTotals]] = {}
        self._index_lock = threading.Lock()
        self._load_lock = threading.Lock()
        self._loaded = False

    # -- state -----------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._load_lock:
            if self._loaded:
                return
            state = {
                BucketKey(row.granularity, row.window_start, row.store_id, row.cashier_id, row.sku):
                    BucketTotals.from_row(row)
                for row in db.session.query(RollupBucket).all()
            }
            self._publish_all(state)
            self._loaded = True

    def _publish_all(self, state: Mapping[BucketKey, BucketTotals]) -> None:
        grouped: dict[tuple[str, datetime], dict[tuple[str, str, str], BucketTotals]] = {}
        for key, totals in state.items():
            grouped.setdefault(key.window, {})[key.dimensions] = totals
        with self._index_lock:
            self._index = {window: MappingProxyType(inner) for window, inner in grouped.items()}

    def _publish(self, updates: Mapping[BucketKey, BucketTotals]) -> None:
        by_window: dict[tuple[str, datetime], dict[tuple[str, str, str], BucketTotals]] = {}
        for key, totals in updates.items():
            by_window.setdefault(key.window, {})[key.dimensions] = totals
        with self._index_lock:
            for window, changed in by_window.items():
                inner = dict(self._index.get(window, {}))
                inner.update(changed)
                self._index[window] = MappingProxyType(inner)

    def live_state(self) -> dict[BucketKey, BucketTotals]:
        self._ensure_loaded()
        index = dict(self._index)
        return {
            BucketKey(window[0], window[1], *dims): totals
            for window, inner in index.items()
            for dims, totals in inner.items()
        }

    # -- ingest ----------------------------------------------------------------

    def ingest(self, message: InvoiceEventMessage) -> bool:
        """
        Apply one event. Idempotent per event id: returns False when the event
        was already ingested.
        """
        self._ensure_loaded()
        deltas = contributions(message)

        with self._locks.hold(deltas.keys()):
            def _op():
                begin_write()
                record = db.session.get(InvoiceEvent, message.event_id)
                if record is None:
                    raise ValueError(f"event {message.event_id} is not in the event log")
                if record.ingested_at is not None:
                    db.session.rollback()
                    return None

                updated: dict[BucketKey, BucketTotals] = {}
                for key, delta in deltas.items():
                    row = db.session.query(RollupBucket).filter_by(
                        granularity=key.granularity,
                        window_start=key.window_start,
                        store_id=key.store_id,
                        cashier_id=key.cashier_id,
                        sku=key.sku,
                    ).first()
                    if row is None:
                        row = RollupBucket(
                            granularity=key.granularity,
                            window_start=key.window_start,
                            store_id=key.store_id,
                            cashier_id=key.cashier_id,
                            sku=key.sku,
                            **{f.name: 0 for f in fields(BucketTotals)},
                        )
                        db.session.add(row)
                    totals = BucketTotals.from_row(row) + delta
                    for f in fields(BucketTotals):
                        setattr(row, f.name, getattr(totals, f.name))
                    updated[key] = totals

                record.ingested_at = utcnow()
                db.session.commit()
                return updated

            updated = run_with_retry(_op)
            if updated is None:
                return False
            self._publish(updated)

        self.filters.register(DIMENSION_STORE, message.store_id)
        self.filters.register(DIMENSION_CASHIER, message.cashier_id)
        self.filters.register_many(DIMENSION_SKU, [line.sku for line in message.lines])
        return True

    # -- queries ---------------------------------------------------------------

    def _validate_filters(self, filters: Mapping[str, str]) -> dict[str, str]:
        clean = {}
        for dimension, value in filters.items():
            if dimension not in DIMENSIONS:
                raise InvalidFilter(
                    "Unknown filter dimension",
                    details={"dimension": dimension, "allowed": list(DIMENSIONS)},
                )
            if not self.filters.validate(dimension, value):
                raise InvalidFilter(
                    "Unknown filter value",
                    details={"dimension": dimension, "value": value},
                )
            clean[dimension] = value
        return clean

    @staticmethod
    def _validate_range(start: datetime | None, end: datetime | None) -> tuple[datetime, datetime]:
        if start is None or end is None:
            raise InvalidFilter("start and end are required")
        if start >= end:
            raise InvalidFilter("start must be before end")
        if end > MAX_RANGE_END:
            raise InvalidFilter("end is out of range", details={"max_end": to_utc_z(MAX_RANGE_END)})
        return floor_hour(start), ceil_hour(end)

    def _sum_window(
        self, window: tuple[str, datetime], filters: Mapping[str, str]
    ) -> tuple[BucketTotals, int]:
        inner = self._index.get(window)
        if not inner:
            return ZERO, 0
        sku = filters.get(DIMENSION_SKU, ALL_SKUS)
        store = filters.get(DIMENSION_STORE)
        cashier = filters.get(DIMENSION_CASHIER)
        total = ZERO
        scanned = 0
        for (bucket_store, bucket_cashier, bucket_sku), totals in inner.items():
            if bucket_sku != sku:
                continue
            if store is not None and bucket_store != store:
                continue
            if cashier is not None and bucket_cashier != cashier:
                continue
            total = total + totals
            scanned += 1
        return total, scanned

    def query(self, filters: Mapping[str, str], start: datetime | None, end: datetime | None) -> Summary:
        """
        Summary over [start, end), widened to whole hours. Filters are ANDed;
        an absent dimension means all values.
        """
        self._ensure_loaded()
        clean = self._validate_filters(filters)
        eff_start, eff_end = self._validate_range(start, end)

        total = ZERO
        scanned = 0
        for window in cover_range(eff_start, eff_end):
            window_total, window_scanned = self._sum_window(window, clean)
            total = total + window_total
            scanned += window_scanned
        return Summary(filters=clean, start=eff_start, end=eff_end, totals=total, buckets_scanned=scanned)

    def series(
        self,
        filters: Mapping[str, str],
        start: datetime | None,
        end: datetime | None,
        group_by: str = "day",
    ) -> dict:
        """
        Per-window rows at one granularity, e.g. daily sales for a month.

        Rows are labelled by their window, but the first and last row only
        count the part of their window inside [start, end).
        """
        if group_by not in GRANULARITIES:
            raise InvalidFilter("group_by must be hour, day, or month", details={"group_by": group_by})
        self._ensure_loaded()
        clean = self._validate_filters(filters)
        eff_start, eff_end = self._validate_range(start, end)

        rows = []
        cursor = window_start(group_by, eff_start)
        while cursor < eff_end:
            if len(rows) >= MAX_SERIES_WINDOWS:
                raise InvalidFilter("range too large for group_by", details={"max_windows": MAX_SERIES_WINDOWS})
            upper = next_window(group_by, cursor)
            lo, hi = max(cursor, eff_start), min(upper, eff_end)
            if (lo, hi) == (cursor, upper):
                totals, _ = self._sum_window((group_by, cursor), clean)
            else:
                totals = ZERO
                for window in cover_range(lo, hi):
                    totals = totals + self._sum_window(window, clean)[0]
            row = {"window_start": to_utc_z(cursor), "start": to_utc_z(lo), "end": to_utc_z(hi)}
            row.update(totals.to_dict())
            rows.append(row)
            cursor = upper
        return {
            "filters": clean,
            "group_by": group_by,
            "start": to_utc_z(eff_start),
            "end": to_utc_z(eff_end),
            "rows": rows,
        }

    # -- recovery --------------------------------------------------------------

    def rebuild(self) -> int:
        """
        Disaster recovery: replay the whole event log from empty state and
        replace the persisted and live rollups. Run with ingest quiesced.
        """
        messages = load_events()
        state = replay(messages)
        now = utcnow()

        def _op():
            begin_write()
            db.session.query(RollupBucket).delete()
            for key, totals in state.items():
                db.session.add(RollupBucket(
                    granularity=key.granularity,
                    window_start=key.window_start,
                    store_id=key.store_id,
                    cashier_id=key.cashier_id,
                    sku=key.sku,
                    **{f.name: getattr(totals, f.name) for f in fields(BucketTotals)},
                ))
            db.session.query(InvoiceEvent).filter(InvoiceEvent.ingested_at.is_(None)).update(
                {InvoiceEvent.ingested_at: now}, synchronize_session=False
            )
            db.session.commit()

        run_with_retry(_op)
        with self._load_lock:
            self._publish_all(state)
            self._loaded = True
        for message in messages:
            self.filters.register(DIMENSION_STORE, message.store_id)
            self.filters.register(DIMENSION_CASHIER, message.cashier_id)
            self.filters.register_many(DIMENSION_SKU, [line.sku for line in message.lines])
        current_app.logger.info("Analytics rebuilt from %d event(s): %d bucket(s)", len(messages), len(state))
        return len(state)

    def verify(self) -> int:
        """
        Replay ingested events and compare with the live and persisted rollups.
        Any difference is an InvariantViolation. Run with ingest quiesced.
        """
        expected = {k: v for k, v in replay(load_events(ingested_only=True)).items() if v != ZERO}
        live = {k: v for k, v in self.live_state().items() if v != ZERO}
        persisted = {
            BucketKey(row.granularity, row.window_start, row.store_id, row.cashier_id, row.sku):
                BucketTotals.from_row(row)
            for row in db.session.query(RollupBucket).all()
        }
        persisted = {k: v for k, v in persisted.items() if v != ZERO}

        for label, actual in (("live", live), ("persisted", persisted)):
            if actual != expected:
                diff = {
                    repr(key): {"expected": expected.get(key), "actual": actual.get(key)}
                    for key in set(expected) | set(actual)
                    if expected.get(key) != actual.get(key)
                }
                current_app.logger.critical(
                    "Analytics invariant violated: %s rollups diverge from replay: %r", label, diff
                )
                raise InvariantViolation(
                    f"{label} rollups diverge from event replay",
                    details={"buckets": len(diff), "diff": {k: str(v) for k, v in list(diff.items())[:50]}},
                )
        return len(expected)
