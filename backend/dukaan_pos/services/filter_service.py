# Overview: Valid analytics filter dimensions and the values seen for each.

from __future__ import annotations

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from ..extensions import db
from ..models import Invoice, InvoiceLine, Product

DIMENSION_STORE = "store_id"
DIMENSION_CASHIER = "cashier_id"
DIMENSION_SKU = "sku"
DIMENSIONS = (DIMENSION_STORE, DIMENSION_CASHIER, DIMENSION_SKU)


@dataclass(frozen=True)
class FilterDimension:
    name: str
    allowed_values: frozenset

    def to_dict(self) -> dict:
        return {"name": self.name, "values": sorted(self.allowed_values)}


class FilterCatalog:
    """
    Append-only sets of filter values, seeded from the catalog and invoice
    history and grown by ingest.

    Writers copy the affected set and swap the mapping reference, so reads
    (validate, list_dimensions) never wait on ingest.
    """

    def __init__(self) -> None:
        self._values: Mapping[str, frozenset] = MappingProxyType({d: frozenset() for d in DIMENSIONS})
        self._write_lock = threading.Lock()
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.refresh()

    def refresh(self) -> None:
        """Union in every distinct value recorded in products and invoices."""
        stores = {row[0] for row in db.session.query(Invoice.store_id).distinct()}
        cashiers = {row[0] for row in db.session.query(Invoice.cashier_id).distinct()}
        skus = {row[0] for row in db.session.query(InvoiceLine.sku).distinct()}
        skus |= {row[0] for row in db.session.query(Product.sku).distinct()}
        with self._write_lock:
            merged = dict(self._values)
            merged[DIMENSION_STORE] = merged[DIMENSION_STORE] | stores
            merged[DIMENSION_CASHIER] = merged[DIMENSION_CASHIER] | cashiers
            merged[DIMENSION_SKU] = merged[DIMENSION_SKU] | skus
            self._values = MappingProxyType(merged)
            self._loaded = True

    def register(self, dimension: str, value: str) -> bool:
        return self.register_many(dimension, [value]) > 0

    def register_many(self, dimension: str, values: Iterable[str]) -> int:
        """Returns how many values were new."""
        if dimension not in DIMENSIONS:
            raise ValueError(f"unknown filter dimension {dimension!r}")
        current = self._values[dimension]
        fresh = {v for v in values if v not in current}
        if not fresh:
            return 0
        with self._write_lock:
            merged = dict(self._values)
            before = merged[dimension]
            merged[dimension] = before | fresh
            self._values = MappingProxyType(merged)
            return len(merged[dimension]) - len(before)

    def validate(self, dimension: str, value: str) -> bool:
        if dimension not in DIMENSIONS:
            return False
        if value in self._values[dimension]:
            return True
        if not self._loaded:
            self._ensure_loaded()
            return value in self._values[dimension]
        return False

    def list_dimensions(self) -> list[FilterDimension]:
        self._ensure_loaded()
        values = self._values
        return [FilterDimension(name=d, allowed_values=values[d]) for d in DIMENSIONS]
