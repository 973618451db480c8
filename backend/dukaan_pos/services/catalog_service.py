# Overview: Read-mostly SKU lookup backed by the products table.

from __future__ import annotations

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping

from flask import current_app

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Product
from ..money import MAX_PRICE_CENTS, MAX_TAX_RATE_BPS, format_cents
from .concurrency import begin_write, run_with_retry


@dataclass(frozen=True)
class CatalogEntry:
    """Immutable product view handed out by lookups."""
    sku: str
    name: str
    unit_price_cents: int
    tax_rate_bps: int

    @classmethod
    def from_model(cls, product: Product) -> "CatalogEntry":
        return cls(
            sku=product.sku,
            name=product.name,
            unit_price_cents=product.unit_price_cents,
            tax_rate_bps=product.tax_rate_bps,
        )

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "unit_price": format_cents(self.unit_price_cents),
            "tax_rate_bps": self.tax_rate_bps,
        }


class Catalog:
    """
    SKU -> CatalogEntry.

    Lookups read an immutable snapshot and never take a lock; reload() and
    upsert_product() build a new snapshot and swap the reference.
    """

    def __init__(self) -> None:
        self._snapshot: Mapping[str, CatalogEntry] | None = None
        self._write_lock = threading.Lock()
        self._listeners: list[Callable[[frozenset], None]] = []

    def add_listener(self, callback: Callable[[frozenset], None]) -> None:
        """callback(skus) runs after every reload/upsert with the SKUs now known."""
        self._listeners.append(callback)

    def _notify(self, skus: frozenset) -> None:
        for callback in self._listeners:
            callback(skus)

    def _load(self) -> Mapping[str, CatalogEntry]:
        products = db.session.query(Product).filter_by(is_active=True).all()
        return MappingProxyType({p.sku: CatalogEntry.from_model(p) for p in products})

    def _entries(self) -> Mapping[str, CatalogEntry]:
        snapshot = self._snapshot
        if snapshot is None:
            with self._write_lock:
                if self._snapshot is None:
                    self._snapshot = self._load()
                snapshot = self._snapshot
            self._notify(frozenset(snapshot))
        return snapshot

    def lookup(self, sku: str) -> CatalogEntry:
        entry = self._entries().get(sku)
        if entry is None:
            raise NotFound("Product not found", details={"sku": sku})
        return entry

    def all_skus(self) -> frozenset:
        return frozenset(self._entries())

    def reload(self) -> int:
        """External data refresh hook: re-read the products table."""
        with self._write_lock:
            self._snapshot = self._load()
            snapshot = self._snapshot
        current_app.logger.info("Catalog reloaded: %d active products", len(snapshot))
        self._notify(frozenset(snapshot))
        return len(snapshot)

    def upsert_product(
        self,
        *,
        sku: str,
        name: str,
        unit_price_cents: int,
        tax_rate_bps: int = 0,
        is_active: bool = True,
    ) -> Product:
        """Create or update a product row and publish it to the snapshot."""
        if not sku or not sku.strip() or not name:
            raise ValidationError("sku and name are required")
        if unit_price_cents < 0 or unit_price_cents > MAX_PRICE_CENTS:
            raise ValidationError("unit_price_cents out of range")
        if tax_rate_bps < 0 or tax_rate_bps > MAX_TAX_RATE_BPS:
            raise ValidationError("tax_rate_bps out of range")

        def _op():
            begin_write()
            product = db.session.query(Product).filter_by(sku=sku).first()
            if product is None:
                product = Product(sku=sku)
                db.session.add(product)
            product.name = name
            product.unit_price_cents = unit_price_cents
            product.tax_rate_bps = tax_rate_bps
            product.is_active = is_active
            db.session.commit()
            return product

        product = run_with_retry(_op)

        with self._write_lock:
            entries = dict(self._snapshot if self._snapshot is not None else self._load())
            if is_active:
                entries[sku] = CatalogEntry.from_model(product)
            else:
                entries.pop(sku, None)
            self._snapshot = MappingProxyType(entries)
            snapshot = self._snapshot
        self._notify(frozenset(snapshot))
        return product
