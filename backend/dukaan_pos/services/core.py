# Overview: Wires the stateful services together once per application.

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import Flask, current_app

from .analytics_service import AnalyticsAggregator
from .catalog_service import Catalog
from .event_service import EventBus
from .filter_service import DIMENSION_SKU, FilterCatalog
from .inventory_service import InventoryLedger
from .invoice_service import InvoiceEngine

EXTENSION_KEY = "pos_core"


@dataclass
class PosCore:
    catalog: Catalog
    ledger: InventoryLedger
    filters: FilterCatalog
    aggregator: AnalyticsAggregator
    bus: EventBus
    engine: InvoiceEngine


def build_core(config) -> PosCore:
    """
    scan -> catalog -> ledger hold -> engine commit -> event bus -> aggregator.

    The in-memory caches assume this process owns the database; run one
    application process per database.
    """
    catalog = Catalog()
    ledger = InventoryLedger(timedelta(seconds=config["RESERVATION_TIMEOUT_SECONDS"]))
    filters = FilterCatalog()
    catalog.add_listener(lambda skus: filters.register_many(DIMENSION_SKU, skus))

    aggregator = AnalyticsAggregator(filters)
    bus = EventBus()
    bus.subscribe(aggregator.ingest)

    engine = InvoiceEngine(
        catalog,
        ledger,
        bus,
        cart_idle_timeout=timedelta(seconds=config["CART_IDLE_TIMEOUT_SECONDS"]),
    )
    return PosCore(
        catalog=catalog,
        ledger=ledger,
        filters=filters,
        aggregator=aggregator,
        bus=bus,
        engine=engine,
    )


def init_core(app: Flask) -> PosCore:
    core = build_core(app.config)
    app.extensions[EXTENSION_KEY] = core
    return core


def get_core() -> PosCore:
    return current_app.extensions[EXTENSION_KEY]
