# Overview: Pytest coverage for carts, invoice commit and void.

import pytest

from dukaan_pos.errors import (
    InsufficientStock,
    InvalidTransition,
    NotFound,
    StaleReservation,
)
from dukaan_pos.extensions import db
from dukaan_pos.models import Invoice, InvoiceEvent
from dukaan_pos.services.invoice_service import CART_ABANDONED


def _cart_with(engine, *items):
    cart = engine.open_cart()
    for sku, qty in items:
        engine.add_line(cart.id, sku, qty)
    return cart


class TestCarts:
    def test_add_line_snapshots_price_and_holds_stock(self, core, clock, products):
        cart = _cart_with(core.engine, ("A", 2))
        line = cart.lines[0]
        assert (line.sku, line.quantity, line.unit_price_cents, line.tax_rate_bps) == ("A", 2, 1000, 500)
        assert core.ledger.available("A") == 8

        # later price changes do not touch the draft line
        core.catalog.upsert_product(sku="A", name="Milk 1L", unit_price_cents=1200, tax_rate_bps=500)
        assert core.engine.get_cart(cart.id).lines[0].unit_price_cents == 1000

    def test_add_unknown_sku(self, core, products):
        cart = core.engine.open_cart()
        with pytest.raises(NotFound):
            core.engine.add_line(cart.id, "NOPE", 1)
        assert cart.lines == []

    def test_add_beyond_stock(self, core, clock, products):
        cart = core.engine.open_cart()
        with pytest.raises(InsufficientStock):
            core.engine.add_line(cart.id, "A", 11)
        assert cart.lines == []

    def test_remove_line_releases_hold(self, core, clock, products):
        cart = _cart_with(core.engine, ("A", 3), ("B", 1))
        removed = core.engine.remove_line(cart.id, cart.lines[0].id)
        assert removed.sku == "A"
        assert [l.sku for l in cart.lines] == ["B"]
        assert core.ledger.available("A") == 10

    def test_abandon_releases_every_hold(self, core, clock, products):
        cart = _cart_with(core.engine, ("A", 3), ("B", 4))
        core.engine.abandon(cart.id)
        assert cart.status == CART_ABANDONED
        assert core.ledger.available("A") == 10
        assert core.ledger.available("B") == 10
        with pytest.raises(NotFound):
            core.engine.get_cart(cart.id)

    def test_cart_scope_abandons_on_error(self, core, clock, products):
        with pytest.raises(InsufficientStock):
            with core.engine.cart_scope() as cart:
                core.engine.add_line(cart.id, "A", 4)
                core.engine.add_line(cart.id, "B", 50)
        assert core.ledger.available("A") == 10

    def test_idle_carts_expire(self, core, clock, products):
        idle = _cart_with(core.engine, ("A", 1))
        clock.advance(minutes=20)
        busy = _cart_with(core.engine, ("B", 1))
        clock.advance(minutes=11)

        assert core.engine.expire_idle_carts() == [idle.id]
        assert core.ledger.available("A") == 10
        assert core.engine.get_cart(busy.id).status == "DRAFT"

    def test_opening_a_cart_sweeps_idle_ones(self, core, clock, products):
        held = _cart_with(core.engine, ("A", 3))
        empty = [core.engine.open_cart() for _ in range(50)]
        clock.advance(days=30)

        fresh = core.engine.open_cart()

        for cart in [held, *empty]:
            with pytest.raises(NotFound):
                core.engine.get_cart(cart.id)
        assert held.status == CART_ABANDONED
        assert core.ledger.available("A") == 10
        assert core.engine.get_cart(fresh.id).status == "DRAFT"

    def test_sweep_runs_at_most_once_per_idle_timeout(self, core, clock, products):
        first = core.engine.open_cart()
        clock.advance(minutes=29)
        second = core.engine.open_cart()
        clock.advance(minutes=2)
        core.engine.open_cart()
        with pytest.raises(NotFound):
            core.engine.get_cart(first.id)

        # second is idle now, but the last sweep ran 29 minutes ago
        clock.advance(minutes=29)
        core.engine.open_cart()
        assert core.engine.get_cart(second.id).status == "DRAFT"

        clock.advance(minutes=1)
        core.engine.open_cart()
        with pytest.raises(NotFound):
            core.engine.get_cart(second.id)

    def test_preview_line_does_not_hold(self, core, products):
        line = core.engine.preview_line("B", 2)
        assert line["line_total"] == "40.00"
        assert line["tax_cents"] == 200
        assert core.ledger.available("B") == 10


class TestCommit:
    def test_commit_example_invoice(self, core, clock, products):
        cart = _cart_with(core.engine, ("A", 2), ("B", 1))
        invoice = core.engine.commit(cart.id, cashier_id="C1", store_id="S1")

        assert invoice.status == "COMMITTED"
        assert invoice.number == f"INV-{invoice.id:06d}"
        assert (invoice.subtotal_cents, invoice.tax_cents, invoice.total_cents) == (4000, 200, 4200)
        assert invoice.to_dict()["total"] == "42.00"
        assert [l.line_no for l in invoice.lines] == [1, 2]
        assert invoice.created_at == clock.now

        assert core.ledger.stock("A").quantity_on_hand == 8
        assert core.ledger.stock("A").reserved == 0
        assert core.ledger.quantity_on_hand("B") == 9
        sale = core.ledger.history("A", limit=1)[0]
        assert (sale.delta, sale.reason, sale.invoice_id) == (-2, "sale", invoice.id)

    def test_commit_records_and_delivers_event(self, core, clock, products):
        invoice = core.engine.create_invoice(cashier_id="C1", store_id="S1", items=[("A", 1)])
        event = db.session.query(InvoiceEvent).filter_by(invoice_id=invoice.id).one()
        assert event.event_type == "invoice.committed"
        assert event.ingested_at is not None
        assert event.payload_dict()["total_cents"] == 1050

    def test_stale_line_fails_whole_commit(self, core, clock, products):
        cart = _cart_with(core.engine, ("A", 1))
        clock.advance(minutes=20)
        core.engine.add_line(cart.id, "B", 1)

        with pytest.raises(StaleReservation) as exc_info:
            core.engine.commit(cart.id, cashier_id="C1", store_id="S1")

        assert exc_info.value.details["line_ids"] == [cart.lines[0].id]
        assert cart.status == "DRAFT"
        assert db.session.query(Invoice).count() == 0
        assert core.ledger.quantity_on_hand("B") == 10

        # re-scan the stale line and retry
        core.engine.remove_line(cart.id, cart.lines[0].id)
        core.engine.add_line(cart.id, "A", 1)
        invoice = core.engine.commit(cart.id, cashier_id="C1", store_id="S1")
        assert invoice.total_cents == 3150

    def test_empty_cart_cannot_commit(self, core, products):
        cart = core.engine.open_cart()
        with pytest.raises(InvalidTransition):
            core.engine.commit(cart.id, cashier_id="C1", store_id="S1")

    def test_committed_cart_is_closed(self, core, clock, products):
        cart = _cart_with(core.engine, ("A", 1))
        core.engine.commit(cart.id, cashier_id="C1", store_id="S1")
        with pytest.raises(NotFound):
            core.engine.add_line(cart.id, "A", 1)

    def test_create_invoice_releases_holds_on_failure(self, core, clock, products):
        with pytest.raises(InsufficientStock):
            core.engine.create_invoice(cashier_id="C1", store_id="S1", items=[("A", 2), ("C", 11)])
        assert core.ledger.available("A") == 10
        assert db.session.query(Invoice).count() == 0


class TestVoid:
    def test_void_restores_stock(self, core, clock, products):
        invoice = core.engine.create_invoice(cashier_id="C1", store_id="S1", items=[("A", 2), ("B", 1)])
        assert core.ledger.quantity_on_hand("A") == 8

        voided = core.engine.void(invoice.id, reason="customer changed mind")
        assert voided.status == "VOIDED"
        assert voided.void_reason == "customer changed mind"
        assert core.ledger.quantity_on_hand("A") == 10
        assert core.ledger.quantity_on_hand("B") == 10

        restore = core.ledger.history("A", limit=1)[0]
        assert (restore.delta, restore.reason, restore.invoice_id) == (2, "adjustment", invoice.id)
        events = db.session.query(InvoiceEvent).filter_by(invoice_id=invoice.id).order_by(InvoiceEvent.id).all()
        assert [e.event_type for e in events] == ["invoice.committed", "invoice.voided"]

    def test_void_twice_is_invalid(self, core, clock, products):
        invoice = core.engine.create_invoice(cashier_id="C1", store_id="S1", items=[("A", 1)])
        core.engine.void(invoice.id)
        with pytest.raises(InvalidTransition):
            core.engine.void(invoice.id)
        assert core.ledger.quantity_on_hand("A") == 10

    def test_void_unknown_invoice(self, core):
        with pytest.raises(NotFound):
            core.engine.void(999)

    def test_ledger_verifies_after_commit_and_void(self, core, clock, products):
        invoice = core.engine.create_invoice(cashier_id="C1", store_id="S1", items=[("C", 3)])
        core.engine.void(invoice.id)
        entry = core.ledger.verify("C")
        assert entry.quantity_on_hand == 10
