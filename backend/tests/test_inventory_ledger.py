# Overview: Pytest coverage for stock deltas, reservations and expiry.

import pytest

from dukaan_pos.errors import InsufficientStock, InvariantViolation, StaleReservation, ValidationError
from dukaan_pos.extensions import db
from dukaan_pos.models import InventoryDelta
from dukaan_pos.services.inventory_service import DeltaSpec


class TestReservations:
    def test_reserve_holds_available_not_on_hand(self, core, clock, products):
        ledger = core.ledger
        reservation = ledger.reserve("A", 4)

        stock = ledger.stock("A")
        assert stock.quantity_on_hand == 10
        assert stock.reserved == 4
        assert stock.available == 6
        assert ledger.is_held(reservation)
        assert reservation.expires_at == clock.now + ledger.reservation_timeout

    def test_reserve_beyond_available(self, core, clock, products):
        core.ledger.reserve("A", 8)
        with pytest.raises(InsufficientStock) as exc_info:
            core.ledger.reserve("A", 3)
        assert exc_info.value.details == {"sku": "A", "requested_quantity": 3, "available": 2}

    def test_reserve_requires_positive_quantity(self, core, products):
        with pytest.raises(ValidationError):
            core.ledger.reserve("A", 0)

    def test_release_is_idempotent(self, core, clock, products):
        reservation = core.ledger.reserve("A", 5)
        assert core.ledger.release(reservation) is True
        assert core.ledger.release(reservation) is False
        assert core.ledger.available("A") == 10

    def test_stale_holds_expire(self, core, clock, products):
        ledger = core.ledger
        reservation = ledger.reserve("A", 10)
        assert ledger.available("A") == 0

        clock.advance(seconds=899)
        assert ledger.is_held(reservation)

        clock.advance(seconds=1)
        assert not ledger.is_held(reservation)
        assert ledger.available("A") == 10

    def test_expire_stale_sweeps_every_sku(self, core, clock, products):
        ledger = core.ledger
        a = ledger.reserve("A", 1)
        b = ledger.reserve("B", 2)
        clock.advance(minutes=10)
        c = ledger.reserve("C", 3)
        clock.advance(minutes=6)

        released = ledger.expire_stale()
        assert {r.id for r in released} == {a.id, b.id}
        assert ledger.is_held(c)


class TestSettlement:
    def test_commit_converts_hold_to_sale_delta(self, core, clock, products):
        ledger = core.ledger
        reservation = ledger.reserve("A", 3)
        ledger.commit(reservation, note="counter sale")

        stock = ledger.stock("A")
        assert (stock.quantity_on_hand, stock.reserved, stock.available) == (7, 0, 7)
        latest = ledger.history("A", limit=1)[0]
        assert latest.delta == -3
        assert latest.reason == "sale"
        assert latest.note == "counter sale"

    def test_commit_is_all_or_nothing(self, core, clock, products):
        ledger = core.ledger
        keep = ledger.reserve("A", 2)
        gone = ledger.reserve("B", 1)
        ledger.release(gone)

        with pytest.raises(StaleReservation) as exc_info:
            ledger.commit_reservations([keep, gone])

        assert exc_info.value.details["reservation_ids"] == [gone.id]
        assert ledger.quantity_on_hand("A") == 10
        assert ledger.quantity_on_hand("B") == 10
        assert ledger.is_held(keep)
        assert db.session.query(InventoryDelta).filter_by(reason="sale").count() == 0

    def test_expired_hold_cannot_be_committed(self, core, clock, products):
        reservation = core.ledger.reserve("A", 1)
        clock.advance(hours=1)
        with pytest.raises(StaleReservation):
            core.ledger.commit(reservation)
        assert core.ledger.quantity_on_hand("A") == 10

    def test_commit_requires_reservations(self, core):
        with pytest.raises(ValidationError):
            core.ledger.commit_reservations([])


class TestDeltas:
    def test_restock_and_adjust(self, core, products):
        ledger = core.ledger
        ledger.restock("A", 5)
        ledger.adjust("A", -3, note="damaged")
        assert ledger.quantity_on_hand("A") == 12

        history = ledger.history("A")
        assert [d.delta for d in history] == [-3, 5, 10]
        assert [d.reason for d in history] == ["adjustment", "restock", "restock"]

    def test_negative_adjustment_cannot_consume_held_stock(self, core, clock, products):
        ledger = core.ledger
        ledger.reserve("A", 8)
        with pytest.raises(InsufficientStock):
            ledger.adjust("A", -3)
        ledger.adjust("A", -2)
        assert ledger.stock("A").available == 0

    @pytest.mark.parametrize("spec", [
        DeltaSpec(sku="A", delta=0, reason="adjustment"),
        DeltaSpec(sku="A", delta=-1, reason="restock"),
        DeltaSpec(sku="A", delta=1, reason="gift"),
    ])
    def test_apply_rejects_bad_deltas(self, core, products, spec):
        with pytest.raises(ValidationError):
            core.ledger.apply(spec)
        assert core.ledger.quantity_on_hand("A") == 10

    def test_post_deltas_nets_per_sku(self, core, products):
        rows = core.ledger.post_deltas([
            DeltaSpec(sku="A", delta=-10, reason="adjustment"),
            DeltaSpec(sku="A", delta=4, reason="adjustment"),
            DeltaSpec(sku="B", delta=2, reason="restock"),
        ])
        assert len(rows) == 3
        assert core.ledger.quantity_on_hand("A") == 4
        assert core.ledger.quantity_on_hand("B") == 12


class TestVerify:
    def test_verify_matches_log(self, core, clock, products):
        core.ledger.reserve("A", 2)
        entry = core.ledger.verify("A")
        assert (entry.quantity_on_hand, entry.reserved) == (10, 2)

    def test_verify_detects_divergence(self, core, products):
        core.ledger.quantity_on_hand("A")
        # a writer that bypasses the ledger
        db.session.add(InventoryDelta(sku="A", delta=-20, reason="adjustment"))
        db.session.commit()

        with pytest.raises(InvariantViolation) as exc_info:
            core.ledger.verify("A")
        assert exc_info.value.details["logged"] == -10
        assert exc_info.value.details["cached"] == 10
