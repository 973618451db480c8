# Overview: Pytest coverage for the flask CLI command groups.

import pytest


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_seed_is_idempotent(runner, core):
    result = runner.invoke(args=["pos", "seed"])
    assert result.exit_code == 0, result.output
    assert "Opening stock posted for 4 product(s)" in result.output

    result = runner.invoke(args=["pos", "seed"])
    assert "Opening stock posted for 0 product(s)" in result.output
    assert core.ledger.quantity_on_hand("A") == 50
    assert core.catalog.lookup("D").tax_rate_bps == 1200


def test_catalog_add_and_restock(runner, core):
    result = runner.invoke(args=["catalog", "add", "--sku", "X1", "--name", "Rice 5kg", "--price", "12.40", "--tax-rate", "5%"])
    assert result.exit_code == 0, result.output
    assert "X1 Rice 5kg @ 12.40 tax 500 bps" in result.output

    result = runner.invoke(args=["inventory", "restock", "X1", "7"])
    assert result.exit_code == 0, result.output
    assert core.ledger.quantity_on_hand("X1") == 7


def test_catalog_add_rejects_bad_price(runner):
    result = runner.invoke(args=["catalog", "add", "--sku", "X1", "--name", "Rice", "--price", "12.345"])
    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_restock_unknown_sku_fails(runner, products):
    result = runner.invoke(args=["inventory", "restock", "NOPE", "3"])
    assert result.exit_code == 1
    assert "Product not found" in result.output


def test_analytics_commands(runner, core, clock, products):
    core.engine.create_invoice(cashier_id="C1", store_id="S1", items=[("A", 1)])

    result = runner.invoke(args=["analytics", "verify"])
    assert result.exit_code == 0, result.output
    assert "match the event log" in result.output

    result = runner.invoke(args=["analytics", "rebuild", "--yes"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(args=["analytics", "drain"])
    assert "Delivered 0 pending event(s)." in result.output


def test_reservations_expire(runner, core, clock, products):
    cart = core.engine.open_cart()
    core.engine.add_line(cart.id, "A", 2)
    clock.advance(hours=1)

    result = runner.invoke(args=["reservations", "expire"])
    assert result.exit_code == 0, result.output
    assert "Abandoned 1 idle cart(s)" in result.output
    assert core.ledger.available("A") == 10
