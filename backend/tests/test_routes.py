# Overview: Pytest coverage for the HTTP surface.

import pytest


@pytest.fixture
def checkout(client, clock, products):
    """Two invoices in S1 on 2026-01-15; the second is voided."""
    resp = client.post("/pos/invoices", json={
        "cashierId": "C1",
        "storeId": "S1",
        "lines": [{"sku": "A", "quantity": 2}, {"sku": "B"}],
    })
    assert resp.status_code == 201, resp.get_json()
    first = resp.get_json()["invoice"]

    resp = client.post("/pos/invoices", json={"cashier_id": "C2", "store_id": "S1", "lines": [{"sku": "C"}]})
    second = resp.get_json()["invoice"]
    resp = client.post(f"/pos/invoices/{second['id']}/void", json={"reason": "mis-scan"})
    assert resp.status_code == 200
    return first, second


class TestSystem:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "ok"
        assert body["database"]["status"] == "healthy"


class TestScan:
    def test_scan_without_cart_prices_only(self, client, products):
        resp = client.post("/pos/scan", json={"sku": "A"})
        assert resp.status_code == 200
        line = resp.get_json()["line"]
        assert line["sku"] == "A"
        assert line["line_total"] == "10.00"
        assert line["tax_cents"] == 50

    def test_scan_unknown_sku(self, client, products):
        resp = client.post("/pos/scan", json={"sku": "NOPE"})
        assert resp.status_code == 404
        assert resp.get_json()["details"] == {"sku": "NOPE"}

    def test_scan_more_than_in_stock(self, client, products):
        resp = client.post("/pos/scan", json={"sku": "A", "quantity": 11})
        assert resp.status_code == 409

    @pytest.mark.parametrize("body", [
        {},
        {"sku": ""},
        {"sku": "A", "quantity": 1.5},
        {"sku": "A", "quantity": 0},
        {"sku": "A", "quantity": "1e3"},
    ])
    def test_scan_validation(self, client, products, body):
        resp = client.post("/pos/scan", json=body)
        assert resp.status_code == 400

    def test_scan_into_cart_and_commit(self, client, clock, products):
        cart_id = client.post("/pos/carts").get_json()["cart"]["id"]

        resp = client.post("/pos/scan", json={"sku": "A", "quantity": 2, "cartId": cart_id})
        assert resp.status_code == 201
        resp = client.post("/pos/scan", json={"sku": "B", "cart_id": cart_id})
        assert resp.get_json()["cart"]["total"] == "42.00"

        resp = client.get(f"/pos/carts/{cart_id}")
        assert len(resp.get_json()["cart"]["lines"]) == 2

        resp = client.post(f"/pos/carts/{cart_id}/commit", json={"cashierId": "C1", "storeId": "S1"})
        assert resp.status_code == 201
        invoice = resp.get_json()["invoice"]
        assert (invoice["subtotal"], invoice["tax"], invoice["total"]) == ("40.00", "2.00", "42.00")
        assert invoice["status"] == "COMMITTED"

        assert client.get(f"/pos/carts/{cart_id}").status_code == 404

    def test_remove_line_and_abandon(self, client, clock, products):
        cart_id = client.post("/pos/carts").get_json()["cart"]["id"]
        line_id = client.post("/pos/scan", json={"sku": "A", "cartId": cart_id}).get_json()["line"]["id"]

        resp = client.delete(f"/pos/carts/{cart_id}/lines/{line_id}")
        assert resp.status_code == 200
        assert resp.get_json()["cart"]["lines"] == []
        assert client.delete(f"/pos/carts/{cart_id}/lines/{line_id}").status_code == 404

        resp = client.delete(f"/pos/carts/{cart_id}")
        assert resp.get_json()["cart"]["status"] == "ABANDONED"

    def test_commit_requires_identity(self, client, clock, products):
        cart_id = client.post("/pos/carts").get_json()["cart"]["id"]
        client.post("/pos/scan", json={"sku": "A", "cartId": cart_id})
        resp = client.post(f"/pos/carts/{cart_id}/commit", json={"cashierId": "C1"})
        assert resp.status_code == 400


class TestInvoices:
    def test_create_and_fetch(self, client, checkout):
        first, _ = checkout
        assert first["total"] == "42.00"
        assert first["number"].startswith("INV-")

        resp = client.get(f"/pos/invoices/{first['id']}")
        assert resp.status_code == 200
        assert [l["sku"] for l in resp.get_json()["invoice"]["lines"]] == ["A", "B"]

    def test_unknown_invoice(self, client):
        assert client.get("/pos/invoices/999").status_code == 404

    def test_insufficient_stock_commits_nothing(self, client, clock, products):
        resp = client.post("/pos/invoices", json={
            "cashierId": "C1", "storeId": "S1", "lines": [{"sku": "A"}, {"sku": "B", "quantity": 99}],
        })
        assert resp.status_code == 409
        stock = client.get("/admin/inventory/A").get_json()["stock"]
        assert stock == {"sku": "A", "quantity_on_hand": 10, "reserved": 0, "available": 10}

    def test_lines_required(self, client, products):
        resp = client.post("/pos/invoices", json={"cashierId": "C1", "storeId": "S1", "lines": []})
        assert resp.status_code == 400

    def test_void_twice_conflicts(self, client, checkout):
        _, second = checkout
        resp = client.post(f"/pos/invoices/{second['id']}/void", json={})
        assert resp.status_code == 409


class TestAdmin:
    def test_filters(self, client, checkout):
        resp = client.get("/admin/filters")
        dims = {d["name"]: d["values"] for d in resp.get_json()["dimensions"]}
        assert dims["store_id"] == ["S1"]
        assert dims["cashier_id"] == ["C1", "C2"]
        assert dims["sku"] == ["A", "B", "C"]

    def test_summary_for_a_day(self, client, checkout):
        resp = client.get("/admin/analytics/summary?storeId=S1&day=2026-01-15")
        assert resp.status_code == 200
        summary = resp.get_json()["summary"]
        assert summary["total"] == "42.00"
        assert summary["count"] == 1
        assert summary["void_count"] == 1

    def test_summary_with_explicit_range(self, client, checkout):
        resp = client.get(
            "/admin/analytics/summary",
            query_string={"sku": "A", "start": "2026-01-15T00:00:00Z", "end": "2026-01-16T00:00:00Z"},
        )
        summary = resp.get_json()["summary"]
        assert summary["quantity"] == 2
        assert summary["filters"] == {"sku": "A"}

    @pytest.mark.parametrize("query", [
        "region=north&day=2026-01-15",
        "storeId=S9&day=2026-01-15",
        "storeId=S1",
        "storeId=S1&start=yesterday&end=today",
        "start=2026-01-01&end=9999-12-31T23:30Z",
        "start=2026-01-01&end=9999-12-31T23:30-05:00",
        "day=9999-12-31",
    ])
    def test_summary_invalid_filter(self, client, checkout, query):
        resp = client.get(f"/admin/analytics/summary?{query}")
        assert resp.status_code == 400

    def test_series(self, client, checkout):
        resp = client.get("/admin/analytics/series?day=2026-01-15&group_by=hour")
        assert resp.status_code == 200
        rows = resp.get_json()["series"]["rows"]
        assert len(rows) == 24
        assert sum(row["total_cents"] for row in rows) == 4200

    def test_restock_and_stock_history(self, client, products):
        resp = client.post("/admin/inventory/restock", json={"sku": "A", "quantity": 5, "note": "Delivery"})
        assert resp.status_code == 201
        assert resp.get_json()["stock"]["quantity_on_hand"] == 15

        resp = client.get("/admin/inventory/A?limit=1")
        body = resp.get_json()
        assert body["product"]["name"] == "Milk 1L"
        assert [d["delta"] for d in body["history"]] == [5]

    def test_restock_unknown_sku(self, client, products):
        resp = client.post("/admin/inventory/restock", json={"sku": "NOPE", "quantity": 5})
        assert resp.status_code == 404

    def test_adjust_cannot_go_negative(self, client, products):
        resp = client.post("/admin/inventory/adjust", json={"sku": "A", "delta": -11})
        assert resp.status_code == 409
        resp = client.post("/admin/inventory/adjust", json={"sku": "A", "delta": -4, "note": "breakage"})
        assert resp.get_json()["stock"]["available"] == 6

    def test_catalog_reload(self, client, products):
        resp = client.post("/admin/catalog/reload")
        assert resp.get_json() == {"products": 3}
