# Overview: Flask API routes for the point of sale; parses input and returns JSON responses.

"""POS routes. Cashier and store identities arrive already authenticated
and are treated as opaque strings."""

from flask import Blueprint, jsonify, request

from ..decorators import handle_pos_errors
from ..services.core import get_core
from ..validation import (
    coerce_quantity,
    field,
    parse_line_items,
    require_identifier,
    require_payload,
)

pos_bp = Blueprint("pos", __name__, url_prefix="/pos")


def _identity(data: dict) -> tuple[str, str]:
    cashier_id = require_identifier("cashierId", field(data, "cashier_id", "cashierId"))
    store_id = require_identifier("storeId", field(data, "store_id", "storeId"))
    return cashier_id, store_id


@pos_bp.post("/scan")
@handle_pos_errors("scan item")
def scan_route():
    """
    Resolve a scanned SKU.

    Without cart_id the line is priced only (no stock held). With cart_id the
    line is added to that DRAFT cart and stock is held for it.
    """
    data = require_payload(request.get_json(silent=True))
    sku = require_identifier("sku", data.get("sku"))
    quantity = coerce_quantity(data.get("quantity", 1))
    cart_id = field(data, "cart_id", "cartId")

    engine = get_core().engine
    if cart_id:
        cart_id = require_identifier("cartId", cart_id)
        line = engine.add_line(cart_id, sku, quantity)
        return jsonify({"line": line.to_dict(), "cart": engine.get_cart(cart_id).to_dict()}), 201

    return jsonify({"line": engine.preview_line(sku, quantity)}), 200


@pos_bp.post("/carts")
@handle_pos_errors("open cart")
def open_cart_route():
    cart = get_core().engine.open_cart()
    return jsonify({"cart": cart.to_dict()}), 201


@pos_bp.get("/carts/<cart_id>")
@handle_pos_errors("load cart")
def get_cart_route(cart_id: str):
    cart = get_core().engine.get_cart(cart_id)
    return jsonify({"cart": cart.to_dict()}), 200


@pos_bp.delete("/carts/<cart_id>/lines/<line_id>")
@handle_pos_errors("remove cart line")
def remove_line_route(cart_id: str, line_id: str):
    engine = get_core().engine
    line = engine.remove_line(cart_id, line_id)
    return jsonify({"removed": line.to_dict(), "cart": engine.get_cart(cart_id).to_dict()}), 200


@pos_bp.delete("/carts/<cart_id>")
@handle_pos_errors("abandon cart")
def abandon_cart_route(cart_id: str):
    cart = get_core().engine.abandon(cart_id)
    return jsonify({"cart": cart.to_dict()}), 200


@pos_bp.post("/carts/<cart_id>/commit")
@handle_pos_errors("commit cart")
def commit_cart_route(cart_id: str):
    data = require_payload(request.get_json(silent=True))
    cashier_id, store_id = _identity(data)
    invoice = get_core().engine.commit(cart_id, cashier_id=cashier_id, store_id=store_id)
    return jsonify({"invoice": invoice.to_dict()}), 201


@pos_bp.post("/invoices")
@handle_pos_errors("create invoice")
def create_invoice_route():
    """
    Scan and commit in one call.

    Body: {cashierId, storeId, lines: [{sku, quantity?}, ...]}
    409 when stock is short or a hold went stale; nothing is committed then.
    """
    data = require_payload(request.get_json(silent=True))
    cashier_id, store_id = _identity(data)
    items = parse_line_items(data.get("lines"))
    invoice = get_core().engine.create_invoice(cashier_id=cashier_id, store_id=store_id, items=items)
    return jsonify({"invoice": invoice.to_dict()}), 201


@pos_bp.get("/invoices/<int:invoice_id>")
@handle_pos_errors("load invoice")
def get_invoice_route(invoice_id: int):
    invoice = get_core().engine.get_invoice(invoice_id)
    return jsonify({"invoice": invoice.to_dict()}), 200


@pos_bp.post("/invoices/<int:invoice_id>/void")
@handle_pos_errors("void invoice")
def void_invoice_route(invoice_id: int):
    data = require_payload(request.get_json(silent=True))
    reason = data.get("reason")
    if reason is not None:
        reason = str(reason).strip()[:255] or None
    invoice = get_core().engine.void(invoice_id, reason=reason)
    return jsonify({"invoice": invoice.to_dict()}), 200
