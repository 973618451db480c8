# Overview: Flask API routes for filters, analytics and stock administration.

from datetime import timedelta

from flask import Blueprint, jsonify, request

from ..decorators import handle_pos_errors
from ..errors import InvalidFilter
from ..services.core import get_core
from ..time_utils import parse_iso_datetime
from ..validation import coerce_int, coerce_quantity, field, require_identifier, require_payload

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

# Query parameter spellings accepted for each filter dimension
_FILTER_PARAMS = {
    "store_id": "store_id",
    "storeId": "store_id",
    "cashier_id": "cashier_id",
    "cashierId": "cashier_id",
    "sku": "sku",
}
_RANGE_PARAMS = {"start", "end", "day", "group_by", "groupBy"}


def _parse_time(name: str, value: str | None):
    try:
        return parse_iso_datetime(value)
    except (ValueError, OverflowError):
        raise InvalidFilter(f"{name} must be an ISO-8601 datetime", details={name: value})


def _parse_analytics_args():
    """Split query params into (filters, start, end). Unknown params are unknown dimensions."""
    filters = {}
    for name, value in request.args.items():
        if name in _RANGE_PARAMS:
            continue
        dimension = _FILTER_PARAMS.get(name, name)
        filters[dimension] = value

    day = request.args.get("day")
    if day:
        start = _parse_time("day", day)
        try:
            end = start + timedelta(days=1)
        except OverflowError:
            raise InvalidFilter("day is out of range", details={"day": day})
        return filters, start, end
    return filters, _parse_time("start", request.args.get("start")), _parse_time("end", request.args.get("end"))


@admin_bp.get("/filters")
@handle_pos_errors("list filters")
def filters_route():
    dimensions = get_core().filters.list_dimensions()
    return jsonify({"dimensions": [d.to_dict() for d in dimensions]}), 200


@admin_bp.get("/analytics/summary")
@handle_pos_errors("build analytics summary")
def analytics_summary_route():
    """
    Totals for the filters over [start, end) (or one whole ?day=YYYY-MM-DD).

    Example: /admin/analytics/summary?storeId=S1&day=2026-01-15
    """
    filters, start, end = _parse_analytics_args()
    summary = get_core().aggregator.query(filters, start, end)
    return jsonify({"summary": summary.to_dict()}), 200


@admin_bp.get("/analytics/series")
@handle_pos_errors("build analytics series")
def analytics_series_route():
    filters, start, end = _parse_analytics_args()
    group_by = request.args.get("group_by") or request.args.get("groupBy") or "day"
    result = get_core().aggregator.series(filters, start, end, group_by=group_by)
    return jsonify({"series": result}), 200


@admin_bp.post("/inventory/restock")
@handle_pos_errors("restock inventory")
def restock_route():
    data = require_payload(request.get_json(silent=True))
    sku = require_identifier("sku", data.get("sku"))
    quantity = coerce_quantity(data.get("quantity"))
    core = get_core()
    core.catalog.lookup(sku)
    delta = core.ledger.restock(sku, quantity, note=data.get("note"))
    return jsonify({"delta": delta.to_dict(), "stock": core.ledger.stock(sku).to_dict()}), 201


@admin_bp.post("/inventory/adjust")
@handle_pos_errors("adjust inventory")
def adjust_route():
    data = require_payload(request.get_json(silent=True))
    sku = require_identifier("sku", data.get("sku"))
    delta_qty = coerce_quantity(field(data, "delta", "quantity_delta"), name="delta", allow_negative=True)
    core = get_core()
    core.catalog.lookup(sku)
    delta = core.ledger.adjust(sku, delta_qty, note=data.get("note"))
    return jsonify({"delta": delta.to_dict(), "stock": core.ledger.stock(sku).to_dict()}), 201


@admin_bp.get("/inventory/<sku>")
@handle_pos_errors("load stock")
def stock_route(sku: str):
    limit = coerce_int("limit", request.args.get("limit", "50"))
    core = get_core()
    product = core.catalog.lookup(sku)
    return jsonify({
        "product": product.to_dict(),
        "stock": core.ledger.stock(sku).to_dict(),
        "history": [d.to_dict() for d in core.ledger.history(sku, limit=max(1, min(limit, 500)))],
    }), 200


@admin_bp.post("/catalog/reload")
@handle_pos_errors("reload catalog")
def reload_catalog_route():
    count = get_core().catalog.reload()
    return jsonify({"products": count}), 200
