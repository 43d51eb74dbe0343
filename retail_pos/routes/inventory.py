# Overview: Flask API routes for stock levels and the inventory log.

from flask import Blueprint, request, jsonify, current_app

from ..services import inventory_service
from ..services.errors import SaleError
from . import sale_error_response

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/low-stock")
def low_stock_route():
    products = inventory_service.get_low_stock_products()
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@inventory_bp.get("/<int:product_id>/history")
def history_route(product_id: int):
    try:
        logs = inventory_service.get_inventory_history(product_id)
    except SaleError as e:
        return sale_error_response(e)
    return jsonify({"items": [log.to_dict() for log in logs], "count": len(logs)}), 200


@inventory_bp.get("/<int:product_id>/verify")
def verify_route(product_id: int):
    try:
        problems = inventory_service.verify_inventory_chain(product_id)
    except SaleError as e:
        return sale_error_response(e)
    return jsonify({"product_id": product_id, "ok": not problems, "problems": problems}), 200


def _movement(product_id: int, op):
    data = request.get_json(silent=True) or {}
    try:
        log = op(data)
        return jsonify({"log": log.to_dict()}), 201
    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to move stock for product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:product_id>/restock")
def restock_route(product_id: int):
    """Body: quantity (> 0), optional reason, employee_id."""
    return _movement(product_id, lambda data: inventory_service.restock_product(
        product_id,
        data.get("quantity"),
        reason=data.get("reason"),
        employee_id=data.get("employee_id"),
    ))


@inventory_bp.post("/<int:product_id>/adjust")
def adjust_route(product_id: int):
    """Body: quantity_change (signed, non-zero), reason (required), employee_id."""
    return _movement(product_id, lambda data: inventory_service.adjust_stock(
        product_id,
        data.get("quantity_change"),
        reason=data.get("reason"),
        employee_id=data.get("employee_id"),
    ))


@inventory_bp.post("/<int:product_id>/damage")
def damage_route(product_id: int):
    """Body: quantity (> 0), optional reason, employee_id."""
    return _movement(product_id, lambda data: inventory_service.record_damage(
        product_id,
        data.get("quantity"),
        reason=data.get("reason"),
        employee_id=data.get("employee_id"),
    ))
