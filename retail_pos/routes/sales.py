# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# retail_pos/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.errors import SaleError, ConstraintViolation
from . import sale_error_response


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
def record_sale_route():
    """
    Record a sale in one transaction.

    Body: customer_id, employee_id, payment_method,
          lines: [{product_id, quantity, discount_percent}], optional status
    """
    data = request.get_json(silent=True) or {}
    customer_id = data.get("customer_id")
    employee_id = data.get("employee_id")
    payment_method = data.get("payment_method")

    if not all([customer_id, employee_id, payment_method]):
        return jsonify({"error": "customer_id, employee_id and payment_method required"}), 400

    try:
        sale = sales_service.record_sale(
            customer_id=customer_id,
            employee_id=employee_id,
            payment_method=payment_method,
            lines=data.get("lines"),
            status=data.get("status", "completed"),
        )
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201

    except ConstraintViolation as e:
        current_app.logger.exception("Sale rejected by database constraint")
        return sale_error_response(e)
    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
def list_sales_route():
    status = request.args.get("status")
    customer_id = request.args.get("customer_id", type=int)
    sales = sales_service.list_sales(customer_id=customer_id, status=status)
    return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)}), 200


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    """Get sale with items."""
    try:
        sale = sales_service.get_sale(sale_id)
    except SaleError as e:
        return sale_error_response(e)
    return jsonify({"sale": sale.to_dict(include_items=True)}), 200


@sales_bp.post("/<int:sale_id>/complete")
def complete_sale_route(sale_id: int):
    """pending -> completed (credits loyalty points)."""
    try:
        sale = sales_service.complete_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/reverse")
def reverse_sale_route(sale_id: int):
    """
    Refund or cancel a sale: restocks items and takes back loyalty points.

    Body: reason (required), status: refunded (default) | cancelled, employee_id
    """
    data = request.get_json(silent=True) or {}
    reason = data.get("reason")
    if not reason:
        return jsonify({"error": "reason required"}), 400

    try:
        sale = sales_service.reverse_sale(
            sale_id,
            reason,
            target_status=data.get("status", "refunded"),
            employee_id=data.get("employee_id"),
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse sale")
        return jsonify({"error": "Internal server error"}), 500
