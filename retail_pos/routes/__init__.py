# Overview: Shared helpers for API routes.

from flask import jsonify

from ..services.errors import SaleError

HTTP_STATUS_BY_CODE = {
    "invalid_line": 400,
    "unknown_reference": 404,
    "insufficient_stock": 409,
    "invalid_transition": 409,
    "reference_in_use": 409,
    "conflict": 409,
    "timeout": 503,
    "constraint_violation": 500,
}


def sale_error_response(e: SaleError):
    return jsonify(e.to_dict()), HTTP_STATUS_BY_CODE.get(e.code, 400)
