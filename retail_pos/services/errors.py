"""
Error taxonomy for the sale recording core.

Every error raised from a unit of work means the transaction was rolled
back: no partial sale, no stock change, no log row, no points.

- Caller must correct the request: InsufficientStock, UnknownReference,
  InvalidLine, InvalidTransition, ReferenceInUse
- Caller may retry: Conflict, Timeout
- Never retried: ConstraintViolation (the database rejected a write the
  service layer should have caught)
"""
from __future__ import annotations


class SaleError(Exception):
    """Base class for sale/inventory operation errors."""
    code = "sale_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class InsufficientStock(SaleError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class UnknownReference(SaleError):
    code = "unknown_reference"

    def __init__(self, entity_type: str, entity_id):
        super().__init__(
            f"{entity_type} {entity_id} not found",
            details={"entity_type": entity_type, "id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidLine(SaleError):
    code = "invalid_line"

    def __init__(self, reason: str, details: dict | None = None):
        super().__init__(reason, details=details)
        self.reason = reason


class InvalidTransition(SaleError):
    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Cannot move sale from {from_status} to {to_status}",
            details={"from": from_status, "to": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class ReferenceInUse(SaleError):
    """Restrict-delete: the row is still referenced by sales or logs."""
    code = "reference_in_use"

    def __init__(self, entity_type: str, entity_id, dependents: dict | None = None):
        super().__init__(
            f"{entity_type} {entity_id} is referenced by existing records",
            details={"entity_type": entity_type, "id": entity_id, "dependents": dependents or {}},
        )


class Conflict(SaleError):
    """Concurrent writers kept colliding until retries ran out."""
    code = "conflict"


class Timeout(SaleError):
    """The unit of work outlived its deadline and was rolled back."""
    code = "timeout"


class ConstraintViolation(SaleError):
    code = "constraint_violation"
