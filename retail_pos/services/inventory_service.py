# Overview: Service-layer operations for stock levels and the inventory log.

"""
Inventory invariants (authoritative)

- Product.stock is never negative, including inside a transaction.
- Every change to Product.stock appends exactly one InventoryLog row in the
  same transaction, with new_stock = previous_stock + quantity_change.
- Per product, logs ordered by (created_at, id) form an unbroken chain:
  each previous_stock equals the prior row's new_stock, the first row starts
  from 0 and the last new_stock equals the live stock.
- Log rows are append-only.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, InventoryLog, Employee, CHANGE_TYPES
from retail_pos.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .errors import InsufficientStock, InvalidLine, UnknownReference


def lock_products(product_ids) -> dict[int, Product]:
    """
    Load and row-lock products in id order (consistent order avoids deadlocks).

    populate_existing() forces a fresh read even if the identity map already
    holds the row, so the stock check sees committed state.
    """
    ids = sorted(set(product_ids))
    rows = (
        lock_for_update(db.session.query(Product).filter(Product.id.in_(ids)))
        .order_by(Product.id.asc())
        .populate_existing()
        .all()
    )
    return {p.id: p for p in rows}


def apply_stock_change(
    product: Product,
    quantity_change: int,
    *,
    change_type: str,
    reason: str | None = None,
    sale_id: int | None = None,
    employee_id: int | None = None,
) -> InventoryLog:
    """
    Move a locked product's stock and append the matching log row.

    Caller owns the transaction. Does not commit.
    """
    if change_type not in CHANGE_TYPES:
        raise InvalidLine(f"Unknown change_type {change_type!r}")
    if quantity_change == 0:
        raise InvalidLine("quantity_change must be non-zero")

    previous_stock = product.stock
    new_stock = previous_stock + quantity_change
    if new_stock < 0:
        raise InsufficientStock(product.id, -quantity_change, previous_stock)

    product.stock = new_stock

    log = InventoryLog(
        product_id=product.id,
        change_type=change_type,
        quantity_change=quantity_change,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
        sale_id=sale_id,
        employee_id=employee_id,
        created_at=utcnow(),
    )
    db.session.add(log)
    return log


def _require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidLine("quantity must be an integer")
    if quantity <= 0:
        raise InvalidLine("quantity must be > 0", details={"quantity": quantity})
    return quantity


def _clean_reason(reason, *, required: bool = False) -> str | None:
    if reason is None:
        if required:
            raise InvalidLine("reason is required for adjustments")
        return None
    if not isinstance(reason, str):
        raise InvalidLine("reason must be a string", details={"reason": repr(reason)})
    reason = reason.strip()
    if required and not reason:
        raise InvalidLine("reason is required for adjustments")
    return reason or None


def _move_stock(
    product_id: int,
    quantity_change: int,
    *,
    change_type: str,
    reason: str | None,
    employee_id: int | None,
) -> InventoryLog:
    def _op():
        if employee_id is not None and db.session.get(Employee, employee_id) is None:
            raise UnknownReference("employee", employee_id)

        product = lock_products([product_id]).get(product_id)
        if product is None:
            raise UnknownReference("product", product_id)

        return apply_stock_change(
            product,
            quantity_change,
            change_type=change_type,
            reason=reason,
            employee_id=employee_id,
        )

    log = run_in_transaction(_op)
    current_app.logger.info(
        "Stock %s product=%s change=%+d stock %d->%d",
        change_type, product_id, quantity_change, log.previous_stock, log.new_stock,
    )
    return log


def restock_product(
    product_id: int,
    quantity: int,
    *,
    reason: str | None = None,
    employee_id: int | None = None,
) -> InventoryLog:
    """Receive goods: stock += quantity."""
    quantity = _require_positive_quantity(quantity)
    reason = _clean_reason(reason)
    return _move_stock(
        product_id, quantity,
        change_type="restock", reason=reason or "Restock", employee_id=employee_id,
    )


def record_damage(
    product_id: int,
    quantity: int,
    *,
    reason: str | None = None,
    employee_id: int | None = None,
) -> InventoryLog:
    """Write off damaged units: stock -= quantity."""
    quantity = _require_positive_quantity(quantity)
    reason = _clean_reason(reason)
    return _move_stock(
        product_id, -quantity,
        change_type="damage", reason=reason or "Damaged goods", employee_id=employee_id,
    )


def adjust_stock(
    product_id: int,
    quantity_change: int,
    *,
    reason: str,
    employee_id: int | None = None,
) -> InventoryLog:
    """Signed correction (e.g. after a physical count). A reason is mandatory."""
    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int):
        raise InvalidLine("quantity_change must be an integer")
    if quantity_change == 0:
        raise InvalidLine("quantity_change must be non-zero")
    reason = _clean_reason(reason, required=True)
    return _move_stock(
        product_id, quantity_change,
        change_type="adjustment", reason=reason, employee_id=employee_id,
    )


def get_low_stock_products() -> list[Product]:
    """All products at or below their reorder point, most depleted first."""
    return (
        db.session.query(Product)
        .filter(Product.stock <= Product.min_stock)
        .order_by((Product.min_stock - Product.stock).desc(), Product.id.asc())
        .all()
    )


def get_inventory_history(product_id: int) -> list[InventoryLog]:
    if db.session.get(Product, product_id) is None:
        raise UnknownReference("product", product_id)
    return (
        db.session.query(InventoryLog)
        .filter(InventoryLog.product_id == product_id)
        .order_by(InventoryLog.created_at.asc(), InventoryLog.id.asc())
        .all()
    )


def verify_inventory_chain(product_id: int) -> list[dict]:
    """
    Check the log chain of one product. Returns a list of problems
    (empty when the chain reconstructs the live stock exactly).
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise UnknownReference("product", product_id)

    problems: list[dict] = []
    expected_previous = 0
    for log in get_inventory_history(product_id):
        if log.new_stock != log.previous_stock + log.quantity_change:
            problems.append({
                "log_id": log.id,
                "problem": "unbalanced",
                "previous_stock": log.previous_stock,
                "quantity_change": log.quantity_change,
                "new_stock": log.new_stock,
            })
        if log.previous_stock != expected_previous:
            problems.append({
                "log_id": log.id,
                "problem": "gap",
                "expected_previous_stock": expected_previous,
                "previous_stock": log.previous_stock,
            })
        expected_previous = log.new_stock

    if expected_previous != product.stock:
        problems.append({
            "log_id": None,
            "problem": "stock_mismatch",
            "logged_stock": expected_previous,
            "stock": product.stock,
        })
    return problems
