"""
Sales Service - recording sales and their compensating reversals.

record_sale() is the only place a sale comes into existence. In one
transaction it locks the products, checks stock, snapshots prices, writes
the sale and its items, moves stock with one InventoryLog row per product,
and credits loyalty points. Either all of it commits or none of it does.

LIFECYCLE:
- pending -> completed   complete_sale(): credits points
- pending -> cancelled   reverse_sale(): restocks (no points were credited)
- completed -> refunded | cancelled   reverse_sale(): restocks, takes points back

Sale items are never edited after creation; reversals write new log rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Mapping

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleItem, Customer, Employee, PAYMENT_METHODS
from retail_pos.time_utils import utcnow, normalize_utc, is_in_future
from .concurrency import lock_for_update, run_in_transaction
from .errors import (
    InsufficientStock,
    InvalidLine,
    InvalidTransition,
    UnknownReference,
)
from .inventory_service import apply_stock_change, lock_products
from .tax import TaxPolicy, default_tax_policy


ALLOWED_TRANSITIONS = {
    "pending": {"completed", "cancelled"},
    "completed": {"refunded", "cancelled"},
    "cancelled": set(),
    "refunded": set(),
}

INITIAL_STATUSES = ("completed", "pending")
REVERSAL_STATUSES = ("refunded", "cancelled")


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int
    discount_percent: Decimal = Decimal("0")

    @property
    def discount_bps(self) -> int:
        return int((self.discount_percent * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _to_line_request(raw, index: int) -> LineRequest:
    if isinstance(raw, LineRequest):
        product_id, quantity, discount = raw.product_id, raw.quantity, raw.discount_percent
    elif isinstance(raw, Mapping):
        product_id = raw.get("product_id")
        quantity = raw.get("quantity")
        discount = raw.get("discount_percent", 0)
    else:
        raise InvalidLine(f"Line {index} must be an object", details={"line": index})

    if isinstance(product_id, bool) or not isinstance(product_id, int):
        raise InvalidLine(f"Line {index}: product_id must be an integer", details={"line": index})
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidLine(f"Line {index}: quantity must be an integer", details={"line": index})
    if quantity <= 0:
        raise InvalidLine(
            f"Line {index}: quantity must be > 0",
            details={"line": index, "quantity": quantity},
        )

    if discount is None or isinstance(discount, bool):
        raise InvalidLine(f"Line {index}: discount_percent must be a number", details={"line": index})
    try:
        discount = Decimal(str(discount))
    except InvalidOperation:
        raise InvalidLine(f"Line {index}: discount_percent must be a number", details={"line": index})
    if not discount.is_finite() or discount < 0 or discount > 100:
        raise InvalidLine(
            f"Line {index}: discount_percent must be between 0 and 100",
            details={"line": index, "discount_percent": str(discount)},
        )
    if discount.normalize().as_tuple().exponent < -2:
        raise InvalidLine(
            f"Line {index}: discount_percent allows at most 2 decimal places",
            details={"line": index, "discount_percent": str(discount)},
        )

    return LineRequest(product_id=product_id, quantity=quantity, discount_percent=discount)


def normalize_lines(lines: Iterable | None) -> list[LineRequest]:
    """Validate line requests before any database work is done."""
    lines = list(lines or [])
    if not lines:
        raise InvalidLine("A sale needs at least one line")
    return [_to_line_request(raw, i) for i, raw in enumerate(lines)]


def item_subtotal_cents(quantity: int, unit_price_cents: int, discount_bps: int) -> int:
    """quantity * unit_price * (1 - discount/100), half-up to the cent."""
    numerator = quantity * unit_price_cents * (10_000 - discount_bps)
    return (numerator + 5_000) // 10_000


def points_for_total(total_amount_cents: int) -> int:
    """One point per full currency unit block (default $10), floored."""
    per_point = current_app.config.get("POINTS_PER_CURRENCY_UNIT", 1000)
    return max(total_amount_cents, 0) // per_point


def _lock_sale(sale_id: int) -> Sale:
    sale = (
        lock_for_update(db.session.query(Sale).filter_by(id=sale_id))
        .populate_existing()
        .first()
    )
    if sale is None:
        raise UnknownReference("sale", sale_id)
    return sale


def _lock_customer(customer_id: int) -> Customer:
    customer = (
        lock_for_update(db.session.query(Customer).filter_by(id=customer_id))
        .populate_existing()
        .first()
    )
    if customer is None:
        raise UnknownReference("customer", customer_id)
    return customer


def _require_transition(sale: Sale, new_status: str) -> None:
    if new_status not in ALLOWED_TRANSITIONS.get(sale.status, set()):
        raise InvalidTransition(sale.status, new_status)


def _award_points(sale: Sale, customer: Customer) -> int:
    points = points_for_total(sale.total_amount_cents)
    sale.points_earned = points
    customer.points = customer.points + points
    return points


def record_sale(
    customer_id: int,
    employee_id: int,
    payment_method: str,
    lines: Iterable,
    *,
    status: str = "completed",
    tax_policy: TaxPolicy | None = None,
    sale_date: datetime | None = None,
) -> Sale:
    """
    Record a sale atomically.

    Args:
        customer_id: Buying customer (must exist)
        employee_id: Acting employee, already authenticated (must exist)
        payment_method: cash | card | transfer | other
        lines: LineRequest objects or dicts with product_id, quantity,
            discount_percent (0-100, default 0)
        status: "completed" (default) or "pending"; pending sales move
            stock but credit no points until complete_sale()
        tax_policy: tax(subtotal_cents) -> tax_cents; defaults to the
            configured flat rate
        sale_date: Business time of the sale; defaults to now, never in
            the future

    Returns:
        The committed Sale with its items

    Raises:
        InvalidLine, UnknownReference, InsufficientStock,
        Conflict, Timeout, ConstraintViolation
    """
    requests = normalize_lines(lines)

    if payment_method not in PAYMENT_METHODS:
        raise InvalidLine(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": payment_method},
        )
    if status not in INITIAL_STATUSES:
        raise InvalidLine(
            f"A new sale must be {' or '.join(INITIAL_STATUSES)}",
            details={"status": status},
        )
    if is_in_future(sale_date):
        raise InvalidLine("sale_date cannot be in the future")

    tax = tax_policy or default_tax_policy()

    requested: dict[int, int] = {}
    for req in requests:
        requested[req.product_id] = requested.get(req.product_id, 0) + req.quantity

    def _op():
        customer = _lock_customer(customer_id)
        if db.session.get(Employee, employee_id) is None:
            raise UnknownReference("employee", employee_id)

        products = lock_products(requested.keys())
        for req in requests:
            if req.product_id not in products:
                raise UnknownReference("product", req.product_id)
            if not products[req.product_id].is_active:
                raise InvalidLine(
                    f"Product {req.product_id} is inactive",
                    details={"product_id": req.product_id},
                )

        for product_id, quantity in requested.items():
            available = products[product_id].stock
            if quantity > available:
                raise InsufficientStock(product_id, quantity, available)

        items = []
        for req in requests:
            unit_price_cents = products[req.product_id].price_cents
            discount_bps = req.discount_bps
            items.append(SaleItem(
                product_id=req.product_id,
                quantity=req.quantity,
                unit_price_cents=unit_price_cents,
                discount_bps=discount_bps,
                subtotal_cents=item_subtotal_cents(req.quantity, unit_price_cents, discount_bps),
            ))

        subtotal_cents = sum(item.subtotal_cents for item in items)
        tax_cents = int(tax(subtotal_cents))
        if tax_cents < 0:
            raise InvalidLine("Tax policy returned a negative amount", details={"tax_cents": tax_cents})

        sale = Sale(
            customer_id=customer.id,
            employee_id=employee_id,
            sale_date=normalize_utc(sale_date) if sale_date else utcnow(),
            subtotal_cents=subtotal_cents,
            tax_cents=tax_cents,
            total_amount_cents=subtotal_cents + tax_cents,
            payment_method=payment_method,
            status=status,
            points_earned=0,
        )
        sale.items.extend(items)
        db.session.add(sale)
        db.session.flush()

        for product_id in sorted(requested):
            apply_stock_change(
                products[product_id],
                -requested[product_id],
                change_type="sale",
                reason=f"Sale #{sale.id}",
                sale_id=sale.id,
                employee_id=employee_id,
            )

        if status == "completed":
            _award_points(sale, customer)

        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info(
        "Recorded sale id=%s status=%s total_cents=%s points=%s",
        sale.id, sale.status, sale.total_amount_cents, sale.points_earned,
    )
    return sale


def complete_sale(sale_id: int) -> Sale:
    """pending -> completed. Credits the loyalty points for the sale total."""
    def _op():
        sale = _lock_sale(sale_id)
        _require_transition(sale, "completed")
        customer = _lock_customer(sale.customer_id)
        _award_points(sale, customer)
        sale.status = "completed"
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info("Completed sale id=%s points=%s", sale.id, sale.points_earned)
    return sale


def reverse_sale(
    sale_id: int,
    reason: str | None = None,
    *,
    target_status: str = "refunded",
    employee_id: int | None = None,
) -> Sale:
    """
    Compensate a sale: restock every item and take back the points.

    Refunds and cancellations reverse identically. The points removed are
    the points this sale credited; if the customer has already spent some,
    the balance stops at 0 and the shortfall is logged.
    """
    if target_status not in REVERSAL_STATUSES:
        raise InvalidLine(
            f"target_status must be one of: {', '.join(REVERSAL_STATUSES)}",
            details={"target_status": target_status},
        )

    def _op():
        sale = _lock_sale(sale_id)
        _require_transition(sale, target_status)

        customer = None
        if sale.status == "completed" and sale.points_earned:
            customer = _lock_customer(sale.customer_id)

        if employee_id is not None and db.session.get(Employee, employee_id) is None:
            raise UnknownReference("employee", employee_id)

        returned: dict[int, int] = {}
        for item in sale.items:
            returned[item.product_id] = returned.get(item.product_id, 0) + item.quantity

        products = lock_products(returned.keys())
        for product_id in sorted(returned):
            apply_stock_change(
                products[product_id],
                returned[product_id],
                change_type="return",
                reason=f"Reversal of sale #{sale.id}" + (f": {reason}" if reason else ""),
                sale_id=sale.id,
                employee_id=employee_id,
            )

        if customer is not None:
            deducted = min(sale.points_earned, customer.points)
            shortfall = sale.points_earned - deducted
            if shortfall:
                current_app.logger.warning(
                    "Sale %s reversal: customer %s holds %s of %s awarded points; %s not recovered",
                    sale.id, customer.id, customer.points, sale.points_earned, shortfall,
                )
            customer.points = customer.points - deducted

        sale.status = target_status
        sale.reversed_at = utcnow()
        sale.reversal_reason = reason
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info("Reversed sale id=%s -> %s", sale.id, sale.status)
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise UnknownReference("sale", sale_id)
    return sale


def list_sales(*, customer_id: int | None = None, status: str | None = None) -> list[Sale]:
    query = db.session.query(Sale)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if status is not None:
        query = query.filter(Sale.status == status)
    return query.order_by(Sale.sale_date.desc(), Sale.id.desc()).all()
