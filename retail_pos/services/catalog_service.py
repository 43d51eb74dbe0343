# retail_pos/services/catalog_service.py
"""
Catalog Service - plain storage operations for master data.

Products, customers, employees, categories and suppliers are created and
edited here. Deletes follow the schema's policies:
- RESTRICT: a product, customer or employee referenced by sales or
  inventory history cannot be deleted (ReferenceInUse).
- CASCADE: deleting a sale removes its items. Only reversed sales may be
  purged, so the stock they moved has already been put back.
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Supplier, Product, Customer, Employee, Sale, SaleItem, InventoryLog
from ..validation import ConflictError, ValidationError, enforce_rules_product, enforce_rules_employee
from .errors import ReferenceInUse, UnknownReference
from .inventory_service import apply_stock_change


def _commit_or_conflict(message: str) -> None:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(message) from exc


def _get_or_unknown(model, entity_type: str, entity_id: int):
    obj = db.session.get(model, entity_id)
    if obj is None:
        raise UnknownReference(entity_type, entity_id)
    return obj


# =============================================================================
# CATEGORIES / SUPPLIERS
# =============================================================================

def create_category(*, patch: dict) -> Category:
    if db.session.query(Category).filter_by(name=patch["name"]).first():
        raise ConflictError("Category name already exists.")
    category = Category(**patch)
    db.session.add(category)
    _commit_or_conflict("Category name already exists.")
    return category


def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


def create_supplier(*, patch: dict) -> Supplier:
    supplier = Supplier(**patch)
    db.session.add(supplier)
    db.session.commit()
    return supplier


def list_suppliers() -> list[Supplier]:
    return db.session.query(Supplier).order_by(Supplier.name.asc()).all()


# =============================================================================
# PRODUCTS
# =============================================================================

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "description", "category_id", "supplier_id",
    "price_cents", "cost_cents", "min_stock", "is_active",
}


def _check_product_refs(patch: dict) -> None:
    if patch.get("category_id") is not None:
        _get_or_unknown(Category, "category", patch["category_id"])
    if patch.get("supplier_id") is not None:
        _get_or_unknown(Supplier, "supplier", patch["supplier_id"])


def create_product(*, patch: dict, employee_id: int | None = None) -> Product:
    """
    Create a product. Opening stock is booked as a restock log row so the
    product's inventory chain starts from zero.

    Raises:
        ValidationError: price/cost/stock rules
        ConflictError: duplicate SKU
        UnknownReference: category or supplier missing
    """
    enforce_rules_product(patch)
    _check_product_refs(patch)

    if db.session.query(Product).filter_by(sku=patch["sku"]).first():
        raise ConflictError("SKU already exists.")

    opening_stock = patch.get("stock") or 0
    fields = {k: v for k, v in patch.items() if k in PRODUCT_MUTABLE_FIELDS}
    product = Product(stock=0, **fields)
    db.session.add(product)
    db.session.flush()

    if opening_stock:
        apply_stock_change(
            product,
            opening_stock,
            change_type="restock",
            reason="Opening stock",
            employee_id=employee_id,
        )

    _commit_or_conflict("SKU already exists.")
    return product


def list_products(*, low_stock_only: bool = False, include_inactive: bool = True) -> list[Product]:
    query = db.session.query(Product)
    if low_stock_only:
        query = query.filter(Product.stock <= Product.min_stock)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    return _get_or_unknown(Product, "product", product_id)


def update_product(*, product_id: int, patch: dict) -> Product:
    """
    Edit catalog fields. Stock is not editable here; it only moves through
    the inventory and sales services. A price change never touches the
    unit prices already captured on sale items.
    """
    if "stock" in patch:
        raise ValidationError("stock cannot be edited directly; use an inventory adjustment")

    product = get_product(product_id)
    enforce_rules_product(patch, current={"price_cents": product.price_cents, "cost_cents": product.cost_cents})
    _check_product_refs(patch)

    if "sku" in patch and patch["sku"] != product.sku:
        existing = (
            db.session.query(Product)
            .filter(Product.sku == patch["sku"], Product.id != product.id)
            .first()
        )
        if existing:
            raise ConflictError("SKU already exists.")

    for k, v in patch.items():
        if k in PRODUCT_MUTABLE_FIELDS:
            setattr(product, k, v)

    _commit_or_conflict("SKU already exists.")
    return product


def delete_product(*, product_id: int) -> None:
    product = get_product(product_id)
    dependents = {
        "sale_items": db.session.query(SaleItem).filter_by(product_id=product_id).count(),
        "inventory_logs": db.session.query(InventoryLog).filter_by(product_id=product_id).count(),
    }
    if any(dependents.values()):
        raise ReferenceInUse("product", product_id, dependents)
    db.session.delete(product)
    db.session.commit()


# =============================================================================
# CUSTOMERS / EMPLOYEES
# =============================================================================

def create_customer(*, patch: dict) -> Customer:
    if patch.get("email") and db.session.query(Customer).filter_by(email=patch["email"]).first():
        raise ConflictError("Customer email already exists.")
    customer = Customer(points=0, **patch)
    db.session.add(customer)
    _commit_or_conflict("Customer email already exists.")
    return customer


def list_customers() -> list[Customer]:
    return db.session.query(Customer).order_by(Customer.last_name.asc(), Customer.first_name.asc()).all()


def get_customer(customer_id: int) -> Customer:
    return _get_or_unknown(Customer, "customer", customer_id)


def delete_customer(*, customer_id: int) -> None:
    customer = get_customer(customer_id)
    sales = db.session.query(Sale).filter_by(customer_id=customer_id).count()
    if sales:
        raise ReferenceInUse("customer", customer_id, {"sales": sales})
    db.session.delete(customer)
    db.session.commit()


def create_employee(*, patch: dict) -> Employee:
    enforce_rules_employee(patch)
    if db.session.query(Employee).filter_by(email=patch["email"]).first():
        raise ConflictError("Employee email already exists.")
    employee = Employee(**patch)
    db.session.add(employee)
    _commit_or_conflict("Employee email already exists.")
    return employee


def list_employees(*, include_inactive: bool = False) -> list[Employee]:
    query = db.session.query(Employee)
    if not include_inactive:
        query = query.filter(Employee.is_active.is_(True))
    return query.order_by(Employee.last_name.asc(), Employee.first_name.asc()).all()


def get_employee(employee_id: int) -> Employee:
    return _get_or_unknown(Employee, "employee", employee_id)


def delete_employee(*, employee_id: int) -> None:
    employee = get_employee(employee_id)
    dependents = {
        "sales": db.session.query(Sale).filter_by(employee_id=employee_id).count(),
        "inventory_logs": db.session.query(InventoryLog).filter_by(employee_id=employee_id).count(),
    }
    if any(dependents.values()):
        raise ReferenceInUse("employee", employee_id, dependents)
    db.session.delete(employee)
    db.session.commit()


# =============================================================================
# SALES (storage only)
# =============================================================================

def delete_sale(*, sale_id: int) -> None:
    """Purge a reversed sale; its items go with it (cascade)."""
    sale = _get_or_unknown(Sale, "sale", sale_id)
    if sale.status not in ("cancelled", "refunded"):
        raise ConflictError("Only cancelled or refunded sales can be deleted.")
    db.session.delete(sale)
    db.session.commit()
