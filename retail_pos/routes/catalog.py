# Overview: Flask API routes for catalog master data (products, people, categories, suppliers).

from flask import Blueprint, request, jsonify

from ..models import Product, Customer, Employee, Category, Supplier
from ..services import catalog_service
from ..services.errors import SaleError
from ..validation import (
    ValidationError,
    ConflictError,
    validate_payload,
    PRODUCT_POLICY,
    PRODUCT_UPDATE_POLICY,
    CUSTOMER_POLICY,
    EMPLOYEE_POLICY,
    CATEGORY_POLICY,
    SUPPLIER_POLICY,
)
from . import sale_error_response

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _create(model, policy, create_fn):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=model, payload=payload, policy=policy, partial=False)
        obj = create_fn(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except SaleError as e:
        return sale_error_response(e)
    return obj.to_dict(), 201


def _delete(delete_fn, **kwargs):
    try:
        delete_fn(**kwargs)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except SaleError as e:
        return sale_error_response(e)
    return "", 204


# =============================================================================
# PRODUCTS
# =============================================================================

@catalog_bp.get("/products/")
def list_products_route():
    low_stock_only = request.args.get("low_stock", "").lower() in ("1", "true", "yes")
    products = catalog_service.list_products(low_stock_only=low_stock_only)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@catalog_bp.post("/products/")
def create_product_route():
    return _create(Product, PRODUCT_POLICY, catalog_service.create_product)


@catalog_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return catalog_service.get_product(product_id).to_dict(), 200
    except SaleError as e:
        return sale_error_response(e)


@catalog_bp.patch("/products/<int:product_id>")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        product = catalog_service.update_product(product_id=product_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except SaleError as e:
        return sale_error_response(e)
    return product.to_dict(), 200


@catalog_bp.delete("/products/<int:product_id>")
def delete_product_route(product_id: int):
    return _delete(catalog_service.delete_product, product_id=product_id)


# =============================================================================
# CUSTOMERS / EMPLOYEES
# =============================================================================

@catalog_bp.get("/customers/")
def list_customers_route():
    customers = catalog_service.list_customers()
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@catalog_bp.post("/customers/")
def create_customer_route():
    return _create(Customer, CUSTOMER_POLICY, catalog_service.create_customer)


@catalog_bp.get("/customers/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        return catalog_service.get_customer(customer_id).to_dict(), 200
    except SaleError as e:
        return sale_error_response(e)


@catalog_bp.delete("/customers/<int:customer_id>")
def delete_customer_route(customer_id: int):
    return _delete(catalog_service.delete_customer, customer_id=customer_id)


@catalog_bp.get("/employees/")
def list_employees_route():
    include_inactive = request.args.get("all", "").lower() in ("1", "true", "yes")
    employees = catalog_service.list_employees(include_inactive=include_inactive)
    return jsonify({"items": [e.to_dict() for e in employees], "count": len(employees)}), 200


@catalog_bp.post("/employees/")
def create_employee_route():
    return _create(Employee, EMPLOYEE_POLICY, catalog_service.create_employee)


@catalog_bp.delete("/employees/<int:employee_id>")
def delete_employee_route(employee_id: int):
    return _delete(catalog_service.delete_employee, employee_id=employee_id)


# =============================================================================
# CATEGORIES / SUPPLIERS
# =============================================================================

@catalog_bp.get("/categories/")
def list_categories_route():
    categories = catalog_service.list_categories()
    return jsonify({"items": [c.to_dict() for c in categories], "count": len(categories)}), 200


@catalog_bp.post("/categories/")
def create_category_route():
    return _create(Category, CATEGORY_POLICY, catalog_service.create_category)


@catalog_bp.get("/suppliers/")
def list_suppliers_route():
    suppliers = catalog_service.list_suppliers()
    return jsonify({"items": [s.to_dict() for s in suppliers], "count": len(suppliers)}), 200


@catalog_bp.post("/suppliers/")
def create_supplier_route():
    return _create(Supplier, SUPPLIER_POLICY, catalog_service.create_supplier)


@catalog_bp.delete("/sales/<int:sale_id>")
def delete_sale_route(sale_id: int):
    return _delete(catalog_service.delete_sale, sale_id=sale_id)
