from .catalog import Category, Supplier, Product
from .people import Customer, Employee, EMPLOYEE_ROLES
from .sales import Sale, SaleItem, SALE_STATUSES, PAYMENT_METHODS
from .inventory import InventoryLog, CHANGE_TYPES

__all__ = [
    'Category', 'Supplier', 'Product',
    'Customer', 'Employee', 'EMPLOYEE_ROLES',
    'Sale', 'SaleItem', 'SALE_STATUSES', 'PAYMENT_METHODS',
    'InventoryLog', 'CHANGE_TYPES',
]
