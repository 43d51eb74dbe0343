from __future__ import annotations

from ..extensions import db
from retail_pos.time_utils import to_utc_z

EMPLOYEE_ROLES = ("cashier", "manager", "admin")


class Customer(db.Model):
    """
    Customer master data and loyalty balance.

    POINTS: Only completed sales award points, and only the compensating
    reversal of such a sale takes them away. The balance never goes below 0.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("points >= 0", name="ck_customers_points_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    points = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "points": self.points,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Employee(db.Model):
    """Staff member attributed on sales and stock movements."""
    __tablename__ = "employees"
    __table_args__ = (
        db.CheckConstraint(
            "role IN ('cashier', 'manager', 'admin')",
            name="ck_employees_role",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    role = db.Column(db.String(16), nullable=False, default="cashier")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
