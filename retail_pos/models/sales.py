from __future__ import annotations

from ..extensions import db
from retail_pos.time_utils import to_utc_z

SALE_STATUSES = ("pending", "completed", "cancelled", "refunded")
PAYMENT_METHODS = ("cash", "card", "transfer", "other")


class Sale(db.Model):
    """
    Sale header.

    TOTALS: subtotal_cents is the sum of the item subtotals, and
    total_amount_cents = subtotal_cents + tax_cents. Both are fixed when the
    sale is recorded; later status changes never recompute them.

    LIFECYCLE:
    - pending -> completed | cancelled
    - completed -> refunded | cancelled
    Leaving `completed` goes through the compensating reversal, which
    restocks and takes back `points_earned`. Items are never edited.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("subtotal_cents >= 0", name="ck_sales_subtotal_nonnegative"),
        db.CheckConstraint("tax_cents >= 0", name="ck_sales_tax_nonnegative"),
        db.CheckConstraint(
            "total_amount_cents = subtotal_cents + tax_cents",
            name="ck_sales_total_matches",
        ),
        db.CheckConstraint(
            "payment_method IN ('cash', 'card', 'transfer', 'other')",
            name="ck_sales_payment_method",
        ),
        db.CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled', 'refunded')",
            name="ck_sales_status",
        ),
        db.CheckConstraint("points_earned >= 0", name="ck_sales_points_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False, index=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    # Points credited to the customer for this sale (0 until completed)
    points_earned = db.Column(db.Integer, nullable=False, default=0)

    # Compensation audit trail
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversal_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True, passive_deletes="all"))
    employee = db.relationship("Employee", backref=db.backref("sales", lazy=True, passive_deletes="all"))
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SaleItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "employee_id": self.employee_id,
            "sale_date": to_utc_z(self.sale_date),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "points_earned": self.points_earned,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversal_reason": self.reversal_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item on a sale. Immutable once created.

    unit_price_cents is the product price captured at sale time.
    subtotal_cents = round(quantity * unit_price * (1 - discount/100)), half-up to the cent.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("unit_price_cents > 0", name="ck_sale_items_unit_price_positive"),
        db.CheckConstraint(
            "discount_bps >= 0 AND discount_bps <= 10000",
            name="ck_sale_items_discount_range",
        ),
        db.CheckConstraint("subtotal_cents >= 0", name="ck_sale_items_subtotal_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    # Basis points: 1250 = 12.50%
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product", backref=db.backref("sale_items", lazy=True, passive_deletes="all"))

    @property
    def discount_percent(self) -> float:
        return self.discount_bps / 100

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_percent": self.discount_percent,
            "subtotal_cents": self.subtotal_cents,
            "created_at": to_utc_z(self.created_at),
        }
