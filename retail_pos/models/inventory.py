from __future__ import annotations

from ..extensions import db
from retail_pos.time_utils import to_utc_z

CHANGE_TYPES = ("sale", "restock", "adjustment", "damage", "return")


class InventoryLog(db.Model):
    """
    Append-only ledger of stock movements.

    Every change to Product.stock writes exactly one row in the same
    transaction. Per product, ordered by (created_at, id), each row's
    previous_stock equals the prior row's new_stock.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.CheckConstraint(
            "change_type IN ('sale', 'restock', 'adjustment', 'damage', 'return')",
            name="ck_inventory_logs_change_type",
        ),
        db.CheckConstraint("quantity_change <> 0", name="ck_inventory_logs_change_nonzero"),
        db.CheckConstraint("previous_stock >= 0", name="ck_inventory_logs_previous_nonnegative"),
        db.CheckConstraint("new_stock >= 0", name="ck_inventory_logs_new_nonnegative"),
        db.CheckConstraint(
            "new_stock = previous_stock + quantity_change",
            name="ck_inventory_logs_balance",
        ),
        db.Index("ix_inventory_logs_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)

    change_type = db.Column(db.String(16), nullable=False, index=True)

    # Positive for stock in, negative for stock out
    quantity_change = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)

    # Optional attribution (no FK on sale_id: logs outlive deleted sales)
    sale_id = db.Column(db.Integer, nullable=True, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="RESTRICT"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("inventory_logs", lazy=True, passive_deletes="all"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "change_type": self.change_type,
            "quantity_change": self.quantity_change,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "sale_id": self.sale_id,
            "employee_id": self.employee_id,
            "created_at": to_utc_z(self.created_at),
        }
