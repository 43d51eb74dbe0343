"""Initial POS schema: catalog, people, sales, inventory logs

Revision ID: 0001_initial_pos_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_pos_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("contact_name", sa.String(150), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("cost_cents", sa.Integer(), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_stock", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sa.CheckConstraint("price_cents > 0", name="ck_products_price_positive"),
        sa.CheckConstraint("cost_cents > 0", name="ck_products_cost_positive"),
        sa.CheckConstraint("price_cents > cost_cents", name="ck_products_price_above_cost"),
        sa.CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        sa.CheckConstraint("min_stock > 0", name="ck_products_min_stock_positive"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_category_id", ["category_id"], unique=False)
        batch_op.create_index("ix_products_supplier_id", ["supplier_id"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint("points >= 0", name="ck_customers_points_nonnegative"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="cashier"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint("role IN ('cashier', 'manager', 'admin')", name="ck_employees_role"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("sale_date", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversal_reason", sa.String(255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("subtotal_cents >= 0", name="ck_sales_subtotal_nonnegative"),
        sa.CheckConstraint("tax_cents >= 0", name="ck_sales_tax_nonnegative"),
        sa.CheckConstraint("total_amount_cents = subtotal_cents + tax_cents", name="ck_sales_total_matches"),
        sa.CheckConstraint("payment_method IN ('cash', 'card', 'transfer', 'other')", name="ck_sales_payment_method"),
        sa.CheckConstraint("status IN ('pending', 'completed', 'cancelled', 'refunded')", name="ck_sales_status"),
        sa.CheckConstraint("points_earned >= 0", name="ck_sales_points_nonnegative"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_sales_employee_id", ["employee_id"], unique=False)
        batch_op.create_index("ix_sales_status", ["status"], unique=False)

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        sa.CheckConstraint("unit_price_cents > 0", name="ck_sale_items_unit_price_positive"),
        sa.CheckConstraint("discount_bps >= 0 AND discount_bps <= 10000", name="ck_sale_items_discount_range"),
        sa.CheckConstraint("subtotal_cents >= 0", name="ck_sale_items_subtotal_nonnegative"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_items", schema=None) as batch_op:
        batch_op.create_index("ix_sale_items_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sale_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "inventory_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("change_type", sa.String(16), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "change_type IN ('sale', 'restock', 'adjustment', 'damage', 'return')",
            name="ck_inventory_logs_change_type",
        ),
        sa.CheckConstraint("quantity_change <> 0", name="ck_inventory_logs_change_nonzero"),
        sa.CheckConstraint("previous_stock >= 0", name="ck_inventory_logs_previous_nonnegative"),
        sa.CheckConstraint("new_stock >= 0", name="ck_inventory_logs_new_nonnegative"),
        sa.CheckConstraint("new_stock = previous_stock + quantity_change", name="ck_inventory_logs_balance"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_logs", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_logs_change_type", ["change_type"], unique=False)
        batch_op.create_index("ix_inventory_logs_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_inventory_logs_employee_id", ["employee_id"], unique=False)
        batch_op.create_index("ix_inventory_logs_product_created", ["product_id", "created_at"], unique=False)


def downgrade():
    op.drop_table("inventory_logs")
    op.drop_table("sale_items")
    op.drop_table("sales")
    op.drop_table("employees")
    op.drop_table("customers")
    op.drop_table("products")
    op.drop_table("suppliers")
    op.drop_table("categories")
