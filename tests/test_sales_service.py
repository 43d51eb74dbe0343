# retail_pos Tests - Sale recording and reversal
#
# Tests for:
# - Totals, item subtotals and tax
# - Stock decrement and inventory log rows
# - Loyalty points (completed vs pending)
# - Validation and unknown references
# - Atomicity: failures leave nothing behind
# - Compensating reversal (refund / cancel)

from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

import logging
import pytest

from retail_pos.extensions import db
from retail_pos.models import Customer, InventoryLog, Product, Sale, SaleItem
from retail_pos.services import catalog_service, inventory_service, sales_service
from retail_pos.services.errors import (
    InsufficientStock,
    InvalidLine,
    InvalidTransition,
    UnknownReference,
)
from retail_pos.services.sales_service import LineRequest
from retail_pos.services.tax import flat_rate_tax
from retail_pos.time_utils import utcnow
from tests.conftest import make_product


EIGHT_PERCENT = flat_rate_tax(800)


def _stock(product_id: int) -> int:
    return db.session.query(Product.stock).filter_by(id=product_id).scalar()


def _points(customer_id: int) -> int:
    return db.session.query(Customer.points).filter_by(id=customer_id).scalar()


def _sale_logs(product_id: int) -> list[InventoryLog]:
    return (
        db.session.query(InventoryLog)
        .filter_by(product_id=product_id, change_type="sale")
        .order_by(InventoryLog.id)
        .all()
    )


def _expected_item_subtotal(quantity: int, unit_price_cents: int, discount_percent) -> int:
    gross = Decimal(quantity * unit_price_cents)
    net = gross * (1 - Decimal(str(discount_percent)) / 100)
    return int(net.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class TestRecordSaleScenario:
    """The reference checkout: $50 x 2, no discount, 8% tax."""

    @pytest.mark.smoke
    @pytest.mark.sales
    def test_fifty_dollar_product_two_units_eight_percent_tax(self, customer, employee, product):
        """
        SCENARIO: Customer with 0 points buys 2 x $50.00, stock 10, tax 8%
        EXPECTED: subtotal $100.00, tax $8.00, total $108.00, 10 points,
                  stock 8, one sale log row 10 -> 8
        """
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="card",
            lines=[{"product_id": product.id, "quantity": 2, "discount_percent": 0}],
            tax_policy=EIGHT_PERCENT,
        )

        assert sale.id is not None
        assert sale.status == "completed"
        assert sale.subtotal_cents == 10000
        assert sale.tax_cents == 800
        assert sale.total_amount_cents == 10800
        assert sale.points_earned == 10

        assert len(sale.items) == 1
        item = sale.items[0]
        assert item.quantity == 2
        assert item.unit_price_cents == 5000
        assert item.subtotal_cents == 10000

        assert _stock(product.id) == 8
        assert _points(customer.id) == 10

        logs = _sale_logs(product.id)
        assert len(logs) == 1
        assert logs[0].previous_stock == 10
        assert logs[0].new_stock == 8
        assert logs[0].quantity_change == -2
        assert logs[0].sale_id == sale.id
        assert logs[0].employee_id == employee.id

    @pytest.mark.smoke
    @pytest.mark.sales
    def test_quantity_above_stock_is_rejected_without_side_effects(self, customer, employee, product):
        """
        SCENARIO: Request 11 units against stock 10
        EXPECTED: InsufficientStock(product, 11, 10); stock, sales and logs untouched
        """
        with pytest.raises(InsufficientStock) as excinfo:
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="cash",
                lines=[{"product_id": product.id, "quantity": 11}],
            )

        err = excinfo.value
        assert (err.product_id, err.requested, err.available) == (product.id, 11, 10)
        assert err.details == {"product_id": product.id, "requested": 11, "available": 10}

        assert _stock(product.id) == 10
        assert db.session.query(Sale).count() == 0
        assert db.session.query(SaleItem).count() == 0
        assert _sale_logs(product.id) == []
        assert _points(customer.id) == 0


class TestTotalsAndSnapshots:

    @pytest.mark.sales
    def test_item_subtotals_round_half_up_to_the_cent(self, customer, employee, cheap_product, product):
        lines = [
            {"product_id": cheap_product.id, "quantity": 3, "discount_percent": 12.5},
            {"product_id": cheap_product.id, "quantity": 1, "discount_percent": "33.33"},
            {"product_id": product.id, "quantity": 1, "discount_percent": 100},
        ]
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=lines,
        )

        subtotals = [item.subtotal_cents for item in sale.items]
        assert subtotals == [
            _expected_item_subtotal(3, 399, "12.5"),
            _expected_item_subtotal(1, 399, "33.33"),
            0,
        ]
        assert subtotals == [1047, 266, 0]
        assert [item.discount_percent for item in sale.items] == [12.5, 33.33, 100.0]

    @pytest.mark.sales
    def test_exact_half_cent_rounds_up(self, customer, employee):
        tiny = make_product("TINY", price_cents=5, cost_cents=1, stock=5)
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": tiny.id, "quantity": 1, "discount_percent": 50}],
        )
        assert sale.items[0].subtotal_cents == 3

    @pytest.mark.sales
    def test_sale_totals_hold_for_every_committed_sale(self, customer, employee, product, cheap_product):
        requests = [
            [{"product_id": product.id, "quantity": 1, "discount_percent": 5}],
            [{"product_id": cheap_product.id, "quantity": 7, "discount_percent": 15}],
            [
                {"product_id": product.id, "quantity": 2},
                {"product_id": cheap_product.id, "quantity": 3, "discount_percent": 2.5},
            ],
        ]
        for lines in requests:
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="card",
                lines=lines,
                tax_policy=flat_rate_tax(825),
            )

        db.session.expire_all()
        for sale in db.session.query(Sale).all():
            assert sale.total_amount_cents == sale.subtotal_cents + sale.tax_cents
            assert sale.subtotal_cents == sum(item.subtotal_cents for item in sale.items)
            assert sale.tax_cents == (sale.subtotal_cents * 825 + 5000) // 10000
            for item in sale.items:
                assert item.subtotal_cents == _expected_item_subtotal(
                    item.quantity, item.unit_price_cents, item.discount_percent
                )

    @pytest.mark.sales
    def test_unit_price_is_a_snapshot(self, customer, employee, product):
        first = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 1}],
        )
        catalog_service.update_product(product_id=product.id, patch={"price_cents": 6500})

        second = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 1}],
        )

        db.session.expire_all()
        assert sales_service.get_sale(first.id).items[0].unit_price_cents == 5000
        assert sales_service.get_sale(second.id).items[0].unit_price_cents == 6500

    @pytest.mark.sales
    def test_default_tax_policy_uses_configured_rate(self, app, customer, employee, product):
        app.config["TAX_RATE_BPS"] = 1000
        try:
            sale = sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="transfer",
                lines=[{"product_id": product.id, "quantity": 1}],
            )
        finally:
            app.config["TAX_RATE_BPS"] = 0
        assert sale.tax_cents == 500
        assert sale.total_amount_cents == 5500

    @pytest.mark.sales
    def test_line_request_objects_are_accepted(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="other",
            lines=[LineRequest(product_id=product.id, quantity=4, discount_percent=Decimal("10"))],
        )
        assert sale.items[0].discount_bps == 1000
        assert sale.subtotal_cents == 18000

    def test_trailing_zeros_do_not_count_as_precision(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 2, "discount_percent": "12.340"}],
        )
        assert sale.items[0].discount_bps == 1234
        assert sale.subtotal_cents == 8766


class TestStockMovement:

    @pytest.mark.sales
    def test_same_product_on_several_lines_is_checked_in_aggregate(self, customer, employee, product):
        with pytest.raises(InsufficientStock) as excinfo:
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="cash",
                lines=[
                    {"product_id": product.id, "quantity": 6},
                    {"product_id": product.id, "quantity": 5},
                ],
            )
        assert excinfo.value.requested == 11
        assert excinfo.value.available == 10
        assert _stock(product.id) == 10

    @pytest.mark.sales
    def test_one_log_row_per_affected_product(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[
                {"product_id": product.id, "quantity": 3},
                {"product_id": product.id, "quantity": 2, "discount_percent": 20},
            ],
        )
        assert len(sale.items) == 2
        logs = _sale_logs(product.id)
        assert len(logs) == 1
        assert (logs[0].previous_stock, logs[0].quantity_change, logs[0].new_stock) == (10, -5, 5)

    @pytest.mark.sales
    def test_selling_the_last_unit_leaves_zero(self, customer, employee, product):
        sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 10}],
        )
        assert _stock(product.id) == 0
        assert inventory_service.verify_inventory_chain(product.id) == []

    @pytest.mark.sales
    def test_failure_on_a_later_line_rolls_back_earlier_lines(self, customer, employee, product, cheap_product):
        with pytest.raises(InsufficientStock):
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="cash",
                lines=[
                    {"product_id": product.id, "quantity": 2},
                    {"product_id": cheap_product.id, "quantity": 1000},
                ],
            )
        assert _stock(product.id) == 10
        assert _stock(cheap_product.id) == 100
        assert db.session.query(Sale).count() == 0
        assert _sale_logs(product.id) == []


class TestValidation:

    @pytest.mark.parametrize("lines", [
        [],
        None,
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": -2}],
        [{"product_id": 1, "quantity": 1.5}],
        [{"product_id": 1, "quantity": True}],
        [{"product_id": "1", "quantity": 1}],
        [{"product_id": 1, "quantity": 1, "discount_percent": -1}],
        [{"product_id": 1, "quantity": 1, "discount_percent": 100.01}],
        [{"product_id": 1, "quantity": 1, "discount_percent": "abc"}],
        [{"product_id": 1, "quantity": 1, "discount_percent": "12.345"}],
        [{"product_id": 1, "quantity": 1, "discount_percent": 0.125}],
        ["not-a-line"],
    ])
    def test_invalid_lines(self, customer, employee, lines):
        with pytest.raises(InvalidLine):
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="cash",
                lines=lines,
            )
        assert db.session.query(Sale).count() == 0

    def test_unknown_payment_method(self, customer, employee, product):
        with pytest.raises(InvalidLine):
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="bitcoin",
                lines=[{"product_id": product.id, "quantity": 1}],
            )

    def test_sale_date_in_the_future(self, customer, employee, product):
        with pytest.raises(InvalidLine):
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="cash",
                lines=[{"product_id": product.id, "quantity": 1}],
                sale_date=utcnow() + timedelta(days=1),
            )
        assert _stock(product.id) == 10

    def test_backdated_sale_keeps_its_date(self, customer, employee, product):
        when = (utcnow() - timedelta(days=2)).replace(microsecond=0)
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 1}],
            sale_date=when,
        )
        assert sale.sale_date.replace(tzinfo=None) == when

    @pytest.mark.parametrize("field, entity_type", [
        ("customer_id", "customer"),
        ("employee_id", "employee"),
        ("product_id", "product"),
    ])
    def test_unknown_references(self, customer, employee, product, field, entity_type):
        kwargs = {"customer_id": customer.id, "employee_id": employee.id}
        product_id = product.id
        if field == "product_id":
            product_id = 999_999
        else:
            kwargs[field] = 999_999

        with pytest.raises(UnknownReference) as excinfo:
            sales_service.record_sale(
                payment_method="cash",
                lines=[{"product_id": product_id, "quantity": 1}],
                **kwargs,
            )
        assert excinfo.value.entity_type == entity_type
        assert excinfo.value.entity_id == 999_999
        assert _stock(product.id) == 10

    def test_inactive_product_cannot_be_sold(self, customer, employee, product):
        catalog_service.update_product(product_id=product.id, patch={"is_active": False})
        with pytest.raises(InvalidLine):
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="cash",
                lines=[{"product_id": product.id, "quantity": 1}],
            )

    def test_new_sale_cannot_start_reversed(self, customer, employee, product):
        with pytest.raises(InvalidLine):
            sales_service.record_sale(
                customer_id=customer.id,
                employee_id=employee.id,
                payment_method="cash",
                lines=[{"product_id": product.id, "quantity": 1}],
                status="refunded",
            )


class TestPendingSales:

    @pytest.mark.sales
    def test_pending_sale_moves_stock_but_awards_no_points(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="card",
            lines=[{"product_id": product.id, "quantity": 2}],
            status="pending",
            tax_policy=EIGHT_PERCENT,
        )
        assert sale.status == "pending"
        assert sale.points_earned == 0
        assert _points(customer.id) == 0
        assert _stock(product.id) == 8

        completed = sales_service.complete_sale(sale.id)
        assert completed.status == "completed"
        assert completed.points_earned == 10
        assert _points(customer.id) == 10
        assert _stock(product.id) == 8

    @pytest.mark.sales
    def test_cancelling_a_pending_sale_restocks_only(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="card",
            lines=[{"product_id": product.id, "quantity": 2}],
            status="pending",
        )
        reversed_sale = sales_service.reverse_sale(sale.id, "customer left", target_status="cancelled")
        assert reversed_sale.status == "cancelled"
        assert _stock(product.id) == 10
        assert _points(customer.id) == 0

    def test_completing_twice_is_rejected(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 1}],
        )
        with pytest.raises(InvalidTransition):
            sales_service.complete_sale(sale.id)


class TestReverseSale:

    @pytest.mark.smoke
    @pytest.mark.sales
    def test_reverse_restores_stock_and_points(self, customer, employee, product, cheap_product):
        stock_before = {p.id: _stock(p.id) for p in (product, cheap_product)}
        points_before = _points(customer.id)

        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="card",
            lines=[
                {"product_id": product.id, "quantity": 3},
                {"product_id": cheap_product.id, "quantity": 10, "discount_percent": 10},
            ],
            tax_policy=EIGHT_PERCENT,
        )
        assert _points(customer.id) > points_before

        reversed_sale = sales_service.reverse_sale(sale.id, "defective", employee_id=employee.id)

        assert reversed_sale.status == "refunded"
        assert reversed_sale.reversal_reason == "defective"
        assert reversed_sale.reversed_at is not None
        assert {pid: _stock(pid) for pid in stock_before} == stock_before
        assert _points(customer.id) == points_before

        returns = db.session.query(InventoryLog).filter_by(sale_id=sale.id, change_type="return").all()
        assert sorted((r.product_id, r.quantity_change) for r in returns) == sorted([
            (product.id, 3), (cheap_product.id, 10),
        ])
        for pid in stock_before:
            assert inventory_service.verify_inventory_chain(pid) == []

    @pytest.mark.sales
    def test_items_are_left_untouched(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 2, "discount_percent": 10}],
        )
        before = [item.to_dict() for item in sale.items]
        sales_service.reverse_sale(sale.id, "changed mind", target_status="cancelled")
        db.session.expire_all()
        assert [item.to_dict() for item in sales_service.get_sale(sale.id).items] == before

    @pytest.mark.sales
    def test_points_reversal_clamps_at_zero(self, customer, employee, product, caplog):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="card",
            lines=[{"product_id": product.id, "quantity": 2}],
            tax_policy=EIGHT_PERCENT,
        )
        assert _points(customer.id) == 10

        # Customer redeemed 6 points elsewhere
        db.session.get(Customer, customer.id).points = 4
        db.session.commit()

        with caplog.at_level(logging.WARNING):
            sales_service.reverse_sale(sale.id, "refund")

        assert _points(customer.id) == 0
        assert "not recovered" in caplog.text
        assert sales_service.get_sale(sale.id).points_earned == 10

    @pytest.mark.parametrize("first, second", [
        ("refunded", "refunded"),
        ("refunded", "cancelled"),
        ("cancelled", "refunded"),
    ])
    def test_sale_can_only_be_reversed_once(self, customer, employee, product, first, second):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 1}],
        )
        sales_service.reverse_sale(sale.id, "first", target_status=first)
        with pytest.raises(InvalidTransition):
            sales_service.reverse_sale(sale.id, "second", target_status=second)
        assert _stock(product.id) == 10

    def test_pending_sale_cannot_be_refunded(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 1}],
            status="pending",
        )
        with pytest.raises(InvalidTransition) as excinfo:
            sales_service.reverse_sale(sale.id, "nope", target_status="refunded")
        assert excinfo.value.details == {"from": "pending", "to": "refunded"}
        assert _stock(product.id) == 9

    def test_reverse_rejects_non_reversal_status(self, customer, employee, product):
        sale = sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 1}],
        )
        with pytest.raises(InvalidLine):
            sales_service.reverse_sale(sale.id, "x", target_status="completed")

    def test_reverse_unknown_sale(self, db_session):
        with pytest.raises(UnknownReference):
            sales_service.reverse_sale(424242, "missing")

    def test_get_unknown_sale(self, db_session):
        with pytest.raises(UnknownReference):
            sales_service.get_sale(424242)


class TestLockOrder:
    """Row locks are always taken sale -> customer -> products."""

    @pytest.fixture
    def lock_trail(self, monkeypatch):
        trail = []

        def recording_lock(query):
            trail.append(query.column_descriptions[0]["entity"].__name__)
            return query.with_for_update()

        monkeypatch.setattr(sales_service, "lock_for_update", recording_lock)
        monkeypatch.setattr(inventory_service, "lock_for_update", recording_lock)
        return trail

    def _sell(self, customer, employee, product, status="completed"):
        return sales_service.record_sale(
            customer_id=customer.id,
            employee_id=employee.id,
            payment_method="cash",
            lines=[{"product_id": product.id, "quantity": 1}],
            status=status,
        )

    @pytest.mark.concurrency
    def test_record_sale_locks_customer_before_products(self, customer, employee, product, lock_trail):
        self._sell(customer, employee, product)
        assert lock_trail == ["Customer", "Product"]

    @pytest.mark.concurrency
    def test_reverse_sale_locks_customer_before_products(self, customer, employee, product, lock_trail):
        sale = self._sell(customer, employee, product)
        assert sale.points_earned == 5
        lock_trail.clear()

        sales_service.reverse_sale(sale.id, "Changed mind")
        assert lock_trail == ["Sale", "Customer", "Product"]

    @pytest.mark.concurrency
    def test_complete_sale_locks_sale_then_customer(self, customer, employee, product, lock_trail):
        sale = self._sell(customer, employee, product, status="pending")
        lock_trail.clear()

        sales_service.complete_sale(sale.id)
        assert lock_trail == ["Sale", "Customer"]
