"""
Tests for OrderService.

Validates:
- Create: stock validation, pricing, numbering, initial status per route
- Cash POS orders record consumption immediately; unpaid orders do not
- Combos expand per component and apportion the combo price
- Item and order cancellation restore exactly the recorded consumption
- Status transitions, including the "paid" alias and terminal states
- Input rejections leave nothing behind
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from concession_engines.channels import OrderSource, OrderStatus, PaymentStatus
from concession_engines.ledger import LedgerRow
from concession_kernel.exceptions import (
    ComboNotFoundError,
    InsufficientStockError,
    InvalidInputError,
    InvalidStatusTransitionError,
    MissingFieldError,
    OrderAlreadyCancelledError,
    OrderCompletedError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    ProductNotFoundError,
    ZeroQuantityError,
)
from concession_modules.catalog.models import ComboComponent
from concession_modules.ordering.models import ComboLine, CustomerInfo, OrderRequest, ProductLine
from concession_modules.ordering.selector import OrderSelector

STOCK_DAY = date(2025, 3, 1)
TODAY = date(2025, 3, 15)


def _request(*lines, **kwargs) -> OrderRequest:
    return OrderRequest(lines=tuple(lines), **kwargs)


def _day_total(stores, tenant_id, product_id, field_name, day=TODAY):
    ledger = stores.cafe.find(tenant_id, product_id, day.year, day.month)
    if ledger is None:
        return Decimal("0")
    return sum((getattr(e, field_name) for e in ledger.entries if e.day == day), Decimal("0"))


class TestCreateCashOrder:
    def test_cash_pos_order_confirms_and_records(self, order_service, stores, tenant, make_product, stock_in):
        popcorn = make_product("Popcorn", "120", tax_rate=Decimal("5"))
        stock_in(popcorn.id, "10", STOCK_DAY)

        order = order_service.create_order(tenant.id, _request(ProductLine(popcorn.id, 2)))

        assert order.order_number == "GU0001"
        assert order.status is OrderStatus.CONFIRMED
        assert order.payment.status is PaymentStatus.COMPLETED
        assert order.stock_recorded is True
        assert order.pricing.total == Decimal("252.00")
        assert order.pricing.cgst == Decimal("6.00")
        assert _day_total(stores, tenant.id, popcorn.id, "sales") == Decimal("2")
        assert stores.cafe.current_balance(tenant.id, popcorn.id, TODAY) == Decimal("8")

    def test_numbers_are_sequential(self, order_service, tenant, make_product):
        product = make_product()
        numbers = [
            order_service.create_order(tenant.id, _request(ProductLine(product.id, 1))).order_number
            for _ in range(3)
        ]
        assert numbers == ["GU0001", "GU0002", "GU0003"]

    def test_measured_consumption_snapshot(self, order_service, stores, tenant, make_product, stock_in):
        cola = make_product("Cola", "60", quantity="750 ML")
        stock_in(cola.id, "10", STOCK_DAY, unit="KG")

        order = order_service.create_order(tenant.id, _request(ProductLine(cola.id, 2)))

        item = order.items[0]
        assert item.stock_quantity_consumed == Decimal("1.500")
        assert item.stock_unit == "KG"
        assert _day_total(stores, tenant.id, cola.id, "sales") == Decimal("1.500")

    def test_caller_line_price_overrides_catalog(self, order_service, tenant, make_product):
        product = make_product("Nachos", "150")
        order = order_service.create_order(
            tenant.id, _request(ProductLine(product.id, 1, unit_price=Decimal("99")))
        )
        assert order.pricing.total == Decimal("99.00")

    def test_sale_price_used_when_set(self, order_service, tenant, make_product):
        product = make_product("Nachos", "150", sale_price=Decimal("130"))
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 1)))
        assert order.pricing.total == Decimal("130.00")

    def test_customer_defaults(self, order_service, tenant, make_product):
        product = make_product()
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 1)))
        assert order.customer.name == "Walk-in Customer"
        assert order.order_type == "pos"


class TestCreatePendingOrder:
    def test_card_order_is_pending_without_stock(self, order_service, stores, tenant, make_product, stock_in):
        product = make_product()
        stock_in(product.id, "10", STOCK_DAY)

        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 3), payment_method="card"))

        assert order.status is OrderStatus.PENDING
        assert order.payment.status is PaymentStatus.PENDING
        assert order.stock_recorded is False
        assert _day_total(stores, tenant.id, product.id, "sales") == Decimal("0")

    def test_online_cash_order_is_pending(self, order_service, tenant, make_product):
        product = make_product()
        order = order_service.create_order(
            tenant.id, _request(ProductLine(product.id, 1), source=OrderSource.ONLINE)
        )
        assert order.status is OrderStatus.PENDING

    def test_payment_confirms_and_records_on_payment_day(
        self, order_service, stores, tenant, make_product, stock_in, clock
    ):
        product = make_product()
        stock_in(product.id, "10", STOCK_DAY)
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 3), payment_method="upi"))
        clock.advance_days(1)

        change = order_service.update_payment(tenant.id, order.id, "paid", transaction_id="TX-1")

        assert change.changed is True
        assert change.order.status is OrderStatus.CONFIRMED
        assert change.order.payment.transaction_id == "TX-1"
        assert change.order.stock_recorded is True
        assert _day_total(stores, tenant.id, product.id, "sales", TODAY) == Decimal("0")
        assert _day_total(stores, tenant.id, product.id, "sales", date(2025, 3, 16)) == Decimal("3")

    def test_failed_payment_keeps_order_pending(self, order_service, tenant, make_product):
        product = make_product()
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 1), payment_method="card"))

        change = order_service.update_payment(tenant.id, order.order_number, PaymentStatus.FAILED)

        assert change.changed is False
        assert change.order.payment.status is PaymentStatus.FAILED
        assert change.order.stock_recorded is False


class TestStockValidation:
    def test_insufficient_stock_reports_max_orderable(self, order_service, session, tenant, make_product, stock_in):
        product = make_product("Cola", "60", quantity="750 ML")
        stock_in(product.id, "2", STOCK_DAY, unit="KG")

        with pytest.raises(InsufficientStockError) as exc:
            order_service.create_order(tenant.id, _request(ProductLine(product.id, 3)))

        assert exc.value.requested == 3
        assert exc.value.max_orderable == 2
        assert exc.value.unit == "KG"
        assert exc.value.kind == "INSUFFICIENT_STOCK"
        assert OrderSelector(session).order_count(tenant.id) == 0

    def test_lines_of_one_product_share_the_balance(self, order_service, tenant, make_product, stock_in):
        product = make_product()
        stock_in(product.id, "5", STOCK_DAY)

        with pytest.raises(InsufficientStockError) as exc:
            order_service.create_order(
                tenant.id, _request(ProductLine(product.id, 3), ProductLine(product.id, 3))
            )
        assert exc.value.max_orderable == 2

    def test_no_qty_multiplies_consumption(self, order_service, tenant, make_product, stock_in):
        product = make_product("Twin Pack", "90", no_qty=2)
        stock_in(product.id, "5", STOCK_DAY)

        with pytest.raises(InsufficientStockError) as exc:
            order_service.create_order(tenant.id, _request(ProductLine(product.id, 3)))
        assert exc.value.max_orderable == 2

    def test_exact_balance_is_allowed(self, order_service, stores, tenant, make_product, stock_in):
        product = make_product()
        stock_in(product.id, "4", STOCK_DAY)
        order_service.create_order(tenant.id, _request(ProductLine(product.id, 4)))
        assert stores.cafe.current_balance(tenant.id, product.id, TODAY) == Decimal("0")

    def test_fresh_product_is_not_blocked_and_left_untracked(self, order_service, stores, tenant, make_product):
        product = make_product("Cola 750", "60", quantity="750 ML")

        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 2)))

        assert order.stock_recorded is True
        model = order_service.get_model(tenant.id, order.id)
        assert model.items[0].track_stock is False
        snapshot = sum((item.stock_quantity_consumed for item in model.items), Decimal("0"))
        assert snapshot == _day_total(stores, tenant.id, product.id, "sales") == Decimal("0")

    def test_fresh_product_cancel_restores_nothing(self, order_service, stores, tenant, make_product):
        product = make_product()
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 3)))

        order_service.update_status(tenant.id, order.id, "cancelled")

        assert _day_total(stores, tenant.id, product.id, "cancel_stock") == Decimal("0")

    def test_untracked_product_consumes_nothing(self, order_service, stores, tenant, make_product, stock_in):
        product = make_product(track_stock=False)
        stock_in(product.id, "1", STOCK_DAY)

        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 9)))

        assert order.items[0].stock_quantity_consumed == Decimal("0")
        assert _day_total(stores, tenant.id, product.id, "sales") == Decimal("0")


class TestCombos:
    def _combo(self, catalog, tenant, make_product, stock_in, popcorn_stock="20", cola_stock="20"):
        popcorn = make_product("Popcorn", "100")
        cola = make_product("Cola", "50")
        stock_in(popcorn.id, popcorn_stock, STOCK_DAY)
        stock_in(cola.id, cola_stock, STOCK_DAY)
        combo = catalog.create_combo(
            tenant.id,
            "Movie Meal",
            Decimal("220"),
            [ComboComponent(popcorn.id, 2), ComboComponent(cola.id, 1)],
            tax_rate=Decimal("5"),
            gst_type="INCLUDE",
        )
        return combo, popcorn, cola

    def test_combo_expands_per_component(self, order_service, catalog, stores, tenant, make_product, stock_in):
        combo, popcorn, cola = self._combo(catalog, tenant, make_product, stock_in)

        order = order_service.create_order(tenant.id, _request(ComboLine(combo.id, 2)))

        quantities = {item.product_id: item.quantity for item in order.items}
        assert quantities == {popcorn.id: 4, cola.id: 2}
        assert all(item.is_from_combo and item.combo_name == "Movie Meal" for item in order.items)
        assert _day_total(stores, tenant.id, popcorn.id, "sales") == Decimal("4")
        assert _day_total(stores, tenant.id, cola.id, "sales") == Decimal("2")

    def test_combo_price_apportioned_exactly(self, order_service, catalog, tenant, make_product, stock_in):
        combo, _, _ = self._combo(catalog, tenant, make_product, stock_in)

        order = order_service.create_order(tenant.id, _request(ComboLine(combo.id, 2)))

        assert sum(item.pricing.total for item in order.items) == Decimal("440.00")
        assert order.pricing.total == Decimal("440.00")

    def test_combo_shortage_reported_in_combos(self, order_service, catalog, tenant, make_product, stock_in):
        combo, popcorn, _ = self._combo(catalog, tenant, make_product, stock_in, popcorn_stock="5")

        with pytest.raises(InsufficientStockError) as exc:
            order_service.create_order(tenant.id, _request(ComboLine(combo.id, 3)))

        assert exc.value.product_id == str(popcorn.id)
        assert exc.value.combo_name == "Movie Meal"
        assert exc.value.max_orderable == 2

    def test_unknown_combo(self, order_service, tenant):
        with pytest.raises(ComboNotFoundError):
            order_service.create_order(tenant.id, _request(ComboLine(uuid4(), 1)))


class TestCreateRejections:
    def test_no_lines(self, order_service, tenant):
        with pytest.raises(MissingFieldError):
            order_service.create_order(tenant.id, _request())

    def test_zero_quantity(self, order_service, tenant, make_product):
        product = make_product()
        with pytest.raises(ZeroQuantityError):
            order_service.create_order(tenant.id, _request(ProductLine(product.id, 0)))

    def test_inactive_product(self, order_service, catalog, tenant, make_product):
        product = make_product()
        catalog.deactivate_product(tenant.id, product.id)
        with pytest.raises(ProductNotFoundError):
            order_service.create_order(tenant.id, _request(ProductLine(product.id, 1)))

    def test_other_tenants_product(self, order_service, catalog, tenant, other_tenant):
        foreign = catalog.create_product(other_tenant.id, "Samosa", Decimal("40"))
        with pytest.raises(ProductNotFoundError):
            order_service.create_order(tenant.id, _request(ProductLine(foreign.id, 1)))


class TestCancelItem:
    def test_cancel_item_restores_and_retotals(self, order_service, stores, tenant, make_product, stock_in):
        popcorn = make_product("Popcorn", "100")
        cola = make_product("Cola", "50")
        stock_in(popcorn.id, "10", STOCK_DAY)
        stock_in(cola.id, "10", STOCK_DAY)
        order = order_service.create_order(
            tenant.id, _request(ProductLine(popcorn.id, 2), ProductLine(cola.id, 1))
        )
        cola_item = next(i for i in order.items if i.product_id == cola.id)

        updated = order_service.cancel_item(tenant.id, order.id, cola_item.id)

        assert updated.status is OrderStatus.CONFIRMED
        assert [i.product_id for i in updated.items] == [popcorn.id]
        assert updated.pricing.total == Decimal("200.00")
        assert _day_total(stores, tenant.id, cola.id, "cancel_stock") == Decimal("1")
        assert stores.cafe.current_balance(tenant.id, cola.id, TODAY) == Decimal("10")

    def test_cancelling_last_item_cancels_order(self, order_service, tenant, make_product, stock_in):
        product = make_product()
        stock_in(product.id, "10", STOCK_DAY)
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 1)))

        updated = order_service.cancel_item(tenant.id, order.id, order.items[0].id)

        assert updated.status is OrderStatus.CANCELLED
        assert updated.cancelled_at is not None

    def test_unknown_item(self, order_service, tenant, make_product):
        product = make_product()
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 1)))
        with pytest.raises(OrderItemNotFoundError):
            order_service.cancel_item(tenant.id, order.id, uuid4())

    def test_item_of_cancelled_order(self, order_service, tenant, make_product):
        product = make_product()
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 1)))
        order_service.update_status(tenant.id, order.id, OrderStatus.CANCELLED)
        with pytest.raises(OrderAlreadyCancelledError):
            order_service.cancel_item(tenant.id, order.id, order.items[0].id)

    def test_pending_order_item_cancel_writes_no_stock(self, order_service, stores, tenant, make_product, stock_in):
        product = make_product()
        stock_in(product.id, "10", STOCK_DAY)
        order = order_service.create_order(
            tenant.id, _request(ProductLine(product.id, 1), ProductLine(product.id, 2), payment_method="card")
        )

        order_service.cancel_item(tenant.id, order.id, order.items[0].id)

        assert _day_total(stores, tenant.id, product.id, "cancel_stock") == Decimal("0")


class TestRestoreUsesSnapshot:
    def test_product_edit_after_sale_does_not_change_restore(
        self, order_service, catalog, stores, tenant, make_product, stock_in
    ):
        cola = make_product("Cola", "60", quantity="750 ML")
        stock_in(cola.id, "10", STOCK_DAY, unit="KG")
        order = order_service.create_order(tenant.id, _request(ProductLine(cola.id, 2)))
        catalog.update_product(tenant.id, cola.id, {"quantity": "1 L"})

        order_service.update_status(tenant.id, order.id, OrderStatus.CANCELLED)

        assert _day_total(stores, tenant.id, cola.id, "cancel_stock") == Decimal("1.500")
        assert stores.cafe.current_balance(tenant.id, cola.id, TODAY) == Decimal("10")

    def test_restore_converts_when_ledger_unit_changed(
        self, order_service, stores, tenant, make_product, stock_in
    ):
        cola = make_product("Cola", "60", quantity="750 ML")
        stock_in(cola.id, "10", STOCK_DAY, unit="KG")
        order = order_service.create_order(tenant.id, _request(ProductLine(cola.id, 2)))
        ledger = stores.cafe.find(tenant.id, cola.id, 2025, 3)
        stores.cafe.append(ledger, LedgerRow(day=TODAY, unit="G", addon=Decimal("0")))

        order_service.update_status(tenant.id, order.id, OrderStatus.CANCELLED)

        assert _day_total(stores, tenant.id, cola.id, "cancel_stock") == Decimal("1500")


class TestStatusTransitions:
    def _order(self, order_service, tenant, make_product, **kwargs):
        product = make_product()
        return order_service.create_order(tenant.id, _request(ProductLine(product.id, 1), **kwargs))

    def test_forward_progress(self, order_service, tenant, make_product):
        order = self._order(order_service, tenant, make_product)
        for status in (OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.SERVED, OrderStatus.COMPLETED):
            change = order_service.update_status(tenant.id, order.id, status)
            assert change.changed is True
            assert change.order.status is status
        assert change.order.completed_at is not None

    def test_same_status_is_not_a_change(self, order_service, tenant, make_product):
        order = self._order(order_service, tenant, make_product)
        change = order_service.update_status(tenant.id, order.id, "confirmed")
        assert change.changed is False

    def test_paid_alias_confirms_pending(self, order_service, tenant, make_product):
        order = self._order(order_service, tenant, make_product, payment_method="card")
        change = order_service.update_status(tenant.id, order.id, "paid")
        assert change.order.status is OrderStatus.CONFIRMED
        assert change.order.payment.status is PaymentStatus.PAID
        assert change.order.payment.paid_at is not None

    def test_confirming_unpaid_order_records_stock(self, order_service, stores, tenant, make_product, stock_in):
        product = make_product()
        stock_in(product.id, "10", STOCK_DAY)
        order = order_service.create_order(
            tenant.id, _request(ProductLine(product.id, 2), payment_method="card")
        )

        change = order_service.update_status(tenant.id, order.id, OrderStatus.CONFIRMED)

        assert change.order.stock_recorded is True
        assert _day_total(stores, tenant.id, product.id, "sales") == Decimal("2")

    def test_completed_cannot_be_cancelled(self, order_service, tenant, make_product):
        order = self._order(order_service, tenant, make_product)
        order_service.update_status(tenant.id, order.id, OrderStatus.COMPLETED)
        with pytest.raises(OrderCompletedError):
            order_service.update_status(tenant.id, order.id, OrderStatus.CANCELLED)
        with pytest.raises(InvalidStatusTransitionError):
            order_service.update_status(tenant.id, order.id, OrderStatus.PREPARING)

    def test_cancelled_is_terminal(self, order_service, tenant, make_product):
        order = self._order(order_service, tenant, make_product)
        order_service.update_status(tenant.id, order.id, OrderStatus.CANCELLED)
        with pytest.raises(OrderAlreadyCancelledError):
            order_service.update_status(tenant.id, order.id, OrderStatus.READY)
        with pytest.raises(OrderAlreadyCancelledError):
            order_service.update_payment(tenant.id, order.id, "paid")

    def test_back_to_pending_rejected(self, order_service, tenant, make_product):
        order = self._order(order_service, tenant, make_product)
        with pytest.raises(InvalidStatusTransitionError):
            order_service.update_status(tenant.id, order.id, OrderStatus.PENDING)

    def test_unknown_status(self, order_service, tenant, make_product):
        order = self._order(order_service, tenant, make_product)
        with pytest.raises(InvalidInputError):
            order_service.update_status(tenant.id, order.id, "teleported")

    def test_cancel_restores_each_line_once(self, order_service, stores, tenant, make_product, stock_in):
        product = make_product()
        stock_in(product.id, "10", STOCK_DAY)
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 3)))

        order_service.update_status(tenant.id, order.id, OrderStatus.CANCELLED)

        assert _day_total(stores, tenant.id, product.id, "cancel_stock") == Decimal("3")
        assert stores.cafe.current_balance(tenant.id, product.id, TODAY) == Decimal("10")


class TestLookup:
    def test_by_number_case_insensitive(self, order_service, tenant, make_product):
        product = make_product()
        order = order_service.create_order(
            tenant.id, _request(ProductLine(product.id, 1), customer=CustomerInfo(name="Asha", phone="9876543210"))
        )
        assert order_service.get_order(tenant.id, "gu0001").id == order.id

    def test_other_tenant_cannot_see_order(self, order_service, tenant, other_tenant, make_product):
        product = make_product()
        order = order_service.create_order(tenant.id, _request(ProductLine(product.id, 1)))
        with pytest.raises(OrderNotFoundError):
            order_service.get_order(other_tenant.id, order.id)
