"""
Tests for OrderSelector listing and summaries.

Verifies:
- Online orders are listed only once paid; POS and kiosk always
- Newest first, with pages clamped to [1, 100]
- Search over order number, customer name and phone
- The summary covers every matching order, not just the page
- Payment-mode filters match a whole payment family
"""

from datetime import datetime, timezone
from decimal import Decimal

from concession_engines.channels import OrderSource, OrderStatus
from concession_modules.ordering.models import CustomerInfo, OrderFilters, OrderRequest, ProductLine
from concession_modules.ordering.selector import OrderSelector


class TestListOrders:
    def _place(self, order_service, tenant, product, clock, **kwargs):
        clock.advance(60)
        return order_service.create_order(tenant.id, OrderRequest(lines=(ProductLine(product.id, 1),), **kwargs))

    def test_unpaid_online_orders_hidden(self, order_service, session, tenant, make_product, clock):
        product = make_product()
        pos = self._place(order_service, tenant, product, clock)
        online = self._place(order_service, tenant, product, clock, source=OrderSource.ONLINE, payment_method="upi")

        page = OrderSelector(session).list_orders(tenant.id)
        assert [o.id for o in page.orders] == [pos.id]

        order_service.update_payment(tenant.id, online.id, "paid")
        page = OrderSelector(session).list_orders(tenant.id)
        assert [o.id for o in page.orders] == [online.id, pos.id]

    def test_newest_first_and_paginated(self, order_service, session, tenant, make_product, clock):
        product = make_product()
        numbers = [self._place(order_service, tenant, product, clock).order_number for _ in range(5)]

        page = OrderSelector(session).list_orders(tenant.id, OrderFilters(page=2, limit=2))

        assert [o.order_number for o in page.orders] == [numbers[2], numbers[1]]
        assert page.pagination.total == 5
        assert page.pagination.total_pages == 3
        assert page.pagination.has_next and page.pagination.has_prev

    def test_limit_is_clamped(self, order_service, session, tenant, make_product, clock):
        product = make_product()
        self._place(order_service, tenant, product, clock)
        selector = OrderSelector(session)

        assert selector.list_orders(tenant.id, OrderFilters(limit=0)).pagination.limit == 1
        assert selector.list_orders(tenant.id, OrderFilters(limit=500)).pagination.limit == 100
        assert selector.list_orders(tenant.id, OrderFilters(page=-3)).pagination.current == 1

    def test_search(self, order_service, session, tenant, make_product, clock):
        product = make_product()
        asha = self._place(
            order_service, tenant, product, clock, customer=CustomerInfo(name="Asha Rao", phone="9876543210")
        )
        self._place(order_service, tenant, product, clock, customer=CustomerInfo(name="Vikram"))
        selector = OrderSelector(session)

        assert [o.id for o in selector.list_orders(tenant.id, OrderFilters(search="asha")).orders] == [asha.id]
        assert [o.id for o in selector.list_orders(tenant.id, OrderFilters(search="43210")).orders] == [asha.id]
        assert selector.list_orders(tenant.id, OrderFilters(search=asha.order_number.lower())).pagination.total == 1

    def test_filters_by_status_and_payment_mode(self, order_service, session, tenant, make_product, clock):
        product = make_product()
        cash = self._place(order_service, tenant, product, clock)
        self._place(order_service, tenant, product, clock, payment_method="card")
        selector = OrderSelector(session)

        confirmed = selector.list_orders(tenant.id, OrderFilters(status=OrderStatus.CONFIRMED))
        assert [o.id for o in confirmed.orders] == [cash.id]
        assert selector.list_orders(tenant.id, OrderFilters(payment_mode="CARD")).pagination.total == 1

    def test_date_window(self, order_service, session, tenant, make_product, clock):
        product = make_product()
        self._place(order_service, tenant, product, clock)
        clock.advance_days(2)
        later = self._place(order_service, tenant, product, clock)

        page = OrderSelector(session).list_orders(
            tenant.id, OrderFilters(start=datetime(2025, 3, 16, tzinfo=timezone.utc))
        )
        assert [o.id for o in page.orders] == [later.id]

    def test_tenants_are_isolated(self, order_service, session, tenant, other_tenant, make_product, clock):
        self._place(order_service, tenant, make_product(), clock)
        assert OrderSelector(session).list_orders(other_tenant.id).pagination.total == 0


class TestSummary:
    def test_summary_covers_all_pages(self, order_service, session, tenant, make_product, clock):
        product = make_product("Popcorn", "100")
        placed = []
        for _ in range(3):
            clock.advance(60)
            placed.append(order_service.create_order(tenant.id, OrderRequest(lines=(ProductLine(product.id, 1),))))
        order_service.update_status(tenant.id, placed[0].id, OrderStatus.COMPLETED)
        order_service.update_status(tenant.id, placed[1].id, OrderStatus.CANCELLED)

        page = OrderSelector(session).list_orders(tenant.id, OrderFilters(limit=1))

        assert len(page.orders) == 1
        assert page.summary.total_orders == 3
        assert page.summary.confirmed_orders == 1
        assert page.summary.completed_orders == 1
        assert page.summary.cancelled_order_amount == Decimal("100.00")
        assert page.summary.total_revenue == Decimal("200.00")

    def test_order_facts(self, order_service, session, tenant, make_product):
        product = make_product("Popcorn", "80")
        order_service.create_order(tenant.id, OrderRequest(lines=(ProductLine(product.id, 2),)))

        facts = OrderSelector(session).order_facts(tenant.id)

        assert len(facts) == 1
        assert facts[0].source == "pos"
        assert facts[0].amount == Decimal("160.00")


class TestPaymentModeFilter:
    def _orders(self, order_service, tenant, product, clock, *methods):
        placed = {}
        for method in methods:
            clock.advance(60)
            placed[method] = order_service.create_order(
                tenant.id, OrderRequest(lines=(ProductLine(product.id, 1),), payment_method=method)
            )
        return placed

    def test_upi_mode_matches_gateway_methods(self, order_service, session, tenant, make_product, clock):
        placed = self._orders(order_service, tenant, make_product(), clock, "razorpay", "upi", "cash", "card")

        page = OrderSelector(session).list_orders(tenant.id, OrderFilters(payment_mode="UPI"))

        assert {o.id for o in page.orders} == {placed["razorpay"].id, placed["upi"].id}
        assert page.summary.total_orders == 2

    def test_card_mode_matches_card_family(self, order_service, session, tenant, make_product, clock):
        placed = self._orders(order_service, tenant, make_product(), clock, "debit_card", "credit_card", "upi")

        page = OrderSelector(session).list_orders(tenant.id, OrderFilters(payment_mode="card"))

        assert {o.id for o in page.orders} == {placed["debit_card"].id, placed["credit_card"].id}

    def test_all_mode_is_unfiltered(self, order_service, session, tenant, make_product, clock):
        self._orders(order_service, tenant, make_product(), clock, "cash", "paytm")
        page = OrderSelector(session).list_orders(tenant.id, OrderFilters(payment_mode="all"))
        assert page.summary.total_orders == 2

    def test_summary_splits_revenue_by_family(self, order_service, session, tenant, make_product, clock):
        placed = self._orders(
            order_service, tenant, make_product("Popcorn", "100"), clock, "cash", "phonepe", "debit_card", "cod",
        )
        order_service.update_status(tenant.id, placed["cod"].id, OrderStatus.CANCELLED)

        summary = OrderSelector(session).list_orders(tenant.id).summary

        assert summary.cash_revenue == Decimal("100.00")
        assert summary.upi_revenue == Decimal("100.00")
        assert summary.card_revenue == Decimal("100.00")
        assert summary.total_revenue == Decimal("300.00")
