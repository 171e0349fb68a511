"""
Tests for CrossTenantAggregator and TenantStatsService.

Covers:
- A tenant that cannot be read is reported in failed_tenants, the rest roll up
- Cancelled orders land only in the cancelled bucket
- The creation window is inclusive and filters by order time
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from concession_engines.channels import OrderStatus
from concession_kernel.exceptions import UnavailableError
from concession_services.stats_service import CrossTenantAggregator


@pytest.fixture
def tenants(facade):
    guru = facade.create_tenant("Guru Cinemas")
    screen = facade.create_tenant("Screen Two")
    for tenant, price in ((guru, "100"), (screen, "50")):
        product = facade.create_product(tenant.id, "Popcorn", Decimal(price))
        facade.create_order(tenant.id, {"items": [{"productId": str(product.id), "quantity": 1}]})
    return guru, screen


class TestCrossTenantAggregator:
    def test_failed_tenant_is_skipped(self, session_factory, clock, tenants, monkeypatch, captured_logs):
        guru, screen = tenants
        aggregator = CrossTenantAggregator(session_factory, clock=clock)
        read = aggregator._tenant_totals

        def flaky(tenant_id, start, end):
            if tenant_id == screen.id:
                raise UnavailableError("rollup", "replica down")
            return read(tenant_id, start, end)

        monkeypatch.setattr(aggregator, "_tenant_totals", flaky)
        result = aggregator.rollup()

        assert result.failed_tenants == (str(screen.id),)
        assert result.total_orders == 1
        assert result.total_amount == Decimal("100.00")
        assert any(r["message"] == "rollup_tenant_failed" for r in captured_logs())

    def test_cancelled_bucket(self, facade, session_factory, clock, tenants):
        guru, _ = tenants
        order = facade.list_orders(guru.id).orders[0]
        facade.update_order_status(guru.id, order.id, OrderStatus.CANCELLED)

        result = CrossTenantAggregator(session_factory, clock=clock).rollup()

        assert result.cancelled_orders == 1
        assert result.cancelled_amount == Decimal("100.00")
        assert result.pos_orders == 1
        assert result.pos_amount == Decimal("50.00")
        assert result.total_orders == 1

    def test_window(self, session_factory, clock, tenants):
        aggregator = CrossTenantAggregator(session_factory, clock=clock)
        now = clock.now()

        assert aggregator.rollup(start=now, end=now).total_orders == 2
        assert aggregator.rollup(start=now + timedelta(seconds=1)).total_orders == 0
        assert aggregator.rollup(end=now - timedelta(seconds=1)).total_orders == 0


class TestTenantStats:
    def test_counts_and_revenue(self, facade, tenants, clock):
        guru, _ = tenants
        stats = facade.tenant_stats(guru.id)
        assert stats.total_orders == 1
        assert stats.today_revenue == Decimal("100.00")
        assert stats.currency == "INR"

        clock.advance_days(1)
        assert facade.tenant_stats(guru.id).today_revenue == Decimal("0")
