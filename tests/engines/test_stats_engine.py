"""Tests for the order statistics engine: window rollups and tenant dashboards."""

from datetime import date, datetime, timezone
from decimal import Decimal

from concession_engines.stats import OrderFact, RollupTotals, rollup_orders, tenant_stats


def _at(day: int, hour: int = 12) -> datetime:
    return datetime(2025, 3, day, hour, tzinfo=timezone.utc)


class TestRollupOrders:
    def setup_method(self):
        self.facts = [
            OrderFact("pos", "completed", Decimal("100"), _at(1)),
            OrderFact("offline-pos", "confirmed", Decimal("50"), _at(2)),
            OrderFact("kiosk", "ready", Decimal("30"), _at(3)),
            OrderFact("qr_code", "pending", Decimal("20"), _at(4)),
            OrderFact("online", "cancelled", Decimal("15"), _at(5)),
        ]

    def test_buckets_by_canonical_source(self):
        totals = rollup_orders(self.facts, None, None)

        assert totals.pos_orders == 2
        assert totals.pos_amount == Decimal("150.00")
        assert totals.kiosk_orders == 1
        assert totals.online_orders == 1
        assert totals.online_amount == Decimal("20.00")

    def test_cancelled_counted_separately(self):
        totals = rollup_orders(self.facts, None, None)

        assert totals.cancelled_orders == 1
        assert totals.cancelled_amount == Decimal("15.00")
        assert totals.total_orders == 4
        assert totals.total_amount == Decimal("200.00")

    def test_window_is_inclusive(self):
        totals = rollup_orders(self.facts, _at(2), _at(3))
        assert totals.total_orders == 2
        assert totals.pos_amount == Decimal("50.00")
        assert totals.kiosk_amount == Decimal("30.00")

    def test_totals_add(self):
        one = RollupTotals(pos_orders=1, pos_amount=Decimal("10"))
        two = RollupTotals(pos_orders=2, online_orders=1, online_amount=Decimal("5"))
        merged = one + two
        assert merged.pos_orders == 3
        assert merged.total_amount == Decimal("15")


class TestTenantStats:
    def test_dashboard_numbers(self):
        facts = [
            OrderFact("pos", "completed", Decimal("100"), _at(15, 9), "completed"),
            OrderFact("pos", "confirmed", Decimal("40"), _at(15, 10), "completed"),
            OrderFact("online", "pending", Decimal("25"), _at(14), "pending"),
            OrderFact("online", "cancelled", Decimal("60"), _at(15), "paid"),
            OrderFact("kiosk", "preparing", Decimal("10"), _at(10), "paid"),
        ]
        stats = tenant_stats(facts, date(2025, 3, 15), "INR")

        assert stats.total_orders == 5
        assert stats.today_orders == 3
        assert stats.completed_orders == 1
        assert stats.pending_orders == 3
        assert stats.today_revenue == Decimal("140.00")
        assert stats.total_revenue == Decimal("150.00")
        assert stats.currency == "INR"

    def test_empty(self):
        stats = tenant_stats([], date(2025, 3, 15))
        assert stats.total_orders == 0
        assert stats.total_revenue == Decimal("0.00")
