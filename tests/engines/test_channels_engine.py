"""
Tests for the channel vocabulary.

Covers:
- Source alias canonicalization
- Initial status by route and payment method
- Stock recording eligibility
- Payment families
- Payment-mode filter groups
"""

import pytest

from concession_engines.channels import (
    OrderSource,
    OrderStatus,
    PaymentFamily,
    PaymentStatus,
    canonical_source,
    initial_status,
    is_known_source,
    is_pos_route,
    payment_family,
    payment_methods_for,
    should_record_stock,
)


class TestCanonicalSource:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("pos", OrderSource.POS),
            ("offline-pos", OrderSource.POS),
            ("staff", OrderSource.POS),
            ("kiosk", OrderSource.KIOSK),
            ("online", OrderSource.ONLINE),
            ("online-pos", OrderSource.ONLINE),
            ("qr_code", OrderSource.ONLINE),
            ("QR-ORDER", OrderSource.ONLINE),
            (" web ", OrderSource.ONLINE),
            (None, OrderSource.POS),
            ("", OrderSource.POS),
        ],
    )
    def test_aliases(self, raw, expected):
        assert canonical_source(raw) is expected

    def test_unknown_falls_back_to_pos(self):
        assert canonical_source("carrier-pigeon") is OrderSource.POS
        assert is_known_source("carrier-pigeon") is False

    def test_enum_passes_through(self):
        assert canonical_source(OrderSource.KIOSK) is OrderSource.KIOSK


class TestInitialStatus:
    @pytest.mark.parametrize("source", [OrderSource.POS, OrderSource.KIOSK])
    @pytest.mark.parametrize("method", ["cash", "COD", None])
    def test_cash_on_pos_route_confirms(self, source, method):
        assert initial_status(source, method, None) == (OrderStatus.CONFIRMED, PaymentStatus.COMPLETED)

    def test_card_on_pos_stays_pending(self):
        assert initial_status(OrderSource.POS, "card", None) == (OrderStatus.PENDING, PaymentStatus.PENDING)

    def test_online_cash_stays_pending(self):
        assert initial_status(OrderSource.ONLINE, "cash", None) == (OrderStatus.PENDING, PaymentStatus.PENDING)

    def test_caller_payment_status_kept_when_pending(self):
        status, payment = initial_status(OrderSource.ONLINE, "upi", PaymentStatus.PAID)
        assert status is OrderStatus.PENDING
        assert payment is PaymentStatus.PAID


class TestShouldRecordStock:
    def test_confirmed_and_paid(self):
        assert should_record_stock(OrderStatus.CONFIRMED, PaymentStatus.COMPLETED)

    def test_pending_never_records(self):
        assert not should_record_stock(OrderStatus.PENDING, PaymentStatus.PAID)

    def test_unpaid_never_records(self):
        assert not should_record_stock(OrderStatus.PREPARING, PaymentStatus.PENDING)
        assert not should_record_stock(OrderStatus.CONFIRMED, PaymentStatus.FAILED)


class TestPaymentFamily:
    @pytest.mark.parametrize(
        "method, family",
        [
            ("cash", PaymentFamily.CASH),
            ("cod", PaymentFamily.CASH),
            (None, PaymentFamily.CASH),
            ("debit_card", PaymentFamily.CARD),
            ("UPI", PaymentFamily.ONLINE),
            ("razorpay", PaymentFamily.ONLINE),
            ("voucher", PaymentFamily.OTHER),
        ],
    )
    def test_families(self, method, family):
        assert payment_family(method) is family


def test_pos_route():
    assert is_pos_route(OrderSource.POS)
    assert is_pos_route(OrderSource.KIOSK)
    assert not is_pos_route(OrderSource.ONLINE)


class TestPaymentMethodsFor:
    def test_upi_matches_online_family(self):
        methods = payment_methods_for("UPI")
        assert {"upi", "online", "razorpay", "phonepe", "paytm"} <= set(methods)
        assert "card" not in methods

    def test_card_matches_card_family(self):
        assert set(payment_methods_for("card")) == {"card", "credit_card", "debit_card"}

    def test_cash_includes_cod(self):
        assert set(payment_methods_for(" cash ")) == {"cash", "cod"}

    def test_unknown_mode_matches_itself(self):
        assert payment_methods_for("voucher") == ("voucher",)
