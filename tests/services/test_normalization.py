"""
Tests for ingress payload normalization.

Validates:
- Scalar coercion: booleans from strings, Decimals without float drift,
  empty strings treated as absent
- Phone numbers compared on their last ten digits
- Order create payloads with product and combo lines
- List queries and ledger rows from camelCase payloads
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from concession_engines.channels import OrderSource, OrderStatus, PaymentStatus
from concession_engines.ledger import EntryType, InwardType
from concession_engines.pricing import GstType
from concession_kernel.exceptions import InvalidInputError, MissingFieldError
from concession_modules.ordering.models import ComboLine, ProductLine
from concession_services.normalization import (
    coerce_bool,
    coerce_date,
    coerce_datetime,
    coerce_decimal,
    coerce_int,
    coerce_uuid,
    ledger_patch_from_payload,
    ledger_row_from_payload,
    normalize_phone,
    normalize_source,
    order_filters_from_query,
    order_request_from_payload,
    parse_unit_quantity,
    phones_match,
)


class TestScalars:
    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("1", True), ("YES", True), (True, True),
        ("false", False), ("0", False), (0, False), ("off", False),
    ])
    def test_coerce_bool(self, raw, expected):
        assert coerce_bool(raw) is expected

    def test_coerce_bool_absent_and_garbage(self):
        assert coerce_bool("", default=False) is False
        assert coerce_bool(None) is None
        with pytest.raises(InvalidInputError):
            coerce_bool("maybe")

    def test_coerce_decimal(self):
        assert coerce_decimal("12.50") == Decimal("12.50")
        assert coerce_decimal(0.1) == Decimal("0.1")
        assert coerce_decimal(7) == Decimal("7")
        assert coerce_decimal("") is None
        assert coerce_decimal("   ") is None
        assert coerce_decimal(None) is None

    @pytest.mark.parametrize("raw", ["abc", True, "NaN", "Infinity"])
    def test_coerce_decimal_rejects(self, raw):
        with pytest.raises(InvalidInputError):
            coerce_decimal(raw, "price")

    def test_coerce_int(self):
        assert coerce_int("3") == 3
        assert coerce_int("", default=1) == 1
        with pytest.raises(InvalidInputError):
            coerce_int("2.5", "quantity")

    def test_coerce_uuid(self):
        value = uuid4()
        assert coerce_uuid(str(value), "productId") == value
        with pytest.raises(MissingFieldError):
            coerce_uuid("", "productId")
        with pytest.raises(InvalidInputError):
            coerce_uuid("not-a-uuid", "productId")

    def test_dates(self):
        assert coerce_date("2025-03-15T10:00:00Z", "date") == date(2025, 3, 15)
        assert coerce_datetime("2025-03-15T10:00:00Z", "at") == datetime(2025, 3, 15, 10, tzinfo=timezone.utc)
        with pytest.raises(InvalidInputError):
            coerce_date("15/03/2025", "date")


class TestPhones:
    def test_last_ten_digits(self):
        assert normalize_phone("+91 98765-43210") == "9876543210"
        assert normalize_phone("no digits") is None

    def test_match(self):
        assert phones_match("+91 9876543210", "09876543210")
        assert not phones_match(None, "9876543210")
        assert not phones_match("9876543210", "9876543211")


class TestSourceAndUnits:
    def test_known_aliases(self):
        assert normalize_source("offline-pos") is OrderSource.POS
        assert normalize_source("qr_code") is OrderSource.ONLINE
        assert normalize_source("online-pos") is OrderSource.ONLINE

    def test_unknown_source_falls_back_with_warning(self, captured_logs):
        assert normalize_source("drone") is OrderSource.POS
        assert any(r["message"] == "order_source_unknown" for r in captured_logs())

    def test_parse_unit_quantity(self):
        assert parse_unit_quantity("750 ml") == (Decimal("750"), "ML")
        assert parse_unit_quantity("large") is None


class TestOrderPayload:
    def setup_method(self):
        self.product_id = uuid4()
        self.combo_id = uuid4()

    def test_product_and_combo_lines(self):
        request = order_request_from_payload({
            "items": [
                {"productId": str(self.product_id), "quantity": "2", "price": "99.5", "gstType": "Inclusive",
                 "size": "Large"},
                {"comboOfferId": str(self.combo_id), "quantity": 1},
            ],
            "source": "kiosk",
            "paymentMethod": "card",
            "customerInfo": {"name": "Asha", "phone": "+91 98765 43210"},
            "staffInfo": {"staffId": "st-1", "username": "ravi"},
        })

        product_line, combo_line = request.lines
        assert product_line == ProductLine(
            product_id=self.product_id, quantity=2, unit_price=Decimal("99.5"),
            gst_type=GstType.INCLUDE, size_label="Large",
        )
        assert combo_line == ComboLine(combo_id=self.combo_id, quantity=1)
        assert request.source is OrderSource.KIOSK
        assert request.customer.phone == "9876543210"
        assert request.staff.name == "ravi"
        assert request.caller_totals is None

    def test_is_combo_flag_uses_product_id(self):
        request = order_request_from_payload({"cart": [{"_id": str(self.combo_id), "isCombo": "true", "quantity": 1}]})
        assert request.lines == (ComboLine(self.combo_id, 1),)

    def test_caller_totals_and_payment_status(self):
        request = order_request_from_payload({
            "items": [{"productId": str(self.product_id), "quantity": 1}],
            "total": "118", "tax": "18", "paymentStatus": "PAID",
        })
        assert request.caller_totals.total == Decimal("118")
        assert request.caller_totals.subtotal is None
        assert request.payment_status is PaymentStatus.PAID

    def test_defaults(self):
        request = order_request_from_payload({"items": [{"productId": str(self.product_id), "quantity": 1}]})
        assert request.source is OrderSource.POS
        assert request.payment_method == "cash"
        assert request.customer.name == "Walk-in Customer"
        assert request.delivery_charge == Decimal("0")

    @pytest.mark.parametrize("payload,error", [
        ({}, MissingFieldError),
        ({"items": [{"productId": "x", "quantity": 1}]}, InvalidInputError),
        ({"items": [{"quantity": 1}]}, MissingFieldError),
        ({"items": [{"productId": "00000000-0000-4000-a000-000000000009"}]}, MissingFieldError),
        ({"items": [{"productId": "00000000-0000-4000-a000-000000000009", "quantity": 1}],
          "paymentStatus": "maybe"}, InvalidInputError),
    ])
    def test_rejections(self, payload, error):
        with pytest.raises(error):
            order_request_from_payload(payload)


class TestOrderQuery:
    def test_filters(self):
        filters = order_filters_from_query({
            "source": "qr_order", "status": "Ready", "startDate": "2025-03-01T00:00:00Z",
            "search": "  gu00 ", "page": "2", "limit": "50",
        })
        assert filters.source is OrderSource.ONLINE
        assert filters.status is OrderStatus.READY
        assert filters.start == datetime(2025, 3, 1, tzinfo=timezone.utc)
        assert filters.search == "gu00"
        assert (filters.page, filters.limit) == (2, 50)

    def test_empty_query(self):
        filters = order_filters_from_query({})
        assert filters.source is None and filters.status is None
        assert (filters.page, filters.limit) == (1, 20)

    def test_unknown_status(self):
        with pytest.raises(InvalidInputError):
            order_filters_from_query({"status": "lost"})


class TestLedgerPayloads:
    def test_bare_quantity_routes_to_invord(self):
        row = ledger_row_from_payload({"date": "2025-03-04", "quantity": "12", "unit": "kg."})
        assert row.invord_stock == Decimal("12")
        assert row.inward_type is InwardType.PRODUCT
        assert row.unit == "KG"

    def test_cafe_inward_routes_to_direct(self):
        row = ledger_row_from_payload({"date": "2025-03-04", "quantity": "5", "inwardType": "cafe"})
        assert row.direct_stock == Decimal("5")
        assert row.invord_stock == Decimal("0")

    def test_explicit_fields_and_empty_strings(self):
        row = ledger_row_from_payload({
            "date": "2025-03-04", "sales": "3", "damageStock": "", "type": "added",
            "batchNumber": "B-7", "expireDate": "2025-03-20",
        })
        assert row.sales == Decimal("3")
        assert row.damage_stock == Decimal("0")
        assert row.entry_type is EntryType.ADDED
        assert row.expire_date == date(2025, 3, 20)
        assert row.unit == ""

    def test_date_required(self):
        with pytest.raises(MissingFieldError):
            ledger_row_from_payload({"sales": "1"})

    def test_patch_keeps_explicit_zero(self):
        patch = ledger_patch_from_payload({"sales": 0, "addon": "", "notes": "recount", "date": "2025-03-05"})
        assert patch == {"sales": Decimal("0"), "notes": "recount", "day": date(2025, 3, 5)}

    def test_patch_bare_quantity(self):
        assert ledger_patch_from_payload({"quantity": "4", "inwardType": "cafe"}) == {
            "inward_type": "cafe", "direct_stock": Decimal("4"),
        }
