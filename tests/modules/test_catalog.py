"""
Tests for CatalogService and TenantService.

Covers:
- Product creation, validation, partial updates and deactivation
- Combo creation rules
- Tenant registration and order-number prefixes
"""

from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from concession_engines.pricing import GstType
from concession_kernel.exceptions import (
    ComboNotFoundError,
    EmptyComboError,
    ProductNotFoundError,
    TenantNotFoundError,
    ZeroQuantityError,
)
from concession_modules.catalog.models import ComboComponent
from concession_modules.tenants.service import order_prefix


class TestProducts:
    def test_create_and_read_back(self, catalog, tenant):
        product = catalog.create_product(
            tenant.id, "Cold Coffee", Decimal("90"), quantity="300 ML", gst_type="Inclusive", tax_rate=Decimal("5")
        )
        loaded = catalog.get_product(tenant.id, product.id)
        assert loaded.name == "Cold Coffee"
        assert loaded.gst_type is GstType.INCLUDE
        assert loaded.descriptor().quantity == "300 ML"

    def test_selling_price_prefers_positive_sale_price(self, make_product):
        assert make_product(sale_price=Decimal("80")).selling_price == Decimal("80")
        assert make_product(sale_price=Decimal("0")).selling_price == Decimal("100")

    @pytest.mark.parametrize("fields", [{"no_qty": 0}, {"tax_rate": Decimal("101")}, {"discount_percentage": Decimal("-1")}])
    def test_invalid_fields_rejected(self, make_product, fields):
        with pytest.raises(ValueError):
            make_product(**fields)

    def test_partial_update(self, catalog, tenant, make_product):
        product = make_product(size_label="Large")
        updated = catalog.update_product(tenant.id, product.id, {"base_price": Decimal("110"), "size_label": None})
        assert updated.base_price == Decimal("110")
        assert updated.size_label is None
        assert updated.name == "Popcorn"

    def test_update_rejects_unknown_and_invalid(self, catalog, tenant, make_product):
        product = make_product()
        with pytest.raises(ValueError):
            catalog.update_product(tenant.id, product.id, {"colour": "red"})
        with pytest.raises(ValueError):
            catalog.update_product(tenant.id, product.id, {"no_qty": 0})

    def test_deactivate_hides_from_listing(self, catalog, tenant, make_product):
        kept = make_product("Nachos")
        gone = make_product("Popcorn")
        catalog.deactivate_product(tenant.id, gone.id)

        assert [p.id for p in catalog.list_products(tenant.id)] == [kept.id]
        assert len(catalog.list_products(tenant.id, active_only=False)) == 2

    def test_tenant_scoping(self, catalog, other_tenant, make_product):
        product = make_product()
        with pytest.raises(ProductNotFoundError):
            catalog.get_product(other_tenant.id, product.id)
        assert catalog.find_product(other_tenant.id, product.id) is None


class TestCombos:
    def test_components_keep_order(self, catalog, tenant, make_product):
        popcorn, cola = make_product("Popcorn"), make_product("Cola")
        combo = catalog.create_combo(
            tenant.id, "Duo", Decimal("150"), [ComboComponent(cola.id, 1), ComboComponent(popcorn.id, 2)]
        )
        loaded = catalog.get_combo(tenant.id, combo.id)
        assert [c.product_id for c in loaded.components] == [cola.id, popcorn.id]
        assert loaded.gst_type is GstType.INCLUDE

    def test_empty_combo(self, catalog, tenant):
        with pytest.raises(EmptyComboError):
            catalog.create_combo(tenant.id, "Nothing", Decimal("10"), [])

    def test_zero_component_quantity(self, catalog, tenant, make_product):
        product = make_product()
        with pytest.raises(ZeroQuantityError):
            catalog.create_combo(tenant.id, "Bad", Decimal("10"), [ComboComponent(product.id, 0)])

    def test_unknown_component_product(self, catalog, tenant):
        with pytest.raises(ProductNotFoundError):
            catalog.create_combo(tenant.id, "Ghost", Decimal("10"), [ComboComponent(uuid4(), 1)])

    def test_unknown_combo(self, catalog, tenant):
        with pytest.raises(ComboNotFoundError):
            catalog.get_combo(tenant.id, uuid4())


class TestTenants:
    def test_create_and_get(self, tenant_service, tenant):
        loaded = tenant_service.get(tenant.id)
        assert loaded.name == "Guru Cinemas"
        assert loaded.phone == "0422 400 1234"
        assert loaded.currency == "INR"

    def test_prefix(self, tenant_service, tenant):
        assert tenant_service.prefix_for(tenant.id) == "GU"

    @pytest.mark.parametrize(
        "name,tenant_id,expected",
        [
            ("screen two", None, "SC"),
            ("x", None, "XX"),
            ("", UUID("ab000000-0000-4000-a000-000000000001"), "AB"),
            (None, None, "OR"),
        ],
    )
    def test_order_prefix(self, name, tenant_id, expected):
        assert order_prefix(name, tenant_id) == expected

    def test_list_active(self, tenant_service, tenant, other_tenant):
        tenant_service.create("Closed Cinema", is_active=False)
        assert [t.name for t in tenant_service.list_active()] == ["Guru Cinemas", "Screen Two"]

    def test_unknown_tenant(self, tenant_service):
        with pytest.raises(TenantNotFoundError):
            tenant_service.get(uuid4())
