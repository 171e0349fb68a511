"""
Shared fixtures for module tests.

Module services share the ``session`` fixture and flush without committing.
Tenant ids are deterministic so tests can import and use them directly.

DESIGN RULE: Every fixture is opt-in.  No autouse.  Each test explicitly
declares which parent entities it depends on in its function signature.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from concession_engines.ledger import LedgerFamily, LedgerRow
from concession_modules.catalog.service import CatalogService
from concession_modules.inventory.bridge import build_ledger_stores
from concession_modules.ordering.service import OrderService
from concession_modules.qr_names.service import QRNameService
from concession_modules.tenants.service import TenantService

TEST_TENANT_ID = UUID("00000000-0000-4000-a000-000000000001")
OTHER_TENANT_ID = UUID("00000000-0000-4000-a000-000000000002")


@pytest.fixture
def tenant_service(session, clock):
    return TenantService(session, clock)


@pytest.fixture
def tenant(tenant_service):
    return tenant_service.create("Guru Cinemas", tenant_id=TEST_TENANT_ID, phone="0422 400 1234")


@pytest.fixture
def other_tenant(tenant_service):
    return tenant_service.create("Screen Two", tenant_id=OTHER_TENANT_ID)


@pytest.fixture
def catalog(session, clock):
    return CatalogService(session, clock)


@pytest.fixture
def stores(session, clock):
    return build_ledger_stores(session, clock)


@pytest.fixture
def order_service(session, clock, stores, catalog, tenant_service):
    return OrderService(session, stores.cafe, clock, catalog=catalog, tenants=tenant_service)


@pytest.fixture
def qr_service(session, clock):
    return QRNameService(session, clock)


@pytest.fixture
def make_product(catalog, tenant):
    """Create a product for ``tenant``; prices are strings for readability."""

    def _make(name: str = "Popcorn", base_price: str = "100", **fields):
        return catalog.create_product(tenant.id, name, Decimal(base_price), **fields)

    return _make


@pytest.fixture
def stock_in(stores, tenant):
    """Append inward stock to a ledger: ``stock_in(product_id, "10", date(...), unit="KG")``."""

    def _stock(product_id, amount: str, day: date, unit: str = "NOS", family: LedgerFamily = LedgerFamily.CAFE):
        store = stores.for_family(family)
        ledger = store.get_or_create(tenant.id, product_id, day.year, day.month)
        return store.append(ledger, LedgerRow(day=day, unit=unit, invord_stock=Decimal(amount)))

    return _stock
