"""
Catalog Service (``concession_modules.catalog.service``).

Responsibility
--------------
Tenant-scoped product and combo-offer lookup and maintenance.  Every read
is keyed by tenant: a product id from another tenant is reported as not
found.

Invariants
----------
- Patches distinguish absent fields (kept) from zero-valued fields (set).
- Deleting a product is logical (``is_active=False``); order history keeps
  referring to it.
- Services flush; they never commit.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select

from concession_engines.pricing import GstType
from concession_kernel.db.base import SYSTEM_ACTOR_ID
from concession_kernel.exceptions import (
    ComboNotFoundError,
    EmptyComboError,
    ProductNotFoundError,
    ZeroQuantityError,
)
from concession_kernel.logging_config import get_logger
from concession_kernel.services.base import BaseService
from concession_modules.catalog.models import ComboComponent, ComboOffer, Product
from concession_modules.catalog.orm import ComboComponentModel, ComboOfferModel, ProductModel

logger = get_logger("modules.catalog.service")

_PATCHABLE_PRODUCT_FIELDS = frozenset(
    {
        "name", "base_price", "sale_price", "discount_percentage", "tax_rate",
        "gst_type", "currency", "quantity", "quantity_unit", "unit",
        "inventory_unit", "size_label", "no_qty", "track_stock", "is_active",
    }
)


class CatalogService(BaseService):
    """
    Products and combo offers.

    Contract:
        ``get_product`` / ``get_combo`` return frozen DTOs and raise
        ProductNotFoundError / ComboNotFoundError when the id is unknown to
        the tenant.
    """

    def create_product(
        self,
        tenant_id: UUID,
        name: str,
        base_price: Decimal,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        product_id: UUID | None = None,
        **fields: Any,
    ) -> Product:
        if "gst_type" in fields:
            fields["gst_type"] = GstType.parse(fields["gst_type"])
        dto = Product(id=product_id or uuid4(), tenant_id=tenant_id, name=name, base_price=base_price, **fields)
        model = ProductModel.from_dto(dto, actor_id)
        self.session.add(model)
        self.session.flush()
        logger.info(
            "product_created",
            extra={"tenant_id": str(tenant_id), "product_id": str(model.id), "product_name": name},
        )
        return model.to_dto()

    def _product_model(self, tenant_id: UUID, product_id: UUID) -> ProductModel:
        model = self.session.get(ProductModel, product_id)
        if model is None or model.tenant_id != tenant_id:
            raise ProductNotFoundError(str(tenant_id), str(product_id))
        return model

    def get_product(self, tenant_id: UUID, product_id: UUID) -> Product:
        return self._product_model(tenant_id, product_id).to_dto()

    def find_product(self, tenant_id: UUID, product_id: UUID) -> Product | None:
        model = self.session.get(ProductModel, product_id)
        if model is None or model.tenant_id != tenant_id:
            return None
        return model.to_dto()

    def list_products(self, tenant_id: UUID, active_only: bool = True) -> list[Product]:
        stmt = select(ProductModel).where(ProductModel.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(ProductModel.is_active.is_(True))
        return [m.to_dto() for m in self.session.execute(stmt.order_by(ProductModel.name)).scalars()]

    def update_product(
        self,
        tenant_id: UUID,
        product_id: UUID,
        patch: Mapping[str, Any],
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> Product:
        """
        Apply a partial update.

        Keys present in ``patch`` are written, including zero and ``None``;
        keys absent from it are left alone.
        """
        model = self._product_model(tenant_id, product_id)
        unknown = set(patch) - _PATCHABLE_PRODUCT_FIELDS
        if unknown:
            raise ValueError(f"Unknown product fields: {sorted(unknown)}")
        for key, value in patch.items():
            if key == "gst_type":
                value = GstType.parse(value).value
            setattr(model, key, value)
        model.updated_by_id = actor_id
        # Validates the patched values
        dto = model.to_dto()
        self.session.flush()
        logger.info(
            "product_updated",
            extra={"tenant_id": str(tenant_id), "product_id": str(product_id), "fields": sorted(patch)},
        )
        return dto

    def deactivate_product(self, tenant_id: UUID, product_id: UUID, actor_id: UUID = SYSTEM_ACTOR_ID) -> Product:
        return self.update_product(tenant_id, product_id, {"is_active": False}, actor_id)

    def create_combo(
        self,
        tenant_id: UUID,
        name: str,
        price: Decimal,
        components: Iterable[ComboComponent],
        actor_id: UUID = SYSTEM_ACTOR_ID,
        combo_id: UUID | None = None,
        discount_percentage: Decimal | None = None,
        tax_rate: Decimal | None = None,
        gst_type: GstType | str = GstType.INCLUDE,
    ) -> ComboOffer:
        combo_id = combo_id or uuid4()
        parts = list(components)
        if not parts:
            raise EmptyComboError(str(combo_id))
        for part in parts:
            if part.quantity <= 0:
                raise ZeroQuantityError(f"combo {name} component {part.product_id}", part.quantity)
            self._product_model(tenant_id, part.product_id)
        model = ComboOfferModel(
            id=combo_id,
            tenant_id=tenant_id,
            name=name,
            price=price,
            discount_percentage=discount_percentage,
            tax_rate=tax_rate,
            gst_type=GstType.parse(gst_type).value,
            created_by_id=actor_id,
        )
        for position, part in enumerate(parts):
            model.components.append(
                ComboComponentModel(
                    position=position,
                    product_id=part.product_id,
                    product_name=part.product_name,
                    quantity=part.quantity,
                    created_by_id=actor_id,
                )
            )
        self.session.add(model)
        self.session.flush()
        logger.info(
            "combo_created",
            extra={"tenant_id": str(tenant_id), "combo_id": str(combo_id), "components": len(parts)},
        )
        return model.to_dto()

    def get_combo(self, tenant_id: UUID, combo_id: UUID) -> ComboOffer:
        model = self.session.get(ComboOfferModel, combo_id)
        if model is None or model.tenant_id != tenant_id or not model.is_active:
            raise ComboNotFoundError(str(tenant_id), str(combo_id))
        return model.to_dto()
