"""
Tenant Service (``concession_modules.tenants.service``).

Responsibility
--------------
Creates and loads tenants and derives the two-character order-number prefix.

Invariants
----------
- The prefix is always two upper-case characters.
- Services flush; they never commit.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select

from concession_kernel.db.base import SYSTEM_ACTOR_ID
from concession_kernel.exceptions import TenantNotFoundError
from concession_kernel.logging_config import get_logger
from concession_kernel.services.base import BaseService
from concession_modules.tenants.models import Tenant
from concession_modules.tenants.orm import TenantModel

logger = get_logger("modules.tenants.service")

DEFAULT_PREFIX = "OR"


def order_prefix(name: str | None, tenant_id: UUID | str | None, default: str = DEFAULT_PREFIX) -> str:
    """
    Two-character order-number prefix.

    First two characters of the display name upper-cased (a one-character
    name is doubled); else the first two alphanumerics of the tenant id;
    else ``default``.
    """
    cleaned = (name or "").strip()
    if len(cleaned) >= 2:
        return cleaned[:2].upper()
    if len(cleaned) == 1:
        return (cleaned * 2).upper()
    alnum = "".join(ch for ch in str(tenant_id or "") if ch.isalnum())
    if len(alnum) >= 2:
        return alnum[:2].upper()
    return default


class TenantService(BaseService):
    """Tenant lookup and registration."""

    def create(
        self,
        name: str,
        tenant_id: UUID | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        **details,
    ) -> Tenant:
        model = TenantModel.from_dto(Tenant(id=tenant_id or uuid4(), name=name, **details), actor_id)
        self.session.add(model)
        self.session.flush()
        logger.info("tenant_created", extra={"tenant_id": str(model.id), "tenant_name": name})
        return model.to_dto()

    def get_model(self, tenant_id: UUID) -> TenantModel:
        model = self.session.get(TenantModel, tenant_id)
        if model is None:
            raise TenantNotFoundError(str(tenant_id))
        return model

    def get(self, tenant_id: UUID) -> Tenant:
        return self.get_model(tenant_id).to_dto()

    def list_active(self) -> list[Tenant]:
        rows = self.session.execute(
            select(TenantModel).where(TenantModel.is_active.is_(True)).order_by(TenantModel.name)
        ).scalars()
        return [row.to_dto() for row in rows]

    def prefix_for(self, tenant_id: UUID, default: str = DEFAULT_PREFIX) -> str:
        model = self.session.get(TenantModel, tenant_id)
        return order_prefix(model.name if model else None, tenant_id, default)
