"""
QR Name Service (``concession_modules.qr_names.service``).

Registers, renames and retires QR names.  Duplicate (name, seat class)
pairs are compared trimmed and case-insensitively and rejected with
``DuplicateQRNameError`` before the unique constraint is reached.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select

from concession_kernel.db.base import SYSTEM_ACTOR_ID
from concession_kernel.exceptions import DuplicateQRNameError, MissingFieldError, QRNameNotFoundError
from concession_kernel.logging_config import get_logger
from concession_kernel.services.base import BaseService
from concession_modules.qr_names.models import QRName
from concession_modules.qr_names.orm import QRNameModel, name_key

logger = get_logger("modules.qr_names.service")

_RENAMEABLE = frozenset({"qr_name", "seat_class", "description", "sort_order", "is_active"})


class QRNameService(BaseService):
    """Per-tenant QR names."""

    def _clash(self, tenant_id: UUID, qr_name: str, seat_class: str, exclude: UUID | None = None) -> QRNameModel | None:
        stmt = select(QRNameModel).where(
            QRNameModel.tenant_id == tenant_id,
            QRNameModel.qr_key == name_key(qr_name),
            QRNameModel.seat_class_key == name_key(seat_class),
        )
        if exclude is not None:
            stmt = stmt.where(QRNameModel.id != exclude)
        return self.session.execute(stmt).scalar_one_or_none()

    def _model(self, tenant_id: UUID, qr_name_id: UUID) -> QRNameModel:
        model = self.session.get(QRNameModel, qr_name_id)
        if model is None or model.tenant_id != tenant_id:
            raise QRNameNotFoundError(str(tenant_id), str(qr_name_id))
        return model

    def create(
        self,
        tenant_id: UUID,
        qr_name: str,
        seat_class: str,
        description: str = "",
        sort_order: int = 0,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> QRName:
        if not (qr_name or "").strip():
            raise MissingFieldError("qr_name")
        if not (seat_class or "").strip():
            raise MissingFieldError("seat_class")
        if self._clash(tenant_id, qr_name, seat_class) is not None:
            raise DuplicateQRNameError(str(tenant_id), qr_name.strip(), seat_class.strip())
        model = QRNameModel(
            id=uuid4(),
            tenant_id=tenant_id,
            description=(description or "").strip(),
            sort_order=sort_order,
            is_active=True,
            created_by_id=actor_id,
        )
        model.set_names(qr_name, seat_class)
        self.session.add(model)
        self.session.flush()
        logger.info(
            "qr_name_created",
            extra={"tenant_id": str(tenant_id), "qr_name": model.qr_name, "seat_class": model.seat_class},
        )
        return model.to_dto()

    def list(self, tenant_id: UUID, active_only: bool = False) -> list[QRName]:
        stmt = select(QRNameModel).where(QRNameModel.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(QRNameModel.is_active.is_(True))
        stmt = stmt.order_by(QRNameModel.sort_order, QRNameModel.qr_key, QRNameModel.seat_class_key)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def rename(
        self,
        tenant_id: UUID,
        qr_name_id: UUID,
        patch: Mapping[str, Any],
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> QRName:
        """Partial update; renaming onto an existing pair is a conflict."""
        unknown = set(patch) - _RENAMEABLE
        if unknown:
            raise ValueError(f"Unknown QR name fields: {sorted(unknown)}")
        model = self._model(tenant_id, qr_name_id)
        new_name = patch.get("qr_name", model.qr_name)
        new_class = patch.get("seat_class", model.seat_class)
        if not (new_name or "").strip():
            raise MissingFieldError("qr_name")
        if not (new_class or "").strip():
            raise MissingFieldError("seat_class")
        if self._clash(tenant_id, new_name, new_class, exclude=model.id) is not None:
            raise DuplicateQRNameError(str(tenant_id), new_name.strip(), new_class.strip())
        model.set_names(new_name, new_class)
        if "description" in patch:
            model.description = (patch["description"] or "").strip()
        if "sort_order" in patch:
            model.sort_order = int(patch["sort_order"])
        if "is_active" in patch:
            model.is_active = bool(patch["is_active"])
        model.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "qr_name_updated",
            extra={"tenant_id": str(tenant_id), "qr_name_id": str(qr_name_id), "fields": sorted(patch)},
        )
        return model.to_dto()

    def deactivate(self, tenant_id: UUID, qr_name_id: UUID, actor_id: UUID = SYSTEM_ACTOR_ID) -> QRName:
        return self.rename(tenant_id, qr_name_id, {"is_active": False}, actor_id)

    def delete(self, tenant_id: UUID, qr_name_id: UUID) -> None:
        model = self._model(tenant_id, qr_name_id)
        self.session.delete(model)
        self.session.flush()
        logger.info("qr_name_deleted", extra={"tenant_id": str(tenant_id), "qr_name_id": str(qr_name_id)})
