"""
QR Name Models (``concession_modules.qr_names.models``).

A QR name labels one printed QR code ("YQ S-1") together with its seat
class ("VIP").  The same name may be reused across seat classes; the
(name, seat class) pair is unique within a tenant.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class QRName:
    id: UUID
    tenant_id: UUID
    qr_name: str
    seat_class: str
    description: str = ""
    is_active: bool = True
    sort_order: int = 0
