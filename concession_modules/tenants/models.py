"""
Tenant Domain Models (``concession_modules.tenants.models``).

A tenant is one cinema location and the unit of consistency: it owns its
products, ledgers, orders and combo offers exclusively.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class Tenant:
    """Immutable tenant snapshot; the print projection copies its metadata."""

    id: UUID
    name: str
    is_active: bool = True
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    gst_number: str | None = None
    currency: str = "INR"
