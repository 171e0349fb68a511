"""
Statistics services (``concession_services.stats_service``).

Responsibility:
    - ``CrossTenantAggregator`` rolls order counts and amounts up across all
      active tenants by channel (pos / kiosk / online) plus a cancelled
      bucket.
    - ``TenantStatsService`` computes one tenant's dashboard numbers.

Architecture position:
    Services.  Reads through ``OrderSelector`` and does the arithmetic in
    ``concession_engines.stats``.

Invariants enforced:
    - Each tenant is read in its own session under the read retry policy,
      so one tenant's failure cannot poison another's numbers.
    - A tenant that still fails after retries is logged and listed in
      ``failed_tenants``; the rollup of the others is returned.
    - Cancelled orders are counted only as cancelled.

Failure modes:
    - None surfaced per tenant.  Listing the tenants themselves propagates
      ``PersistenceTimeoutError`` / ``UnavailableError``.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from concession_engines.stats import RollupTotals, TenantStats, rollup_orders, tenant_stats
from concession_kernel.db.engine import session_scope
from concession_kernel.db.types import ZERO
from concession_kernel.domain.clock import Clock, SystemClock
from concession_kernel.exceptions import ConcessionError
from concession_kernel.logging_config import get_logger
from concession_kernel.services.base import BaseService
from concession_kernel.services.retry_service import RetryPolicy, RetryService
from concession_modules.ordering.selector import OrderSelector
from concession_modules.tenants.service import TenantService

logger = get_logger("services.stats")


@dataclass(frozen=True)
class RollupResult:
    pos_orders: int = 0
    pos_amount: Decimal = ZERO
    kiosk_orders: int = 0
    kiosk_amount: Decimal = ZERO
    online_orders: int = 0
    online_amount: Decimal = ZERO
    cancelled_orders: int = 0
    cancelled_amount: Decimal = ZERO
    total_orders: int = 0
    total_amount: Decimal = ZERO
    failed_tenants: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_totals(cls, totals: RollupTotals, failed: tuple[str, ...] = ()) -> RollupResult:
        return cls(
            pos_orders=totals.pos_orders,
            pos_amount=totals.pos_amount,
            kiosk_orders=totals.kiosk_orders,
            kiosk_amount=totals.kiosk_amount,
            online_orders=totals.online_orders,
            online_amount=totals.online_amount,
            cancelled_orders=totals.cancelled_orders,
            cancelled_amount=totals.cancelled_amount,
            total_orders=totals.total_orders,
            total_amount=totals.total_amount,
            failed_tenants=failed,
        )


class TenantStatsService(BaseService):
    """Dashboard numbers for one tenant."""

    def compute(self, tenant_id: UUID) -> TenantStats:
        tenant = TenantService(self.session, self.clock).get(tenant_id)
        facts = OrderSelector(self.session).order_facts(tenant_id)
        return tenant_stats(facts, self.clock.today(), tenant.currency)


class CrossTenantAggregator:
    """
    Channel rollup over every active tenant.

    Contract:
        ``session_factory`` returns new sessions; the aggregator opens one
        per tenant and one for the tenant listing.

    Non-goals:
        - Does NOT lock.  Reads see whatever each tenant has committed.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        policy: RetryPolicy | None = None,
        retry: RetryService | None = None,
        workers: int = 4,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._policy = policy or RetryPolicy.read(deadline_seconds=60.0)
        self._retry = retry or RetryService()
        self._workers = max(1, workers)
        self._clock = clock or SystemClock()

    def _tenant_ids(self) -> list[UUID]:
        def load() -> list[UUID]:
            with session_scope(self._session_factory) as session:
                return [t.id for t in TenantService(session, self._clock).list_active()]

        return self._retry.run("rollup_list_tenants", load, self._policy)

    def _tenant_totals(self, tenant_id: UUID, start: datetime | None, end: datetime | None) -> RollupTotals:
        def load() -> RollupTotals:
            with session_scope(self._session_factory) as session:
                return rollup_orders(OrderSelector(session).order_facts(tenant_id), start, end)

        return self._retry.run(f"rollup_tenant:{tenant_id}", load, self._policy)

    def _safe_totals(
        self, tenant_id: UUID, start: datetime | None, end: datetime | None,
    ) -> tuple[UUID, RollupTotals | None]:
        try:
            return tenant_id, self._tenant_totals(tenant_id, start, end)
        except (ConcessionError, SQLAlchemyError) as exc:
            logger.error(
                "rollup_tenant_failed",
                extra={"tenant_id": str(tenant_id), "error": str(exc)},
                exc_info=True,
            )
            return tenant_id, None

    def rollup(self, start: datetime | None = None, end: datetime | None = None) -> RollupResult:
        """Totals for orders created in ``[start, end]`` across active tenants."""
        tenant_ids = self._tenant_ids()
        totals = RollupTotals()
        failed: list[str] = []
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="concession-rollup") as pool:
            for tenant_id, tenant_totals in pool.map(lambda t: self._safe_totals(t, start, end), tenant_ids):
                if tenant_totals is None:
                    failed.append(str(tenant_id))
                else:
                    totals = totals + tenant_totals
        result = RollupResult.from_totals(totals, tuple(failed))
        logger.info(
            "cross_tenant_rollup",
            extra={
                "tenants": len(tenant_ids),
                "failed_tenants": len(failed),
                "total_orders": result.total_orders,
                "total_amount": result.total_amount,
                "cancelled_orders": result.cancelled_orders,
            },
        )
        return result
