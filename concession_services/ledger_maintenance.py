"""
Background ledger maintenance (``concession_services.ledger_maintenance``).

Contract:
    - ``LedgerMaintenanceWorker`` runs the deferred ledger hooks (batch
      auto-expiry and whole-chain repair) for one (tenant, product) at a
      time on a small thread pool.
    - ``StockReconciler`` converges order stock flags with the cafe ledger
      for a tenant (``reconcile_pending``).

Architecture: concession_services.  Each task opens its own session through
    ``session_scope`` and holds the tenant exclusively while it writes, like
    any other ledger writer.

Invariants enforced:
    - Best effort: a task is skipped (and logged) when ``max_pending`` tasks
      are already queued; every hook is idempotent, so a skipped or failed
      run is caught up by the next sweep.
    - Bounded retries: transient database failures are retried by
      ``RetryService`` up to ``max_attempts``; anything else is logged once
      and abandoned.
    - Foreground writes never wait on maintenance beyond the tenant lock.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from concession_engines.ledger import CARRY_FORWARD_NOTE, LedgerFamily
from concession_kernel.db.engine import session_scope
from concession_kernel.domain.clock import Clock, SystemClock
from concession_kernel.exceptions import ConcessionError
from concession_kernel.logging_config import LogContext, get_logger
from concession_kernel.services.retry_service import RetryPolicy, RetryService
from concession_kernel.services.tenant_lock import TenantLockRegistry
from concession_modules.inventory.bridge import build_ledger_stores
from concession_modules.ordering.reconciliation import ReconcileReport, StockReconciliationService
from concession_modules.tenants.service import TenantService

logger = get_logger("services.ledger_maintenance")

T = TypeVar("T")


@dataclass(frozen=True)
class MaintenanceReport:
    products: int = 0
    batches_expired: int = 0
    months_repaired: int = 0
    failed: int = 0


class LedgerMaintenanceWorker:
    """
    Thread-pool runner for ``auto_expire`` and ``update_old_stock_chain``.

    Non-goals:
        - NOT a scheduler.  Callers (a cron script, a request hook) decide
          when to submit.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        locks: TenantLockRegistry,
        clock: Clock | None = None,
        retry: RetryService | None = None,
        workers: int = 2,
        max_pending: int = 64,
        max_attempts: int = 3,
        carry_forward_note: str = CARRY_FORWARD_NOTE,
    ):
        self._session_factory = session_factory
        self._locks = locks
        self._clock = clock or SystemClock()
        self._retry = retry or RetryService()
        self._policy = RetryPolicy(max_attempts=max(1, max_attempts))
        self._note = carry_forward_note
        self._max_pending = max_pending
        self._pending = 0
        self._guard = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="concession-ledger")

    # ------------------------------------------------------------------
    # Synchronous hooks
    # ------------------------------------------------------------------

    def _run(self, operation: str, tenant_id: UUID, work: Callable[[Session], T]) -> T:
        def attempt() -> T:
            with self._locks.tenant(tenant_id, operation):
                with session_scope(self._session_factory) as session:
                    return work(session)

        return self._retry.run(operation, attempt, self._policy)

    def expire(self, tenant_id: UUID, product_id: UUID, family: LedgerFamily = LedgerFamily.CAFE) -> int:
        """Book expired batches for one product; returns batches processed."""
        def work(session: Session) -> int:
            store = build_ledger_stores(session, self._clock, self._note).for_family(family)
            return store.auto_expire(tenant_id, product_id, self._clock.today())

        return self._run("ledger_auto_expire", tenant_id, work)

    def repair_chain(self, tenant_id: UUID, product_id: UUID, family: LedgerFamily = LedgerFamily.CAFE) -> int:
        """Re-verify every month of one product; returns months repaired."""
        def work(session: Session) -> int:
            store = build_ledger_stores(session, self._clock, self._note).for_family(family)
            return store.update_old_stock_chain(tenant_id, product_id)

        return self._run("ledger_chain_repair", tenant_id, work)

    def products(self, tenant_id: UUID, family: LedgerFamily) -> list[UUID]:
        def load() -> list[UUID]:
            with session_scope(self._session_factory) as session:
                store = build_ledger_stores(session, self._clock, self._note).for_family(family)
                return store.products_with_ledgers(tenant_id)

        return self._retry.run("ledger_products", load, self._policy)

    def run_tenant(self, tenant_id: UUID) -> MaintenanceReport:
        """Expire and repair every ledger of ``tenant_id``, both families."""
        products = expired = repaired = failed = 0
        with LogContext.bind(tenant_id=str(tenant_id)):
            for family in (LedgerFamily.THEATER, LedgerFamily.CAFE):
                for product_id in self.products(tenant_id, family):
                    products += 1
                    try:
                        expired += self.expire(tenant_id, product_id, family)
                        repaired += self.repair_chain(tenant_id, product_id, family)
                    except (ConcessionError, SQLAlchemyError) as exc:
                        failed += 1
                        logger.error(
                            "ledger_maintenance_failed",
                            extra={
                                "tenant_id": str(tenant_id),
                                "product_id": str(product_id),
                                "family": family.value,
                                "error": str(exc),
                            },
                            exc_info=True,
                        )
        report = MaintenanceReport(products, expired, repaired, failed)
        logger.info(
            "ledger_maintenance_pass",
            extra={
                "tenant_id": str(tenant_id),
                "products": report.products,
                "batches_expired": report.batches_expired,
                "months_repaired": report.months_repaired,
                "failed": report.failed,
            },
        )
        return report

    # ------------------------------------------------------------------
    # Background submission
    # ------------------------------------------------------------------

    def _done(self, future: Future) -> None:
        with self._guard:
            self._pending -= 1
        exc = future.exception()
        if exc is not None:
            logger.error("ledger_maintenance_task_abandoned", extra={"error": str(exc)})

    def submit(self, fn: Callable[..., T], *args) -> Future | None:
        """Queue ``fn(*args)``; None when the worker is saturated."""
        with self._guard:
            if self._pending >= self._max_pending:
                logger.warning(
                    "ledger_maintenance_skipped",
                    extra={"task": getattr(fn, "__name__", str(fn)), "pending": self._pending},
                )
                return None
            self._pending += 1
        future = self._executor.submit(fn, *args)
        future.add_done_callback(self._done)
        return future

    def submit_product(self, tenant_id: UUID, product_id: UUID, family: LedgerFamily = LedgerFamily.CAFE) -> Future | None:
        def task() -> tuple[int, int]:
            return self.expire(tenant_id, product_id, family), self.repair_chain(tenant_id, product_id, family)

        task.__name__ = "maintain_product"
        return self.submit(task)

    def sweep(self, tenant_ids: Iterable[UUID]) -> list[Future]:
        futures = [self.submit(self.run_tenant, tenant_id) for tenant_id in tenant_ids]
        return [f for f in futures if f is not None]

    @property
    def pending(self) -> int:
        with self._guard:
            return self._pending

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class StockReconciler:
    """Runs ``reconcile_pending`` for tenants, one transaction per tenant."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        locks: TenantLockRegistry,
        clock: Clock | None = None,
        retry: RetryService | None = None,
        policy: RetryPolicy | None = None,
        carry_forward_note: str = CARRY_FORWARD_NOTE,
    ):
        self._session_factory = session_factory
        self._locks = locks
        self._clock = clock or SystemClock()
        self._retry = retry or RetryService()
        self._policy = policy or RetryPolicy.critical_write()
        self._note = carry_forward_note

    def reconcile(self, tenant_id: UUID) -> ReconcileReport:
        def attempt() -> ReconcileReport:
            with self._locks.tenant(tenant_id, "stock_reconcile"):
                with session_scope(self._session_factory) as session:
                    stores = build_ledger_stores(session, self._clock, self._note)
                    service = StockReconciliationService(session, stores.cafe, clock=self._clock)
                    return service.reconcile_pending(tenant_id, self._clock.today())

        with LogContext.bind(tenant_id=str(tenant_id)):
            return self._retry.run("stock_reconcile", attempt, self._policy)

    def reconcile_all(self) -> dict[str, ReconcileReport | None]:
        """Every active tenant; a failing tenant maps to None and is logged."""
        def load() -> list[UUID]:
            with session_scope(self._session_factory) as session:
                return [t.id for t in TenantService(session, self._clock).list_active()]

        results: dict[str, ReconcileReport | None] = {}
        for tenant_id in self._retry.run("stock_reconcile_tenants", load, RetryPolicy.read()):
            try:
                results[str(tenant_id)] = self.reconcile(tenant_id)
            except (ConcessionError, SQLAlchemyError) as exc:
                results[str(tenant_id)] = None
                logger.error(
                    "stock_reconcile_tenant_failed",
                    extra={"tenant_id": str(tenant_id), "error": str(exc)},
                    exc_info=True,
                )
        return results
