"""
concession_services.facade -- the external interface of the engine.

Responsibility:
    One object that HTTP handlers, kiosks, print agents and scripts call.
    Every call is a complete unit of work: it takes the right in-process
    lock, runs its database work in a fresh ``session_scope`` under the
    retry policy, commits, releases the lock and only then fans out to the
    print queue and push channel.

Architecture position:
    Services -- the top of the stack.  Composes the module services per
    transaction (the single place where they are wired together) and owns
    transaction boundaries; the modules below only flush.

Invariants enforced:
    - Order creates, status and payment changes, item cancellations and QR
      name writes hold the tenant exclusively.
    - Direct ledger reads and writes hold the tenant shared plus the sorted
      cell locks of the touched month and every later stored month, since
      a change carries forward (a cafe write also spans the theater ledger
      through the bridge).  A span that keeps growing falls back to the
      exclusive tenant lock.
    - Locks are taken before the transaction opens; channel dispatch runs
      after commit and outside every lock.
    - Critical writes get at least 5 attempts, reads at least 3, each under
      the configured deadline.

Failure modes:
    - Domain errors (``ConcessionError`` subclasses) surface on the first
      occurrence.
    - ``PersistenceTimeoutError`` / ``UnavailableError`` once retries are
      exhausted.
    - Dispatch failures never surface (logged by the dispatcher).

Usage:
    facade = ConcessionFacade.from_settings()
    order = facade.create_order(tenant_id, {"items": [...], "source": "pos"})
    facade.update_order_status(tenant_id, order.order_number, "preparing")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from concession_config import get_active_settings
from concession_config.schema import ConcessionSettings
from concession_engines.channels import OrderStatus, is_pos_route
from concession_engines.ledger import LedgerFamily, LedgerRow
from concession_engines.stats import TenantStats
from concession_engines.units import max_orderable
from concession_kernel.db.base import SYSTEM_ACTOR_ID
from concession_kernel.db.engine import get_session_factory, init_engine_from_url, session_scope
from concession_kernel.domain.clock import Clock, SystemClock
from concession_kernel.exceptions import (
    LedgerEntryNotFoundError,
    OrderAlreadyCancelledError,
    OrderCompletedError,
    PhoneMismatchError,
)
from concession_kernel.logging_config import LogContext, get_logger
from concession_kernel.services.retry_service import RetryService
from concession_kernel.services.tenant_lock import TenantLockRegistry
from concession_modules.catalog.models import ComboComponent, ComboOffer, Product
from concession_modules.catalog.service import CatalogService
from concession_modules.dispatch.service import (
    ChannelDispatcher,
    NotificationSink,
    PrintConsumer,
    PrintQueueRegistry,
)
from concession_modules.inventory.bridge import LedgerStores, build_ledger_stores
from concession_modules.inventory.models import MonthlyLedger
from concession_modules.inventory.service import ledger_span_keys
from concession_modules.ordering.models import Order, OrderFilters, OrderPage, OrderRequest
from concession_modules.ordering.reconciliation import ReconcileReport
from concession_modules.ordering.selector import OrderSelector
from concession_modules.ordering.service import OrderService, StatusChange
from concession_modules.qr_names.models import QRName
from concession_modules.qr_names.service import QRNameService
from concession_modules.tenants.models import Tenant
from concession_modules.tenants.service import TenantService
from concession_services.ledger_maintenance import LedgerMaintenanceWorker, MaintenanceReport, StockReconciler
from concession_services.normalization import (
    coerce_int,
    ledger_patch_from_payload,
    ledger_row_from_payload,
    order_filters_from_query,
    order_request_from_payload,
    phones_match,
)
from concession_services.stats_service import CrossTenantAggregator, RollupResult, TenantStatsService

logger = get_logger("services.facade")

T = TypeVar("T")

# Times a ledger lock span is re-sized before the tenant is taken exclusively.
LEDGER_SPAN_ATTEMPTS = 3


class _LedgerSpanGrew(Exception):
    """A later ledger month appeared between sizing a lock span and holding it."""


@dataclass
class _Scope:
    """Module services wired over one session."""

    session: Session
    tenants: TenantService
    catalog: CatalogService
    stores: LedgerStores
    orders: OrderService
    qr_names: QRNameService


def _family(family: LedgerFamily | str) -> LedgerFamily:
    return family if isinstance(family, LedgerFamily) else LedgerFamily(str(family).strip().lower())


class ConcessionFacade:
    """
    Entry point for every external operation.

    Contract:
        Arguments are either typed requests or loosely typed payloads
        (mappings with camelCase keys as POS clients send them), which are normalized
        first.  Return values are frozen DTOs.

    Guarantees:
        - A call that raises has committed nothing.
        - A call that returns has committed and dispatched.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        settings: ConcessionSettings | None = None,
        dispatcher: ChannelDispatcher | None = None,
        locks: TenantLockRegistry | None = None,
        retry: RetryService | None = None,
        sink: NotificationSink | None = None,
    ):
        self.settings = (settings or ConcessionSettings()).validate()
        self.clock = clock or SystemClock()
        self._session_factory = session_factory
        self.locks = locks or TenantLockRegistry(self.settings.locks.tenant_lock_timeout_seconds)
        self._retry = retry or RetryService()
        self._write_policy = self.settings.retry.write_policy()
        self._read_policy = self.settings.retry.read_policy()

        dispatch = self.settings.dispatch
        self.dispatcher = dispatcher or ChannelDispatcher(
            queues=PrintQueueRegistry(
                capacity=dispatch.queue_capacity,
                dedup_window=timedelta(seconds=dispatch.dedup_window_seconds),
                clock=self.clock,
            ),
            sink=sink,
            workers=dispatch.notification_workers,
            notify_events=dispatch.notify_events,
            print_events=dispatch.print_events,
            clock=self.clock,
        )
        self.aggregator = CrossTenantAggregator(
            session_factory,
            policy=self.settings.retry.aggregation_policy(),
            retry=self._retry,
            clock=self.clock,
        )
        maintenance = self.settings.maintenance
        self.maintenance = LedgerMaintenanceWorker(
            session_factory,
            self.locks,
            clock=self.clock,
            retry=self._retry,
            workers=maintenance.workers,
            max_pending=maintenance.max_pending,
            max_attempts=maintenance.max_attempts,
            carry_forward_note=self.settings.ledger.carry_forward_note,
        )
        self.reconciler = StockReconciler(
            session_factory,
            self.locks,
            clock=self.clock,
            retry=self._retry,
            policy=self._write_policy,
            carry_forward_note=self.settings.ledger.carry_forward_note,
        )

    @classmethod
    def from_settings(
        cls,
        settings: ConcessionSettings | None = None,
        clock: Clock | None = None,
        sink: NotificationSink | None = None,
    ) -> ConcessionFacade:
        """Initialize the shared engine from settings and build a facade on it."""
        settings = settings or get_active_settings()
        db = settings.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            statement_timeout_seconds=db.statement_timeout_seconds,
        )
        return cls(get_session_factory(), clock=clock, settings=settings, sink=sink)

    def close(self) -> None:
        self.maintenance.shutdown(wait=True)
        self.dispatcher.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Unit-of-work plumbing
    # ------------------------------------------------------------------

    def _scope(self, session: Session, actor_id: UUID = SYSTEM_ACTOR_ID) -> _Scope:
        orders = self.settings.orders
        tenants = TenantService(session, self.clock)
        catalog = CatalogService(session, self.clock)
        stores = build_ledger_stores(session, self.clock, self.settings.ledger.carry_forward_note, actor_id)
        return _Scope(
            session=session,
            tenants=tenants,
            catalog=catalog,
            stores=stores,
            orders=OrderService(
                session,
                stores.cafe,
                self.clock,
                catalog=catalog,
                tenants=tenants,
                number_width=orders.order_number_width,
                default_prefix=orders.default_prefix,
                currency=orders.currency,
            ),
            qr_names=QRNameService(session, self.clock),
        )

    def _unit(self, work: Callable[[_Scope], T], actor_id: UUID) -> T:
        with session_scope(self._session_factory) as session:
            return work(self._scope(session, actor_id))

    def _write(
        self,
        operation: str,
        tenant_id: UUID,
        work: Callable[[_Scope], T],
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> T:
        """Run ``work`` as a critical write holding the tenant exclusively."""
        def attempt() -> T:
            with self.locks.tenant(tenant_id, operation):
                return self._unit(work, actor_id)

        with LogContext.bind(tenant_id=str(tenant_id), actor_id=str(actor_id)):
            return self._retry.run(operation, attempt, self._write_policy)

    def _ledger_span(
        self,
        scope: _Scope,
        tenant_id: UUID,
        family: LedgerFamily,
        product_id: UUID,
        first: tuple[int, int],
        last: tuple[int, int],
    ) -> list[tuple]:
        # Cafe inward is mirrored onto the theater ledger of the same day.
        families = (family, LedgerFamily.THEATER) if family is LedgerFamily.CAFE else (family,)
        keys: list[tuple] = []
        for fam in families:
            newest = scope.stores.for_family(fam).latest_period(tenant_id, product_id)
            keys += ledger_span_keys(fam, product_id, first, max(last, newest or last))
        return keys

    def _under_ledger_locks(
        self,
        operation: str,
        tenant_id: UUID,
        family: LedgerFamily,
        product_id: UUID,
        first: tuple[int, int],
        work: Callable[[_Scope], T],
        actor_id: UUID = SYSTEM_ACTOR_ID,
        last: tuple[int, int] | None = None,
    ) -> T:
        """
        One attempt of a ledger read or write.

        Changing a month recomputes every later stored month, so the cells
        from ``first`` through the newest stored month are all held.  The
        span is sized before locking and checked again once held; if a
        later month appeared in between it is sized again, and after
        ``LEDGER_SPAN_ATTEMPTS`` misses the tenant is taken exclusively.
        """
        last = last or first

        def span(scope: _Scope) -> list[tuple]:
            return self._ledger_span(scope, tenant_id, family, product_id, first, last)

        for _ in range(LEDGER_SPAN_ATTEMPTS):
            cells = self._unit(span, SYSTEM_ACTOR_ID)

            def checked(scope: _Scope, held: list[tuple] = cells) -> T:
                if span(scope) != held:
                    raise _LedgerSpanGrew()
                return work(scope)

            try:
                with self.locks.cells(tenant_id, cells, operation):
                    return self._unit(checked, actor_id)
            except _LedgerSpanGrew:
                logger.info(
                    "ledger_lock_span_grew",
                    extra={"operation": operation, "product_id": str(product_id), "family": family.value},
                )
        with self.locks.tenant(tenant_id, operation):
            return self._unit(work, actor_id)

    def _ledger_write(
        self,
        operation: str,
        tenant_id: UUID,
        family: LedgerFamily,
        product_id: UUID,
        period: tuple[int, int],
        work: Callable[[_Scope], T],
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> T:
        def attempt() -> T:
            return self._under_ledger_locks(operation, tenant_id, family, product_id, period, work, actor_id)

        with LogContext.bind(tenant_id=str(tenant_id), actor_id=str(actor_id), product_id=str(product_id)):
            return self._retry.run(operation, attempt, self._write_policy)

    def _read(self, operation: str, tenant_id: UUID | None, work: Callable[[_Scope], T]) -> T:
        def attempt() -> T:
            return self._unit(work, SYSTEM_ACTOR_ID)

        with LogContext.bind(tenant_id=str(tenant_id) if tenant_id else None):
            return self._retry.run(operation, attempt, self._read_policy)

    def _dispatch(self, order: Order, tenant: Tenant, event_kind: str) -> None:
        self.dispatcher.dispatch(order, tenant, event_kind)

    # ------------------------------------------------------------------
    # Tenants and catalog
    # ------------------------------------------------------------------

    def create_tenant(self, name: str, actor_id: UUID = SYSTEM_ACTOR_ID, **details: Any) -> Tenant:
        def work(scope: _Scope) -> Tenant:
            return scope.tenants.create(name, actor_id=actor_id, **details)

        with LogContext.bind(actor_id=str(actor_id)):
            return self._retry.run("create_tenant", lambda: self._unit(work, actor_id),
                                   self._write_policy)

    def list_tenants(self) -> list[Tenant]:
        return self._read("list_tenants", None, lambda scope: scope.tenants.list_active())

    def create_product(
        self, tenant_id: UUID, name: str, base_price, actor_id: UUID = SYSTEM_ACTOR_ID, **fields: Any,
    ) -> Product:
        return self._write(
            "create_product",
            tenant_id,
            lambda scope: scope.catalog.create_product(tenant_id, name, base_price, actor_id, **fields),
            actor_id,
        )

    def create_combo(
        self,
        tenant_id: UUID,
        name: str,
        price,
        components: Iterable[ComboComponent],
        actor_id: UUID = SYSTEM_ACTOR_ID,
        **fields: Any,
    ) -> ComboOffer:
        parts = list(components)
        return self._write(
            "create_combo",
            tenant_id,
            lambda scope: scope.catalog.create_combo(tenant_id, name, price, parts, actor_id, **fields),
            actor_id,
        )

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def list_orders(self, tenant_id: UUID, filters: OrderFilters | Mapping[str, Any] | None = None) -> OrderPage:
        if isinstance(filters, Mapping):
            filters = order_filters_from_query(filters)
        return self._read(
            "list_orders", tenant_id, lambda scope: OrderSelector(scope.session).list_orders(tenant_id, filters),
        )

    def get_order(self, tenant_id: UUID, order_ref: UUID | str) -> Order:
        return self._read("get_order", tenant_id, lambda scope: scope.orders.get_order(tenant_id, order_ref))

    def create_order(
        self,
        tenant_id: UUID,
        request: OrderRequest | Mapping[str, Any],
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> Order:
        if isinstance(request, Mapping):
            request = order_request_from_payload(request)

        def work(scope: _Scope) -> tuple[Order, Tenant]:
            order = scope.orders.create_order(tenant_id, request, actor_id)
            return order, scope.tenants.get(tenant_id)

        order, tenant = self._write("create_order", tenant_id, work, actor_id)
        if is_pos_route(order.source):
            self._dispatch(order, tenant, "created")
        return order

    def _status_write(
        self, operation: str, tenant_id: UUID, work: Callable[[_Scope], StatusChange], actor_id: UUID, event: str | None,
    ) -> Order:
        def run(scope: _Scope) -> tuple[StatusChange, Tenant]:
            return work(scope), scope.tenants.get(tenant_id)

        change, tenant = self._write(operation, tenant_id, run, actor_id)
        if change.changed:
            self._dispatch(change.order, tenant, event or change.order.status.value)
        return change.order

    def update_order_status(
        self,
        tenant_id: UUID,
        order_ref: UUID | str,
        new_status: OrderStatus | str,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> Order:
        """Move an order; ``"paid"`` marks the payment and confirms a pending order."""
        requested = str(getattr(new_status, "value", new_status)).strip().lower()
        event = "paid" if requested == "paid" else None
        return self._status_write(
            "update_order_status",
            tenant_id,
            lambda scope: scope.orders.update_status(tenant_id, order_ref, new_status, actor_id),
            actor_id,
            event,
        )

    def update_payment_status(
        self,
        tenant_id: UUID,
        order_ref: UUID | str,
        payment_status: str,
        transaction_id: str | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> Order:
        return self._status_write(
            "update_payment_status",
            tenant_id,
            lambda scope: scope.orders.update_payment(tenant_id, order_ref, payment_status, transaction_id, actor_id),
            actor_id,
            "paid",
        )

    def cancel_order_item(
        self,
        tenant_id: UUID,
        order_ref: UUID | str,
        item_id: UUID | str,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> Order:
        item_uuid = item_id if isinstance(item_id, UUID) else UUID(str(item_id))

        def work(scope: _Scope) -> tuple[Order, Tenant]:
            return scope.orders.cancel_item(tenant_id, order_ref, item_uuid, actor_id), scope.tenants.get(tenant_id)

        order, tenant = self._write("cancel_order_item", tenant_id, work, actor_id)
        if order.status is OrderStatus.CANCELLED:
            self._dispatch(order, tenant, "cancelled")
        return order

    def customer_cancel_order(self, tenant_id: UUID, order_ref: UUID | str, phone: str) -> Order:
        """
        Self-service cancel.  The phone must match the order's phone on its
        last ten digits.
        """
        def work(scope: _Scope) -> StatusChange:
            model = scope.orders.get_model(tenant_id, order_ref)
            if model.status == OrderStatus.COMPLETED.value:
                raise OrderCompletedError(model.order_number)
            if model.status == OrderStatus.CANCELLED.value:
                raise OrderAlreadyCancelledError(model.order_number)
            if not phones_match(model.customer_phone, phone):
                logger.warning(
                    "customer_cancel_phone_mismatch",
                    extra={"tenant_id": str(tenant_id), "order_number": model.order_number},
                )
                raise PhoneMismatchError(model.order_number)
            return scope.orders.update_status(tenant_id, model.id, OrderStatus.CANCELLED)

        return self._status_write("customer_cancel_order", tenant_id, work, SYSTEM_ACTOR_ID, "cancelled")

    # ------------------------------------------------------------------
    # Ledgers
    # ------------------------------------------------------------------

    def get_ledger(
        self, tenant_id: UUID, product_id: UUID, year: int, month: int, family: LedgerFamily | str = LedgerFamily.CAFE,
    ) -> MonthlyLedger:
        fam = _family(family)

        def attempt() -> MonthlyLedger:
            # A read may repair a drifted ledger and its successors, so it locks like a write.
            return self._under_ledger_locks(
                "get_ledger", tenant_id, fam, product_id, (year, month),
                lambda scope: scope.stores.for_family(fam).read(tenant_id, product_id, year, month),
            )

        with LogContext.bind(tenant_id=str(tenant_id), product_id=str(product_id)):
            return self._retry.run("get_ledger", attempt, self._read_policy)

    def list_ledgers(
        self, tenant_id: UUID, product_id: UUID, year: int, family: LedgerFamily | str = LedgerFamily.CAFE,
    ) -> list[MonthlyLedger]:
        fam = _family(family)

        def attempt() -> list[MonthlyLedger]:
            return self._under_ledger_locks(
                "list_ledgers", tenant_id, fam, product_id, (year, 1),
                lambda scope: scope.stores.for_family(fam).list_year(tenant_id, product_id, year),
                last=(year, 12),
            )

        with LogContext.bind(tenant_id=str(tenant_id), product_id=str(product_id)):
            return self._retry.run("list_ledgers", attempt, self._read_policy)

    def append_ledger_entry(
        self,
        tenant_id: UUID,
        product_id: UUID,
        entry: LedgerRow | Mapping[str, Any],
        family: LedgerFamily | str = LedgerFamily.CAFE,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> LedgerRow:
        fam = _family(family)
        row = entry if isinstance(entry, LedgerRow) else ledger_row_from_payload(entry)

        def work(scope: _Scope) -> LedgerRow:
            store = scope.stores.for_family(fam)
            ledger = store.get_or_create(tenant_id, product_id, row.day.year, row.day.month)
            return store.append(ledger, row)

        return self._ledger_write(
            "append_ledger_entry", tenant_id, fam, product_id, (row.day.year, row.day.month), work, actor_id,
        )

    def update_ledger_entry(
        self,
        tenant_id: UUID,
        product_id: UUID,
        year: int,
        month: int,
        entry_id: UUID,
        patch: Mapping[str, Any],
        family: LedgerFamily | str = LedgerFamily.CAFE,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        normalize: bool = True,
    ) -> LedgerRow:
        """
        Patch one row.  With ``normalize`` the patch uses the camelCase
        payload keys; otherwise it is passed to the store as is.
        """
        fam = _family(family)
        changes = ledger_patch_from_payload(patch) if normalize else dict(patch)

        def work(scope: _Scope) -> LedgerRow:
            store = scope.stores.for_family(fam)
            ledger = store.find(tenant_id, product_id, year, month)
            if ledger is None:
                raise LedgerEntryNotFoundError(f"{product_id}/{year}-{month:02d}", str(entry_id))
            return store.update(ledger, entry_id, changes)

        return self._ledger_write("update_ledger_entry", tenant_id, fam, product_id, (year, month), work, actor_id)

    def delete_ledger_entry(
        self,
        tenant_id: UUID,
        product_id: UUID,
        year: int,
        month: int,
        entry_id: UUID,
        family: LedgerFamily | str = LedgerFamily.CAFE,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> None:
        fam = _family(family)

        def work(scope: _Scope) -> None:
            store = scope.stores.for_family(fam)
            ledger = store.find(tenant_id, product_id, year, month)
            if ledger is None:
                raise LedgerEntryNotFoundError(f"{product_id}/{year}-{month:02d}", str(entry_id))
            store.delete(ledger, entry_id)

        self._ledger_write("delete_ledger_entry", tenant_id, fam, product_id, (year, month), work, actor_id)

    def get_max_orderable(
        self,
        tenant_id: UUID,
        product_id: UUID,
        no_qty: int | str | None = None,
        size_label: str | None = None,
    ) -> int | None:
        """
        Largest quantity of ``product_id`` the cafe can cover today.

        None means unlimited: the product is untracked, has no stock history
        or consumes nothing per item.
        """
        count = coerce_int(no_qty, "noQty")

        def work(scope: _Scope) -> int | None:
            product = scope.catalog.get_product(tenant_id, product_id)
            cafe = scope.stores.cafe
            if not product.track_stock or not cafe.has_history(tenant_id, product_id):
                return None
            available = cafe.current_balance(tenant_id, product_id, self.clock.today())
            unit = cafe.current_unit(tenant_id, product_id)
            return max_orderable(available, product.descriptor(no_qty=count, size_label=size_label), unit)

        return self._read("get_max_orderable", tenant_id, work)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def tenant_stats(self, tenant_id: UUID) -> TenantStats:
        return self._read(
            "tenant_stats", tenant_id, lambda scope: TenantStatsService(scope.session, self.clock).compute(tenant_id),
        )

    def cross_tenant_stats(self, start: datetime | None = None, end: datetime | None = None) -> RollupResult:
        return self.aggregator.rollup(start, end)

    # ------------------------------------------------------------------
    # Print fan-out
    # ------------------------------------------------------------------

    def connect_print_consumer(self, tenant_id: UUID, consumer: PrintConsumer) -> int:
        """Attach a print worker; the buffered backlog is delivered to it first."""
        return self.dispatcher.connect(tenant_id, consumer)

    def disconnect_print_consumer(self, tenant_id: UUID, consumer: PrintConsumer) -> None:
        self.dispatcher.disconnect(tenant_id, consumer)

    # ------------------------------------------------------------------
    # QR names
    # ------------------------------------------------------------------

    def create_qr_name(
        self,
        tenant_id: UUID,
        qr_name: str,
        seat_class: str,
        description: str = "",
        sort_order: int = 0,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> QRName:
        return self._write(
            "create_qr_name",
            tenant_id,
            lambda scope: scope.qr_names.create(tenant_id, qr_name, seat_class, description, sort_order, actor_id),
            actor_id,
        )

    def list_qr_names(self, tenant_id: UUID, active_only: bool | str = False) -> list[QRName]:
        active = active_only if isinstance(active_only, bool) else str(active_only).strip().lower() == "true"
        return self._read("list_qr_names", tenant_id, lambda scope: scope.qr_names.list(tenant_id, active))

    def rename_qr_name(
        self, tenant_id: UUID, qr_name_id: UUID, patch: Mapping[str, Any], actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> QRName:
        return self._write(
            "rename_qr_name",
            tenant_id,
            lambda scope: scope.qr_names.rename(tenant_id, qr_name_id, patch, actor_id),
            actor_id,
        )

    def deactivate_qr_name(self, tenant_id: UUID, qr_name_id: UUID, actor_id: UUID = SYSTEM_ACTOR_ID) -> QRName:
        return self._write(
            "deactivate_qr_name",
            tenant_id,
            lambda scope: scope.qr_names.deactivate(tenant_id, qr_name_id, actor_id),
            actor_id,
        )

    def delete_qr_name(self, tenant_id: UUID, qr_name_id: UUID, actor_id: UUID = SYSTEM_ACTOR_ID) -> None:
        self._write(
            "delete_qr_name", tenant_id, lambda scope: scope.qr_names.delete(tenant_id, qr_name_id), actor_id,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reconcile_stock(self, tenant_id: UUID) -> ReconcileReport:
        return self.reconciler.reconcile(tenant_id)

    def run_ledger_maintenance(self, tenant_id: UUID) -> MaintenanceReport:
        return self.maintenance.run_tenant(tenant_id)
