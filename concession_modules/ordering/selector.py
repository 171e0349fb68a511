"""
Module: concession_modules.ordering.selector
Responsibility: Read-only query access to orders.  Converts ORM models to
    frozen DTOs and produces list pages, list summaries and the order facts
    the statistics engine consumes.
Architecture position: Modules > Ordering > Selectors.  May import from
    ordering/orm.py, ordering/models.py and kernel selectors.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - Tenant scoping: every query filters on ``tenant_id``; an id that
      belongs to another tenant is reported as absent.
    - Online orders are listed only once their payment is paid or completed.
    - Lists are newest first.

Failure modes:
    - ``get`` raises OrderNotFoundError; ``find`` returns None.
"""

from __future__ import annotations

from math import ceil
from uuid import UUID

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session, selectinload

from concession_engines.channels import (
    OrderSource,
    OrderStatus,
    PAID_STATUSES,
    PaymentFamily,
    payment_family,
    payment_methods_for,
)
from concession_engines.stats import OrderFact
from concession_kernel.db.types import ZERO, round_money
from concession_kernel.exceptions import OrderNotFoundError
from concession_kernel.selectors.base import BaseSelector
from concession_modules.ordering.models import (
    Order,
    OrderFilters,
    OrderPage,
    OrderSummary,
    Pagination,
)
from concession_modules.ordering.orm import OrderModel

MAX_PAGE_SIZE = 100


def lookup_order(session: Session, tenant_id: UUID, ref: UUID | str) -> OrderModel | None:
    """Order by id, falling back to a case-insensitive order-number match."""
    try:
        order_id = ref if isinstance(ref, UUID) else UUID(str(ref))
    except ValueError:
        order_id = None
    if order_id is not None:
        model = session.get(OrderModel, order_id)
        if model is not None and model.tenant_id == tenant_id:
            return model
    return session.execute(
        select(OrderModel).where(
            OrderModel.tenant_id == tenant_id,
            func.lower(OrderModel.order_number) == str(ref).strip().lower(),
        )
    ).scalar_one_or_none()


class OrderSelector(BaseSelector[OrderModel]):
    """
    Selector for order queries.

    Guarantees:
        - Items are loaded with selectinload to avoid N+1 queries.
        - ``list_orders`` summary covers every matching order, not just the
          requested page.
    """

    def find(self, tenant_id: UUID, ref: UUID | str) -> Order | None:
        model = lookup_order(self.session, tenant_id, ref)
        return model.to_dto() if model is not None else None

    def get(self, tenant_id: UUID, ref: UUID | str) -> Order:
        order = self.find(tenant_id, ref)
        if order is None:
            raise OrderNotFoundError(str(tenant_id), str(ref))
        return order

    def _filtered(self, tenant_id: UUID, filters: OrderFilters) -> Select:
        paid = [s.value for s in PAID_STATUSES]
        stmt = select(OrderModel).where(
            OrderModel.tenant_id == tenant_id,
            or_(OrderModel.source != OrderSource.ONLINE.value, OrderModel.payment_status.in_(paid)),
        )
        if filters.source is not None:
            stmt = stmt.where(OrderModel.source == filters.source.value)
        if filters.staff_id:
            stmt = stmt.where(OrderModel.staff_id == filters.staff_id)
        if filters.status is not None:
            stmt = stmt.where(OrderModel.status == filters.status.value)
        if filters.start is not None:
            stmt = stmt.where(OrderModel.ordered_at >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(OrderModel.ordered_at <= filters.end)
        if filters.payment_mode and filters.payment_mode.strip().lower() != "all":
            stmt = stmt.where(func.lower(OrderModel.payment_method).in_(payment_methods_for(filters.payment_mode)))
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(OrderModel.order_number).like(pattern),
                    func.lower(OrderModel.customer_name).like(pattern),
                    OrderModel.customer_phone.like(pattern),
                )
            )
        return stmt

    def summarize(self, tenant_id: UUID, filters: OrderFilters) -> OrderSummary:
        subquery = self._filtered(tenant_id, filters).subquery()
        rows = self.session.execute(
            select(subquery.c.status, subquery.c.total, subquery.c.payment_method)
        ).all()
        confirmed = completed = 0
        cancelled_amount = revenue = ZERO
        by_family = {PaymentFamily.CASH: ZERO, PaymentFamily.ONLINE: ZERO, PaymentFamily.CARD: ZERO}
        for status, total, method in rows:
            if status == OrderStatus.CONFIRMED.value:
                confirmed += 1
            elif status == OrderStatus.COMPLETED.value:
                completed += 1
            if status == OrderStatus.CANCELLED.value:
                cancelled_amount += total
                continue
            revenue += total
            # Unrecognized methods are booked with the online family.
            family = payment_family(method)
            by_family[family if family in by_family else PaymentFamily.ONLINE] += total
        return OrderSummary(
            total_orders=len(rows),
            confirmed_orders=confirmed,
            completed_orders=completed,
            cancelled_order_amount=round_money(cancelled_amount),
            total_revenue=round_money(revenue),
            cash_revenue=round_money(by_family[PaymentFamily.CASH]),
            upi_revenue=round_money(by_family[PaymentFamily.ONLINE]),
            card_revenue=round_money(by_family[PaymentFamily.CARD]),
        )

    def list_orders(self, tenant_id: UUID, filters: OrderFilters | None = None) -> OrderPage:
        """
        One page of orders plus a summary of everything the filters match.

        ``page`` is 1-based; ``limit`` is clamped to [1, 100].
        """
        filters = filters or OrderFilters()
        limit = min(max(filters.limit, 1), MAX_PAGE_SIZE)
        page = max(filters.page, 1)
        summary = self.summarize(tenant_id, filters)
        models = self.session.execute(
            self._filtered(tenant_id, filters)
            .options(selectinload(OrderModel.items))
            .order_by(OrderModel.ordered_at.desc(), OrderModel.order_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        total_pages = ceil(summary.total_orders / limit) if summary.total_orders else 0
        return OrderPage(
            orders=tuple(m.to_dto() for m in models),
            summary=summary,
            pagination=Pagination(
                current=page,
                limit=limit,
                total=summary.total_orders,
                total_pages=total_pages,
                has_next=page < total_pages,
                has_prev=page > 1,
            ),
        )

    def order_count(self, tenant_id: UUID) -> int:
        return self.session.execute(
            select(func.count()).select_from(OrderModel).where(OrderModel.tenant_id == tenant_id)
        ).scalar_one()

    def order_facts(self, tenant_id: UUID) -> list[OrderFact]:
        """Every order of the tenant reduced to what the statistics engine needs."""
        rows = self.session.execute(
            select(
                OrderModel.source,
                OrderModel.status,
                OrderModel.total,
                OrderModel.subtotal,
                OrderModel.ordered_at,
                OrderModel.payment_status,
            ).where(OrderModel.tenant_id == tenant_id)
        ).all()
        return [
            OrderFact(
                source=source,
                status=status,
                amount=total if total else (subtotal or ZERO),
                created_at=ordered_at,
                payment_status=payment_status,
            )
            for source, status, total, subtotal, ordered_at, payment_status in rows
        ]
