"""
Settings schema (``concession_config.schema``).

Frozen dataclasses for the runtime settings.  The loader builds these from
YAML; ``ConcessionSettings.validate`` enforces the floors the retry and
dispatch layers rely on.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from concession_kernel.services.retry_service import (
    MIN_CRITICAL_WRITE_ATTEMPTS,
    MIN_READ_ATTEMPTS,
    RetryPolicy,
)

MIN_DEADLINE_SECONDS = 20
MAX_DEADLINE_SECONDS = 60


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///concession.db"
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    statement_timeout_seconds: int = 30
    echo: bool = False


@dataclass(frozen=True)
class RetrySettings:
    critical_write_attempts: int = MIN_CRITICAL_WRITE_ATTEMPTS
    read_attempts: int = MIN_READ_ATTEMPTS
    base_delay_seconds: float = 0.1
    max_delay_seconds: float = 3.0
    deadline_seconds: float = 30.0
    aggregation_deadline_seconds: float = 60.0

    def write_policy(self) -> RetryPolicy:
        return RetryPolicy.critical_write(
            self.critical_write_attempts,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            deadline_seconds=self.deadline_seconds,
        )

    def read_policy(self) -> RetryPolicy:
        return RetryPolicy.read(
            self.read_attempts,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            deadline_seconds=self.deadline_seconds,
        )

    def aggregation_policy(self) -> RetryPolicy:
        return RetryPolicy.read(
            self.read_attempts,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            deadline_seconds=self.aggregation_deadline_seconds,
        )


@dataclass(frozen=True)
class LockSettings:
    tenant_lock_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class DispatchSettings:
    queue_capacity: int = 500
    dedup_window_seconds: float = 60.0
    notification_workers: int = 4
    notify_events: tuple[str, ...] = ("created", "preparing", "ready", "completed", "cancelled")
    print_events: tuple[str, ...] = ("created", "paid")


@dataclass(frozen=True)
class OrderSettings:
    order_number_width: int = 4
    default_prefix: str = "OR"
    currency: str = "INR"
    default_customer_name: str = "Walk-in Customer"


@dataclass(frozen=True)
class LedgerSettings:
    carry_forward_note: str = "Auto-generated: Balance carried forward"
    quantity_places: int = 3


@dataclass(frozen=True)
class MaintenanceSettings:
    workers: int = 2
    max_pending: int = 64
    max_attempts: int = 3


@dataclass(frozen=True)
class ConcessionSettings:
    """Everything the facade and the background workers are configured with."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    locks: LockSettings = field(default_factory=LockSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    orders: OrderSettings = field(default_factory=OrderSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    maintenance: MaintenanceSettings = field(default_factory=MaintenanceSettings)

    def validate(self) -> ConcessionSettings:
        """
        Reject settings the runtime cannot honour.

        Raises:
            ValueError: naming the first offending key.
        """
        retry = self.retry
        if retry.critical_write_attempts < MIN_CRITICAL_WRITE_ATTEMPTS:
            raise ValueError(
                f"retry.critical_write_attempts must be >= {MIN_CRITICAL_WRITE_ATTEMPTS}, "
                f"got {retry.critical_write_attempts}"
            )
        if retry.read_attempts < MIN_READ_ATTEMPTS:
            raise ValueError(f"retry.read_attempts must be >= {MIN_READ_ATTEMPTS}, got {retry.read_attempts}")
        if not MIN_DEADLINE_SECONDS <= retry.deadline_seconds <= MAX_DEADLINE_SECONDS:
            raise ValueError(
                f"retry.deadline_seconds must be within [{MIN_DEADLINE_SECONDS}, {MAX_DEADLINE_SECONDS}], "
                f"got {retry.deadline_seconds}"
            )
        if retry.aggregation_deadline_seconds <= 0:
            raise ValueError("retry.aggregation_deadline_seconds must be positive")
        if retry.base_delay_seconds < 0 or retry.max_delay_seconds < retry.base_delay_seconds:
            raise ValueError("retry delays must satisfy 0 <= base_delay_seconds <= max_delay_seconds")
        if self.locks.tenant_lock_timeout_seconds <= 0:
            raise ValueError("locks.tenant_lock_timeout_seconds must be positive")
        if self.dispatch.queue_capacity < 1:
            raise ValueError("dispatch.queue_capacity must be positive")
        if self.dispatch.notification_workers < 1:
            raise ValueError("dispatch.notification_workers must be positive")
        if self.dispatch.dedup_window_seconds < 0:
            raise ValueError("dispatch.dedup_window_seconds must not be negative")
        if self.orders.order_number_width < 1:
            raise ValueError("orders.order_number_width must be positive")
        if len(self.orders.default_prefix) != 2:
            raise ValueError("orders.default_prefix must be two characters")
        if self.maintenance.workers < 1 or self.maintenance.max_pending < 1 or self.maintenance.max_attempts < 1:
            raise ValueError("maintenance workers, max_pending and max_attempts must be positive")
        return self
