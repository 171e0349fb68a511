"""
Channel Dispatcher (``concession_modules.dispatch.service``).

Responsibility
--------------
Fans committed order events out to two channels:

- a bounded **print queue** per tenant, drained FIFO by connected print
  workers and buffered while none is connected;
- a **push topic** per tenant (``pos_<tenant_id>``), published
  fire-and-forget on a worker pool.

Invariants
----------
- Print consumers run on a drain thread per queue, so a slow printer never
  holds up the request that enqueued the message.
- At-least-once delivery to print consumers: a message is removed from the
  queue only after a consumer accepted it; a consumer that raises is
  disconnected and the message goes back to the front.
- ``(order_number, event_kind)`` is enqueued at most once per dedup window.
- A full queue drops its oldest message and logs a WARNING.
- Notification failures are logged and never surfaced.

Non-goals
---------
- Wire protocols (SSE, FCM).  Consumers and sinks are injected callables.
- Cross-process queues.  Queues live in the dispatcher's process.
"""

from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Protocol

from concession_engines.channels import NOTIFY_EVENTS
from concession_kernel.domain.clock import Clock, SystemClock
from concession_kernel.logging_config import get_logger
from concession_modules.dispatch.models import (
    PrintMessage,
    build_notification_payload,
    build_print_message,
    notification_topic,
)
from concession_modules.ordering.models import Order
from concession_modules.tenants.models import Tenant

logger = get_logger("modules.dispatch.service")

PrintConsumer = Callable[[PrintMessage], None]

DEFAULT_PRINT_EVENTS = frozenset({"created", "paid"})


class NotificationSink(Protocol):
    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        """Deliver one payload; True when the transport accepted it."""
        ...


class LoggingNotificationSink:
    """Sink that only logs; the default when no push transport is configured."""

    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        logger.info(
            "notification_published",
            extra={"topic": topic, "event": payload.get("event"), "order_number": payload.get("orderNumber")},
        )
        return True


class PrintQueue:
    """
    Bounded FIFO of print messages for one tenant.

    Guarantees:
        - ``enqueue`` only buffers and signals; consumers are called on the
          queue's own drain thread, never on the caller's.
        - Messages are delivered in enqueue order, one at a time.
    """

    def __init__(
        self,
        tenant_id: str,
        capacity: int = 500,
        dedup_window: timedelta = timedelta(seconds=60),
        clock: Clock | None = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.tenant_id = tenant_id
        self.capacity = capacity
        self.dedup_window = dedup_window
        self.clock = clock or SystemClock()
        self._buffer: deque[PrintMessage] = deque()
        self._consumers: list[PrintConsumer] = []
        self._seen: dict[tuple[str, str], datetime] = {}
        self._ready = threading.Condition(threading.RLock())
        self._in_flight = False
        self._closed = False
        self._drainer: threading.Thread | None = None

    def __len__(self) -> int:
        with self._ready:
            return len(self._buffer)

    @property
    def consumer_count(self) -> int:
        with self._ready:
            return len(self._consumers)

    def pending(self) -> list[PrintMessage]:
        with self._ready:
            return list(self._buffer)

    def _is_duplicate(self, message: PrintMessage, now: datetime) -> bool:
        horizon = now - self.dedup_window
        self._seen = {key: seen for key, seen in self._seen.items() if seen >= horizon}
        if message.dedup_key in self._seen:
            return True
        self._seen[message.dedup_key] = now
        return False

    def enqueue(self, message: PrintMessage) -> bool:
        """Buffer ``message`` for the drain thread; False when it was a duplicate."""
        with self._ready:
            if self._is_duplicate(message, self.clock.now()):
                logger.debug(
                    "print_message_deduplicated",
                    extra={"tenant_id": self.tenant_id, "order_number": message.order_number,
                           "event_kind": message.event_kind},
                )
                return False
            if len(self._buffer) >= self.capacity:
                dropped = self._buffer.popleft()
                logger.warning(
                    "print_queue_overflow",
                    extra={
                        "tenant_id": self.tenant_id,
                        "capacity": self.capacity,
                        "dropped_order_number": dropped.order_number,
                        "dropped_event_kind": dropped.event_kind,
                    },
                )
            self._buffer.append(message)
            self._ready.notify_all()
            return True

    def _has_work(self) -> bool:
        return bool(self._buffer and self._consumers)

    def _run(self) -> None:
        while True:
            with self._ready:
                self._ready.wait_for(lambda: self._closed or self._has_work())
                if self._closed:
                    return
                message = self._buffer.popleft()
                consumers = list(self._consumers)
                self._in_flight = True
            delivered = self._deliver(message, consumers)
            with self._ready:
                self._in_flight = False
                if not delivered:
                    # Back to the front; the next consumer to connect gets it first.
                    self._buffer.appendleft(message)
                self._ready.notify_all()

    def _deliver(self, message: PrintMessage, consumers: list[PrintConsumer]) -> bool:
        delivered = False
        for consumer in consumers:
            try:
                consumer(message)
                delivered = True
            except Exception as exc:  # consumer transport failure
                with self._ready:
                    if consumer in self._consumers:
                        self._consumers.remove(consumer)
                    remaining = len(self._consumers)
                logger.warning(
                    "print_consumer_failed",
                    extra={
                        "tenant_id": self.tenant_id,
                        "order_number": message.order_number,
                        "error": str(exc),
                        "remaining_consumers": remaining,
                    },
                )
        return delivered

    def join(self, timeout: float | None = None) -> bool:
        """
        Wait until nothing is deliverable: the buffer is empty or no consumer
        is connected, and no delivery is in flight.  False on timeout.
        """
        with self._ready:
            return self._ready.wait_for(lambda: not self._in_flight and not self._has_work(), timeout)

    def connect(self, consumer: PrintConsumer) -> int:
        """Attach a consumer; the backlog drains to it first.  Returns the backlog size."""
        with self._ready:
            if self._closed:
                raise RuntimeError(f"print queue for tenant {self.tenant_id} is closed")
            backlog = len(self._buffer)
            self._consumers.append(consumer)
            if self._drainer is None:
                self._drainer = threading.Thread(
                    target=self._run, name=f"concession-print-{self.tenant_id[:8]}", daemon=True,
                )
                self._drainer.start()
            self._ready.notify_all()
            logger.info(
                "print_consumer_connected",
                extra={"tenant_id": self.tenant_id, "backlog": backlog, "consumers": len(self._consumers)},
            )
            return backlog

    def disconnect(self, consumer: PrintConsumer) -> None:
        with self._ready:
            if consumer in self._consumers:
                self._consumers.remove(consumer)
                logger.info(
                    "print_consumer_disconnected",
                    extra={"tenant_id": self.tenant_id, "consumers": len(self._consumers)},
                )

    def close(self, timeout: float | None = 5.0) -> None:
        """Stop the drain thread; buffered messages stay in the queue."""
        with self._ready:
            self._closed = True
            self._ready.notify_all()
            drainer = self._drainer
        if drainer is not None and drainer is not threading.current_thread():
            drainer.join(timeout)


class PrintQueueRegistry:
    """One ``PrintQueue`` per tenant, created on first use."""

    def __init__(
        self,
        capacity: int = 500,
        dedup_window: timedelta = timedelta(seconds=60),
        clock: Clock | None = None,
    ):
        self.capacity = capacity
        self.dedup_window = dedup_window
        self.clock = clock or SystemClock()
        self._queues: dict[str, PrintQueue] = {}
        self._guard = threading.Lock()

    def queue(self, tenant_id) -> PrintQueue:
        key = str(tenant_id)
        with self._guard:
            queue = self._queues.get(key)
            if queue is None:
                queue = self._queues[key] = PrintQueue(key, self.capacity, self.dedup_window, self.clock)
            return queue

    def close(self) -> None:
        with self._guard:
            queues = list(self._queues.values())
        for queue in queues:
            queue.close()


@dataclass(frozen=True)
class DispatchResult:
    printed: bool
    notification: Future | None = None


class ChannelDispatcher:
    """
    Print and push fan-out for committed orders.

    Contract:
        Call ``dispatch`` only after the order's transaction committed and
        outside any tenant lock.
    """

    def __init__(
        self,
        queues: PrintQueueRegistry | None = None,
        sink: NotificationSink | None = None,
        workers: int = 4,
        notify_events: Iterable[str] = NOTIFY_EVENTS,
        print_events: Iterable[str] = DEFAULT_PRINT_EVENTS,
        clock: Clock | None = None,
    ):
        self.queues = queues or PrintQueueRegistry(clock=clock)
        self.sink = sink or LoggingNotificationSink()
        self.notify_events = frozenset(notify_events)
        self.print_events = frozenset(print_events)
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="concession-notify")

    def _publish(self, topic: str, payload: dict[str, Any]) -> bool:
        try:
            accepted = self.sink.publish(topic, payload)
        except Exception as exc:  # push transport failure
            logger.error(
                "notification_failed",
                extra={"topic": topic, "event": payload.get("event"), "error": str(exc)},
                exc_info=True,
            )
            return False
        if not accepted:
            logger.warning(
                "notification_rejected",
                extra={"topic": topic, "event": payload.get("event"), "order_number": payload.get("orderNumber")},
            )
        return bool(accepted)

    def dispatch(self, order: Order, tenant: Tenant, event_kind: str = "created") -> DispatchResult:
        printed = False
        if event_kind in self.print_events:
            printed = self.queues.queue(tenant.id).enqueue(build_print_message(order, tenant, event_kind))
        notification = None
        if event_kind in self.notify_events:
            notification = self._executor.submit(
                self._publish, notification_topic(tenant.id), build_notification_payload(order, event_kind)
            )
        logger.debug(
            "order_dispatched",
            extra={"order_number": order.order_number, "event_kind": event_kind, "printed": printed},
        )
        return DispatchResult(printed=printed, notification=notification)

    def connect(self, tenant_id, consumer: PrintConsumer) -> int:
        return self.queues.queue(tenant_id).connect(consumer)

    def disconnect(self, tenant_id, consumer: PrintConsumer) -> None:
        self.queues.queue(tenant_id).disconnect(consumer)

    def flush(self, tenant_id, timeout: float | None = 5.0) -> bool:
        """Wait for the tenant's print queue to hand out everything it can."""
        return self.queues.queue(tenant_id).join(timeout)

    def shutdown(self, wait: bool = True) -> None:
        self.queues.close()
        self._executor.shutdown(wait=wait)
