# Overview: Outbound order e-mail channel; an in-process queue drained by a worker thread.

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from flask import current_app

from ..money import format_cents
from storefront.time_utils import utcnow

logger = logging.getLogger(__name__)


class NotificationType:
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUND_APPROVED = "REFUND_APPROVED"
    REFUND_DENIED = "REFUND_DENIED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    REFUND_FAILED = "REFUND_FAILED"


SUBJECTS = {
    NotificationType.ORDER_PLACED: "Order {order_number} received",
    NotificationType.ORDER_SHIPPED: "Order {order_number} has shipped",
    NotificationType.REFUND_REQUESTED: "Refund requested for order {order_number}",
    NotificationType.REFUND_APPROVED: "Refund approved for order {order_number}",
    NotificationType.REFUND_DENIED: "Refund request for order {order_number} was declined",
    NotificationType.REFUND_PROCESSED: "Refund issued for order {order_number}",
    NotificationType.REFUND_FAILED: "Refund for order {order_number} could not be completed",
}


@dataclass(frozen=True)
class OrderEmailNotification:
    type: str
    tenant_id: int
    email: str
    order_number: str
    amount_cents: int
    currency: str
    created_at: datetime = field(default_factory=utcnow)
    tracking_number: str | None = None
    refund_amount_cents: int | None = None
    note: str | None = None

    @classmethod
    def for_order(cls, notification_type: str, order, **extra) -> "OrderEmailNotification":
        return cls(
            type=notification_type,
            tenant_id=order.tenant_id,
            email=order.email,
            order_number=order.order_number,
            amount_cents=order.grand_total_cents,
            currency=order.currency,
            **extra,
        )

    @property
    def subject(self) -> str:
        template = SUBJECTS.get(self.type, "Update on order {order_number}")
        return template.format(order_number=self.order_number)


class NotificationSender(Protocol):
    def send(self, notification: OrderEmailNotification) -> None:
        ...


class LoggingNotificationSender:
    """Writes each e-mail to the log instead of an SMTP relay."""

    def send(self, notification: OrderEmailNotification) -> None:
        amount = format_cents(notification.refund_amount_cents or notification.amount_cents)
        logger.info(
            "E-mail to %s [tenant %s]: %s (%s %s)%s",
            notification.email,
            notification.tenant_id,
            notification.subject,
            amount,
            notification.currency,
            f" tracking {notification.tracking_number}" if notification.tracking_number else "",
        )


class NotificationQueue:
    """
    Unbounded (or maxsize-bounded) FIFO of order e-mails.

    enqueue() never raises: a full queue drops the message with a warning so a
    notification can never fail the checkout or refund that produced it.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)

    def enqueue(self, notification: OrderEmailNotification) -> bool:
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            logger.warning("Notification queue full; dropping %s for %s", notification.type, notification.order_number)
            return False
        return True

    def get(self, timeout: float | None = None) -> OrderEmailNotification | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def task_done(self) -> None:
        self._queue.task_done()

    def drain(self) -> list[OrderEmailNotification]:
        """Remove and return everything queued (tests and shutdown)."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def __len__(self) -> int:
        return self._queue.qsize()


class NotificationWorker(threading.Thread):
    """Daemon thread delivering queued notifications through a sender."""

    def __init__(self, notification_queue: NotificationQueue, sender: NotificationSender, poll_seconds: float = 1.0):
        super().__init__(name="notification-worker", daemon=True)
        self.notification_queue = notification_queue
        self.sender = sender
        self.poll_seconds = poll_seconds
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        while not self._stop_event.is_set():
            notification = self.notification_queue.get(timeout=self.poll_seconds)
            if notification is None:
                continue
            try:
                self.sender.send(notification)
            except Exception:
                logger.exception("Failed to send %s notification for %s", notification.type, notification.order_number)
            finally:
                self.notification_queue.task_done()


def get_queue() -> NotificationQueue:
    return current_app.extensions["notification_queue"]


def notify(notification_type: str, order, **extra) -> bool:
    """Queue an order e-mail on the app's channel. Never raises."""
    try:
        notification = OrderEmailNotification.for_order(notification_type, order, **extra)
        return get_queue().enqueue(notification)
    except Exception:
        logger.exception("Could not queue %s notification", notification_type)
        return False
