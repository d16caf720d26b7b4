from __future__ import annotations

import smtplib
import threading
import time
from collections import deque
from dataclasses import dataclass
from email.message import EmailMessage
from queue import Queue

import requests
import structlog

from .config import ConfigError, NotifyConfig
from .domain import Order

logger = structlog.get_logger(__name__)

FAILED_KEEP = 100


class DependencyFailure(Exception):
    pass


@dataclass(frozen=True)
class Notification:
    subject: str
    body: str
    order: dict


def format_amount(value) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return f"DZA{value}"


def new_order_notification(order: Order) -> Notification:
    items = ", ".join(f"{i.name} - {format_amount(i.price)}" for i in order.items)
    body = (
        "New Order:\n"
        f"Name: {order.client}\n"
        f"Phone: {order.client_phone}\n"
        f"Address: {order.address}\n"
        f"Items: {items}\n"
        f"Total: {format_amount(order.total)}\n"
        f"Delivery: {format_amount(order.delivery_price)}"
    )
    return Notification(subject="New Order Received", body=body, order=order.to_dict())


class NullTransport:
    def send(self, notification: Notification) -> None:
        logger.debug("notify.skipped", subject=notification.subject)


class SmtpTransport:
    def __init__(self, cfg: NotifyConfig) -> None:
        if not (cfg.sender and cfg.recipient):
            raise ConfigError("SMTP transport needs a sender and a recipient (EMAIL_USER, ADMIN_EMAIL)")
        self.cfg = cfg

    def send(self, notification: Notification) -> None:
        msg = EmailMessage()
        msg["From"] = self.cfg.sender
        msg["To"] = self.cfg.recipient
        msg["Subject"] = notification.subject
        msg.set_content(notification.body)

        with smtplib.SMTP(self.cfg.smtp_host, self.cfg.smtp_port, timeout=self.cfg.timeout) as smtp:
            smtp.starttls()
            if self.cfg.smtp_user:
                smtp.login(self.cfg.smtp_user, self.cfg.smtp_password or "")
            smtp.send_message(msg)


class WebhookTransport:
    def __init__(self, cfg: NotifyConfig) -> None:
        if not cfg.webhook_url:
            raise ConfigError("Webhook transport needs webhook_url (NOTIFY_WEBHOOK_URL)")
        self.url = cfg.webhook_url
        self.timeout = cfg.timeout

    def send(self, notification: Notification) -> None:
        response = requests.post(
            self.url,
            json={"subject": notification.subject, "text": notification.body, "order": notification.order},
            timeout=self.timeout,
        )
        response.raise_for_status()


def build_transport(cfg: NotifyConfig):
    if cfg.transport == "smtp":
        return SmtpTransport(cfg)
    if cfg.transport == "webhook":
        return WebhookTransport(cfg)
    return NullTransport()


class NotificationDispatcher:
    """
    Sends notifications with retries.

    In background mode a single daemon worker drains a queue, so a slow or
    failing transport never delays the request that produced the message.
    """

    def __init__(self, transport, *, max_retries: int = 0, retry_backoff: float = 1.0, background: bool = True) -> None:
        self.transport = transport
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.background = background
        self.failed: deque[Notification] = deque(maxlen=FAILED_KEEP)
        self._queue: Queue = Queue()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: NotifyConfig) -> "NotificationDispatcher":
        return cls(
            build_transport(cfg),
            max_retries=cfg.max_retries,
            retry_backoff=cfg.retry_backoff,
            background=cfg.mode == "background",
        )

    def start(self) -> None:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="notification-worker", daemon=True)
            self._worker.start()

    def stop(self) -> None:
        with self._lock:
            worker = self._worker
            self._worker = None
        if worker is None:
            return
        self._queue.put(None)
        worker.join()

    def submit(self, notification: Notification) -> None:
        """Dispatch ``notification``. Raises DependencyFailure only in sync mode."""
        if not self.background:
            self.send_now(notification)
            return
        self.start()
        self._queue.put(notification)

    def join(self) -> None:
        self._queue.join()

    def send_now(self, notification: Notification) -> None:
        attempts = self.max_retries + 1
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                self.transport.send(notification)
                logger.info("notify.sent", subject=notification.subject, attempt=attempt)
                return
            except Exception as e:
                last_exc = e
                if attempt < attempts:
                    sleep_for = self.retry_backoff * (2 ** (attempt - 1))
                    logger.warning("notify.retry", attempt=attempt, of=attempts - 1, sleep=sleep_for, error=str(e))
                    time.sleep(sleep_for)

        self.failed.append(notification)
        logger.error("notify.failed", subject=notification.subject, error=str(last_exc))
        raise DependencyFailure("Failed to send notification") from last_exc

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                self._queue.task_done()
                break
            try:
                self.send_now(item)
            except DependencyFailure:
                # logged; the most recent are kept in self.failed
                pass
            finally:
                self._queue.task_done()
