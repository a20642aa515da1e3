"""Delivery of queued messages: immediate transactional sends and the rate-limited drain."""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

from .errors import DeliveryError
from .models import MessageCategory, MessageStatus, QueuedMessage
from .outbox import OutboundQueue
from .settings_store import SettingsStore
from .templates import wrap_layout
from .transport import DeliveryResult, OutgoingEmail, Transport

logger = logging.getLogger("jewelcart.dispatcher")

# One drain loop per process; extra triggers return and let it pick up new work.
_drain_lock = threading.Lock()


@dataclass
class DrainReport:
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    retrying: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def processed(self) -> int:
        return len(self.sent) + len(self.failed) + len(self.retrying)


class Dispatcher:
    """Drains the outbound queue through a transport and records every outcome."""

    def __init__(
        self,
        queue: OutboundQueue,
        transport: Transport,
        settings: SettingsStore,
        store_url: str = "http://localhost:3000",
        max_attempts: int = 3,
        retry_delay: timedelta = timedelta(minutes=5),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.queue = queue
        self.transport = transport
        self.settings = settings
        self.store_url = store_url
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep

    def _build_email(self, message: QueuedMessage) -> OutgoingEmail:
        settings = self.settings.load()
        content = message.body
        if message.category == MessageCategory.BULK:
            content = content.replace("\n", "<br/>")
        return OutgoingEmail(
            to=message.to,
            subject=message.subject,
            html=wrap_layout(content, message.subject, settings, self.store_url),
            from_name=settings.company_name,
        )

    def _attempt(self, message: QueuedMessage) -> QueuedMessage:
        """Send one claimed message and persist the outcome."""
        logger.info("[Queue] Processing email %s to %s", message.id, message.to)
        try:
            result = self.transport.send(self._build_email(message))
        except DeliveryError as e:
            logger.warning("Transport %s refused %s: %s", self.transport.name, message.id, e)
            result = DeliveryResult.failure(str(e), transient=e.transient)
        except Exception as e:
            logger.exception("Transport %s raised for %s", self.transport.name, message.id)
            result = DeliveryResult.failure(str(e) or type(e).__name__, transient=True)

        if result.success:
            updated = self.queue.mark_sent(message, result.provider_message_id)
            logger.info("[Queue] Successfully sent %s to %s", message.id, message.to)
            return updated

        updated = self.queue.mark_failed(
            message,
            result.error or "unknown error",
            retryable=result.transient,
            max_attempts=self.max_attempts,
            retry_delay=self.retry_delay,
        )
        if updated.status == MessageStatus.FAILED:
            logger.error(
                "[Queue] Giving up on %s to %s after %d attempt(s): %s",
                message.id,
                message.to,
                updated.attempts,
                updated.last_error,
            )
        else:
            logger.warning(
                "[Queue] Failed to send %s to %s (attempt %d), retry at %s",
                message.id,
                message.to,
                updated.attempts,
                updated.scheduled_at,
            )
        return updated

    def deliver_now(self, message_id: str) -> QueuedMessage | None:
        """
        Attempt one transactional message immediately.

        Never raises: failures are recorded on the queue record and logged.
        Returns the updated record, or None if it could not be claimed.
        """
        try:
            message = self.queue.claim(message_id)
            if message is None:
                logger.debug("Message %s not claimable (already taken or not due)", message_id)
                return None
            return self._attempt(message)
        except Exception:
            logger.exception("Immediate delivery of %s failed", message_id)
            return None

    def drain(self, delay_ms: int = 3000) -> DrainReport:
        """
        Deliver every due message one at a time, sleeping ``delay_ms`` between sends.

        Strictly sequential and ordered by schedule then enqueue order. A
        record that fails and is rescheduled is not due again within this pass.
        """
        report = DrainReport()
        if not _drain_lock.acquire(blocking=False):
            logger.info("[Queue] Drain already running, skipping")
            report.skipped = True
            return report

        attempted: set[str] = set()
        try:
            while self.queue.has_due(exclude=attempted):
                if report.processed and delay_ms > 0:
                    self._sleep(delay_ms / 1000.0)
                message = self.queue.claim(exclude=attempted)
                if message is None:
                    break
                attempted.add(message.id)
                updated = self._attempt(message)
                if updated.status == MessageStatus.SENT:
                    report.sent.append(updated.id)
                elif updated.status == MessageStatus.FAILED:
                    report.failed.append(updated.id)
                else:
                    report.retrying.append(updated.id)
        finally:
            _drain_lock.release()

        if report.processed:
            logger.info(
                "[Queue] Drain finished: %d sent, %d failed, %d rescheduled",
                len(report.sent),
                len(report.failed),
                len(report.retrying),
            )
        else:
            logger.debug("[Queue] No pending emails to process")
        return report
