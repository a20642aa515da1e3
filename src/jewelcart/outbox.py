"""Durable outbound email queue for jewelcart."""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Collection

from .document_store import DocumentStore
from .errors import QueuedMessageNotFoundError
from .models import MessageCategory, MessageStatus, QueuedMessage, _format_ts

logger = logging.getLogger("jewelcart.outbox")

Clock = Callable[[], datetime]


def _system_clock() -> datetime:
    return datetime.now(timezone.utc)


class OutboundQueue:
    """
    One document per outbound message, with status, attempts and schedule.

    Only the dispatcher moves a record out of ``pending``; the claim step is a
    single locked find-and-update, so one record is never processed by two
    dispatch passes at once.
    """

    def __init__(self, store: DocumentStore, clock: Clock | None = None):
        self._collection = store.queue
        self._clock = clock or _system_clock

    def now(self) -> str:
        return _format_ts(self._clock())

    # --- Enqueue ---

    def enqueue(
        self,
        to: str,
        subject: str,
        body: str,
        category: MessageCategory = MessageCategory.TRANSACTIONAL,
        scheduled_at: datetime | None = None,
    ) -> QueuedMessage:
        """Persist one message as pending. Does not attempt delivery."""
        message = QueuedMessage.create(
            to=to,
            subject=subject,
            body=body,
            category=category,
            scheduled_at=_format_ts(scheduled_at) if scheduled_at else self.now(),
        )
        self._collection.insert(message.to_dict())
        logger.debug("Enqueued %s message %s -> %s", category.value, message.id, to)
        return message

    def enqueue_many(
        self,
        messages: list[tuple[str, str, str]],
        category: MessageCategory = MessageCategory.BULK,
    ) -> list[QueuedMessage]:
        """Persist (to, subject, body) tuples in order, in a single write."""
        now = self.now()
        records = [
            QueuedMessage.create(to, subject, body, category=category, scheduled_at=now)
            for to, subject, body in messages
        ]
        if records:
            self._collection.insert_many([r.to_dict() for r in records])
        logger.info("[Queue] Added %d item(s) to the queue", len(records))
        return records

    # --- Dispatcher side ---

    def claim(
        self, message_id: str | None = None, exclude: Collection[str] = ()
    ) -> QueuedMessage | None:
        """
        Move the next due pending message to ``processing`` and return it.

        Due means ``scheduled_at <= now``; ties keep enqueue order. With
        ``message_id`` only that record is considered; IDs in ``exclude``
        are never claimed.
        """
        now = self.now()

        def is_due(doc: dict) -> bool:
            if message_id is not None and doc.get("id") != message_id:
                return False
            if doc.get("id") in exclude:
                return False
            return doc.get("status") == MessageStatus.PENDING.value and doc.get("scheduled_at", "") <= now

        doc = self._collection.find_one_and_update(
            is_due,
            {"status": MessageStatus.PROCESSING.value, "updated_at": now},
            sort_key=lambda d: d.get("scheduled_at", ""),
        )
        return QueuedMessage.from_dict(doc) if doc else None

    def mark_sent(self, message: QueuedMessage, provider_message_id: str | None = None) -> QueuedMessage:
        now = self.now()
        doc = self._collection.update(
            message.id,
            {
                "status": MessageStatus.SENT.value,
                "sent_at": now,
                "attempts": message.attempts + 1,
                "last_error": None,
                "provider_message_id": provider_message_id,
                "updated_at": now,
            },
        )
        if doc is None:
            raise QueuedMessageNotFoundError(message.id)
        return QueuedMessage.from_dict(doc)

    def mark_failed(
        self,
        message: QueuedMessage,
        error: str,
        retryable: bool,
        max_attempts: int,
        retry_delay: timedelta,
    ) -> QueuedMessage:
        """
        Record a failed attempt.

        The message goes back to ``pending`` at ``now + retry_delay`` while it
        has attempts left and the error is retryable; otherwise it is ``failed``.
        """
        attempts = message.attempts + 1
        moment = self._clock()
        changes: dict = {
            "attempts": attempts,
            "last_error": error,
            "updated_at": _format_ts(moment),
        }
        if retryable and attempts < max_attempts:
            changes["status"] = MessageStatus.PENDING.value
            changes["scheduled_at"] = _format_ts(moment + retry_delay)
        else:
            changes["status"] = MessageStatus.FAILED.value

        doc = self._collection.update(message.id, changes)
        if doc is None:
            raise QueuedMessageNotFoundError(message.id)
        return QueuedMessage.from_dict(doc)

    # --- Inspection / operator actions ---

    def get(self, message_id: str) -> QueuedMessage:
        doc = self._collection.get(message_id)
        if doc is None:
            raise QueuedMessageNotFoundError(message_id)
        return QueuedMessage.from_dict(doc)

    def list_messages(
        self, status: MessageStatus | None = None, limit: int | None = None
    ) -> list[QueuedMessage]:
        """List messages newest first, optionally filtered by status."""
        docs = self._collection.find(
            (lambda d: d.get("status") == status.value) if status is not None else None,
            sort_key=lambda d: d.get("created_at", ""),
            reverse=True,
        )
        if limit:
            docs = docs[:limit]
        return [QueuedMessage.from_dict(d) for d in docs]

    def counts_by_status(self) -> dict[str, int]:
        counts = Counter(d.get("status") for d in self._collection.find())
        return {status.value: counts.get(status.value, 0) for status in MessageStatus}

    def retry(self, message_id: str) -> QueuedMessage:
        """
        Put a failed message back in the queue, due immediately.

        Raises:
            QueuedMessageNotFoundError: If no failed message has that ID.
        """
        now = self.now()
        doc = self._collection.find_one_and_update(
            lambda d: d.get("id") == message_id and d.get("status") == MessageStatus.FAILED.value,
            {"status": MessageStatus.PENDING.value, "scheduled_at": now, "updated_at": now},
        )
        if doc is None:
            raise QueuedMessageNotFoundError(message_id)
        return QueuedMessage.from_dict(doc)

    def has_due(self, exclude: Collection[str] = ()) -> bool:
        """Whether any pending message outside ``exclude`` is due now."""
        now = self.now()
        return (
            self._collection.find_one(
                lambda d: d.get("status") == MessageStatus.PENDING.value
                and d.get("scheduled_at", "") <= now
                and d.get("id") not in exclude
            )
            is not None
        )

    def recover_stale(self, older_than: timedelta) -> int:
        """
        Return ``processing`` records untouched for ``older_than`` to ``pending``.

        Covers a dispatcher that died between claim and outcome.
        """
        moment = self._clock()
        cutoff = _format_ts(moment - older_than)
        count = self._collection.update_many(
            lambda d: d.get("status") == MessageStatus.PROCESSING.value
            and d.get("updated_at", "") < cutoff,
            {"status": MessageStatus.PENDING.value, "updated_at": _format_ts(moment)},
        )
        if count:
            logger.warning("Recovered %d stale processing message(s)", count)
        return count
