"""Tests for the outbound queue."""

from datetime import timedelta

import pytest

from jewelcart.errors import QueuedMessageNotFoundError
from jewelcart.models import MessageCategory, MessageStatus


class TestEnqueue:
    def test_enqueue_is_pending_and_due(self, queue):
        message = queue.enqueue("a@example.com", "Hi", "Body")

        stored = queue.get(message.id)
        assert stored.status == MessageStatus.PENDING
        assert stored.attempts == 0
        assert stored.category == MessageCategory.TRANSACTIONAL
        assert queue.has_due()

    def test_enqueue_many_single_batch(self, queue):
        messages = queue.enqueue_many(
            [("a@example.com", "S", "B"), ("b@example.com", "S", "B")]
        )

        assert [m.category for m in messages] == [MessageCategory.BULK] * 2
        assert messages[0].scheduled_at == messages[1].scheduled_at

    def test_enqueue_many_empty(self, queue):
        assert queue.enqueue_many([]) == []

    def test_future_schedule_not_due(self, queue, clock):
        queue.enqueue("a@example.com", "S", "B", scheduled_at=clock() + timedelta(minutes=1))

        assert not queue.has_due()
        assert queue.claim() is None


class TestClaim:
    def test_claim_order_follows_enqueue_order(self, queue):
        queue.enqueue_many([(f"u{i}@example.com", "S", "B") for i in range(3)])

        claimed = [queue.claim().to for _ in range(3)]
        assert claimed == ["u0@example.com", "u1@example.com", "u2@example.com"]
        assert queue.claim() is None

    def test_claim_moves_to_processing(self, queue):
        message = queue.enqueue("a@example.com", "S", "B")

        claimed = queue.claim(message.id)
        assert claimed.status == MessageStatus.PROCESSING
        assert queue.claim(message.id) is None

    def test_claim_specific_id_only(self, queue):
        first = queue.enqueue("a@example.com", "S", "B")
        second = queue.enqueue("b@example.com", "S", "B")

        assert queue.claim(second.id).id == second.id
        assert queue.get(first.id).status == MessageStatus.PENDING

    def test_claim_and_has_due_skip_excluded(self, queue):
        first = queue.enqueue("a@example.com", "S", "B")
        second = queue.enqueue("b@example.com", "S", "B")

        assert queue.has_due(exclude={first.id})
        assert queue.claim(exclude={first.id}).id == second.id
        assert not queue.has_due(exclude={first.id})
        assert queue.claim(exclude={first.id}) is None
        assert queue.get(first.id).status == MessageStatus.PENDING


class TestOutcomes:
    def test_mark_sent(self, queue):
        message = queue.claim(queue.enqueue("a@example.com", "S", "B").id)

        sent = queue.mark_sent(message, "provider-1")
        assert sent.status == MessageStatus.SENT
        assert sent.attempts == 1
        assert sent.sent_at is not None
        assert sent.provider_message_id == "provider-1"

    def test_transient_failure_reschedules(self, queue, clock):
        message = queue.claim(queue.enqueue("a@example.com", "S", "B").id)

        failed = queue.mark_failed(
            message, "421 busy", retryable=True, max_attempts=3, retry_delay=timedelta(minutes=5)
        )
        assert failed.status == MessageStatus.PENDING
        assert failed.attempts == 1
        assert failed.last_error == "421 busy"
        assert not queue.has_due()

        clock.advance(minutes=5)
        assert queue.claim().id == message.id

    def test_permanent_failure_is_final(self, queue):
        message = queue.claim(queue.enqueue("a@example.com", "S", "B").id)

        failed = queue.mark_failed(
            message, "550 no such user", retryable=False, max_attempts=3, retry_delay=timedelta(0)
        )
        assert failed.status == MessageStatus.FAILED

    def test_attempts_exhausted(self, queue, clock):
        message = queue.enqueue("a@example.com", "S", "B")
        for _ in range(3):
            claimed = queue.claim(message.id)
            result = queue.mark_failed(
                claimed, "busy", retryable=True, max_attempts=3, retry_delay=timedelta(seconds=1)
            )
            clock.advance(seconds=1)

        assert result.status == MessageStatus.FAILED
        assert result.attempts == 3


class TestOperatorActions:
    def test_retry_failed_message(self, queue):
        message = queue.claim(queue.enqueue("a@example.com", "S", "B").id)
        queue.mark_failed(message, "boom", retryable=False, max_attempts=3, retry_delay=timedelta(0))

        retried = queue.retry(message.id)
        assert retried.status == MessageStatus.PENDING
        assert queue.has_due()

    def test_retry_only_failed(self, queue):
        message = queue.enqueue("a@example.com", "S", "B")

        with pytest.raises(QueuedMessageNotFoundError):
            queue.retry(message.id)

    def test_list_and_counts(self, queue):
        queue.enqueue("a@example.com", "S", "B")
        sent = queue.claim(queue.enqueue("b@example.com", "S", "B").id)
        queue.mark_sent(sent)

        assert len(queue.list_messages()) == 2
        assert [m.to for m in queue.list_messages(status=MessageStatus.SENT)] == ["b@example.com"]
        assert queue.counts_by_status() == {
            "pending": 1,
            "processing": 0,
            "sent": 1,
            "failed": 0,
        }

    def test_recover_stale(self, queue, clock):
        message = queue.enqueue("a@example.com", "S", "B")
        queue.claim(message.id)

        assert queue.recover_stale(timedelta(minutes=10)) == 0
        clock.advance(minutes=11)
        assert queue.recover_stale(timedelta(minutes=10)) == 1
        assert queue.get(message.id).status == MessageStatus.PENDING

    def test_get_missing(self, queue):
        with pytest.raises(QueuedMessageNotFoundError):
            queue.get("missing")
