"""
Tests for the feedback store
"""
import uuid
from datetime import datetime, timezone

import pytest

from personifeed.infrastructure.database import FeedbackStore
from personifeed.infrastructure.error_handling import StoreUnavailable
from personifeed.models.user import FeedbackSource, NewsletterStatus


class TestUsers:
    """Test user operations"""

    async def test_create_user_seeds_initial_entry(self, store):
        user = await store.create_user("ada@example.com", "daily AI news", user_id="u1")

        assert user.id == "u1"
        assert user.active
        history = await store.get_feedback_history("u1", 10)
        assert history[0].is_initial
        assert [(entry.source, entry.body) for entry in history] == [
            (FeedbackSource.INITIAL, "daily AI news")
        ]

    async def test_generated_ids_are_unique(self, store):
        first = await store.create_user("a@example.com", "x")
        second = await store.create_user("b@example.com", "y")
        assert first.id != second.id

    async def test_unknown_user_is_none(self, store):
        assert await store.get_user_by_id("ghost") is None

    async def test_active_users_exclude_deactivated(self, store):
        await store.create_user("a@example.com", "x", user_id="u1")
        await store.create_user("b@example.com", "y", user_id="u2")

        assert await store.set_user_active("u2", False)
        assert not await store.set_user_active("ghost", False)

        active = await store.get_active_users()
        assert [user.id for user in active] == ["u1"]
        assert len(await store.list_users()) == 2


class TestFeedbackHistory:
    """Test the bounded feedback window"""

    async def test_initial_plus_most_recent_replies(self, store):
        await store.create_user("ada@example.com", "daily AI news", user_id="u1")
        for n in range(1, 13):
            await store.append_feedback("u1", f"reply {n:02d}")

        history = await store.get_feedback_history("u1", 5)

        assert history[0].source == FeedbackSource.INITIAL
        assert [entry.body for entry in history[1:]] == [
            "reply 08", "reply 09", "reply 10", "reply 11", "reply 12"
        ]

    async def test_history_is_per_user(self, store):
        await store.create_user("a@example.com", "x", user_id="u1")
        await store.create_user("b@example.com", "y", user_id="u2")
        await store.append_feedback("u2", "only for u2")

        bodies = [entry.body for entry in await store.get_feedback_history("u1", 10)]
        assert bodies == ["x"]


class TestNewsletterRecords:
    """Test record lifecycle"""

    async def test_pending_to_sent(self, store):
        await store.create_user("ada@example.com", "x", user_id="u1")
        record_id = await store.create_newsletter_record("u1", "run-1")

        updated = await store.update_newsletter_record(
            record_id, NewsletterStatus.SENT, body="Hello", delivery_id="re_1"
        )

        assert updated
        [record] = await store.get_newsletter_records("u1")
        assert record.status == NewsletterStatus.SENT
        assert record.body == "Hello"
        assert record.delivery_id == "re_1"
        assert record.delivered_at is not None
        assert record.status.is_terminal

    async def test_terminal_record_is_not_overwritten(self, store):
        await store.create_user("ada@example.com", "x", user_id="u1")
        record_id = await store.create_newsletter_record("u1", "run-1")
        await store.update_newsletter_record(record_id, NewsletterStatus.SENT, body="Hello")

        updated = await store.update_newsletter_record(
            record_id, NewsletterStatus.FAILED, detail="TransportTimeout: late"
        )

        assert not updated
        [record] = await store.get_newsletter_records("u1")
        assert record.status == NewsletterStatus.SENT
        assert record.error_detail is None

    async def test_one_record_per_user_and_run(self, store):
        await store.create_user("ada@example.com", "x", user_id="u1")
        await store.create_newsletter_record("u1", "run-1")

        with pytest.raises(StoreUnavailable):
            await store.create_newsletter_record("u1", "run-1")

        await store.create_newsletter_record("u1", "run-2")
        assert len(await store.get_newsletter_records("u1")) == 2


class TestStoreUnavailable:
    """Test that database failures surface as StoreUnavailable"""

    async def test_unreachable_database(self, tmp_path):
        path = tmp_path / str(uuid.uuid4()) / "missing.db"
        store = FeedbackStore(f"sqlite+aiosqlite:///{path}")
        try:
            with pytest.raises(StoreUnavailable):
                await store.get_active_users()
        finally:
            await store.close()


class TestRecordUpdates:
    """Test arguments accepted by record updates"""

    async def test_sent_record_keeps_given_delivery_time(self, store):
        await store.create_user("ada@example.com", "x", user_id="u1")
        record_id = await store.create_newsletter_record("u1", "run-1")
        sent_at = datetime(2026, 10, 19, 6, 30, tzinfo=timezone.utc)

        await store.update_newsletter_record(record_id, NewsletterStatus.SENT, delivered_at=sent_at)

        [record] = await store.get_newsletter_records("u1")
        assert record.delivered_at.replace(tzinfo=None) == sent_at.replace(tzinfo=None)

    async def test_pending_is_not_a_valid_target(self, store):
        await store.create_user("ada@example.com", "x", user_id="u1")
        record_id = await store.create_newsletter_record("u1", "run-1")

        assert not NewsletterStatus.PENDING.is_terminal
        with pytest.raises(ValueError):
            await store.update_newsletter_record(record_id, NewsletterStatus.PENDING)
