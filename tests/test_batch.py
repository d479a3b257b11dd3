"""
Tests for batch runs
"""
from unittest.mock import AsyncMock

from personifeed.infrastructure.error_handling import (
    ProviderError, StoreUnavailable, TransportRejected,
)
from personifeed.models.state import RunState
from personifeed.models.user import NewsletterStatus
from personifeed.services.delivery import DeliveryDispatcher
from personifeed.workflows.batch import BatchCoordinator
from conftest import FakeGenerator, FakeTransport


async def seed(store, *user_ids):
    for user_id in user_ids:
        await store.create_user(f"{user_id}@example.com", f"news for {user_id}", user_id=user_id)


async def only_record(store, user_id):
    records = await store.get_newsletter_records(user_id)
    assert len(records) == 1
    return records[0]


class TestBatchRun:
    """Test a full run across subscribers"""

    async def test_single_user_happy_path(self, store, config, dispatcher, transport):
        await seed(store, "u1")
        generator = FakeGenerator()

        result = await BatchCoordinator(store, generator, dispatcher, config).run()

        assert result.success
        assert result.state == RunState.COMPLETED
        assert result.stats.total_users == 1
        assert result.stats.success_count == 1
        assert result.stats.failure_count == 0
        assert result.failures == []

        record = await only_record(store, "u1")
        assert record.status == NewsletterStatus.SENT
        assert record.run_id == result.run_id
        assert record.body == "Newsletter for u1"

        [email] = transport.sent
        assert email.to == "u1@example.com"
        assert email.from_email == "reply+u1@mail.personifeed.com"
        assert [entry.body for entry in generator.histories["u1"]] == ["news for u1"]

    async def test_generation_failure_is_isolated(self, store, config, dispatcher, transport):
        await seed(store, "u1", "u2", "u3")
        generator = FakeGenerator(failures={"u2": ProviderError("upstream 500", status_code=500)})

        result = await BatchCoordinator(store, generator, dispatcher, config).run()

        assert result.success
        assert (result.stats.total_users, result.stats.success_count, result.stats.failure_count) == (3, 2, 1)
        [failure] = result.failures
        assert failure.user_id == "u2"
        assert failure.reason == "ProviderError"

        failed = await only_record(store, "u2")
        assert failed.status == NewsletterStatus.FAILED
        assert failed.error_detail.startswith("ProviderError")
        for user_id in ("u1", "u3"):
            assert (await only_record(store, user_id)).status == NewsletterStatus.SENT
        assert sorted(email.to for email in transport.sent) == ["u1@example.com", "u3@example.com"]

    async def test_delivery_failure_is_isolated(self, store, config, codec):
        await seed(store, "u1", "u2")
        transport = FakeTransport(
            fail_for={"u1@example.com"}, error=TransportRejected("bad address", status_code=422)
        )
        dispatcher = DeliveryDispatcher(transport, codec)

        result = await BatchCoordinator(store, FakeGenerator(), dispatcher, config).run()

        assert result.stats.success_count == 1
        assert result.failures[0].reason == "TransportRejected"
        failed = await only_record(store, "u1")
        assert failed.status == NewsletterStatus.FAILED
        assert failed.body == "Newsletter for u1"
        assert (await only_record(store, "u2")).status == NewsletterStatus.SENT

    async def test_unexpected_error_is_isolated(self, store, config, dispatcher):
        await seed(store, "u1", "u2")
        generator = FakeGenerator(failures={"u1": RuntimeError("kaboom")})

        result = await BatchCoordinator(store, generator, dispatcher, config).run()

        assert result.success
        assert result.stats.failure_count == 1
        assert result.failures[0].reason == "UnexpectedError"
        assert (await only_record(store, "u1")).status == NewsletterStatus.FAILED
        assert (await only_record(store, "u2")).status == NewsletterStatus.SENT

    async def test_no_active_users(self, store, config, dispatcher, transport):
        await seed(store, "u1")
        await store.set_user_active("u1", False)

        result = await BatchCoordinator(store, FakeGenerator(), dispatcher, config).run()

        assert result.success
        assert result.stats.total_users == 0
        assert transport.sent == []

    async def test_store_unavailable_fails_to_start(self, store, config, dispatcher, transport):
        store.get_active_users = AsyncMock(side_effect=StoreUnavailable("database down"))
        generator = FakeGenerator()

        result = await BatchCoordinator(store, generator, dispatcher, config).run()

        assert not result.success
        assert result.state == RunState.FAILED_TO_START
        assert result.stats.total_users == 0
        assert result.error == "StoreUnavailable: database down"
        assert generator.calls == []
        assert transport.sent == []

    async def test_retrigger_creates_new_records(self, store, config, dispatcher, transport):
        await seed(store, "u1")
        coordinator = BatchCoordinator(store, FakeGenerator(), dispatcher, config)

        first = await coordinator.run()
        second = await coordinator.run()

        assert first.run_id != second.run_id
        records = await store.get_newsletter_records("u1")
        assert {record.run_id for record in records} == {first.run_id, second.run_id}
        assert len(transport.sent) == 2


class TestConcurrency:
    """Test bounded concurrency and per-user timeouts"""

    async def test_concurrency_is_bounded(self, store, config, dispatcher):
        await seed(store, *(f"u{n}" for n in range(6)))
        config.max_concurrent_users = 2
        generator = FakeGenerator(default_delay=0.02)

        result = await BatchCoordinator(store, generator, dispatcher, config).run()

        assert result.stats.success_count == 6
        assert generator.max_in_flight <= 2

    async def test_slow_generation_times_out(self, store, config, dispatcher, transport):
        await seed(store, "u1", "u2")
        config.user_task_timeout_seconds = 0.2
        generator = FakeGenerator(delays={"u2": 5})

        result = await BatchCoordinator(store, generator, dispatcher, config).run()

        assert result.stats.success_count == 1
        [failure] = result.failures
        assert failure.user_id == "u2"
        assert failure.reason == "GenerationTimeout"

        record = await only_record(store, "u2")
        assert record.status == NewsletterStatus.FAILED
        assert record.error_detail.startswith("GenerationTimeout")
        assert [email.to for email in transport.sent] == ["u1@example.com"]

    async def test_slow_delivery_times_out_and_frees_slot(self, store, config, codec):
        await seed(store, "u1", "u2", "u3")
        config.max_concurrent_users = 1
        config.user_task_timeout_seconds = 0.3
        transport = FakeTransport(delays={"u1@example.com": 5})
        dispatcher = DeliveryDispatcher(transport, codec)

        result = await BatchCoordinator(store, FakeGenerator(), dispatcher, config).run()

        assert (result.stats.success_count, result.stats.failure_count) == (2, 1)
        assert [(f.user_id, f.reason) for f in result.failures] == [("u1", "TransportTimeout")]

        record = await only_record(store, "u1")
        assert record.status == NewsletterStatus.FAILED
        assert record.error_detail.startswith("TransportTimeout")
        for user_id in ("u2", "u3"):
            assert (await only_record(store, user_id)).status == NewsletterStatus.SENT
        assert sorted(email.to for email in transport.sent) == ["u2@example.com", "u3@example.com"]


class TestRecordBookkeeping:
    """Test record updates around delivery"""

    async def test_sent_record_carries_delivery_time(self, store, config, dispatcher):
        await seed(store, "u1")

        await BatchCoordinator(store, FakeGenerator(), dispatcher, config).run()

        record = await only_record(store, "u1")
        assert record.delivery_id == "msg_1"
        assert record.delivered_at is not None

    async def test_failed_sent_update_leaves_record_pending(self, store, config, dispatcher, transport):
        await seed(store, "u1")
        update_record = store.update_newsletter_record

        async def refuse_sent(record_id, status, **kwargs):
            if status == NewsletterStatus.SENT:
                raise StoreUnavailable("database down")
            return await update_record(record_id, status, **kwargs)

        store.update_newsletter_record = refuse_sent

        result = await BatchCoordinator(store, FakeGenerator(), dispatcher, config).run()

        assert result.stats.success_count == 1
        assert len(transport.sent) == 1
        assert (await only_record(store, "u1")).status == NewsletterStatus.PENDING
