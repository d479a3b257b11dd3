"""Shared fixtures for the Personifeed test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest

from personifeed.infrastructure.config import ApplicationConfig
from personifeed.infrastructure.database import init_database
from personifeed.infrastructure.error_handling import PersonifeedError
from personifeed.models.email import EmailContent
from personifeed.models.user import FeedbackEntry, FeedbackSource, User
from personifeed.services.delivery import DeliveryDispatcher
from personifeed.services.reply_address import ReplyAddressCodec

DOMAIN = "mail.personifeed.com"


class FakeGenerator:
    """Stands in for ContentGenerator; fails or stalls for chosen users."""

    def __init__(
        self,
        failures: Optional[Dict[str, Exception]] = None,
        delays: Optional[Dict[str, float]] = None,
        default_delay: float = 0.0,
    ):
        self.failures = failures or {}
        self.delays = delays or {}
        self.default_delay = default_delay
        self.calls: List[str] = []
        self.histories: Dict[str, List[FeedbackEntry]] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, user, history, today=None) -> str:
        self.calls.append(user.id)
        self.histories[user.id] = list(history)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(user.id, self.default_delay)
            if delay:
                await asyncio.sleep(delay)
            if user.id in self.failures:
                raise self.failures[user.id]
            return f"Newsletter for {user.id}"
        finally:
            self.in_flight -= 1


class FakeTransport:
    """Stands in for ResendAPIClient and keeps every message it was given."""

    def __init__(
        self,
        fail_for: Optional[Set[str]] = None,
        error: Optional[PersonifeedError] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.fail_for = fail_for or set()
        self.error = error
        self.delays = delays or {}
        self.sent: List[EmailContent] = []

    async def send_email(self, email: EmailContent) -> str:
        if email.to in self.delays:
            await asyncio.sleep(self.delays[email.to])
        if email.to in self.fail_for:
            raise self.error
        self.sent.append(email)
        return f"msg_{len(self.sent)}"


@pytest.fixture
def config(tmp_path) -> ApplicationConfig:
    return ApplicationConfig(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'personifeed.db'}",
        openai_api_key="test-key",
        resend_api_key="test-key",
        reply_domain=DOMAIN,
        cron_secret="s3cret",
        feedback_history_limit=10,
        max_concurrent_users=10,
        user_task_timeout_seconds=5,
    )


@pytest.fixture
async def store(config):
    store = await init_database(config)
    yield store
    await store.close()


@pytest.fixture
def codec() -> ReplyAddressCodec:
    return ReplyAddressCodec(DOMAIN)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def dispatcher(transport, codec) -> DeliveryDispatcher:
    return DeliveryDispatcher(transport, codec)


@pytest.fixture
def user() -> User:
    return User(
        id="u1",
        email="ada@example.com",
        prompt="daily AI news",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def make_history(user_id: str, initial: Optional[str], replies: List[str]) -> List[FeedbackEntry]:
    """Build a chronological feedback history."""
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    entries = []
    if initial is not None:
        entries.append(FeedbackEntry(1, user_id, initial, FeedbackSource.INITIAL, start))
    for offset, body in enumerate(replies, start=2):
        entries.append(FeedbackEntry(
            offset, user_id, body, FeedbackSource.REPLY, start + timedelta(days=offset)
        ))
    return entries


@pytest.fixture
def history_factory():
    return make_history
