"""Subscriber, feedback and newsletter record models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class FeedbackSource(str, Enum):
    """Where a feedback entry came from."""

    INITIAL = "initial"  # the signup prompt
    REPLY = "reply"      # a later email reply


class NewsletterStatus(str, Enum):
    """Newsletter record status."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not NewsletterStatus.PENDING


@dataclass(frozen=True)
class User:
    """A newsletter subscriber.

    ``id`` is opaque to the pipeline: it is only compared, stored and
    embedded in the reply address.
    """

    id: str
    email: str
    prompt: str
    created_at: datetime
    active: bool = True


@dataclass(frozen=True)
class FeedbackEntry:
    """One immutable piece of customization text belonging to a user."""

    id: int
    user_id: str
    body: str
    source: FeedbackSource
    created_at: datetime

    @property
    def is_initial(self) -> bool:
        return self.source == FeedbackSource.INITIAL


@dataclass(frozen=True)
class NewsletterRecord:
    """Outcome of processing one user in one run."""

    id: str
    user_id: str
    run_id: str
    status: NewsletterStatus
    body: str = ""
    error_detail: Optional[str] = None
    delivery_id: Optional[str] = None
    generation_started_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
