"""Personifeed

Personalized daily newsletters written by an LLM from each subscriber's own
prompt, steered over time by their email replies.
"""

__version__ = "0.1.0"

from personifeed.models.state import RunResult
from personifeed.models.user import FeedbackEntry, NewsletterRecord, User

__all__ = [
    "RunResult",
    "FeedbackEntry",
    "NewsletterRecord",
    "User",
]
