"""Data models for Personifeed."""

from .email import DeliveryResult, EmailContent, InboundEmail, MessageKind
from .state import (
    FailureReport,
    ProcessingError,
    RunResult,
    RunState,
    RunStats,
    TaskProgress,
    TaskStage,
    UserOutcome,
    UserTaskState,
)
from .user import FeedbackEntry, FeedbackSource, NewsletterRecord, NewsletterStatus, User

__all__ = [
    "DeliveryResult",
    "EmailContent",
    "InboundEmail",
    "MessageKind",
    "FailureReport",
    "ProcessingError",
    "RunResult",
    "RunState",
    "RunStats",
    "TaskProgress",
    "TaskStage",
    "UserOutcome",
    "UserTaskState",
    "FeedbackEntry",
    "FeedbackSource",
    "NewsletterRecord",
    "NewsletterStatus",
    "User",
]
