"""State models for batch runs and the per-user newsletter workflow."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from personifeed.models.email import DeliveryResult
from personifeed.models.user import FeedbackEntry, User


class RunState(str, Enum):
    """Lifecycle of one batch run."""

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED_TO_START = "failed_to_start"


class TaskStage(str, Enum):
    """Lifecycle of one user's task inside a run."""

    PENDING = "pending"
    GENERATING = "generating"
    DELIVERING = "delivering"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class ProcessingError:
    """A classified failure captured for one user."""

    stage: TaskStage
    reason: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return f"{self.reason}: {self.message}"


@dataclass
class TaskProgress:
    """Where a user's task currently is.

    Owned by exactly one task; read by the coordinator when the task is
    cancelled on timeout.
    """

    stage: TaskStage = TaskStage.PENDING
    record_id: Optional[str] = None


class UserTaskState(TypedDict):
    """State flowing through the per-user LangGraph workflow."""

    user: User
    run_id: str
    progress: TaskProgress
    history: List[FeedbackEntry]
    body: Optional[str]
    delivery_result: Optional[DeliveryResult]
    error: Optional[ProcessingError]


def create_initial_state(user: User, run_id: str) -> UserTaskState:
    """Create initial state for one user's workflow."""
    return UserTaskState(
        user=user,
        run_id=run_id,
        progress=TaskProgress(),
        history=[],
        body=None,
        delivery_result=None,
        error=None,
    )


@dataclass
class UserOutcome:
    """Terminal result of one user's task."""

    user_id: str
    stage: TaskStage
    record_id: Optional[str] = None
    error: Optional[ProcessingError] = None

    @property
    def succeeded(self) -> bool:
        return self.stage == TaskStage.SENT


# Pydantic models for API serialization
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FailureReport(_CamelModel):
    """One failed user in a run summary."""

    user_id: str
    reason: str
    detail: str


class RunStats(_CamelModel):
    """Aggregated counters of a run."""

    total_users: int = 0
    success_count: int = 0
    failure_count: int = 0
    duration_ms: int = 0


class RunResult(_CamelModel):
    """Summary returned by the batch coordinator and the trigger endpoint."""

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    state: RunState = RunState.STARTING
    success: bool = False
    stats: RunStats = Field(default_factory=RunStats)
    failures: List[FailureReport] = Field(default_factory=list)
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        """JSON body in camelCase as exposed over HTTP."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
