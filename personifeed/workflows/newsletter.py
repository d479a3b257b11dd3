"""Per-user newsletter workflow using LangGraph.

One run of the graph takes a single subscriber from a fresh ``pending``
record to ``sent`` or ``failed``: create_record -> generate_content ->
deliver -> mark_sent, with every step able to branch to mark_failed.
"""

from typing import Any, Dict, Optional

from langgraph.graph import END, START, StateGraph

from personifeed.infrastructure.database import FeedbackStore
from personifeed.infrastructure.error_handling import (
    DeliveryFailure, GenerationFailure, PersonifeedError, StoreUnavailable,
)
from personifeed.infrastructure.logging import get_logger
from personifeed.models.email import MessageKind
from personifeed.models.state import ProcessingError, TaskStage, UserTaskState
from personifeed.models.user import NewsletterStatus
from personifeed.services.content_generator import ContentGenerator
from personifeed.services.delivery import DeliveryDispatcher

logger = get_logger(__name__)


def _failure(stage: TaskStage, error: PersonifeedError) -> ProcessingError:
    return ProcessingError(
        stage=stage,
        reason=error.error_code,
        message=error.message,
        details=error.details,
    )


def _route_on_error(next_node: str):
    """Conditional edge: continue to ``next_node`` unless the state holds an error."""
    def route(state: UserTaskState) -> str:
        return "fail" if state["error"] is not None else next_node
    return route


class NewsletterWorkflow:
    """Nodes of the per-user graph.

    Nodes only touch the state of the user they were invoked for; the
    compiled graph is shared by all tasks of a run.
    """

    def __init__(
        self,
        store: FeedbackStore,
        generator: ContentGenerator,
        dispatcher: DeliveryDispatcher,
        history_limit: int,
    ):
        self.store = store
        self.generator = generator
        self.dispatcher = dispatcher
        self.history_limit = history_limit

    async def create_record(self, state: UserTaskState) -> Dict[str, Any]:
        progress = state["progress"]
        try:
            progress.record_id = await self.store.create_newsletter_record(
                state["user"].id, state["run_id"]
            )
        except StoreUnavailable as e:
            return {"error": _failure(TaskStage.PENDING, e)}
        return {"progress": progress}

    async def generate_content(self, state: UserTaskState) -> Dict[str, Any]:
        progress = state["progress"]
        progress.stage = TaskStage.GENERATING
        user = state["user"]
        try:
            history = await self.store.get_feedback_history(user.id, self.history_limit)
            body = await self.generator.generate(user, history)
        except (GenerationFailure, StoreUnavailable) as e:
            return {"progress": progress, "error": _failure(TaskStage.GENERATING, e)}
        return {"progress": progress, "history": history, "body": body}

    async def deliver(self, state: UserTaskState) -> Dict[str, Any]:
        progress = state["progress"]
        progress.stage = TaskStage.DELIVERING
        try:
            result = await self.dispatcher.send(
                state["user"], state["body"], MessageKind.NEWSLETTER
            )
        except DeliveryFailure as e:
            return {"progress": progress, "error": _failure(TaskStage.DELIVERING, e)}
        return {"progress": progress, "delivery_result": result}

    async def mark_sent(self, state: UserTaskState) -> Dict[str, Any]:
        """Record a delivered newsletter.

        The user counts as sent once the transport accepted the email. If the
        store update fails here the record stays ``pending``; the error log
        carries the record id and delivery id needed to reconcile it.
        """
        progress = state["progress"]
        progress.stage = TaskStage.SENT
        delivery = state["delivery_result"]
        try:
            await self.store.update_newsletter_record(
                progress.record_id,
                NewsletterStatus.SENT,
                body=state["body"],
                delivery_id=delivery.delivery_id,
                delivered_at=delivery.sent_at,
            )
        except StoreUnavailable as e:
            logger.error(
                "Failed to mark newsletter sent, record left pending",
                user_id=state["user"].id,
                run_id=state["run_id"],
                record_id=progress.record_id,
                record_status=NewsletterStatus.PENDING.value,
                delivery_id=delivery.delivery_id,
                sent_at=delivery.sent_at.isoformat(),
                error_detail=e.describe(),
            )
        return {"progress": progress}

    async def mark_failed(self, state: UserTaskState) -> Dict[str, Any]:
        progress = state["progress"]
        progress.stage = TaskStage.FAILED
        error = state["error"]
        logger.warning(
            "User newsletter failed",
            user_id=state["user"].id,
            run_id=state["run_id"],
            reason=error.reason,
            error=error.message,
        )
        await record_failure(self.store, progress.record_id, error, body=state["body"])
        return {"progress": progress}

    def build(self) -> StateGraph:
        """Create the per-user workflow graph."""
        workflow = StateGraph(UserTaskState)

        workflow.add_node("create_record", self.create_record)
        workflow.add_node("generate_content", self.generate_content)
        workflow.add_node("deliver", self.deliver)
        workflow.add_node("mark_sent", self.mark_sent)
        workflow.add_node("mark_failed", self.mark_failed)

        workflow.add_edge(START, "create_record")
        workflow.add_conditional_edges(
            "create_record",
            _route_on_error("generate"),
            {"generate": "generate_content", "fail": "mark_failed"},
        )
        workflow.add_conditional_edges(
            "generate_content",
            _route_on_error("deliver"),
            {"deliver": "deliver", "fail": "mark_failed"},
        )
        workflow.add_conditional_edges(
            "deliver",
            _route_on_error("sent"),
            {"sent": "mark_sent", "fail": "mark_failed"},
        )
        workflow.add_edge("mark_sent", END)
        workflow.add_edge("mark_failed", END)

        return workflow


async def record_failure(
    store: FeedbackStore,
    record_id: Optional[str],
    error: ProcessingError,
    body: Optional[str] = None,
) -> None:
    """Mark a record failed; store errors here are logged, never raised."""
    if record_id is None:
        return
    try:
        await store.update_newsletter_record(
            record_id,
            NewsletterStatus.FAILED,
            body=body,
            detail=str(error),
        )
    except StoreUnavailable as e:
        logger.error(
            "Failed to mark newsletter failed",
            record_id=record_id,
            reason=error.reason,
            error=e.message,
        )


def create_newsletter_workflow(
    store: FeedbackStore,
    generator: ContentGenerator,
    dispatcher: DeliveryDispatcher,
    history_limit: int,
):
    """Build and compile the per-user workflow."""
    return NewsletterWorkflow(store, generator, dispatcher, history_limit).build().compile()
