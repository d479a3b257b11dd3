"""Batch coordinator: one scheduled run across all active subscribers."""

import asyncio
import time
from typing import List

from personifeed.infrastructure.config import ApplicationConfig
from personifeed.infrastructure.database import FeedbackStore
from personifeed.infrastructure.error_handling import (
    GenerationTimeout, StoreUnavailable, TransportTimeout,
)
from personifeed.infrastructure.logging import LoggerMixin, bound_log_context
from personifeed.models.state import (
    FailureReport, ProcessingError, RunResult, RunState, RunStats, TaskStage,
    UserOutcome, create_initial_state,
)
from personifeed.models.user import User
from personifeed.services.content_generator import ContentGenerator
from personifeed.services.delivery import DeliveryDispatcher
from personifeed.workflows.newsletter import create_newsletter_workflow, record_failure


class BatchCoordinator(LoggerMixin):
    """Runs the per-user workflow for every active user with bounded concurrency.

    The coordinator keeps no state between runs: each call to ``run`` reads a
    fresh snapshot of active users and returns a self-contained ``RunResult``.
    A failure of one user, whatever its cause, is recorded for that user only.
    """

    def __init__(
        self,
        store: FeedbackStore,
        generator: ContentGenerator,
        dispatcher: DeliveryDispatcher,
        config: ApplicationConfig,
    ):
        self.store = store
        self.config = config
        self.workflow = create_newsletter_workflow(
            store, generator, dispatcher, config.feedback_history_limit
        )

    async def run(self) -> RunResult:
        """Execute one run. Never raises for per-user problems."""
        started = time.monotonic()
        result = RunResult(state=RunState.STARTING)
        logger = self.logger.bind(run_id=result.run_id)
        logger.info("Batch run started")

        try:
            users = await self.store.get_active_users()
        except StoreUnavailable as e:
            result.state = RunState.FAILED_TO_START
            result.error = e.describe()
            result.stats.duration_ms = _elapsed_ms(started)
            logger.error("Batch run failed to start", error=e.message)
            return result

        result.state = RunState.RUNNING
        logger.info("Active users fetched", count=len(users))

        semaphore = asyncio.Semaphore(self.config.max_concurrent_users)
        outcomes: List[UserOutcome] = await asyncio.gather(
            *(self._process_user(user, result.run_id, semaphore) for user in users)
        )

        failures = [outcome for outcome in outcomes if not outcome.succeeded]
        result.stats = RunStats(
            total_users=len(users),
            success_count=len(outcomes) - len(failures),
            failure_count=len(failures),
            duration_ms=_elapsed_ms(started),
        )
        result.failures = [
            FailureReport(
                user_id=outcome.user_id,
                reason=outcome.error.reason if outcome.error else "Unknown",
                detail=outcome.error.message if outcome.error else "",
            )
            for outcome in failures
        ]
        result.state = RunState.COMPLETED
        result.success = True

        logger.info(
            "Batch run completed",
            total_users=result.stats.total_users,
            success_count=result.stats.success_count,
            failure_count=result.stats.failure_count,
            duration_ms=result.stats.duration_ms,
        )
        return result

    async def _process_user(
        self,
        user: User,
        run_id: str,
        semaphore: asyncio.Semaphore,
    ) -> UserOutcome:
        with bound_log_context(run_id=run_id, user_id=user.id):
            return await self._run_workflow(user, run_id, semaphore)

    async def _run_workflow(
        self,
        user: User,
        run_id: str,
        semaphore: asyncio.Semaphore,
    ) -> UserOutcome:
        async with semaphore:
            state = create_initial_state(user, run_id)
            progress = state["progress"]
            timeout = self.config.user_task_timeout_seconds

            try:
                final_state = await asyncio.wait_for(self.workflow.ainvoke(state), timeout=timeout)
            except asyncio.TimeoutError:
                if progress.stage == TaskStage.SENT:
                    return UserOutcome(user.id, TaskStage.SENT, progress.record_id)
                error_cls = (
                    TransportTimeout if progress.stage == TaskStage.DELIVERING
                    else GenerationTimeout
                )
                error = ProcessingError(
                    stage=progress.stage,
                    reason=error_cls.error_code,
                    message=f"User task exceeded {timeout}s",
                )
                self.logger.warning(
                    "User task timed out",
                    user_id=user.id,
                    run_id=run_id,
                    stage=progress.stage.value,
                )
                await record_failure(self.store, progress.record_id, error)
                return UserOutcome(user.id, TaskStage.FAILED, progress.record_id, error)
            except Exception as e:
                error = ProcessingError(
                    stage=progress.stage,
                    reason="UnexpectedError",
                    message=str(e) or type(e).__name__,
                )
                self.logger.error(
                    "User task crashed",
                    user_id=user.id,
                    run_id=run_id,
                    error=str(e),
                    exc_info=True,
                )
                await record_failure(self.store, progress.record_id, error)
                return UserOutcome(user.id, TaskStage.FAILED, progress.record_id, error)

        final_progress = final_state["progress"]
        return UserOutcome(
            user_id=user.id,
            stage=final_progress.stage,
            record_id=final_progress.record_id,
            error=final_state.get("error"),
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
