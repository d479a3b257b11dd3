"""HTTP surface: scheduler trigger and inbound reply webhook."""

import hmac
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse

from personifeed.infrastructure.config import ApplicationConfig, load_config
from personifeed.infrastructure.error_handling import FeedbackPersistFailure
from personifeed.infrastructure.logging import get_logger
from personifeed.pipeline import Pipeline, build_pipeline
from personifeed.services.reply_router import parse_inbound_form

logger = get_logger(__name__)


def _authorized(request: Request, secret: str) -> bool:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip().encode(), secret.encode())


PipelineFactory = Callable[[ApplicationConfig], Awaitable[Pipeline]]


def create_app(
    config: Optional[ApplicationConfig] = None,
    pipeline_factory: Optional[PipelineFactory] = None,
) -> FastAPI:
    """Create the FastAPI application.

    The pipeline is built inside the app's lifespan, on the serving event
    loop, and closed on shutdown. ``pipeline_factory`` defaults to
    :func:`build_pipeline`.
    """
    config = config or load_config()
    factory = pipeline_factory or build_pipeline

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.pipeline = await factory(config)
        try:
            yield
        finally:
            await app.state.pipeline.close()

    app = FastAPI(title="Personifeed", lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/cron/run")
    async def trigger_run(request: Request):
        if not config.cron_secret:
            logger.error("Scheduler trigger called but no cron secret is configured")
            return JSONResponse({"success": False, "error": "Trigger not configured"}, status_code=503)
        if not _authorized(request, config.cron_secret):
            logger.warning("Scheduler trigger rejected", client=request.client.host if request.client else None)
            return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=401)

        result = await request.app.state.pipeline.coordinator.run()
        return JSONResponse(result.to_response(), status_code=200 if result.success else 500)

    @app.post("/webhooks/reply")
    async def inbound_reply(request: Request, background_tasks: BackgroundTasks):
        form = await request.form()
        inbound = parse_inbound_form(
            {key: value for key, value in form.items() if isinstance(value, str)}
        )
        router = request.app.state.pipeline.router

        try:
            result = await router.route(inbound)
        except FeedbackPersistFailure as e:
            logger.error("Reply processing failed", error=e.message, details=e.details)
            return JSONResponse(
                {"success": False, "error": e.error_code, "message": e.message},
                status_code=500,
            )

        if not result.outcome.discarded:
            background_tasks.add_task(router.confirm, result, inbound.message_id)

        return {
            "success": not result.outcome.discarded,
            "outcome": result.outcome.value,
        }

    return app
