"""Wiring of store, providers and services for one process."""

from dataclasses import dataclass
from typing import Optional

from personifeed.infrastructure.api_clients import ResendAPIClient
from personifeed.infrastructure.config import ApplicationConfig
from personifeed.infrastructure.database import FeedbackStore, init_database
from personifeed.services.content_generator import ContentGenerator
from personifeed.services.delivery import DeliveryDispatcher
from personifeed.services.reply_address import ReplyAddressCodec
from personifeed.services.reply_router import ReplyRouter
from personifeed.workflows.batch import BatchCoordinator


@dataclass
class Pipeline:
    config: ApplicationConfig
    store: FeedbackStore
    codec: ReplyAddressCodec
    dispatcher: DeliveryDispatcher
    coordinator: BatchCoordinator
    router: ReplyRouter

    async def close(self) -> None:
        await self.store.close()


def assemble_pipeline(
    config: ApplicationConfig,
    store: FeedbackStore,
    generator: Optional[ContentGenerator] = None,
    dispatcher: Optional[DeliveryDispatcher] = None,
) -> Pipeline:
    """Connect the services around an existing store."""
    codec = ReplyAddressCodec(config.reply_domain, config.reply_local_part)
    generator = generator or ContentGenerator(config)
    dispatcher = dispatcher or DeliveryDispatcher(
        ResendAPIClient(
            api_key=config.resend_api_key,
            base_url=config.resend_base_url,
            timeout_seconds=config.mail_timeout_seconds,
        ),
        codec,
    )
    return Pipeline(
        config=config,
        store=store,
        codec=codec,
        dispatcher=dispatcher,
        coordinator=BatchCoordinator(store, generator, dispatcher, config),
        router=ReplyRouter(store, dispatcher, codec, config.max_feedback_length),
    )


async def build_pipeline(config: ApplicationConfig) -> Pipeline:
    """Open the store and assemble the production pipeline."""
    store = await init_database(config)
    return assemble_pipeline(config, store)
