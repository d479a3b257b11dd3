"""Newsletter generation with OpenAI from a user's prompt and feedback."""

import asyncio
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import openai
from openai import AsyncOpenAI

from personifeed.infrastructure.config import ApplicationConfig
from personifeed.infrastructure.error_handling import (
    EmptyResult, GenerationTimeout, ProviderError, handle_service_errors,
)
from personifeed.infrastructure.logging import LoggerMixin
from personifeed.models.user import FeedbackEntry, User

NEWSLETTER_SYSTEM_PROMPT = """You are creating a personalized daily newsletter. Use the user's preferences and any customization feedback to generate relevant, engaging content.

Guidelines:
- Keep the newsletter concise (500-1000 words)
- Include today's date in the header
- Format content with clear sections and headings
- Be conversational and engaging
- Prioritize the user's stated interests and preferences
- If the user has provided feedback, incorporate their suggestions; later feedback wins over earlier feedback
- Use markdown formatting for better readability"""


def select_feedback(
    user: User,
    history: Sequence[FeedbackEntry],
    limit: int,
) -> Tuple[str, List[FeedbackEntry]]:
    """Pick the initial request and the ``limit`` most recent replies.

    The initial request falls back to the prompt stored on the user when no
    ``initial`` entry exists. Replies come back in chronological order.
    """
    ordered = sorted(history, key=lambda entry: (entry.created_at, entry.id))
    initial = next((entry.body for entry in ordered if entry.is_initial), None)
    replies = [entry for entry in ordered if not entry.is_initial]
    return initial or user.prompt, replies[-limit:] if limit > 0 else []


def build_user_prompt(
    user: User,
    history: Sequence[FeedbackEntry],
    limit: int,
    today: date,
) -> str:
    """Assemble the user message for one newsletter."""
    initial, replies = select_feedback(user, history, limit)

    context = f"User's initial request:\n{initial}\n\n"
    if replies:
        context += "User feedback for customization (oldest first):\n"
        for index, reply in enumerate(replies, start=1):
            context += f"{index}. {reply.body}\n"
        context += "\n"

    today_text = f"{today:%A}, {today:%B} {today.day}, {today.year}"
    return f"{context}Generate today's personalized newsletter for {today_text}."


def build_messages(
    user: User,
    history: Sequence[FeedbackEntry],
    limit: int,
    today: date,
) -> List[Dict[str, str]]:
    """Chat messages sent to the completion provider."""
    return [
        {"role": "system", "content": NEWSLETTER_SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(user, history, limit, today)},
    ]


class ContentGenerator(LoggerMixin):
    """Writes one newsletter body per call. Never touches the store."""

    def __init__(
        self,
        config: ApplicationConfig,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.openai_api_key,
            timeout=config.openai_timeout_seconds,
            max_retries=config.openai_max_retries,
        )

    @handle_service_errors("Content Generator")
    async def generate(
        self,
        user: User,
        history: Sequence[FeedbackEntry],
        today: Optional[date] = None,
    ) -> str:
        """Generate newsletter text for a user.

        Raises:
            GenerationTimeout: the provider did not answer in time
            ProviderError: the provider returned an error status or was unreachable
            EmptyResult: the provider answered without usable content
        """
        messages = build_messages(
            user,
            history,
            self.config.feedback_history_limit,
            today or date.today(),
        )

        self.logger.info(
            "OpenAI call started",
            user_id=user.id,
            model=self.config.openai_model,
            feedback_count=len(history),
        )

        try:
            response = await self.client.chat.completions.create(
                model=self.config.openai_model,
                messages=messages,
                max_tokens=self.config.openai_max_tokens,
                temperature=self.config.openai_temperature,
            )
        except (openai.APITimeoutError, asyncio.TimeoutError) as e:
            raise GenerationTimeout(
                "Completion request timed out", {"user_id": user.id}
            ) from e
        except openai.APIStatusError as e:
            raise ProviderError(
                f"Completion provider returned {e.status_code}",
                status_code=e.status_code,
                details={"user_id": user.id, "error": str(e)},
            ) from e
        except openai.OpenAIError as e:
            raise ProviderError(
                f"Completion request failed: {e}", details={"user_id": user.id}
            ) from e

        content = ""
        if response.choices:
            content = (response.choices[0].message.content or "").strip()

        if not content:
            raise EmptyResult("Completion provider returned no content", {"user_id": user.id})

        self.logger.info(
            "Newsletter generated",
            user_id=user.id,
            model=getattr(response, "model", self.config.openai_model),
            tokens_used=response.usage.total_tokens if getattr(response, "usage", None) else 0,
            content_length=len(content),
        )

        return content
