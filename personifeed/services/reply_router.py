"""Routes inbound reply emails to the subscriber encoded in the recipient address."""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional

from personifeed.infrastructure.error_handling import (
    DeliveryFailure, FeedbackPersistFailure, StoreUnavailable,
)
from personifeed.infrastructure.database import FeedbackStore
from personifeed.infrastructure.logging import LoggerMixin
from personifeed.models.email import InboundEmail
from personifeed.models.user import FeedbackSource, User
from personifeed.services.delivery import DeliveryDispatcher
from personifeed.services.reply_address import ReplyAddressCodec

_MESSAGE_ID = re.compile(r"^Message-ID:\s*(<[^>]+>)", re.IGNORECASE | re.MULTILINE)
_SIGNATURE_MARKERS = ("--", "___")
_SIGNATURE_LINES = {"Sent from my iPhone", "Sent from my Android device"}


class RoutingOutcome(str, Enum):
    """What happened to one inbound event."""

    STORED = "stored"
    NOT_ADDRESSED = "not_addressed"
    UNKNOWN_USER = "unknown_user"
    EMPTY_BODY = "empty_body"
    BODY_TOO_LARGE = "body_too_large"

    @property
    def discarded(self) -> bool:
        return self is not RoutingOutcome.STORED


@dataclass
class RoutingResult:
    outcome: RoutingOutcome
    user: Optional[User] = None
    feedback_id: Optional[int] = None
    confirmation_sent: Optional[bool] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None


def clean_email_body(body: str) -> str:
    """Drop quoted lines and everything from the signature on."""
    cleaned_lines = []
    for line in body.splitlines():
        stripped = line.strip()
        if stripped.startswith(_SIGNATURE_MARKERS) or stripped in _SIGNATURE_LINES:
            break
        if stripped.startswith(">"):
            continue
        cleaned_lines.append(line)
    return "\n".join(cleaned_lines).strip()


def extract_message_id(headers: str) -> Optional[str]:
    match = _MESSAGE_ID.search(headers or "")
    return match.group(1) if match else None


def parse_inbound_form(form: Mapping[str, str]) -> InboundEmail:
    """Parse an inbound parse webhook payload.

    Recipients come from the ``to`` header first and the SMTP envelope
    second; a reply sent via BCC or a forwarding alias only shows up in the
    envelope.
    """
    recipients: List[str] = []
    if form.get("to"):
        recipients.append(str(form["to"]))

    envelope = form.get("envelope")
    if envelope:
        try:
            envelope_to = json.loads(str(envelope)).get("to", [])
        except (ValueError, AttributeError):
            envelope_to = []
        if isinstance(envelope_to, str):
            envelope_to = [envelope_to]
        recipients.extend(str(address) for address in envelope_to)

    text = str(form.get("text") or "")
    return InboundEmail(
        recipients=recipients,
        sender=str(form.get("from") or ""),
        body=clean_email_body(text),
        message_id=extract_message_id(str(form.get("headers") or "")),
        raw_body_length=len(text),
    )


class ReplyRouter(LoggerMixin):
    """Turns one inbound email into a stored reply entry plus a confirmation."""

    def __init__(
        self,
        store: FeedbackStore,
        dispatcher: DeliveryDispatcher,
        codec: ReplyAddressCodec,
        max_feedback_length: int = 2000,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.codec = codec
        self.max_feedback_length = max_feedback_length

    async def route(self, inbound: InboundEmail) -> RoutingResult:
        """Decode, validate and persist one reply.

        Discards are reported through the outcome. Raises
        ``FeedbackPersistFailure`` when the store fails after the reply was
        matched to a user, so the webhook can ask for redelivery.
        """
        user_id = self.codec.find_user_id(inbound.recipients)
        if user_id is None:
            self.logger.warning(
                "Reply not addressed to a user",
                recipients=inbound.recipients,
                sender=inbound.sender,
            )
            return RoutingResult(RoutingOutcome.NOT_ADDRESSED)

        try:
            user = await self.store.get_user_by_id(user_id)
        except StoreUnavailable as e:
            raise FeedbackPersistFailure(
                "Failed to look up reply recipient", {"user_id": user_id, **e.details}
            ) from e

        if user is None:
            self.logger.warning("Reply for unknown user", user_id=user_id, sender=inbound.sender)
            return RoutingResult(RoutingOutcome.UNKNOWN_USER)

        body = inbound.body.strip()
        if not body:
            self.logger.warning(
                "Empty reply discarded",
                user_id=user.id,
                raw_body_length=inbound.raw_body_length,
            )
            return RoutingResult(RoutingOutcome.EMPTY_BODY, user=user)
        if len(body) > self.max_feedback_length:
            self.logger.warning(
                "Oversized reply discarded",
                user_id=user.id,
                content_length=len(body),
                raw_body_length=inbound.raw_body_length,
                max_length=self.max_feedback_length,
            )
            return RoutingResult(RoutingOutcome.BODY_TOO_LARGE, user=user)

        try:
            entry = await self.store.append_feedback(user.id, body, FeedbackSource.REPLY)
        except StoreUnavailable as e:
            raise FeedbackPersistFailure(
                "Failed to store reply feedback", {"user_id": user.id, **e.details}
            ) from e

        self.logger.info(
            "Reply stored",
            user_id=user.id,
            feedback_id=entry.id,
            content_length=len(body),
            raw_body_length=inbound.raw_body_length,
        )
        return RoutingResult(RoutingOutcome.STORED, user=user, feedback_id=entry.id)

    async def confirm(self, result: RoutingResult, in_reply_to: Optional[str] = None) -> bool:
        """Best-effort confirmation for a stored reply; never raises on delivery failure."""
        if result.outcome != RoutingOutcome.STORED or result.user is None:
            return False

        try:
            await self.dispatcher.send_confirmation(result.user, in_reply_to=in_reply_to)
        except DeliveryFailure as e:
            self.logger.error(
                "Confirmation send failed",
                user_id=result.user.id,
                reason=e.error_code,
                error=e.message,
            )
            result.confirmation_sent = False
            return False

        result.confirmation_sent = True
        return True

    async def handle(self, inbound: InboundEmail) -> RoutingResult:
        """Route one reply and confirm it in the same call."""
        result = await self.route(inbound)
        await self.confirm(result, in_reply_to=inbound.message_id)
        return result
