"""Delivery dispatcher: newsletters and reply confirmations through Resend."""

from datetime import date
from typing import Optional, Protocol

from personifeed.infrastructure.error_handling import handle_service_errors
from personifeed.infrastructure.logging import LoggerMixin
from personifeed.models.email import DeliveryResult, EmailContent, MessageKind
from personifeed.models.user import User
from personifeed.services.reply_address import ReplyAddressCodec

NEWSLETTER_FOOTER = "Reply to this email to customize future newsletters."
CONFIRMATION_SUBJECT = "Re: Your Daily Digest"
CONFIRMATION_BODY = (
    "Thanks for your feedback! Your customization will be reflected in "
    "tomorrow's newsletter."
)


class MailTransport(Protocol):
    async def send_email(self, email: EmailContent) -> str: ...


def newsletter_subject(today: date) -> str:
    return f"Your Daily Digest - {today:%A}, {today:%B} {today.day}, {today.year}"


class DeliveryDispatcher(LoggerMixin):
    """Sends one email per call with ``From`` set to the user's reply address."""

    def __init__(self, transport: MailTransport, codec: ReplyAddressCodec):
        self.transport = transport
        self.codec = codec

    def compose(
        self,
        user: User,
        body: str,
        kind: MessageKind,
        in_reply_to: Optional[str] = None,
        today: Optional[date] = None,
    ) -> EmailContent:
        """Build the outbound message without sending it."""
        from_email = self.codec.encode(user.id)

        if kind == MessageKind.NEWSLETTER:
            return EmailContent(
                to=user.email,
                from_email=from_email,
                subject=newsletter_subject(today or date.today()),
                text=f"{body}\n\n---\n\n{NEWSLETTER_FOOTER}",
                tags=[{"name": "kind", "value": kind.value}],
            )

        headers = {}
        if in_reply_to:
            headers = {"In-Reply-To": in_reply_to, "References": in_reply_to}
        return EmailContent(
            to=user.email,
            from_email=from_email,
            subject=CONFIRMATION_SUBJECT,
            text=body or CONFIRMATION_BODY,
            headers=headers,
            tags=[{"name": "kind", "value": kind.value}],
        )

    @handle_service_errors("Delivery Dispatcher")
    async def send(
        self,
        user: User,
        body: str,
        kind: MessageKind,
        in_reply_to: Optional[str] = None,
    ) -> DeliveryResult:
        """Send a newsletter or confirmation to a user.

        Raises:
            TransportRejected: the transport refused the message
            TransportTimeout: the transport did not answer in time
        """
        email = self.compose(user, body, kind, in_reply_to=in_reply_to)

        self.logger.info(
            "Sending email",
            user_id=user.id,
            kind=kind.value,
            from_email=email.from_email,
            subject=email.subject,
        )

        delivery_id = await self.transport.send_email(email)

        self.logger.info(
            "Email sent",
            user_id=user.id,
            kind=kind.value,
            delivery_id=delivery_id,
        )

        return DeliveryResult(
            delivery_id=delivery_id,
            kind=kind,
            recipient=user.email,
            from_email=email.from_email,
        )

    async def send_confirmation(
        self,
        user: User,
        in_reply_to: Optional[str] = None,
    ) -> DeliveryResult:
        return await self.send(user, CONFIRMATION_BODY, MessageKind.CONFIRMATION, in_reply_to)
