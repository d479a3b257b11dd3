"""Email models for outbound delivery and inbound replies."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class MessageKind(str, Enum):
    """Kinds of outbound messages."""

    NEWSLETTER = "newsletter"
    CONFIRMATION = "confirmation"


@dataclass
class EmailContent:
    """Plain-text email ready for the transport."""

    to: str
    from_email: str
    subject: str
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    tags: List[Dict[str, str]] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """Resend ``POST /emails`` request body."""
        payload: Dict[str, Any] = {
            "from": self.from_email,  # Simple email, not formatted
            "to": [self.to],
            "subject": self.subject,
            "text": self.text,
        }
        if self.headers:
            payload["headers"] = self.headers
        if self.tags:
            payload["tags"] = self.tags
        return payload


@dataclass
class DeliveryResult:
    """Result of a successful hand-off to the transport."""

    delivery_id: str
    kind: MessageKind
    recipient: str
    from_email: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class InboundEmail:
    """Parsed inbound reply as delivered by the inbound parse webhook."""

    recipients: List[str]
    sender: str
    body: str
    message_id: Optional[str] = None
    raw_body_length: int = 0
