"""Business logic services for Personifeed."""

from .content_generator import ContentGenerator
from .delivery import DeliveryDispatcher
from .reply_address import ReplyAddressCodec
from .reply_router import ReplyRouter, RoutingOutcome

__all__ = [
    "ContentGenerator",
    "DeliveryDispatcher",
    "ReplyAddressCodec",
    "ReplyRouter",
    "RoutingOutcome",
]
