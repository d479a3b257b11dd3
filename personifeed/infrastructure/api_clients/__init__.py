"""HTTP API clients for external providers."""

from .resend_api import ResendAPIClient

__all__ = [
    "ResendAPIClient",
]
