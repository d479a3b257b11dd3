"""Error taxonomy and error handling utilities for Personifeed."""

import functools
from typing import Any, Callable, Dict, Optional, TypeVar, cast

from personifeed.infrastructure.logging import get_logger

F = TypeVar("F", bound=Callable[..., Any])
logger = get_logger(__name__)


class PersonifeedError(Exception):
    """Base exception for pipeline errors.

    ``error_code`` is the stable taxonomy name stored on failed newsletter
    records and reported in run summaries.
    """

    error_code = "PersonifeedError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def describe(self) -> str:
        """Render as ``<code>: <message>`` for persistence."""
        return f"{self.error_code}: {self.message}"


class StoreUnavailable(PersonifeedError):
    """The feedback store could not be read or written."""

    error_code = "StoreUnavailable"


class FeedbackPersistFailure(StoreUnavailable):
    """An inbound reply was routed but could not be stored."""

    error_code = "FeedbackPersistFailure"


class GenerationFailure(PersonifeedError):
    """Newsletter generation failed for one user."""

    error_code = "GenerationFailure"


class GenerationTimeout(GenerationFailure):
    error_code = "GenerationTimeout"


class ProviderError(GenerationFailure):
    """The completion provider answered with an error status or was unreachable."""

    error_code = "ProviderError"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class EmptyResult(GenerationFailure):
    error_code = "EmptyResult"


class DeliveryFailure(PersonifeedError):
    """An outbound email could not be handed to the transport."""

    error_code = "DeliveryFailure"


class TransportRejected(DeliveryFailure):
    error_code = "TransportRejected"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class TransportTimeout(DeliveryFailure):
    error_code = "TransportTimeout"


def handle_service_errors(
    service_name: str,
    log_level: str = "error",
    reraise: bool = True
) -> Callable[[F], F]:
    """
    Decorator for service-level error handling.

    Classified ``PersonifeedError`` instances are re-raised untouched, they
    are logged by the caller that decides what they mean. Anything else is
    logged with its traceback before being re-raised.

    Usage:
        @handle_service_errors("Feedback Store")
        async def get_active_users(self) -> List[User]:
            ...
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except PersonifeedError:
                raise
            except Exception as e:
                log_func = getattr(logger, log_level, logger.error)
                log_func(
                    f"Error in {service_name}.{func.__name__}",
                    error=str(e),
                    exception_type=type(e).__name__,
                    exc_info=True,
                )
                if reraise:
                    raise
                return None

        return cast(F, wrapper)
    return decorator
