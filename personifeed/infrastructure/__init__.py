"""Infrastructure layer for external integrations and data persistence."""

from .api_clients import ResendAPIClient
from .config import ApplicationConfig, load_config
from .database import FeedbackStore, init_database
from .error_handling import handle_service_errors
from .logging import setup_logging

__all__ = [
    "ResendAPIClient",
    "ApplicationConfig",
    "load_config",
    "FeedbackStore",
    "init_database",
    "handle_service_errors",
    "setup_logging",
]
