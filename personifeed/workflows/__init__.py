"""Workflow orchestration for Personifeed."""

from .batch import BatchCoordinator
from .newsletter import create_newsletter_workflow

__all__ = ["BatchCoordinator", "create_newsletter_workflow"]
