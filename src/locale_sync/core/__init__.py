"""Collaborator adapters and shared plumbing for the reconciliation engine."""

from .async_utils import run_sync
from .repository import (
    ContentRepository,
    InMemoryContentRepository,
    RestContentRepository,
)
from .translator import HttpTranslationService, TranslationService

__all__ = [
    "ContentRepository",
    "HttpTranslationService",
    "InMemoryContentRepository",
    "RestContentRepository",
    "TranslationService",
    "run_sync",
]
