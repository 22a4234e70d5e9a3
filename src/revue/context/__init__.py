"""Context retrieval for change requests."""

from revue.context.engine import ContextEngine
from revue.context.summary import IN_PROGRESS_SUMMARY, NO_CONTEXT_SUMMARY, render_summary
from revue.context.types import ChangedFile, ContextResult

__all__ = [
    "IN_PROGRESS_SUMMARY",
    "NO_CONTEXT_SUMMARY",
    "ChangedFile",
    "ContextEngine",
    "ContextResult",
    "render_summary",
]
