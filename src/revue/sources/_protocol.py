"""ContentSource protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from revue.embedding.types import SourceFile


@dataclass(frozen=True, slots=True)
class SourceSnapshot:
    """The files of a resource at one revision."""

    files: list[SourceFile] = field(default_factory=list)
    revision_id: str = ""
    branch: str = "main"


@runtime_checkable
class ContentSource(Protocol):
    """Produces the files of a resource for embedding.

    Implementations raise :class:`~revue.exceptions.ContentSourceError`
    when the resource cannot be read.
    """

    async def fetch(
        self,
        resource_id: str,
        source_location: str,
        revision: str | None = None,
    ) -> SourceSnapshot: ...
