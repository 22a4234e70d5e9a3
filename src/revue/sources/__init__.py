"""Content sources that produce the files of a resource."""

from revue.sources._protocol import ContentSource, SourceSnapshot
from revue.sources.local import LocalRepositorySource, detect_language

__all__ = [
    "ContentSource",
    "LocalRepositorySource",
    "SourceSnapshot",
    "detect_language",
]
