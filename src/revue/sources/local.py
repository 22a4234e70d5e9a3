"""LocalRepositorySource: read a checked-out working tree from disk."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from revue.embedding.types import SourceFile
from revue.exceptions import ContentSourceError
from revue.sources._protocol import SourceSnapshot

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 1024 * 1024
DEFAULT_SKIP_DIRS = frozenset({".git", "node_modules"})

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".rb": "ruby",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".php": "php",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".json": "json",
    ".md": "markdown",
    ".sql": "sql",
    ".sh": "shell",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".xml": "xml",
    ".swift": "swift",
    ".kt": "kotlin",
    ".rs": "rust",
}


def detect_language(path: str) -> str:
    """Language label for *path* from its extension, ``"plaintext"`` if unknown."""
    return LANGUAGE_BY_EXTENSION.get(os.path.splitext(path)[1].lower(), "plaintext")


def read_git_head(repo: Path) -> tuple[str, str | None]:
    """Return ``(commit_sha, branch)`` from ``.git/HEAD``; ``("", None)`` if unavailable.

    A detached HEAD yields the commit with ``branch=None``.
    """
    git_dir = repo / ".git"
    try:
        head = (git_dir / "HEAD").read_text("utf-8").strip()
    except OSError:
        return "", None
    if not head.startswith("ref:"):
        return head, None

    ref = head.split(":", 1)[1].strip()
    branch = ref.removeprefix("refs/heads/")
    ref_file = git_dir / ref
    if ref_file.is_file():
        return ref_file.read_text("utf-8").strip(), branch

    packed = git_dir / "packed-refs"
    if packed.is_file():
        for line in packed.read_text("utf-8").splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == ref:
                return parts[0], branch
    return "", branch


class LocalRepositorySource:
    """Content source over working trees on the local filesystem.

    *source_location* is a directory, absolute or relative to *root*.
    ``.git`` and ``node_modules`` are skipped, as are files larger than
    *max_file_size* bytes and files that are not valid UTF-8.  The revision
    and branch come from ``.git/HEAD`` when present.
    """

    def __init__(
        self,
        root: str | Path | None = None,
        *,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        skip_dirs: frozenset[str] = DEFAULT_SKIP_DIRS,
        default_branch: str = "main",
    ) -> None:
        self._root = Path(root) if root is not None else None
        self._max_file_size = max_file_size
        self._skip_dirs = skip_dirs
        self._default_branch = default_branch

    def _resolve(self, source_location: str) -> Path:
        path = Path(source_location)
        if not path.is_absolute() and self._root is not None:
            path = self._root / path
        return path

    async def fetch(
        self,
        resource_id: str,
        source_location: str,
        revision: str | None = None,
    ) -> SourceSnapshot:
        repo = self._resolve(source_location)
        if not await asyncio.to_thread(repo.is_dir):
            msg = f"Repository for {resource_id!r} not found at {str(repo)!r}"
            raise ContentSourceError(msg)

        try:
            files = await asyncio.to_thread(self._scan, repo)
            head_sha, branch = await asyncio.to_thread(read_git_head, repo)
        except OSError as exc:
            msg = f"Failed to read repository {str(repo)!r}: {exc}"
            raise ContentSourceError(msg) from exc

        if revision and head_sha and revision != head_sha:
            logger.warning(
                "Requested revision %s of %s but working tree is at %s", revision, resource_id, head_sha
            )
        logger.info("Read %d file(s) from %s", len(files), repo)
        return SourceSnapshot(
            files=files,
            revision_id=revision or head_sha,
            branch=branch or self._default_branch,
        )

    def _scan(self, repo: Path) -> list[SourceFile]:
        files: list[SourceFile] = []
        for dirpath, dirnames, filenames in os.walk(repo):
            dirnames[:] = sorted(d for d in dirnames if d not in self._skip_dirs)
            for name in sorted(filenames):
                full = Path(dirpath) / name
                if not full.is_file():
                    continue
                if full.stat().st_size > self._max_file_size:
                    logger.debug("Skipping large file: %s", full)
                    continue
                try:
                    content = full.read_text("utf-8")
                except UnicodeDecodeError:
                    logger.debug("Skipping undecodable file: %s", full)
                    continue
                rel = full.relative_to(repo).as_posix()
                files.append(SourceFile(path=rel, content=content, language=detect_language(rel)))
        return files
