"""File eligibility for embedding: extension allow-list, binary and code detection."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import PurePosixPath

from revue.embedding.types import (
    ACCEPTED,
    SKIPPED_BINARY,
    SKIPPED_EMPTY,
    SKIPPED_EXTENSION,
    SKIPPED_NO_CODE,
    SKIPPED_TOO_LARGE,
    FilterReport,
    SourceFile,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Allow-lists
# =============================================================================

DEFAULT_ALLOWED_EXTENSIONS = frozenset({
    # Web
    "js", "ts", "jsx", "tsx", "mjs", "cjs", "html", "css", "scss", "less",
    "vue", "svelte", "astro",
    # Backend
    "php", "py", "rb", "java", "go", "cs", "rs", "swift", "kt", "scala",
    "clj", "ex", "exs",
    # Config
    "json", "xml", "yaml", "yml", "toml", "ini", "env", "properties", "conf",
    "config",
    # Documentation
    "md", "txt", "rst", "adoc", "asciidoc",
    # Scripts
    "sh", "bash", "zsh", "ps1", "bat", "cmd",
    # Database and API
    "sql", "prisma", "graphql", "gql",
    # Native
    "c", "cpp", "h", "hpp", "cc", "hh",
    # Requests and tests
    "bru", "http", "rest", "spec", "test",
    # Mobile
    "dart", "kotlin", "xcodeproj",
    # Misc
    "lock", "gradle", "plist", "editorconfig", "gitignore",
})

# Files without extensions, matched on the lower-cased basename
SPECIAL_FILENAMES = frozenset({
    "dockerfile", "makefile", "jenkinsfile", "vagrantfile", "procfile",
    "gemfile", "rakefile", "brewfile", "fastfile",
    ".gitignore", ".dockerignore", ".env", ".npmrc", ".yarnrc", ".babelrc",
    ".eslintrc", ".prettierrc", ".editorconfig", "license", "readme",
    "changelog", "contributing", "authors", "codeowners",
})

# A suffixless file under one of these directories is treated as code
SOURCE_DIR_HINTS = frozenset({
    "src", "lib", "app", "source", "core", "api", "server", "client", "components",
})

DEFAULT_MAX_CONTENT_LENGTH = 100_000

# =============================================================================
# Content heuristics
# =============================================================================

_CODE_PATTERNS = (
    re.compile(r"function\s+\w+\s*\(", re.IGNORECASE),
    re.compile(r"class\s+\w+", re.IGNORECASE),
    re.compile(r"import\s+|require\s*\(", re.IGNORECASE),
    re.compile(r"const\s+|let\s+|var\s+", re.IGNORECASE),
    re.compile(r"if\s*\(|for\s*\(|while\s*\(|switch\s*\(", re.IGNORECASE),
    re.compile(r"<[a-z]+[^>]*>", re.IGNORECASE),
    re.compile(r"\.\w+\s*{|#\w+\s*{", re.IGNORECASE),
    re.compile(r"SELECT\s+|INSERT\s+INTO|UPDATE\s+|DELETE\s+FROM", re.IGNORECASE),
    re.compile(r"^#!"),
    re.compile(r'{\s*"\w+"\s*:', re.IGNORECASE),
)

_CODE_CHARS = frozenset("(){}[];=+-*/<>:\"'")
_ALLOWED_CONTROL = frozenset("\t\n\r")


def file_extension(path: str) -> str:
    """Lower-cased extension of *path* without the dot (``""`` if none)."""
    return PurePosixPath(path).suffix.lower().lstrip(".")


def is_binary_content(content: str) -> bool:
    """True if *content* holds a NUL or more than 10% control characters.

    Tab, newline and carriage return do not count as control characters.
    """
    if "\0" in content:
        return True
    if not content:
        return False
    control = sum(1 for ch in content if ord(ch) < 32 and ch not in _ALLOWED_CONTROL)
    return control > len(content) * 0.1


def might_contain_code(content: str) -> bool:
    """Heuristic for suffixless files: does *content* look like source code?"""
    if not content or len(content) < 10:
        return False
    if any(pattern.search(content) for pattern in _CODE_PATTERNS):
        return True
    code_chars = sum(1 for ch in content if ch in _CODE_CHARS)
    return code_chars / len(content) > 0.05


class FileFilter:
    """Decides which files of a resource are worth embedding.

    A file passes when its extension is allow-listed, when it has no
    extension and is a well-known special file, lives under a source
    directory, or looks like code; and when its content is non-empty, not
    larger than *max_content_length* and not binary.
    """

    def __init__(
        self,
        *,
        allowed_extensions: Iterable[str] | None = None,
        special_filenames: Iterable[str] | None = None,
        source_dirs: Iterable[str] | None = None,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    ) -> None:
        self.allowed_extensions = (
            frozenset(e.strip().lower().lstrip(".") for e in allowed_extensions)
            if allowed_extensions is not None
            else DEFAULT_ALLOWED_EXTENSIONS
        )
        self.special_filenames = (
            frozenset(n.lower() for n in special_filenames)
            if special_filenames is not None
            else SPECIAL_FILENAMES
        )
        self.source_dirs = (
            frozenset(d.lower() for d in source_dirs) if source_dirs is not None else SOURCE_DIR_HINTS
        )
        self.max_content_length = max_content_length

    def is_special_file(self, path: str) -> bool:
        return not file_extension(path) and PurePosixPath(path).name.lower() in self.special_filenames

    def is_allowed_path(self, path: str) -> bool:
        """Path-only decision: allow-listed extension, special name or source directory."""
        extension = file_extension(path)
        if extension:
            return extension in self.allowed_extensions
        if self.is_special_file(path):
            return True
        directories = PurePosixPath(path.lower()).parts[:-1]
        return any(part in self.source_dirs for part in directories)

    def classify(self, file: SourceFile) -> str:
        """Return the decision reason for *file* (``"accepted"`` when it passes)."""
        if not self.is_allowed_path(file.path):
            if file_extension(file.path):
                return SKIPPED_EXTENSION
            if not might_contain_code(file.content):
                return SKIPPED_NO_CODE
        if not file.content:
            return SKIPPED_EMPTY
        if len(file.content) > self.max_content_length:
            return SKIPPED_TOO_LARGE
        if is_binary_content(file.content):
            return SKIPPED_BINARY
        return ACCEPTED

    def filter(self, files: Iterable[SourceFile]) -> tuple[list[SourceFile], FilterReport]:
        """Split *files* into the accepted list and a report of every decision."""
        report = FilterReport()
        accepted: list[SourceFile] = []
        for file in files:
            report.total += 1
            report.extension_stats[file_extension(file.path) or "no-extension"] += 1
            reason = self.classify(file)
            report.record(file.path, reason)
            if reason == ACCEPTED:
                accepted.append(file)
                if self.is_special_file(file.path):
                    report.special_files += 1
            else:
                logger.debug("Skipping %s: %s", file.path, reason)

        logger.info(
            "Filtered %d file(s): %d accepted, %d skipped",
            report.total,
            report.accepted,
            report.total - report.accepted,
        )
        return accepted, report
