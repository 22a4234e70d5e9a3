"""Line-boundary chunking of oversized files."""

from __future__ import annotations

from dataclasses import replace

from revue.embedding.types import SourceFile

DEFAULT_MAX_CHUNK_SIZE = 8000
CHUNK_SEPARATOR = "#chunk"


def chunk_path(path: str, index: int) -> str:
    return f"{path}{CHUNK_SEPARATOR}{index}"


def base_path(path: str) -> str:
    """Strip a ``#chunkN`` suffix from *path*."""
    return path.split(CHUNK_SEPARATOR, 1)[0]


def chunk_code_file(file: SourceFile, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> list[SourceFile]:
    """Split *file* on line boundaries into chunks of at most *max_chunk_size* chars.

    Files that already fit are returned unchanged as a one-element list.
    Otherwise chunks are named ``path#chunk0``, ``path#chunk1``, ... and every
    line keeps its own line ending, so joining the chunk contents gives back
    the original text.  A chunk of blank lines only is not emitted.  A single
    line longer than *max_chunk_size* becomes its own oversized chunk.
    """
    if not file.content or len(file.content) <= max_chunk_size:
        return [file]

    chunks: list[SourceFile] = []

    def flush(text: str) -> None:
        if text.strip():
            chunks.append(replace(file, path=chunk_path(file.path, len(chunks)), content=text))

    current = ""
    for line in file.content.splitlines(keepends=True):
        if current and len(current) + len(line) > max_chunk_size:
            flush(current)
            current = ""
        current += line
    flush(current)
    return chunks
