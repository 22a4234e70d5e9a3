"""Stable event fingerprints."""

from __future__ import annotations

import hashlib

from revue.exceptions import UnsupportedEventError
from revue.intake.events import (
    EmojiEvent,
    IntakeEvent,
    MergeRequestEvent,
    NoteEvent,
    PushEvent,
)


def fingerprint_key(event: IntakeEvent) -> str:
    """The un-hashed identity string of *event*.

    Comments and reactions include ``updated_at``, so an edit is a new event.
    """
    if isinstance(event, MergeRequestEvent):
        return f"mr-{event.project_id}-{event.iid}-{event.last_commit_id}-{event.action}"
    if isinstance(event, PushEvent):
        return f"push-{event.project_id}-{event.after}-{event.ref}"
    if isinstance(event, NoteEvent):
        return f"note-{event.project_id}-{event.note_id}-{event.updated_at}"
    if isinstance(event, EmojiEvent):
        return f"emoji-{event.project_id}-{event.award_id}-{event.updated_at}"
    msg = f"No fingerprint for event kind {getattr(event, 'object_kind', event.kind)!r}"
    raise UnsupportedEventError(msg)


def fingerprint(event: IntakeEvent) -> str:
    """SHA-256 hex digest of :func:`fingerprint_key`. Raises :class:`UnsupportedEventError`."""
    return hashlib.sha256(fingerprint_key(event).encode()).hexdigest()
