"""Event intake: parsing, fingerprinting and exactly-once claiming of webhook events."""

from revue.intake.events import (
    EmojiEvent,
    IntakeEvent,
    MergeRequestEvent,
    NoteEvent,
    PushEvent,
    UnrecognizedEvent,
    parse_event,
)
from revue.intake.fingerprint import fingerprint, fingerprint_key
from revue.intake.guard import ClaimResult, ClaimStats, IntakeGuard

__all__ = [
    "ClaimResult",
    "ClaimStats",
    "EmojiEvent",
    "IntakeEvent",
    "IntakeGuard",
    "MergeRequestEvent",
    "NoteEvent",
    "PushEvent",
    "UnrecognizedEvent",
    "fingerprint",
    "fingerprint_key",
    "parse_event",
]
