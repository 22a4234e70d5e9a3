"""Intake events: the closed set of webhook events that can be claimed.

Every recognized event is a frozen dataclass carrying exactly the fields
its fingerprint is built from.  :func:`parse_event` turns a raw webhook
payload into one of them, or into :class:`UnrecognizedEvent` when the kind
is unknown or required fields are missing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

# ---------------------------------------------------------------------------
# Event kinds
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MergeRequestEvent:
    """A change request was opened, updated, merged or otherwise acted on."""

    kind: ClassVar[str] = "merge_request"

    project_id: str
    iid: str
    last_commit_id: str
    action: str

    @property
    def resource_id(self) -> str:
        return self.project_id


@dataclass(frozen=True, slots=True)
class PushEvent:
    """Commits were pushed to a ref."""

    kind: ClassVar[str] = "push"

    project_id: str
    after: str
    ref: str

    @property
    def resource_id(self) -> str:
        return self.project_id

    @property
    def branch(self) -> str:
        return self.ref.removeprefix("refs/heads/")


@dataclass(frozen=True, slots=True)
class NoteEvent:
    """A comment was created or edited."""

    kind: ClassVar[str] = "note"

    project_id: str
    note_id: str
    updated_at: str

    @property
    def resource_id(self) -> str:
        return self.project_id


@dataclass(frozen=True, slots=True)
class EmojiEvent:
    """A reaction was awarded or revoked."""

    kind: ClassVar[str] = "emoji"

    project_id: str
    award_id: str
    updated_at: str

    @property
    def resource_id(self) -> str:
        return self.project_id


@dataclass(frozen=True, slots=True)
class UnrecognizedEvent:
    """A payload with an unknown kind or missing fields. Never claimable."""

    kind: ClassVar[str] = "unrecognized"

    object_kind: str
    reason: str
    project_id: str = ""

    @property
    def resource_id(self) -> str:
        return self.project_id


IntakeEvent = MergeRequestEvent | PushEvent | NoteEvent | EmojiEvent | UnrecognizedEvent
RecognizedEvent = MergeRequestEvent | PushEvent | NoteEvent | EmojiEvent


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class _MissingField(KeyError):
    pass


def _require(mapping: Any, *keys: str) -> str:
    """Walk *keys* into nested dicts and return the leaf as a string."""
    value = mapping
    for key in keys:
        if not isinstance(value, dict) or value.get(key) is None:
            raise _MissingField(".".join(keys))
        value = value[key]
    if isinstance(value, (dict, list)):
        raise _MissingField(".".join(keys))
    return str(value)


def _project_id(payload: dict[str, Any]) -> str:
    try:
        return _require(payload, "project", "id")
    except _MissingField:
        return _require(payload, "project_id")


def parse_event(payload: Any) -> IntakeEvent:
    """Build an intake event from a webhook JSON payload.

    The kind is taken from ``object_kind``.  Unknown kinds and payloads
    missing a fingerprint field produce an :class:`UnrecognizedEvent`
    instead of raising.
    """
    if not isinstance(payload, dict):
        return UnrecognizedEvent(object_kind="", reason="payload is not an object")

    object_kind = str(payload.get("object_kind") or "")
    try:
        if object_kind == MergeRequestEvent.kind:
            return MergeRequestEvent(
                project_id=_project_id(payload),
                iid=_require(payload, "object_attributes", "iid"),
                last_commit_id=_require(payload, "object_attributes", "last_commit", "id"),
                action=_require(payload, "object_attributes", "action"),
            )
        if object_kind == PushEvent.kind:
            return PushEvent(
                project_id=_project_id(payload),
                after=_require(payload, "after"),
                ref=_require(payload, "ref"),
            )
        if object_kind == NoteEvent.kind:
            return NoteEvent(
                project_id=_project_id(payload),
                note_id=_require(payload, "object_attributes", "id"),
                updated_at=_require(payload, "object_attributes", "updated_at"),
            )
        if object_kind == EmojiEvent.kind:
            return EmojiEvent(
                project_id=_project_id(payload),
                award_id=_require(payload, "object_attributes", "id"),
                updated_at=_require(payload, "object_attributes", "updated_at"),
            )
    except _MissingField as exc:
        project = str(payload.get("project_id") or "")
        return UnrecognizedEvent(
            object_kind=object_kind,
            reason=f"missing field {exc.args[0]!r}",
            project_id=project,
        )

    return UnrecognizedEvent(
        object_kind=object_kind,
        reason=f"unsupported event kind {object_kind!r}",
        project_id=str(payload.get("project_id") or ""),
    )
