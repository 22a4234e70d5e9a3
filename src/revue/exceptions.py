"""Exception hierarchy for revue.

Duplicate claims, stale claims and completion-wait timeouts are outcomes,
not errors, and are reported through result objects instead.
"""


class RevueError(Exception):
    """Base exception for all revue errors."""


class ClaimStoreUnavailableError(RevueError):
    """Raised when the claim store cannot be reached during a claim attempt.

    Callers must treat this as "try the whole event again later", never as
    "already processed".
    """


class UnsupportedEventError(RevueError):
    """Raised when an event kind has no stable fingerprint."""


class StorageError(RevueError):
    """Raised on store failures outside the claim path (DB connection, I/O)."""


class ContentSourceError(RevueError):
    """Raised when a content source cannot produce the files of a resource."""


class PermanentJobError(RevueError):
    """Raised by job processing for failures that retrying cannot fix."""


class ProviderError(RevueError):
    """Base class for vectorization provider failures."""


class ProviderTransientError(ProviderError):
    """Provider failure that may succeed on retry (timeouts, 5xx, 429)."""


class ProviderPermanentError(ProviderError):
    """Provider failure that will not succeed on retry (bad input, auth)."""


class ProviderCircuitOpenError(ProviderError):
    """Raised without calling the provider while its circuit is open."""
