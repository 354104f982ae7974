"""Error taxonomy shared by the ledger, verifier and certificate compiler.

Retryable failures carry ``retryable = True`` so callers (the CLI, an HTTP
layer) can decide whether resubmitting makes sense without matching on type.

A duplicate submission is not an error: the append service reports it via
``AppendResult.duplicate`` and returns the existing block.
"""


class CropchainError(Exception):
    """Base class for every error raised by cropchain_core."""

    retryable = False


# ---------------------------------------------------------------------------
# Input validation (raised before any store access)
# ---------------------------------------------------------------------------


class ValidationError(CropchainError, ValueError):
    """A required field is missing or malformed."""


class DuplicateKeyError(ValidationError):
    """A JSON object in an external payload contains a duplicate key."""


class PayloadSchemaError(ValidationError):
    """``event_data`` does not conform to the schema for its event name."""


class OrderingViolationError(ValidationError):
    """The configured ordering policy rejected the event for this stream."""


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


class NotFoundError(CropchainError, LookupError):
    """The stream (or content object) has no record."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StoreUnavailableError(CropchainError, OSError):
    """Transient ledger store failure (locked, busy, unreachable)."""

    retryable = True


class ChainConflictError(CropchainError):
    """Another writer extended the stream between read and insert.

    Raised by the store's optimistic precondition and by the fork-guard
    UNIQUE indexes.  The chain is unchanged; the append can be retried.
    """

    retryable = True


class ContentStoreError(CropchainError, OSError):
    """The content-addressed store rejected or failed a write or read."""

    retryable = True


# ---------------------------------------------------------------------------
# Integrity (reported by the verifier, never auto-repaired)
# ---------------------------------------------------------------------------


class IntegrityError(CropchainError):
    """A stored chain failed verification."""

    def __init__(self, message: str, stream_id: str = "", index: int = -1) -> None:
        super().__init__(message)
        self.stream_id = stream_id
        self.index = index


class HashMismatchError(IntegrityError):
    """A block's stored ``current_hash`` does not match its recomputed hash."""


class PreviousHashMismatchError(IntegrityError):
    """A block's ``previous_hash`` does not link to its predecessor."""


# ---------------------------------------------------------------------------
# Anchoring and configuration
# ---------------------------------------------------------------------------


class AnchorFailure(CropchainError, RuntimeError):
    """External anchoring failed.  Logged and swallowed, never propagated."""


class ConfigError(CropchainError, ValueError):
    """The configuration file is missing, unparsable or invalid."""
