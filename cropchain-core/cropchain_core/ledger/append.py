"""Append service: build, link, deduplicate and persist ledger blocks.

Append pipeline (per stream, inside the stream's lock):
  1. Validate inputs (before any store access)
  2. Resolve previous_hash (cache, else store; cache refreshed)
  3. Duplicate suppression (same stream/event/role/actor within the window)
  4. Ordering policy check
  5. Optional inline anchor (bounded; failure -> no reference)
  6. Build the block and compute current_hash
  7. Insert with the previous_hash as optimistic precondition
  8. Update the cache only after the durable write

A :class:`ChainConflictError` at step 7 means another writer (another process
sharing the database) extended the stream first; the cache entry is dropped
and the pipeline restarts at step 2, up to ``max_retries`` times.

An inline anchor whose block then fails to insert is voided in the anchor
log. The default ``background`` mode anchors only committed blocks.
"""
import logging
import re
import threading
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from cropchain_core.anchor.ledger_anchor import AnchorDispatcher
from cropchain_core.errors import ChainConflictError, StoreUnavailableError, ValidationError
from cropchain_core.events.ordering import PermissiveOrdering
from cropchain_core.events.schemas import validate_event_data
from cropchain_core.ledger.block import (
    Block,
    EventName,
    build_block,
    format_timestamp,
    parse_actor_role,
    parse_event_name,
    utc_now,
)
from cropchain_core.ledger.cache import LatestHashCache
from cropchain_core.ledger.canonical import normalise
from cropchain_core.ledger.store_sqlite import ANY_PREVIOUS, LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_WINDOW = timedelta(minutes=5)
DEFAULT_MAX_RETRIES = 3

ANCHOR_INLINE = "inline"
ANCHOR_BACKGROUND = "background"

_MAX_ID_LENGTH = 256
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AppendResult:
    """Returned by :meth:`AppendService.append_with_status`."""

    block: Block
    duplicate: bool  # True: an existing block was returned, nothing was written


# ---------------------------------------------------------------------------
# Per-stream locks
# ---------------------------------------------------------------------------


class StreamLockArena:
    """One mutex per stream id, created on first use.

    Locks are held weakly: an entry lives only while some caller references
    its lock, so streams that are no longer written do not accumulate.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, stream_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(stream_id)
            if lock is None:
                lock = self._locks[stream_id] = threading.Lock()
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _require_identifier(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required")
    if len(value) > _MAX_ID_LENGTH:
        raise ValidationError(f"{field_name} exceeds {_MAX_ID_LENGTH} characters")
    if _CONTROL_CHARS.search(value):
        raise ValidationError(f"{field_name} contains control characters")
    return value


def _require_references(refs: Any) -> tuple[str, ...]:
    if refs is None:
        return ()
    if isinstance(refs, str) or not isinstance(refs, (list, tuple)):
        raise ValidationError("content_references must be a list of strings")
    out = []
    for i, ref in enumerate(refs):
        if not isinstance(ref, str) or not ref:
            raise ValidationError(f"content_references[{i}] must be a non-empty string")
        out.append(ref)
    return tuple(out)


# ---------------------------------------------------------------------------
# AppendService
# ---------------------------------------------------------------------------


class AppendService:
    """The only writer of ledger blocks.

    Parameters
    ----------
    store:
        Authoritative ledger store.
    cache:
        Latest-hash cache owned by the enclosing service.
    duplicate_window:
        Recency window for duplicate suppression.
    max_retries:
        Restarts after a chain conflict before the conflict is re-raised.
    ordering:
        Ordering policy (default: accept any order).
    anchor:
        Optional anchor dispatcher.
    anchor_mode:
        ``background`` (default; fire-and-forget after the write) or
        ``inline`` (reference stored in the block).
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: LedgerStore,
        cache: LatestHashCache,
        duplicate_window: timedelta = DEFAULT_DUPLICATE_WINDOW,
        max_retries: int = DEFAULT_MAX_RETRIES,
        ordering: Any = None,
        anchor: AnchorDispatcher | None = None,
        anchor_mode: str = ANCHOR_BACKGROUND,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if anchor_mode not in (ANCHOR_INLINE, ANCHOR_BACKGROUND):
            raise ValueError(f"Unknown anchor mode: {anchor_mode!r}")
        self._store = store
        self._cache = cache
        self._window = duplicate_window
        self._max_retries = max(0, max_retries)
        self._ordering = ordering or PermissiveOrdering()
        self._anchor = anchor
        self._anchor_mode = anchor_mode
        self._clock = clock
        self._locks = StreamLockArena()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(
        self,
        stream_id: str,
        event_name: "EventName | str",
        actor_role: str,
        actor_id: str,
        event_data: dict[str, Any] | None = None,
        content_references: list[str] | None = None,
        **kwargs: Any,
    ) -> Block:
        """Append an event and return the persisted (or duplicate) block."""
        return self.append_with_status(
            stream_id, event_name, actor_role, actor_id, event_data, content_references, **kwargs
        ).block

    def append_with_status(
        self,
        stream_id: str,
        event_name: "EventName | str",
        actor_role: str,
        actor_id: str,
        event_data: dict[str, Any] | None = None,
        content_references: list[str] | None = None,
        *,
        expected_previous_hash: Any = ANY_PREVIOUS,
        dedupe: bool = True,
    ) -> AppendResult:
        """Append an event; report whether duplicate suppression applied.

        Parameters
        ----------
        expected_previous_hash:
            When given, the new block must link to exactly this hash (``None``
            for an empty stream); otherwise :class:`ChainConflictError` is
            raised without retry.
        dedupe:
            ``False`` skips duplicate suppression.

        Raises
        ------
        ValidationError
            Malformed input, schema or ordering violation (no store access
            for the first two).
        ChainConflictError
            The stream kept moving beyond the retry budget, or it no longer
            ends at *expected_previous_hash*.
        StoreUnavailableError
            The store could not be reached; nothing was written.
        """
        stream_id = _require_identifier(stream_id, "stream_id")
        event = parse_event_name(event_name)
        role = parse_actor_role(actor_role)
        actor_id = _require_identifier(actor_id, "actor_id")
        data = normalise({} if event_data is None else event_data)
        if not isinstance(data, dict):
            raise ValidationError("event_data must be a JSON object")
        validate_event_data(event, data)
        refs = _require_references(content_references)

        pinned = expected_previous_hash is not ANY_PREVIOUS
        attempts = 0
        with self._locks.lock_for(stream_id):
            while True:
                try:
                    result = self._append_locked(
                        stream_id, event, role.value, actor_id, data, refs,
                        expected_previous_hash, dedupe,
                    )
                except ChainConflictError:
                    self._cache.invalidate(stream_id)
                    attempts += 1
                    if pinned or attempts > self._max_retries:
                        raise
                    logger.warning(
                        "Chain conflict on stream %s; retrying (%d/%d)",
                        stream_id, attempts, self._max_retries,
                    )
                    continue
                break

        if not result.duplicate and self._anchor is not None and self._anchor_mode == ANCHOR_BACKGROUND:
            self._anchor.request_later(
                stream_id, event.value, result.block.current_hash, result.block.timestamp
            )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve_previous_hash(self, stream_id: str, use_cache: bool = True) -> str | None:
        if use_cache:
            cached = self._cache.get(stream_id)
            if cached is not None:
                return cached
        latest = self._store.find_latest(stream_id)
        if latest is None:
            return None
        self._cache.set(stream_id, latest.current_hash)
        return latest.current_hash

    def _append_locked(
        self,
        stream_id: str,
        event: EventName,
        role: str,
        actor_id: str,
        data: dict[str, Any],
        refs: tuple[str, ...],
        expected_previous_hash: Any,
        dedupe: bool,
    ) -> AppendResult:
        now = self._clock()
        pinned = expected_previous_hash is not ANY_PREVIOUS
        previous_hash = self._resolve_previous_hash(stream_id, use_cache=not pinned)

        if dedupe:
            since = format_timestamp(now - self._window)
            existing = self._store.find_duplicate(stream_id, event.value, role, actor_id, since)
            if existing is not None:
                logger.info(
                    "Duplicate %s from %s/%s on stream %s within window; returning block %s",
                    event.value, role, actor_id, stream_id, existing.current_hash,
                )
                return AppendResult(block=existing, duplicate=True)

        if pinned and previous_hash != expected_previous_hash:
            raise ChainConflictError(
                f"Stream {stream_id!r} ends at {previous_hash!r}, "
                f"caller expected {expected_previous_hash!r}"
            )

        if self._ordering.needs_history:
            recorded = [b.event_name for b in self._store.find_all(stream_id)]
            self._ordering.check(event, recorded)

        timestamp = format_timestamp(now)
        anchor_ref = None
        if self._anchor is not None and self._anchor_mode == ANCHOR_INLINE:
            anchor_ref = self._anchor.request(
                stream_id, event.value, refs[0] if refs else "", timestamp
            )

        block = build_block(
            stream_id=stream_id,
            event_name=event.value,
            actor_role=role,
            actor_id=actor_id,
            event_data=data,
            content_references=refs,
            timestamp=timestamp,
            previous_hash=previous_hash,
            external_anchor_ref=anchor_ref,
        )
        try:
            stored = self._store.insert(block, expected_previous_hash=previous_hash)
        except (ChainConflictError, StoreUnavailableError) as exc:
            if anchor_ref is not None:
                self._void_anchor(stream_id, event, anchor_ref, exc)
            raise
        self._cache.set(stream_id, stored.current_hash)
        logger.info(
            "Appended %s to stream %s: %s (previous %s)",
            event.value, stream_id, stored.current_hash, previous_hash,
        )
        return AppendResult(block=stored, duplicate=False)

    def _void_anchor(
        self, stream_id: str, event: EventName, anchor_ref: str, exc: Exception
    ) -> None:
        logger.warning(
            "%s for stream %s was not written; anchor %s is orphaned (%s)",
            event.value, stream_id, anchor_ref, exc,
        )
        self._anchor.void(stream_id, anchor_ref, f"{type(exc).__name__}: {exc}")
