"""In-process cache of each stream's latest block hash.

The cache only accelerates the append path; the ledger store stays
authoritative.  Entries are written after a durable insert and invalidated
when the store reports a chain conflict.  One instance lives as long as the
:class:`~cropchain_core.service.LedgerService` that owns it.
"""
import threading


class LatestHashCache:
    """Thread-safe ``stream_id -> latest current_hash`` map."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, str] = {}

    def get(self, stream_id: str) -> str | None:
        with self._lock:
            return self._entries.get(stream_id)

    def set(self, stream_id: str, current_hash: str) -> None:
        with self._lock:
            self._entries[stream_id] = current_hash

    def invalidate(self, stream_id: str) -> None:
        with self._lock:
            self._entries.pop(stream_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, stream_id: object) -> bool:
        with self._lock:
            return stream_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
