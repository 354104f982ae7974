"""Best-effort anchoring of ledger blocks to an external distributed ledger.

:class:`LocalLedgerAnchor` writes JSON lines to a local file and returns a
pseudo transaction reference.  Its interface matches what a smart-contract
client would expose (``anchor(stream_digest, event_name, content_ref,
timestamp, actor_address) -> tx_ref``), so a chain-backed client can be
substituted without changing callers.

:class:`AnchorDispatcher` isolates the ledger from the anchor: every call is
bounded by a timeout and a retry budget, and every failure is logged and
swallowed.  Anchoring never fails or gates a ledger append.  An anchor whose
block was never written can be withdrawn with a ``void`` record.
"""
import functools
import hashlib
import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import nacl.signing

from cropchain_core.crypto.keyring import actor_address, sign_bytes
from cropchain_core.errors import AnchorFailure
from cropchain_core.ledger.canonical import canonical_bytes

logger = logging.getLogger(__name__)


def stream_id_digest(stream_id: str) -> str:
    """Hex SHA-256 of the UTF-8 stream id, the on-ledger batch key."""
    return hashlib.sha256(stream_id.encode("utf-8")).hexdigest()


class AnchorClient(Protocol):
    def anchor(
        self,
        stream_digest: str,
        event_name: str,
        content_ref: str,
        timestamp: str,
        actor_address: str,
    ) -> str | None: ...


# ---------------------------------------------------------------------------
# Local append-only anchor ledger
# ---------------------------------------------------------------------------


class LocalLedgerAnchor:
    """Append-only local ledger that mimics a distributed ledger interface.

    Parameters
    ----------
    log_path:
        Path to the JSONL file where anchor records are appended.
        Created if it does not exist.
    signing_key:
        Optional Ed25519 key; when set each record carries a signature over
        its canonical bytes and the submitter's address.
    network:
        Label recorded with each anchor (e.g. ``local``).
    """

    def __init__(
        self,
        log_path: Path,
        signing_key: nacl.signing.SigningKey | None = None,
        network: str = "local",
    ) -> None:
        self._log_path = Path(log_path)
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        if not self._log_path.exists():
            self._log_path.touch()
        self._signing_key = signing_key
        self._network = network
        self._write_lock = threading.Lock()

    @property
    def address(self) -> str:
        vk = self._signing_key.verify_key if self._signing_key is not None else None
        return actor_address(vk)

    @property
    def network(self) -> str:
        return self._network

    def anchor(
        self,
        stream_digest: str,
        event_name: str,
        content_ref: str,
        timestamp: str,
        actor_address: str,
    ) -> str:
        """Append an anchor record and return its pseudo transaction reference.

        Returns
        -------
        str
            Hex SHA-256 of the serialised record line.
        """
        record = {
            "stream_digest": stream_digest,
            "event_name": event_name,
            "content_ref": content_ref,
            "timestamp": timestamp,
            "actor_address": actor_address,
            "network": self._network,
            "_ledger_ts": datetime.now(timezone.utc).isoformat(),
        }
        return self._append(record)

    def _append(self, record: dict) -> str:
        if self._signing_key is not None:
            record["signature"] = sign_bytes(self._signing_key, canonical_bytes(record)).hex()
            record["signer"] = bytes(self._signing_key.verify_key).hex()

        line_bytes = canonical_bytes(record) + b"\n"
        with self._write_lock:
            with self._log_path.open("ab") as f:
                f.write(line_bytes)

        return "0x" + hashlib.sha256(line_bytes).hexdigest()

    def void(self, stream_digest: str, tx_ref: str, reason: str) -> str:
        """Append a record withdrawing *tx_ref*, whose block was never written."""
        return self._append({
            "stream_digest": stream_digest,
            "void": tx_ref,
            "reason": reason,
            "network": self._network,
            "_ledger_ts": datetime.now(timezone.utc).isoformat(),
        })

    def records(self) -> list[dict]:
        lines = self._log_path.read_text().splitlines()
        return [json.loads(line) for line in lines if line.strip()]


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class AnchorDispatcher:
    """Run anchor calls off the append path with bounded timeout and retry.

    Parameters
    ----------
    client:
        Any object with an ``anchor`` method (see :class:`AnchorClient`).
    address:
        Actor address submitted with every anchor.
    timeout_seconds:
        Maximum time :meth:`request` waits for a reference.
    max_attempts:
        Attempts per anchor before giving up.
    backoff_seconds:
        Sleep between attempts, doubled after each failure.
    """

    def __init__(
        self,
        client: AnchorClient,
        address: str,
        timeout_seconds: float = 2.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.2,
        max_workers: int = 2,
    ) -> None:
        self._client = client
        self._address = address
        self._timeout = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="anchor")
        self._closed = False

    def _attempt(self, stream_id: str, event_name: str, content_ref: str, timestamp: str) -> str | None:
        digest = stream_id_digest(stream_id)
        delay = self._backoff
        last_exc: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._client.anchor(digest, event_name, content_ref, timestamp, self._address)
            except Exception as exc:  # anchor errors stay here
                last_exc = exc
                logger.warning(
                    "Anchor attempt %d/%d for %s %s failed: %s",
                    attempt, self._max_attempts, stream_id, event_name, exc,
                )
                if attempt < self._max_attempts:
                    time.sleep(delay)
                    delay *= 2
        raise AnchorFailure(
            f"Anchoring {event_name} for {stream_id} failed after {self._max_attempts} attempts"
        ) from last_exc

    def request(self, stream_id: str, event_name: str, content_ref: str, timestamp: str) -> str | None:
        """Anchor and wait up to the timeout; return the reference or ``None``."""
        if self._closed:
            return None
        future = self._pool.submit(self._attempt, stream_id, event_name, content_ref, timestamp)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeout:
            logger.warning(
                "Anchor for %s %s timed out after %.1fs; continuing without reference",
                stream_id, event_name, self._timeout,
            )
            return None
        except AnchorFailure as exc:
            logger.warning("%s; continuing without reference", exc)
            return None

    def request_later(self, stream_id: str, event_name: str, content_ref: str, timestamp: str) -> Future | None:
        """Fire-and-forget anchor; the outcome is only logged."""
        if self._closed:
            return None
        future = self._pool.submit(self._attempt, stream_id, event_name, content_ref, timestamp)
        future.add_done_callback(functools.partial(_log_outcome, stream_id, event_name))
        return future

    def void(self, stream_id: str, tx_ref: str, reason: str) -> bool:
        """Withdraw an anchor whose block was not written; ``True`` if recorded.

        Clients without a ``void`` method cannot withdraw anything; the
        orphaned reference is then only logged by the caller.
        """
        void = getattr(self._client, "void", None)
        if void is None or self._closed:
            return False
        future = self._pool.submit(void, stream_id_digest(stream_id), tx_ref, reason)
        try:
            future.result(timeout=self._timeout)
        except FutureTimeout:
            logger.warning("Voiding anchor %s timed out after %.1fs", tx_ref, self._timeout)
            return False
        except Exception as exc:  # anchor errors stay here
            logger.warning("Voiding anchor %s failed: %s", tx_ref, exc)
            return False
        logger.info("Voided anchor %s for stream %s", tx_ref, stream_id)
        return True

    def close(self) -> None:
        self._closed = True
        self._pool.shutdown(wait=False, cancel_futures=True)


def _log_outcome(stream_id: str, event_name: str, future: Future) -> None:
    if future.cancelled():
        logger.warning(
            "Background anchor for %s %s cancelled at shutdown; block stays unanchored",
            stream_id, event_name,
        )
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Background anchor for %s %s failed: %s", stream_id, event_name, exc)
    else:
        logger.info("Background anchor for %s %s recorded: %s", stream_id, event_name, future.result())
