"""Read-only integrity replay of a stream's hash chain.

Each block is checked in append order:
  1. Recompute the hash over its stored fields; a difference is
     ``hash-mismatch`` (this catches a mutation of any stored field,
     ``previous_hash`` included).
  2. Check the link: block 0 must have ``previous_hash = None``; block i>0
     must carry block i-1's stored ``current_hash``.  A difference is
     ``previous-hash-mismatch``.

The verifier never writes and never consults the latest-hash cache.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

from cropchain_core.errors import (
    HashMismatchError,
    NotFoundError,
    PreviousHashMismatchError,
)
from cropchain_core.ledger.block import Block, recompute_hash
from cropchain_core.ledger.store_sqlite import LedgerStore

logger = logging.getLogger(__name__)

STATUS_VALID = "valid"
STATUS_INVALID = "invalid"

REASON_HASH_MISMATCH = "hash-mismatch"
REASON_PREVIOUS_HASH_MISMATCH = "previous-hash-mismatch"


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BlockReport:
    index: int
    event_name: str
    current_hash: str
    status: str
    reason: str | None
    message: str

    @property
    def is_valid(self) -> bool:
        return self.status == STATUS_VALID


@dataclass(frozen=True)
class IntegrityReport:
    stream_id: str
    total_blocks: int
    valid_blocks: int
    invalid_blocks: int
    blocks: tuple[BlockReport, ...] = field(default_factory=tuple)

    @property
    def is_intact(self) -> bool:
        return self.invalid_blocks == 0

    def first_invalid(self) -> BlockReport | None:
        return next((b for b in self.blocks if not b.is_valid), None)

    def raise_for_invalid(self) -> None:
        """Raise the integrity error of the first invalid block, if any.

        Raises
        ------
        HashMismatchError, PreviousHashMismatchError
        """
        bad = self.first_invalid()
        if bad is None:
            return
        cls = HashMismatchError if bad.reason == REASON_HASH_MISMATCH else PreviousHashMismatchError
        raise cls(
            f"Stream {self.stream_id!r} block {bad.index} ({bad.event_name}): {bad.message}",
            stream_id=self.stream_id,
            index=bad.index,
        )

    def to_dict(self) -> dict[str, Any]:
        """camelCase rendering used by the CLI's ``--json`` output."""
        return {
            "streamId": self.stream_id,
            "totalBlocks": self.total_blocks,
            "validBlocks": self.valid_blocks,
            "invalidBlocks": self.invalid_blocks,
            "results": [
                {
                    "index": b.index,
                    "eventName": b.event_name,
                    "currentHash": b.current_hash,
                    "status": b.status,
                    "reason": b.reason,
                    "message": b.message,
                }
                for b in self.blocks
            ],
        }


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def check_block(block: Block, index: int, predecessor: Block | None) -> BlockReport:
    """Classify one block given its stored predecessor."""
    recomputed = recompute_hash(block)
    if recomputed != block.current_hash:
        return BlockReport(
            index, block.event_name, block.current_hash, STATUS_INVALID, REASON_HASH_MISMATCH,
            f"Hash verification failed. Stored {block.current_hash}, recomputed {recomputed}",
        )

    expected_previous = predecessor.current_hash if predecessor is not None else None
    if block.previous_hash != expected_previous:
        return BlockReport(
            index, block.event_name, block.current_hash, STATUS_INVALID,
            REASON_PREVIOUS_HASH_MISMATCH,
            f"Previous hash mismatch. Block carries {block.previous_hash}, "
            f"expected {expected_previous}",
        )

    return BlockReport(
        index, block.event_name, block.current_hash, STATUS_VALID, None, "Block is valid"
    )


def verify_blocks(stream_id: str, blocks: list[Block]) -> IntegrityReport:
    reports = []
    predecessor: Block | None = None
    for i, block in enumerate(blocks):
        reports.append(check_block(block, i, predecessor))
        predecessor = block
    valid = sum(1 for r in reports if r.is_valid)
    return IntegrityReport(
        stream_id=stream_id,
        total_blocks=len(reports),
        valid_blocks=valid,
        invalid_blocks=len(reports) - valid,
        blocks=tuple(reports),
    )


class IntegrityVerifier:
    """Replay a stream from the ledger store and cross-check every hash."""

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def verify(self, stream_id: str) -> IntegrityReport:
        """Verify every block of *stream_id*.

        Raises
        ------
        NotFoundError
            If the stream has no blocks.
        StoreUnavailableError
            If the store cannot be read.
        """
        blocks = self._store.find_all(stream_id, ascending=True)
        if not blocks:
            raise NotFoundError(f"No blocks recorded for stream {stream_id!r}")
        report = verify_blocks(stream_id, blocks)
        if report.is_intact:
            logger.info("Stream %s intact: %d blocks", stream_id, report.total_blocks)
        else:
            logger.warning(
                "Stream %s has %d invalid of %d blocks",
                stream_id, report.invalid_blocks, report.total_blocks,
            )
        return report
