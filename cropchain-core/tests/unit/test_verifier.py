"""Tests for cropchain_core.ledger.verifier.

Tampering is simulated by editing rows directly in SQLite, the way an
attacker with database access would.
"""
import json
import sqlite3

import pytest

from cropchain_core.errors import HashMismatchError, NotFoundError, PreviousHashMismatchError
from cropchain_core.ledger.append import AppendService
from cropchain_core.ledger.block import build_block
from cropchain_core.ledger.store_sqlite import LedgerStore
from cropchain_core.ledger.verifier import (
    REASON_HASH_MISMATCH,
    REASON_PREVIOUS_HASH_MISMATCH,
    IntegrityVerifier,
    verify_blocks,
)


def _chain(appender: AppendService, clock, n: int = 3) -> list:
    events = ["SOWING", "TILLERING", "FLOWERING", "GRAIN_FILLING", "HARVEST"]
    blocks = []
    for i in range(n):
        blocks.append(appender.append("BATCH-1", events[i], "farmer", "f1", {"step": i}))
        clock.advance(minutes=1)
    return blocks


def _sql(store: LedgerStore, statement: str, params: tuple) -> None:
    conn = sqlite3.connect(str(store.db_path), isolation_level=None)
    try:
        conn.execute(statement, params)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Intact chains
# ---------------------------------------------------------------------------


def test_intact_chain(appender, tmp_store, clock) -> None:
    _chain(appender, clock)
    report = IntegrityVerifier(tmp_store).verify("BATCH-1")
    assert report.is_intact
    assert (report.total_blocks, report.valid_blocks, report.invalid_blocks) == (3, 3, 0)
    assert [b.index for b in report.blocks] == [0, 1, 2]
    report.raise_for_invalid()  # no-op


def test_single_block_chain(appender, tmp_store, clock) -> None:
    _chain(appender, clock, n=1)
    assert IntegrityVerifier(tmp_store).verify("BATCH-1").total_blocks == 1


def test_unknown_stream_raises(tmp_store) -> None:
    with pytest.raises(NotFoundError):
        IntegrityVerifier(tmp_store).verify("missing")


def test_to_dict_uses_report_keys(appender, tmp_store, clock) -> None:
    _chain(appender, clock, n=2)
    d = IntegrityVerifier(tmp_store).verify("BATCH-1").to_dict()
    assert d["totalBlocks"] == 2
    assert d["validBlocks"] == 2
    assert d["invalidBlocks"] == 0
    assert d["results"][1]["status"] == "valid"
    json.dumps(d)


# ---------------------------------------------------------------------------
# Tampering
# ---------------------------------------------------------------------------


def test_mutated_event_data_is_hash_mismatch(appender, tmp_store, clock) -> None:
    blocks = _chain(appender, clock)
    _sql(
        tmp_store,
        "UPDATE ledger_blocks SET event_data_json = ? WHERE current_hash = ?",
        (json.dumps({"step": 99}), blocks[1].current_hash),
    )
    report = IntegrityVerifier(tmp_store).verify("BATCH-1")
    assert not report.is_intact
    assert report.invalid_blocks == 1
    bad = report.first_invalid()
    assert bad.index == 1
    assert bad.reason == REASON_HASH_MISMATCH
    # The successor still links to the stored hash, so it stays valid.
    assert report.blocks[2].is_valid


def test_mutated_genesis_detected(appender, tmp_store, clock) -> None:
    blocks = _chain(appender, clock)
    _sql(
        tmp_store,
        "UPDATE ledger_blocks SET actor_id = ? WHERE current_hash = ?",
        ("someone-else", blocks[0].current_hash),
    )
    report = IntegrityVerifier(tmp_store).verify("BATCH-1")
    assert report.first_invalid().index == 0
    assert report.first_invalid().reason == REASON_HASH_MISMATCH


def test_mutated_previous_hash_is_hash_mismatch(appender, tmp_store, clock) -> None:
    blocks = _chain(appender, clock)
    _sql(
        tmp_store,
        "UPDATE ledger_blocks SET previous_hash = ? WHERE current_hash = ?",
        ("f" * 64, blocks[2].current_hash),
    )
    report = IntegrityVerifier(tmp_store).verify("BATCH-1")
    assert report.first_invalid().index == 2
    assert report.first_invalid().reason == REASON_HASH_MISMATCH


def test_rewritten_hash_breaks_successor_link(appender, tmp_store, clock) -> None:
    """Recomputing a tampered block's hash only moves the break to the next link."""
    blocks = _chain(appender, clock)
    forged = build_block(
        stream_id="BATCH-1",
        event_name=blocks[1].event_name,
        actor_role="farmer",
        actor_id="f1",
        event_data={"step": 99},
        content_references=[],
        timestamp=blocks[1].timestamp,
        previous_hash=blocks[0].current_hash,
    )
    _sql(
        tmp_store,
        "UPDATE ledger_blocks SET event_data_json = ?, current_hash = ? WHERE current_hash = ?",
        (json.dumps({"step": 99}), forged.current_hash, blocks[1].current_hash),
    )
    report = IntegrityVerifier(tmp_store).verify("BATCH-1")
    assert report.blocks[1].is_valid
    assert report.blocks[2].reason == REASON_PREVIOUS_HASH_MISMATCH
    with pytest.raises(PreviousHashMismatchError) as excinfo:
        report.raise_for_invalid()
    assert excinfo.value.index == 2
    assert excinfo.value.stream_id == "BATCH-1"


def test_raise_for_invalid_hash_mismatch(appender, tmp_store, clock) -> None:
    blocks = _chain(appender, clock)
    _sql(
        tmp_store,
        "UPDATE ledger_blocks SET timestamp_utc = ? WHERE current_hash = ?",
        ("2030-01-01T00:00:00.000000+00:00", blocks[0].current_hash),
    )
    with pytest.raises(HashMismatchError):
        IntegrityVerifier(tmp_store).verify("BATCH-1").raise_for_invalid()


def test_verifier_never_writes(appender, tmp_store, clock) -> None:
    _chain(appender, clock)
    before = tmp_store.find_all("BATCH-1")
    IntegrityVerifier(tmp_store).verify("BATCH-1")
    assert tmp_store.find_all("BATCH-1") == before


# ---------------------------------------------------------------------------
# verify_blocks on in-memory chains
# ---------------------------------------------------------------------------


def test_genesis_with_previous_hash_is_link_failure() -> None:
    block = build_block(
        stream_id="S", event_name="SOWING", actor_role="farmer", actor_id="f",
        event_data={}, content_references=[], timestamp="2026-01-01T00:00:00.000000+00:00",
        previous_hash="a" * 64,
    )
    report = verify_blocks("S", [block])
    assert report.blocks[0].reason == REASON_PREVIOUS_HASH_MISMATCH


def test_empty_block_list_is_intact() -> None:
    report = verify_blocks("S", [])
    assert report.is_intact
    assert report.total_blocks == 0
