"""Tests for cropchain_core.ledger.block."""
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from cropchain_core.errors import ValidationError
from cropchain_core.ledger.block import (
    ActorRole,
    EventName,
    build_block,
    format_timestamp,
    parse_actor_role,
    parse_event_name,
    recompute_hash,
)


def _block(**overrides):
    fields = dict(
        stream_id="BATCH-1",
        event_name="SOWING",
        actor_role="farmer",
        actor_id="farmer-7",
        event_data={"seedType": "wheat"},
        content_references=["cid-1"],
        timestamp="2026-01-01T08:00:00.000000+00:00",
        previous_hash=None,
    )
    fields.update(overrides)
    return build_block(**fields)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def test_all_lifecycle_events_defined() -> None:
    assert len(EventName) == 17
    assert EventName("QR_GENERATED") is EventName.QR_GENERATED


def test_parse_unknown_event_raises() -> None:
    with pytest.raises(ValidationError, match="Unknown event name"):
        parse_event_name("PLOUGHING")


def test_parse_unknown_role_raises() -> None:
    with pytest.raises(ValidationError, match="Unknown actor role"):
        parse_actor_role("auditor")


def test_parse_accepts_enum_members() -> None:
    assert parse_actor_role(ActorRole.SYSTEM) is ActorRole.SYSTEM


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def test_timestamp_is_utc_with_microseconds() -> None:
    moment = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert format_timestamp(moment) == "2026-01-01T08:00:00.000000+00:00"


def test_naive_timestamp_rejected() -> None:
    with pytest.raises(ValidationError):
        format_timestamp(datetime(2026, 1, 1))


def test_timestamp_lexical_order_matches_time_order() -> None:
    a = datetime(2026, 1, 1, 9, 59, 59, 999999, tzinfo=timezone.utc)
    b = a + timedelta(microseconds=1)
    assert format_timestamp(a) < format_timestamp(b)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def test_build_block_sets_current_hash() -> None:
    block = _block()
    assert len(block.current_hash) == 64
    assert recompute_hash(block) == block.current_hash


def test_hash_is_deterministic() -> None:
    assert _block().current_hash == _block().current_hash


@pytest.mark.parametrize(
    "field_name, value",
    [
        ("stream_id", "BATCH-2"),
        ("event_name", "TILLERING"),
        ("actor_role", "distributor"),
        ("actor_id", "farmer-8"),
        ("event_data", {"seedType": "rice"}),
        ("content_references", ("cid-2",)),
        ("timestamp", "2026-01-01T08:00:00.000001+00:00"),
        ("previous_hash", "a" * 64),
        ("external_anchor_ref", "0xabc"),
    ],
)
def test_every_hashed_field_changes_the_hash(field_name: str, value) -> None:
    block = _block()
    mutated = replace(block, **{field_name: value})
    assert recompute_hash(mutated) != block.current_hash


def test_sequence_is_not_hashed_or_compared() -> None:
    block = _block()
    with_seq = replace(block, sequence=42)
    assert recompute_hash(with_seq) == block.current_hash
    assert with_seq == block


def test_event_data_normalised_before_hashing() -> None:
    assert _block(event_data={"kg": 5.0}).current_hash == _block(event_data={"kg": 5}).current_hash


def test_summary_carries_linkage_fields() -> None:
    block = _block()
    summary = block.summary()
    assert summary["current_hash"] == block.current_hash
    assert summary["previous_hash"] is None
    assert summary["content_references"] == ["cid-1"]
    assert block.is_genesis
