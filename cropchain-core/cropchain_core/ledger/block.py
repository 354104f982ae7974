"""Ledger block data model.

A block is one immutable lifecycle event of a tracked batch plus its hash
link to the previous block of the same stream.  ``current_hash`` covers every
other field; see :func:`block_hash`.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from cropchain_core.errors import ValidationError
from cropchain_core.ledger.canonical import hash_value, normalise


class EventName(str, Enum):
    SOWING = "SOWING"
    TILLERING = "TILLERING"
    FLOWERING = "FLOWERING"
    GRAIN_FILLING = "GRAIN_FILLING"
    HARVEST = "HARVEST"
    PRODUCT_CREATED = "PRODUCT_CREATED"
    SENT_TO_DISTRIBUTOR = "SENT_TO_DISTRIBUTOR"
    DISTRIBUTOR_ACCEPTED = "DISTRIBUTOR_ACCEPTED"
    CHECKOUT_INITIATED_BY_DISTRIBUTOR = "CHECKOUT_INITIATED_BY_DISTRIBUTOR"
    PRODUCT_UPGRADED_BY_DISTRIBUTOR = "PRODUCT_UPGRADED_BY_DISTRIBUTOR"
    PRODUCT_LISTED_IN_DISTRIBUTOR_MARKETPLACE = "PRODUCT_LISTED_IN_DISTRIBUTOR_MARKETPLACE"
    RETAILER_REQUESTED_TO_BUY = "RETAILER_REQUESTED_TO_BUY"
    DISTRIBUTOR_LOGISTICS_ADDED = "DISTRIBUTOR_LOGISTICS_ADDED"
    RETAILER_CHECKOUT_INITIATED = "RETAILER_CHECKOUT_INITIATED"
    RETAILER_ACCEPTED_DELIVERY = "RETAILER_ACCEPTED_DELIVERY"
    CERTIFICATE_GENERATED = "CERTIFICATE_GENERATED"
    QR_GENERATED = "QR_GENERATED"


class ActorRole(str, Enum):
    FARMER = "farmer"
    DISTRIBUTOR = "distributor"
    RETAILER = "retailer"
    SYSTEM = "system"


def parse_event_name(value: "EventName | str") -> EventName:
    try:
        return EventName(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown event name: {value!r}") from exc


def parse_actor_role(value: "ActorRole | str") -> ActorRole:
    try:
        return ActorRole(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown actor role: {value!r}") from exc


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with microseconds, so lexical order equals time order."""
    if moment.tzinfo is None:
        raise ValidationError("Timestamps must be timezone-aware")
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Block
# ---------------------------------------------------------------------------


#: Fields covered by ``current_hash``, in documentation order.
HASHED_FIELDS = (
    "stream_id",
    "event_name",
    "actor_role",
    "actor_id",
    "event_data",
    "content_references",
    "timestamp",
    "previous_hash",
    "external_anchor_ref",
)


@dataclass(frozen=True)
class Block:
    """Immutable ledger entry.  ``current_hash`` is absent from the hashed bytes."""

    stream_id: str
    event_name: str
    actor_role: str
    actor_id: str
    event_data: dict[str, Any]
    content_references: tuple[str, ...]
    timestamp: str
    previous_hash: str | None
    current_hash: str
    external_anchor_ref: str | None = None
    sequence: int | None = field(default=None, compare=False)  # store row id, not hashed

    @property
    def is_genesis(self) -> bool:
        return self.previous_hash is None

    def hashed_fields(self) -> dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "event_name": self.event_name,
            "actor_role": self.actor_role,
            "actor_id": self.actor_id,
            "event_data": self.event_data,
            "content_references": list(self.content_references),
            "timestamp": self.timestamp,
            "previous_hash": self.previous_hash,
            "external_anchor_ref": self.external_anchor_ref,
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.hashed_fields()
        d["current_hash"] = self.current_hash
        return d

    def summary(self) -> dict[str, Any]:
        """The per-block entry listed in certificates."""
        return {
            "event_name": self.event_name,
            "timestamp": self.timestamp,
            "content_references": list(self.content_references),
            "current_hash": self.current_hash,
            "previous_hash": self.previous_hash,
            "external_anchor_ref": self.external_anchor_ref,
        }


def block_hash(fields: dict[str, Any]) -> str:
    """Hash the hashed fields of a block; ``current_hash`` is dropped if present."""
    payload = {k: fields.get(k) for k in HASHED_FIELDS}
    return hash_value(payload)


def build_block(
    stream_id: str,
    event_name: str,
    actor_role: str,
    actor_id: str,
    event_data: dict[str, Any],
    content_references: list[str] | tuple[str, ...],
    timestamp: str,
    previous_hash: str | None,
    external_anchor_ref: str | None = None,
) -> Block:
    """Construct a block and compute its ``current_hash``."""
    draft = Block(
        stream_id=stream_id,
        event_name=event_name,
        actor_role=actor_role,
        actor_id=actor_id,
        event_data=normalise(event_data),
        content_references=tuple(content_references),
        timestamp=timestamp,
        previous_hash=previous_hash,
        current_hash="",  # placeholder while we compute the hash
        external_anchor_ref=external_anchor_ref,
    )
    return replace(draft, current_hash=block_hash(draft.hashed_fields()))


def recompute_hash(block: Block) -> str:
    return block_hash(block.hashed_fields())
