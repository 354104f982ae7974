"""Certificate compilation: summarise a verified chain and seal it on-chain.

Compilation steps:
  1. Read every block of the stream (ascending) and verify the chain
  2. Derive participants and the harvest summary
  3. Build (and optionally sign) the certificate document
  4. Store it in the content store -> content id
  5. Append a CERTIFICATE_GENERATED block referencing the content id,
     pinned to the chain head read in step 1
  6. Return the content id, gateway URL and terminal block

If another event lands between steps 1 and 5 the pinned append fails with
:class:`ChainConflictError` and compilation restarts at step 1, so a
certificate always lists exactly the blocks its terminal block links to.
An orphaned document from the abandoned attempt is harmless.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

import nacl.exceptions
import nacl.signing

from cropchain_core.content.store import ContentStore
from cropchain_core.crypto.keyring import sign_bytes, verify_hex_signature, verify_key_from_hex
from cropchain_core.errors import ChainConflictError, NotFoundError
from cropchain_core.ledger.append import AppendService
from cropchain_core.ledger.block import Block, ActorRole, EventName, format_timestamp, utc_now
from cropchain_core.ledger.canonical import canonical_bytes
from cropchain_core.ledger.store_sqlite import LedgerStore
from cropchain_core.ledger.verifier import verify_blocks

logger = logging.getLogger(__name__)

CERTIFICATE_VERSION = "1.0.0"
COMPILER_ACTOR_ID = "certificate-compiler"


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


class ParticipantDirectory(Protocol):
    def lookup(self, role: str, actor_id: str) -> dict[str, Any] | None: ...


class StaticParticipantDirectory:
    """Participant metadata from a ``{actor_id: {...}}`` mapping."""

    def __init__(self, participants: dict[str, dict[str, Any]] | None = None) -> None:
        self._participants = dict(participants or {})

    def lookup(self, role: str, actor_id: str) -> dict[str, Any] | None:
        entry = self._participants.get(actor_id)
        if entry is None:
            return None
        declared = entry.get("role")
        if declared is not None and declared != role:
            return None
        return {k: v for k, v in entry.items() if k != "role"}


def collect_participants(
    blocks: list[Block], directory: ParticipantDirectory | None
) -> list[dict[str, Any]]:
    """Distinct ``(role, actor_id)`` pairs in order of first appearance."""
    seen: set[tuple[str, str]] = set()
    out: list[dict[str, Any]] = []
    for block in blocks:
        key = (block.actor_role, block.actor_id)
        if key in seen or block.actor_role == ActorRole.SYSTEM.value:
            continue
        seen.add(key)
        info = directory.lookup(*key) if directory is not None else None
        out.append({"role": key[0], "actor_id": key[1], "info": info})
    return out


def harvest_summary(blocks: list[Block]) -> dict[str, Any]:
    """Yield, moisture and grade from the latest HARVEST block, or ``{}``."""
    for block in reversed(blocks):
        if block.event_name == EventName.HARVEST.value:
            data = block.event_data
            return {
                "yield": data.get("totalYieldKg"),
                "moisture": data.get("moisturePercentAtHarvest"),
                "grade": data.get("grainGrade"),
            }
    return {}


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def _signed_portion(document: dict[str, Any]) -> bytes:
    return canonical_bytes({k: v for k, v in document.items() if k != "signature"})


def sign_certificate(document: dict[str, Any], signing_key: nacl.signing.SigningKey) -> dict[str, Any]:
    """Return a copy of *document* with ``issuer`` and ``signature`` set."""
    signed = dict(document)
    signed["issuer"] = bytes(signing_key.verify_key).hex()
    signed["signature"] = sign_bytes(signing_key, _signed_portion(signed)).hex()
    return signed


def verify_certificate(document: dict[str, Any], verify_key: nacl.signing.VerifyKey | None = None) -> None:
    """Check a certificate's signature.

    Uses the embedded ``issuer`` key unless *verify_key* is given.

    Raises
    ------
    nacl.exceptions.BadSignatureError
        If the document is unsigned, names no usable issuer key, was
        altered, or was signed by another key.
    """
    signature = document.get("signature")
    if not signature or not isinstance(signature, str):
        raise nacl.exceptions.BadSignatureError("Certificate is not signed")
    if verify_key is None:
        issuer = document.get("issuer")
        if not isinstance(issuer, str) or not issuer:
            raise nacl.exceptions.BadSignatureError("Certificate names no issuer key")
        try:
            verify_key = verify_key_from_hex(issuer)
        except ValueError as exc:
            raise nacl.exceptions.BadSignatureError(f"Certificate issuer is invalid: {exc}") from exc
    verify_hex_signature(verify_key, _signed_portion(document), signature)


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateResult:
    content_id: str
    gateway_url: str
    block: Block
    document: dict[str, Any]


class CertificateCompiler:
    """Compile a stream's chain into a stored, chained certificate.

    Parameters
    ----------
    store:
        Ledger store the chain is read from.
    appender:
        Append service used for the terminal block.
    content_store:
        Where certificate documents are stored.
    directory:
        Optional participant metadata source.
    signing_key:
        Optional issuer key; unsigned certificates are produced without it.
    anchor_info:
        Anchor network description embedded in the document.
    max_retries:
        Recompilations after the chain moved during compilation.
    """

    def __init__(
        self,
        store: LedgerStore,
        appender: AppendService,
        content_store: ContentStore,
        directory: ParticipantDirectory | None = None,
        signing_key: nacl.signing.SigningKey | None = None,
        anchor_info: dict[str, Any] | None = None,
        max_retries: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._appender = appender
        self._content = content_store
        self._directory = directory
        self._signing_key = signing_key
        self._anchor_info = anchor_info or {"enabled": False}
        self._max_retries = max(0, max_retries)
        self._clock = clock

    def build_document(self, stream_id: str, blocks: list[Block]) -> dict[str, Any]:
        first_payload = blocks[0].event_data if blocks else {}
        document: dict[str, Any] = {
            "certificate_version": CERTIFICATE_VERSION,
            "stream_id": stream_id,
            "farmer_id": first_payload.get("farmerId"),
            "participants": collect_participants(blocks, self._directory),
            "product_summary": harvest_summary(blocks),
            "events": [b.summary() for b in blocks],
            "block_count": len(blocks),
            "chain_head": blocks[-1].current_hash if blocks else None,
            "anchor": self._anchor_info,
            "generated_at": format_timestamp(self._clock()),
        }
        if self._signing_key is not None:
            document = sign_certificate(document, self._signing_key)
        return document

    def compile(self, stream_id: str) -> CertificateResult:
        """Compile, store and chain a certificate for *stream_id*.

        Raises
        ------
        NotFoundError
            If the stream has no blocks.
        HashMismatchError, PreviousHashMismatchError
            If the chain fails verification; nothing is stored or appended.
        ContentStoreError
            If the document cannot be stored; nothing is appended.
        ChainConflictError
            If the stream kept moving beyond the retry budget.
        """
        attempts = 0
        while True:
            blocks = self._store.find_all(stream_id, ascending=True)
            if not blocks:
                raise NotFoundError(f"No blocks recorded for stream {stream_id!r}")
            verify_blocks(stream_id, blocks).raise_for_invalid()

            document = self.build_document(stream_id, blocks)
            cid = self._content.put(document, name=f"certificate-{stream_id}.json")
            gateway_url = self._content.gateway_url(cid)

            try:
                block = self._appender.append(
                    stream_id,
                    EventName.CERTIFICATE_GENERATED,
                    ActorRole.SYSTEM.value,
                    COMPILER_ACTOR_ID,
                    {"certificateCid": cid, "gatewayUrl": gateway_url},
                    [cid],
                    expected_previous_hash=blocks[-1].current_hash,
                    dedupe=False,
                )
            except ChainConflictError:
                attempts += 1
                if attempts > self._max_retries:
                    raise
                logger.warning(
                    "Stream %s moved while compiling certificate; recompiling (%d/%d)",
                    stream_id, attempts, self._max_retries,
                )
                continue

            logger.info(
                "Certificate %s compiled for stream %s over %d blocks",
                cid, stream_id, len(blocks),
            )
            return CertificateResult(
                content_id=cid, gateway_url=gateway_url, block=block, document=document
            )
