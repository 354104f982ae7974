"""Composition root: wire store, cache, anchor, appender, verifier and compiler.

The latest-hash cache lives exactly as long as the :class:`LedgerService`
that created it; ``close()`` clears it and stops the anchor worker pool.
"""
import logging
from datetime import timedelta

import nacl.signing

from cropchain_core.anchor.ledger_anchor import AnchorDispatcher, LocalLedgerAnchor
from cropchain_core.certificate.compiler import (
    CertificateCompiler,
    CertificateResult,
    StaticParticipantDirectory,
)
from cropchain_core.config import LedgerConfig
from cropchain_core.content.store import (
    DEFAULT_PINATA_GATEWAY,
    ContentStore,
    FilesystemContentStore,
    PinataContentStore,
)
from cropchain_core.crypto.keyring import load_signing_key
from cropchain_core.errors import ConfigError
from cropchain_core.events.ordering import get_policy
from cropchain_core.ledger.append import AppendResult, AppendService
from cropchain_core.ledger.block import Block
from cropchain_core.ledger.cache import LatestHashCache
from cropchain_core.ledger.store_sqlite import LedgerStore
from cropchain_core.ledger.verifier import IntegrityReport, IntegrityVerifier

logger = logging.getLogger(__name__)


def _load_key(path, purpose: str) -> nacl.signing.SigningKey | None:
    if path is None:
        return None
    try:
        return load_signing_key(path)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot load {purpose} key {path}: {exc}") from exc


def build_content_store(config: LedgerConfig) -> ContentStore:
    cs = config.content_store
    if cs.backend == "pinata":
        return PinataContentStore(
            jwt=cs.pinata_jwt(),
            api_url=cs.api_url,
            gateway_base=cs.gateway_base or DEFAULT_PINATA_GATEWAY,
            timeout_seconds=cs.timeout_seconds,
        )
    return FilesystemContentStore(cs.dir, gateway_base=cs.gateway_base)


def build_anchor(config: LedgerConfig) -> AnchorDispatcher | None:
    an = config.anchor
    if not an.enabled:
        return None
    log_path = an.log_path if an.log_path is not None else config.base_dir / "anchor_ledger.jsonl"
    client = LocalLedgerAnchor(
        log_path,
        signing_key=_load_key(an.signing_key_path, "anchor signing"),
        network=an.network,
    )
    return AnchorDispatcher(
        client,
        client.address,
        timeout_seconds=an.timeout_seconds,
        max_attempts=an.max_attempts,
        backoff_seconds=an.backoff_seconds,
    )


class LedgerService:
    """Facade over the ledger components for one configured deployment."""

    def __init__(
        self,
        store: LedgerStore,
        appender: AppendService,
        verifier: IntegrityVerifier,
        compiler: CertificateCompiler,
        cache: LatestHashCache,
        anchor: AnchorDispatcher | None = None,
    ) -> None:
        self.store = store
        self.appender = appender
        self.verifier = verifier
        self.compiler = compiler
        self._cache = cache
        self._anchor = anchor

    @classmethod
    def from_config(cls, config: LedgerConfig) -> "LedgerService":
        """Build every component from *config*.

        Raises
        ------
        ConfigError
            If a key file cannot be loaded or a secret is missing.
        StoreUnavailableError
            If the ledger database cannot be opened.
        """
        try:
            ordering = get_policy(config.ordering_policy)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

        issuer_key = _load_key(config.certificate.issuer_key_path, "certificate issuer")
        cache = LatestHashCache()
        store = LedgerStore(config.db_path, timeout_seconds=config.store_timeout_seconds)
        content_store = build_content_store(config)
        anchor = build_anchor(config)
        appender = AppendService(
            store,
            cache,
            duplicate_window=timedelta(seconds=config.duplicate_window_seconds),
            max_retries=config.max_append_retries,
            ordering=ordering,
            anchor=anchor,
            anchor_mode=config.anchor.mode,
        )
        anchor_info = {"enabled": anchor is not None}
        if anchor is not None:
            anchor_info.update(network=config.anchor.network, mode=config.anchor.mode)
        compiler = CertificateCompiler(
            store,
            appender,
            content_store,
            directory=StaticParticipantDirectory(config.certificate.participants),
            signing_key=issuer_key,
            anchor_info=anchor_info,
            max_retries=config.max_append_retries,
        )
        logger.debug("Ledger service ready (db=%s, ordering=%s)", config.db_path, ordering.name)
        return cls(store, appender, IntegrityVerifier(store), compiler, cache, anchor)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def record(self, *args, **kwargs) -> AppendResult:
        return self.appender.append_with_status(*args, **kwargs)

    def history(self, stream_id: str) -> list[Block]:
        return self.store.find_all(stream_id, ascending=True)

    def verify(self, stream_id: str) -> IntegrityReport:
        return self.verifier.verify(stream_id)

    def certify(self, stream_id: str) -> CertificateResult:
        return self.compiler.compile(stream_id)

    def streams(self) -> list[dict]:
        return self.store.list_streams()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._cache.clear()
        if self._anchor is not None:
            self._anchor.close()

    def __enter__(self) -> "LedgerService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
