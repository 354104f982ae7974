"""Content-addressed stores for certificate documents.

Two backends share one interface (``put(document) -> cid``,
``gateway_url(cid) -> str``):

- :class:`FilesystemContentStore`: the content id is the SHA-256 of the
  canonical document bytes; writing identical bytes twice is a no-op.
- :class:`PinataContentStore`: pins JSON on IPFS through the Pinata API and
  returns the IPFS CID.  IPFS addresses content, so re-pinning identical
  bytes yields the same CID.
"""
import logging
import re
from pathlib import Path
from typing import Any, Protocol

import requests

from cropchain_core.errors import ContentStoreError, NotFoundError, ValidationError
from cropchain_core.ledger.canonical import canonical_bytes, parse_strict, sha256_hex
from cropchain_core.util.safe_fs import (
    AtomicWriteError,
    SafePathError,
    atomic_write_verified,
    resolve_safe_path,
)

logger = logging.getLogger(__name__)

_SHA256_CID = re.compile(r"^[0-9a-f]{64}$")

DEFAULT_PINATA_API_URL = "https://api.pinata.cloud"
DEFAULT_PINATA_GATEWAY = "https://gateway.pinata.cloud/ipfs"


class ContentStore(Protocol):
    def put(self, document: dict[str, Any], name: str | None = None) -> str: ...

    def gateway_url(self, cid: str) -> str: ...


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


class FilesystemContentStore:
    """Local content-addressed store.

    Layout::

        <root>/<cid[:2]>/<cid>.json

    Parameters
    ----------
    root:
        Store directory.  Created if it does not exist.
    gateway_base:
        Base URL for human-accessible references.  Defaults to the root
        directory's ``file://`` URI.
    """

    def __init__(self, root: Path, gateway_base: str | None = None) -> None:
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ContentStoreError(f"Cannot create content store {self._root}: {exc}") from exc
        self._gateway_base = (gateway_base or self._root.resolve().as_uri()).rstrip("/")

    def _path_for(self, cid: str) -> Path:
        if not _SHA256_CID.match(cid):
            raise ValidationError(f"Malformed content id: {cid!r}")
        try:
            return resolve_safe_path(self._root, f"{cid[:2]}/{cid}.json")
        except SafePathError as exc:
            raise ContentStoreError(str(exc)) from exc

    def put(self, document: dict[str, Any], name: str | None = None) -> str:
        """Store *document* and return its content id.  Idempotent."""
        data = canonical_bytes(document)
        cid = sha256_hex(data)
        path = self._path_for(cid)
        if path.exists() and sha256_hex(path.read_bytes()) == cid:
            logger.debug("Content %s already stored", cid)
            return cid
        try:
            atomic_write_verified(data, path)
        except AtomicWriteError as exc:
            raise ContentStoreError(f"Cannot store content {cid}: {exc}") from exc
        logger.info("Stored content %s (%s)", cid, name or "unnamed")
        return cid

    def get(self, cid: str) -> dict[str, Any]:
        """Read back a document and re-verify its digest."""
        path = self._path_for(cid)
        if not path.exists():
            raise NotFoundError(f"Content {cid} not found")
        data = path.read_bytes()
        if sha256_hex(data) != cid:
            raise ContentStoreError(f"Content {cid} is corrupt: digest mismatch")
        return parse_strict(data)

    def exists(self, cid: str) -> bool:
        return self._path_for(cid).exists()

    def gateway_url(self, cid: str) -> str:
        return f"{self._gateway_base}/{cid[:2]}/{cid}.json"


# ---------------------------------------------------------------------------
# Pinata (IPFS)
# ---------------------------------------------------------------------------


class PinataContentStore:
    """Pin JSON documents to IPFS via the Pinata API.

    Parameters
    ----------
    jwt:
        Pinata API JWT.  Read from the environment by the config layer.
    api_url:
        API base URL.
    gateway_base:
        Gateway used for human-accessible references.
    timeout_seconds:
        Per-request timeout.
    """

    def __init__(
        self,
        jwt: str,
        api_url: str = DEFAULT_PINATA_API_URL,
        gateway_base: str = DEFAULT_PINATA_GATEWAY,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not jwt:
            raise ContentStoreError("Pinata JWT is not configured")
        self._jwt = jwt
        self._api_url = api_url.rstrip("/")
        self._gateway_base = gateway_base.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    def put(self, document: dict[str, Any], name: str | None = None) -> str:
        body: dict[str, Any] = {"pinataContent": document}
        if name:
            body["pinataMetadata"] = {"name": name}
        try:
            response = self._session.post(
                f"{self._api_url}/pinning/pinJSONToIPFS",
                data=canonical_bytes(body),
                headers={
                    "Authorization": f"Bearer {self._jwt}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
            cid = response.json()["IpfsHash"]
        except requests.RequestException as exc:
            raise ContentStoreError(f"Pinata upload failed: {exc}") from exc
        except (KeyError, ValueError) as exc:
            raise ContentStoreError(f"Unexpected Pinata response: {exc}") from exc
        logger.info("Pinned content %s (%s)", cid, name or "unnamed")
        return cid

    def gateway_url(self, cid: str) -> str:
        return f"{self._gateway_base}/{cid}"
