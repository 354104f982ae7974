"""Ed25519 keys for certificate issuers and ledger anchors.

Key storage format: raw 32-byte binary files.
  - Signing key file: 32-byte seed (PyNaCl native), mode 0600
  - Verify key file:  32-byte public key bytes

An actor address is derived from a verify key so anchor records name their
submitter the way a wallet address would.
"""
import hashlib
from pathlib import Path

import nacl.exceptions
import nacl.signing

#: Address used when no anchor key is configured.
ZERO_ADDRESS = "0x" + "0" * 40


# ---------------------------------------------------------------------------
# Key generation and persistence
# ---------------------------------------------------------------------------


def generate_keypair() -> tuple[nacl.signing.SigningKey, nacl.signing.VerifyKey]:
    """Generate a fresh Ed25519 keypair."""
    sk = nacl.signing.SigningKey.generate()
    return sk, sk.verify_key


def save_signing_key(sk: nacl.signing.SigningKey, path: Path) -> None:
    """Write raw 32-byte signing key seed to *path* with mode 0600."""
    path.write_bytes(bytes(sk))
    path.chmod(0o600)


def save_verify_key(vk: nacl.signing.VerifyKey, path: Path) -> None:
    path.write_bytes(bytes(vk))


def load_signing_key(path: Path) -> nacl.signing.SigningKey:
    """Load a signing key from a 32-byte seed file."""
    raw = Path(path).read_bytes()
    if len(raw) != 32:
        raise ValueError(f"Signing key file must be 32 bytes, got {len(raw)}: {path}")
    return nacl.signing.SigningKey(raw)


def load_verify_key(path: Path) -> nacl.signing.VerifyKey:
    raw = Path(path).read_bytes()
    if len(raw) != 32:
        raise ValueError(f"Verify key file must be 32 bytes, got {len(raw)}: {path}")
    return nacl.signing.VerifyKey(raw)


def verify_key_from_hex(hex_key: str) -> nacl.signing.VerifyKey:
    try:
        raw = bytes.fromhex(hex_key)
    except ValueError as exc:
        raise ValueError(f"Verify key is not valid hex: {exc}") from exc
    if len(raw) != 32:
        raise ValueError(f"Verify key must be 32 bytes, got {len(raw)}")
    return nacl.signing.VerifyKey(raw)


# ---------------------------------------------------------------------------
# Cryptographic operations
# ---------------------------------------------------------------------------


def sign_bytes(sk: nacl.signing.SigningKey, data: bytes) -> bytes:
    """Sign *data* with *sk*; return the 64-byte Ed25519 signature."""
    return sk.sign(data).signature


def verify_bytes(vk: nacl.signing.VerifyKey, data: bytes, signature: bytes) -> None:
    """Verify *signature* over *data* with *vk*.

    Raises
    ------
    nacl.exceptions.BadSignatureError
        If the signature is invalid.
    """
    vk.verify(data, signature)


def verify_hex_signature(vk: nacl.signing.VerifyKey, data: bytes, signature_hex: str) -> None:
    try:
        sig = bytes.fromhex(signature_hex)
    except ValueError as exc:
        raise nacl.exceptions.BadSignatureError(f"Signature is not valid hex: {exc}") from exc
    verify_bytes(vk, data, sig)


# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------


def hash_verify_key(vk: nacl.signing.VerifyKey) -> str:
    """Return the hex SHA-256 digest of the raw 32-byte verify key bytes."""
    return hashlib.sha256(bytes(vk)).hexdigest()


def actor_address(vk: nacl.signing.VerifyKey | None) -> str:
    """``0x`` + 40 hex chars derived from *vk*; the zero address for ``None``."""
    if vk is None:
        return ZERO_ADDRESS
    return "0x" + hash_verify_key(vk)[:40]
