#!/usr/bin/env python3
"""setup_demo.py: One-time demo environment initialisation.

Creates issuer and anchor keys, the data directories and demo_config.json
under a base directory (default /tmp/cropchain).

Run once from the repo root:
    python examples/demo/setup_demo.py [BASE_DIR]

Re-running keeps existing keys so certificates issued earlier still verify.
"""
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Path bootstrap
# ---------------------------------------------------------------------------

_REPO_ROOT = Path(__file__).parents[2]
sys.path.insert(0, str(_REPO_ROOT / "cropchain-core"))

from cropchain_core.config import load_config, write_config  # noqa: E402
from cropchain_core.crypto.keyring import (  # noqa: E402
    actor_address,
    generate_keypair,
    load_signing_key,
    save_signing_key,
    save_verify_key,
)

_DEMO_DIR = Path(__file__).parent
_DEFAULT_BASE = Path("/tmp/cropchain")

_PARTICIPANTS = {
    "farmer-7": {"role": "farmer", "name": "Asha Devi", "village": "Karnal"},
    "dist-3": {"role": "distributor", "name": "Haryana Grain Logistics"},
    "retail-12": {"role": "retailer", "name": "Green Basket Stores"},
}


def _ensure_key(path: Path):
    if path.exists():
        print(f"  Kept existing key: {path}")
        return load_signing_key(path)
    sk, vk = generate_keypair()
    save_signing_key(sk, path)
    save_verify_key(vk, path.with_suffix(".pub"))
    print(f"  Generated: {path} (vk={bytes(vk).hex()[:16]}…)")
    return sk


def setup(base: Path) -> Path:
    """Create the demo layout under *base* and return the config path."""
    print("\n[1/3] Creating directories…")
    for d in (base / "data", base / "keys", base / "certificates"):
        d.mkdir(parents=True, exist_ok=True)
        print(f"  {d}")

    print("\n[2/3] Generating keys…")
    _ensure_key(base / "keys" / "issuer.key")
    anchor_sk = _ensure_key(base / "keys" / "anchor.key")
    print(f"  Anchor address: {actor_address(anchor_sk.verify_key)}")

    print("\n[3/3] Writing demo_config.json…")
    config = {
        "db_path": "data/ledger.db",
        "duplicate_window_seconds": 300,
        "ordering_policy": "crop-lifecycle",
        "log_level": "INFO",
        "content_store": {"backend": "filesystem", "dir": "certificates"},
        "anchor": {
            "enabled": True,
            "mode": "inline",
            "log_path": "data/anchor_ledger.jsonl",
            "signing_key_path": "keys/anchor.key",
            "network": "local",
        },
        "certificate": {
            "issuer_key_path": "keys/issuer.key",
            "participants": _PARTICIPANTS,
        },
    }
    config_path = base / "demo_config.json"
    write_config(config, config_path)
    load_config(config_path)  # fail here rather than in the demo
    print(f"  Written: {config_path}")
    return config_path


def main() -> None:
    base = Path(sys.argv[1]) if len(sys.argv) > 1 else _DEFAULT_BASE
    print("=" * 60)
    print("Cropchain Demo Setup")
    print("=" * 60)
    config_path = setup(base)
    print("\n" + "=" * 60)
    print("SETUP COMPLETE")
    print("=" * 60)
    print(f"""
Next steps:

  python {_DEMO_DIR / 'lifecycle_sample.py'} {config_path}

  # or drive the ledger by hand:
  cropchain --config {config_path} record BATCH-1 SOWING --role farmer --actor farmer-7 \\
      --data '{{"seedType": "wheat"}}'
  cropchain --config {config_path} verify BATCH-1
  cropchain --config {config_path} certify BATCH-1
""")


if __name__ == "__main__":
    main()
