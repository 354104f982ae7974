#!/usr/bin/env python3
"""Attack: Rewrite a stored block directly in the ledger database.

An attacker with write access to the SQLite file inflates the harvest yield
of a recorded batch.  The verifier recomputes every block hash and flags the
edited block; certification of the tampered chain is refused.

Expected outcome: hash-mismatch reported, certificate refused -> attack DETECTED.
Exit 0 if detected (boundary held), exit 1 if breach.

Usage:
    python examples/attacks/tamper_block.py
"""
import json
import sqlite3
import sys
import tempfile
from pathlib import Path

_REPO_ROOT = Path(__file__).parents[2]
sys.path.insert(0, str(_REPO_ROOT / "cropchain-core"))

from cropchain_core.config import config_from_dict  # noqa: E402
from cropchain_core.errors import IntegrityError  # noqa: E402
from cropchain_core.service import LedgerService  # noqa: E402


def main() -> None:
    print("=" * 60)
    print("ATTACK: Tamper Block")
    print("=" * 60)
    print("Scenario: An attacker edits the HARVEST block's yield in the")
    print("          database to sell more grain under the batch's name.")
    print()

    with tempfile.TemporaryDirectory() as tmp:
        base = Path(tmp)
        config = config_from_dict({"db_path": "ledger.db"}, base)
        with LedgerService.from_config(config) as service:
            service.record("BATCH-1", "SOWING", "farmer", "farmer-7", {"seedType": "wheat"})
            harvest = service.record(
                "BATCH-1", "HARVEST", "farmer", "farmer-7", {"totalYieldKg": 4800, "grainGrade": "A"}
            ).block
            service.record("BATCH-1", "SENT_TO_DISTRIBUTOR", "farmer", "farmer-7", {"distributorId": "dist-3"})
            print(f"Recorded 3 blocks; HARVEST hash {harvest.current_hash[:16]}…")

            # Attacker edits the row in place.
            conn = sqlite3.connect(str(base / "ledger.db"), isolation_level=None)
            conn.execute(
                "UPDATE ledger_blocks SET event_data_json = ? WHERE current_hash = ?",
                (json.dumps({"grainGrade": "A", "totalYieldKg": 9600}), harvest.current_hash),
            )
            conn.close()
            print("Attacker set totalYieldKg 4800 -> 9600 in the database.")
            print()

            report = service.verify("BATCH-1")
            for b in report.blocks:
                print(f"  [{b.index}] {b.event_name:<22} {b.status:<8} {b.reason or ''}")
            print()

            try:
                service.certify("BATCH-1")
            except IntegrityError as exc:
                print(f"Certification refused: {exc}")
                refused = True
            else:
                refused = False

    bad = report.first_invalid()
    if bad is not None and bad.reason == "hash-mismatch" and refused:
        print("\nRESULT: Attack DETECTED. Boundary held.")
        sys.exit(0)
    print("\nRESULT: BREACH - tampered block was not detected.", file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
