#!/usr/bin/env python3
"""Attack: Race concurrent appends to fork a batch's chain.

Several writers, each with its own service instance (its own cache and
locks, as separate processes would have), append to the same stream at the
same time.  Without serialisation two of them would read the same previous
hash and write sibling blocks.  The store's precondition and fork-guard
indexes turn every such race into a retry.

Expected outcome: one linear chain, every block valid -> attack BLOCKED.
Exit 0 if blocked (boundary held), exit 1 if breach.

Usage:
    python examples/attacks/fork_race.py [WRITERS] [APPENDS_PER_WRITER]
"""
import sys
import tempfile
import threading
from pathlib import Path

_REPO_ROOT = Path(__file__).parents[2]
sys.path.insert(0, str(_REPO_ROOT / "cropchain-core"))

from cropchain_core.config import config_from_dict  # noqa: E402
from cropchain_core.service import LedgerService  # noqa: E402


def main() -> None:
    writers = int(sys.argv[1]) if len(sys.argv) > 1 else 6
    per_writer = int(sys.argv[2]) if len(sys.argv) > 2 else 10

    print("=" * 60)
    print("ATTACK: Fork Race")
    print("=" * 60)
    print(f"Scenario: {writers} independent writers append {per_writer} events each")
    print("          to BATCH-1 concurrently, hoping to create sibling blocks.")
    print()

    with tempfile.TemporaryDirectory() as tmp:
        config = config_from_dict({"db_path": "ledger.db", "max_append_retries": 100}, Path(tmp))
        services = [LedgerService.from_config(config) for _ in range(writers)]
        failures: list[Exception] = []
        start = threading.Barrier(writers)

        def writer(n: int) -> None:
            start.wait()
            for i in range(per_writer):
                try:
                    services[n].record(
                        "BATCH-1", "DISTRIBUTOR_LOGISTICS_ADDED", "distributor", f"writer-{n}-{i}"
                    )
                except Exception as exc:  # reported below
                    failures.append(exc)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(writers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        chain = services[0].history("BATCH-1")
        report = services[0].verify("BATCH-1")
        for s in services:
            s.close()

    parents = [b.previous_hash for b in chain]
    print(f"  Blocks written:      {len(chain)} (expected {writers * per_writer})")
    print(f"  Failed appends:      {len(failures)}")
    print(f"  Distinct parents:    {len(set(parents))}")
    print(f"  Verifier:            {report.valid_blocks}/{report.total_blocks} valid")

    linear = len(set(parents)) == len(parents) and report.is_intact
    if linear and len(chain) + len(failures) == writers * per_writer:
        print("\nRESULT: Attack BLOCKED. Chain stayed linear.")
        sys.exit(0)
    print("\nRESULT: BREACH - the chain forked.", file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
