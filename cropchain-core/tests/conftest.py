"""Shared pytest fixtures for cropchain-core tests."""
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cropchain_core.crypto.keyring import generate_keypair


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Deterministic clock; each call returns the current instant."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 8, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Keypair fixtures (session-scoped for speed)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def issuer_keypair():
    """Ed25519 keypair that signs certificates."""
    return generate_keypair()


@pytest.fixture(scope="session")
def anchor_keypair():
    """Ed25519 keypair that signs anchor records."""
    return generate_keypair()


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_store(tmp_path: Path):
    """A fresh LedgerStore backed by a temp SQLite file."""
    from cropchain_core.ledger.store_sqlite import LedgerStore

    return LedgerStore(tmp_path / "ledger.db")


@pytest.fixture
def cache():
    from cropchain_core.ledger.cache import LatestHashCache

    return LatestHashCache()


@pytest.fixture
def appender(tmp_store, cache, clock):
    """AppendService over the temp store with the fake clock and no anchor."""
    from cropchain_core.ledger.append import AppendService

    return AppendService(tmp_store, cache, clock=clock)


@pytest.fixture
def content_store(tmp_path: Path):
    from cropchain_core.content.store import FilesystemContentStore

    return FilesystemContentStore(tmp_path / "certificates")


# ---------------------------------------------------------------------------
# Sample payloads
# ---------------------------------------------------------------------------


@pytest.fixture
def sowing_data() -> dict:
    return {
        "batchId": "BATCH-1",
        "farmerId": "farmer-7",
        "seedType": "wheat",
        "seedVariety": "HD-2967",
        "sowingDate": "2026-01-01",
        "soilType": "loam",
    }


@pytest.fixture
def harvest_data() -> dict:
    return {
        "batchId": "BATCH-1",
        "harvestDate": "2026-04-20",
        "totalYieldKg": 1200,
        "moisturePercentAtHarvest": 12.5,
        "grainGrade": "A",
    }
