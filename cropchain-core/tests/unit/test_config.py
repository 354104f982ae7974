"""Tests for cropchain_core.config and cropchain_core.service."""
import json
from pathlib import Path

import pytest

from cropchain_core.anchor.ledger_anchor import AnchorDispatcher
from cropchain_core.config import config_from_dict, load_config
from cropchain_core.content.store import FilesystemContentStore, PinataContentStore
from cropchain_core.crypto.keyring import generate_keypair, save_signing_key
from cropchain_core.errors import ConfigError
from cropchain_core.service import LedgerService, build_anchor, build_content_store


def _write(path: Path, config: dict) -> Path:
    path.write_text(json.dumps(config))
    return path


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def test_defaults(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path / "c.json", {"db_path": "ledger.db"}))
    assert config.db_path == tmp_path / "ledger.db"
    assert config.duplicate_window_seconds == 300
    assert config.store_timeout_seconds == 5.0
    assert config.max_append_retries == 3
    assert config.ordering_policy == "permissive"
    assert config.log_level == "INFO"
    assert config.content_store.backend == "filesystem"
    assert config.content_store.dir == tmp_path / "certificates"
    assert not config.anchor.enabled
    assert config.anchor.mode == "background"
    assert config.certificate.issuer_key_path is None


def test_relative_paths_resolve_against_config_dir(tmp_path: Path) -> None:
    sub = tmp_path / "etc"
    sub.mkdir()
    config = load_config(_write(sub / "c.json", {
        "db_path": "../data/ledger.db",
        "anchor": {"enabled": True, "log_path": "anchor.jsonl"},
        "certificate": {"issuer_key_path": "/abs/issuer.key"},
    }))
    assert config.db_path == sub / "../data/ledger.db"
    assert config.anchor.log_path == sub / "anchor.jsonl"
    assert config.certificate.issuer_key_path == Path("/abs/issuer.key")


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Cannot read"):
        load_config(tmp_path / "absent.json")


def test_invalid_json(tmp_path: Path) -> None:
    (tmp_path / "c.json").write_text('{"db_path": "a", "db_path": "b"}')
    with pytest.raises(ConfigError, match="not valid JSON"):
        load_config(tmp_path / "c.json")


def test_non_object(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path / "c.json", ["db_path"]))


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"db_path": "x", "unknown_key": 1},
        {"db_path": "x", "ordering_policy": "strict"},
        {"db_path": "x", "max_append_retries": -1},
        {"db_path": "x", "content_store": {"backend": "s3"}},
        {"db_path": "x", "anchor": {"mode": "eventually"}},
        {"db_path": "x", "store_timeout_seconds": 0},
    ],
)
def test_schema_violations(tmp_path: Path, raw: dict) -> None:
    with pytest.raises(ConfigError, match="Invalid configuration"):
        config_from_dict(raw, tmp_path)


def test_pinata_jwt_from_environment(tmp_path: Path, monkeypatch) -> None:
    config = config_from_dict(
        {"db_path": "x", "content_store": {"backend": "pinata", "pinata_jwt_env": "TEST_JWT"}},
        tmp_path,
    )
    monkeypatch.delenv("TEST_JWT", raising=False)
    with pytest.raises(ConfigError, match="TEST_JWT"):
        config.content_store.pinata_jwt()
    monkeypatch.setenv("TEST_JWT", "secret")
    assert config.content_store.pinata_jwt() == "secret"
    assert isinstance(build_content_store(config), PinataContentStore)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def test_service_from_config_round_trip(tmp_path: Path, sowing_data: dict) -> None:
    config = config_from_dict({"db_path": "ledger.db"}, tmp_path)
    with LedgerService.from_config(config) as service:
        result = service.record("BATCH-1", "SOWING", "farmer", "farmer-7", sowing_data)
        assert not result.duplicate
        assert service.verify("BATCH-1").is_intact
        cert = service.certify("BATCH-1")
        assert [b.event_name for b in service.history("BATCH-1")] == ["SOWING", "CERTIFICATE_GENERATED"]
        assert service.streams()[0]["blocks"] == 2
    assert cert.gateway_url.startswith("file://")
    assert (tmp_path / "ledger.db").exists()


def test_service_close_clears_cache(tmp_path: Path) -> None:
    service = LedgerService.from_config(config_from_dict({"db_path": "ledger.db"}, tmp_path))
    service.record("BATCH-1", "SOWING", "farmer", "f1")
    assert len(service._cache) == 1
    service.close()
    assert len(service._cache) == 0


def test_service_with_anchor_and_issuer(tmp_path: Path) -> None:
    sk, _ = generate_keypair()
    save_signing_key(sk, tmp_path / "issuer.key")
    save_signing_key(generate_keypair()[0], tmp_path / "anchor.key")
    config = config_from_dict({
        "db_path": "ledger.db",
        "anchor": {
            "enabled": True, "mode": "inline",
            "signing_key_path": "anchor.key", "network": "testnet",
        },
        "certificate": {"issuer_key_path": "issuer.key"},
    }, tmp_path)
    assert isinstance(build_anchor(config), AnchorDispatcher)
    with LedgerService.from_config(config) as service:
        block = service.record("BATCH-1", "SOWING", "farmer", "f1").block
        doc = service.certify("BATCH-1").document
    assert block.external_anchor_ref is not None
    assert doc["issuer"] == bytes(sk.verify_key).hex()
    assert doc["anchor"] == {"enabled": True, "network": "testnet", "mode": "inline"}
    assert (tmp_path / "anchor_ledger.jsonl").read_text().count("\n") == 2


def test_missing_issuer_key_is_config_error(tmp_path: Path) -> None:
    config = config_from_dict(
        {"db_path": "ledger.db", "certificate": {"issuer_key_path": "missing.key"}}, tmp_path
    )
    with pytest.raises(ConfigError, match="certificate issuer"):
        LedgerService.from_config(config)


def test_filesystem_content_store_built_by_default(tmp_path: Path) -> None:
    config = config_from_dict({"db_path": "ledger.db"}, tmp_path)
    store = build_content_store(config)
    assert isinstance(store, FilesystemContentStore)
    assert store._root == tmp_path / "certificates"
    assert build_anchor(config) is None
