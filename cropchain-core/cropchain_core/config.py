"""JSON runtime configuration.

Example ``cropchain.json``::

    {
      "db_path": "data/ledger.db",
      "duplicate_window_seconds": 300,
      "ordering_policy": "permissive",
      "content_store": {"backend": "filesystem", "dir": "data/certificates"},
      "anchor": {"enabled": true, "mode": "inline", "log_path": "data/anchor.jsonl"},
      "certificate": {"issuer_key_path": "keys/issuer.key"}
    }

Relative paths resolve against the directory holding the config file.  The
Pinata JWT is never stored in the file; ``content_store.pinata_jwt_env`` names
the environment variable it is read from.
"""
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema

from cropchain_core.content.store import DEFAULT_PINATA_API_URL
from cropchain_core.errors import ConfigError, ValidationError
from cropchain_core.ledger.canonical import parse_strict


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_POSITIVE = {"type": "number", "exclusiveMinimum": 0}

CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["db_path"],
    "additionalProperties": False,
    "properties": {
        "db_path": {"type": "string", "minLength": 1},
        "duplicate_window_seconds": {"type": "number", "minimum": 0},
        "store_timeout_seconds": _POSITIVE,
        "max_append_retries": {"type": "integer", "minimum": 0},
        "ordering_policy": {"enum": ["permissive", "crop-lifecycle"]},
        "log_level": {"enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "content_store": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "backend": {"enum": ["filesystem", "pinata"]},
                "dir": {"type": "string", "minLength": 1},
                "gateway_base": {"type": "string"},
                "pinata_jwt_env": {"type": "string", "minLength": 1},
                "api_url": {"type": "string"},
                "timeout_seconds": _POSITIVE,
            },
        },
        "anchor": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "enabled": {"type": "boolean"},
                "mode": {"enum": ["inline", "background"]},
                "log_path": {"type": "string", "minLength": 1},
                "signing_key_path": {"type": "string", "minLength": 1},
                "network": {"type": "string", "minLength": 1},
                "timeout_seconds": _POSITIVE,
                "max_attempts": {"type": "integer", "minimum": 1},
                "backoff_seconds": {"type": "number", "minimum": 0},
            },
        },
        "certificate": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "issuer_key_path": {"type": "string", "minLength": 1},
                "participants": {
                    "type": "object",
                    "additionalProperties": {"type": "object"},
                },
            },
        },
    },
}


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentStoreConfig:
    backend: str = "filesystem"
    dir: Path = Path("certificates")
    gateway_base: str | None = None
    pinata_jwt_env: str = "PINATA_JWT"
    api_url: str = DEFAULT_PINATA_API_URL
    timeout_seconds: float = 30.0

    def pinata_jwt(self) -> str:
        """Read the Pinata JWT from the configured environment variable.

        Raises
        ------
        ConfigError
            If the variable is unset or empty.
        """
        jwt = os.environ.get(self.pinata_jwt_env, "")
        if not jwt:
            raise ConfigError(f"Environment variable {self.pinata_jwt_env} is not set")
        return jwt


@dataclass(frozen=True)
class AnchorConfig:
    enabled: bool = False
    mode: str = "background"
    log_path: Path | None = None
    signing_key_path: Path | None = None
    network: str = "local"
    timeout_seconds: float = 2.0
    max_attempts: int = 3
    backoff_seconds: float = 0.2


@dataclass(frozen=True)
class CertificateConfig:
    issuer_key_path: Path | None = None
    participants: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class LedgerConfig:
    db_path: Path
    duplicate_window_seconds: float = 300.0
    store_timeout_seconds: float = 5.0
    max_append_retries: int = 3
    ordering_policy: str = "permissive"
    log_level: str = "INFO"
    content_store: ContentStoreConfig = field(default_factory=ContentStoreConfig)
    anchor: AnchorConfig = field(default_factory=AnchorConfig)
    certificate: CertificateConfig = field(default_factory=CertificateConfig)
    base_dir: Path = field(default_factory=Path.cwd)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _resolve(base_dir: Path, value: str | None) -> Path | None:
    if value is None:
        return None
    p = Path(value).expanduser()
    return p if p.is_absolute() else base_dir / p


def config_from_dict(raw: dict[str, Any], base_dir: Path) -> LedgerConfig:
    """Validate *raw* and build a :class:`LedgerConfig`.

    Raises
    ------
    ConfigError
        If *raw* does not match :data:`CONFIG_SCHEMA`.
    """
    try:
        jsonschema.validate(instance=raw, schema=CONFIG_SCHEMA)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ConfigError(f"Invalid configuration at {location}: {exc.message}") from exc

    cs = raw.get("content_store", {})
    content_store = ContentStoreConfig(
        backend=cs.get("backend", "filesystem"),
        dir=_resolve(base_dir, cs.get("dir", "certificates")),
        gateway_base=cs.get("gateway_base"),
        pinata_jwt_env=cs.get("pinata_jwt_env", "PINATA_JWT"),
        api_url=cs.get("api_url", DEFAULT_PINATA_API_URL),
        timeout_seconds=float(cs.get("timeout_seconds", 30.0)),
    )

    an = raw.get("anchor", {})
    anchor = AnchorConfig(
        enabled=an.get("enabled", False),
        mode=an.get("mode", "background"),
        log_path=_resolve(base_dir, an.get("log_path", "anchor_ledger.jsonl")),
        signing_key_path=_resolve(base_dir, an.get("signing_key_path")),
        network=an.get("network", "local"),
        timeout_seconds=float(an.get("timeout_seconds", 2.0)),
        max_attempts=an.get("max_attempts", 3),
        backoff_seconds=float(an.get("backoff_seconds", 0.2)),
    )

    ce = raw.get("certificate", {})
    certificate = CertificateConfig(
        issuer_key_path=_resolve(base_dir, ce.get("issuer_key_path")),
        participants=dict(ce.get("participants", {})),
    )

    return LedgerConfig(
        db_path=_resolve(base_dir, raw["db_path"]),
        duplicate_window_seconds=float(raw.get("duplicate_window_seconds", 300)),
        store_timeout_seconds=float(raw.get("store_timeout_seconds", 5.0)),
        max_append_retries=raw.get("max_append_retries", 3),
        ordering_policy=raw.get("ordering_policy", "permissive"),
        log_level=raw.get("log_level", "INFO"),
        content_store=content_store,
        anchor=anchor,
        certificate=certificate,
        base_dir=base_dir,
    )


def load_config(path: Path) -> LedgerConfig:
    """Load and validate a JSON config file.

    Raises
    ------
    ConfigError
        If the file cannot be read, is not strict JSON, or fails validation.
    """
    path = Path(path)
    try:
        raw_bytes = path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    try:
        raw = parse_strict(raw_bytes)
    except ValidationError as exc:
        raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return config_from_dict(raw, path.resolve().parent)


def write_config(config: dict[str, Any], path: Path) -> None:
    """Write *config* as indented JSON (used by setup scripts)."""
    path.write_text(json.dumps(config, indent=2) + "\n")
