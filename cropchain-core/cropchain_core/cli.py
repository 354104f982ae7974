"""Command line interface: ``cropchain``.

Subcommands:
  record STREAM EVENT --role ROLE --actor ID [--data JSON | --data-file PATH] [--cid CID ...]
  history STREAM
  verify STREAM [--json]
  certify STREAM
  streams
  keygen DIR

Exit codes: 0 ok, 1 error, 2 integrity failure, 3 retryable failure.
"""
import argparse
import json
import logging
import sys
from pathlib import Path

from cropchain_core.errors import CropchainError, IntegrityError, ValidationError

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTEGRITY = 2
EXIT_RETRYABLE = 3

DEFAULT_CONFIG = Path("cropchain.json")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _read_payload(args: argparse.Namespace) -> dict:
    from cropchain_core.ledger.canonical import parse_strict

    if args.data is not None and args.data_file is not None:
        raise ValidationError("Use either --data or --data-file, not both")
    if args.data_file is not None:
        try:
            raw = args.data_file.read_bytes()
        except OSError as exc:
            raise ValidationError(f"Cannot read {args.data_file}: {exc}") from exc
    elif args.data is not None:
        raw = args.data
    else:
        return {}
    payload = parse_strict(raw)
    if not isinstance(payload, dict):
        raise ValidationError("Event data must be a JSON object")
    return payload


def cmd_record(service, args: argparse.Namespace) -> int:
    result = service.record(
        args.stream,
        args.event,
        args.role,
        args.actor,
        _read_payload(args),
        args.cid or None,
    )
    block = result.block
    status = "duplicate" if result.duplicate else "recorded"
    print(f"{status}: {block.event_name} {block.current_hash}")
    print(f"  previous: {block.previous_hash}")
    if block.external_anchor_ref:
        print(f"  anchor:   {block.external_anchor_ref}")
    return EXIT_OK


def cmd_history(service, args: argparse.Namespace) -> int:
    blocks = service.history(args.stream)
    if not blocks:
        print(f"No blocks recorded for stream {args.stream}", file=sys.stderr)
        return EXIT_ERROR
    for i, block in enumerate(blocks):
        print(f"[{i}] {block.timestamp} {block.event_name} {block.actor_role}/{block.actor_id}")
        print(f"    hash: {block.current_hash}")
        if block.content_references:
            print(f"    cids: {', '.join(block.content_references)}")
    return EXIT_OK


def cmd_verify(service, args: argparse.Namespace) -> int:
    report = service.verify(args.stream)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        for b in report.blocks:
            mark = "OK " if b.is_valid else "BAD"
            print(f"{mark} [{b.index}] {b.event_name} {b.current_hash}")
            if not b.is_valid:
                print(f"    {b.reason}: {b.message}")
        print(
            f"\n{report.valid_blocks}/{report.total_blocks} blocks valid"
            f" ({'intact' if report.is_intact else 'TAMPERED'})"
        )
    return EXIT_OK if report.is_intact else EXIT_INTEGRITY


def cmd_certify(service, args: argparse.Namespace) -> int:
    result = service.certify(args.stream)
    print(f"certificate: {result.content_id}")
    print(f"  url:   {result.gateway_url}")
    print(f"  block: {result.block.current_hash}")
    return EXIT_OK


def cmd_streams(service, args: argparse.Namespace) -> int:
    for s in service.streams():
        print(f"{s['stream_id']}\t{s['blocks']}\t{s['latest_timestamp']}")
    return EXIT_OK


def cmd_keygen(args: argparse.Namespace) -> int:
    from cropchain_core.crypto.keyring import generate_keypair, save_signing_key, save_verify_key

    out_dir: Path = args.dir
    out_dir.mkdir(parents=True, exist_ok=True)
    for name in ("issuer", "anchor"):
        key_path = out_dir / f"{name}.key"
        if key_path.exists():
            print(f"  exists: {key_path} (kept)")
            continue
        sk, vk = generate_keypair()
        save_signing_key(sk, key_path)
        save_verify_key(vk, out_dir / f"{name}.pub")
        print(f"  {name}: {key_path} (public key {bytes(vk).hex()})")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cropchain", description="Tamper-evident ledger for crop batch lifecycles."
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Path to config JSON")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("record", help="Append a lifecycle event")
    p.add_argument("stream")
    p.add_argument("event")
    p.add_argument("--role", required=True)
    p.add_argument("--actor", required=True)
    p.add_argument("--data", help="Event data as a JSON object")
    p.add_argument("--data-file", type=Path, help="File holding the event data JSON")
    p.add_argument("--cid", action="append", help="Content reference (repeatable)")
    p.set_defaults(func=cmd_record)

    p = sub.add_parser("history", help="List a stream's blocks in order")
    p.add_argument("stream")
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("verify", help="Verify a stream's hash chain")
    p.add_argument("stream")
    p.add_argument("--json", action="store_true", help="Print the report as JSON")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("certify", help="Compile and chain a provenance certificate")
    p.add_argument("stream")
    p.set_defaults(func=cmd_certify)

    p = sub.add_parser("streams", help="List recorded streams")
    p.set_defaults(func=cmd_streams)

    p = sub.add_parser("keygen", help="Generate issuer and anchor keys")
    p.add_argument("dir", type=Path)
    p.set_defaults(func=None)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``cropchain`` command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "keygen":
        logging.basicConfig(level=args.log_level or "INFO")
        return cmd_keygen(args)

    from cropchain_core.config import load_config
    from cropchain_core.service import LedgerService

    try:
        config = load_config(args.config)
        logging.basicConfig(
            level=args.log_level or config.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        with LedgerService.from_config(config) as service:
            return args.func(service, args)
    except IntegrityError as exc:
        print(f"INTEGRITY FAILURE: {exc}", file=sys.stderr)
        return EXIT_INTEGRITY
    except CropchainError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_RETRYABLE if exc.retryable else EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
