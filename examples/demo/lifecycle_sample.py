#!/usr/bin/env python3
"""lifecycle_sample.py: Record a full wheat batch lifecycle, verify and certify.

Walks one batch from sowing to retail delivery, shows that a resubmitted
event is suppressed, verifies the chain, compiles the certificate and
records the QR code event that points at it.

Usage:
    python examples/demo/setup_demo.py /tmp/cropchain
    python examples/demo/lifecycle_sample.py /tmp/cropchain/demo_config.json [STREAM_ID]
"""
import sys
from pathlib import Path

_REPO_ROOT = Path(__file__).parents[2]
sys.path.insert(0, str(_REPO_ROOT / "cropchain-core"))

from cropchain_core.certificate.compiler import verify_certificate  # noqa: E402
from cropchain_core.config import load_config  # noqa: E402
from cropchain_core.service import LedgerService  # noqa: E402

FARMER = ("farmer", "farmer-7")
DISTRIBUTOR = ("distributor", "dist-3")
RETAILER = ("retailer", "retail-12")


def lifecycle_events(stream_id: str) -> list[tuple]:
    """(event_name, (role, actor_id), event_data, content_references) in field order."""
    return [
        ("SOWING", FARMER, {
            "batchId": stream_id, "farmerId": "farmer-7", "gpsLocation": "29.6857,76.9905",
            "sowingDate": "2025-11-12", "seedType": "wheat", "seedVariety": "HD-2967",
            "seedSource": "certified", "soilType": "alluvial loam", "firstIrrigationDone": True,
        }, ["bafy-sowing-photo"]),
        ("TILLERING", FARMER, {
            "batchId": stream_id, "tillerCount": 6, "irrigationGiven": True,
            "waterAppliedLitres": 42000, "fertilizerUsed": True, "fertilizerType": "urea",
            "fertilizerQuantity": 55,
        }, []),
        ("FLOWERING", FARMER, {
            "batchId": stream_id, "pestAttack": False, "pesticideUsed": False, "irrigationGiven": True,
        }, []),
        ("GRAIN_FILLING", FARMER, {
            "batchId": stream_id, "cropColor": "golden", "moistureLevelPercent": 18,
            "weatherCondition": "dry", "lodging": False,
        }, []),
        ("HARVEST", FARMER, {
            "batchId": stream_id, "harvestDate": "2026-04-08", "totalYieldKg": 4800,
            "moisturePercentAtHarvest": 12.4, "grainGrade": "A", "storageMethod": "jute bags",
            "warehouseId": "WH-KNL-02",
        }, ["bafy-harvest-photo"]),
        ("PRODUCT_CREATED", FARMER, {
            "batchId": stream_id, "farmerId": "farmer-7", "name": "HD-2967 Wheat",
            "category": "grain", "price": 24.5, "quantity": 4800,
        }, []),
        ("SENT_TO_DISTRIBUTOR", FARMER, {"batchId": stream_id, "distributorId": "dist-3"}, []),
        ("DISTRIBUTOR_ACCEPTED", DISTRIBUTOR, {"batchId": stream_id}, []),
        ("PRODUCT_LISTED_IN_DISTRIBUTOR_MARKETPLACE", DISTRIBUTOR, {"batchId": stream_id}, []),
        ("RETAILER_REQUESTED_TO_BUY", RETAILER, {"batchId": stream_id}, []),
        ("DISTRIBUTOR_LOGISTICS_ADDED", DISTRIBUTOR, {
            "batchId": stream_id, "logistics": {"vehicle": "HR-55-AB-1234", "etaDays": 2},
        }, []),
        ("RETAILER_ACCEPTED_DELIVERY", RETAILER, {
            "batchId": stream_id, "arrivalDefects": [], "weightDifference": -3.5,
            "spoilagePercentage": 0.2, "finalPrice": 27,
        }, ["bafy-delivery-note"]),
    ]


def run_lifecycle(service: LedgerService, stream_id: str = "BATCH-1") -> dict:
    """Drive *service* through a full lifecycle and return what was produced."""
    blocks = []
    for event_name, (role, actor_id), data, refs in lifecycle_events(stream_id):
        result = service.record(stream_id, event_name, role, actor_id, data, refs)
        blocks.append(result.block)
        print(f"  {event_name:<42} {result.block.current_hash[:16]}…")

    role, actor_id = FARMER
    resubmitted = service.record(stream_id, "SOWING", role, actor_id, {"batchId": stream_id})
    print(f"  SOWING resubmitted -> duplicate={resubmitted.duplicate}")

    report = service.verify(stream_id)
    print(f"\n  Verified: {report.valid_blocks}/{report.total_blocks} blocks valid")

    certificate = service.certify(stream_id)
    print(f"\n  Certificate: {certificate.content_id}")
    print(f"  Gateway:     {certificate.gateway_url}")

    qr = service.record(
        stream_id, "QR_GENERATED", "system", "qr-service",
        {"certificateUrl": certificate.gateway_url, "certificateCid": certificate.content_id},
    )
    print(f"  QR event:    {qr.block.current_hash[:16]}…")

    return {
        "blocks": blocks,
        "duplicate": resubmitted,
        "report": report,
        "certificate": certificate,
        "qr": qr.block,
    }


def main() -> None:
    if len(sys.argv) < 2:
        print(__doc__, file=sys.stderr)
        sys.exit(1)
    config = load_config(Path(sys.argv[1]))
    stream_id = sys.argv[2] if len(sys.argv) > 2 else "BATCH-1"

    print("=" * 60)
    print(f"Wheat lifecycle for {stream_id}")
    print("=" * 60)
    with LedgerService.from_config(config) as service:
        outcome = run_lifecycle(service, stream_id)
        final = service.verify(stream_id)

    document = outcome["certificate"].document
    if "signature" in document:
        verify_certificate(document)
        print("\n  Certificate signature: valid")
    print(f"  Final chain: {final.total_blocks} blocks, intact={final.is_intact}")


if __name__ == "__main__":
    main()
