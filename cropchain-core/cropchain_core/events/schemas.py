"""Per-event JSON Schemas for ``event_data``.

Each lifecycle event carries a payload shaped by the form that reported it.
Schemas type the known fields but keep ``additionalProperties`` open, so new
fields can be recorded without a schema change.  Event names without a
dedicated schema only require a JSON object.
"""
from typing import Any

import jsonschema

from cropchain_core.errors import PayloadSchemaError
from cropchain_core.ledger.block import EventName


# ---------------------------------------------------------------------------
# Shared fragments
# ---------------------------------------------------------------------------

_NUMBER_OR_STRING = {"type": ["number", "string"]}
_FLAG = {"type": ["boolean", "string"]}

_FILE_METADATA = {
    "type": "object",
    "additionalProperties": {
        "type": "object",
        "required": ["cid"],
        "properties": {
            "cid": {"type": "string", "minLength": 1},
            "filename": {"type": "string"},
        },
    },
}

_COMMON = {
    "batchId": {"type": "string"},
    "date": {"type": "string"},
    "remarks": {"type": ["string", "null"]},
    "fileMetadata": _FILE_METADATA,
}


def _schema(required: list[str] | None = None, **properties: Any) -> dict[str, Any]:
    return {
        "type": "object",
        "required": required or [],
        "properties": {**_COMMON, **properties},
        "additionalProperties": True,
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

EVENT_SCHEMAS: dict[EventName, dict[str, Any]] = {
    EventName.SOWING: _schema(
        farmerId={"type": "string"},
        gpsLocation={"type": ["string", "object"]},
        sowingDate={"type": "string"},
        seedType={"type": "string"},
        seedVariety={"type": "string"},
        seedSource={"type": "string"},
        soilType={"type": "string"},
        firstIrrigationDone=_FLAG,
    ),
    EventName.TILLERING: _schema(
        tillerCount=_NUMBER_OR_STRING,
        irrigationGiven=_FLAG,
        waterAppliedLitres=_NUMBER_OR_STRING,
        fertilizerUsed=_FLAG,
        fertilizerType={"type": "string"},
        fertilizerQuantity=_NUMBER_OR_STRING,
    ),
    EventName.FLOWERING: _schema(
        pestAttack=_FLAG,
        pestType={"type": "string"},
        pestSeverity={"type": "string"},
        pesticideUsed=_FLAG,
        pesticideType={"type": "string"},
        pesticideQuantity=_NUMBER_OR_STRING,
        irrigationGiven=_FLAG,
    ),
    EventName.GRAIN_FILLING: _schema(
        cropColor={"type": "string"},
        moistureLevelPercent=_NUMBER_OR_STRING,
        lastIrrigationGiven={"type": "string"},
        weatherCondition={"type": "string"},
        lodging=_FLAG,
    ),
    EventName.HARVEST: _schema(
        harvestDate={"type": "string"},
        totalYieldKg=_NUMBER_OR_STRING,
        moisturePercentAtHarvest=_NUMBER_OR_STRING,
        grainGrade={"type": "string"},
        storageMethod={"type": "string"},
        warehouseId={"type": "string"},
    ),
    EventName.PRODUCT_CREATED: _schema(
        farmerId={"type": "string"},
        name={"type": "string"},
        category={"type": "string"},
        price={"type": "number", "minimum": 0},
        quantity={"type": "number", "minimum": 0},
        preferences={"type": "array"},
    ),
    EventName.SENT_TO_DISTRIBUTOR: _schema(distributorId={"type": "string"}),
    EventName.CHECKOUT_INITIATED_BY_DISTRIBUTOR: _schema(checkoutMeta={"type": "object"}),
    EventName.DISTRIBUTOR_LOGISTICS_ADDED: _schema(logistics={"type": ["object", "array"]}),
    EventName.RETAILER_CHECKOUT_INITIATED: _schema(paymentMeta={"type": "object"}),
    EventName.RETAILER_ACCEPTED_DELIVERY: _schema(
        finalQualityNotes={"type": ["string", "null"]},
        arrivalDefects={"type": "array"},
        weightDifference={"type": "number"},
        spoilagePercentage={"type": "number", "minimum": 0, "maximum": 100},
        finalPrice={"type": "number", "minimum": 0},
    ),
    EventName.CERTIFICATE_GENERATED: _schema(
        required=["certificateCid"],
        certificateCid={"type": "string", "minLength": 1},
        gatewayUrl={"type": "string"},
    ),
    EventName.QR_GENERATED: _schema(
        required=["certificateUrl"],
        certificateUrl={"type": "string", "minLength": 1},
        qrPath={"type": "string"},
        certificateCid={"type": "string"},
    ),
}

_GENERIC_SCHEMA: dict[str, Any] = {"type": "object"}


def schema_for(event_name: EventName) -> dict[str, Any]:
    return EVENT_SCHEMAS.get(event_name, _GENERIC_SCHEMA)


def validate_event_data(event_name: EventName, event_data: Any) -> None:
    """Validate *event_data* against the schema registered for *event_name*.

    Raises
    ------
    PayloadSchemaError
        If the payload does not conform.
    """
    try:
        jsonschema.validate(instance=event_data, schema=schema_for(event_name))
    except jsonschema.ValidationError as exc:
        location = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise PayloadSchemaError(
            f"{event_name.value} payload invalid at {location}: {exc.message}"
        ) from exc
