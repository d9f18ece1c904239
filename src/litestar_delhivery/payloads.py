"""Carrier payload builders and response parsers."""

from __future__ import annotations

import base64
import binascii
import json
import re
from datetime import UTC, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.enums import PaymentMode
from litestar_delhivery.exceptions import ValidationError
from litestar_delhivery.models import (
    OrderDetails,
    PackageProfile,
    PackingSlip,
    ScanEntry,
    ServiceabilityResult,
    TrackingSnapshot,
)

# Carrier timestamps without an offset are Indian Standard Time.
CARRIER_TZ = timezone(timedelta(hours=5, minutes=30), "IST")

MAX_REFERENCE_LENGTH = 20

# Item count -> package profile (grams, centimetres).
PACKAGE_PROFILES: dict[int, tuple[int, int, int, int]] = {
    1: (70, 16, 12, 3),
    2: (140, 24, 18, 3),
    3: (210, 24, 18, 5),
    4: (280, 24, 18, 6),
    5: (350, 30, 20, 6),
    6: (420, 30, 20, 8),
    7: (490, 30, 24, 8),
    8: (560, 30, 24, 10),
    9: (630, 36, 24, 10),
    10: (700, 36, 24, 12),
}
GRAMS_PER_EXTRA_ITEM = 70
MAX_PACKAGE_DIMENSIONS = (60, 40, 30)

# Fields the edit endpoint accepts.
EDITABLE_FIELDS = frozenset(
    {
        "name",
        "phone",
        "add",
        "products_desc",
        "weight",
        "shipment_height",
        "shipment_width",
        "shipment_length",
        "pt",
        "cod",
        "gst_number",
        "return_add",
        "return_pin",
        "return_city",
        "return_state",
        "return_country",
        "return_name",
        "return_phone",
    }
)
_PHONE_FIELDS = frozenset({"phone", "return_phone"})
_NUMERIC_FIELDS = frozenset(
    {"weight", "shipment_height", "shipment_width", "shipment_length", "cod"}
)

_MANIFEST_ERROR_KEYS = (
    "error",
    "errors",
    "message",
    "messages",
    "remarks",
    "remark",
    "status_text",
    "statusmessage",
    "status_message",
)


def sanitize_reference(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9\-]", "", value or "")[:MAX_REFERENCE_LENGTH]


def sanitize_phone(value: str) -> str:
    return re.sub(r"\D+", "", value or "")[:15]


def sanitize_awb(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "", value or "")[:20]


def sanitize_pin(value: str) -> str:
    return re.sub(r"\D+", "", value or "")[:10]


def truncate(value: str, limit: int = 200) -> str:
    return " ".join(str(value or "").split())[:limit]


def format_decimal(value: Any, places: int = 2) -> str:
    exponent = Decimal(1).scaleb(-places)
    return str(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def validate_pincode(pincode: str) -> str:
    digits = re.sub(r"\D", "", pincode or "")
    if len(digits) != 6:
        raise ValidationError(
            "pincode", "Please provide a valid 6-digit pincode."
        )
    return digits


def require_awb(awb: str) -> str:
    cleaned = sanitize_awb(awb)
    if not cleaned:
        raise ValidationError("awb", "A valid AWB is required.")
    return cleaned


def parse_carrier_datetime(value: Any) -> datetime | None:
    """Parse a carrier timestamp; naive values are taken as IST."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=CARRIER_TZ)
    return parsed


def resolve_package_profile(total_quantity: int) -> PackageProfile | None:
    """Package profile for ``total_quantity`` items, None when empty."""
    if total_quantity <= 0:
        return None
    if total_quantity in PACKAGE_PROFILES:
        weight, length, width, height = PACKAGE_PROFILES[total_quantity]
    else:
        largest = max(PACKAGE_PROFILES)
        weight, length, width, height = PACKAGE_PROFILES[largest]
        extra = total_quantity - largest
        max_length, max_width, max_height = MAX_PACKAGE_DIMENSIONS
        weight += extra * GRAMS_PER_EXTRA_ITEM
        length = min(max_length, length + (extra // 5) * 6)
        width = min(max_width, width + (extra // 5) * 4)
        height = min(max_height, height + (extra // 3) * 2)
    return PackageProfile(
        weight=Decimal(weight),
        length=Decimal(length),
        width=Decimal(width),
        height=Decimal(height),
        item_count=total_quantity,
    )


def _return_details(config: DelhiveryConfig) -> dict[str, str]:
    details = {
        "return_add": truncate(config.return_address),
        "return_city": truncate(config.return_city, 50),
        "return_state": truncate(config.return_state, 50),
        "return_country": truncate(config.return_country, 50),
        "return_pin": sanitize_pin(config.return_pin),
        "return_phone": sanitize_phone(config.return_phone),
        "seller_name": truncate(config.seller_name),
        "seller_add": truncate(config.seller_address),
    }
    return {key: value for key, value in details.items() if value}


def build_manifest_shipment(
    order: OrderDetails,
    reference: str,
    config: DelhiveryConfig,
    *,
    now: datetime | None = None,
) -> tuple[dict[str, Any], PackageProfile]:
    """Build one ``shipments[]`` entry for the manifest call.

    Returns the entry and the package profile it was sized from.
    """
    quantity = order.total_quantity
    profile = resolve_package_profile(quantity)
    if profile is None:  # pragma: no cover - total_quantity is >= 1
        raise ValidationError("items", "Order has no items to ship.")
    payment_mode = order.payment_mode
    cod_amount = order.total if payment_mode == PaymentMode.COD else 0
    created = order.created_at or now or datetime.now(tz=UTC)
    if created.tzinfo is not None:
        created = created.astimezone(UTC)

    shipment: dict[str, Any] = {
        "order": reference,
        "name": truncate(order.name, 100),
        "add": truncate(order.address),
        "city": truncate(order.city, 50),
        "state": truncate(order.state, 50),
        "country": truncate(order.country or "India", 50),
        "pin": sanitize_pin(order.pin),
        "phone": sanitize_phone(order.phone),
        "payment_mode": (
            "Prepaid" if payment_mode == PaymentMode.PREPAID else "COD"
        ),
        "products_desc": truncate(
            ", ".join(item.name for item in order.items[:4])
        ),
        "total_amount": format_decimal(order.total),
        "cod_amount": format_decimal(cod_amount),
        "quantity": str(quantity),
        "weight": format_decimal(profile.chargeable_weight(), 0),
        "shipment_length": format_decimal(profile.length, 0),
        "shipment_width": format_decimal(profile.width, 0),
        "shipment_height": format_decimal(profile.height, 0),
        "order_date": created.strftime("%Y-%m-%d %H:%M:%S"),
    }
    if order.email:
        shipment["email"] = order.email.strip()
    if config.shipping_mode:
        shipment["shipping_mode"] = truncate(config.shipping_mode, 20)
    shipment.update(_return_details(config))
    return shipment, profile


def build_return_shipment(
    order: OrderDetails, reference: str, config: DelhiveryConfig
) -> tuple[dict[str, Any], PackageProfile]:
    """Reverse pickup entry: the customer ships back to the warehouse."""
    quantity = order.total_quantity
    profile = resolve_package_profile(quantity)
    if profile is None:  # pragma: no cover - total_quantity is >= 1
        raise ValidationError("items", "Order has no items to return.")
    shipment: dict[str, Any] = {
        "order": reference,
        "payment_mode": str(PaymentMode.PICKUP),
        "name": truncate(order.name, 100),
        "add": truncate(order.address),
        "city": truncate(order.city, 50),
        "state": truncate(order.state, 50),
        "country": truncate(order.country or "India", 50),
        "pin": sanitize_pin(order.pin),
        "phone": sanitize_phone(order.phone),
        "weight": format_decimal(profile.weight, 0),
        "return_name": truncate(config.seller_name or config.pickup_location),
    }
    shipment.update(
        {
            key: value
            for key, value in _return_details(config).items()
            if key.startswith("return_")
        }
    )
    return shipment, profile


def build_manifest_form(
    shipments: list[dict[str, Any]], config: DelhiveryConfig
) -> dict[str, str]:
    """Form body for ``/api/cmu/create.json`` (JSON inside ``data``)."""
    payload: dict[str, Any] = {"shipments": shipments}
    pickup = truncate(config.pickup_location, 100)
    if pickup:
        payload["pickup_location"] = {"name": pickup}
    form = {
        "format": "json",
        "data": json.dumps(payload, ensure_ascii=False),
    }
    if config.client_code:
        form["client"] = config.client_code
    return form


def _positive_measure(key: str, value: Any) -> str:
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise ValidationError(key, f"{key} must be a finite number")
        formatted = format_decimal(amount, 0 if key == "weight" else 2)
    except InvalidOperation as exc:
        raise ValidationError(key, f"{key} must be numeric") from exc
    if key == "cod":
        if amount < 0:
            raise ValidationError(key, "cod cannot be negative")
    elif Decimal(formatted) <= 0:
        raise ValidationError(key, f"{key} must be greater than zero")
    return formatted


def build_update_payload(awb: str, updates: dict[str, Any]) -> dict[str, Any]:
    """Edit payload restricted to fields the carrier accepts.

    Weight and dimensions must be positive after rounding to what the
    carrier stores.
    """
    payload: dict[str, Any] = {"waybill": awb}
    for key, value in updates.items():
        if key not in EDITABLE_FIELDS or value is None or value == "":
            continue
        if key in _PHONE_FIELDS:
            payload[key] = sanitize_phone(str(value))
        elif key in _NUMERIC_FIELDS:
            payload[key] = _positive_measure(key, value)
        else:
            payload[key] = truncate(str(value))
    return payload


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return [value]


def normalize_manifest_packages(data: Any) -> list[dict[str, str]]:
    """Package entries carrying a waybill, from any known response key."""
    if not isinstance(data, dict):
        return []
    candidates: list[Any] = []
    for key in ("packages", "package", "upload_wbn"):
        value = data.get(key)
        if value:
            candidates.extend(_as_list(value))
    packages = []
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        entry = {str(k).lower(): v for k, v in candidate.items()}
        waybill = entry.get("waybill") or entry.get("awb")
        if waybill:
            packages.append(
                {
                    "waybill": str(waybill).strip(),
                    "status": str(entry.get("status") or "").strip(),
                    "remarks": str(entry.get("remarks") or "").strip(),
                    "refnum": str(entry.get("refnum") or "").strip(),
                }
            )
    return packages


def _collect_strings(value: Any, into: list[str]) -> None:
    if isinstance(value, str):
        into.append(value)
    elif isinstance(value, dict):
        for item in value.values():
            _collect_strings(item, into)
    elif isinstance(value, list):
        for item in value:
            _collect_strings(item, into)


def extract_manifest_errors(data: Any) -> list[str]:
    """Every error-ish message the carrier put in a response body."""
    if not isinstance(data, dict):
        return []
    normalized = {str(k).lower(): v for k, v in data.items()}
    messages: list[str] = []
    for key in _MANIFEST_ERROR_KEYS:
        if normalized.get(key):
            _collect_strings(normalized[key], messages)
    success = normalized.get("success")
    failed = success is not None and str(success).lower() in ("false", "0")
    if failed and not messages:
        messages.append("Delhivery marked the request as unsuccessful.")
    unique: list[str] = []
    for message in messages:
        cleaned = re.sub(r"<[^>]+>", "", message).strip()
        if cleaned and cleaned not in unique:
            unique.append(cleaned)
    return unique


def parse_waybills(data: Any) -> list[str]:
    """Waybill numbers from the bulk waybill endpoint."""
    raw: Any = data
    if isinstance(data, dict):
        raw = data.get("waybill", data.get("waybills", []))
    if isinstance(raw, str):
        raw = raw.split(",")
    return [str(w).strip() for w in _as_list(raw) if str(w).strip()]


def parse_serviceability(pincode: str, data: Any) -> ServiceabilityResult:
    codes = data.get("delivery_codes", []) if isinstance(data, dict) else []
    has_embargo = False
    remarks: list[str] = []
    for code in codes:
        postal = code.get("postal_code", {}) if isinstance(code, dict) else {}
        if postal.get("repl") == "Embargo":
            has_embargo = True
        if postal.get("remarks"):
            remarks.append(str(postal["remarks"]))
    return ServiceabilityResult(
        pincode=pincode,
        is_serviceable=bool(codes) and not has_embargo,
        has_embargo=has_embargo,
        remarks=remarks,
    )


def _parse_tracking_entry(shipment: dict[str, Any]) -> TrackingSnapshot:
    status = shipment.get("Status") or {}
    scans = []
    for scan in shipment.get("Scans") or []:
        detail = scan.get("ScanDetail") if isinstance(scan, dict) else None
        if not isinstance(detail, dict):
            continue
        scans.append(
            ScanEntry(
                status=str(detail.get("Scan") or ""),
                datetime=str(detail.get("ScanDateTime") or ""),
                location=str(detail.get("ScannedLocation") or ""),
                status_type=str(detail.get("ScanType") or ""),
                remarks=str(detail.get("Instructions") or ""),
            )
        )
    return TrackingSnapshot(
        awb=str(shipment.get("AWB") or ""),
        status=str(status.get("Status") or ""),
        status_type=str(status.get("StatusType") or ""),
        status_code=str(
            shipment.get("NSLCode") or status.get("StatusCode") or ""
        ),
        status_datetime=str(status.get("StatusDateTime") or ""),
        status_location=str(status.get("StatusLocation") or ""),
        instructions=str(status.get("Instructions") or ""),
        expected_delivery=str(shipment.get("ExpectedDeliveryDate") or ""),
        reference_no=str(shipment.get("ReferenceNo") or ""),
        scans=scans,
    )


def parse_tracking(data: Any) -> list[TrackingSnapshot]:
    """``ShipmentData[].Shipment`` entries as snapshots."""
    if not isinstance(data, dict):
        return []
    snapshots = []
    for item in data.get("ShipmentData") or []:
        shipment = item.get("Shipment") if isinstance(item, dict) else None
        if isinstance(shipment, dict):
            snapshots.append(_parse_tracking_entry(shipment))
    return snapshots


def _pdf_from_string(value: str) -> bytes | None:
    match = re.match(r"^data:application/pdf;base64,(.+)$", value, re.I)
    candidate = match.group(1) if match else value
    if not match and not re.fullmatch(r"[A-Za-z0-9+/=]{100,}", value):
        return None
    try:
        decoded = base64.b64decode(candidate, validate=True)
    except (binascii.Error, ValueError):
        return None
    return decoded if decoded.startswith(b"%PDF") else None


def extract_label(
    awb: str, content: bytes, content_type: str = ""
) -> PackingSlip | None:
    """Find the label in a packing-slip response body."""
    if content.startswith(b"%PDF") or "pdf" in content_type.lower():
        return PackingSlip(awb=awb, content=content)
    try:
        decoded = json.loads(content)
    except ValueError:
        decoded = None
    strings: list[str] = []
    _collect_strings(decoded, strings)
    for value in strings:
        pdf = _pdf_from_string(value)
        if pdf is not None:
            return PackingSlip(awb=awb, content=pdf)
        if re.match(r"^https?://\S+$", value):
            return PackingSlip(awb=awb, url=value)
    match = re.search(rb"https?://[^\s\"'<>]+", content)
    if match:
        return PackingSlip(awb=awb, url=match.group(0).decode())
    return None
