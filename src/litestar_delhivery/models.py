"""Domain records handled by the shipment lifecycle engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from litestar_delhivery.classifier import Classification, classify
from litestar_delhivery.enums import CanonicalState, PaymentMode


@dataclass
class PackageProfile:
    """Physical package: weight in grams, dimensions in centimetres."""

    weight: Decimal
    length: Decimal
    width: Decimal
    height: Decimal
    item_count: int = 1

    def volumetric_weight(self, divisor: int = 5000) -> Decimal:
        """Volumetric weight in grams (L x W x H / divisor, in kg)."""
        volume = self.length * self.width * self.height
        return (volume / Decimal(divisor) * 1000).quantize(Decimal("1"))

    def chargeable_weight(self) -> Decimal:
        return max(self.weight, self.volumetric_weight())

    def as_dict(self) -> dict[str, Any]:
        return {
            "weight": str(self.weight),
            "length": str(self.length),
            "width": str(self.width),
            "height": str(self.height),
            "item_count": self.item_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PackageProfile:
        return cls(
            weight=Decimal(str(data["weight"])),
            length=Decimal(str(data["length"])),
            width=Decimal(str(data["width"])),
            height=Decimal(str(data["height"])),
            item_count=int(data.get("item_count", 1)),
        )


@dataclass
class ScanEntry:
    status: str
    datetime: str
    location: str = ""
    status_type: str = ""
    remarks: str = ""

    def as_dict(self) -> dict[str, str]:
        return {
            "status": self.status,
            "datetime": self.datetime,
            "location": self.location,
            "status_type": self.status_type,
            "remarks": self.remarks,
        }


@dataclass
class OrderItem:
    name: str
    quantity: int = 1


@dataclass
class OrderDetails:
    """Order data read from the order-management collaborator."""

    order_id: str
    name: str
    address: str
    city: str
    state: str
    pin: str
    phone: str
    total: Decimal
    payment_method: str = "prepaid"
    items: list[OrderItem] = field(default_factory=list)
    country: str = "India"
    email: str = ""
    order_number: str = ""
    created_at: datetime | None = None

    @property
    def reference_base(self) -> str:
        return self.order_number or self.order_id

    @property
    def payment_mode(self) -> PaymentMode:
        method = self.payment_method.strip().lower()
        if method in ("cod", "cashondelivery", "cash_on_delivery"):
            return PaymentMode.COD
        return PaymentMode.PREPAID

    @property
    def total_quantity(self) -> int:
        return max(1, sum(max(1, item.quantity) for item in self.items))


@dataclass
class Shipment:
    """Local shipment record, keyed by AWB once manifested."""

    order_id: str
    awb: str = ""
    order_reference: str = ""
    state: CanonicalState = CanonicalState.MANIFESTED
    status_type: str = ""
    status: str = ""
    status_code: str = ""
    last_location: str = ""
    last_update: datetime | None = None
    expected_delivery: str = ""
    is_ndr: bool = False
    ndr_reason: str = ""
    scans: list[dict[str, str]] = field(default_factory=list)
    package: PackageProfile | None = None
    payment_mode: PaymentMode = PaymentMode.PREPAID
    cod_amount: Decimal = Decimal("0")
    declared_value: Decimal = Decimal("0")
    ewaybill: str = ""
    return_awb: str = ""
    is_return: bool = False
    pod_url: str = ""
    signature_url: str = ""
    pod_received_at: datetime | None = None
    # Side effects of applied events not yet handed to order management.
    outbox: list[dict[str, Any]] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def classify(
        self, ewaybill_threshold: Decimal | None = None
    ) -> Classification:
        return classify(
            self.status_type,
            self.status,
            is_ndr=self.is_ndr,
            declared_value=self.declared_value,
            ewaybill_threshold=ewaybill_threshold,
        )


@dataclass
class WebhookEvent:
    """Normalised carrier status push (or poll result)."""

    awb: str
    status_type: str = ""
    status: str = ""
    status_code: str = ""
    status_datetime: datetime | None = None
    location: str = ""
    instructions: str = ""
    reference_no: str = ""
    expected_delivery: str = ""
    is_ndr: bool = False
    source: str = "webhook"
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def retry_key(self) -> str:
        """Identity of this event in the webhook retry queue."""
        stamp = self._stamp() or f"{self.status_type}:{self.status}"
        return f"{self.awb}@{stamp}"

    def _stamp(self) -> str:
        if self.status_datetime is None:
            return ""
        return self.status_datetime.isoformat()

    def scan(self) -> ScanEntry:
        return ScanEntry(
            status=self.status,
            datetime=self._stamp(),
            location=self.location,
            status_type=self.status_type,
            remarks=self.instructions,
        )


@dataclass
class TrackingSnapshot:
    """Summary of one shipment from the tracking API."""

    awb: str
    status: str = ""
    status_type: str = ""
    status_code: str = ""
    status_datetime: str = ""
    status_location: str = ""
    instructions: str = ""
    expected_delivery: str = ""
    reference_no: str = ""
    scans: list[ScanEntry] = field(default_factory=list)

    @property
    def classification(self) -> Classification:
        return classify(self.status_type, self.status)


@dataclass
class PickupRequest:
    location: str
    pickup_date: date
    pickup_time: str
    expected_package_count: int = 1


@dataclass
class PickupResult:
    pickup_id: str
    pickup_date: date
    pickup_time: str
    expected_package_count: int
    reused: bool = False


@dataclass
class ServiceabilityResult:
    pincode: str
    is_serviceable: bool
    has_embargo: bool = False
    remarks: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "pincode": self.pincode,
            "is_serviceable": self.is_serviceable,
            "has_embargo": self.has_embargo,
            "remarks": list(self.remarks),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServiceabilityResult:
        return cls(
            pincode=data["pincode"],
            is_serviceable=bool(data["is_serviceable"]),
            has_embargo=bool(data.get("has_embargo", False)),
            remarks=list(data.get("remarks", [])),
        )


@dataclass
class CancelResult:
    awb: str
    refund: bool
    rto_triggered: bool
    note: str


@dataclass
class BulkManifestResult:
    """Outcome of manifesting several orders in one carrier call."""

    manifested: list[Shipment] = field(default_factory=list)
    already_manifested: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)


@dataclass
class ManifestHistory:
    """Per-order manifest attempts; the only shared mutable state."""

    order_id: str
    attempts: int = 0
    references: list[str] = field(default_factory=list)
    retired_awbs: list[str] = field(default_factory=list)


@dataclass
class PackingSlip:
    """Shipping label: PDF bytes, or a link to download them."""

    awb: str
    content: bytes = b""
    url: str = ""
    content_type: str = "application/pdf"
