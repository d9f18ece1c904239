"""Shipment operations against the Delhivery API.

Every mutating operation classifies the stored shipment first and
raises :class:`PreconditionFailedError` or :class:`ValidationError`
before any request is sent. Operations on one AWB are serialized with
webhook applies through the lifecycle's per-AWB lock.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from contextlib import AsyncExitStack
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from litestar_delhivery.classifier import Classification
from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.enums import (
    Action,
    CanonicalState,
    DocumentType,
    NDRAction,
    PaymentMode,
)
from litestar_delhivery.exceptions import (
    ConfigurationError,
    HTTPError,
    InvalidResponseError,
    NotConfiguredError,
    NoWaybillReturnedError,
    PreconditionFailedError,
    ShipmentNotFoundError,
    ValidationError,
)
from litestar_delhivery.governor import (
    FETCH_WAYBILL,
    MAX_TRACKING_BATCH,
    PINCODE_SERVICEABILITY,
    TRACK,
    RateGovernor,
)
from litestar_delhivery.lifecycle import ApplyResult, ShipmentLifecycle
from litestar_delhivery.memory import InMemoryCacheStore
from litestar_delhivery.models import (
    BulkManifestResult,
    CancelResult,
    OrderDetails,
    PackageProfile,
    PackingSlip,
    PickupResult,
    ServiceabilityResult,
    Shipment,
    TrackingSnapshot,
    WebhookEvent,
)
from litestar_delhivery.payloads import (
    build_manifest_form,
    build_manifest_shipment,
    build_return_shipment,
    build_update_payload,
    extract_label,
    extract_manifest_errors,
    format_decimal,
    normalize_manifest_packages,
    parse_carrier_datetime,
    parse_serviceability,
    parse_tracking,
    parse_waybills,
    require_awb,
    sanitize_awb,
    sanitize_phone,
    sanitize_reference,
    truncate,
    validate_pincode,
)
from litestar_delhivery.protocols import OrderManagement, ShipmentRepository
from litestar_delhivery.references import OrderReferenceGenerator
from litestar_delhivery.transport import DelhiveryTransport
from litestar_delhivery.webhooks import detect_ndr

logger = logging.getLogger(__name__)

MANIFEST_PATH = "/api/cmu/create.json"
EDIT_PATH = "/api/p/edit"
NDR_PATH = "/api/p/update"
TRACK_PATH = "/api/v1/packages/json/"
WAYBILL_PATH = "/waybill/api/bulk/json/"
SERVICEABILITY_PATH = "/c/api/pin-codes/json/"
PICKUP_PATH = "/fm/request/new/"
EWAYBILL_PATH = "/api/rest/ewaybill/{awb}/"
DOCUMENT_PATH = "/api/rest/fetch/pkg/document/"
PACKING_SLIP_PATH = "/api/p/packing_slip"

WAYBILL_POOL_KEY = "delhivery:waybill-pool"
MAX_WAYBILL_FETCH = 10000
POOL_REFILL_COUNT = 50
PICKUP_CACHE_SECONDS = 2 * 24 * 60 * 60
MAX_DEFER_DAYS = 6

# Shipments in these states no longer hold their order's AWB slot.
RELEASED_STATES = frozenset(
    {CanonicalState.CANCELLED, CanonicalState.RETURN_COMPLETED}
)

_PICKUP_TIME = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d:[0-5]\d$")
_PAYMENT_ALIASES = {
    "COD": PaymentMode.COD,
    "PREPAID": PaymentMode.PREPAID,
    "PRE-PAID": PaymentMode.PREPAID,
    "PRE_PAID": PaymentMode.PREPAID,
}


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _return_ledger_key(order_id: str) -> str:
    return f"{order_id}:rvp"


def _to_date(value: date | str, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(field, f"{field} must be YYYY-MM-DD") from exc


class ShipmentOperations:
    """Manifest, update, cancel and query shipments.

    Args:
        config: Integration config.
        transport: Carrier HTTP client.
        lifecycle: Per-AWB state updater; also owns the repository,
            the order-management collaborator and the lock table.
        references: Re-manifest key generator. Built over an in-memory
            ledger when omitted.
        governor: Call budgets and cache. Built over an in-memory cache
            when omitted.
        today: Date provider for pickup and deferral windows.
    """

    def __init__(
        self,
        *,
        config: DelhiveryConfig,
        transport: DelhiveryTransport,
        lifecycle: ShipmentLifecycle,
        references: OrderReferenceGenerator | None = None,
        governor: RateGovernor | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.config = config
        self.transport = transport
        self.lifecycle = lifecycle
        if references is None:
            from litestar_delhivery.memory import InMemoryManifestLedger

            references = OrderReferenceGenerator(
                InMemoryManifestLedger(), locks=lifecycle.locks
            )
        self.references = references
        self.governor = governor or RateGovernor(InMemoryCacheStore())
        self._today = today

    @property
    def repository(self) -> ShipmentRepository:
        return self.lifecycle.repository

    @property
    def order_management(self) -> OrderManagement:
        if self.lifecycle.order_management is None:
            raise ConfigurationError("Order management not configured")
        return self.lifecycle.order_management

    # -- helpers ---------------------------------------------------------

    async def get_shipment(self, awb: str) -> Shipment:
        awb = require_awb(awb)
        try:
            return await self.repository.get_by_awb(awb)
        except KeyError as exc:
            raise ShipmentNotFoundError(awb) from exc

    def classify(self, shipment: Shipment) -> Classification:
        return shipment.classify(self.config.ewaybill_threshold)

    def _require(
        self, shipment: Shipment, action: Action, reason: str = ""
    ) -> Classification:
        classification = self.classify(shipment)
        if not classification.allows(action):
            if classification.is_terminal:
                reason = reason or "shipment is in a terminal state"
            raise PreconditionFailedError(
                action, classification.state, reason
            )
        return classification

    # -- manifest --------------------------------------------------------

    async def manifest(self, order_id: str) -> Shipment:
        """Register an order's shipment with the carrier.

        Raises:
            PreconditionFailedError: The order already has an active AWB.
            NoWaybillReturnedError: The carrier answered without an AWB.
        """
        if not self.config.is_configured:
            raise NotConfiguredError()
        async with self.lifecycle.locks.hold(f"manifest:{order_id}"):
            order, entry, profile = await self._prepare_manifest(order_id)
            packages = await self._create([entry])
            return await self._record_manifest(
                order_id, order, entry, profile, packages[0]["waybill"]
            )

    async def manifest_many(
        self, order_ids: Iterable[str]
    ) -> BulkManifestResult:
        """Manifest several orders in a single carrier call.

        Orders with an active AWB, unknown orders and unserviceable
        pincodes are reported in the result instead of failing the batch.
        """
        if not self.config.is_configured:
            raise NotConfiguredError()
        unique = list(
            dict.fromkeys(
                str(order_id).strip()
                for order_id in order_ids
                if str(order_id).strip()
            )
        )
        if not unique:
            raise ValidationError(
                "order_ids", "At least one order id is required."
            )

        result = BulkManifestResult()
        async with AsyncExitStack() as stack:
            for order_id in sorted(unique):
                await stack.enter_async_context(
                    self.lifecycle.locks.hold(f"manifest:{order_id}")
                )
            prepared = []
            for order_id in unique:
                try:
                    prepared.append(
                        (order_id, *await self._prepare_manifest(order_id))
                    )
                except PreconditionFailedError:
                    result.already_manifested.append(order_id)
                except ValidationError as exc:
                    result.skipped[order_id] = str(exc)
            if not prepared:
                return result

            try:
                packages = await self._create(
                    [entry for _, _, entry, _ in prepared]
                )
            except NoWaybillReturnedError as exc:
                for order_id, _, _, _ in prepared:
                    result.failed[order_id] = str(exc)
                return result

            by_reference = {
                package["refnum"]: package
                for package in packages
                if package["refnum"]
            }
            positional = not by_reference and len(packages) == len(prepared)
            for index, (order_id, order, entry, profile) in enumerate(
                prepared
            ):
                if positional:
                    package = packages[index]
                else:
                    package = by_reference.get(entry["order"])
                if package is None or not package["waybill"]:
                    result.failed[order_id] = (
                        "Delhivery returned no waybill for this order."
                    )
                    continue
                result.manifested.append(
                    await self._record_manifest(
                        order_id, order, entry, profile, package["waybill"]
                    )
                )
        logger.info(
            "Bulk manifest: %d manifested, %d already manifested, "
            "%d skipped, %d failed",
            len(result.manifested),
            len(result.already_manifested),
            len(result.skipped),
            len(result.failed),
        )
        return result

    async def _prepare_manifest(
        self, order_id: str
    ) -> tuple[OrderDetails, dict[str, Any], PackageProfile]:
        try:
            order = await self.order_management.get_order(order_id)
        except KeyError as exc:
            raise ValidationError(
                "order_id", f"Unknown order {order_id!r}"
            ) from exc

        released = []
        for existing in await self.repository.list_by_order(order_id):
            if existing.is_return or not existing.awb:
                continue
            if existing.state not in RELEASED_STATES:
                raise PreconditionFailedError(
                    "manifest",
                    existing.state,
                    f"order already has active AWB {existing.awb}",
                )
            released.append(existing.awb)
        for awb in released:
            await self.references.retire_awb(order_id, awb)

        if self.config.check_serviceability:
            serviceability = await self.check_serviceability(order.pin)
            if not serviceability.is_serviceable:
                raise ValidationError(
                    "pin",
                    f"Pincode {serviceability.pincode} is not "
                    "serviceable by Delhivery.",
                )

        reference = await self.references.next_order_reference(
            order_id, base=order.reference_base
        )
        entry, profile = build_manifest_shipment(order, reference, self.config)
        return order, entry, profile

    async def _record_manifest(
        self,
        order_id: str,
        order: OrderDetails,
        entry: dict[str, Any],
        profile: PackageProfile,
        awb: str,
    ) -> Shipment:
        shipment = Shipment(
            order_id=order_id,
            awb=awb,
            order_reference=entry["order"],
            state=CanonicalState.MANIFESTED,
            status_type="UD",
            status="Manifested",
            package=profile,
            payment_mode=order.payment_mode,
            cod_amount=(
                order.total
                if order.payment_mode == PaymentMode.COD
                else Decimal("0")
            ),
            declared_value=order.total,
        )
        shipment = await self.repository.save(shipment)
        logger.info(
            "Manifested order %s as AWB %s (reference %s)",
            order_id,
            awb,
            entry["order"],
        )
        return shipment

    async def _create(
        self, entries: list[dict[str, Any]]
    ) -> list[dict[str, str]]:
        response = await self.transport.send(
            "POST",
            MANIFEST_PATH,
            body=build_manifest_form(entries, self.config),
            body_format="form",
        )
        packages = normalize_manifest_packages(response.json)
        if not packages:
            errors = extract_manifest_errors(response.json)
            logger.error(
                "Manifest response without waybill: %s",
                "; ".join(errors) or "no package information",
            )
            if errors:
                raise NoWaybillReturnedError(
                    "Delhivery rejected the shipment: " + "; ".join(errors)
                )
            raise NoWaybillReturnedError(
                "Delhivery did not return an AWB number."
            )
        return packages

    # -- cancel / update -------------------------------------------------

    async def cancel(self, awb: str) -> CancelResult:
        """Cancel a shipment and retire its AWB for the order."""
        awb = require_awb(awb)
        async with self.lifecycle.hold(awb):
            shipment = await self.get_shipment(awb)
            classification = self._require(shipment, Action.CANCEL)

            response = await self.transport.send(
                "POST",
                EDIT_PATH,
                body={"waybill": awb, "cancellation": "true"},
            )
            data = response.json if isinstance(response.json, dict) else {}
            confirmed = data.get("status", data.get("success"))
            if not confirmed:
                errors = extract_manifest_errors(data)
                raise InvalidResponseError(
                    "; ".join(errors)
                    or "Delhivery did not confirm the cancellation."
                )

            if classification.before_pickup:
                note = "Cancelled before pickup: full refund."
            elif classification.after_pickup:
                note = "Cancelled after pickup: RTO triggered, no refund."
            else:
                note = "Reverse pickup cancelled."
            shipment.state = CanonicalState.CANCELLED
            shipment.status_type = "CN"
            shipment.status = "Cancelled"
            shipment.is_ndr = False
            shipment.ndr_reason = ""
            await self.repository.save(shipment)
            ledger_key = (
                _return_ledger_key(shipment.order_id)
                if shipment.is_return
                else shipment.order_id
            )
            await self.references.retire_awb(ledger_key, awb)
            logger.info("Cancelled AWB %s: %s", awb, note)
            return CancelResult(
                awb=awb,
                refund=classification.before_pickup,
                rto_triggered=classification.after_pickup,
                note=note,
            )

    async def update_shipment(
        self, awb: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        """Edit consignee or package fields of a shipment."""
        awb = require_awb(awb)
        if "pt" in updates or "cod" in updates:
            raise ValidationError(
                "updates", "Use the payment-mode conversion to change pt/cod."
            )
        payload = build_update_payload(awb, updates)
        if len(payload) == 1:
            raise ValidationError("updates", "No editable fields supplied.")

        async with self.lifecycle.hold(awb):
            shipment = await self.get_shipment(awb)
            self._require(shipment, Action.UPDATE)
            response = await self.transport.send(
                "POST", EDIT_PATH, body=payload
            )
            if shipment.package is not None:
                for key, attr in (
                    ("weight", "weight"),
                    ("shipment_length", "length"),
                    ("shipment_width", "width"),
                    ("shipment_height", "height"),
                ):
                    if key in payload:
                        setattr(shipment.package, attr, Decimal(payload[key]))
                await self.repository.save(shipment)
            return {
                "awb": awb,
                "updated": sorted(k for k in payload if k != "waybill"),
                "raw": response.json,
            }

    async def convert_payment_mode(
        self,
        awb: str,
        mode: str,
        cod_amount: Decimal | float | str | None = None,
    ) -> Shipment:
        """Switch a shipment between COD and prepaid."""
        awb = require_awb(awb)
        target = _PAYMENT_ALIASES.get(str(mode).strip().upper())
        if target is None:
            raise ValidationError(
                "mode", "Payment mode must be COD or Prepaid."
            )
        amount = Decimal("0")
        if target == PaymentMode.COD:
            try:
                amount = Decimal(str(cod_amount))
            except (InvalidOperation, ValueError):
                amount = Decimal("0")
            if not amount.is_finite() or amount <= 0:
                raise ValidationError(
                    "cod_amount",
                    "COD amount is required when converting to COD.",
                )

        async with self.lifecycle.hold(awb):
            shipment = await self.get_shipment(awb)
            classification = self._require(shipment, Action.CONVERT_PAYMENT)
            if shipment.payment_mode == PaymentMode.PICKUP:
                raise PreconditionFailedError(
                    Action.CONVERT_PAYMENT,
                    classification.state,
                    f"{shipment.payment_mode} shipments cannot be converted",
                )
            if shipment.payment_mode == target:
                raise ValidationError(
                    "mode", f"Shipment is already {target}."
                )

            await self.transport.send(
                "POST",
                EDIT_PATH,
                body={
                    "waybill": awb,
                    "pt": str(target),
                    "cod": format_decimal(amount) if amount else "0",
                },
            )
            shipment.payment_mode = target
            shipment.cod_amount = amount
            logger.info("Converted AWB %s payment mode to %s", awb, target)
            return await self.repository.save(shipment)

    async def update_ewaybill(self, awb: str, ewbn: str) -> Shipment:
        """Attach an e-waybill number to a high-value shipment."""
        awb = require_awb(awb)
        ewbn = sanitize_awb(ewbn) if ewbn else ""
        if not ewbn:
            raise ValidationError(
                "ewbn", "A valid e-waybill number is required."
            )

        async with self.lifecycle.hold(awb):
            shipment = await self.get_shipment(awb)
            self._require(
                shipment,
                Action.UPDATE_EWAYBILL,
                reason="declared value does not require an e-waybill",
            )
            await self.transport.send(
                "PUT",
                EWAYBILL_PATH.format(awb=awb),
                body={"data": [{"dcn": awb, "ewbn": ewbn}]},
            )
            shipment.ewaybill = ewbn
            return await self.repository.save(shipment)

    # -- NDR / returns ---------------------------------------------------

    async def ndr_action(
        self,
        awb: str,
        action: str,
        *,
        deferred_date: date | str | None = None,
        name: str = "",
        phone: str = "",
        address: str = "",
    ) -> dict[str, Any]:
        """Re-attempt, defer or re-route a failed delivery."""
        awb = require_awb(awb)
        try:
            ndr = NDRAction(str(action).strip().upper())
        except ValueError as exc:
            valid = ", ".join(member.value for member in NDRAction)
            raise ValidationError(
                "action", f"Invalid NDR action. Valid actions: {valid}"
            ) from exc

        async with self.lifecycle.hold(awb):
            shipment = await self.get_shipment(awb)
            self._require(
                shipment,
                Action(ndr.value),
                reason="no non-delivery report is open",
            )

            item: dict[str, Any] = {"waybill": awb, "act": ndr.value}
            if ndr == NDRAction.DEFER_DELIVERY:
                item["action_data"] = {
                    "deferred_date": self._check_defer_date(
                        deferred_date
                    ).isoformat()
                }
            elif ndr == NDRAction.EDIT_DETAILS:
                details = {
                    key: value
                    for key, value in (
                        ("name", truncate(name, 100)),
                        ("phone", sanitize_phone(phone)),
                        ("add", truncate(address)),
                    )
                    if value
                }
                if not details:
                    raise ValidationError(
                        "action_data",
                        "EDIT_DETAILS requires at least one of: "
                        "name, phone, add.",
                    )
                item["action_data"] = details

            response = await self.transport.send(
                "POST", NDR_PATH, body={"data": [item]}
            )
            logger.info("Sent NDR action %s for AWB %s", ndr.value, awb)
            return {"awb": awb, "action": ndr.value, "raw": response.json}

    def _check_defer_date(self, value: date | str | None) -> date:
        if value is None or value == "":
            raise ValidationError(
                "deferred_date",
                "DEFER_DLV requires deferred_date (YYYY-MM-DD).",
            )
        deferred = _to_date(value, "deferred_date")
        today = self._today()
        if deferred < today:
            raise ValidationError(
                "deferred_date", "Deferred date cannot be in the past."
            )
        if deferred > today + timedelta(days=MAX_DEFER_DAYS):
            raise ValidationError(
                "deferred_date",
                f"Deferred date cannot be more than {MAX_DEFER_DAYS} days "
                "from today.",
            )
        return deferred

    async def create_return(
        self, awb: str, *, qc_enabled: bool = False
    ) -> Shipment:
        """Book a reverse pickup for a delivered shipment.

        A return that was cancelled or completed frees the slot; the next
        booking gets a fresh reference from the order's return ledger.
        """
        awb = require_awb(awb)
        async with self.lifecycle.hold(awb):
            shipment = await self.get_shipment(awb)
            classification = self._require(shipment, Action.CREATE_RETURN)
            ledger_key = _return_ledger_key(shipment.order_id)
            if shipment.return_awb:
                previous = await self._find_return(shipment)
                if previous is not None and (
                    previous.state not in RELEASED_STATES
                ):
                    raise PreconditionFailedError(
                        Action.CREATE_RETURN,
                        classification.state,
                        f"return {shipment.return_awb} already booked",
                    )
                await self.references.retire_awb(
                    ledger_key, shipment.return_awb
                )
            try:
                order = await self.order_management.get_order(
                    shipment.order_id
                )
            except KeyError as exc:
                raise ValidationError(
                    "order_id", f"Unknown order {shipment.order_id!r}"
                ) from exc

            reference = await self.references.next_order_reference(
                ledger_key,
                base="RVP-" + sanitize_reference(order.reference_base),
            )
            entry, profile = build_return_shipment(
                order, reference, self.config
            )
            if qc_enabled:
                entry["qc"] = "Y"
            packages = await self._create([entry])
            return_awb = packages[0]["waybill"]

            reverse = Shipment(
                order_id=shipment.order_id,
                awb=return_awb,
                order_reference=reference,
                state=CanonicalState.REVERSE_PICKUP_PENDING,
                status_type="PP",
                status="Open",
                package=profile,
                payment_mode=PaymentMode.PICKUP,
                declared_value=shipment.declared_value,
                is_return=True,
            )
            reverse = await self.repository.save(reverse)
            shipment.return_awb = return_awb
            await self.repository.save(shipment)
            logger.info(
                "Booked reverse pickup %s for delivered AWB %s",
                return_awb,
                awb,
            )
            return reverse

    async def _find_return(self, shipment: Shipment) -> Shipment | None:
        try:
            return await self.repository.get_by_awb(shipment.return_awb)
        except KeyError:
            logger.warning(
                "Return AWB %s of %s has no local record",
                shipment.return_awb,
                shipment.awb,
            )
            return None

    # -- tracking --------------------------------------------------------

    async def track(self, awb: str) -> TrackingSnapshot:
        awb = require_awb(awb)
        snapshots = await self.track_many([awb])
        for snapshot in snapshots:
            if snapshot.awb == awb:
                return snapshot
        if snapshots:
            return snapshots[0]
        raise InvalidResponseError(f"No tracking data returned for {awb}.")

    async def track_many(self, awbs: Iterable[str]) -> list[TrackingSnapshot]:
        """Track in batches of at most 50 AWBs per call."""
        unique: list[str] = []
        for awb in awbs:
            cleaned = sanitize_awb(awb)
            if cleaned and cleaned not in unique:
                unique.append(cleaned)
        if not unique:
            raise ValidationError(
                "awbs", "At least one valid AWB is required."
            )

        snapshots: list[TrackingSnapshot] = []
        for batch in _chunks(unique, MAX_TRACKING_BATCH):
            response = await self.transport.send(
                "GET",
                TRACK_PATH,
                query={"waybill": ",".join(batch)},
                timeout=self.config.read_timeout,
                endpoint=TRACK,
            )
            snapshots.extend(parse_tracking(response.json))
        return snapshots

    async def refresh_statuses(self, awbs: Iterable[str]) -> list[ApplyResult]:
        """Poll tracking and apply each result like a webhook."""
        results = []
        for snapshot in await self.track_many(awbs):
            if not snapshot.awb:
                continue
            event = WebhookEvent(
                awb=snapshot.awb,
                status_type=snapshot.status_type.upper(),
                status=snapshot.status,
                status_code=snapshot.status_code,
                status_datetime=parse_carrier_datetime(
                    snapshot.status_datetime
                ),
                location=snapshot.status_location,
                instructions=snapshot.instructions,
                reference_no=snapshot.reference_no,
                expected_delivery=snapshot.expected_delivery,
                is_ndr=detect_ndr(
                    snapshot.status_type,
                    snapshot.status_code,
                    snapshot.instructions,
                    code_prefixes=self.config.ndr_code_prefixes,
                    keywords=self.config.ndr_keywords,
                ),
                source="poll",
            )
            results.append(await self.lifecycle.apply_event(event))
        return results

    # -- serviceability / waybills / pickups -----------------------------

    async def check_serviceability(self, pincode: str) -> ServiceabilityResult:
        """Pincode serviceability, cached per pincode."""
        pin = validate_pincode(pincode)

        async def fetch() -> dict[str, Any]:
            response = await self.transport.send(
                "GET",
                SERVICEABILITY_PATH,
                query={"filter_codes": pin},
                timeout=self.config.read_timeout,
                endpoint=PINCODE_SERVICEABILITY,
            )
            return parse_serviceability(pin, response.json).as_dict()

        data = await self.governor.cached_or_fetch(
            f"delhivery:serviceability:{pin}",
            self.config.serviceability_cache_seconds,
            fetch,
        )
        return ServiceabilityResult.from_dict(data)

    async def fetch_waybills(self, count: int = 10) -> list[str]:
        if not 1 <= count <= MAX_WAYBILL_FETCH:
            raise ValidationError(
                "count", f"count must be between 1 and {MAX_WAYBILL_FETCH}"
            )
        response = await self.transport.send(
            "GET",
            WAYBILL_PATH,
            query={"count": count},
            endpoint=FETCH_WAYBILL,
        )
        return parse_waybills(response.json)

    async def prefetch_waybills(self, count: int = 100) -> int:
        """Top up the waybill pool; returns the pool size."""
        fetched = await self.fetch_waybills(count)
        async with self.lifecycle.locks.hold(WAYBILL_POOL_KEY):
            cache = self.governor.cache
            pool = list(await cache.get(WAYBILL_POOL_KEY) or [])
            for waybill in fetched:
                if waybill not in pool:
                    pool.append(waybill)
            await cache.set(WAYBILL_POOL_KEY, pool)
            return len(pool)

    async def take_waybill(self) -> str:
        """Pop one pre-fetched waybill, refilling the pool when empty."""
        cache = self.governor.cache
        pool = list(await cache.get(WAYBILL_POOL_KEY) or [])
        if not pool:
            await self.prefetch_waybills(POOL_REFILL_COUNT)
        async with self.lifecycle.locks.hold(WAYBILL_POOL_KEY):
            pool = list(await cache.get(WAYBILL_POOL_KEY) or [])
            if not pool:
                raise InvalidResponseError(
                    "Waybill pool is empty and could not be refilled."
                )
            waybill = pool.pop(0)
            await cache.set(WAYBILL_POOL_KEY, pool)
            return waybill

    async def request_pickup(
        self,
        pickup_date: date | str | None = None,
        pickup_time: str | None = None,
        expected_package_count: int = 1,
    ) -> PickupResult:
        """Request a pickup at the configured warehouse.

        A pickup id issued for the same date and location is reused when
        the carrier rejects a repeat request.
        """
        if not self.config.is_configured:
            raise NotConfiguredError()
        when = (
            self._today()
            if pickup_date in (None, "")
            else _to_date(pickup_date, "pickup_date")
        )
        at = (pickup_time or self.config.default_pickup_time).strip()
        if not _PICKUP_TIME.match(at):
            raise ValidationError(
                "pickup_time", "pickup_time must be HH:MM:SS"
            )
        if expected_package_count < 1:
            raise ValidationError(
                "expected_package_count", "At least one package is required."
            )
        location = truncate(self.config.pickup_location, 100)
        cache_key = f"delhivery:pickup:{when.isoformat()}:{location}"

        try:
            response = await self.transport.send(
                "POST",
                PICKUP_PATH,
                body={
                    "pickup_time": at,
                    "pickup_date": when.isoformat(),
                    "pickup_location": location,
                    "expected_package_count": expected_package_count,
                },
            )
            data = response.json if isinstance(response.json, dict) else {}
            pickup_id = str(data.get("pickup_id") or "").strip()
            if not pickup_id:
                raise InvalidResponseError(
                    "Delhivery did not confirm the pickup request."
                )
        except (HTTPError, InvalidResponseError) as exc:
            cached = await self.governor.cache.get(cache_key)
            if not cached:
                raise
            logger.info(
                "Pickup request for %s rejected (%s), reusing pickup %s",
                when.isoformat(),
                exc,
                cached,
            )
            return PickupResult(
                pickup_id=str(cached),
                pickup_date=when,
                pickup_time=at,
                expected_package_count=expected_package_count,
                reused=True,
            )

        await self.governor.cache.set(
            cache_key, pickup_id, ttl=PICKUP_CACHE_SECONDS
        )
        return PickupResult(
            pickup_id=pickup_id,
            pickup_date=when,
            pickup_time=at,
            expected_package_count=expected_package_count,
        )

    # -- documents -------------------------------------------------------

    async def fetch_document(
        self, awb: str, doc_type: DocumentType | str
    ) -> dict[str, Any]:
        """Document link (EPOD, signature, QC images); any state."""
        awb = require_awb(awb)
        try:
            kind = DocumentType(str(doc_type).strip().upper())
        except ValueError as exc:
            valid = ", ".join(member.value for member in DocumentType)
            raise ValidationError(
                "doc_type", f"Invalid document type. Use one of: {valid}"
            ) from exc
        response = await self.transport.send(
            "GET",
            DOCUMENT_PATH,
            query={"doc_type": kind.value, "waybill": awb},
        )
        data = response.json if isinstance(response.json, dict) else {}
        url = data.get("url") or data.get("document_url") or data.get(
            "image_url"
        )
        return {"awb": awb, "doc_type": kind.value, "url": url, "raw": data}

    async def packing_slip(
        self, awb: str, *, pdf_size: str = "4R"
    ) -> PackingSlip:
        """Shipping label for an AWB; any state."""
        awb = require_awb(awb)
        query = {"wbns": awb, "pdf": "true", "pdf_size": pdf_size.upper()}
        if self.config.client_code:
            query["client"] = self.config.client_code
        response = await self.transport.send(
            "GET",
            PACKING_SLIP_PATH,
            query=query,
            expect_json=False,
        )
        slip = extract_label(
            awb, response.content, response.headers.get("content-type", "")
        )
        if slip is None:
            raise InvalidResponseError(
                "Delhivery did not return a PDF label."
            )
        return slip
