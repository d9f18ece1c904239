"""SQLAlchemy 2.0 async ShipmentRepository and ManifestLedger."""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from litestar_delhivery.contrib.sqlalchemy.models import (
    ManifestLedgerModel,
    ShipmentModel,
)
from litestar_delhivery.enums import CanonicalState, PaymentMode
from litestar_delhivery.models import ManifestHistory, PackageProfile, Shipment


def _to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_record(model: ShipmentModel) -> Shipment:
    return Shipment(
        id=model.id,
        order_id=model.order_id,
        awb=model.awb,
        order_reference=model.order_reference,
        state=CanonicalState(model.state),
        status_type=model.status_type,
        status=model.status,
        status_code=model.status_code,
        last_location=model.last_location,
        # SQLite drops the offset; stored values are always UTC.
        last_update=_to_utc(model.last_update),
        expected_delivery=model.expected_delivery,
        is_ndr=model.is_ndr,
        ndr_reason=model.ndr_reason,
        scans=list(model.scans or []),
        package=(
            PackageProfile.from_dict(model.package) if model.package else None
        ),
        payment_mode=PaymentMode(model.payment_mode),
        cod_amount=Decimal(str(model.cod_amount)),
        declared_value=Decimal(str(model.declared_value)),
        ewaybill=model.ewaybill,
        return_awb=model.return_awb,
        is_return=model.is_return,
        pod_url=model.pod_url,
        signature_url=model.signature_url,
        pod_received_at=_to_utc(model.pod_received_at),
        outbox=[dict(effect) for effect in model.outbox or []],
    )


def _apply_record(model: ShipmentModel, shipment: Shipment) -> None:
    model.order_id = shipment.order_id
    model.awb = shipment.awb
    model.order_reference = shipment.order_reference
    model.state = str(shipment.state)
    model.status_type = shipment.status_type
    model.status = shipment.status
    model.status_code = shipment.status_code
    model.last_location = shipment.last_location
    model.last_update = _to_utc(shipment.last_update)
    model.expected_delivery = shipment.expected_delivery
    model.is_ndr = shipment.is_ndr
    model.ndr_reason = shipment.ndr_reason
    model.scans = [dict(scan) for scan in shipment.scans]
    model.package = shipment.package.as_dict() if shipment.package else None
    model.payment_mode = str(shipment.payment_mode)
    model.cod_amount = shipment.cod_amount
    model.declared_value = shipment.declared_value
    model.ewaybill = shipment.ewaybill
    model.return_awb = shipment.return_awb
    model.is_return = shipment.is_return
    model.pod_url = shipment.pod_url
    model.signature_url = shipment.signature_url
    model.pod_received_at = _to_utc(shipment.pod_received_at)
    model.outbox = [dict(effect) for effect in shipment.outbox]


class SQLAlchemyShipmentRepository:
    """Shipment repository backed by SQLAlchemy async sessions.

    Implements the ShipmentRepository protocol; rows are converted to
    detached :class:`Shipment` records on the way out.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def get_by_awb(self, awb: str) -> Shipment:
        """Get a shipment by AWB. Raises KeyError if not found."""
        async with self._session_factory() as session:
            stmt = (
                select(ShipmentModel)
                .where(ShipmentModel.awb == awb)
                .order_by(ShipmentModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalars().first()
            if model is None or not awb:
                raise KeyError(awb)
            return _to_record(model)

    async def list_by_order(self, order_id: str) -> list[Shipment]:
        """List all shipments for an order, oldest first."""
        async with self._session_factory() as session:
            stmt = (
                select(ShipmentModel)
                .where(ShipmentModel.order_id == order_id)
                .order_by(ShipmentModel.created_at.asc())
            )
            result = await session.execute(stmt)
            return [_to_record(m) for m in result.scalars().all()]

    async def save(self, shipment: Shipment) -> Shipment:
        """Insert or update a shipment (keyed by record id)."""
        async with self._session_factory() as session:
            model = await session.get(ShipmentModel, shipment.id)
            if model is None:
                model = ShipmentModel(id=shipment.id)
                session.add(model)
            _apply_record(model, shipment)
            await session.commit()
            await session.refresh(model)
            return _to_record(model)


class SQLAlchemyManifestLedger:
    """Manifest history backed by SQLAlchemy.

    Implements the ManifestLedger protocol.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def get(self, order_id: str) -> ManifestHistory:
        async with self._session_factory() as session:
            model = await session.get(ManifestLedgerModel, order_id)
            if model is None:
                return ManifestHistory(order_id=order_id)
            return ManifestHistory(
                order_id=model.order_id,
                attempts=model.attempts,
                references=list(model.references or []),
                retired_awbs=list(model.retired_awbs or []),
            )

    async def save(self, history: ManifestHistory) -> None:
        async with self._session_factory() as session:
            model = await session.get(ManifestLedgerModel, history.order_id)
            if model is None:
                model = ManifestLedgerModel(order_id=history.order_id)
                session.add(model)
            model.attempts = history.attempts
            model.references = list(history.references)
            model.retired_awbs = list(history.retired_awbs)
            await session.commit()
