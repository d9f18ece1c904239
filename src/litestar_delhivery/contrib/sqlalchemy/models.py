"""SQLAlchemy 2.0 async models for Delhivery shipments."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all Delhivery models."""


class ShipmentModel(Base):
    """Stored shipment backing SQLAlchemyShipmentRepository."""

    __tablename__ = "delhivery_shipments"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    order_id: Mapped[str] = mapped_column(String(64), index=True)
    awb: Mapped[str] = mapped_column(String(32), index=True, default="")
    order_reference: Mapped[str] = mapped_column(String(64), default="")
    state: Mapped[str] = mapped_column(String(32), default="manifested")
    status_type: Mapped[str] = mapped_column(String(8), default="")
    status: Mapped[str] = mapped_column(String(128), default="")
    status_code: Mapped[str] = mapped_column(String(32), default="")
    last_location: Mapped[str] = mapped_column(String(255), default="")
    last_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    expected_delivery: Mapped[str] = mapped_column(String(64), default="")
    is_ndr: Mapped[bool] = mapped_column(Boolean, default=False)
    ndr_reason: Mapped[str] = mapped_column(Text, default="")
    scans: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    package: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, default=None
    )
    payment_mode: Mapped[str] = mapped_column(String(16), default="Pre-paid")
    cod_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0")
    )
    declared_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0")
    )
    ewaybill: Mapped[str] = mapped_column(String(32), default="")
    return_awb: Mapped[str] = mapped_column(String(32), default="")
    is_return: Mapped[bool] = mapped_column(Boolean, default=False)
    pod_url: Mapped[str] = mapped_column(Text, default="")
    signature_url: Mapped[str] = mapped_column(Text, default="")
    pod_received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    outbox: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(tz=UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(tz=UTC),
        onupdate=lambda: datetime.now(tz=UTC),
    )


class ManifestLedgerModel(Base):
    """Per-order manifest attempts, issued references and retired AWBs."""

    __tablename__ = "delhivery_manifest_ledger"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    attempts: Mapped[int] = mapped_column(default=0)
    references: Mapped[list[str]] = mapped_column(JSON, default=list)
    retired_awbs: Mapped[list[str]] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(tz=UTC),
        onupdate=lambda: datetime.now(tz=UTC),
    )


class CallbackRetryModel(Base):
    """Webhook retry queue entry."""

    __tablename__ = "delhivery_callback_retries"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    awb: Mapped[str] = mapped_column(String(32), index=True)
    event_key: Mapped[str] = mapped_column(
        String(128), index=True, default=""
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    headers: Mapped[dict[str, Any]] = mapped_column(JSON)
    attempts: Mapped[int] = mapped_column(default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, default=None
    )
    status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(tz=UTC),
    )
