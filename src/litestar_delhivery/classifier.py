"""Status classification state machine.

Turns the carrier's ``StatusType`` / ``Status`` pair into a
:class:`CanonicalState` and derives which operations are legal.

Forward journey:  UD (Manifested, Not Picked, In Transit, Pending,
                  Dispatched) -> DL (Delivered)
Return to origin: RT (In Transit, Pending, Dispatched) -> DL (RTO)
Reverse pickup:   PP (Open, Scheduled) -> PU (In Transit, Pending,
                  Dispatched) -> DL (DTO); CN (Canceled)

Everything here is pure: no I/O and no raising. Raw carrier strings
must not be inspected anywhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from litestar_delhivery.enums import Action, CanonicalState, StatusType

__all__ = [
    "STATE_RANK",
    "Classification",
    "TERMINAL_STATES",
    "classify",
    "state_rank",
]

TERMINAL_STATES = frozenset(
    {
        CanonicalState.DELIVERED,
        CanonicalState.RETURN_COMPLETED,
        CanonicalState.REVERSE_PICKUP_COMPLETED,
        CanonicalState.CANCELLED,
    }
)

EDITABLE_FORWARD_STATES = frozenset(
    {
        CanonicalState.MANIFESTED,
        CanonicalState.IN_TRANSIT,
        CanonicalState.PENDING,
    }
)

# Precedence used when two events race: higher rank wins among terminal
# states, so a delivery confirmation beats a local cancellation.
STATE_RANK: dict[CanonicalState, int] = {
    CanonicalState.UNKNOWN: 0,
    CanonicalState.MANIFESTED: 1,
    CanonicalState.REVERSE_PICKUP_PENDING: 1,
    CanonicalState.IN_TRANSIT: 2,
    CanonicalState.PENDING: 2,
    CanonicalState.REVERSE_PICKUP_IN_TRANSIT: 2,
    CanonicalState.DISPATCHED: 3,
    CanonicalState.RETURN_IN_PROGRESS: 4,
    CanonicalState.CANCELLED: 8,
    CanonicalState.DELIVERED: 9,
    CanonicalState.RETURN_COMPLETED: 9,
    CanonicalState.REVERSE_PICKUP_COMPLETED: 9,
}

_KNOWN_STATUS_TYPES = frozenset(member.value for member in StatusType)
_CANCELLED_TEXTS = frozenset({"CANCELLED", "CANCELED", "CLOSED"})
_BEFORE_PICKUP_TEXTS = frozenset(
    {"", "MANIFESTED", "NOT PICKED", "PICKUP SCHEDULED", "OPEN", "SCHEDULED"}
)
# Transient garbage the tracking API is known to return in status fields.
_GARBAGE_TEXTS = frozenset(
    {"ERROR", "SUCCESS", "FAILED", "FAILURE", "NULL", "NONE", "N/A", "FALSE",
     "TRUE"}
)


def state_rank(state: CanonicalState) -> int:
    return STATE_RANK.get(state, 0)


@dataclass(frozen=True, slots=True)
class Classification:
    """Result of :func:`classify`."""

    state: CanonicalState
    status_type: str = ""
    status: str = ""
    is_ndr: bool = False
    is_stale: bool = False
    is_rvp_scheduled: bool = False
    needs_ewaybill: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_cancel(self) -> bool:
        return not self.is_terminal and self.state not in (
            CanonicalState.DISPATCHED,
            CanonicalState.RETURN_IN_PROGRESS,
        )

    @property
    def before_pickup(self) -> bool:
        """Cancellation now earns a full refund."""
        return self.state == CanonicalState.MANIFESTED

    @property
    def after_pickup(self) -> bool:
        """Cancellation now triggers RTO without refund."""
        return self.state in (
            CanonicalState.IN_TRANSIT,
            CanonicalState.PENDING,
        )

    @property
    def can_edit(self) -> bool:
        return self.state in EDITABLE_FORWARD_STATES or self.is_rvp_scheduled

    @property
    def can_reattempt(self) -> bool:
        return self.is_ndr and not self.is_terminal

    @property
    def can_defer(self) -> bool:
        return self.is_ndr and not self.is_terminal

    @property
    def can_edit_details(self) -> bool:
        return self.is_ndr and not self.is_terminal

    @property
    def can_create_return(self) -> bool:
        return self.state == CanonicalState.DELIVERED

    @property
    def allowed_actions(self) -> frozenset[Action]:
        checks = {
            Action.CANCEL: self.can_cancel,
            Action.UPDATE: self.can_edit,
            Action.CONVERT_PAYMENT: self.can_edit,
            Action.UPDATE_EWAYBILL: self.needs_ewaybill,
            Action.REATTEMPT: self.can_reattempt,
            Action.DEFER_DELIVERY: self.can_defer,
            Action.EDIT_DETAILS: self.can_edit_details,
            Action.CREATE_RETURN: self.can_create_return,
        }
        return frozenset(action for action, ok in checks.items() if ok)

    def allows(self, action: Action) -> bool:
        return action in self.allowed_actions

    def as_dict(self) -> dict:
        return {
            "state": str(self.state),
            "status_type": self.status_type,
            "status": self.status,
            "is_terminal": self.is_terminal,
            "is_stale": self.is_stale,
            "is_ndr": self.is_ndr,
            "can_cancel": self.can_cancel,
            "before_pickup": self.before_pickup,
            "after_pickup": self.after_pickup,
            "can_edit": self.can_edit,
            "can_reattempt": self.can_reattempt,
            "can_defer": self.can_defer,
            "can_edit_details": self.can_edit_details,
            "can_create_return": self.can_create_return,
            "needs_ewaybill": self.needs_ewaybill,
        }


def _classify_forward(text: str) -> tuple[CanonicalState, bool]:
    if "DISPATCHED" in text or "OUT FOR" in text:
        return CanonicalState.DISPATCHED, False
    if "TRANSIT" in text and text != "NOT PICKED":
        return CanonicalState.IN_TRANSIT, False
    if text == "PENDING":
        return CanonicalState.PENDING, False
    if text in _GARBAGE_TEXTS:
        return CanonicalState.UNKNOWN, True
    # Not picked / manifested / open / scheduled / empty, plus anything
    # unrecognised: the safest forward default.
    return CanonicalState.MANIFESTED, text not in _BEFORE_PICKUP_TEXTS


def _resolve_state(status_type: str, text: str) -> tuple[CanonicalState, bool]:
    if status_type == StatusType.DELIVERED:
        if text == "RTO":
            return CanonicalState.RETURN_COMPLETED, False
        if text == "DTO":
            return CanonicalState.REVERSE_PICKUP_COMPLETED, False
        return CanonicalState.DELIVERED, False
    if status_type == StatusType.RETURN:
        return CanonicalState.RETURN_IN_PROGRESS, False
    if status_type == StatusType.PICKUP_PENDING:
        return CanonicalState.REVERSE_PICKUP_PENDING, False
    if status_type == StatusType.PICKED_UP:
        return CanonicalState.REVERSE_PICKUP_IN_TRANSIT, False
    if status_type == StatusType.CANCELLED or text in _CANCELLED_TEXTS:
        return CanonicalState.CANCELLED, False

    if status_type not in _KNOWN_STATUS_TYPES:
        # Legacy records carry no (or an unrecognised) StatusType.
        if text == "DELIVERED":
            return CanonicalState.DELIVERED, False
        if "RTO" in text or text == "RETURNED":
            return CanonicalState.RETURN_COMPLETED, False
        if text == "DTO":
            return CanonicalState.REVERSE_PICKUP_COMPLETED, False
        state, stale = _classify_forward(text)
        return state, stale or bool(status_type)

    return _classify_forward(text)


def classify(
    status_type: str | None,
    status: str | None,
    *,
    is_ndr: bool = False,
    declared_value: Decimal | int | float | None = None,
    ewaybill_threshold: Decimal | int | float | None = None,
) -> Classification:
    """Classify a raw carrier status.

    Args:
        status_type: Carrier ``StatusType`` (UD/DL/RT/PP/PU/CN); may be
            empty for legacy data.
        status: Carrier ``Status`` text.
        is_ndr: Persisted NDR flag of the shipment.
        declared_value: Declared order value, for e-waybill gating.
        ewaybill_threshold: Value above which an e-waybill is required.

    Returns:
        A :class:`Classification`; never raises.
    """
    raw_type = (status_type or "").strip()
    raw_text = (status or "").strip()
    state, stale = _resolve_state(raw_type.upper(), raw_text.upper())

    terminal = state in TERMINAL_STATES
    needs_ewaybill = False
    if (
        not terminal
        and declared_value is not None
        and ewaybill_threshold is not None
    ):
        try:
            needs_ewaybill = Decimal(str(declared_value)) > Decimal(
                str(ewaybill_threshold)
            )
        except (InvalidOperation, ValueError):
            needs_ewaybill = False

    return Classification(
        state=state,
        status_type=raw_type.upper(),
        status=raw_text,
        is_ndr=bool(is_ndr) and not terminal,
        is_stale=stale,
        is_rvp_scheduled=(
            state == CanonicalState.REVERSE_PICKUP_PENDING
            and raw_text.upper() in ("OPEN", "SCHEDULED")
        ),
        needs_ewaybill=needs_ewaybill,
    )
