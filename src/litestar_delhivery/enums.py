"""Enumerations shared across the integration."""

from enum import StrEnum


class CanonicalState(StrEnum):
    """Local, carrier-independent shipment state."""

    MANIFESTED = "manifested"
    IN_TRANSIT = "in_transit"
    PENDING = "pending"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    RETURN_IN_PROGRESS = "return_in_progress"
    RETURN_COMPLETED = "return_completed"
    REVERSE_PICKUP_PENDING = "reverse_pickup_pending"
    REVERSE_PICKUP_IN_TRANSIT = "reverse_pickup_in_transit"
    REVERSE_PICKUP_COMPLETED = "reverse_pickup_completed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class StatusType(StrEnum):
    """Carrier's coarse journey classifier."""

    UNDELIVERED = "UD"
    DELIVERED = "DL"
    RETURN = "RT"
    PICKUP_PENDING = "PP"
    PICKED_UP = "PU"
    CANCELLED = "CN"


class PaymentMode(StrEnum):
    PREPAID = "Pre-paid"
    COD = "COD"
    PICKUP = "Pickup"


class Action(StrEnum):
    """Mutating operations gated by the status classifier."""

    CANCEL = "cancel"
    UPDATE = "update"
    CONVERT_PAYMENT = "convert_payment"
    UPDATE_EWAYBILL = "update_ewaybill"
    REATTEMPT = "RE-ATTEMPT"
    DEFER_DELIVERY = "DEFER_DLV"
    EDIT_DETAILS = "EDIT_DETAILS"
    CREATE_RETURN = "create_return"


class NDRAction(StrEnum):
    REATTEMPT = "RE-ATTEMPT"
    DEFER_DELIVERY = "DEFER_DLV"
    EDIT_DETAILS = "EDIT_DETAILS"


class DocumentType(StrEnum):
    SIGNATURE_URL = "SIGNATURE_URL"
    RVP_QC_IMAGE = "RVP_QC_IMAGE"
    EPOD = "EPOD"
    SELLER_RETURN_IMAGE = "SELLER_RETURN_IMAGE"


class OrderStatus(StrEnum):
    """Order-management statuses the engine may request."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
