"""Error taxonomy and exception handling for litestar-delhivery."""

from __future__ import annotations

from litestar import Request, Response


class DelhiveryError(Exception):
    """Base class for every error raised by the integration."""

    code = "delhivery_error"


class NotConfiguredError(DelhiveryError):
    """Credentials or pickup location are missing."""

    code = "not_configured"

    def __init__(
        self,
        message: str = (
            "Delhivery API credentials or pickup location not configured."
        ),
    ) -> None:
        super().__init__(message)


class TransportError(DelhiveryError):
    """Connection failure or timeout talking to the carrier."""

    code = "transport_error"


class HTTPError(DelhiveryError):
    """Carrier answered with a non-2xx status."""

    code = "http_error"

    def __init__(self, status_code: int, carrier_message: str = "") -> None:
        self.status_code = status_code
        self.carrier_message = carrier_message
        detail = carrier_message or "no message"
        super().__init__(f"Delhivery returned HTTP {status_code}: {detail}")


class InvalidResponseError(DelhiveryError):
    """Carrier answered 2xx but the body is unusable."""

    code = "invalid_response"


class NoWaybillReturnedError(InvalidResponseError):
    """Manifest call succeeded without returning a waybill."""

    code = "no_waybill"


class PreconditionFailedError(DelhiveryError):
    """Local state machine rejected an action before any network call."""

    code = "precondition_failed"

    def __init__(
        self, action: str, current_state: str, reason: str = ""
    ) -> None:
        self.action = str(action)
        self.current_state = str(current_state)
        self.reason = reason
        message = (
            f"Action {self.action!r} not allowed in state "
            f"{self.current_state!r}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidSignatureError(DelhiveryError):
    """Webhook HMAC signature did not match."""

    code = "invalid_signature"

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message)


class InvalidPayloadError(DelhiveryError):
    """Webhook payload could not be parsed."""

    code = "invalid_payload"


class ValidationError(DelhiveryError):
    """Caller supplied parameters failed local checks."""

    code = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class QuotaExceededError(DelhiveryError):
    """A call would exceed the carrier's per-endpoint quota."""

    code = "quota_exceeded"

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        super().__init__(f"Call budget for endpoint {endpoint!r} exhausted")


class ShipmentNotFoundError(Exception):
    """Shipment with given AWB was not found."""

    def __init__(self, awb: str) -> None:
        self.awb = awb
        super().__init__(f"Shipment {awb!r} not found")


class ConfigurationError(Exception):
    """A required component is not configured."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


def _error_response(
    request: Request, detail: str, code: str, status_code: int
) -> Response:
    return Response(
        content={"detail": detail, "code": code},
        status_code=status_code,
    )


def handle_validation_error(
    request: Request, exc: ValidationError
) -> Response:
    """Map ValidationError to 400."""
    return _error_response(request, str(exc), exc.code, 400)


def handle_invalid_signature(
    request: Request, exc: InvalidSignatureError
) -> Response:
    """Map InvalidSignatureError to 401."""
    return _error_response(request, str(exc), exc.code, 401)


def handle_precondition_failed(
    request: Request, exc: PreconditionFailedError
) -> Response:
    """Map PreconditionFailedError to 409."""
    return _error_response(request, str(exc), exc.code, 409)


def handle_quota_exceeded(
    request: Request, exc: QuotaExceededError
) -> Response:
    """Map QuotaExceededError to 429."""
    return _error_response(request, str(exc), exc.code, 429)


def handle_carrier_error(request: Request, exc: DelhiveryError) -> Response:
    """Map transport, HTTP and response errors to 502."""
    return _error_response(request, str(exc), exc.code, 502)


def handle_not_configured(
    request: Request, exc: NotConfiguredError
) -> Response:
    """Map NotConfiguredError to 503."""
    return _error_response(request, str(exc), exc.code, 503)


def handle_shipment_not_found(
    request: Request, exc: ShipmentNotFoundError
) -> Response:
    """Map ShipmentNotFoundError to 404."""
    return _error_response(request, str(exc), "not_found", 404)


def handle_configuration_error(
    request: Request, exc: ConfigurationError
) -> Response:
    """Map ConfigurationError to 500."""
    return _error_response(request, str(exc), "configuration_error", 500)


def handle_delhivery_error(request: Request, exc: DelhiveryError) -> Response:
    """Map any other DelhiveryError to 400."""
    return _error_response(request, str(exc), exc.code, 400)


EXCEPTION_HANDLERS = {
    ValidationError: handle_validation_error,
    InvalidSignatureError: handle_invalid_signature,
    PreconditionFailedError: handle_precondition_failed,
    QuotaExceededError: handle_quota_exceeded,
    TransportError: handle_carrier_error,
    HTTPError: handle_carrier_error,
    InvalidResponseError: handle_carrier_error,
    NotConfiguredError: handle_not_configured,
    ShipmentNotFoundError: handle_shipment_not_found,
    ConfigurationError: handle_configuration_error,
    DelhiveryError: handle_delhivery_error,
}
