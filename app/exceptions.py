from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from typing import Optional, Union


class APIException(HTTPException):
    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)


class ClinicError(APIException):
    """Base class for booking and payment errors raised by the application services."""

    status_code = 400
    code = "clinic_error"

    def __init__(self, message: str):
        super().__init__(status_code=type(self).status_code, detail=message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class SlotUnavailable(ClinicError):
    status_code = 409
    code = "slot_unavailable"


class InvalidDate(ClinicError):
    status_code = 400
    code = "invalid_date"


class IllegalTransition(ClinicError):
    status_code = 409
    code = "illegal_transition"


class AppointmentNotFound(ClinicError):
    status_code = 404
    code = "appointment_not_found"

    def __init__(self, appointment_id: int):
        super().__init__(f"Appointment {appointment_id} not found")
        self.appointment_id = appointment_id


class DoctorNotFound(ClinicError):
    status_code = 404
    code = "doctor_not_found"

    def __init__(self, doctor_id: int):
        super().__init__(f"Doctor {doctor_id} not found")
        self.doctor_id = doctor_id


class PaymentAttemptNotFound(ClinicError):
    status_code = 404
    code = "payment_attempt_not_found"

    def __init__(self, attempt_id: Union[int, str]):
        super().__init__(f"Payment attempt {attempt_id} not found")
        self.attempt_id = attempt_id


class InvalidPhoneFormat(ClinicError):
    status_code = 422
    code = "invalid_phone_format"


class GatewayRejected(ClinicError):
    """The payment provider refused the request; `provider_message` is shown to the payer."""

    status_code = 402
    code = "gateway_rejected"

    def __init__(self, provider_message: str, provider_code: Optional[str] = None):
        super().__init__(provider_message)
        self.provider_message = provider_message
        self.provider_code = provider_code


class PaymentNotRequired(ClinicError):
    status_code = 409
    code = "payment_not_required"


class RateLimited(ClinicError):
    status_code = 429
    code = "rate_limited"


class ReconciliationTimedOut(ClinicError):
    status_code = 408
    code = "reconciliation_timed_out"

    def __init__(self, attempt_id: int):
        super().__init__(
            "Payment confirmation timed out. If money left your account the payment "
            "will still be matched to your appointment; check its status again shortly."
        )
        self.attempt_id = attempt_id


class TransientPollError(ClinicError):
    """A single status check failed at the transport level; polling retries it."""

    status_code = 503
    code = "transient_poll_error"


def create_error_response(error_message: str, status_code: int = 400, code: Optional[str] = None) -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": error_message,
        "code": code,
    }

def create_success_response(data) -> dict:
    """Create a standardized success response"""
    return {
        "success": True,
        "data": data,
        "error": None
    }

async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException (and every ClinicError) in the standard envelope"""
    code = getattr(exc, "code", None) if isinstance(exc, ClinicError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(str(exc.detail), exc.status_code, code)
    )
