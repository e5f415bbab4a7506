# app/schemas/payments/payment.py
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, Optional
from datetime import datetime
from decimal import Decimal

from ...application.ports.payments_repo import PaymentGateway, PaymentStatus


class PaymentInitiateRequest(BaseModel):
    appointment_id: int
    gateway: PaymentGateway
    phone: Optional[str] = None
    email: Optional[str] = None


class PaymentAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: int
    gateway: PaymentGateway
    status: PaymentStatus
    amount: Decimal
    started_at: datetime
    external_reference: Optional[str] = None
    checkout_url: Optional[str] = None
    failure_reason: Optional[str] = None
    settled_at: Optional[datetime] = None


class PaymentInitiateResponse(BaseModel):
    attempt: PaymentAttemptResponse
    checkout_url: Optional[str] = None
    customer_message: Optional[str] = None


class PaymentOutcomeResponse(BaseModel):
    attempt_id: int
    outcome: str
    attempt: PaymentAttemptResponse


class MpesaCallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


class MpesaCallbackPayload(BaseModel):
    Body: Dict[str, Any]
