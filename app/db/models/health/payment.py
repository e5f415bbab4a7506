# app/db/models/health/payment.py
from decimal import Decimal
from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime

from ....utils import utc_now

class PaymentAttempt(SQLModel, table=True):
    __tablename__ = "payment_attempts"
    id: Optional[int] = Field(default=None, primary_key=True)
    appointment_id: int = Field(foreign_key="appointments.id", index=True)
    gateway: str  # Redirect | PushSTK
    status: str = Field(default="Initiated", index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    external_reference: Optional[str] = Field(default=None, index=True)
    checkout_url: Optional[str] = None
    phone: Optional[str] = None
    failure_reason: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    settled_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)

    appointment: Optional["Appointment"] = Relationship(back_populates="payment_attempts")
