# app/schemas/appointments/appointment.py
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from datetime import datetime, date, time
from decimal import Decimal

from ...application.ports.appointments_repo import AppointmentStatus, PaymentState


class SlotResponse(BaseModel):
    start: time
    label: str
    starts_at: datetime
    ends_at: datetime


class AvailableSlotsResponse(BaseModel):
    doctor_id: int
    appointment_date: date
    slots: List[SlotResponse]


class AppointmentCreate(BaseModel):
    doctor_id: int
    patient_id: int
    appointment_date: date
    time_slot: time


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    patient_id: int
    appointment_date: date
    time_slot: time
    status: AppointmentStatus
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    payment_status: PaymentState
    video_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChargeCreate(BaseModel):
    charge_id: str = Field(min_length=1, max_length=64)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class TotalDueResponse(BaseModel):
    appointment_id: int
    total_due: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    currency: str


class ConsultationAccessResponse(BaseModel):
    appointment_id: int
    can_join: bool
    label: str
    opens_at: datetime
    closes_at: datetime
    video_url: Optional[str] = None
    recheck_after_seconds: int
