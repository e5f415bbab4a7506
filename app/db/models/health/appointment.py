# app/db/models/health/appointment.py
from decimal import Decimal
from typing import Optional, List
from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, date, time

from ....utils import utc_now

ACTIVE_SLOT_PREDICATE = text("status != 'Cancelled'")

class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        # One non-cancelled booking per doctor, day and slot
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "appointment_date",
            "time_slot",
            unique=True,
            sqlite_where=ACTIVE_SLOT_PREDICATE,
            postgresql_where=ACTIVE_SLOT_PREDICATE,
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="doctors.id", index=True)
    patient_id: int = Field(index=True)
    appointment_date: date
    time_slot: time
    status: str = Field(default="Pending", index=True)
    total_amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    amount_paid: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    payment_status: str = Field(default="Unpaid")
    video_url: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Relationships
    doctor: Optional["Doctor"] = Relationship(back_populates="appointments")
    charges: List["AppointmentCharge"] = Relationship(back_populates="appointment")
    payment_attempts: List["PaymentAttempt"] = Relationship(back_populates="appointment")
