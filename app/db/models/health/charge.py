# app/db/models/health/charge.py
from decimal import Decimal
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime

from ....utils import utc_now

class AppointmentCharge(SQLModel, table=True):
    __tablename__ = "appointment_charges"
    __table_args__ = (UniqueConstraint("appointment_id", "charge_id", name="uq_appointment_charges_charge"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    appointment_id: int = Field(foreign_key="appointments.id", index=True)
    charge_id: str
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    appointment: Optional["Appointment"] = Relationship(back_populates="charges")
