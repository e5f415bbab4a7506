# app/db/models/health/doctor.py
from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime

from ....utils import utc_now

class Doctor(SQLModel, table=True):
    __tablename__ = "doctors"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    specialization: str = Field(default="")
    # JSON list of weekday names, e.g. '["Monday", "Wednesday"]'
    available_days: str = Field(default="[]")
    created_at: datetime = Field(default_factory=utc_now)

    # Relationships
    appointments: List["Appointment"] = Relationship(back_populates="doctor")
