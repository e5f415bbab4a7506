from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, List, Optional
from datetime import datetime, date, time


class AppointmentStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"


class PaymentState(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"


@dataclass
class DoctorDto:
    id: int
    name: str
    specialization: str = ""
    available_days: FrozenSet[str] = field(default_factory=frozenset)


@dataclass
class AppointmentDto:
    id: int
    doctor_id: int
    patient_id: int
    appointment_date: date
    time_slot: time
    status: AppointmentStatus
    total_amount: Decimal
    amount_paid: Decimal = Decimal("0.00")
    payment_status: PaymentState = PaymentState.UNPAID
    video_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def balance_due(self) -> Decimal:
        return max(self.total_amount - self.amount_paid, Decimal("0.00"))

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentState.PAID


@dataclass
class ChargeDto:
    appointment_id: int
    charge_id: str
    amount: Decimal
    created_at: Optional[datetime] = None


class AppointmentsRepository:
    def get_doctor(self, doctor_id: int) -> Optional[DoctorDto]:
        ...

    def list_active_for_doctor_on(self, doctor_id: int, appointment_date: date) -> List[AppointmentDto]:
        """Non-cancelled appointments of a doctor on one day."""
        ...

    def create(self, doctor_id: int, patient_id: int, appointment_date: date, time_slot: time, total_amount: Decimal) -> AppointmentDto:
        """Insert a Pending appointment; raises SlotUnavailable when the slot is already held."""
        ...

    def get_by_id(self, appointment_id: int) -> Optional[AppointmentDto]:
        ...

    def list_for_patient(self, patient_id: int) -> List[AppointmentDto]:
        ...

    def list_for_doctor(self, doctor_id: int) -> List[AppointmentDto]:
        ...

    def transition(self, appointment_id: int, from_status: AppointmentStatus, to_status: AppointmentStatus) -> bool:
        """Compare-and-set on status. Returns False when the current status is not `from_status`."""
        ...

    def set_video_url(self, appointment_id: int, video_url: str) -> bool:
        """Store a call link only on a Confirmed, paid appointment without one."""
        ...

    def upsert_charge(self, appointment_id: int, charge_id: str, amount: Decimal) -> None:
        ...

    def delete_charge(self, appointment_id: int, charge_id: str) -> bool:
        ...

    def list_charges(self, appointment_id: int) -> List[ChargeDto]:
        ...

    def set_total_amount(self, appointment_id: int, total_amount: Decimal) -> None:
        ...
