import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional, Sequence
from datetime import datetime, date, time

from ..ports.appointments_repo import AppointmentsRepository, AppointmentDto, AppointmentStatus, DoctorDto
from ..ports.call_link_provisioner import CallLinkProvisioner
from . import lifecycle
from .pricing import to_amount, total_due
from .slot_calendar import TimeSlot, available_slots, get_catalog
from ...core.config import settings
from ...exceptions import AppointmentNotFound, DoctorNotFound, IllegalTransition, InvalidDate, SlotUnavailable
from ...utils import clinic_now

logger = logging.getLogger(__name__)

# Status compare-and-set retries before giving up on a contended appointment
MAX_TRANSITION_ATTEMPTS = 3


@dataclass
class AppointmentsService:
    repo: AppointmentsRepository
    call_links: Optional[CallLinkProvisioner] = None
    base_fee: Decimal = field(default_factory=lambda: to_amount(settings.CONSULTATION_FEE))
    catalog: Sequence[time] = field(default_factory=lambda: get_catalog(settings.SLOT_CATALOG, settings.SLOT_DURATION_MINUTES))
    slot_minutes: int = field(default_factory=lambda: settings.SLOT_DURATION_MINUTES)
    clock: Callable[[], datetime] = clinic_now

    def get_doctor(self, doctor_id: int) -> DoctorDto:
        doctor = self.repo.get_doctor(doctor_id)
        if not doctor:
            raise DoctorNotFound(doctor_id)
        return doctor

    def available_slots(self, doctor_id: int, appointment_date: date) -> List[TimeSlot]:
        doctor = self.get_doctor(doctor_id)
        existing = self.repo.list_active_for_doctor_on(doctor_id, appointment_date)
        return available_slots(doctor, appointment_date, existing, self.clock(), self.catalog, self.slot_minutes)

    def book(self, doctor_id: int, patient_id: int, appointment_date: date, time_slot: time) -> AppointmentDto:
        now = self.clock()
        if appointment_date < now.date():
            raise InvalidDate("Appointment date cannot be in the past")

        # Re-validated here; the unique index in the store settles races between bookers.
        open_starts = {s.start for s in self.available_slots(doctor_id, appointment_date)}
        if time_slot not in open_starts:
            raise SlotUnavailable(
                f"The {time_slot.strftime('%H:%M')} slot on {appointment_date.isoformat()} is not available"
            )

        appt = self.repo.create(doctor_id, patient_id, appointment_date, time_slot, self.base_fee)
        logger.info(f"Booked appointment {appt.id} for patient {patient_id} with doctor {doctor_id} at {appointment_date} {time_slot}")
        return appt

    def get(self, appointment_id: int) -> AppointmentDto:
        appt = self.repo.get_by_id(appointment_id)
        if not appt:
            raise AppointmentNotFound(appointment_id)
        return appt

    def list_for_patient(self, patient_id: int) -> List[AppointmentDto]:
        return self.repo.list_for_patient(patient_id)

    def list_for_doctor(self, doctor_id: int) -> List[AppointmentDto]:
        return self.repo.list_for_doctor(doctor_id)

    def set_status(self, appointment_id: int, new_status: AppointmentStatus) -> AppointmentDto:
        new_status = AppointmentStatus(new_status)
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            appt = self.get(appointment_id)
            target = lifecycle.transition(appt.status, new_status)
            if self.repo.transition(appointment_id, appt.status, target):
                logger.info(f"Appointment {appointment_id}: {appt.status.value} -> {target.value}")
                updated = self.get(appointment_id)
                if target == AppointmentStatus.CONFIRMED:
                    updated = self.ensure_call_link(updated)
                return updated
            logger.info(f"Appointment {appointment_id} changed while updating status, retrying")
        raise IllegalTransition(f"Appointment {appointment_id} is being modified concurrently; try again")

    def ensure_call_link(self, appt: AppointmentDto) -> AppointmentDto:
        """Provision the video link once an appointment is both Confirmed and paid."""
        if appt.video_url or self.call_links is None:
            return appt
        if appt.status != AppointmentStatus.CONFIRMED or not appt.is_paid:
            return appt
        url = self.call_links.provision(appt)
        if self.repo.set_video_url(appt.id, url):
            logger.info(f"Provisioned call link for appointment {appt.id}")
        return self.get(appt.id)

    def attach_charge(self, appointment_id: int, charge_id: str, amount) -> AppointmentDto:
        appt = self.get(appointment_id)
        if appt.status == AppointmentStatus.CANCELLED:
            raise IllegalTransition(f"Cannot add charges to cancelled appointment {appointment_id}")
        value = to_amount(amount)
        if value <= 0:
            raise ValueError("Charge amount must be positive")
        self.repo.upsert_charge(appointment_id, str(charge_id), value)
        return self._refresh_total(appointment_id)

    def remove_charge(self, appointment_id: int, charge_id: str) -> AppointmentDto:
        self.get(appointment_id)
        if self.repo.delete_charge(appointment_id, str(charge_id)):
            logger.info(f"Removed charge {charge_id} from appointment {appointment_id}")
        return self._refresh_total(appointment_id)

    def total_due(self, appointment_id: int) -> Decimal:
        self.get(appointment_id)
        charges = self.repo.list_charges(appointment_id)
        return total_due(self.base_fee, [c.amount for c in charges])

    def _refresh_total(self, appointment_id: int) -> AppointmentDto:
        self.repo.set_total_amount(appointment_id, self.total_due(appointment_id))
        return self.get(appointment_id)
