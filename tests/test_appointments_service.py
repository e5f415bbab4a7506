from dataclasses import replace
from datetime import datetime, date, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from app.application.ports.appointments_repo import AppointmentDto, AppointmentStatus, ChargeDto, DoctorDto, PaymentState
from app.application.services import lifecycle
from app.application.services.appointments_service import AppointmentsService
from app.application.services.pricing import total_due
from app.application.services.slot_calendar import get_catalog
from app.exceptions import AppointmentNotFound, DoctorNotFound, IllegalTransition, InvalidDate, SlotUnavailable

NAIROBI = ZoneInfo("Africa/Nairobi")
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 6, 12, 0, tzinfo=NAIROBI)


class FakeApptRepo:
    def __init__(self):
        self._id = 1
        self.appts = {}
        self.charges = {}
        self.doctors = {1: DoctorDto(id=1, name="Dr. Otieno", available_days=frozenset({"Monday", "Thursday"}))}

    def get_doctor(self, doctor_id: int):
        return self.doctors.get(doctor_id)

    def list_active_for_doctor_on(self, doctor_id: int, d: date):
        return [a for a in self.appts.values() if a.doctor_id == doctor_id and a.appointment_date == d and a.status != AppointmentStatus.CANCELLED]

    def create(self, doctor_id: int, patient_id: int, appointment_date: date, time_slot: time, total_amount: Decimal):
        a = AppointmentDto(self._id, doctor_id, patient_id, appointment_date, time_slot, AppointmentStatus.PENDING, total_amount, created_at=datetime.utcnow())
        self.appts[a.id] = a
        self._id += 1
        return a

    def get_by_id(self, appointment_id: int):
        return self.appts.get(appointment_id)

    def list_for_patient(self, patient_id: int):
        return [a for a in self.appts.values() if a.patient_id == patient_id]

    def list_for_doctor(self, doctor_id: int):
        return [a for a in self.appts.values() if a.doctor_id == doctor_id]

    def transition(self, appointment_id: int, from_status, to_status) -> bool:
        a = self.appts[appointment_id]
        if a.status != from_status:
            return False
        self.appts[appointment_id] = replace(a, status=to_status, video_url=None if to_status == AppointmentStatus.CANCELLED else a.video_url)
        return True

    def set_video_url(self, appointment_id: int, video_url: str) -> bool:
        a = self.appts[appointment_id]
        if a.status != AppointmentStatus.CONFIRMED or not a.is_paid or a.video_url:
            return False
        self.appts[appointment_id] = replace(a, video_url=video_url)
        return True

    def upsert_charge(self, appointment_id: int, charge_id: str, amount: Decimal) -> None:
        self.charges[(appointment_id, charge_id)] = ChargeDto(appointment_id, charge_id, amount)

    def delete_charge(self, appointment_id: int, charge_id: str) -> bool:
        return self.charges.pop((appointment_id, charge_id), None) is not None

    def list_charges(self, appointment_id: int):
        return [c for (aid, _), c in self.charges.items() if aid == appointment_id]

    def set_total_amount(self, appointment_id: int, total_amount: Decimal) -> None:
        self.appts[appointment_id] = replace(self.appts[appointment_id], total_amount=total_amount)

    def mark_paid(self, appointment_id: int):
        a = self.appts[appointment_id]
        self.appts[appointment_id] = replace(a, payment_status=PaymentState.PAID, amount_paid=a.total_amount)


class FakeCallLinks:
    def __init__(self):
        self.calls = 0

    def provision(self, appointment):
        self.calls += 1
        return f"https://meet.example/clinic-{appointment.id}"


def make_service(repo=None, call_links=None):
    return AppointmentsService(
        repo=repo or FakeApptRepo(),
        call_links=call_links,
        base_fee=Decimal("6500.00"),
        catalog=get_catalog("standard"),
        slot_minutes=30,
        clock=lambda: NOW,
    )


def test_book_success():
    svc = make_service()
    out = svc.book(1, 42, MONDAY, time(10, 30))
    assert out.id == 1
    assert out.status == AppointmentStatus.PENDING
    assert out.total_amount == Decimal("6500.00")
    assert out.payment_status == PaymentState.UNPAID


def test_book_in_the_past_is_rejected():
    svc = make_service()
    with pytest.raises(InvalidDate):
        svc.book(1, 42, NOW.date() - timedelta(days=1), time(10, 0))


def test_book_taken_slot_is_rejected():
    svc = make_service()
    svc.book(1, 42, MONDAY, time(10, 30))
    with pytest.raises(SlotUnavailable):
        svc.book(1, 43, MONDAY, time(10, 30))


@pytest.mark.parametrize("day,slot", [
    (MONDAY + timedelta(days=1), time(10, 0)),  # Tuesday, not a working day
    (MONDAY, time(12, 0)),  # lunch, not in catalog
    (MONDAY, time(10, 15)),  # off the half-hour grid
])
def test_book_outside_offered_slots_is_rejected(day, slot):
    with pytest.raises(SlotUnavailable):
        make_service().book(1, 42, day, slot)


def test_book_unknown_doctor():
    with pytest.raises(DoctorNotFound):
        make_service().book(99, 42, MONDAY, time(10, 0))


def test_cancelled_slot_can_be_rebooked():
    svc = make_service()
    first = svc.book(1, 42, MONDAY, time(9, 0))
    svc.set_status(first.id, AppointmentStatus.CANCELLED)
    second = svc.book(1, 43, MONDAY, time(9, 0))
    assert second.id != first.id


def test_available_slots_hide_booked_ones():
    svc = make_service()
    svc.book(1, 42, MONDAY, time(9, 0))
    slots = [s.start for s in svc.available_slots(1, MONDAY)]
    assert time(9, 0) not in slots
    assert len(slots) == 11


ALL = list(AppointmentStatus)


@pytest.mark.parametrize("current", ALL)
@pytest.mark.parametrize("requested", ALL)
def test_transition_table(current, requested):
    allowed = {
        (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.PENDING, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED),
    }
    if (current, requested) in allowed:
        assert lifecycle.transition(current, requested) == requested
    else:
        with pytest.raises(IllegalTransition):
            lifecycle.transition(current, requested)


def test_settlement_confirms_pending_and_keeps_other_statuses():
    assert lifecycle.status_after_settlement(AppointmentStatus.PENDING) == AppointmentStatus.CONFIRMED
    assert lifecycle.status_after_settlement(AppointmentStatus.CONFIRMED) == AppointmentStatus.CONFIRMED
    assert lifecycle.status_after_settlement(AppointmentStatus.CANCELLED) == AppointmentStatus.CANCELLED


def test_set_status_rejects_illegal_transitions():
    svc = make_service()
    appt = svc.book(1, 42, MONDAY, time(9, 0))
    svc.set_status(appt.id, AppointmentStatus.CANCELLED)
    with pytest.raises(IllegalTransition):
        svc.set_status(appt.id, AppointmentStatus.CONFIRMED)


def test_set_status_unknown_appointment():
    with pytest.raises(AppointmentNotFound):
        make_service().set_status(123, AppointmentStatus.CONFIRMED)


def test_confirming_a_paid_appointment_provisions_call_link_once():
    repo = FakeApptRepo()
    links = FakeCallLinks()
    svc = make_service(repo, links)
    appt = svc.book(1, 42, MONDAY, time(9, 0))
    repo.mark_paid(appt.id)

    confirmed = svc.set_status(appt.id, AppointmentStatus.CONFIRMED)
    assert confirmed.video_url == f"https://meet.example/clinic-{appt.id}"
    svc.ensure_call_link(confirmed)
    assert links.calls == 1


def test_confirming_unpaid_appointment_has_no_call_link():
    links = FakeCallLinks()
    svc = make_service(call_links=links)
    appt = svc.book(1, 42, MONDAY, time(9, 0))
    confirmed = svc.set_status(appt.id, AppointmentStatus.CONFIRMED)
    assert confirmed.video_url is None
    assert links.calls == 0


def test_total_due_pricing():
    assert total_due(Decimal("6500"), []) == Decimal("6500.00")
    assert total_due(Decimal("6500"), [Decimal("1000"), Decimal("500")]) == Decimal("8000.00")


def test_charges_update_total_and_are_idempotent_per_charge_id():
    svc = make_service()
    appt = svc.book(1, 42, MONDAY, time(9, 0))
    assert svc.total_due(appt.id) == Decimal("6500.00")

    svc.attach_charge(appt.id, "lab-1", Decimal("1000"))
    updated = svc.attach_charge(appt.id, "rx-7", "500")
    assert updated.total_amount == Decimal("8000.00")

    again = svc.attach_charge(appt.id, "lab-1", Decimal("1000"))
    assert again.total_amount == Decimal("8000.00")

    removed = svc.remove_charge(appt.id, "rx-7")
    assert removed.total_amount == Decimal("7500.00")
    assert removed.balance_due == Decimal("7500.00")


def test_charges_rejected_on_cancelled_or_non_positive():
    svc = make_service()
    appt = svc.book(1, 42, MONDAY, time(9, 0))
    with pytest.raises(ValueError):
        svc.attach_charge(appt.id, "lab-1", Decimal("0"))
    svc.set_status(appt.id, AppointmentStatus.CANCELLED)
    with pytest.raises(IllegalTransition):
        svc.attach_charge(appt.id, "lab-1", Decimal("100"))
