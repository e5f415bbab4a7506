import json
import logging
from datetime import date, time
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .....db.models import Appointment, AppointmentCharge, Doctor
from .....utils import utc_now
from .....application.ports.appointments_repo import (
    AppointmentsRepository,
    AppointmentDto,
    AppointmentStatus,
    ChargeDto,
    DoctorDto,
    PaymentState,
)
from .....exceptions import SlotUnavailable

logger = logging.getLogger(__name__)


def appointment_to_dto(a: Appointment) -> AppointmentDto:
    return AppointmentDto(
        id=a.id,
        doctor_id=a.doctor_id,
        patient_id=a.patient_id,
        appointment_date=a.appointment_date,
        time_slot=a.time_slot,
        status=AppointmentStatus(a.status),
        total_amount=Decimal(a.total_amount),
        amount_paid=Decimal(a.amount_paid or 0),
        payment_status=PaymentState(a.payment_status),
        video_url=a.video_url,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


def _parse_days(raw: Optional[str]) -> frozenset:
    if not raw:
        return frozenset()
    try:
        days = json.loads(raw)
    except ValueError:
        # Tolerate "Monday,Wednesday" rows written by older tooling
        days = raw.split(",")
    return frozenset(str(d).strip() for d in days if str(d).strip())


class SqlAppointmentsRepository(AppointmentsRepository):
    def __init__(self, engine: Engine):
        self.engine = engine

    def get_doctor(self, doctor_id: int) -> Optional[DoctorDto]:
        with Session(self.engine) as session:
            d = session.get(Doctor, doctor_id)
            if not d:
                return None
            return DoctorDto(id=d.id, name=d.name, specialization=d.specialization, available_days=_parse_days(d.available_days))

    def list_active_for_doctor_on(self, doctor_id: int, appointment_date: date) -> List[AppointmentDto]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Appointment)
                .where(Appointment.doctor_id == doctor_id)
                .where(Appointment.appointment_date == appointment_date)
                .where(Appointment.status != AppointmentStatus.CANCELLED.value)
                .order_by(Appointment.time_slot)
            ).all()
            return [appointment_to_dto(r) for r in rows]

    def create(self, doctor_id: int, patient_id: int, appointment_date: date, time_slot: time, total_amount: Decimal) -> AppointmentDto:
        with Session(self.engine) as session:
            appt = Appointment(
                doctor_id=doctor_id,
                patient_id=patient_id,
                appointment_date=appointment_date,
                time_slot=time_slot,
                status=AppointmentStatus.PENDING.value,
                total_amount=total_amount,
                payment_status=PaymentState.UNPAID.value,
            )
            session.add(appt)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(f"Slot {appointment_date} {time_slot} for doctor {doctor_id} taken by a concurrent booking")
                raise SlotUnavailable(
                    f"The {time_slot.strftime('%H:%M')} slot on {appointment_date.isoformat()} has just been booked"
                )
            session.refresh(appt)
            return appointment_to_dto(appt)

    def get_by_id(self, appointment_id: int) -> Optional[AppointmentDto]:
        with Session(self.engine) as session:
            a = session.get(Appointment, appointment_id)
            return appointment_to_dto(a) if a else None

    def list_for_patient(self, patient_id: int) -> List[AppointmentDto]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Appointment)
                .where(Appointment.patient_id == patient_id)
                .order_by(Appointment.appointment_date.desc(), Appointment.time_slot.desc())
            ).all()
            return [appointment_to_dto(r) for r in rows]

    def list_for_doctor(self, doctor_id: int) -> List[AppointmentDto]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Appointment)
                .where(Appointment.doctor_id == doctor_id)
                .order_by(Appointment.appointment_date.desc(), Appointment.time_slot.desc())
            ).all()
            return [appointment_to_dto(r) for r in rows]

    def transition(self, appointment_id: int, from_status: AppointmentStatus, to_status: AppointmentStatus) -> bool:
        values = {"status": to_status.value, "updated_at": utc_now()}
        if to_status == AppointmentStatus.CANCELLED:
            values["video_url"] = None
        with Session(self.engine) as session:
            result = session.exec(
                update(Appointment)
                .execution_options(synchronize_session=False)
                .where(Appointment.id == appointment_id)
                .where(Appointment.status == from_status.value)
                .values(**values)
            )
            session.commit()
            return result.rowcount == 1

    def set_video_url(self, appointment_id: int, video_url: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                update(Appointment)
                .execution_options(synchronize_session=False)
                .where(Appointment.id == appointment_id)
                .where(Appointment.status == AppointmentStatus.CONFIRMED.value)
                .where(Appointment.payment_status == PaymentState.PAID.value)
                .where(Appointment.video_url.is_(None))
                .values(video_url=video_url, updated_at=utc_now())
            )
            session.commit()
            return result.rowcount == 1

    def upsert_charge(self, appointment_id: int, charge_id: str, amount: Decimal) -> None:
        with Session(self.engine) as session:
            charge = session.exec(
                select(AppointmentCharge)
                .where(AppointmentCharge.appointment_id == appointment_id)
                .where(AppointmentCharge.charge_id == charge_id)
            ).first()
            if charge is None:
                charge = AppointmentCharge(appointment_id=appointment_id, charge_id=charge_id, amount=amount)
            elif charge.amount == amount:
                return
            else:
                charge.amount = amount
                charge.updated_at = utc_now()
            session.add(charge)
            session.commit()

    def delete_charge(self, appointment_id: int, charge_id: str) -> bool:
        with Session(self.engine) as session:
            charge = session.exec(
                select(AppointmentCharge)
                .where(AppointmentCharge.appointment_id == appointment_id)
                .where(AppointmentCharge.charge_id == charge_id)
            ).first()
            if not charge:
                return False
            session.delete(charge)
            session.commit()
            return True

    def list_charges(self, appointment_id: int) -> List[ChargeDto]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AppointmentCharge)
                .where(AppointmentCharge.appointment_id == appointment_id)
                .order_by(AppointmentCharge.created_at)
            ).all()
            return [ChargeDto(appointment_id=r.appointment_id, charge_id=r.charge_id, amount=Decimal(r.amount), created_at=r.created_at) for r in rows]

    def set_total_amount(self, appointment_id: int, total_amount: Decimal) -> None:
        with Session(self.engine) as session:
            session.exec(
                update(Appointment)
                .execution_options(synchronize_session=False)
                .where(Appointment.id == appointment_id)
                .values(total_amount=total_amount, updated_at=utc_now())
            )
            session.commit()
