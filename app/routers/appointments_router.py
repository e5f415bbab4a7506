from typing import List

from fastapi import APIRouter, Depends, Query
import logging

from ..application.services.appointments_service import AppointmentsService
from ..application.services.consultation_gate import describe_access
from ..core.config import settings
from ..schemas.common.common import ERROR_RESPONSES
from ..dependencies import get_appointments_service, get_consultation_window
from ..schemas.appointments.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatusUpdate,
    ChargeCreate,
    ConsultationAccessResponse,
    TotalDueResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"], responses=ERROR_RESPONSES)


@router.post("/", response_model=AppointmentResponse, status_code=201)
def book_appointment(
    appointment_data: AppointmentCreate,
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    appt = appt_service.book(
        appointment_data.doctor_id,
        appointment_data.patient_id,
        appointment_data.appointment_date,
        appointment_data.time_slot,
    )
    return AppointmentResponse.model_validate(appt)


@router.get("/", response_model=List[AppointmentResponse])
def get_patient_appointments(
    patient_id: int = Query(...),
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    return [AppointmentResponse.model_validate(a) for a in appt_service.list_for_patient(patient_id)]


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    return AppointmentResponse.model_validate(appt_service.get(appointment_id))


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    update: AppointmentStatusUpdate,
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    return AppointmentResponse.model_validate(appt_service.set_status(appointment_id, update.status))


@router.post("/{appointment_id}/charges", response_model=AppointmentResponse)
def attach_charge(
    appointment_id: int,
    charge: ChargeCreate,
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    appt = appt_service.attach_charge(appointment_id, charge.charge_id, charge.amount)
    logger.info(f"Charge {charge.charge_id} of {charge.amount} attached to appointment {appointment_id}")
    return AppointmentResponse.model_validate(appt)


@router.delete("/{appointment_id}/charges/{charge_id}", response_model=AppointmentResponse)
def remove_charge(
    appointment_id: int,
    charge_id: str,
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    return AppointmentResponse.model_validate(appt_service.remove_charge(appointment_id, charge_id))


@router.get("/{appointment_id}/total", response_model=TotalDueResponse)
def get_total_due(
    appointment_id: int,
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    total = appt_service.total_due(appointment_id)
    appt = appt_service.get(appointment_id)
    return TotalDueResponse(
        appointment_id=appointment_id,
        total_due=total,
        amount_paid=appt.amount_paid,
        balance_due=appt.balance_due,
        currency=settings.CURRENCY,
    )


@router.get("/{appointment_id}/consultation", response_model=ConsultationAccessResponse)
def get_consultation_access(
    appointment_id: int,
    appt_service: AppointmentsService = Depends(get_appointments_service),
    window: tuple = Depends(get_consultation_window),
):
    opens_before, closes_after = window
    appt = appt_service.get(appointment_id)
    access = describe_access(
        appt,
        appt_service.clock(),
        opens_before=opens_before,
        closes_after=closes_after,
        recheck_after_seconds=settings.CONSULTATION_RECHECK_SECONDS,
    )
    return ConsultationAccessResponse(
        appointment_id=appointment_id,
        can_join=access.can_join,
        label=access.label,
        opens_at=access.opens_at,
        closes_at=access.closes_at,
        video_url=access.video_url,
        recheck_after_seconds=access.recheck_after_seconds,
    )
