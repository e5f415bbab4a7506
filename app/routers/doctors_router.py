from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query
import logging

from ..application.services.appointments_service import AppointmentsService
from ..schemas.common.common import ERROR_RESPONSES
from ..dependencies import get_appointments_service
from ..schemas.appointments.appointment import AppointmentResponse, AvailableSlotsResponse, SlotResponse
from ..utils import clinic_timezone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/doctors", tags=["Doctors"], responses=ERROR_RESPONSES)


@router.get("/{doctor_id}/slots", response_model=AvailableSlotsResponse)
def get_available_slots(
    doctor_id: int,
    day: date = Query(..., alias="date"),
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    tz = clinic_timezone()
    slots = appt_service.available_slots(doctor_id, day)
    return AvailableSlotsResponse(
        doctor_id=doctor_id,
        appointment_date=day,
        slots=[
            SlotResponse(start=s.start, label=s.label, starts_at=s.starts_at(tz), ends_at=s.ends_at(tz))
            for s in slots
        ],
    )


@router.get("/{doctor_id}/appointments", response_model=List[AppointmentResponse])
def get_doctor_appointments(
    doctor_id: int,
    appt_service: AppointmentsService = Depends(get_appointments_service),
):
    appt_service.get_doctor(doctor_id)
    return [AppointmentResponse.model_validate(a) for a in appt_service.list_for_doctor(doctor_id)]
