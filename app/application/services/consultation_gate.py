from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Optional, Tuple

from ..ports.appointments_repo import AppointmentDto, AppointmentStatus
from ...utils import format_clock_time

JOIN_OPENS_BEFORE = timedelta(minutes=10)
JOIN_CLOSES_AFTER = timedelta(minutes=45)


@dataclass
class ConsultationAccess:
    can_join: bool
    label: str
    opens_at: datetime
    closes_at: datetime
    video_url: Optional[str] = None
    recheck_after_seconds: int = 30


def consultation_window(
    appointment: AppointmentDto,
    tz: Optional[tzinfo] = None,
    opens_before: timedelta = JOIN_OPENS_BEFORE,
    closes_after: timedelta = JOIN_CLOSES_AFTER,
) -> Tuple[datetime, datetime]:
    start = datetime.combine(appointment.appointment_date, appointment.time_slot, tzinfo=tz)
    return start - opens_before, start + closes_after


def can_join(
    appointment: AppointmentDto,
    now: datetime,
    opens_before: timedelta = JOIN_OPENS_BEFORE,
    closes_after: timedelta = JOIN_CLOSES_AFTER,
) -> bool:
    if appointment.status != AppointmentStatus.CONFIRMED or not appointment.video_url:
        return False
    opens_at, closes_at = consultation_window(appointment, now.tzinfo, opens_before, closes_after)
    return opens_at <= now <= closes_at


def describe_access(
    appointment: AppointmentDto,
    now: datetime,
    opens_before: timedelta = JOIN_OPENS_BEFORE,
    closes_after: timedelta = JOIN_CLOSES_AFTER,
    recheck_after_seconds: int = 30,
) -> ConsultationAccess:
    opens_at, closes_at = consultation_window(appointment, now.tzinfo, opens_before, closes_after)
    joinable = can_join(appointment, now, opens_before, closes_after)

    if appointment.status == AppointmentStatus.CANCELLED:
        label = "Appointment cancelled"
    elif appointment.status == AppointmentStatus.PENDING:
        label = "Awaiting doctor confirmation"
    elif not appointment.video_url:
        label = "Awaiting patient payment"
    elif joinable:
        label = "Join consultation"
    elif now < opens_at:
        label = f"Available at {format_clock_time(appointment.time_slot)} on {appointment.appointment_date.strftime('%b %d, %Y')}"
    else:
        label = "Consultation window closed"

    return ConsultationAccess(
        can_join=joinable,
        label=label,
        opens_at=opens_at,
        closes_at=closes_at,
        video_url=appointment.video_url if joinable else None,
        recheck_after_seconds=recheck_after_seconds,
    )
