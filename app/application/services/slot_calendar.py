"""Bookable slot computation.

The calendar only filters a static daily catalog; it never reserves anything.
Reservation correctness comes from the unique index on active appointments.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Sequence, Tuple

from ..ports.appointments_repo import AppointmentDto, AppointmentStatus, DoctorDto
from ...utils import format_clock_time

SLOT_DURATION = timedelta(minutes=30)

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True, order=True)
class TimeSlot:
    day: date
    start: time
    duration: timedelta = SLOT_DURATION

    def starts_at(self, tzinfo=None) -> datetime:
        return datetime.combine(self.day, self.start, tzinfo=tzinfo)

    def ends_at(self, tzinfo=None) -> datetime:
        return self.starts_at(tzinfo) + self.duration

    @property
    def label(self) -> str:
        end = (datetime.combine(self.day, self.start) + self.duration).time()
        return f"{format_clock_time(self.start)} – {format_clock_time(end)}"


def build_catalog(ranges: Iterable[Tuple[str, str]], slot_minutes: int = 30) -> Tuple[time, ...]:
    """Expand inclusive (first, last) start-time ranges into slot start times."""
    step = timedelta(minutes=slot_minutes)
    starts: List[time] = []
    for first, last in ranges:
        cursor = datetime.combine(date.min, time.fromisoformat(first))
        stop = datetime.combine(date.min, time.fromisoformat(last))
        while cursor <= stop:
            starts.append(cursor.time())
            cursor += step
    return tuple(sorted(set(starts)))


CATALOG_RANGES: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "standard": (("09:00", "11:30"), ("14:00", "16:30")),
    "extended": (("09:00", "11:30"), ("14:00", "19:30")),
}


def get_catalog(name: str, slot_minutes: int = 30) -> Tuple[time, ...]:
    try:
        ranges = CATALOG_RANGES[name]
    except KeyError:
        raise ValueError(f"Unknown slot catalog '{name}'. Choose one of: {sorted(CATALOG_RANGES)}")
    return build_catalog(ranges, slot_minutes)


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def offers_day(doctor: DoctorDto, day: date) -> bool:
    available = {d.strip().lower() for d in doctor.available_days}
    return weekday_name(day).lower() in available


def available_slots(
    doctor: DoctorDto,
    day: date,
    existing_appointments: Iterable[AppointmentDto],
    now: datetime,
    catalog: Sequence[time],
    slot_minutes: int = 30,
) -> List[TimeSlot]:
    if not offers_day(doctor, day):
        return []

    today = now.date()
    if day < today:
        return []

    taken = {
        a.time_slot
        for a in existing_appointments
        if a.doctor_id == doctor.id
        and a.appointment_date == day
        and a.status != AppointmentStatus.CANCELLED
    }

    duration = timedelta(minutes=slot_minutes)
    slots: List[TimeSlot] = []
    for start in sorted(catalog):
        if start in taken:
            continue
        slot = TimeSlot(day=day, start=start, duration=duration)
        # A slot is past the instant it starts
        if day == today and slot.starts_at(now.tzinfo) <= now:
            continue
        slots.append(slot)
    return slots
