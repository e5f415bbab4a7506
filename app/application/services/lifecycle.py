"""Appointment state machine.

Doctor actions and payment settlement are two event sources for the same
transition function; nothing else decides an appointment's next status.
"""
from ..ports.appointments_repo import AppointmentStatus
from ...exceptions import IllegalTransition

ALLOWED_TRANSITIONS = frozenset({
    (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
    (AppointmentStatus.PENDING, AppointmentStatus.CANCELLED),
    (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED),
})


def transition(current: AppointmentStatus, requested: AppointmentStatus) -> AppointmentStatus:
    current = AppointmentStatus(current)
    requested = AppointmentStatus(requested)
    if (current, requested) not in ALLOWED_TRANSITIONS:
        raise IllegalTransition(f"Cannot change appointment status from {current.value} to {requested.value}")
    return requested


def status_after_settlement(current: AppointmentStatus) -> AppointmentStatus:
    """Settled payment auto-confirms a Pending appointment; Cancelled stays Cancelled."""
    current = AppointmentStatus(current)
    if current == AppointmentStatus.PENDING:
        return transition(current, AppointmentStatus.CONFIRMED)
    return current
