# Models package (re-export feature modules for stable imports)
from .health.doctor import Doctor
from .health.appointment import Appointment
from .health.charge import AppointmentCharge
from .health.payment import PaymentAttempt

__all__ = [
    "Doctor",
    "Appointment",
    "AppointmentCharge",
    "PaymentAttempt",
]
