from typing import Protocol

from .appointments_repo import AppointmentDto


class CallLinkProvisioner(Protocol):
    def provision(self, appointment: AppointmentDto) -> str:
        ...
