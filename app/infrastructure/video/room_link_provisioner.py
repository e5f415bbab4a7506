import uuid

from ...application.ports.appointments_repo import AppointmentDto
from ...application.ports.call_link_provisioner import CallLinkProvisioner


class RoomLinkProvisioner(CallLinkProvisioner):
    """Issues an unguessable video room URL per appointment."""

    def __init__(self, base_url: str, prefix: str = "clinic") -> None:
        self.base_url = base_url.rstrip("/")
        self.prefix = prefix

    def provision(self, appointment: AppointmentDto) -> str:
        room = f"{self.prefix}-{appointment.id}-{uuid.uuid4().hex[:16]}"
        return f"{self.base_url}/{room}"
