from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional
from datetime import datetime

from .appointments_repo import AppointmentDto


class PaymentGateway(str, Enum):
    REDIRECT = "Redirect"
    PUSH_STK = "PushSTK"


class PaymentStatus(str, Enum):
    INITIATED = "Initiated"
    AWAITING_CONFIRMATION = "AwaitingConfirmation"
    SETTLED = "Settled"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


ACTIVE_STATUSES = frozenset({PaymentStatus.INITIATED, PaymentStatus.AWAITING_CONFIRMATION})
# A timed-out attempt can still settle when the provider reports success late.
SETTLEABLE_STATUSES = ACTIVE_STATUSES | {PaymentStatus.TIMED_OUT}


@dataclass
class PaymentAttemptDto:
    id: int
    appointment_id: int
    gateway: PaymentGateway
    status: PaymentStatus
    amount: Decimal
    started_at: datetime
    external_reference: Optional[str] = None
    checkout_url: Optional[str] = None
    phone: Optional[str] = None
    failure_reason: Optional[str] = None
    settled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass
class SettlementResult:
    applied: bool
    attempt: Optional[PaymentAttemptDto]
    appointment: Optional[AppointmentDto]
    previous_status: Optional[PaymentStatus] = None


class PaymentAttemptsRepository:
    def create(self, appointment_id: int, gateway: PaymentGateway, amount: Decimal, started_at: datetime, phone: Optional[str] = None) -> PaymentAttemptDto:
        ...

    def get(self, attempt_id: int) -> Optional[PaymentAttemptDto]:
        ...

    def get_active_for_appointment(self, appointment_id: int) -> Optional[PaymentAttemptDto]:
        ...

    def find_by_reference(self, external_reference: str) -> Optional[PaymentAttemptDto]:
        ...

    def list_for_appointment(self, appointment_id: int) -> List[PaymentAttemptDto]:
        ...

    def mark(self, attempt_id: int, to_status: PaymentStatus, from_statuses: Iterable[PaymentStatus], failure_reason: Optional[str] = None, external_reference: Optional[str] = None, checkout_url: Optional[str] = None) -> bool:
        """Conditional status update. Returns False if the attempt is no longer in `from_statuses`."""
        ...

    def settle(self, attempt_id: int, settled_at: datetime) -> SettlementResult:
        """In one transaction: mark the attempt Settled and record the payment on its appointment."""
        ...
