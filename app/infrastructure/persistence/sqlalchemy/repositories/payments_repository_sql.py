import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from .appointments_repository_sql import appointment_to_dto
from .....db.models import Appointment, PaymentAttempt
from .....utils import as_utc, utc_now
from .....application.ports.appointments_repo import AppointmentStatus, PaymentState
from .....application.ports.payments_repo import (
    ACTIVE_STATUSES,
    SETTLEABLE_STATUSES,
    PaymentAttemptDto,
    PaymentAttemptsRepository,
    PaymentGateway,
    PaymentStatus,
    SettlementResult,
)
from .....application.services.lifecycle import status_after_settlement

logger = logging.getLogger(__name__)

# Appointment compare-and-set retries inside one settlement
MAX_SETTLE_ATTEMPTS = 3


def attempt_to_dto(p: PaymentAttempt) -> PaymentAttemptDto:
    return PaymentAttemptDto(
        id=p.id,
        appointment_id=p.appointment_id,
        gateway=PaymentGateway(p.gateway),
        status=PaymentStatus(p.status),
        amount=Decimal(p.amount),
        started_at=as_utc(p.started_at),
        external_reference=p.external_reference,
        checkout_url=p.checkout_url,
        phone=p.phone,
        failure_reason=p.failure_reason,
        settled_at=as_utc(p.settled_at) if p.settled_at else None,
        updated_at=p.updated_at,
    )


class SqlPaymentAttemptsRepository(PaymentAttemptsRepository):
    def __init__(self, engine: Engine):
        self.engine = engine

    def create(self, appointment_id: int, gateway: PaymentGateway, amount: Decimal, started_at: datetime, phone: Optional[str] = None) -> PaymentAttemptDto:
        with Session(self.engine) as session:
            attempt = PaymentAttempt(
                appointment_id=appointment_id,
                gateway=PaymentGateway(gateway).value,
                status=PaymentStatus.INITIATED.value,
                amount=amount,
                phone=phone,
                started_at=as_utc(started_at),
            )
            session.add(attempt)
            session.commit()
            session.refresh(attempt)
            return attempt_to_dto(attempt)

    def get(self, attempt_id: int) -> Optional[PaymentAttemptDto]:
        with Session(self.engine) as session:
            p = session.get(PaymentAttempt, attempt_id)
            return attempt_to_dto(p) if p else None

    def get_active_for_appointment(self, appointment_id: int) -> Optional[PaymentAttemptDto]:
        with Session(self.engine) as session:
            p = session.exec(
                select(PaymentAttempt)
                .where(PaymentAttempt.appointment_id == appointment_id)
                .where(PaymentAttempt.status.in_([s.value for s in ACTIVE_STATUSES]))
                .order_by(PaymentAttempt.started_at.desc())
            ).first()
            return attempt_to_dto(p) if p else None

    def find_by_reference(self, external_reference: str) -> Optional[PaymentAttemptDto]:
        with Session(self.engine) as session:
            p = session.exec(
                select(PaymentAttempt).where(PaymentAttempt.external_reference == external_reference)
            ).first()
            return attempt_to_dto(p) if p else None

    def list_for_appointment(self, appointment_id: int) -> List[PaymentAttemptDto]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PaymentAttempt)
                .where(PaymentAttempt.appointment_id == appointment_id)
                .order_by(PaymentAttempt.started_at.desc())
            ).all()
            return [attempt_to_dto(r) for r in rows]

    def mark(self, attempt_id: int, to_status: PaymentStatus, from_statuses: Iterable[PaymentStatus], failure_reason: Optional[str] = None, external_reference: Optional[str] = None, checkout_url: Optional[str] = None) -> bool:
        values = {"status": PaymentStatus(to_status).value, "updated_at": utc_now()}
        if failure_reason is not None:
            values["failure_reason"] = failure_reason
        if external_reference is not None:
            values["external_reference"] = external_reference
        if checkout_url is not None:
            values["checkout_url"] = checkout_url
        with Session(self.engine) as session:
            result = session.exec(
                update(PaymentAttempt)
                .execution_options(synchronize_session=False)
                .where(PaymentAttempt.id == attempt_id)
                .where(PaymentAttempt.status.in_([PaymentStatus(s).value for s in from_statuses]))
                .values(**values)
            )
            session.commit()
            return result.rowcount == 1

    def settle(self, attempt_id: int, settled_at: datetime) -> SettlementResult:
        stamp = as_utc(settled_at)
        for _ in range(MAX_SETTLE_ATTEMPTS):
            with Session(self.engine) as session:
                attempt = session.get(PaymentAttempt, attempt_id)
                if attempt is None:
                    return SettlementResult(applied=False, attempt=None, appointment=None)
                previous = PaymentStatus(attempt.status)
                amount = Decimal(attempt.amount)
                appointment_id = attempt.appointment_id

                moved = session.exec(
                    update(PaymentAttempt)
                    .execution_options(synchronize_session=False)
                    .where(PaymentAttempt.id == attempt_id)
                    .where(PaymentAttempt.status.in_([s.value for s in SETTLEABLE_STATUSES]))
                    .values(status=PaymentStatus.SETTLED.value, settled_at=stamp, updated_at=stamp)
                ).rowcount
                if moved != 1:
                    session.rollback()
                    return SettlementResult(applied=False, attempt=self.get(attempt_id), appointment=None, previous_status=previous)

                appt = session.get(Appointment, appointment_id)
                current = AppointmentStatus(appt.status)
                target = status_after_settlement(current)
                flipped = session.exec(
                    update(Appointment)
                    .execution_options(synchronize_session=False)
                    .where(Appointment.id == appointment_id)
                    .where(Appointment.status == current.value)
                    .values(
                        status=target.value,
                        payment_status=PaymentState.PAID.value,
                        amount_paid=Appointment.amount_paid + amount,
                        updated_at=stamp,
                    )
                ).rowcount
                if flipped != 1:
                    # Appointment changed under us (e.g. cancelled); redo both updates
                    session.rollback()
                    logger.info(f"Appointment {appointment_id} changed during settlement of attempt {attempt_id}, retrying")
                    continue
                session.commit()

            return SettlementResult(
                applied=True,
                attempt=self.get(attempt_id),
                appointment=self._appointment(appointment_id),
                previous_status=previous,
            )
        raise RuntimeError(f"Could not settle payment attempt {attempt_id}: appointment kept changing")

    def _appointment(self, appointment_id: int):
        with Session(self.engine) as session:
            a = session.get(Appointment, appointment_id)
            return appointment_to_dto(a) if a else None
