"""Payment initiation and reconciliation.

Each payment attempt that is awaiting confirmation is watched by one asyncio
task owned by the orchestrator. The task polls the gateway on a fixed interval
until the provider reports a terminal status or the absolute timeout, counted
from the attempt's start, runs out. Settlement is a single conditional store
update, so a late success and a timeout cannot both win.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..ports.appointments_repo import AppointmentDto, AppointmentStatus
from ..ports.audit_logger import AuditLogger
from ..ports.payment_gateway import PushPaymentGateway, RedirectPaymentGateway
from ..ports.payments_repo import (
    ACTIVE_STATUSES,
    PaymentAttemptDto,
    PaymentAttemptsRepository,
    PaymentGateway,
    PaymentStatus,
)
from ..ports.rate_limiter import RateLimiter
from .appointments_service import AppointmentsService
from ...exceptions import (
    GatewayRejected,
    IllegalTransition,
    PaymentAttemptNotFound,
    PaymentNotRequired,
    RateLimited,
    ReconciliationTimedOut,
    TransientPollError,
)
from ...utils import as_utc, normalize_phone, utc_now

logger = logging.getLogger(__name__)

# Providers report success under several names; M-Pesa uses ResultCode "0".
SUCCESS_STATUSES = frozenset({
    "0", "paid", "complete", "completed", "success", "successful", "succeeded", "settled", "no_payment_required",
})
# Any non-zero M-Pesa ResultCode is a finished, failed transaction
# (1: insufficient funds, 1032: cancelled by payer, 1037: phone unreachable, ...).
FAILURE_STATUSES = frozenset({
    "failed", "failure", "cancelled", "canceled", "expired", "declined",
})

SUPERSEDED = "superseded"


class ReconciliationOutcome(str, Enum):
    SETTLED = "settled"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    PENDING = "pending"


def classify_status(raw_status: Optional[str]) -> ReconciliationOutcome:
    code = (raw_status or "").strip().lower()
    if code in SUCCESS_STATUSES:
        return ReconciliationOutcome.SETTLED
    if code in FAILURE_STATUSES or code.isdigit():
        return ReconciliationOutcome.FAILED
    return ReconciliationOutcome.PENDING


_OUTCOME_BY_STATUS = {
    PaymentStatus.SETTLED: ReconciliationOutcome.SETTLED,
    PaymentStatus.FAILED: ReconciliationOutcome.FAILED,
    PaymentStatus.TIMED_OUT: ReconciliationOutcome.TIMED_OUT,
    PaymentStatus.INITIATED: ReconciliationOutcome.PENDING,
    PaymentStatus.AWAITING_CONFIRMATION: ReconciliationOutcome.PENDING,
}


@dataclass
class PayerDetails:
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass
class InitiationResult:
    attempt: PaymentAttemptDto
    checkout_url: Optional[str] = None
    customer_message: Optional[str] = None


class ReconciliationHandle:
    """Caller-side view of one polling task."""

    def __init__(self, attempt_id: int, appointment_id: int, future: "asyncio.Future[ReconciliationOutcome]"):
        self.attempt_id = attempt_id
        self.appointment_id = appointment_id
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> bool:
        """Stop polling. The attempt keeps whatever status it had."""
        return self._future.cancel()

    async def wait(self, timeout: Optional[float] = None) -> ReconciliationOutcome:
        """Outcome of the task, or PENDING if it is still running after `timeout` seconds."""
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError:
            return ReconciliationOutcome.PENDING
        except asyncio.CancelledError:
            if self._future.cancelled():
                return ReconciliationOutcome.CANCELLED
            raise

    async def result(self, timeout: Optional[float] = None) -> ReconciliationOutcome:
        """Like `wait`, but a timeout of the reconciliation itself raises ReconciliationTimedOut."""
        outcome = await self.wait(timeout)
        if outcome == ReconciliationOutcome.TIMED_OUT:
            raise ReconciliationTimedOut(self.attempt_id)
        return outcome


@dataclass
class PaymentOrchestrator:
    attempts: PaymentAttemptsRepository
    appointments: AppointmentsService
    redirect_gateway: RedirectPaymentGateway
    push_gateway: PushPaymentGateway
    rate_limiter: Optional[RateLimiter] = None
    audit: Optional[AuditLogger] = None
    poll_interval: float = 5.0
    timeout: float = 300.0
    initiate_max_requests: int = 5
    initiate_window_seconds: int = 300
    phone_country_code: str = "254"
    clock: Callable[[], datetime] = utc_now
    _watchers: Dict[int, ReconciliationHandle] = field(default_factory=dict, init=False, repr=False)

    # -----------------------------------------------------------------
    # Initiation
    # -----------------------------------------------------------------
    async def initiate(self, appointment_id: int, gateway: PaymentGateway, payer: Optional[PayerDetails] = None, watch: bool = True) -> InitiationResult:
        gateway = PaymentGateway(gateway)
        payer = payer or PayerDetails()
        appt = self.appointments.get(appointment_id)
        if appt.status == AppointmentStatus.CANCELLED:
            raise IllegalTransition(f"Appointment {appointment_id} is cancelled and cannot be paid")
        amount = appt.balance_due
        if amount <= 0:
            raise PaymentNotRequired(f"Appointment {appointment_id} has no outstanding balance")

        phone = None
        if gateway == PaymentGateway.PUSH_STK:
            phone = normalize_phone(payer.phone, self.phone_country_code)

        if self.rate_limiter is not None and not self.rate_limiter.allow(
            f"payment:{appointment_id}", self.initiate_max_requests, self.initiate_window_seconds
        ):
            raise RateLimited("Too many payment attempts for this appointment. Please wait a few minutes.")

        self._supersede_active(appointment_id)

        attempt = self.attempts.create(appointment_id, gateway, amount, self.clock(), phone=phone)
        reference = f"APPT{appointment_id}-{attempt.id}"
        description = f"Consultation #{appointment_id}"
        logger.info(f"Initiating {gateway.value} payment attempt {attempt.id} of {amount} for appointment {appointment_id}")

        try:
            if gateway == PaymentGateway.REDIRECT:
                session = await self.redirect_gateway.create_session(amount, reference, description)
                self.attempts.mark(
                    attempt.id, PaymentStatus.INITIATED, [PaymentStatus.INITIATED],
                    external_reference=session.reference, checkout_url=session.url,
                )
                self._audit("payment_initiated", attempt, details={"reference": session.reference})
                return InitiationResult(attempt=self._require(attempt.id), checkout_url=session.url)

            push = await self.push_gateway.initiate(phone, amount, reference, description)
        except (GatewayRejected, TransientPollError) as e:
            self.attempts.mark(attempt.id, PaymentStatus.FAILED, ACTIVE_STATUSES, failure_reason=str(e))
            self._audit("payment_rejected", attempt, success=False, details={"reason": str(e)})
            if isinstance(e, GatewayRejected):
                raise
            raise GatewayRejected(f"Payment provider is unavailable: {e}") from e

        self.attempts.mark(
            attempt.id, PaymentStatus.AWAITING_CONFIRMATION, [PaymentStatus.INITIATED],
            external_reference=push.reference,
        )
        self._audit("payment_initiated", attempt, details={"reference": push.reference})
        if watch:
            self.watch(attempt.id)
        return InitiationResult(attempt=self._require(attempt.id), customer_message=push.customer_message)

    def _supersede_active(self, appointment_id: int) -> None:
        handle = self._watchers.pop(appointment_id, None)
        if handle is not None:
            handle.cancel()
        previous = self.attempts.get_active_for_appointment(appointment_id)
        if previous is not None and self.attempts.mark(previous.id, PaymentStatus.FAILED, ACTIVE_STATUSES, failure_reason=SUPERSEDED):
            logger.info(f"Payment attempt {previous.id} superseded for appointment {appointment_id}")
            self._audit("payment_superseded", previous, success=False)

    # -----------------------------------------------------------------
    # Watching
    # -----------------------------------------------------------------
    def watch(self, attempt_id: int) -> ReconciliationHandle:
        """Start (or return the running) polling task for an attempt."""
        attempt = self._require(attempt_id)
        existing = self._watchers.get(attempt.appointment_id)
        if existing is not None and existing.attempt_id == attempt_id and not existing.done():
            return existing

        loop = asyncio.get_running_loop()
        if attempt.status in (PaymentStatus.SETTLED, PaymentStatus.FAILED):
            finished = loop.create_future()
            finished.set_result(_OUTCOME_BY_STATUS[attempt.status])
            return ReconciliationHandle(attempt.id, attempt.appointment_id, finished)

        if existing is not None and not existing.done():
            active = self.attempts.get_active_for_appointment(attempt.appointment_id)
            if active is not None and active.id == existing.attempt_id:
                raise IllegalTransition(
                    f"Payment attempt {existing.attempt_id} is still being reconciled for appointment {attempt.appointment_id}"
                )
            logger.info(f"Cancelling reconciliation of attempt {existing.attempt_id} in favour of {attempt_id}")
            existing.cancel()

        if attempt.status == PaymentStatus.INITIATED:
            self.attempts.mark(attempt.id, PaymentStatus.AWAITING_CONFIRMATION, [PaymentStatus.INITIATED])

        task = loop.create_task(self._reconcile(attempt), name=f"reconcile-payment-{attempt.id}")
        handle = ReconciliationHandle(attempt.id, attempt.appointment_id, task)
        self._watchers[attempt.appointment_id] = handle
        task.add_done_callback(lambda t: self._forget(attempt.appointment_id, handle, t))
        return handle

    @property
    def active_watchers(self) -> int:
        return len(self._watchers)

    def watcher_for(self, appointment_id: int) -> Optional[ReconciliationHandle]:
        return self._watchers.get(appointment_id)

    def stop_watching(self, attempt_id: int) -> bool:
        attempt = self._require(attempt_id)
        handle = self._watchers.get(attempt.appointment_id)
        if handle is None or handle.attempt_id != attempt_id:
            return False
        return self.cancel_watch(attempt.appointment_id)

    async def wait_for_outcome(self, attempt_id: int, timeout: Optional[float] = None) -> ReconciliationOutcome:
        """Outcome of an attempt, waiting up to `timeout` seconds on its running reconciliation."""
        attempt = self._require(attempt_id)
        handle = self._watchers.get(attempt.appointment_id)
        if handle is not None and handle.attempt_id == attempt_id:
            return await handle.result(timeout)
        outcome = _OUTCOME_BY_STATUS[attempt.status]
        if outcome == ReconciliationOutcome.TIMED_OUT:
            raise ReconciliationTimedOut(attempt_id)
        return outcome

    def cancel_watch(self, appointment_id: int) -> bool:
        handle = self._watchers.pop(appointment_id, None)
        if handle is None:
            return False
        logger.info(f"Reconciliation of attempt {handle.attempt_id} cancelled by caller")
        return handle.cancel()

    async def shutdown(self) -> None:
        handles = list(self._watchers.values())
        self._watchers.clear()
        for handle in handles:
            handle.cancel()
        for handle in handles:
            await handle.wait()
        if handles:
            logger.info(f"Stopped {len(handles)} payment reconciliation task(s)")

    def _forget(self, appointment_id: int, handle: ReconciliationHandle, task: "asyncio.Task") -> None:
        if self._watchers.get(appointment_id) is handle:
            del self._watchers[appointment_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Reconciliation of attempt {handle.attempt_id} crashed", exc_info=task.exception())

    async def _reconcile(self, attempt: PaymentAttemptDto) -> ReconciliationOutcome:
        loop = asyncio.get_running_loop()
        elapsed = (self.clock() - as_utc(attempt.started_at)).total_seconds()
        deadline = loop.time() + max(0.0, self.timeout - elapsed)

        while True:
            outcome = await self._poll(attempt)
            if outcome != ReconciliationOutcome.PENDING:
                return outcome
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval, remaining))
            if loop.time() >= deadline:
                break

        return await asyncio.to_thread(self._time_out, attempt)

    async def _poll(self, attempt: PaymentAttemptDto) -> ReconciliationOutcome:
        if not attempt.external_reference:
            current = await asyncio.to_thread(self._require, attempt.id)
            if not current.external_reference:
                logger.warning(f"Payment attempt {attempt.id} has no provider reference yet")
                return ReconciliationOutcome.PENDING
            attempt = current
        gateway = self._gateway_for(attempt.gateway)
        try:
            raw_status = await gateway.get_status(attempt.external_reference)
        except TransientPollError as e:
            logger.warning(f"Status check for payment attempt {attempt.id} failed, will retry: {e}")
            return ReconciliationOutcome.PENDING
        return await asyncio.to_thread(self._apply_status, attempt, raw_status)

    def _time_out(self, attempt: PaymentAttemptDto) -> ReconciliationOutcome:
        if self.attempts.mark(attempt.id, PaymentStatus.TIMED_OUT, ACTIVE_STATUSES):
            logger.warning(f"Payment attempt {attempt.id} not confirmed within {self.timeout:.0f}s; stopped polling")
            self._audit("payment_timed_out", attempt, success=False)
            return ReconciliationOutcome.TIMED_OUT
        # Settled or failed through a callback while we were waiting
        return _OUTCOME_BY_STATUS[self._require(attempt.id).status]

    # -----------------------------------------------------------------
    # Status application
    # -----------------------------------------------------------------
    async def check_now(self, attempt_id: int) -> ReconciliationOutcome:
        """One fresh status check, usable after cancellation or timeout."""
        attempt = await asyncio.to_thread(self._require, attempt_id)
        if attempt.status in (PaymentStatus.SETTLED, PaymentStatus.FAILED):
            return _OUTCOME_BY_STATUS[attempt.status]
        outcome = await self._poll(attempt)
        if outcome == ReconciliationOutcome.PENDING and attempt.status == PaymentStatus.TIMED_OUT:
            return ReconciliationOutcome.TIMED_OUT
        return outcome

    def handle_callback(self, external_reference: str, raw_status: Optional[str], reason: Optional[str] = None) -> Optional[ReconciliationOutcome]:
        """Apply a provider notification (webhook or redirect return) to its attempt."""
        attempt = self.attempts.find_by_reference(external_reference)
        if attempt is None:
            logger.warning(f"Payment callback for unknown reference {external_reference}")
            return None
        outcome = self._apply_status(attempt, raw_status, reason)
        if outcome in (ReconciliationOutcome.SETTLED, ReconciliationOutcome.FAILED):
            handle = self._watchers.get(attempt.appointment_id)
            if handle is not None and handle.attempt_id == attempt.id:
                self.cancel_watch(attempt.appointment_id)
        return outcome

    def _apply_status(self, attempt: PaymentAttemptDto, raw_status: Optional[str], reason: Optional[str] = None) -> ReconciliationOutcome:
        outcome = classify_status(raw_status)
        if outcome == ReconciliationOutcome.SETTLED:
            return self._settle(attempt)
        if outcome == ReconciliationOutcome.FAILED:
            failure = reason or f"Provider reported status {raw_status}"
            if self.attempts.mark(attempt.id, PaymentStatus.FAILED, ACTIVE_STATUSES, failure_reason=failure):
                logger.info(f"Payment attempt {attempt.id} failed: {failure}")
                self._audit("payment_failed", attempt, success=False, details={"status": raw_status})
                return ReconciliationOutcome.FAILED
            return _OUTCOME_BY_STATUS[self._require(attempt.id).status]
        return ReconciliationOutcome.PENDING

    def _settle(self, attempt: PaymentAttemptDto) -> ReconciliationOutcome:
        result = self.attempts.settle(attempt.id, self.clock())
        if not result.applied:
            current = self._require(attempt.id)
            if current.status == PaymentStatus.FAILED:
                logger.warning(f"Provider reported success for failed payment attempt {attempt.id} ({current.failure_reason}); refund required")
                self._audit("refund_required", current, success=False, details={"amount": str(current.amount), "failure_reason": current.failure_reason})
            elif current.status != PaymentStatus.SETTLED:
                logger.warning(f"Ignoring success for payment attempt {attempt.id} in status {current.status.value}")
            return _OUTCOME_BY_STATUS[current.status]

        late = result.previous_status == PaymentStatus.TIMED_OUT
        if late:
            logger.warning(f"Payment attempt {attempt.id} settled after reconciliation had timed out")
        logger.info(f"Payment attempt {attempt.id} settled for appointment {attempt.appointment_id}")
        self._audit("payment_settled", attempt, details={"amount": str(attempt.amount), "late": late})
        self._after_settlement(result.appointment)
        return ReconciliationOutcome.SETTLED

    def _after_settlement(self, appt: Optional[AppointmentDto]) -> None:
        if appt is None:
            return
        if appt.status == AppointmentStatus.CONFIRMED:
            self.appointments.ensure_call_link(appt)
        elif appt.status == AppointmentStatus.CANCELLED:
            logger.warning(f"Payment settled for cancelled appointment {appt.id}; refund required")
            if self.audit is not None:
                self.audit.log("refund_required", appt.id, success=False, details={"amount_paid": str(appt.amount_paid)})

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------
    def get_attempt(self, attempt_id: int) -> PaymentAttemptDto:
        return self._require(attempt_id)

    def get_attempt_by_reference(self, external_reference: str) -> PaymentAttemptDto:
        attempt = self.attempts.find_by_reference(external_reference)
        if attempt is None:
            raise PaymentAttemptNotFound(external_reference)
        return attempt

    def list_attempts(self, appointment_id: int) -> List[PaymentAttemptDto]:
        self.appointments.get(appointment_id)
        return self.attempts.list_for_appointment(appointment_id)

    def _require(self, attempt_id: int) -> PaymentAttemptDto:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise PaymentAttemptNotFound(attempt_id)
        return attempt

    def _gateway_for(self, gateway: PaymentGateway):
        if PaymentGateway(gateway) == PaymentGateway.REDIRECT:
            return self.redirect_gateway
        return self.push_gateway

    def _audit(self, action: str, attempt: PaymentAttemptDto, success: bool = True, details: Optional[dict] = None) -> None:
        if self.audit is None:
            return
        self.audit.log(action, attempt.appointment_id, attempt_id=attempt.id, gateway=attempt.gateway.value, success=success, details=details)
