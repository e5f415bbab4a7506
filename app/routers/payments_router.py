from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from ..application.services.payment_orchestrator import PayerDetails, PaymentOrchestrator
from ..schemas.common.common import ERROR_RESPONSES
from ..dependencies import get_payment_orchestrator
from ..infrastructure.payments.mpesa_gateway import parse_stk_callback
from ..schemas.payments.payment import (
    MpesaCallbackAck,
    MpesaCallbackPayload,
    PaymentAttemptResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentOutcomeResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"], responses=ERROR_RESPONSES)

MAX_OUTCOME_WAIT_SECONDS = 30.0


@router.post("/initiate", response_model=PaymentInitiateResponse, status_code=201)
async def initiate_payment(
    request: PaymentInitiateRequest,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    result = await orchestrator.initiate(
        request.appointment_id,
        request.gateway,
        PayerDetails(phone=request.phone, email=request.email),
    )
    return PaymentInitiateResponse(
        attempt=PaymentAttemptResponse.model_validate(result.attempt),
        checkout_url=result.checkout_url,
        customer_message=result.customer_message,
    )


@router.get("/appointment/{appointment_id}", response_model=List[PaymentAttemptResponse])
def list_payment_attempts(
    appointment_id: int,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    return [PaymentAttemptResponse.model_validate(a) for a in orchestrator.list_attempts(appointment_id)]


@router.post("/mpesa/callback", response_model=MpesaCallbackAck)
async def mpesa_callback(
    payload: MpesaCallbackPayload,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    try:
        reference, result_code, result_desc = parse_stk_callback(payload.model_dump())
    except ValueError as e:
        logger.warning(f"Rejected M-Pesa callback: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    outcome = orchestrator.handle_callback(reference, result_code, result_desc)
    logger.info(f"M-Pesa callback for {reference}: ResultCode={result_code} -> {outcome.value if outcome else 'unknown reference'}")
    return MpesaCallbackAck()


@router.get("/redirect/return", response_model=PaymentOutcomeResponse)
async def redirect_return(
    session_id: str = Query(...),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    attempt = orchestrator.get_attempt_by_reference(session_id)
    outcome = await orchestrator.check_now(attempt.id)
    return PaymentOutcomeResponse(
        attempt_id=attempt.id,
        outcome=outcome.value,
        attempt=PaymentAttemptResponse.model_validate(orchestrator.get_attempt(attempt.id)),
    )


@router.get("/{attempt_id}", response_model=PaymentAttemptResponse)
async def get_payment_attempt(
    attempt_id: int,
    refresh: bool = Query(False),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    if refresh:
        await orchestrator.check_now(attempt_id)
    return PaymentAttemptResponse.model_validate(orchestrator.get_attempt(attempt_id))


@router.get("/{attempt_id}/outcome", response_model=PaymentOutcomeResponse)
async def get_payment_outcome(
    attempt_id: int,
    wait: float = Query(0.0, ge=0.0, le=MAX_OUTCOME_WAIT_SECONDS),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    outcome = await orchestrator.wait_for_outcome(attempt_id, timeout=wait)
    return PaymentOutcomeResponse(
        attempt_id=attempt_id,
        outcome=outcome.value,
        attempt=PaymentAttemptResponse.model_validate(orchestrator.get_attempt(attempt_id)),
    )


@router.post("/{attempt_id}/watch", response_model=PaymentOutcomeResponse)
async def watch_payment(
    attempt_id: int,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    handle = orchestrator.watch(attempt_id)
    outcome = await handle.wait(0)
    return PaymentOutcomeResponse(
        attempt_id=attempt_id,
        outcome=outcome.value,
        attempt=PaymentAttemptResponse.model_validate(orchestrator.get_attempt(attempt_id)),
    )


@router.delete("/{attempt_id}/watch", response_model=PaymentAttemptResponse)
async def stop_watching_payment(
    attempt_id: int,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    if orchestrator.stop_watching(attempt_id):
        logger.info(f"Stopped watching payment attempt {attempt_id} on request")
    return PaymentAttemptResponse.model_validate(orchestrator.get_attempt(attempt_id))
