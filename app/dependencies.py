import logging
from datetime import timedelta

from fastapi import Depends, Request
from sqlalchemy.engine import Engine

from .application.ports.rate_limiter import RateLimiter
from .application.services.appointments_service import AppointmentsService
from .application.services.payment_orchestrator import PaymentOrchestrator
from .application.services.pricing import to_amount
from .application.services.slot_calendar import get_catalog
from .core.config import Settings, settings
from .database import get_engine
from .infrastructure.audit.std_logger import StdAuditLogger
from .infrastructure.payments.mpesa_gateway import MpesaStkGateway
from .infrastructure.payments.stripe_gateway import StripeCheckoutGateway
from .infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import SqlAppointmentsRepository
from .infrastructure.persistence.sqlalchemy.repositories.payments_repository_sql import SqlPaymentAttemptsRepository
from .infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimiter
from .infrastructure.rate_limit.redis_rate_limiter import RedisRateLimiter
from .infrastructure.video.room_link_provisioner import RoomLinkProvisioner

logger = logging.getLogger(__name__)


def build_appointments_service(engine: Engine, cfg: Settings = settings) -> AppointmentsService:
    return AppointmentsService(
        repo=SqlAppointmentsRepository(engine),
        call_links=RoomLinkProvisioner(cfg.VIDEO_BASE_URL, cfg.VIDEO_ROOM_PREFIX),
        base_fee=to_amount(cfg.CONSULTATION_FEE),
        catalog=get_catalog(cfg.SLOT_CATALOG, cfg.SLOT_DURATION_MINUTES),
        slot_minutes=cfg.SLOT_DURATION_MINUTES,
    )


def build_rate_limiter(cfg: Settings = settings) -> RateLimiter:
    if cfg.REDIS_URL:
        logger.info("Using Redis for payment rate limiting")
        return RedisRateLimiter(cfg.REDIS_URL)
    return InMemoryRateLimiter()


def build_payment_orchestrator(engine: Engine, cfg: Settings = settings) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        attempts=SqlPaymentAttemptsRepository(engine),
        appointments=build_appointments_service(engine, cfg),
        redirect_gateway=StripeCheckoutGateway(
            api_key=cfg.STRIPE_SECRET_KEY,
            success_url=cfg.STRIPE_SUCCESS_URL,
            cancel_url=cfg.STRIPE_CANCEL_URL,
            currency=cfg.CURRENCY,
        ),
        push_gateway=MpesaStkGateway(
            base_url=cfg.MPESA_BASE_URL,
            consumer_key=cfg.MPESA_CONSUMER_KEY,
            consumer_secret=cfg.MPESA_CONSUMER_SECRET,
            shortcode=cfg.MPESA_SHORTCODE,
            passkey=cfg.MPESA_PASSKEY,
            callback_url=cfg.MPESA_CALLBACK_URL,
            timeout_seconds=cfg.MPESA_REQUEST_TIMEOUT_SECONDS,
        ),
        rate_limiter=build_rate_limiter(cfg),
        audit=StdAuditLogger(),
        poll_interval=cfg.PAYMENT_POLL_INTERVAL_SECONDS,
        timeout=cfg.PAYMENT_TIMEOUT_SECONDS,
        initiate_max_requests=cfg.PAYMENT_INITIATE_MAX_REQUESTS,
        initiate_window_seconds=cfg.PAYMENT_INITIATE_WINDOW_SECONDS,
        phone_country_code=cfg.PHONE_COUNTRY_CODE,
    )


def get_appointments_service(engine: Engine = Depends(get_engine)) -> AppointmentsService:
    return build_appointments_service(engine)


def get_payment_orchestrator(request: Request) -> PaymentOrchestrator:
    # Built once at startup; it owns the running reconciliation tasks
    return request.app.state.payment_orchestrator


def get_consultation_window() -> tuple:
    return (
        timedelta(minutes=settings.CONSULTATION_OPENS_BEFORE_MINUTES),
        timedelta(minutes=settings.CONSULTATION_CLOSES_AFTER_MINUTES),
    )
