from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from dotenv import load_dotenv
import logging

# Load environment variables as early as possible
load_dotenv()

from .core.config import settings
from .database import create_db_and_tables, get_engine
from .dependencies import build_payment_orchestrator
from .middleware import LoggingMiddleware, ErrorHandlingMiddleware
from .exceptions import http_exception_handler
from .utils import utc_now
from .routers import appointments_router, doctors_router, payments_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")
    app.state.db_init_ok = True
    app.state.db_init_error = None
    try:
        create_db_and_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        # Do not crash the app; report via health endpoint
        app.state.db_init_ok = False
        app.state.db_init_error = str(e)
        logger.exception("Database initialization failed")

    app.state.payment_orchestrator = build_payment_orchestrator(get_engine())
    yield
    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    await app.state.payment_orchestrator.shutdown()


# Initialize FastAPI
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    docs_url=("/docs" if settings.DOCS_ENABLED else None),
    redoc_url=("/redoc" if settings.DOCS_ENABLED else None),
    openapi_url=("/openapi.json" if settings.DOCS_ENABLED else None)
)

app.add_exception_handler(HTTPException, http_exception_handler)

# Middleware: outermost last
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(doctors_router.router)
app.include_router(appointments_router.router)
app.include_router(payments_router.router)


# Health check endpoint
@app.get("/health")
def health_check():
    orchestrator = getattr(app.state, "payment_orchestrator", None)
    return {
        "status": "healthy" if getattr(app.state, "db_init_ok", True) else "degraded",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": utc_now().isoformat(),
        "database_error": getattr(app.state, "db_init_error", None),
        "clinic_timezone": settings.CLINIC_TIMEZONE,
        "payment_watchers": orchestrator.active_watchers if orchestrator else 0,
    }
