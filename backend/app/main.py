"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap: logging, database lifecycle, generation
    pipeline wiring, middleware, routers and global exception handlers.

    Every error that escapes a route is answered with the same envelope the
    betslips API uses (``success: false``, ``error``, ``betslips: []``), so
    clients only ever have to handle one failure shape.

Dependencies:
    - app.database
    - app.providers.generation_client
    - app.services.betslip_generation_service
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import ConnectionFailure, OperationFailure, ServerSelectionTimeoutError

from app.config import settings
from app.database import close_db, connect_db
from app.database import ping as ping_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging
from app.models.generation import ERROR_RESPONSES, GenerationErrorKind
from app.providers.generation_client import GeminiGenerationClient
from app.routers.betslips import router as betslips_router
from app.services.betslip_generation_service import BetslipGenerationService
from app.services.credit_meter import CreditMeter, MongoAccountStore, MongoChargeLedger
from app.services.fixture_selector import MongoFixtureStore

logger = logging.getLogger("betai")

SERVICE_UNAVAILABLE_MESSAGE = "Service temporarily unavailable."


def build_generation_service(generator: GeminiGenerationClient) -> BetslipGenerationService:
    """Wire the pipeline against MongoDB and the live generative client."""
    meter = CreditMeter(MongoAccountStore(), MongoChargeLedger())
    return BetslipGenerationService(meter, MongoFixtureStore(), generator)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()
    if not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY not set, every generation request will be refunded")

    generator = GeminiGenerationClient()
    app.state.generation_client = generator
    app.state.generation_service = build_generation_service(generator)
    logger.info(
        "Betslip generation ready (model=%s, cost=%d, admin_exempt=%s, strict_legs=%s)",
        settings.GENERATION_MODEL, settings.GENERATION_COST,
        settings.ADMIN_EXEMPT, settings.STRICT_MANIFEST_LEGS,
    )

    yield

    await generator.aclose()
    await close_db()
    logger.info("Betslip generation stopped")


app = FastAPI(
    title="BetAI",
    description="Credit-metered AI betslip generation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(StructuredLoggingMiddleware)

app.include_router(betslips_router)


def _error_response(
    status_code: int,
    message: str,
    kind: Optional[GenerationErrorKind] = None,
    **extra: Any,
) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": message, "betslips": []}
    if kind is not None:
        content["errorKind"] = kind.value
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are input errors, reported without internal field paths."""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value.")})
    status_code, message = ERROR_RESPONSES[GenerationErrorKind.INVALID_INPUT]
    return _error_response(status_code, message, GenerationErrorKind.INVALID_INPUT, errors=errors)


@app.exception_handler(ServerSelectionTimeoutError)
@app.exception_handler(ConnectionFailure)
async def db_unavailable_handler(request: Request, exc: ConnectionFailure):
    logger.error(
        "Database unavailable on %s %s: %s", request.method, request.url.path, type(exc).__name__,
    )
    return _error_response(503, SERVICE_UNAVAILABLE_MESSAGE)


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    status_code, message = ERROR_RESPONSES[GenerationErrorKind.INTERNAL_ERROR]
    return _error_response(status_code, message, GenerationErrorKind.INTERNAL_ERROR)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    status_code, message = ERROR_RESPONSES[GenerationErrorKind.INTERNAL_ERROR]
    return _error_response(status_code, message, GenerationErrorKind.INTERNAL_ERROR)


@app.get("/health")
async def health(request: Request):
    """Liveness plus MongoDB ping and the generative client's circuit state."""
    db_ok = await ping_db()
    generator: Optional[GeminiGenerationClient] = getattr(request.app.state, "generation_client", None)
    circuit_open = generator.circuit_open if generator is not None else None
    return {
        "status": "healthy" if db_ok and not circuit_open else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "generation": {
            "model": settings.GENERATION_MODEL,
            "configured": bool(settings.GEMINI_API_KEY),
            "circuit_open": circuit_open,
        },
    }
