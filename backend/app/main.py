import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .database import init_db
from .redis_client import redis_client
from .routers import admin, appointments, integrations, internal, payments, slots
from .services.errors import (
    AppointmentNotFoundError,
    BookingValidationError,
    InvalidTransitionError,
    ProviderError,
    ScheduleIntegrityError,
    SlotUnavailableError,
    WebhookVerificationError,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Salon Booking API", lifespan=lifespan)


# ===== Domain errors → HTTP =====

@app.exception_handler(BookingValidationError)
async def validation_error_handler(request: Request, exc: BookingValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(SlotUnavailableError)
async def slot_unavailable_handler(request: Request, exc: SlotUnavailableError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(AppointmentNotFoundError)
async def not_found_handler(request: Request, exc: AppointmentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(WebhookVerificationError)
async def webhook_verification_handler(request: Request, exc: WebhookVerificationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error(f"Provider error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Payment provider unavailable, please try again"})


@app.exception_handler(ScheduleIntegrityError)
async def integrity_error_handler(request: Request, exc: ScheduleIntegrityError):
    logger.critical(f"Schedule integrity violation on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Schedule integrity error"})


# ===== Routers =====

app.include_router(slots.router)
app.include_router(appointments.router)
app.include_router(payments.router)
app.include_router(admin.router)
app.include_router(integrations.router)
app.include_router(internal.router)


@app.get("/health")
def health():
    return {"redis": redis_client.ping()}
