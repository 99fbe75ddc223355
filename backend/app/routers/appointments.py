# backend/app/routers/appointments.py
"""
Appointment intake.

POST /appointments                   - book (optionally with a deposit hold)
GET  /appointments/{id}              - read
POST /appointments/{id}/reschedule   - move, owner scoped by customer_email
POST /appointments/{id}/cancel       - cancel, owner scoped by customer_email

Domain errors are mapped to HTTP responses in main.py.
"""

import logging

from fastapi import APIRouter, Depends, status

from ..dependencies import get_booking_service, get_store
from ..schemas.appointments import (
    AppointmentCreate,
    AppointmentRead,
    BookingResponse,
    CancelRequest,
    RescheduleRequest,
)
from ..services.booking import BookingRequest, BookingService
from ..services.errors import AppointmentNotFoundError
from ..services.schedule_store import SqlScheduleStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    booking: BookingService = Depends(get_booking_service),
):
    result = booking.create(BookingRequest(**data.model_dump()))
    return BookingResponse(
        appointment=AppointmentRead.model_validate(result.appointment),
        deposit_id=result.deposit_id,
        payment_url=result.payment_url,
    )


@router.get("/{appointment_id}", response_model=AppointmentRead)
def get_appointment(
    appointment_id: int,
    store: SqlScheduleStore = Depends(get_store),
):
    appointment = store.get_appointment(appointment_id)
    if appointment is None:
        raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
    return appointment


@router.post("/{appointment_id}/reschedule", response_model=AppointmentRead)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    booking: BookingService = Depends(get_booking_service),
):
    return booking.reschedule(
        appointment_id,
        data.date,
        data.time,
        customer_email=data.customer_email,
    )


@router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel_appointment(
    appointment_id: int,
    data: CancelRequest,
    booking: BookingService = Depends(get_booking_service),
):
    return booking.cancel(
        appointment_id,
        customer_email=data.customer_email,
        reason=data.reason,
    )
