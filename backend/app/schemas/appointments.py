# backend/app/schemas/appointments.py

from typing import Optional

from pydantic import BaseModel, Field


class ServiceBrief(BaseModel):
    id: int
    name: str
    duration_min: int
    price: int

    model_config = {"from_attributes": True}


class AppointmentCreate(BaseModel):
    """Booking intake."""
    date: str = Field(description="Date in YYYY-MM-DD format")
    time: str = Field(description="Time in HH:MM format")
    service_ids: list[int] = Field(min_length=1)
    customer_name: str
    customer_email: str
    stylist_id: Optional[int] = None
    source: str = "web"


class AppointmentRead(BaseModel):
    id: int
    date: str
    time: str
    duration_minutes: int
    total_price: int
    status: str
    stylist_id: Optional[int] = None
    customer_name: str
    customer_email: str
    source: str
    calendar_event_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    services: list[ServiceBrief] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    appointment: AppointmentRead
    deposit_id: Optional[int] = None
    payment_url: Optional[str] = None


class RescheduleRequest(BaseModel):
    date: str = Field(description="New date in YYYY-MM-DD format")
    time: str = Field(description="New time in HH:MM format")
    customer_email: Optional[str] = Field(None, description="Owner check; omitted for staff")


class CancelRequest(BaseModel):
    customer_email: Optional[str] = Field(None, description="Owner check; omitted for staff")
    reason: Optional[str] = None
