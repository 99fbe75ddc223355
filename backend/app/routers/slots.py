# backend/app/routers/slots.py
"""
Slots API endpoint.

GET /slots - bookable start times for a day, a stylist (or any stylist) and
a duration (explicit, or the sum of the requested services)
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from redis import Redis

from ..dependencies import get_redis, get_store
from ..schemas.slots import SlotsResponse
from ..services.errors import BookingValidationError
from ..services.schedule_store import SqlScheduleStore
from ..services.slots import compute_slots, get_booking_config

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("", response_model=SlotsResponse)
def get_slots(
    date: date,
    duration: Optional[int] = Query(None, gt=0, description="Duration in minutes"),
    service_ids: list[int] = Query([], description="Services to book; sets the duration"),
    stylist_id: Optional[int] = None,
    store: SqlScheduleStore = Depends(get_store),
    redis: Optional[Redis] = Depends(get_redis),
):
    """Ordered HH:MM list of bookable start times."""
    if service_ids:
        services = store.get_services(service_ids)
        if len(services) != len(set(service_ids)):
            raise BookingValidationError("Unknown or inactive service")
        duration = sum(s.duration_min for s in services)
    elif duration is None:
        raise HTTPException(status_code=422, detail="Either duration or service_ids is required")

    config = get_booking_config()
    slots = compute_slots(
        store,
        date,
        duration,
        stylist_id=stylist_id,
        service_ids=service_ids,
        config=config,
        redis=redis,
    )
    return SlotsResponse(
        date=date,
        stylist_id=stylist_id,
        duration_minutes=duration,
        slot_step_minutes=config.slot_step_minutes,
        slots=slots,
    )
