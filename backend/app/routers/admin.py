# backend/app/routers/admin.py
"""
Admin read/write surface.

- weekly salon schedule
- blocked periods (salon-wide or per stylist)
- deposit policy
- per-stylist calendar connection status

Schedule and blocked-period changes invalidate the slot cache.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from redis import Redis

from ..dependencies import get_redis, get_store
from ..schemas.admin import (
    BlockedPeriodCreate,
    BlockedPeriodRead,
    BusinessHoursDay,
    CalendarStatusRead,
    DepositPolicyRead,
    DepositPolicyUpdate,
    ScheduleRead,
    ScheduleUpdate,
)
from ..services.clock import salon_now
from ..services.schedule_store import SqlScheduleStore
from ..services.slots import get_booking_config, invalidate_slots_cache
from ..services.slots.invalidator import get_affected_dates_from_period

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ──────────────────────────────────────────────────────────────────────────────
# Weekly schedule
# ──────────────────────────────────────────────────────────────────────────────

def _schedule(store: SqlScheduleStore) -> ScheduleRead:
    config = get_booking_config()
    rows = {row.weekday: row for row in store.list_business_hours()}
    days = []
    for weekday in range(7):
        row = rows.get(weekday)
        if row is None:
            days.append(BusinessHoursDay(
                weekday=weekday,
                is_open=True,
                open_time=config.default_open,
                close_time=config.default_close,
            ))
        else:
            days.append(BusinessHoursDay(
                weekday=weekday,
                is_open=bool(row.is_open),
                open_time=row.open_time,
                close_time=row.close_time,
            ))
    return ScheduleRead(days=days)


@router.get("/schedule", response_model=ScheduleRead)
def get_schedule(store: SqlScheduleStore = Depends(get_store)):
    return _schedule(store)


@router.put("/schedule", response_model=ScheduleRead)
def update_schedule(
    data: ScheduleUpdate,
    store: SqlScheduleStore = Depends(get_store),
    redis: Optional[Redis] = Depends(get_redis),
):
    store.save_business_hours([d.model_dump() for d in data.days])
    store.commit()
    invalidate_slots_cache(redis)
    logger.info(f"Weekly schedule updated for weekdays {[d.weekday for d in data.days]}")
    return _schedule(store)


# ──────────────────────────────────────────────────────────────────────────────
# Blocked periods
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/blocked-periods", response_model=list[BlockedPeriodRead])
def list_blocked_periods(
    from_date: Optional[date] = Query(None, description="Defaults to today"),
    store: SqlScheduleStore = Depends(get_store),
):
    if from_date is None:
        from_date = salon_now(get_booking_config().timezone).date()
    return store.list_upcoming_blocked_periods(from_date)


@router.post("/blocked-periods", response_model=BlockedPeriodRead, status_code=status.HTTP_201_CREATED)
def create_blocked_period(
    data: BlockedPeriodCreate,
    store: SqlScheduleStore = Depends(get_store),
    redis: Optional[Redis] = Depends(get_redis),
):
    if data.stylist_id is not None and store.get_stylist(data.stylist_id) is None:
        raise HTTPException(status_code=404, detail="Stylist not found")

    period = store.add_blocked_period(
        date_start=data.date_start.isoformat(),
        date_end=data.date_end.isoformat(),
        stylist_id=data.stylist_id,
        time_start=data.time_start,
        time_end=data.time_end,
        reason=data.reason,
    )
    store.commit()
    invalidate_slots_cache(redis, get_affected_dates_from_period(period))
    logger.info(f"Blocked period {period.id} created: {period.date_start}..{period.date_end} stylist={period.stylist_id}")
    return period


@router.delete("/blocked-periods/{period_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked_period(
    period_id: int,
    store: SqlScheduleStore = Depends(get_store),
    redis: Optional[Redis] = Depends(get_redis),
):
    period = store.delete_blocked_period(period_id)
    if period is None:
        raise HTTPException(status_code=404, detail="Blocked period not found")
    store.commit()
    invalidate_slots_cache(redis, get_affected_dates_from_period(period))
    logger.info(f"Blocked period {period_id} deleted")


# ──────────────────────────────────────────────────────────────────────────────
# Deposit policy
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/deposit-policy", response_model=DepositPolicyRead)
def get_deposit_policy(store: SqlScheduleStore = Depends(get_store)):
    policy = store.get_deposit_policy()
    store.commit()
    return policy


@router.put("/deposit-policy", response_model=DepositPolicyRead)
def update_deposit_policy(
    data: DepositPolicyUpdate,
    store: SqlScheduleStore = Depends(get_store),
):
    fields = data.model_dump(exclude_unset=True, exclude_none=True)
    if "deposit_enabled" in fields:
        fields["deposit_enabled"] = 1 if fields["deposit_enabled"] else 0
    policy = store.update_deposit_policy(**fields)
    store.commit()
    logger.info(f"Deposit policy updated: {fields}")
    return policy


# ──────────────────────────────────────────────────────────────────────────────
# Calendar connection status
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/stylists/{stylist_id}/calendar", response_model=CalendarStatusRead)
def get_calendar_status(
    stylist_id: int,
    store: SqlScheduleStore = Depends(get_store),
):
    if store.get_stylist(stylist_id) is None:
        raise HTTPException(status_code=404, detail="Stylist not found")

    integration = store.get_integration(stylist_id)
    if integration is None:
        return CalendarStatusRead(stylist_id=stylist_id, is_connected=False)

    return CalendarStatusRead(
        stylist_id=stylist_id,
        is_connected=bool(integration.access_token),
        sync_enabled=bool(integration.sync_enabled),
        needs_reconnect=bool(integration.needs_reconnect),
        calendar_id=integration.calendar_id,
        last_sync_at=integration.last_sync_at,
    )
