# backend/app/schemas/slots.py
"""
Pydantic schemas for slots API.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class SlotsResponse(BaseModel):
    """Bookable start times for one day."""
    date: date
    stylist_id: Optional[int] = None
    duration_minutes: int
    slot_step_minutes: int = Field(description="Grid step in minutes (15/30/60)")
    slots: list[str]  # "HH:MM", ascending
