# backend/app/routers/payments.py
"""
Stripe webhook.

The raw body is verified against the Stripe-Signature header before any
state change; an unverifiable payload is rejected with 400.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from ..dependencies import get_booking_service
from ..services.booking import BookingService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    booking: BookingService = Depends(get_booking_service),
) -> dict:
    payload = await request.body()
    return booking.handle_payment_webhook(payload, stripe_signature)
