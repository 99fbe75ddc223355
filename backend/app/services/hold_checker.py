"""
Unpaid hold checker.

Cancels PENDING_PAYMENT appointments whose deposit hold has expired,
forfeits the deposit and frees the slot.

Triggered by the scheduler through POST /internal/sweeps/hold-expiry.
"""

import logging
from datetime import datetime
from typing import Optional

from .booking import BookingService
from .locks import LockManager

logger = logging.getLogger(__name__)

SWEEP_NAME = "hold-expiry"


def run_hold_expiry(
    booking: BookingService,
    locks: LockManager,
    now_utc: Optional[datetime] = None,
) -> dict:
    with locks.try_sweep_lock(SWEEP_NAME) as acquired:
        if not acquired:
            logger.info(f"{SWEEP_NAME} already running, skipped")
            return {"processed": 0, "changed": 0, "failed": 0, "skipped": True}
        counts = booking.expire_unpaid_holds(now_utc)

    logger.info(f"{SWEEP_NAME}: processed={counts['processed']} expired={counts['changed']}")
    return {**counts, "failed": 0, "skipped": False}
