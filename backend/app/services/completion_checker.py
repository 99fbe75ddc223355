"""
Appointment completion checker.

Moves SCHEDULED appointments whose start is more than the grace period in
the past to COMPLETED. Pure bookkeeping: no event is emitted.

Triggered by the scheduler through POST /internal/sweeps/auto-complete.
"""

import logging
from datetime import datetime
from typing import Optional

from .booking import BookingService
from .locks import LockManager

logger = logging.getLogger(__name__)

SWEEP_NAME = "auto-complete"


def run_auto_complete(
    booking: BookingService,
    locks: LockManager,
    now: Optional[datetime] = None,
) -> dict:
    with locks.try_sweep_lock(SWEEP_NAME) as acquired:
        if not acquired:
            logger.info(f"{SWEEP_NAME} already running, skipped")
            return {"processed": 0, "changed": 0, "failed": 0, "skipped": True}
        counts = booking.auto_complete(now)

    logger.info(f"{SWEEP_NAME}: processed={counts['processed']} completed={counts['changed']}")
    return {**counts, "failed": 0, "skipped": False}
