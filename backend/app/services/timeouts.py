"""
Bounded calls into blocking provider SDKs (Stripe, Google API client).

The SDK call runs in a shared thread pool; if it does not finish within the
timeout the caller gets a ProviderError and moves on. The thread itself is
left to finish in the background.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, TypeVar

from .errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="provider")


def call_with_timeout(func: Callable[..., T], *args, timeout: float, label: str = "", **kwargs) -> T:
    """
    Run func(*args, **kwargs) with a deadline.

    Raises:
        ProviderError: the call timed out
        Exception: whatever func raised, unchanged
    """
    future = _executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        name = label or getattr(func, "__qualname__", repr(func))
        logger.error(f"Provider call {name} timed out after {timeout}s")
        raise ProviderError(f"{name} timed out after {timeout}s")
