"""
Failure policies for remote dependencies.

Two strategies, applied per component:

* ``fail_closed`` - the dependency guards against abuse (rate limiting).
  Any failure is treated as a denial.
* ``fail_open`` - the dependency guards content quality (scoring).
  Any failure lets the content through with a neutral result.

Both log the swallowed error and count the activation. Cancellation is not
an ``Exception`` and always propagates.
"""
import logging
from functools import wraps
from typing import Any, Callable

from chat_moderation.lib.metrics import metrics

logger = logging.getLogger(__name__)


def fail_closed(component: str, denied: Any = False):
    """Return ``denied`` when the wrapped coroutine raises."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{component} unavailable, failing closed: {e}")
                metrics.record_failure_policy(component, "closed")
                return denied
        return wrapper
    return decorator


def fail_open(component: str, fallback: Callable[[], Any]):
    """Return ``fallback()`` when the wrapped coroutine raises."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{component} failed, failing open: {e}", exc_info=True)
                metrics.record_failure_policy(component, "open")
                return fallback()
        return wrapper
    return decorator
