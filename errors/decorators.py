"""
Decorators - error suppression for best-effort call sites

Used at boundaries whose failures must never reach the caller, such as
telemetry emission.
"""

import functools
import logging
from typing import Callable, TypeVar, Any

from .exceptions import TaskGraphError


T = TypeVar('T')

logger = logging.getLogger(__name__)


def suppress_errors(
    default_return: Any = None,
    log_level: int = logging.WARNING,
):
    """
    Async error suppression decorator

    Any exception raised by the wrapped coroutine function is logged and
    replaced by ``default_return``. Cancellation is not an error and still
    propagates.

    Args:
        default_return: Value returned when the call fails
        log_level: Level used to log the failure

    Example:
        @suppress_errors(default_return=None)
        async def emit(event):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except TaskGraphError as e:
                logger.log(log_level, f"[{func.__name__}] Error: {e.code} - {e.message}")
                return default_return
            except Exception as e:
                logger.log(
                    log_level,
                    f"[{func.__name__}] Unexpected error: {e}",
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                return default_return
        return wrapper
    return decorator
