"""
Timing helpers for logging how long backend calls take.
"""

import functools
import inspect
import logging
import time
from typing import Any, Callable, Optional, TypeVar

F = TypeVar('F', bound=Callable[..., Any])


class LogTimer:
    """
    Context manager for timing operations and logging the duration.

    Example:
        with LogTimer("render_directory"):
            rows = build_rows()
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG
    ):
        """
        Initialize the timer.

        Args:
            operation: Name of the operation being timed
            logger: Logger to use (defaults to this module's logger)
            level: Log level for the timing message
        """
        self.operation = operation
        self.logger = logger or logging.getLogger(__name__)
        self.level = level
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self) -> 'LogTimer':
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return
        self.duration = time.perf_counter() - self.start_time
        if exc_type is not None:
            self.logger.warning(
                "Operation '%s' failed after %.4f seconds: %s",
                self.operation, self.duration, exc_val
            )
        else:
            self.logger.log(
                self.level,
                "Operation '%s' completed in %.4f seconds",
                self.operation, self.duration
            )


def timed(
    operation: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
    level: int = logging.DEBUG
) -> Callable[[F], F]:
    """
    Decorator to time a function or coroutine function.

    Args:
        operation: Name of the operation (defaults to function name)
        logger: Logger to use (defaults to the function's module logger)
        level: Log level for the timing message

    Example:
        @timed("list_messages")
        async def list_messages(self, conversation_id): ...
    """
    def decorator(func: F) -> F:
        name = operation or func.__name__
        log = logger or logging.getLogger(func.__module__)

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with LogTimer(name, log, level):
                    return await func(*args, **kwargs)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with LogTimer(name, log, level):
                return func(*args, **kwargs)
        return wrapper

    return decorator


__all__ = ['LogTimer', 'timed']
