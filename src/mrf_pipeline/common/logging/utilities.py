"""Logging utility functions and class mixin."""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Optional, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (url, duration_ms, etc.)

    Example:
        log_with_context(
            logger, logging.INFO, "Download complete",
            file_id=descriptor.id,
            bytes_downloaded=written,
        )
    """
    logger.log(level, msg, extra=kwargs)


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from SourceError subclasses.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


def _extract_instance_context(obj: Any) -> Dict[str, Any]:
    """Pull identifier attributes off an instance for log context."""
    ctx: Dict[str, Any] = {}
    for attr in ("source_id",):
        value = getattr(obj, attr, None)
        if value is not None and not callable(value):
            ctx[attr] = value
    return ctx


def logged_operation(
    level: int = logging.DEBUG,
    log_start: bool = False,
    operation_name: Optional[str] = None,
) -> Callable[[F], F]:
    """
    Decorator for automatic operation logging on class methods.

    Args:
        level: Log level for completion message
        log_start: Also log when operation starts
        operation_name: Override operation name (default: method_name)

    Example:
        class UnitedHealthSource(BaseSource):
            @logged_operation(level=logging.INFO)
            async def discover_files(self):
                ...
    """

    def decorator(func: F) -> F:
        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(self, *args, **kwargs):
                _logger = getattr(self, "_logger", None) or logging.getLogger(
                    self.__class__.__module__
                )
                full_op = f"{self.__class__.__name__}.{operation_name or func.__name__}"

                if log_start:
                    log_with_context(_logger, level, f"{full_op} starting")

                try:
                    result = await func(self, *args, **kwargs)
                    log_with_context(_logger, level, f"{full_op} completed")
                    return result
                except Exception as e:
                    log_exception(_logger, e, f"{full_op} failed")
                    raise

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def sync_wrapper(self, *args, **kwargs):
            _logger = getattr(self, "_logger", None) or logging.getLogger(
                self.__class__.__module__
            )
            full_op = f"{self.__class__.__name__}.{operation_name or func.__name__}"

            if log_start:
                log_with_context(_logger, level, f"{full_op} starting")

            try:
                result = func(self, *args, **kwargs)
                log_with_context(_logger, level, f"{full_op} completed")
                return result
            except Exception as e:
                log_exception(_logger, e, f"{full_op} failed")
                raise

        return sync_wrapper  # type: ignore

    return decorator


class LoggedClass:
    """
    Mixin providing logging infrastructure for classes.

    Provides:
    - self._logger: Logger instance
    - self._log(): Log with auto-extracted context
    - self._log_exception(): Exception logging with context
    """

    log_component: Optional[str] = None  # Optional logger name suffix

    def __init__(self, *args, **kwargs):
        logger_name = self.__class__.__module__
        if self.log_component:
            logger_name = f"{logger_name}.{self.log_component}"
        self._logger = logging.getLogger(logger_name)
        super().__init__(*args, **kwargs)

    def _log(self, level: int, msg: str, **extra: Any) -> None:
        context = _extract_instance_context(self)
        context.update(extra)
        log_with_context(self._logger, level, msg, **context)

    def _log_exception(
        self,
        exc: BaseException,
        msg: str,
        level: int = logging.ERROR,
        include_traceback: bool = True,
        **extra: Any,
    ) -> None:
        context = _extract_instance_context(self)
        context.update(extra)
        log_exception(
            self._logger,
            exc,
            msg,
            level=level,
            include_traceback=include_traceback,
            **context,
        )
