"""
Telemetry for the container helper operations.

Public operations are wrapped with :func:`traced`, which records the
operation name, its bound parameters, the duration and any exception before
re-raising it unchanged. Trace events inside an operation go through
:func:`trace`. Both write to the ``bchelper.telemetry`` logger, so the
configured handlers (JSON file, console) act as the telemetry sink.
"""

import inspect
import logging
import time
from functools import wraps
from typing import Any, Dict

logger = logging.getLogger("bchelper.telemetry")

SECRET_PARAMETERS = ("password", "token", "secret")


def _safe_value(name: str, value: Any) -> Any:
    if any(secret in name.lower() for secret in SECRET_PARAMETERS):
        return "***"
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_safe_value(name, item) for item in value]
    return str(value)


def trace(message: str, **data: Any) -> None:
    """Emit a trace event to the telemetry sink."""
    logger.info(message, extra={"trace": data})


def traced(operation: str):
    """Record an operation's parameters, duration and failures.

    Args:
        operation: Name reported for the wrapped function

    Returns:
        Decorated function that logs and re-raises every exception
    """

    def decorator(func):
        signature = inspect.signature(func)

        @wraps(func)
        def wrapper(*args, **kwargs):
            bound = signature.bind(*args, **kwargs)
            bound.apply_defaults()
            parameters: Dict[str, Any] = {
                name: _safe_value(name, value)
                for name, value in bound.arguments.items()
                if name != "self"
            }
            logger.info(
                f"{operation} started",
                extra={"operation": operation, "parameters": parameters},
            )
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{operation} failed: {str(e)}",
                    extra={
                        "operation": operation,
                        "parameters": parameters,
                        "error_type": type(e).__name__,
                        "duration": round(time.time() - start_time, 3),
                    },
                    exc_info=True,
                )
                raise
            logger.info(
                f"{operation} completed",
                extra={
                    "operation": operation,
                    "duration": round(time.time() - start_time, 3),
                },
            )
            return result

        return wrapper

    return decorator
