"""
Exception logging helpers for the proxy pipeline.

These run inside error paths, so they must never raise themselves, even for
exception objects whose ``__str__`` is broken. Exception groups (for example
from anyio task groups inside Starlette) are unwrapped so every sub-exception
ends up in the log.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            try:
                return f"<{type(obj).__name__} object (string conversion failed)>"
            except Exception:
                return "<object (all string conversions failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def _sub_exceptions(exception) -> list:
    if exception is None:
        return []
    return _safe_get_exceptions(exception)


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with detailed information, including sub-exceptions for
    exception groups. Never raises.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Codec]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        safe_exception_str = "None" if exception is None else _safe_str(exception)
        sub_exceptions = _sub_exceptions(exception)

        if not sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception: {safe_exception_str}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {safe_exception_str}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            sub_exc_type = type(sub_exc).__name__ if sub_exc is not None else "NoneType"
            logger.log(
                level,
                f"{safe_prefix} Sub-exception {i+1}: {sub_exc_type}: {_safe_str(sub_exc)}",
                exc_info=sub_exc,
            )
    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            # Nothing left to report through
            pass


def format_exception_message(exception: Exception) -> str:
    """
    Format an exception message, including sub-exceptions for exception groups.
    Meant for internal sinks (logs, span attributes), never for response bodies.
    """
    try:
        if exception is None:
            return "None"
        sub_exceptions = _sub_exceptions(exception)
        main_str = _safe_str(exception)
        if not sub_exceptions:
            return main_str
        parts = []
        for sub_exc in sub_exceptions:
            sub_exc_type = type(sub_exc).__name__ if sub_exc is not None else "NoneType"
            parts.append(f"{sub_exc_type}: {_safe_str(sub_exc)}")
        return f"{main_str} (Sub-exceptions: {'; '.join(parts)})"
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"
