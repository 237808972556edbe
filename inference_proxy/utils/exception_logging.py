"""
Logging and formatting helpers for proxy failures.

Failures raised from task groups arrive wrapped in exception groups; the
helpers here look inside them so the real upstream error is reported.
"""

import logging
from typing import List, Optional, Type, TypeVar

E = TypeVar("E", bound=BaseException)


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<unprintable {type(obj).__name__}>"


def _children(exception: BaseException) -> List[BaseException]:
    """Sub-exceptions of a group, or an empty list for anything else."""
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def find_exception_in_exception_groups(
    exception: BaseException, target_type: Type[E]
) -> Optional[E]:
    """Depth-first search for the first exception of ``target_type``."""
    if isinstance(exception, target_type):
        return exception
    for child in _children(exception):
        found = find_exception_in_exception_groups(child, target_type)
        if found is not None:
            return found
    return None


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log ``exception`` under ``prefix``, one record per sub-exception for groups.

    Never raises: a broken exception object or a failing handler must not
    turn an error response into a crash.
    """
    summary = _safe_str(exception)
    children = _children(exception)
    try:
        if not children:
            logger.log(level, f"{prefix} Exception: {summary}", exc_info=exception)
            return
        logger.log(
            level, f"{prefix} Exception with {len(children)} sub-exceptions: {summary}"
        )
        for index, child in enumerate(children, start=1):
            logger.log(
                level,
                f"{prefix} Sub-exception {index}: {type(child).__name__}: {_safe_str(child)}",
                exc_info=child,
            )
    except Exception:
        try:
            logger.log(level, f"{prefix} Exception: {summary}")
        except Exception:
            pass


def format_exception_message(exception: BaseException) -> str:
    """Single-line description for JSON error bodies."""
    message = _safe_str(exception) or type(exception).__name__
    children = _children(exception)
    if not children:
        return message
    details = "; ".join(
        f"{type(child).__name__}: {_safe_str(child)}" for child in children
    )
    return f"{message} (Sub-exceptions: {details})"
