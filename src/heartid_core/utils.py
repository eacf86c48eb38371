"""
Utility functions and decorators for the HeartID core.

This module provides general-purpose helpers used across the engine and
the command-line tool: logging set-up, a timing decorator, identifier
generation, hashing and atomic file writes.
"""

import functools
import hashlib
import logging
import os
import sys
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

import structlog

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Type variable for generic decorators
F = TypeVar("F", bound=Callable[..., Any])


def configure_logging(level: Optional[str] = None, structured: Optional[bool] = None) -> None:
    """
    Configure structlog on top of the standard logging module.

    Parameters
    ----------
    level : str, optional
        Logging level name. Defaults to ``config.LOG_LEVEL``.
    structured : bool, optional
        Render events as JSON when True, with the console renderer
        otherwise. Defaults to ``config.STRUCTURED_LOGGING``.
    """
    from . import config

    level = (level or config.LOG_LEVEL).upper()
    structured = config.STRUCTURED_LOGGING if structured is None else structured

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level, logging.INFO),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if structured
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def timer(func: F) -> F:
    """
    Decorator to measure and log function execution time.

    Parameters
    ----------
    func : Callable
        Function to be timed.

    Returns
    -------
    Callable
        Wrapped function with timing capability.

    Examples
    --------
    >>> @timer
    ... def enroll():
    ...     return "done"
    >>> result = enroll()  # Logs execution time
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "Function execution failed",
                function_name=func.__name__,
                module=func.__module__,
                execution_time_ms=(time.perf_counter() - start_time) * 1000,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.debug(
            "Function execution completed",
            function_name=func.__name__,
            module=func.__module__,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
        )
        return result

    return wrapper


def utc_now() -> datetime:
    """Default engine clock: the current timezone-aware UTC time."""
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """
    Generate a unique session identifier.

    Returns
    -------
    str
        32-character hexadecimal identifier.
    """
    return uuid.uuid4().hex


def generate_template_id(identity_id: str) -> str:
    """
    Generate a unique template identifier for an enrollment.

    The identifier carries a short digest of the identity plus a random
    suffix, so re-enrolling the same identity never reuses an id.

    Examples
    --------
    >>> generate_template_id("alice")  # e.g. "tpl_2bd806c9_5f1e0c3a9b7d"
    """
    return f"tpl_{hash_data(identity_id)[:8]}_{uuid.uuid4().hex[:12]}"


def hash_data(data: Union[str, bytes], algorithm: str = "sha256") -> str:
    """
    Generate the hexadecimal hash of data.

    Raises
    ------
    ValueError
        If algorithm is not supported.
    """
    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    if isinstance(data, str):
        data = data.encode("utf-8")

    hasher = hashlib.new(algorithm)
    hasher.update(data)
    return hasher.hexdigest()



def atomic_write_bytes(path: Union[str, Path], data: bytes, exclusive: bool = False) -> bool:
    """
    Write a file through a temporary sibling so readers never see a partial file.

    Parameters
    ----------
    path : str or Path
        Target file. Its directory must exist.
    data : bytes
        File content.
    exclusive : bool, default=False
        When True an existing target is left untouched.

    Returns
    -------
    bool
        False when ``exclusive`` is set and the target already existed.

    Raises
    ------
    OSError
        If the file cannot be written.
    """
    target = Path(path)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        if not exclusive:
            os.replace(tmp_name, target)
            return True
        try:
            # link() refuses to overwrite, so concurrent creators agree on one file
            os.link(tmp_name, target)
        except FileExistsError:
            return False
        return True
    finally:
        Path(tmp_name).unlink(missing_ok=True)
