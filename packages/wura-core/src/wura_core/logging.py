"""
Logging utilities for Wura with sensitive data masking.

The treasury signing key, signed raw transactions and RPC URLs carrying
provider API keys must never reach a log sink. Modules log through the
standard library (``logger = logging.getLogger(__name__)``); structured
fields go through ``extra=`` after passing ``mask_sensitive_data``.

Usage:
    from wura_core.logging import mask_sensitive_data, mask_url, configure_logging

    configure_logging(level=logging.INFO, json_format=True)

    logger.info("Settlement submitted", extra={"data": mask_sensitive_data({
        "tx_hash": tx_hash,
        "private_key": key,  # Will be masked
    })})
"""
from __future__ import annotations

import json
import logging
import re
import time
from datetime import datetime, timezone
from functools import wraps
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    ParamSpec,
    Sequence,
    TypeVar,
)

from .constants import LoggingConfig

T = TypeVar("T")
P = ParamSpec("P")

# Substrings that mark a key as sensitive regardless of the exact name
_SENSITIVE_SUBSTRINGS = ("secret", "password", "private", "credential", "auth")

_INLINE_PATTERNS = [
    # URLs with credentials
    (re.compile(r"(https?://)[^:/@\s]+:[^@\s]+@", re.IGNORECASE), r"\1***:***@"),
    # Provider API keys embedded in RPC URL paths (Alchemy, Infura, ...)
    (re.compile(r"(/v[23]/)[a-zA-Z0-9_-]{16,}", re.IGNORECASE), r"\1***"),
    # Bearer tokens
    (re.compile(r"(Bearer\s+)[a-zA-Z0-9._-]+", re.IGNORECASE), r"\1***"),
    # private_key=..., key: ...
    (
        re.compile(r"\b(private_?key[=:])\s*[\"']?([^\"'\s]+)[\"']?", re.IGNORECASE),
        r"\1***",
    ),
]


# =============================================================================
# Sensitive Data Masking
# =============================================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, showing only the first/last characters.

    Short values are fully replaced by the mask pattern.
    """
    if not value or len(value) <= show_chars * 2:
        return LoggingConfig.MASK_PATTERN

    return f"{value[:show_chars]}...{value[-show_chars:]}"


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    key_lower = key.lower().replace("-", "_")
    return key_lower in LoggingConfig.SENSITIVE_FIELDS or any(
        sensitive in key_lower for sensitive in _SENSITIVE_SUBSTRINGS
    )


def mask_sensitive_data(
    data: Any,
    additional_fields: Optional[Sequence[str]] = None,
    mask_pattern: str = LoggingConfig.MASK_PATTERN,
    _depth: int = 0,
    _max_depth: int = 10,
) -> Any:
    """Recursively mask sensitive data in a data structure.

    Args:
        data: The data structure to mask (dict, list, or scalar)
        additional_fields: Additional field names to mask
        mask_pattern: Pattern to replace sensitive values with

    Returns:
        Copy of data with sensitive values masked
    """
    if _depth > _max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_sensitive_key(str(key)) or (
                additional_fields and key in additional_fields
            ):
                result[key] = mask_pattern
            else:
                result[key] = mask_sensitive_data(
                    value, additional_fields, mask_pattern, _depth + 1, _max_depth
                )
        return result

    if isinstance(data, (list, tuple)):
        return type(data)(
            mask_sensitive_data(
                item, additional_fields, mask_pattern, _depth + 1, _max_depth
            )
            for item in data
        )

    if isinstance(data, str):
        return mask_inline(data)

    return data


def mask_inline(text: str) -> str:
    """Mask credentials embedded in free text (URLs, bearer tokens, key=value)."""
    if len(text) > LoggingConfig.MAX_LOG_MESSAGE_LENGTH:
        text = text[: LoggingConfig.MAX_LOG_MESSAGE_LENGTH] + "...[truncated]"

    for pattern, replacement in _INLINE_PATTERNS:
        text = pattern.sub(replacement, text)

    return text


def mask_url(url: str) -> str:
    """Mask credentials and API keys in an RPC endpoint URL."""
    return mask_inline(url)


# =============================================================================
# Operation Logging
# =============================================================================

def log_operation(
    operation_name: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator logging start, duration and failure of an async operation.

    Arguments are not logged; callers log the fields they want explicitly.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        log = logger or logging.getLogger(func.__module__)
        op_name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start_time = time.monotonic()
            log.debug("Starting %s", op_name)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log.warning(
                    "Failed %s after %.1fms: %s",
                    op_name,
                    (time.monotonic() - start_time) * 1000,
                    type(e).__name__,
                )
                raise
            log.debug(
                "Completed %s in %.1fms",
                op_name,
                (time.monotonic() - start_time) * 1000,
            )
            return result

        return wrapper

    return decorator


# =============================================================================
# JSON Formatter for Production
# =============================================================================

class JsonFormatter(logging.Formatter):
    """JSON log formatter for log aggregators.

    Messages and any ``data`` extra are masked before serialization.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_inline(record.getMessage()),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        data = getattr(record, "data", None)
        if data:
            log_data["data"] = mask_sensitive_data(data)

        return json.dumps(log_data, default=str)


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
) -> None:
    """Configure the root logger for the service.

    Args:
        level: Logging level (name or number)
        json_format: Whether to use JSON formatting
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)


__all__ = [
    "mask_sensitive_data",
    "mask_value",
    "mask_inline",
    "mask_url",
    "is_sensitive_key",
    "log_operation",
    "configure_logging",
    "JsonFormatter",
]
