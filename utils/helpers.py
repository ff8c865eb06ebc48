"""Helper utilities for provider integration and order sync"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the timezone-less DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert provider-supplied numbers and numeric strings to Decimal, None if not numeric"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their printed representation
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def to_non_negative_int(value: Any) -> Optional[int]:
    """Parse an arbitrary-size non-negative integer quantity, None if not parseable"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    number = to_decimal(value)
    if number is None or number < 0 or number != number.to_integral_value():
        return None
    return int(number)


def safe_json_dumps(payload: Any) -> str:
    """Serialize a raw provider payload for storage, never raising"""
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return json.dumps(str(payload))


def truncate(text: Optional[str], limit: int = 200) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit]
