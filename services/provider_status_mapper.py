"""
Provider Status Mapping
Normalizes free-text provider status strings into the canonical order and refill vocabularies.

The tables are deliberately permissive: an unknown spelling degrades to a safe default
with a warning instead of failing the sync.
"""

import logging
import re
from typing import Optional

from models import OrderStatus, RequestStatus

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_status_text(raw_status: Optional[str]) -> str:
    """Lowercase, trim and collapse whitespace to underscores"""
    if raw_status is None:
        return ""
    return _WHITESPACE.sub("_", str(raw_status).strip().lower())


class ProviderStatusMapper:
    """Maps provider vocabulary to internal statuses"""

    DEFAULT_ORDER_STATUS = OrderStatus.PENDING.value

    ORDER_STATUS_MAP = {
        "pending": OrderStatus.PENDING.value,
        "in_progress": OrderStatus.PROCESSING.value,
        "inprogress": OrderStatus.PROCESSING.value,
        "processing": OrderStatus.PROCESSING.value,
        "completed": OrderStatus.COMPLETED.value,
        "complete": OrderStatus.COMPLETED.value,
        "partial": OrderStatus.PARTIAL.value,
        "canceled": OrderStatus.CANCELLED.value,
        "cancelled": OrderStatus.CANCELLED.value,
        "refunded": OrderStatus.REFUNDED.value,
        "failed": OrderStatus.FAILED.value,
        "fail": OrderStatus.FAILED.value,
        "error": OrderStatus.FAILED.value,
    }

    REFILL_STATUS_MAP = {
        "success": RequestStatus.COMPLETED.value,
        "completed": RequestStatus.COMPLETED.value,
        "complete": RequestStatus.COMPLETED.value,
        "refilling": RequestStatus.REFILLING.value,
        "in_progress": RequestStatus.REFILLING.value,
        "processing": RequestStatus.REFILLING.value,
        "pending": RequestStatus.PENDING.value,
        "rejected": RequestStatus.DECLINED.value,
        "reject": RequestStatus.DECLINED.value,
        "failed": RequestStatus.ERROR.value,
        "error": RequestStatus.ERROR.value,
    }

    @classmethod
    def map_order_status(cls, raw_status: Optional[str]) -> str:
        """Total function: always returns a canonical order status, never raises"""
        key = normalize_status_text(raw_status)
        mapped = cls.ORDER_STATUS_MAP.get(key)
        if mapped is None:
            logger.warning(
                f"⚠️ UNKNOWN_PROVIDER_STATUS: '{raw_status}' mapped to default '{cls.DEFAULT_ORDER_STATUS}'"
            )
            return cls.DEFAULT_ORDER_STATUS
        return mapped

    @classmethod
    def map_refill_status(cls, raw_status: Optional[str]) -> Optional[str]:
        """Map a refill status, None when the provider used an unknown spelling"""
        key = normalize_status_text(raw_status)
        mapped = cls.REFILL_STATUS_MAP.get(key)
        if mapped is None:
            logger.warning(f"⚠️ UNKNOWN_REFILL_STATUS: '{raw_status}' - keeping current request status")
        return mapped

    @staticmethod
    def is_cancelled(status: Optional[str]) -> bool:
        """True for either spelling of a cancelled status"""
        return normalize_status_text(status) in ("cancelled", "canceled")


def map_provider_status(raw_status: Optional[str]) -> str:
    return ProviderStatusMapper.map_order_status(raw_status)
