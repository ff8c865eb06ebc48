"""
Tests for provider status normalization
Covers casing/whitespace tolerance, unknown spellings and the refill vocabulary
"""

import pytest

from models import OrderStatus, RequestStatus
from services.provider_status_mapper import (
    ProviderStatusMapper,
    map_provider_status,
    normalize_status_text,
)


class TestOrderStatusMapping:
    """Provider order statuses into the canonical lifecycle"""

    @pytest.mark.parametrize("raw, expected", [
        ("Pending", OrderStatus.PENDING.value),
        ("In progress", OrderStatus.PROCESSING.value),
        ("in_progress", OrderStatus.PROCESSING.value),
        ("  PROCESSING ", OrderStatus.PROCESSING.value),
        ("Completed", OrderStatus.COMPLETED.value),
        ("Partial", OrderStatus.PARTIAL.value),
        ("Canceled", OrderStatus.CANCELLED.value),
        ("Cancelled", OrderStatus.CANCELLED.value),
        ("Refunded", OrderStatus.REFUNDED.value),
        ("Fail", OrderStatus.FAILED.value),
    ])
    def test_known_spellings(self, raw, expected):
        assert ProviderStatusMapper.map_order_status(raw) == expected, f"'{raw}' should map to {expected}"

    def test_unknown_status_degrades_to_pending(self, caplog):
        """Unknown spellings never raise"""
        assert ProviderStatusMapper.map_order_status("Awaiting moderation") == OrderStatus.PENDING.value
        assert "UNKNOWN_PROVIDER_STATUS" in caplog.text, "Unknown status should be logged as a warning"

    def test_none_maps_to_pending(self):
        assert map_provider_status(None) == OrderStatus.PENDING.value

    def test_is_cancelled_accepts_both_spellings(self):
        assert ProviderStatusMapper.is_cancelled("canceled")
        assert ProviderStatusMapper.is_cancelled("Cancelled")
        assert not ProviderStatusMapper.is_cancelled("completed")
        assert not ProviderStatusMapper.is_cancelled(None)

    def test_normalize_collapses_whitespace(self):
        assert normalize_status_text("  In   Progress ") == "in_progress"


class TestRefillStatusMapping:

    def test_rejected_maps_to_declined(self):
        assert ProviderStatusMapper.map_refill_status("Rejected") == RequestStatus.DECLINED.value

    def test_completed_and_in_progress(self):
        assert ProviderStatusMapper.map_refill_status("Completed") == RequestStatus.COMPLETED.value
        assert ProviderStatusMapper.map_refill_status("In progress") == RequestStatus.REFILLING.value

    def test_unknown_refill_status_is_none(self):
        assert ProviderStatusMapper.map_refill_status("queued somewhere") is None
