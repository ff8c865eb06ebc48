"""
Provider Order Log Service
Append-only audit trail of every forward and sync attempt. Rows are inserted, never updated.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import ProviderOrderLog
from utils.helpers import safe_json_dumps, utc_now

logger = logging.getLogger(__name__)


class ProviderOrderLogService:
    """Writes and reads ProviderOrderLog rows"""

    @staticmethod
    def record(
        session: AsyncSession,
        order_id: int,
        provider_id: int,
        action: str,
        status: str,
        response: Any = None,
        error_message: Optional[str] = None,
    ) -> ProviderOrderLog:
        """Stage one audit row on the session; the caller owns the commit"""
        if response is None and error_message:
            response = {"error": error_message}
        entry = ProviderOrderLog(
            order_id=order_id,
            provider_id=provider_id,
            action=action,
            status=status,
            response=safe_json_dumps(response) if response is not None else None,
            error_message=error_message,
            created_at=utc_now(),
        )
        session.add(entry)
        return entry

    @staticmethod
    async def latest_provider_id_for_order(session: AsyncSession, order_id: int) -> Optional[int]:
        """Provider of the most recent audit row for an order, used when a service lost its provider"""
        result = await session.execute(
            select(ProviderOrderLog.provider_id)
            .where(ProviderOrderLog.order_id == order_id)
            .order_by(ProviderOrderLog.created_at.desc(), ProviderOrderLog.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def logs_for_order(session: AsyncSession, order_id: int) -> list:
        result = await session.execute(
            select(ProviderOrderLog)
            .where(ProviderOrderLog.order_id == order_id)
            .order_by(ProviderOrderLog.id)
        )
        return list(result.scalars().all())
