"""
Affiliate Commission Service
Keeps affiliate commission rows in step with the order they were earned on.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import AffiliateCommission, CommissionStatus, User
from utils.helpers import utc_now

logger = logging.getLogger(__name__)


class AffiliateCommissionService:
    """
    'completed' approves a pending commission and credits the affiliate.
    'cancelled' cancels a pending or approved one, reversing the credit if it was approved.
    Repeated calls with the same transition are no-ops. Runs inside the caller's transaction.
    """

    COMPLETED = "completed"
    CANCELLED = "cancelled"

    async def update_for_order(self, session: AsyncSession, order_id: int, transition: str) -> Optional[str]:
        result = await session.execute(
            select(AffiliateCommission).where(AffiliateCommission.order_id == order_id)
        )
        commission = result.scalar_one_or_none()
        if commission is None:
            return None

        previous = commission.status
        if transition == self.COMPLETED:
            if previous != CommissionStatus.PENDING.value:
                return previous
            commission.status = CommissionStatus.APPROVED.value
            await self._adjust_affiliate_balance(session, commission.affiliate_user_id, commission.amount)
        elif transition == self.CANCELLED:
            if previous == CommissionStatus.CANCELLED.value:
                return previous
            commission.status = CommissionStatus.CANCELLED.value
            if previous == CommissionStatus.APPROVED.value:
                await self._adjust_affiliate_balance(session, commission.affiliate_user_id, -commission.amount)
        else:
            logger.warning(f"⚠️ COMMISSION_UNKNOWN_TRANSITION: order={order_id} transition={transition}")
            return previous

        commission.updated_at = utc_now()
        logger.info(
            f"AFFILIATE_COMMISSION_UPDATED: order={order_id} {previous} -> {commission.status} "
            f"amount={commission.amount}"
        )
        return commission.status

    @staticmethod
    async def _adjust_affiliate_balance(session: AsyncSession, user_id: int, delta):
        affiliate = await session.get(User, user_id)
        if affiliate is None:
            logger.warning(f"⚠️ COMMISSION_AFFILIATE_MISSING: user={user_id}")
            return
        affiliate.affiliate_balance = (affiliate.affiliate_balance or 0) + delta
