"""
Tests for affiliate commission transitions driven by order outcomes
"""

from decimal import Decimal

import pytest

from models import AffiliateCommission, CommissionStatus, User
from services.affiliate_commission_service import AffiliateCommissionService


async def apply(session_factory, order_id, transition):
    async with session_factory() as session:
        status = await AffiliateCommissionService().update_for_order(session, order_id, transition)
        await session.commit()
    return status


class TestAffiliateCommissionService:

    @pytest.mark.asyncio
    async def test_completed_approves_and_credits_once(self, factory, session_factory):
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        affiliate = await factory.create_user(username="affiliate")
        user = await factory.create_user(referred_by_id=affiliate.id)
        order = await factory.create_order(user, service)
        await factory.create_commission(order, affiliate, amount=Decimal("0.40"))

        first = await apply(session_factory, order.id, AffiliateCommissionService.COMPLETED)
        second = await apply(session_factory, order.id, AffiliateCommissionService.COMPLETED)

        assert first == CommissionStatus.APPROVED.value
        assert second == CommissionStatus.APPROVED.value
        assert (await factory.get(User, affiliate.id)).affiliate_balance == Decimal("0.40"), "Credited exactly once"

    @pytest.mark.asyncio
    async def test_cancel_pending_does_not_touch_balance(self, factory, session_factory):
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        affiliate = await factory.create_user(username="affiliate", affiliate_balance=Decimal("1.00"))
        user = await factory.create_user(referred_by_id=affiliate.id)
        order = await factory.create_order(user, service)
        commission = await factory.create_commission(order, affiliate, amount=Decimal("0.40"))

        status = await apply(session_factory, order.id, AffiliateCommissionService.CANCELLED)

        assert status == CommissionStatus.CANCELLED.value
        assert (await factory.get(AffiliateCommission, commission.id)).status == CommissionStatus.CANCELLED.value
        assert (await factory.get(User, affiliate.id)).affiliate_balance == Decimal("1.00")

    @pytest.mark.asyncio
    async def test_cancelled_commission_is_not_approved_later(self, factory, session_factory):
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        affiliate = await factory.create_user(username="affiliate")
        user = await factory.create_user(referred_by_id=affiliate.id)
        order = await factory.create_order(user, service)
        await factory.create_commission(order, affiliate, status=CommissionStatus.CANCELLED.value)

        status = await apply(session_factory, order.id, AffiliateCommissionService.COMPLETED)

        assert status == CommissionStatus.CANCELLED.value
        assert (await factory.get(User, affiliate.id)).affiliate_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_order_without_commission(self, factory, session_factory):
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        user = await factory.create_user()
        order = await factory.create_order(user, service)

        assert await apply(session_factory, order.id, AffiliateCommissionService.COMPLETED) is None
