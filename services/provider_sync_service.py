"""
Provider Order Sync Service
===========================

Batch reconciliation of local orders against provider truth.

One run:
1. selects candidate orders (explicit ids, or every order with a provider reference)
2. groups them by provider, resolving detached services through the audit log
3. bulk-loads providers and skips inactive ones
4. walks every bucket sequentially under a wall-clock budget
5. per order: queries status, maps it, applies changes, writes one audit row

A per-order failure is logged and recorded, and the run moves on to the next order.
Refunds for orders cancelled upstream are applied inside one transaction that also claims
the order's refund marker, so overlapping runs cannot refund the same order twice.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from config import Config
from models import (
    Order,
    OrderStatus,
    Provider,
    ProviderLogAction,
    ProviderLogStatus,
    Service,
    User,
)
from services.affiliate_commission_service import AffiliateCommissionService
from services.provider_order_forwarder import ProviderOrderForwarder
from services.provider_order_log_service import ProviderOrderLogService
from services.provider_response_parser import ParsedOrderStatus, is_known
from services.provider_status_mapper import ProviderStatusMapper
from services.sync_broadcaster import SyncBroadcaster, SyncProgress
from utils.atomic_transactions import async_atomic_transaction
from utils.helpers import safe_json_dumps, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ProviderSyncLimits:
    max_seconds: float = Config.PROVIDER_SYNC_MAX_SECONDS
    max_orders: int = Config.PROVIDER_SYNC_MAX_ORDERS
    max_candidates: int = Config.PROVIDER_SYNC_MAX_CANDIDATES


@dataclass
class ProviderSyncOptions:
    order_ids: Optional[List[int]] = None
    sync_all: bool = False
    provider_id: Optional[int] = None
    broadcast: bool = False
    action: str = ProviderLogAction.MANUAL_SYNC.value


@dataclass
class OrderSyncResult:
    order_id: int
    updated: bool
    error: Optional[str] = None
    old_status: Optional[str] = None
    old_provider_status: Optional[str] = None
    new_status: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    status: Optional[str] = None
    message: Optional[str] = None
    refunded_amount: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"orderId": self.order_id, "updated": self.updated}
        if self.error is not None:
            result["error"] = self.error
        if self.updated:
            result.update({
                "oldStatus": self.old_status,
                "oldProviderStatus": self.old_provider_status,
                "newStatus": self.new_status,
                "data": {
                    "startCount": str(self.data["start_count"]) if "start_count" in self.data else None,
                    "remains": str(self.data["remains"]) if "remains" in self.data else None,
                    "charge": str(self.data["charge"]) if "charge" in self.data else None,
                },
            })
            if self.refunded_amount is not None:
                result["refundedAmount"] = str(self.refunded_amount)
        elif self.error is None:
            result["status"] = self.status
            result["message"] = self.message
        return result


@dataclass
class ProviderSyncResult:
    success: bool = True
    synced_count: int = 0
    total_processed: int = 0     # orders actually attempted this run
    total_selected: int = 0      # candidates left after the per-run cap
    total_checked: int = 0       # candidates discovered
    stopped_early: bool = False
    elapsed_seconds: float = 0.0
    results: List[OrderSyncResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "syncedCount": self.synced_count,
            "totalProcessed": self.total_processed,
            "totalSelected": self.total_selected,
            "totalChecked": self.total_checked,
            "stoppedEarly": self.stopped_early,
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class _Candidate:
    """Detached view of an order taken at selection time"""
    id: int
    service_id: int
    provider_order_id: str
    service_provider_id: Optional[int]


def refund_amount_for(order: Order, user: User) -> Decimal:
    """Order price in the user's currency"""
    usd_price = Decimal(order.usd_price or 0)
    if (user.currency or "USD").upper() == "USD":
        return usd_price
    rate = Decimal(user.dollar_rate) if user.dollar_rate else Config.DEFAULT_DOLLAR_RATE
    return usd_price * rate


class ProviderSyncService:
    """Reconciliation engine"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        forwarder: Optional[ProviderOrderForwarder] = None,
        broadcaster: Optional[SyncBroadcaster] = None,
        commission_service: Optional[AffiliateCommissionService] = None,
        limits: Optional[ProviderSyncLimits] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if session_factory is None:
            from database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.forwarder = forwarder or ProviderOrderForwarder()
        self.broadcaster = broadcaster
        self.commission_service = commission_service or AffiliateCommissionService()
        self.limits = limits or ProviderSyncLimits()
        self.clock = clock
        self._provider_limiters: Dict[int, asyncio.Semaphore] = {}

    def _limiter_for(self, provider_id: int) -> asyncio.Semaphore:
        # One in-flight status call per provider
        limiter = self._provider_limiters.get(provider_id)
        if limiter is None:
            limiter = asyncio.Semaphore(1)
            self._provider_limiters[provider_id] = limiter
        return limiter

    # ------------------------------------------------------------------ run

    async def run_provider_sync(self, options: ProviderSyncOptions) -> ProviderSyncResult:
        start = self.clock()
        result = ProviderSyncResult()

        if not options.sync_all and not options.order_ids:
            return result

        async with self.session_factory() as session:
            candidates = await self._select_candidates(session, options)
            result.total_checked = len(candidates)
            if not candidates:
                return result

            limited = candidates[: self.limits.max_orders]
            result.total_selected = len(limited)
            logger.info(
                f"🔄 PROVIDER_SYNC_START: {len(limited)} orders (limited from {len(candidates)}), "
                f"action={options.action}"
            )

            buckets = await self._group_by_provider(session, limited, start, result)
            providers = await self._load_providers(session, list(buckets.keys()))

        def budget_exceeded() -> bool:
            return self.clock() - start > self.limits.max_seconds

        await self._emit_progress(options, SyncProgress(total=len(limited), processed=0, synced=0))

        for provider_id, orders in buckets.items():
            if budget_exceeded():
                logger.warning("⏱️ PROVIDER_SYNC_BUDGET: time limit reached, stopping before next provider")
                result.stopped_early = True
                break

            provider = providers.get(provider_id)
            if provider is None:
                logger.info(f"PROVIDER_SYNC_SKIP: provider {provider_id} not found")
                continue
            if not provider.is_active:
                logger.info(f"PROVIDER_SYNC_SKIP: inactive provider {provider.name} (ID: {provider.id})")
                continue
            if options.provider_id is not None and provider.id != options.provider_id:
                continue

            logger.info(f"Syncing {len(orders)} orders for provider: {provider.name} (ID: {provider.id})")
            updated_ids: List[int] = []

            for candidate in orders:
                if budget_exceeded():
                    logger.warning("⏱️ PROVIDER_SYNC_BUDGET: time limit reached, stopping order sync")
                    result.stopped_early = True
                    break

                order_result = await self._sync_order_safely(candidate, provider, options.action)
                result.total_processed += 1
                result.results.append(order_result)
                if order_result.updated:
                    result.synced_count += 1
                    updated_ids.append(candidate.id)

                await self._emit_progress(options, SyncProgress(
                    total=len(limited),
                    processed=result.total_processed,
                    synced=result.synced_count,
                    current_order_id=candidate.id,
                ))

            if options.broadcast and updated_ids:
                await self._broadcast_updated_orders(updated_ids)

            if result.stopped_early:
                break

        result.elapsed_seconds = self.clock() - start
        logger.info(
            f"✅ PROVIDER_SYNC_DONE: updated {result.synced_count} of {result.total_processed} processed "
            f"({result.total_checked} discovered) in {result.elapsed_seconds:.2f}s"
            + (" - stopped early" if result.stopped_early else "")
        )
        return result

    # ------------------------------------------------------------------ selection

    async def _select_candidates(self, session: AsyncSession, options: ProviderSyncOptions) -> List[_Candidate]:
        query = (
            select(Order.id, Order.service_id, Order.provider_order_id, Service.provider_id)
            .join(Service, Service.id == Order.service_id)
            .where(Order.provider_order_id.isnot(None))
        )
        if options.sync_all:
            query = query.where(
                Service.provider_id.isnot(None),
                Service.provider_service_id.isnot(None),
            )
            if options.provider_id is not None:
                query = query.where(Service.provider_id == options.provider_id)
        else:
            query = query.where(Order.id.in_(options.order_ids))

        # Never-synced first, then the stalest, so an early stop is picked up next run
        query = query.order_by(
            Order.last_sync_at.is_(None).desc(),
            Order.last_sync_at.asc(),
            Order.id.asc(),
        ).limit(self.limits.max_candidates)

        rows = (await session.execute(query)).all()
        return [
            _Candidate(id=row[0], service_id=row[1], provider_order_id=row[2], service_provider_id=row[3])
            for row in rows
        ]

    async def _group_by_provider(
        self, session: AsyncSession, candidates: List[_Candidate], start: float, result: ProviderSyncResult
    ) -> "OrderedDict[int, List[_Candidate]]":
        buckets: "OrderedDict[int, List[_Candidate]]" = OrderedDict()
        for candidate in candidates:
            if self.clock() - start > self.limits.max_seconds:
                logger.warning("⏱️ PROVIDER_SYNC_BUDGET: time limit reached while grouping")
                result.stopped_early = True
                break
            provider_id = candidate.service_provider_id
            if provider_id is None:
                # Service was detached from its provider after the order was placed
                provider_id = await ProviderOrderLogService.latest_provider_id_for_order(session, candidate.id)
            if provider_id is None:
                logger.info(f"Order {candidate.id} has no provider, skipping sync")
                continue
            buckets.setdefault(provider_id, []).append(candidate)
        logger.info(f"Grouped orders into {len(buckets)} provider(s)")
        return buckets

    async def _load_providers(self, session: AsyncSession, provider_ids: List[int]) -> Dict[int, Provider]:
        if not provider_ids:
            return {}
        rows = await session.execute(select(Provider).where(Provider.id.in_(provider_ids)))
        return {p.id: p for p in rows.scalars().all()}

    # ------------------------------------------------------------------ per order

    async def _sync_order_safely(self, candidate: _Candidate, provider: Provider, action: str) -> OrderSyncResult:
        try:
            return await self.sync_single_order(candidate.id, candidate.provider_order_id, provider, action)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"❌ ORDER_SYNC_FAILED: order={candidate.id} provider={provider.id} error={message}")
            await self._record_failure(candidate.id, provider.id, action, message)
            return OrderSyncResult(order_id=candidate.id, updated=False, error=message)

    async def _record_failure(self, order_id: int, provider_id: int, action: str, message: str):
        try:
            async with self.session_factory() as session:
                async with async_atomic_transaction(session, f"sync_failure_log order={order_id}"):
                    ProviderOrderLogService.record(
                        session, order_id, provider_id, action,
                        ProviderLogStatus.FAILED.value, error_message=message,
                    )
        except Exception as log_error:
            logger.error(f"❌ AUDIT_LOG_WRITE_FAILED: order={order_id} error={log_error}")

    async def sync_single_order(
        self, order_id: int, provider_order_id: str, provider: Provider, action: str
    ) -> OrderSyncResult:
        """Query one order upstream and fold the answer back; raises on any failure"""
        logger.info(f"Checking status for order {order_id} (provider order: {provider_order_id})")
        async with self._limiter_for(provider.id):
            parsed = await self.forwarder.fetch_order_status(provider, provider_order_id)

        async with self.session_factory() as session:
            async with async_atomic_transaction(session, f"order_sync order={order_id}"):
                return await self._apply_status(session, order_id, provider, action, parsed)

    async def _apply_status(
        self, session: AsyncSession, order_id: int, provider: Provider, action: str, parsed: ParsedOrderStatus
    ) -> OrderSyncResult:
        # Fresh read, locked on databases that support it
        order = (await session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if order is None:
            raise LookupError(f"Order {order_id} not found")

        now = utc_now()
        current_status = order.status
        current_provider_status = order.provider_status or order.status
        new_status = parsed.status if is_known(parsed.status) else current_status

        is_cancelled = ProviderStatusMapper.is_cancelled(new_status)
        was_cancelled = (
            ProviderStatusMapper.is_cancelled(current_provider_status)
            or ProviderStatusMapper.is_cancelled(current_status)
        )

        status_changed = new_status != current_provider_status or new_status != current_status
        field_changes = {
            name: value for name, value in parsed.known_fields().items()
            if getattr(order, name) is None or getattr(order, name) != value
        }
        has_changes = status_changed or bool(field_changes)

        result = OrderSyncResult(order_id=order.id, updated=has_changes)

        if has_changes:
            order.status = new_status
            order.provider_status = new_status
            for name, value in field_changes.items():
                setattr(order, name, value)
            order.api_response = safe_json_dumps(parsed.raw)
            order.last_sync_at = now
            order.updated_at = now

            if is_cancelled and not was_cancelled:
                result.refunded_amount = await self._apply_cancellation_refund(session, order, current_status, now)
                await self.commission_service.update_for_order(session, order.id, AffiliateCommissionService.CANCELLED)
            elif new_status == OrderStatus.COMPLETED.value and current_status != OrderStatus.COMPLETED.value:
                await self.commission_service.update_for_order(session, order.id, AffiliateCommissionService.COMPLETED)

            result.old_status = current_status
            result.old_provider_status = current_provider_status
            result.new_status = new_status
            result.data = dict(field_changes)
            logger.info(
                f"✅ ORDER_SYNCED: order={order.id} {current_status} -> {new_status} "
                f"fields={sorted(field_changes)}"
            )
        else:
            order.last_sync_at = now
            result.status = current_status
            result.message = "Data unchanged"

        ProviderOrderLogService.record(
            session, order.id, provider.id, action, ProviderLogStatus.SUCCESS.value, response=parsed.raw,
        )
        return result

    async def _apply_cancellation_refund(
        self, session: AsyncSession, order: Order, previous_status: str, now
    ) -> Optional[Decimal]:
        """Credit the user once per order; returns the amount, or None when nothing was refunded"""
        user = (await session.execute(
            select(User).where(User.id == order.user_id).with_for_update()
        )).scalar_one_or_none()
        if user is None:
            logger.warning(f"⚠️ REFUND_SKIPPED: order={order.id} has no user")
            return None

        claimed = await session.execute(
            update(Order)
            .where(Order.id == order.id, Order.refund_applied_at.is_(None))
            .values(refund_applied_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            logger.warning(f"⚠️ REFUND_ALREADY_APPLIED: order={order.id} - skipping balance change")
            return None
        set_committed_value(order, "refund_applied_at", now)

        amount = refund_amount_for(order, user)
        # Spend is only reversed for orders that actually left pending
        was_processed = previous_status != OrderStatus.PENDING.value
        values: Dict[str, Any] = {"balance": User.balance + amount}
        if was_processed and amount > 0:
            values["total_spent"] = case(
                (User.total_spent > amount, User.total_spent - amount),
                else_=Decimal("0"),
            )
        await session.execute(
            update(User).where(User.id == user.id).values(**values).execution_options(synchronize_session=False)
        )
        logger.info(
            f"💰 ORDER_CANCEL_REFUND: order={order.id} user={user.id} amount={amount} {user.currency} "
            f"spent_adjusted={was_processed}"
        )
        return amount

    # ------------------------------------------------------------------ broadcast

    async def _emit_progress(self, options: ProviderSyncOptions, progress: SyncProgress):
        if not options.broadcast or self.broadcaster is None:
            return
        try:
            await self.broadcaster.broadcast_sync_progress(progress)
        except Exception as e:
            logger.warning(f"⚠️ SYNC_PROGRESS_BROADCAST_FAILED: {e}")

    async def _broadcast_updated_orders(self, order_ids: List[int]):
        if self.broadcaster is None:
            return
        try:
            async with self.session_factory() as session:
                rows = await session.execute(
                    select(Order)
                    .where(Order.id.in_(order_ids))
                    .options(
                        selectinload(Order.user),
                        selectinload(Order.service),
                        selectinload(Order.category),
                    )
                )
                orders = list(rows.scalars().all())
            for order in orders:
                await self.broadcaster.broadcast_order_update(order.id, order_update_payload(order))
        except Exception as e:
            logger.warning(f"⚠️ ORDER_UPDATE_BROADCAST_FAILED: {e}")


def order_update_payload(order: Order) -> Dict[str, Any]:
    """Refreshed row plus the display fields the admin order table shows"""
    user = order.user
    service = order.service
    category = order.category
    return {
        "id": order.id,
        "status": order.status,
        "providerStatus": order.provider_status,
        "startCount": str(order.start_count),
        "remains": str(order.remains),
        "charge": str(order.charge) if order.charge is not None else None,
        "lastSyncAt": order.last_sync_at.isoformat() if order.last_sync_at else None,
        "user": {
            "id": user.id,
            "email": user.email,
            "username": user.username,
            "currency": user.currency,
        } if user else None,
        "service": {
            "id": service.id,
            "name": service.name,
            "rate": str(service.rate),
            "min_order": str(service.min_order),
            "max_order": str(service.max_order),
            "providerId": service.provider_id,
            "providerServiceId": service.provider_service_id,
        } if service else None,
        "category": {"id": category.id, "name": category.name} if category else None,
    }
