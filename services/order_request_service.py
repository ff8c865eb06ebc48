"""
Order Request Service
Business rules around forwarding orders and handling refill / cancel requests.

Every provider call made here is paired with a ProviderOrderLog row. Callers pass the
session and own the surrounding transaction.
"""

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from models import (
    FORWARD_FAILED_PROVIDER_STATUS,
    LIVE_REQUEST_STATUSES,
    CancelRequest,
    Order,
    OrderStatus,
    Provider,
    ProviderLogAction,
    ProviderLogStatus,
    RefillRequest,
    RequestStatus,
    Service,
)
from services.provider_errors import ProviderError
from services.provider_order_forwarder import (
    CancelForwardResult,
    ForwardResult,
    OrderSubmission,
    ProviderOrderForwarder,
    RefillForwardResult,
)
from services.provider_order_log_service import ProviderOrderLogService
from services.provider_response_parser import is_known
from services.provider_status_mapper import ProviderStatusMapper
from utils.atomic_transactions import async_atomic_transaction
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

DEFAULT_REFILL_DAYS = 30
DEFAULT_REFILL_REASON = "Customer requested refill due to drop in count"
REFILL_ELIGIBLE_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.PARTIAL.value)
CANCEL_BLOCKED_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)


class DuplicateRequestError(Exception):
    """A live refill/cancel request already exists for the order"""
    pass


class RequestNotEligibleError(Exception):
    """The order does not qualify for the requested action"""
    pass


def _read_notes(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        notes = json.loads(raw)
    except ValueError:
        return {"note": raw}
    return notes if isinstance(notes, dict) else {"note": notes}


class OrderRequestService:
    """Forwarding and refill/cancel workflow on top of ProviderOrderForwarder"""

    def __init__(self, forwarder: ProviderOrderForwarder):
        self.forwarder = forwarder

    # ------------------------------------------------------------------ helpers

    @staticmethod
    async def _load_order(session: AsyncSession, order_id: int) -> Order:
        order = (await session.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.service).selectinload(Service.provider))
        )).scalar_one_or_none()
        if order is None:
            raise LookupError(f"Order {order_id} not found")
        return order

    @staticmethod
    def _provider_for(order: Order) -> Optional[Provider]:
        service = order.service
        return service.provider if service is not None else None

    @staticmethod
    async def _live_request_exists(session: AsyncSession, model, order_id: int) -> bool:
        existing = await session.execute(
            select(model.id).where(model.order_id == order_id, model.status.in_(LIVE_REQUEST_STATUSES)).limit(1)
        )
        return existing.scalar_one_or_none() is not None

    # ------------------------------------------------------------------ new orders

    async def forward_new_order(self, session: AsyncSession, order_id: int) -> ForwardResult:
        """
        Send a freshly placed order upstream and store the outcome.

        A failed forward leaves provider_order_id empty and marks provider_status
        'forward_failed'; the local order keeps its own status.
        """
        order = await self._load_order(session, order_id)
        provider = self._provider_for(order)
        if provider is None:
            return ForwardResult(error="Service is not linked to a provider")

        service = order.service
        submission = OrderSubmission(
            service=service.provider_service_id or str(service.id),
            link=order.link,
            quantity=order.qty,
            comments=order.comments,
            runs=order.dripfeed_runs,
            interval=order.dripfeed_interval,
        )
        result = await self.forwarder.forward_order_to_provider(provider, submission)

        if result.ok:
            order.provider_order_id = result.order
            order.provider_status = (
                ProviderStatusMapper.map_order_status(result.status) if result.status
                else OrderStatus.PROCESSING.value
            )
        else:
            order.provider_status = FORWARD_FAILED_PROVIDER_STATUS
        order.updated_at = utc_now()

        ProviderOrderLogService.record(
            session, order.id, provider.id, ProviderLogAction.FORWARD_ORDER.value,
            ProviderLogStatus.SUCCESS.value if result.ok else ProviderLogStatus.FAILED.value,
            response=result.raw if result.raw is not None else result.to_dict(),
            error_message=result.error,
        )
        return result

    # ------------------------------------------------------------------ refill

    async def check_provider_refill_eligibility(self, provider: Provider, provider_order_id: str) -> Optional[str]:
        """
        Ask the provider whether an order can be refilled.

        Returns a reason string when the provider says no. Provider failures are lenient
        and count as eligible.
        """
        try:
            parsed = await self.forwarder.fetch_order_status(provider, provider_order_id)
        except ProviderError as e:
            logger.warning(f"⚠️ REFILL_ELIGIBILITY_UNKNOWN: provider={provider.id} error={e.message} - allowing")
            return None

        if not is_known(parsed.status):
            logger.warning(
                f"⚠️ REFILL_ELIGIBILITY_UNKNOWN: provider={provider.id} order={provider_order_id} "
                f"sent no status - allowing"
            )
        elif parsed.status not in REFILL_ELIGIBLE_STATUSES:
            return (
                f'Order status from provider is "{parsed.raw_status}", which is not eligible for refill. '
                f"Only completed or partial orders can be refilled."
            )
        if parsed.refill_available is False:
            return "Provider indicates this order is not eligible for refill at this time."
        return None

    async def create_refill_request(
        self, session: AsyncSession, order_id: int, user_id: int, reason: Optional[str] = None
    ) -> RefillRequest:
        order = await self._load_order(session, order_id)
        if order.user_id != user_id:
            raise RequestNotEligibleError("You can only request refill for your own orders")
        if order.service is None or not order.service.refill:
            raise RequestNotEligibleError("This service does not support refill")
        if order.status not in REFILL_ELIGIBLE_STATUSES:
            raise RequestNotEligibleError("Only completed or partial orders are eligible for refill")

        refill_days = order.service.refill_days or DEFAULT_REFILL_DAYS
        completed_at = order.updated_at or order.created_at
        if completed_at is not None and (utc_now() - completed_at).days > refill_days:
            raise RequestNotEligibleError(
                f"Refill period has expired. Refill is only available for {refill_days} days after order completion."
            )

        provider = self._provider_for(order)
        if provider is not None and provider.is_active and order.provider_order_id:
            reason_rejected = await self.check_provider_refill_eligibility(provider, order.provider_order_id)
            if reason_rejected:
                raise RequestNotEligibleError(reason_rejected)

        if await self._live_request_exists(session, RefillRequest, order.id):
            raise DuplicateRequestError("A refill request for this order is already pending")

        request = RefillRequest(
            order_id=order.id,
            user_id=user_id,
            reason=reason or DEFAULT_REFILL_REASON,
            status=RequestStatus.PENDING.value,
            created_at=utc_now(),
        )
        session.add(request)
        await session.flush()
        logger.info(f"REFILL_REQUEST_CREATED: request={request.id} order={order.id} user={user_id}")
        return request

    async def submit_refill_to_provider(self, session: AsyncSession, refill_request_id: int) -> RefillForwardResult:
        """Forward an approved refill request; records the provider refill id or the failure"""
        request = await session.get(RefillRequest, refill_request_id)
        if request is None:
            raise LookupError(f"Refill request {refill_request_id} not found")
        order = await self._load_order(session, request.order_id)
        provider = self._provider_for(order)
        if provider is None or not order.provider_order_id:
            raise RequestNotEligibleError("This order does not have a provider. Cannot send to provider.")

        result = await self.forwarder.forward_refill_order_to_provider(provider, order.provider_order_id)

        notes = _read_notes(request.admin_notes)
        now = utc_now()
        if result.ok:
            request.provider_refill_id = result.refill
            request.status = RequestStatus.REFILLING.value
            notes["providerRefillId"] = result.refill
        else:
            request.status = RequestStatus.FAILED.value
            notes["providerError"] = result.error
        request.admin_notes = json.dumps(notes)
        request.processed_at = now

        ProviderOrderLogService.record(
            session, order.id, provider.id, ProviderLogAction.FORWARD_REFILL_ORDER.value,
            ProviderLogStatus.SUCCESS.value if result.ok else ProviderLogStatus.FAILED.value,
            response=result.raw if result.raw is not None else result.to_dict(),
            error_message=result.error,
        )
        return result

    # ------------------------------------------------------------------ cancel

    async def create_cancel_request(
        self, session: AsyncSession, order_id: int, user_id: int, reason: Optional[str] = None
    ) -> CancelRequest:
        order = await self._load_order(session, order_id)
        if order.user_id != user_id:
            raise RequestNotEligibleError("You can only request cancellation for your own orders")
        if order.service is None or not order.service.cancel:
            raise RequestNotEligibleError("This service does not support cancellation")
        if order.status in CANCEL_BLOCKED_STATUSES:
            raise RequestNotEligibleError(f"Order is already {order.status}")
        if await self._live_request_exists(session, CancelRequest, order.id):
            raise DuplicateRequestError("A cancel request for this order is already pending")

        request = CancelRequest(
            order_id=order.id,
            user_id=user_id,
            reason=reason,
            status=RequestStatus.PENDING.value,
            created_at=utc_now(),
        )
        session.add(request)
        await session.flush()
        logger.info(f"CANCEL_REQUEST_CREATED: request={request.id} order={order.id} user={user_id}")
        return request

    async def submit_cancel_to_provider(self, session: AsyncSession, cancel_request_id: int) -> CancelForwardResult:
        """
        Forward a cancel request. The balance is not touched here: the refund happens when
        reconciliation sees the provider report the order as cancelled.
        """
        request = await session.get(CancelRequest, cancel_request_id)
        if request is None:
            raise LookupError(f"Cancel request {cancel_request_id} not found")
        order = await self._load_order(session, request.order_id)
        provider = self._provider_for(order)
        if provider is None or not order.provider_order_id:
            raise RequestNotEligibleError("This order does not have a provider. Cannot send to provider.")

        result = await self.forwarder.forward_cancel_to_provider(provider, order.provider_order_id)

        if result.ok:
            request.provider_cancel_id = result.cancel
            request.status = RequestStatus.APPROVED.value
        else:
            request.status = RequestStatus.FAILED.value
            request.admin_notes = json.dumps({**_read_notes(request.admin_notes), "providerError": result.error})
        request.processed_at = utc_now()

        ProviderOrderLogService.record(
            session, order.id, provider.id, ProviderLogAction.FORWARD_CANCEL_ORDER.value,
            ProviderLogStatus.SUCCESS.value if result.ok else ProviderLogStatus.FAILED.value,
            response=result.raw if result.raw is not None else result.to_dict(),
            error_message=result.error,
        )
        return result


class RefillRequestSyncService:
    """Polls providers for the progress of refills that were already sent"""

    def __init__(self, session_factory: async_sessionmaker, forwarder: ProviderOrderForwarder, order_sync=None):
        self.session_factory = session_factory
        self.forwarder = forwarder
        # ProviderSyncService, used when a request has no provider refill id
        self.order_sync = order_sync

    async def sync_refill_requests(self) -> Dict[str, Any]:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(RefillRequest)
                .where(RefillRequest.status.in_((RequestStatus.PENDING.value, RequestStatus.REFILLING.value)))
                .options(
                    selectinload(RefillRequest.order)
                    .selectinload(Order.service)
                    .selectinload(Service.provider)
                )
                .order_by(RefillRequest.id)
            )
            requests = list(rows.scalars().all())

        results = {"synced": 0, "failed": 0, "skipped": 0, "errors": []}
        for request in requests:
            order = request.order
            provider = order.service.provider if order is not None and order.service is not None else None
            if order is None or provider is None or not order.provider_order_id or not provider.is_active:
                results["skipped"] += 1
                continue
            try:
                await self._sync_one(request, order, provider)
                results["synced"] += 1
            except Exception as e:
                message = str(e) or e.__class__.__name__
                results["failed"] += 1
                results["errors"].append(f"Order {order.id}: {message}")
                logger.error(f"❌ REFILL_SYNC_FAILED: request={request.id} order={order.id} error={message}")

        logger.info(
            f"REFILL_SYNC_DONE: synced={results['synced']} failed={results['failed']} skipped={results['skipped']}"
        )
        return {
            "synced": results["synced"],
            "failed": results["failed"],
            "skipped": results["skipped"],
            "total": len(requests),
            "errors": results["errors"][:10],
        }

    async def _sync_one(self, request: RefillRequest, order: Order, provider: Provider):
        refill_id = request.provider_refill_id or _read_notes(request.admin_notes).get("providerRefillId")

        if refill_id:
            try:
                parsed = await self.forwarder.fetch_refill_status(provider, str(refill_id))
            except ProviderError as e:
                await self._log(order.id, provider.id, ProviderLogStatus.FAILED.value, error_message=e.message)
                raise
            async with self.session_factory() as session:
                async with async_atomic_transaction(session, f"refill_status request={request.id}"):
                    fresh = await session.get(RefillRequest, request.id)
                    if parsed.status and parsed.status != fresh.status:
                        logger.info(f"REFILL_STATUS_CHANGED: request={fresh.id} {fresh.status} -> {parsed.status}")
                        fresh.status = parsed.status
                        fresh.processed_at = utc_now()
                    ProviderOrderLogService.record(
                        session, order.id, provider.id, ProviderLogAction.REFILL_STATUS_SYNC.value,
                        ProviderLogStatus.SUCCESS.value, response=parsed.raw,
                    )
            return

        if self.order_sync is None:
            raise RuntimeError("No order sync service configured for refills without a provider refill id")

        # No refill id: follow the order itself, with the usual refund guarantees
        try:
            await self.order_sync.sync_single_order(
                order.id, order.provider_order_id, provider, ProviderLogAction.REFILL_STATUS_SYNC.value
            )
        except Exception as e:
            await self._log(order.id, provider.id, ProviderLogStatus.FAILED.value, error_message=str(e))
            raise
        async with self.session_factory() as session:
            async with async_atomic_transaction(session, f"refill_complete request={request.id}"):
                fresh = await session.get(RefillRequest, request.id)
                fresh_order = await session.get(Order, order.id)
                if (
                    fresh_order is not None
                    and fresh_order.status == OrderStatus.COMPLETED.value
                    and fresh.status == RequestStatus.REFILLING.value
                ):
                    fresh.status = RequestStatus.COMPLETED.value
                    fresh.processed_at = utc_now()
                    logger.info(f"REFILL_COMPLETED: request={fresh.id} order={order.id}")

    async def _log(self, order_id: int, provider_id: int, status: str, error_message: Optional[str] = None):
        async with self.session_factory() as session:
            async with async_atomic_transaction(session, f"refill_sync_log order={order_id}"):
                ProviderOrderLogService.record(
                    session, order_id, provider_id, ProviderLogAction.REFILL_STATUS_SYNC.value,
                    status, error_message=error_message,
                )
