#!/usr/bin/env python3
"""Provider order reconciliation jobs - cron, manual and single-order entry points"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from models import ProviderLogAction
from services.order_request_service import RefillRequestSyncService
from services.provider_order_forwarder import ProviderOrderForwarder
from services.provider_sync_service import (
    ProviderSyncOptions,
    ProviderSyncResult,
    ProviderSyncService,
)
from services.sync_broadcaster import SyncBroadcaster

logger = logging.getLogger(__name__)


class ProviderOrderSyncJob:
    """Wires the forwarder, reconciliation engine and refill sync together"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        forwarder: Optional[ProviderOrderForwarder] = None,
        broadcaster: Optional[SyncBroadcaster] = None,
    ):
        if session_factory is None:
            from database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.forwarder = forwarder or ProviderOrderForwarder()
        self.sync_service = ProviderSyncService(
            session_factory=session_factory,
            forwarder=self.forwarder,
            broadcaster=broadcaster,
        )
        self.refill_sync = RefillRequestSyncService(session_factory, self.forwarder, order_sync=self.sync_service)

    async def run_cron_sync(self) -> ProviderSyncResult:
        """Scheduled pass over every order with a provider reference"""
        return await self.sync_service.run_provider_sync(
            ProviderSyncOptions(sync_all=True, action=ProviderLogAction.CRON_SYNC.value)
        )

    async def run_manual_sync(
        self,
        order_ids: Optional[List[int]] = None,
        sync_all: bool = False,
        provider_id: Optional[int] = None,
        broadcast: bool = False,
    ) -> ProviderSyncResult:
        return await self.sync_service.run_provider_sync(ProviderSyncOptions(
            order_ids=order_ids,
            sync_all=sync_all,
            provider_id=provider_id,
            broadcast=broadcast,
            action=ProviderLogAction.MANUAL_SYNC.value,
        ))

    async def sync_single_order(self, order_id: int) -> ProviderSyncResult:
        return await self.sync_service.run_provider_sync(
            ProviderSyncOptions(order_ids=[order_id], action=ProviderLogAction.CRON_SYNC.value)
        )

    async def run_refill_sync(self) -> dict:
        return await self.refill_sync.sync_refill_requests()

    async def close(self):
        await self.forwarder.close()


_provider_order_sync_job: Optional[ProviderOrderSyncJob] = None


def get_provider_order_sync_job() -> ProviderOrderSyncJob:
    """Process-wide job wiring for the scheduler and routes"""
    global _provider_order_sync_job
    if _provider_order_sync_job is None:
        _provider_order_sync_job = ProviderOrderSyncJob()
    return _provider_order_sync_job


def set_provider_order_sync_job(job: Optional[ProviderOrderSyncJob]):
    """Swap the wiring, e.g. to inject a fake transport"""
    global _provider_order_sync_job
    _provider_order_sync_job = job


async def run_cron_provider_sync():
    """Background job to reconcile provider orders"""
    try:
        result = await get_provider_order_sync_job().run_cron_sync()
        logger.info(
            f"CRON_PROVIDER_SYNC: synced={result.synced_count} processed={result.total_processed} "
            f"checked={result.total_checked}"
        )
        return result
    except Exception as e:
        logger.error(f"❌ CRON_PROVIDER_SYNC_FAILED: {e}")
        raise


async def run_refill_request_sync():
    """Background job to follow refills already sent to providers"""
    try:
        return await get_provider_order_sync_job().run_refill_sync()
    except Exception as e:
        logger.error(f"❌ REFILL_REQUEST_SYNC_FAILED: {e}")
        raise
