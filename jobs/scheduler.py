"""
Provider Sync Scheduler

Two interval jobs:
1. Provider order sync - reconciles order status, remains and refunds
2. Refill request sync - follows refills already sent to providers

Both run with max_instances=1 so a slow pass never overlaps the next one.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from jobs.provider_order_sync import run_cron_provider_sync, run_refill_request_sync

logger = logging.getLogger(__name__)


class ProviderSyncScheduler:
    """APScheduler wrapper for the provider sync jobs"""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        job_defaults = {
            'coalesce': True,  # Prevent job pileup
            'max_instances': 1,  # Single instance enforcement
            'misfire_grace_time': 120,
        }
        self.scheduler = scheduler or AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults=job_defaults,
            timezone='UTC',
        )

    def setup_jobs(self):
        """Register the sync jobs, replacing any previous registration"""
        self.scheduler.add_job(
            run_cron_provider_sync,
            trigger=IntervalTrigger(
                seconds=Config.PROVIDER_SYNC_INTERVAL_SECONDS,
                start_date=datetime.now().replace(second=5, microsecond=0),
            ),
            id="provider_order_sync",
            name="🔄 Provider Order Sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        logger.info(f"✅ Provider Order Sync scheduled every {Config.PROVIDER_SYNC_INTERVAL_SECONDS} seconds")

        self.scheduler.add_job(
            run_refill_request_sync,
            trigger=IntervalTrigger(
                seconds=Config.REFILL_SYNC_INTERVAL_SECONDS,
                start_date=datetime.now().replace(second=35, microsecond=0),
            ),
            id="refill_request_sync",
            name="🔁 Refill Request Sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=120,
            replace_existing=True,
        )
        logger.info(f"✅ Refill Request Sync scheduled every {Config.REFILL_SYNC_INTERVAL_SECONDS} seconds")

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        job_names = [f"{job.name} ({job.id})" for job in self.scheduler.get_jobs()]
        logger.info(f"📋 Active jobs: {job_names}")

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("📴 Provider sync scheduler stopped")


async def _run_forever():
    from database import create_tables
    from jobs.provider_order_sync import get_provider_order_sync_job

    Config.log_environment_config()
    await create_tables()
    scheduler = ProviderSyncScheduler()
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        await get_provider_order_sync_job().close()


def main():
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    try:
        asyncio.run(_run_forever())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Provider sync scheduler interrupted")


if __name__ == "__main__":
    main()
