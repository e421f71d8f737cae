"""Background job scheduler for the booking backend"""

import asyncio
import logging
from datetime import datetime

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from jobs.booking_jobs import auto_complete_bookings, expire_pending_bookings, reconcile_settlements
from jobs.ledger_consistency_monitor import LedgerConsistencyMonitor
from middleware.rate_limiter import rate_limiter
from services.idempotency_service import IdempotencyService
from services.promo_code_service import PromoCodeService
from services.wallet_service import WalletService

logger = logging.getLogger(__name__)


class BookingScheduler:
    """Runs booking automation and housekeeping jobs on the event loop"""

    def __init__(self):
        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # collapse missed runs into one
            'max_instances': 1,
            'misfire_grace_time': 120
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    def setup_jobs(self):
        """Register all jobs; staggered start offsets keep them from firing together"""

        # Settle completed_pending bookings nobody confirmed (every 15 minutes)
        self.scheduler.add_job(
            self.run_auto_complete,
            trigger=IntervalTrigger(minutes=15, start_date=datetime.now().replace(second=5, microsecond=0)),
            id="auto_complete_bookings",
            name="Auto-complete Bookings",
        )

        # Auto-reject unanswered pending bookings (hourly)
        self.scheduler.add_job(
            self.run_expire_pending,
            trigger=IntervalTrigger(hours=1, start_date=datetime.now().replace(second=15, microsecond=0)),
            id="expire_pending_bookings",
            name="Expire Pending Bookings",
        )

        # Retry deferred settlement rewards (every 30 minutes)
        self.scheduler.add_job(
            self.run_settlement_reconciliation,
            trigger=IntervalTrigger(minutes=30, start_date=datetime.now().replace(second=25, microsecond=0)),
            id="settlement_reconciliation",
            name="Settlement Reward Reconciliation",
        )

        # Escrow vs open bookings (hourly, report only)
        self.scheduler.add_job(
            self.run_ledger_monitor,
            trigger=IntervalTrigger(hours=1, start_date=datetime.now().replace(second=35, microsecond=0)),
            id="ledger_consistency_monitor",
            name="Ledger Consistency Monitor",
        )

        self.scheduler.add_job(
            self.run_rate_limit_sweep,
            trigger=IntervalTrigger(seconds=Config.RATE_LIMIT_SWEEP_SECONDS),
            id="rate_limit_sweep",
            name="Rate Limit Bucket Sweep",
        )

        self.scheduler.add_job(
            self.run_promo_reconciliation,
            trigger=IntervalTrigger(hours=1, start_date=datetime.now().replace(second=45, microsecond=0)),
            id="promo_usage_reconciliation",
            name="Promo Usage Reconciliation",
        )

        self.scheduler.add_job(
            self.run_idempotency_cleanup,
            trigger=IntervalTrigger(hours=1, start_date=datetime.now().replace(second=55, microsecond=0)),
            id="idempotency_cleanup",
            name="Idempotency Key Cleanup",
        )

        self.scheduler.add_job(
            self.run_topup_expiry,
            trigger=IntervalTrigger(minutes=10, start_date=datetime.now().replace(second=50, microsecond=0)),
            id="topup_expiry",
            name="Top-up Request Expiry",
        )

    def start(self):
        """Start the scheduler"""
        self.setup_jobs()
        self.scheduler.start()
        job_names = [f"{job.name} ({job.id})" for job in self.scheduler.get_jobs()]
        logger.info(f"✅ Booking scheduler started: {job_names}")

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")

    # Jobs do blocking database work, so each runs in a worker thread

    async def run_auto_complete(self):
        try:
            await asyncio.to_thread(auto_complete_bookings)
        except Exception as e:
            logger.error(f"Error in auto_complete_bookings: {e}")

    async def run_expire_pending(self):
        try:
            await asyncio.to_thread(expire_pending_bookings)
        except Exception as e:
            logger.error(f"Error in expire_pending_bookings: {e}")

    async def run_settlement_reconciliation(self):
        try:
            await asyncio.to_thread(reconcile_settlements)
        except Exception as e:
            logger.error(f"Error in settlement reconciliation: {e}")

    async def run_ledger_monitor(self):
        try:
            await asyncio.to_thread(LedgerConsistencyMonitor.run_consistency_check)
        except Exception as e:
            logger.error(f"Error in ledger consistency monitor: {e}")

    async def run_rate_limit_sweep(self):
        try:
            await asyncio.to_thread(rate_limiter.sweep_idle_buckets)
        except Exception as e:
            logger.error(f"Error in rate limit sweep: {e}")

    async def run_promo_reconciliation(self):
        try:
            await asyncio.to_thread(PromoCodeService.reconcile_used_counts)
        except Exception as e:
            logger.error(f"Error in promo usage reconciliation: {e}")

    async def run_idempotency_cleanup(self):
        try:
            await asyncio.to_thread(IdempotencyService.cleanup_expired)
        except Exception as e:
            logger.error(f"Error in idempotency cleanup: {e}")

    async def run_topup_expiry(self):
        try:
            await asyncio.to_thread(WalletService.expire_stale_topups)
        except Exception as e:
            logger.error(f"Error in top-up expiry: {e}")
