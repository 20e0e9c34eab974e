"""
In-process scheduler for the reconciliation jobs.

Two asyncio loops started from the application lifespan:
- cleanup of expired unpaid bookings, every CLEANUP_INTERVAL_MINUTES
- payment discrepancy check + admin alert, every DISCREPANCY_INTERVAL_MINUTES

Each run uses its own database session and takes a Redis lock so that with
several API instances only one of them sweeps at a time. A failing run is
logged and the loop carries on.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from retreat_booking.core.config import Settings, get_settings
from retreat_booking.core.logging import get_logger
from retreat_booking.db.session import AsyncSessionLocal
from retreat_booking.infrastructure.redis_client import job_lock
from retreat_booking.services.interfaces.notifier import Notifier
from retreat_booking.services.interfaces.payment_gateway import PaymentGateway
from retreat_booking.services.reconciliation_service import ReconciliationService
from retreat_booking.services.strategy_factory import get_notifier, get_payment_gateway

CLEANUP_JOB = "cleanup_expired_bookings"
DISCREPANCY_JOB = "check_payment_discrepancies"


class BookingJobScheduler:

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory=AsyncSessionLocal,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[Notifier] = None,
        logger=None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier
        self.logger = logger or get_logger(__name__)
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        if self._tasks:
            return
        settings = self.settings
        self._tasks = [
            asyncio.create_task(
                self._loop(CLEANUP_JOB, settings.CLEANUP_INTERVAL_MINUTES, self.run_cleanup),
                name=CLEANUP_JOB,
            ),
            asyncio.create_task(
                self._loop(DISCREPANCY_JOB, settings.DISCREPANCY_INTERVAL_MINUTES, self.run_discrepancy_check),
                name=DISCREPANCY_JOB,
            ),
        ]
        self.logger.info(
            "scheduler_started",
            cleanup_interval_minutes=settings.CLEANUP_INTERVAL_MINUTES,
            discrepancy_interval_minutes=settings.DISCREPANCY_INTERVAL_MINUTES,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.logger.info("scheduler_stopped")

    async def _loop(self, name: str, interval_minutes: int, job: Callable[[], Awaitable[None]]) -> None:
        interval = interval_minutes * 60
        while True:
            await asyncio.sleep(interval)
            async with job_lock(name, ttl_seconds=interval) as acquired:
                if not acquired:
                    continue
                try:
                    await job()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.logger.error("scheduled_job_failed", job=name, error=str(e), exc_info=True)

    def _service(self, db) -> ReconciliationService:
        return ReconciliationService(
            db,
            gateway=self.gateway or get_payment_gateway(),
            notifier=self.notifier or get_notifier(),
            settings=self.settings,
            logger=self.logger,
        )

    async def run_cleanup(self) -> int:
        async with self.session_factory() as db:
            cleaned = await self._service(db).cleanup_expired_bookings()
        self.logger.info("scheduled_cleanup_completed", cleaned=cleaned)
        return cleaned

    async def run_discrepancy_check(self) -> bool:
        async with self.session_factory() as db:
            service = self._service(db)
            report = await service.check_payment_discrepancies(
                grace_period_minutes=self.settings.DISCREPANCY_GRACE_MINUTES,
            )
            if report.summary.total_discrepancies == 0:
                return False
            return await service.send_discrepancy_alert(report)
