import asyncio
import logging
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_fixed

from .alerts import AlertService

log = logging.getLogger(__name__)


class _Stopped(Exception):
    """stop() was called while waiting to retry."""


class SchedulerState(str, Enum):
    WAITING = "waiting"
    RUNNING = "running"
    RETRYING = "retrying"
    STOPPED = "stopped"


def next_run_after(now: datetime, run_at: time) -> datetime:
    """Today's run_at if it is still ahead of `now`, else tomorrow's."""
    target = datetime.combine(now.date(), run_at)
    if now >= target:
        target += timedelta(days=1)
    return target


class EtlScheduler:
    """
    Long-lived loop: sleep until the next run_at, run the job, retry on failure.

    Only one job runs at a time. After `max_attempts` consecutive failures a
    single critical alert goes out and the loop goes back to waiting for the
    next day. Both sleeps return early when stop() is called.
    """

    def __init__(
        self,
        job: Callable[[], object],
        alerts: AlertService,
        run_at: time = time(2, 0),
        max_attempts: int = 3,
        retry_delay: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = datetime.now,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.job = job
        self.alerts = alerts
        self.run_at = run_at
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.clock = clock
        self.state = SchedulerState.WAITING
        self.next_run: Optional[datetime] = None
        self._stop = asyncio.Event()
        self._attempt = 0

    def stop(self) -> None:
        self._stop.set()

    async def run_forever(self) -> None:
        log.info("ETL scheduler started (daily at %s)", self.run_at.strftime("%H:%M"))
        while not self._stop.is_set():
            self.state = SchedulerState.WAITING
            self.next_run = next_run_after(self.clock(), self.run_at)
            log.info("ETL scheduler waiting until %s", self.next_run)
            if not await self._sleep((self.next_run - self.clock()).total_seconds()):
                break
            await self.run_once()
        self.state = SchedulerState.STOPPED
        log.info("ETL scheduler stopped")

    async def run_once(self) -> bool:
        """Run the job with retries. True on success."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_delay.total_seconds()),
            sleep=self._retry_sleep,
            before=self._before_attempt,
            before_sleep=self._before_retry,
            reraise=True,
        )
        try:
            await retrying(asyncio.to_thread, self.job)
        except _Stopped:
            log.info("ETL retries abandoned, scheduler is stopping")
            return False
        except Exception as e:
            log.error("ETL run failed, attempt %d of %d: %s", self._attempt, self.max_attempts, e)
            log.error("ETL run exhausted %d attempts", self.max_attempts)
            await asyncio.to_thread(
                self.alerts.send_critical,
                "CRITICAL: ETL run failed after all retries",
                f"The ETL run failed {self.max_attempts} consecutive times. Last error: {e}",
            )
            self.state = SchedulerState.WAITING
            return False

        log.info("ETL run succeeded on attempt %d", self._attempt)
        self.state = SchedulerState.WAITING
        return True

    def _before_attempt(self, retry_state: RetryCallState) -> None:
        self._attempt = retry_state.attempt_number
        self.state = SchedulerState.RUNNING
        log.info("starting ETL run, attempt %d of %d", self._attempt, self.max_attempts)

    def _before_retry(self, retry_state: RetryCallState) -> None:
        self.state = SchedulerState.RETRYING
        log.error(
            "ETL run failed, attempt %d of %d: %s",
            retry_state.attempt_number, self.max_attempts, retry_state.outcome.exception(),
        )
        log.info("retrying ETL run in %s", self.retry_delay)

    async def _retry_sleep(self, seconds: float) -> None:
        if not await self._sleep(seconds):
            raise _Stopped()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped. False when stop() interrupted the wait."""
        if self._stop.is_set():
            return False
        if seconds <= 0:
            return True
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False
