"""Background task that periodically sweeps stale transfers."""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from common.constants import CLEANUP_INTERVAL_SECONDS, FILE_TIMEOUT_SECONDS
from relay.claim_service import ClaimService, SweepResult

logger = logging.getLogger(__name__)


class StaleTransferCleaner:
    """
    Background task that runs ClaimService.sweep_stale on a fixed interval.
    """

    def __init__(
        self,
        claim_service: ClaimService,
        interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        unclaimed_timeout: timedelta = timedelta(seconds=FILE_TIMEOUT_SECONDS),
        claimed_timeout: Optional[timedelta] = None,
    ):
        """
        Initialize cleaner task.

        Args:
            claim_service: Claim service whose sweep is invoked
            interval_seconds: Time between sweeps (default 15 minutes)
            unclaimed_timeout: Age after which unclaimed items are removed
            claimed_timeout: Time since claim after which items are removed
                             (default: same as unclaimed_timeout)
        """
        self.claim_service = claim_service
        self.interval_seconds = interval_seconds
        self.unclaimed_timeout = unclaimed_timeout
        self.claimed_timeout = claimed_timeout if claimed_timeout is not None else unclaimed_timeout
        self.sweeps_completed = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background cleanup task."""
        if self.running:
            logger.warning("Cleanup task already running")
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started stale transfer cleanup task (interval: {self.interval_seconds}s)")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the background cleanup task.

        A sweep in progress is allowed to finish. If timeout is given and the
        sweep is still running after that many seconds, the task is cancelled.

        Args:
            timeout: Optional grace period in seconds
        """
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            logger.warning("Cleanup sweep did not finish in time, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None

        logger.info("Stopped stale transfer cleanup task")

    async def run_once(self) -> SweepResult:
        """Execute one sweep with the configured timeouts."""
        return await self.claim_service.sweep_stale(
            unclaimed_timeout=self.unclaimed_timeout,
            claimed_timeout=self.claimed_timeout,
        )

    async def _run(self) -> None:
        """Main loop: sweep, then wait for the interval or a stop request."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
                self.sweeps_completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in cleanup task: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), self.interval_seconds)
            except asyncio.TimeoutError:
                continue
