"""Periodic market refresh owned by whoever needs live market data."""

import asyncio
import logging
from typing import Callable, Optional

from equity_insight.errors import AnalysisError, ErrorDescriptor
from equity_insight.models import MarketBrief
from equity_insight.research import ResearchService


logger = logging.getLogger(__name__)


class MarketRefresher:
    """
    Cancellable background task that keeps the market brief current.

    start() loads once (cache allowed), then refreshes every interval seconds
    with force_refresh=True through the same orchestrator as a manual
    refresh. stop() cancels the task. A failed tick is logged and kept in
    last_error; the loop keeps going.

    Representation Invariants:
    - at most one refresh task runs per instance
    - interval > 0
    """

    def __init__(
        self,
        service: ResearchService,
        interval: float = 60.0,
        on_update: Optional[Callable[[MarketBrief], None]] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("Refresh interval must be positive")
        self._service = service
        self._interval = interval
        self._on_update = on_update
        self._task: Optional[asyncio.Task] = None
        self.latest: Optional[MarketBrief] = None
        self.last_error: Optional[ErrorDescriptor] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start refreshing; calling start() on a running refresher does nothing."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def refresh(self, force_refresh: bool = True) -> Optional[MarketBrief]:
        """Run one refresh; failures are recorded, not raised."""
        try:
            brief = await self._service.get_market_overview(force_refresh=force_refresh)
        except AnalysisError as e:
            logger.warning("Market refresh failed: %s", e.descriptor.title)
            self.last_error = e.descriptor
            return None

        self.latest = brief
        self.last_error = None
        if self._on_update is not None:
            try:
                self._on_update(brief)
            except Exception as e:
                logger.warning("Market update callback failed: %s", e)
        return brief

    async def _run(self) -> None:
        await self.refresh(force_refresh=False)
        while True:
            await asyncio.sleep(self._interval)
            await self.refresh(force_refresh=True)
