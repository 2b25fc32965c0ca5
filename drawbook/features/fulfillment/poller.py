"""
Polls an ebook order until its download link appears.

Ebook generation runs outside the request that paid for it, so the success
page re-reads the order status on a fixed interval. The poller is one asyncio
task: it stops on the first status carrying a download URL (FOUND), gives up
after `max_polls` reads (TIMED_OUT), and can be resumed with `retry()`.
A failed read counts as an attempt and is otherwise ignored.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from drawbook.core.config import settings
from drawbook.models.order import OrderStatusView, OrderType

logger = logging.getLogger("drawbook")

StatusFetcher = Callable[[], Awaitable[Optional[OrderStatusView]]]
Sleeper = Callable[[float], Awaitable[None]]


class PollState(str, Enum):
    IDLE = "IDLE"
    POLLING = "POLLING"
    FOUND = "FOUND"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"


class FulfillmentPoller:
    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        sleep: Sleeper = asyncio.sleep,
        on_change: Optional[Callable[["FulfillmentPoller"], None]] = None,
    ):
        self.fetch_status = fetch_status
        self.interval = interval if interval is not None else settings.FULFILLMENT_POLL_INTERVAL_SECONDS
        self.max_polls = max_polls if max_polls is not None else settings.FULFILLMENT_MAX_POLLS
        self._sleep = sleep
        self._on_change = on_change
        self.state = PollState.IDLE
        self.poll_count = 0
        self.last_status: Optional[OrderStatusView] = None
        self.download_url: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def progress(self) -> float:
        """Fraction of the attempt budget spent, for the 'still working' indicator."""
        return min(self.poll_count / self.max_polls, 1.0) if self.max_polls else 1.0

    def _set_state(self, state: PollState) -> None:
        self.state = state
        if self._on_change:
            self._on_change(self)

    def start(self, order_type: OrderType, download_url: Optional[str] = None) -> Optional[asyncio.Task]:
        """
        Begin polling for an order. Printed books and ebooks that already have
        a link need no polling; returns None for them.
        """
        if order_type is not OrderType.EBOOK:
            return None
        if download_url:
            self.download_url = download_url
            self._set_state(PollState.FOUND)
            return None
        return self._launch()

    def retry(self) -> Optional[asyncio.Task]:
        """Resume after TIMED_OUT with a fresh attempt budget."""
        if self.state is not PollState.TIMED_OUT:
            return None
        self.poll_count = 0
        return self._launch()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self.state in (PollState.IDLE, PollState.POLLING):
            self._set_state(PollState.CANCELLED)

    async def wait(self) -> PollState:
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if self.state is not PollState.CANCELLED:
                    raise
        return self.state

    def _launch(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._set_state(PollState.POLLING)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def _run(self) -> None:
        while self.poll_count < self.max_polls:
            await self._sleep(self.interval)
            self.poll_count += 1
            try:
                status = await self.fetch_status()
            except Exception as e:
                # Counted as an attempt; the next tick reads again
                logger.debug("fulfillment.poll_failed", extra={"error_code": type(e).__name__})
                status = None
            if self._on_change:
                self._on_change(self)
            if status is not None:
                self.last_status = status
                if status.download_url:
                    self.download_url = status.download_url
                    self._set_state(PollState.FOUND)
                    return
        self._set_state(PollState.TIMED_OUT)
