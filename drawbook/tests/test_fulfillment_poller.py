"""
Ebook fulfillment poller: bounded attempts, retry, and cancellation.
"""
import asyncio

import pytest

from drawbook.features.fulfillment.poller import FulfillmentPoller, PollState
from drawbook.models.order import OrderStatus, OrderStatusView, OrderType

PENDING = OrderStatusView(status=OrderStatus.PAYMENT_RECEIVED)
READY = OrderStatusView(
    status=OrderStatus.COMPLETED,
    download_url="https://storage.test/sign/ebooks/o1.pdf?token=x",
    download_path="o1.pdf",
)


async def no_sleep(_seconds):
    await asyncio.sleep(0)


class FakeStatus:
    def __init__(self, responses=None, ready_after=None):
        self.calls = 0
        self.responses = responses
        self.ready_after = ready_after

    async def __call__(self):
        self.calls += 1
        if self.responses is not None:
            result = self.responses[min(self.calls, len(self.responses)) - 1]
            if isinstance(result, Exception):
                raise result
            return result
        if self.ready_after is not None and self.calls >= self.ready_after:
            return READY
        return PENDING


@pytest.mark.asyncio
async def test_stops_after_forty_polls_without_link():
    fetch = FakeStatus()
    poller = FulfillmentPoller(fetch, sleep=no_sleep)

    poller.start(OrderType.EBOOK)
    state = await poller.wait()

    assert state == PollState.TIMED_OUT
    assert fetch.calls == 40
    assert poller.poll_count == 40
    assert poller.progress == 1.0


@pytest.mark.asyncio
async def test_found_stops_polling_immediately():
    fetch = FakeStatus(ready_after=3)
    poller = FulfillmentPoller(fetch, sleep=no_sleep)

    poller.start(OrderType.EBOOK)
    state = await poller.wait()

    assert state == PollState.FOUND
    assert fetch.calls == 3
    assert poller.download_url == READY.download_url


@pytest.mark.asyncio
async def test_retry_resets_attempts_and_resumes():
    fetch = FakeStatus()
    poller = FulfillmentPoller(fetch, max_polls=5, sleep=no_sleep)
    poller.start(OrderType.EBOOK)
    assert await poller.wait() == PollState.TIMED_OUT

    fetch.ready_after = 7
    poller.retry()
    assert poller.state == PollState.POLLING
    state = await poller.wait()

    assert state == PollState.FOUND
    assert poller.poll_count == 2
    assert fetch.calls == 7


@pytest.mark.asyncio
async def test_fetch_errors_count_as_attempts():
    fetch = FakeStatus(responses=[RuntimeError("network"), RuntimeError("network"), READY])
    poller = FulfillmentPoller(fetch, sleep=no_sleep)

    poller.start(OrderType.EBOOK)
    state = await poller.wait()

    assert state == PollState.FOUND
    assert poller.poll_count == 3


@pytest.mark.asyncio
async def test_cancel_stops_the_task():
    gate = asyncio.Event()

    async def blocked_sleep(_seconds):
        await gate.wait()

    fetch = FakeStatus()
    poller = FulfillmentPoller(fetch, sleep=blocked_sleep)
    task = poller.start(OrderType.EBOOK)
    await asyncio.sleep(0)

    poller.cancel()
    state = await poller.wait()

    assert state == PollState.CANCELLED
    assert task.cancelled()
    assert fetch.calls == 0


@pytest.mark.asyncio
async def test_no_polling_for_printed_books_or_known_links():
    fetch = FakeStatus()

    printed = FulfillmentPoller(fetch, sleep=no_sleep)
    assert printed.start(OrderType.SOFTCOVER) is None
    assert printed.state == PollState.IDLE

    ready = FulfillmentPoller(fetch, sleep=no_sleep)
    assert ready.start(OrderType.EBOOK, download_url="https://x/ebook.pdf") is None
    assert ready.state == PollState.FOUND
    assert fetch.calls == 0


@pytest.mark.asyncio
async def test_on_change_sees_each_transition():
    seen = []
    poller = FulfillmentPoller(
        FakeStatus(ready_after=2),
        sleep=no_sleep,
        on_change=lambda p: seen.append((p.state, p.poll_count)),
    )

    poller.start(OrderType.EBOOK)
    await poller.wait()

    assert seen[0] == (PollState.POLLING, 0)
    assert seen[-1] == (PollState.FOUND, 2)
