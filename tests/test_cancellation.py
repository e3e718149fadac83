import asyncio
import time

import pytest

from quickrank.core.cancellation import CancellationToken
from quickrank.core.exceptions import PipelineCancelled


@pytest.mark.asyncio
async def test_cancel_flips_once():
    token = CancellationToken()

    assert token.cancel() is True
    assert token.cancel() is False
    assert token.cancelled is True


@pytest.mark.asyncio
async def test_run_returns_result():
    token = CancellationToken()

    async def work():
        return 42

    assert await token.run(work()) == 42


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_call():
    token = CancellationToken()
    started = asyncio.Event()

    async def slow():
        started.set()
        await asyncio.sleep(10)

    task = asyncio.ensure_future(token.run(slow()))
    await started.wait()

    token.cancel()
    with pytest.raises(PipelineCancelled):
        await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_run_on_cancelled_token_does_not_start_work():
    token = CancellationToken()
    token.cancel()
    calls = []

    async def work():
        calls.append(True)

    with pytest.raises(PipelineCancelled):
        await token.run(work())
    assert calls == []


@pytest.mark.asyncio
async def test_external_cancellation_propagates_unchanged():
    token = CancellationToken()

    async def slow():
        await asyncio.sleep(10)

    task = asyncio.ensure_future(token.run(slow()))
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert token.cancelled is False


@pytest.mark.asyncio
async def test_sleep_wakes_up_on_cancel():
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    loop.call_later(0.05, token.cancel)

    started = time.monotonic()
    assert await token.sleep(5) is True
    assert time.monotonic() - started < 1


@pytest.mark.asyncio
async def test_sleep_times_out_when_not_cancelled():
    token = CancellationToken()
    assert await token.sleep(0.01) is False


def test_raise_if_cancelled():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(PipelineCancelled):
        token.raise_if_cancelled()
