import asyncio

import pytest

from utils.tick_source import TickSource


@pytest.mark.asyncio
async def test_ticks_until_stopped():
    calls = []
    source = TickSource(0.01, lambda: calls.append(1), name="test")

    assert source.start() is True
    await asyncio.sleep(0.1)
    await source.aclose()

    count = len(calls)
    assert count >= 3
    await asyncio.sleep(0.05)
    assert len(calls) == count
    assert not source.is_running


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent():
    source = TickSource(10, lambda: None)

    assert source.stop() is False
    assert source.start() is True
    assert source.start() is False
    assert source.stop() is True
    assert source.stop() is False


@pytest.mark.asyncio
async def test_failing_callback_keeps_ticking(caplog):
    calls = []

    def callback():
        calls.append(1)
        raise RuntimeError("boom")

    source = TickSource(0.01, callback)
    with caplog.at_level("ERROR"):
        source.start()
        await asyncio.sleep(0.08)
        await source.aclose()

    assert len(calls) >= 2
    assert "Tick callback failed" in caplog.text


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        TickSource(0, lambda: None)


@pytest.mark.asyncio
async def test_aclose_awaits_task_already_stopped():
    source = TickSource(10, lambda: None)
    source.start()
    await asyncio.sleep(0)
    task = source._task

    source.stop()
    assert not task.done()
    await source.aclose()
    assert task.done()
