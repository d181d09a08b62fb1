from __future__ import annotations

import asyncio

import pytest

from auto_containers.m4.memory import InMemoryBrowser
from auto_containers.m5.timers import DeletionTimers


@pytest.mark.asyncio
async def test_fires_and_deletes_empty_container() -> None:
    browser = InMemoryBrowser()
    c = await browser.create_container("tmp_1", "blue", "circle")
    timers = DeletionTimers(browser, quiet_seconds=0.01)

    task = timers.arm(c.id)
    assert c.id in timers
    await task

    assert c.id not in browser.containers
    assert c.id not in timers
    assert len(timers) == 0


@pytest.mark.asyncio
async def test_keeps_container_that_gained_a_tab() -> None:
    browser = InMemoryBrowser()
    c = await browser.create_container("tmp_1", "blue", "circle")
    timers = DeletionTimers(browser, quiet_seconds=0.01)

    task = timers.arm(c.id)
    browser.open_tab("https://a.com/", container_id=c.id)
    await task

    assert c.id in browser.containers
    assert timers.armed == []


@pytest.mark.asyncio
async def test_cancel_prevents_deletion() -> None:
    browser = InMemoryBrowser()
    c = await browser.create_container("tmp_1", "blue", "circle")
    timers = DeletionTimers(browser, quiet_seconds=0.01)

    task = timers.arm(c.id)
    assert timers.cancel(c.id) is True
    assert timers.cancel(c.id) is False
    await asyncio.sleep(0.05)

    assert task.cancelled()
    assert c.id in browser.containers


@pytest.mark.asyncio
async def test_rearm_replaces_previous_timer() -> None:
    browser = InMemoryBrowser()
    c = await browser.create_container("tmp_1", "blue", "circle")
    timers = DeletionTimers(browser, quiet_seconds=0.01)

    first = timers.arm(c.id)
    second = timers.arm(c.id)
    assert len(timers) == 1

    await second
    assert first.cancelled()
    assert c.id not in browser.containers
    assert len(timers) == 0


@pytest.mark.asyncio
async def test_container_already_gone_is_harmless() -> None:
    browser = InMemoryBrowser()
    c = await browser.create_container("tmp_1", "blue", "circle")
    timers = DeletionTimers(browser, quiet_seconds=0.01)

    task = timers.arm(c.id)
    await browser.remove_container(c.id)
    await task

    assert task.exception() is None
    assert len(timers) == 0


@pytest.mark.asyncio
async def test_close_cancels_everything() -> None:
    browser = InMemoryBrowser()
    a = await browser.create_container("tmp_1", "blue", "circle")
    b = await browser.create_container("tmp_2", "blue", "circle")
    timers = DeletionTimers(browser, quiet_seconds=60)
    timers.arm(a.id)
    timers.arm(b.id)

    await timers.close()
    assert len(timers) == 0
    assert set(browser.containers) == {a.id, b.id}
