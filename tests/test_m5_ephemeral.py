from __future__ import annotations

import asyncio
import random
from pathlib import Path

import pytest

from auto_containers.m1 import db as db_mod
from auto_containers.m1.store import COLORS, ICONS, ContainerStyle, SettingsStore, TempContainerStyle
from auto_containers.m4.memory import InMemoryBrowser
from auto_containers.m4.platform import Container
from auto_containers.m5.ephemeral import ContainerExistsError, EphemeralContainers
from auto_containers.m5.timers import DeletionTimers


def _lifecycle(tmp_path: Path, *, quiet: float = 60) -> tuple[EphemeralContainers, InMemoryBrowser]:
    store = SettingsStore(db_mod.connect(tmp_path / "x.sqlite3"))
    browser = InMemoryBrowser()
    timers = DeletionTimers(browser, quiet_seconds=quiet)
    return EphemeralContainers(browser, store, timers, rng=random.Random(7)), browser


@pytest.mark.asyncio
async def test_numbering_fills_lowest_gap(tmp_path: Path) -> None:
    eph, browser = _lifecycle(tmp_path)
    assert await eph.next_index() == 1

    await browser.create_container("tmp_1", "blue", "circle")
    await browser.create_container("tmp_3", "blue", "circle")
    await browser.create_container("Work", "blue", "circle")

    created = await eph.create()
    assert created.name == "tmp_2"
    assert (await eph.create()).name == "tmp_4"
    await eph.timers.close()


@pytest.mark.asyncio
async def test_create_arms_timer_and_uses_fixed_style(tmp_path: Path) -> None:
    eph, _ = _lifecycle(tmp_path)
    eph.store.set_temp_style(TempContainerStyle(color="red", icon="pet"))

    c = await eph.create()
    assert (c.color, c.icon) == ("red", "pet")
    assert c.id in eph.timers
    await eph.timers.close()


@pytest.mark.asyncio
async def test_create_randomized_style(tmp_path: Path) -> None:
    eph, _ = _lifecycle(tmp_path)
    eph.store.set_temp_style(
        TempContainerStyle(color=None, icon=None, random_color=True, random_icon=True)
    )
    for _ in range(5):
        c = await eph.create()
        assert c.color in COLORS
        assert c.icon in ICONS
    await eph.timers.close()


@pytest.mark.asyncio
async def test_is_ephemeral(tmp_path: Path) -> None:
    eph, browser = _lifecycle(tmp_path)
    tmp = await browser.create_container("tmp_9", "blue", "circle")
    work = await browser.create_container("Work", "blue", "circle")
    assert await eph.is_ephemeral(tmp.id)
    assert not await eph.is_ephemeral(work.id)
    assert not await eph.is_ephemeral("firefox-default")
    assert not await eph.is_ephemeral("firefox-container-404")
    assert not await eph.is_ephemeral(None)


@pytest.mark.asyncio
async def test_startup_reap(tmp_path: Path) -> None:
    eph, browser = _lifecycle(tmp_path)
    empty = await browser.create_container("tmp_1", "blue", "circle")
    busy = await browser.create_container("tmp_2", "blue", "circle")
    work = await browser.create_container("Work", "blue", "circle")
    browser.open_tab("https://a.com/", container_id=busy.id)

    assert await eph.reap() == (1, 1)
    assert empty.id not in browser.containers
    assert busy.id in browser.containers
    assert work.id in browser.containers
    assert eph.timers.armed == [busy.id]
    await eph.timers.close()


@pytest.mark.asyncio
async def test_convert_to_permanent(tmp_path: Path) -> None:
    eph, browser = _lifecycle(tmp_path)
    c = await eph.create()
    style = ContainerStyle(color="orange", icon="gift")

    converted = await eph.convert(c.id, "Shopping", style)
    assert converted.name == "Shopping"
    assert (converted.color, converted.icon) == ("orange", "gift")
    assert c.id not in eph.timers
    assert eph.store.get_container_style("Shopping") == style


@pytest.mark.asyncio
async def test_convert_refusals(tmp_path: Path) -> None:
    eph, browser = _lifecycle(tmp_path)
    work = await browser.create_container("Work", "blue", "circle")
    c = await eph.create()

    with pytest.raises(ValueError, match="not an ephemeral"):
        await eph.convert(work.id, "Other", ContainerStyle())
    with pytest.raises(ContainerExistsError):
        await eph.convert(c.id, "Work", ContainerStyle())
    assert browser.containers[c.id].name == "tmp_1"
    await eph.timers.close()


class YieldingBrowser(InMemoryBrowser):
    async def query_containers(self, name: str | None = None) -> list[Container]:
        await asyncio.sleep(0)
        return await super().query_containers(name)

    async def create_container(self, name: str, color: str, icon: str) -> Container:
        await asyncio.sleep(0)
        return await super().create_container(name, color, icon)


@pytest.mark.asyncio
async def test_concurrent_creates_get_distinct_names(tmp_path: Path) -> None:
    store = SettingsStore(db_mod.connect(tmp_path / "x.sqlite3"))
    browser = YieldingBrowser()
    eph = EphemeralContainers(browser, store, DeletionTimers(browser, quiet_seconds=60))

    first, second = await asyncio.gather(eph.create(), eph.create())
    assert {first.name, second.name} == {"tmp_1", "tmp_2"}
    assert len(browser.containers) == 2
    await eph.timers.close()
