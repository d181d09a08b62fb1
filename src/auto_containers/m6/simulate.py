"""Replay a JSON-lines script of user actions against the in-memory browser.

One object per line, e.g.:

    {"op": "open", "url": "https://example.com"}
    {"op": "open", "url": "https://example.com/a", "opener": 0}
    {"op": "open", "container": "Work"}
    {"op": "navigate", "tab": 0, "url": "https://other.org"}
    {"op": "exclude", "tab": 1}
    {"op": "include", "tab": 1}
    {"op": "close", "tab": 0}
    {"op": "sleep", "seconds": 1.5}

Tabs are addressed by their current position in the window. Blank lines and
lines starting with `#` are skipped. Events are pumped after every step.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from auto_containers.m1.store import DEFAULT_STYLE
from auto_containers.m4.memory import InMemoryBrowser
from auto_containers.m4.platform import DEFAULT_CONTAINER, Tab
from auto_containers.m6.background import Background, pump

OPS = frozenset({"open", "navigate", "close", "exclude", "include", "sleep"})


@dataclass(frozen=True)
class TabRow:
    index: int
    tab_id: int
    container: str
    url: str
    excluded: bool


def parse_script(text: str) -> list[dict[str, Any]]:
    steps: list[dict[str, Any]] = []
    for n, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            step = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(f"line {n}: invalid json ({e.msg})") from e
        if not isinstance(step, dict) or step.get("op") not in OPS:
            raise ValueError(f"line {n}: expected an object with op in {sorted(OPS)}")
        steps.append(step)
    return steps


def load_script(path: Path) -> list[dict[str, Any]]:
    return parse_script(path.read_text(encoding="utf-8"))


def _tab_at(browser: InMemoryBrowser, position: Any) -> Tab:
    tabs = browser.window_tabs()
    if isinstance(position, bool) or not isinstance(position, int) or not 0 <= position < len(tabs):
        raise ValueError(f"no tab at position {position!r} (window has {len(tabs)})")
    return tabs[position]


async def _container_named(browser: InMemoryBrowser, name: str | None) -> str:
    if not name:
        return DEFAULT_CONTAINER
    existing = await browser.query_containers(name=name)
    if existing:
        return existing[0].id
    created = await browser.create_container(name, DEFAULT_STYLE.color, DEFAULT_STYLE.icon)
    return created.id


async def run_step(background: Background, browser: InMemoryBrowser, step: dict[str, Any]) -> None:
    op = step["op"]
    if op == "open":
        opener = step.get("opener")
        browser.open_tab(
            step.get("url", "about:newtab"),
            container_id=await _container_named(browser, step.get("container")),
            opener_id=_tab_at(browser, opener).id if opener is not None else None,
            title=step.get("title", ""),
        )
    elif op == "navigate":
        browser.navigate(_tab_at(browser, step.get("tab")).id, step["url"])
    elif op == "close":
        browser.close_tab(_tab_at(browser, step.get("tab")).id)
    elif op == "exclude":
        await background.machine.exclude_tab(_tab_at(browser, step.get("tab")).id)
    elif op == "include":
        await background.machine.include_tab(_tab_at(browser, step.get("tab")).id)
    elif op == "sleep":
        await asyncio.sleep(float(step.get("seconds", 0)))
    await pump(background, browser)


async def run_script(
    background: Background,
    browser: InMemoryBrowser,
    steps: list[dict[str, Any]],
) -> list[TabRow]:
    await background.start()
    try:
        for step in steps:
            await run_step(background, browser, step)
        return await snapshot(background, browser)
    finally:
        await background.close()


async def snapshot(background: Background, browser: InMemoryBrowser) -> list[TabRow]:
    rows: list[TabRow] = []
    for tab in browser.window_tabs():
        if tab.container_id == DEFAULT_CONTAINER:
            name = "default"
        else:
            name = (await browser.get_container(tab.container_id)).name
        rows.append(
            TabRow(
                index=tab.index,
                tab_id=tab.id,
                container=name,
                url=tab.url,
                excluded=background.registry.is_excluded(tab.id),
            )
        )
    return rows
