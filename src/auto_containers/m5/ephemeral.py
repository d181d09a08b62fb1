from __future__ import annotations

import asyncio
import logging
import random

from auto_containers.m1.store import COLORS, ICONS, ContainerStyle, SettingsStore
from auto_containers.m2.rules import EPHEMERAL_NAME_RE, is_ephemeral_name
from auto_containers.m4.platform import Browser, Container, ResourceGone
from auto_containers.m5.timers import DeletionTimers

logger = logging.getLogger(__name__)


class ContainerExistsError(ValueError):
    pass


class EphemeralContainers:
    """Lifecycle of auto-created `tmp_<n>` containers."""

    def __init__(
        self,
        browser: Browser,
        store: SettingsStore,
        timers: DeletionTimers,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.browser = browser
        self.store = store
        self.timers = timers
        self.rng = rng or random.Random()
        # numbering and creation must not interleave
        self._create_lock = asyncio.Lock()

    async def list(self) -> list[Container]:
        return [c for c in await self.browser.query_containers() if is_ephemeral_name(c.name)]

    async def is_ephemeral(self, container_id: str | None) -> bool:
        if not container_id:
            return False
        try:
            container = await self.browser.get_container(container_id)
        except ResourceGone:
            return False
        return is_ephemeral_name(container.name)

    async def next_index(self) -> int:
        used: set[int] = set()
        for c in await self.list():
            m = EPHEMERAL_NAME_RE.match(c.name)
            if m:
                used.add(int(m.group(1)))
        n = 1
        while n in used:
            n += 1
        return n

    async def create(self) -> Container:
        style = self.store.get_temp_style()
        color = self.rng.choice(COLORS) if style.random_color else (style.color or "blue")
        icon = self.rng.choice(ICONS) if style.random_icon else (style.icon or "circle")

        async with self._create_lock:
            name = f"tmp_{await self.next_index()}"
            container = await self.browser.create_container(name, color, icon)
        logger.info("created ephemeral container %s (%s, %s/%s)", name, container.id, color, icon)
        self.timers.arm(container.id)
        return container

    async def reap(self) -> tuple[int, int]:
        """Startup sweep: delete empty ephemeral containers, re-arm the rest.

        Returns (deleted, armed).
        """
        deleted = armed = 0
        for container in await self.list():
            try:
                tabs = await self.browser.query_tabs(container_id=container.id)
                if tabs:
                    self.timers.arm(container.id)
                    armed += 1
                    continue
                await self.browser.remove_container(container.id)
            except ResourceGone:
                continue
            deleted += 1
            logger.info("deleted empty container on startup: %s", container.name)
        return deleted, armed

    async def convert(self, container_id: str, name: str, style: ContainerStyle) -> Container:
        """Promote an ephemeral container to a permanent one called `name`."""
        container = await self.browser.get_container(container_id)
        if not is_ephemeral_name(container.name):
            raise ValueError(f"{container.name!r} is not an ephemeral container")

        clashes = [
            c for c in await self.browser.query_containers(name=name) if not is_ephemeral_name(c.name)
        ]
        if clashes:
            raise ContainerExistsError(f"a permanent container named {name!r} already exists")

        self.timers.cancel(container_id)
        updated = await self.browser.update_container(
            container_id, name=name, color=style.color, icon=style.icon
        )
        self.store.set_container_style(name, style)
        logger.info("converted %s to permanent container %s", container.name, name)
        return updated
