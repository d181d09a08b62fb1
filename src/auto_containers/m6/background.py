from __future__ import annotations

import logging
import random
from typing import Any

from auto_containers.m1.config import Settings
from auto_containers.m1.store import SettingsStore
from auto_containers.m4.memory import InMemoryBrowser
from auto_containers.m4.platform import Browser, TabEvent
from auto_containers.m4.resolver import ContainerResolver
from auto_containers.m5.ephemeral import EphemeralContainers
from auto_containers.m5.timers import DeletionTimers
from auto_containers.m6.machine import TabMachine
from auto_containers.m6.messages import MessageHandler
from auto_containers.m6.registry import TabRegistry

logger = logging.getLogger(__name__)


class Background:
    """Wires the resolver, lifecycle and tab machine to one browser and store."""

    def __init__(
        self,
        browser: Browser,
        store: SettingsStore,
        settings: Settings | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        settings = settings or Settings()
        self.browser = browser
        self.store = store
        self.settings = settings

        self.timers = DeletionTimers(browser, quiet_seconds=settings.quiet_seconds)
        self.ephemeral = EphemeralContainers(browser, store, self.timers, rng=rng)
        self.registry = TabRegistry(max_processing=settings.max_processing_per_tab)
        self.resolver = ContainerResolver(browser, store)
        self.machine = TabMachine(browser, self.registry, self.resolver, self.ephemeral, self.timers)
        self.messages = MessageHandler(
            store,
            self.machine,
            self.ephemeral,
            multi_part_tlds=settings.multi_part_tlds,
        )

    async def start(self) -> tuple[int, int]:
        deleted, armed = await self.ephemeral.reap()
        logger.info("startup: deleted %d empty container(s), armed %d timer(s)", deleted, armed)
        return deleted, armed

    async def handle(self, event: TabEvent) -> None:
        await self.machine.handle(event)

    async def on_message(self, message: Any) -> dict[str, Any]:
        return await self.messages.handle(message)

    async def close(self) -> None:
        await self.timers.close()


async def pump(background: Background, browser: InMemoryBrowser) -> int:
    """Deliver every queued event (including those handlers enqueue). Returns the count."""
    n = 0
    while (event := browser.next_event()) is not None:
        await background.handle(event)
        n += 1
    return n
