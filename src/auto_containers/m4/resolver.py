from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from auto_containers.m1.store import DEFAULT_STYLE, SettingsStore
from auto_containers.m2.matcher import get_domain
from auto_containers.m2.rules import Rule, first_match, parse_rules
from auto_containers.m4.platform import Browser, ResourceGone

logger = logging.getLogger(__name__)


class ContainerResolver:
    """Maps a URL to the container its first matching rule names."""

    def __init__(self, browser: Browser, store: SettingsStore) -> None:
        self.browser = browser
        self.store = store
        # one lookup-or-create at a time per container name
        self._name_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def match(self, url: str) -> Rule | None:
        rules = parse_rules(self.store.get_rules())
        if not rules:
            logger.debug("no rules configured")
            return None
        if not get_domain(url):
            logger.debug("no usable domain for %r", url)
            return None
        return first_match(rules, url)

    async def resolve(self, url: str) -> str | None:
        """Container id for `url`, creating the named container on first use.

        None means no rule applies and the caller should use an ephemeral container.
        """
        rule = self.match(url)
        if rule is None:
            return None

        name = rule.container_name
        try:
            async with self._name_locks[name]:
                existing = await self.browser.query_containers(name=name)
                if existing:
                    logger.debug("rule %r -> existing container %s", rule.pattern, existing[0].id)
                    return existing[0].id

                style = self.store.get_container_style(name) or DEFAULT_STYLE
                container = await self.browser.create_container(name, style.color, style.icon)
        except ResourceGone:
            logger.debug("container lookup for %r failed, treating as unmatched", name)
            return None

        logger.info("created container %s (%s) for pattern %r", name, container.id, rule.pattern)
        return container.id
