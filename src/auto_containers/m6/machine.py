"""Tab event state machine.

Each tab is in one phase (see `Phase`); the pair (phase, event type) selects
a handler from `_TABLE`. Excluded tabs use `_EXCLUDED_TABLE` instead and never
have their container changed. Pairs without an entry are ignored.

All container switches go through `_replace`, which is only ever called with
the source tab's processing lock held.
"""

from __future__ import annotations

import logging
from enum import Enum
from urllib.parse import urlsplit

from auto_containers.m2.matcher import get_domain, is_blank
from auto_containers.m2.rules import is_ephemeral_name
from auto_containers.m4.platform import (
    DEFAULT_CONTAINER,
    STATUS_COMPLETE,
    STATUS_LOADING,
    BeforeNavigate,
    Browser,
    ResourceGone,
    Tab,
    TabCreated,
    TabEvent,
    TabRemoved,
    TabUpdated,
)
from auto_containers.m4.resolver import ContainerResolver
from auto_containers.m5.ephemeral import EphemeralContainers
from auto_containers.m5.timers import DeletionTimers
from auto_containers.m6.registry import Phase, TabBusyError, TabRegistry, TabState

logger = logging.getLogger(__name__)

EXCLUDED_BADGE = "EX"
EXCLUDED_BADGE_COLOR = "#ff6b35"

NAVIGABLE_SCHEMES = ("http", "https")


class EventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    NAVIGATE = "before-navigate"
    REMOVED = "removed"


def event_type(event: TabEvent) -> EventType:
    if isinstance(event, TabCreated):
        return EventType.CREATED
    if isinstance(event, TabUpdated):
        return EventType.UPDATED
    if isinstance(event, BeforeNavigate):
        return EventType.NAVIGATE
    if isinstance(event, TabRemoved):
        return EventType.REMOVED
    raise TypeError(f"not a tab event: {event!r}")


def event_tab_id(event: TabEvent) -> int:
    if isinstance(event, TabCreated):
        return event.tab.id
    return event.tab_id


_TABLE: dict[tuple[Phase, EventType], str] = {
    (Phase.UNTRACKED, EventType.CREATED): "_on_created",
    (Phase.SETTLED, EventType.CREATED): "_on_created",
    (Phase.PENDING, EventType.UPDATED): "_on_pending_updated",
    (Phase.UNTRACKED, EventType.UPDATED): "_on_updated",
    (Phase.SETTLED, EventType.UPDATED): "_on_updated",
    (Phase.UNTRACKED, EventType.NAVIGATE): "_on_navigate",
    (Phase.SETTLED, EventType.NAVIGATE): "_on_navigate",
    (Phase.PROCESSING, EventType.NAVIGATE): "_on_navigate_busy",
    **{(phase, EventType.REMOVED): "_on_removed" for phase in Phase},
}

_EXCLUDED_TABLE: dict[EventType, str] = {
    EventType.UPDATED: "_on_excluded_updated",
    EventType.NAVIGATE: "_on_excluded_navigate",
    EventType.REMOVED: "_on_removed",
}


def replacement_reason(
    tab_container: str,
    new_domain: str,
    current_domain: str,
    target: str | None,
    current_target: str | None,
) -> str | None:
    """Why a navigating tab must move to another container, or None to stay."""
    in_default = tab_container == DEFAULT_CONTAINER
    if in_default and target:
        return f"default container -> {target}"
    if in_default and new_domain != current_domain:
        return "default container -> ephemeral container for new domain"
    if new_domain != current_domain:
        if target != current_target:
            return f"domain change needs another container: {current_target} -> {target}"
        if target is None:
            return "domain change needs a fresh ephemeral container"
        return None
    if target and tab_container != target:
        return f"same domain but wrong container: {tab_container} -> {target}"
    return None


class TabMachine:
    def __init__(
        self,
        browser: Browser,
        registry: TabRegistry,
        resolver: ContainerResolver,
        ephemeral: EphemeralContainers,
        timers: DeletionTimers,
    ) -> None:
        self.browser = browser
        self.registry = registry
        self.resolver = resolver
        self.ephemeral = ephemeral
        self.timers = timers

    # -- dispatch -----------------------------------------------------------

    def handler_for(self, event: TabEvent) -> str | None:
        tab_id = event_tab_id(event)
        kind = event_type(event)
        if self.registry.is_excluded(tab_id):
            return _EXCLUDED_TABLE.get(kind)
        return _TABLE.get((self.registry.phase(tab_id), kind))

    async def handle(self, event: TabEvent) -> None:
        if isinstance(event, BeforeNavigate):
            if event.frame_id != 0:
                return
            if urlsplit(event.url).scheme not in NAVIGABLE_SCHEMES:
                return

        tab_id = event_tab_id(event)
        if isinstance(event, (TabCreated, TabUpdated)):
            state = self.registry.get(tab_id)
            if state is not None:
                state.container_id = event.tab.container_id

        name = self.handler_for(event)
        if name is None:
            logger.debug(
                "ignoring %s for tab %s (%s)",
                event_type(event).value,
                tab_id,
                self.registry.phase(tab_id).value,
            )
            return

        try:
            await getattr(self, name)(event)
        except ResourceGone as exc:
            logger.debug("tab %s: resource gone while handling %s: %s", tab_id, name, exc)
        except TabBusyError:
            logger.debug("tab %s already being processed, skipping %s", tab_id, name)
        except Exception:  # noqa: BLE001
            logger.exception("handler %s failed for tab %s", name, tab_id)

    # -- created ------------------------------------------------------------

    async def _on_created(self, event: TabCreated) -> None:
        tab = event.tab
        state = self.registry.get(tab.id)
        if state is not None and state.addon_created:
            logger.debug("tab %s was opened by us, skipping", tab.id)
            return

        if not is_blank(tab.url) or tab.opener_id is not None:
            self.registry.ensure(tab.id).pending = True
            return

        # restored tabs start blank but keep their old title
        if tab.title and tab.title != "New Tab":
            logger.debug("blank tab %s looks restored (%r), deferring", tab.id, tab.title)
            self.registry.ensure(tab.id).pending = True
            return

        reason = await self._blank_leak_reason(tab)
        if reason is None:
            logger.debug("blank tab %s is safe in %s, leaving as-is", tab.id, tab.container_id)
            return

        logger.info("blank tab %s needs a fresh container: %s", tab.id, reason)
        with self.registry.processing(tab.id):
            await self._replace(tab, tab.url, None, allow_blank=True)

    async def _blank_leak_reason(self, tab: Tab) -> str | None:
        if tab.container_id == DEFAULT_CONTAINER:
            return None
        try:
            container = await self.browser.get_container(tab.container_id)
        except ResourceGone:
            return None
        if not is_ephemeral_name(container.name):
            return f"inherited permanent container {container.name}"

        others = [
            t
            for t in await self.browser.query_tabs(container_id=tab.container_id)
            if t.id != tab.id and get_domain(t.url)
        ]
        if others:
            return f"{container.name} already hosts {len(others)} tab(s) with domains"
        return None

    # -- updated ------------------------------------------------------------

    def _remember_initial_url(self, state: TabState, event: TabUpdated) -> None:
        if event.change.status == STATUS_LOADING and not is_blank(event.tab.url) and not state.last_url:
            state.last_url = event.tab.url
            logger.debug("initial url for tab %s: %s", state.tab_id, state.last_url)

    def _finish_load(self, state: TabState, event: TabUpdated) -> None:
        if event.change.status == STATUS_COMPLETE and state.addon_created:
            state.addon_created = False
            logger.debug("tab %s finished loading, tracking it again", state.tab_id)

    async def _on_pending_updated(self, event: TabUpdated) -> None:
        state = self.registry.ensure(event.tab_id)
        tab = event.tab
        self._remember_initial_url(state, event)

        if event.change.url and not is_blank(tab.url):
            state.pending = False
            await self.resolve_tab(tab)
            return

        if event.change.status == STATUS_COMPLETE and is_blank(tab.url) and not state.addon_created:
            logger.debug("pending tab %s stayed blank, leaving as-is", tab.id)
            state.pending = False
            return

        self._finish_load(state, event)

    async def _on_updated(self, event: TabUpdated) -> None:
        state = self.registry.ensure(event.tab_id)
        self._remember_initial_url(state, event)
        self._finish_load(state, event)

    async def _on_excluded_updated(self, event: TabUpdated) -> None:
        if event.change.status == STATUS_COMPLETE or event.change.url:
            await self._set_badge(event.tab_id, excluded=True)

    # -- before-navigate ----------------------------------------------------

    async def _on_navigate(self, event: BeforeNavigate) -> None:
        state = self.registry.get(event.tab_id)
        if state is not None and (state.addon_created or state.abandoned):
            logger.debug("tab %s is ours or abandoned, not rerouting", event.tab_id)
            return

        url = event.url
        new_domain = get_domain(url)
        if not new_domain:
            self.registry.ensure(event.tab_id).last_url = url
            return

        tab = await self.browser.get_tab(event.tab_id)
        with self.registry.processing(tab.id) as state:
            current_url = state.last_url or tab.url
            current_domain = get_domain(current_url)
            target = await self.resolver.resolve(url)
            current_target = await self.resolver.resolve(current_url) if current_domain else None

            opener = await self._opener(tab)
            if opener is not None and self._groups_with(opener, new_domain):
                if tab.container_id != opener.container_id:
                    logger.info("tab %s follows its opener into %s", tab.id, opener.container_id)
                    await self._replace(tab, url, opener.container_id)
                else:
                    await self._renew(tab.container_id)
                state.last_url = url
                return

            reason = replacement_reason(tab.container_id, new_domain, current_domain, target, current_target)
            if reason is not None:
                logger.info("moving tab %s (%s -> %s): %s", tab.id, current_domain, new_domain, reason)
                await self._replace(tab, url, target)
            else:
                logger.debug("tab %s stays in %s for %s", tab.id, tab.container_id, new_domain)
                await self._renew(tab.container_id)
            state.last_url = url

    async def _on_navigate_busy(self, event: BeforeNavigate) -> None:
        self.registry.record_url(event.tab_id, event.url)

    async def _on_excluded_navigate(self, event: BeforeNavigate) -> None:
        self.registry.record_url(event.tab_id, event.url)
        await self._set_badge(event.tab_id, excluded=True)

    # -- removed ------------------------------------------------------------

    async def _on_removed(self, event: TabRemoved) -> None:
        state = self.registry.forget(event.tab_id)
        container_id = event.container_id or (state.container_id if state else None)
        if not container_id or container_id == DEFAULT_CONTAINER:
            return
        if not await self.ephemeral.is_ephemeral(container_id):
            return
        if not await self.browser.query_tabs(container_id=container_id):
            logger.debug("last tab of %s closed", container_id)
            self.timers.arm(container_id)

    # -- resolution ---------------------------------------------------------

    async def resolve_tab(self, tab: Tab) -> None:
        """Put a tab whose url just became known into the right container."""
        state = self.registry.ensure(tab.id)
        if state.excluded or state.abandoned:
            logger.debug("tab %s is excluded or abandoned, skipping", tab.id)
            return
        domain = get_domain(tab.url)
        if not domain:
            logger.debug("tab %s has no usable url (%s), skipping", tab.id, tab.url)
            return

        with self.registry.processing(tab.id):
            target = await self.resolver.resolve(tab.url)
            if target is not None:
                if tab.container_id != target:
                    await self._replace(tab, tab.url, target)
                else:
                    logger.debug("tab %s already in %s", tab.id, target)
                return

            opener = await self._opener(tab)
            if opener is not None and self._groups_with(opener, domain):
                if tab.container_id != opener.container_id:
                    await self._replace(tab, tab.url, opener.container_id)
                else:
                    await self._renew(opener.container_id)
                return

            in_ephemeral = await self.ephemeral.is_ephemeral(tab.container_id)
            opener_elsewhere = tab.opener_id is not None and (
                opener is None or get_domain(opener.url) != domain
            )
            if not in_ephemeral or opener_elsewhere:
                await self._replace(tab, tab.url, None)
            else:
                logger.debug("tab %s already in a suitable container %s", tab.id, tab.container_id)
                self.timers.arm(tab.container_id)

    async def replace_tab(self, tab: Tab, url: str) -> Tab | None:
        """Move `tab` to the container `url` resolves to (a new ephemeral one if none)."""
        with self.registry.processing(tab.id):
            target = await self.resolver.resolve(url)
            return await self._replace(tab, url, target)

    async def _replace(
        self,
        tab: Tab,
        url: str,
        container_id: str | None,
        *,
        allow_blank: bool = False,
    ) -> Tab | None:
        if is_blank(url) and not allow_blank:
            logger.debug("not replacing tab %s for blank url", tab.id)
            return None
        if not self.registry.bump(tab.id):
            return None

        if container_id is None:
            container_id = (await self.ephemeral.create()).id

        new_tab = await self.browser.create_tab(
            url,
            container_id=container_id,
            window_id=tab.window_id,
            index=tab.index,
            active=tab.active,
        )
        new_state = self.registry.ensure(new_tab.id)
        new_state.addon_created = True
        new_state.container_id = container_id
        if not is_blank(url):
            new_state.last_url = url
        self.timers.cancel(container_id)

        try:
            await self.browser.remove_tab(tab.id)
        except ResourceGone:
            logger.debug("original tab %s already closed", tab.id)

        logger.info("replaced tab %s with %s in %s", tab.id, new_tab.id, container_id)
        return new_tab

    # -- helpers ------------------------------------------------------------

    async def _opener(self, tab: Tab) -> Tab | None:
        if tab.opener_id is None:
            return None
        try:
            return await self.browser.get_tab(tab.opener_id)
        except ResourceGone:
            return None

    @staticmethod
    def _groups_with(opener: Tab, domain: str) -> bool:
        return get_domain(opener.url) == domain and opener.container_id != DEFAULT_CONTAINER

    async def _renew(self, container_id: str) -> None:
        if await self.ephemeral.is_ephemeral(container_id):
            self.timers.arm(container_id)

    async def _set_badge(self, tab_id: int, *, excluded: bool) -> None:
        try:
            if excluded:
                await self.browser.set_badge(tab_id, EXCLUDED_BADGE, EXCLUDED_BADGE_COLOR)
            else:
                await self.browser.set_badge(tab_id, "")
        except Exception as exc:  # noqa: BLE001
            logger.error("could not update badge for tab %s: %s", tab_id, exc)

    # -- exclusion ----------------------------------------------------------

    async def exclude_tab(self, tab_id: int) -> bool:
        """True if the tab was newly excluded."""
        if self.registry.is_excluded(tab_id):
            return False
        self.registry.exclude(tab_id)
        await self._set_badge(tab_id, excluded=True)
        logger.info("tab %s excluded from isolation", tab_id)
        return True

    async def include_tab(self, tab_id: int) -> bool:
        """True if the tab was excluded before."""
        changed = self.registry.include(tab_id)
        if changed:
            await self._set_badge(tab_id, excluded=False)
            logger.info("tab %s no longer excluded", tab_id)
        return changed
