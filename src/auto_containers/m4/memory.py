from __future__ import annotations

from collections import deque
from dataclasses import replace

from auto_containers.m2.matcher import is_blank
from auto_containers.m4.platform import (
    DEFAULT_CONTAINER,
    STATUS_COMPLETE,
    STATUS_LOADING,
    BeforeNavigate,
    Container,
    ResourceGone,
    Tab,
    TabChange,
    TabCreated,
    TabEvent,
    TabRemoved,
    TabUpdated,
)


class InMemoryBrowser:
    """Deterministic browser model.

    Every mutation (by the user or by the background) appends the events a real
    browser would fire to `events`; nothing is dispatched until a caller drains
    them with `next_event()`. A navigation only changes the tab's url when its
    update event is delivered, so `before-navigate` still sees the old url.
    """

    def __init__(self) -> None:
        self.containers: dict[str, Container] = {}
        self.tabs: dict[int, Tab] = {}
        self.badges: dict[int, tuple[str, str | None]] = {}
        self.notifications: list[tuple[str, str]] = []
        self.events: deque[TabEvent] = deque()
        self._next_tab_id = 1
        self._next_container_id = 1

    # -- containers ---------------------------------------------------------

    async def get_container(self, container_id: str) -> Container:
        try:
            return self.containers[container_id]
        except KeyError:
            raise ResourceGone(f"no container {container_id}") from None

    async def query_containers(self, name: str | None = None) -> list[Container]:
        return [c for c in self.containers.values() if name is None or c.name == name]

    async def create_container(self, name: str, color: str, icon: str) -> Container:
        container = Container(
            id=f"firefox-container-{self._next_container_id}",
            name=name,
            color=color,
            icon=icon,
        )
        self._next_container_id += 1
        self.containers[container.id] = container
        return container

    async def update_container(
        self,
        container_id: str,
        *,
        name: str | None = None,
        color: str | None = None,
        icon: str | None = None,
    ) -> Container:
        current = await self.get_container(container_id)
        updated = replace(
            current,
            name=name if name is not None else current.name,
            color=color if color is not None else current.color,
            icon=icon if icon is not None else current.icon,
        )
        self.containers[container_id] = updated
        return updated

    async def remove_container(self, container_id: str) -> None:
        if container_id not in self.containers:
            raise ResourceGone(f"no container {container_id}")
        # removing an identity closes its tabs
        for tab in [t for t in self.tabs.values() if t.container_id == container_id]:
            self._close(tab.id)
        del self.containers[container_id]

    # -- tabs ---------------------------------------------------------------

    async def get_tab(self, tab_id: int) -> Tab:
        try:
            return self.tabs[tab_id]
        except KeyError:
            raise ResourceGone(f"no tab {tab_id}") from None

    async def query_tabs(self, container_id: str | None = None) -> list[Tab]:
        return [
            t
            for t in self.tabs.values()
            if container_id is None or t.container_id == container_id
        ]

    async def create_tab(
        self,
        url: str,
        *,
        container_id: str,
        window_id: int,
        index: int,
        active: bool,
    ) -> Tab:
        if container_id != DEFAULT_CONTAINER and container_id not in self.containers:
            raise ResourceGone(f"no container {container_id}")
        return self._open(
            url,
            container_id=container_id,
            window_id=window_id,
            index=index,
            active=active,
        )

    async def remove_tab(self, tab_id: int) -> None:
        if tab_id not in self.tabs:
            raise ResourceGone(f"no tab {tab_id}")
        self._close(tab_id)

    async def set_badge(self, tab_id: int, text: str, color: str | None = None) -> None:
        if tab_id not in self.tabs:
            raise ResourceGone(f"no tab {tab_id}")
        if text:
            self.badges[tab_id] = (text, color)
        else:
            self.badges.pop(tab_id, None)

    async def notify(self, title: str, message: str) -> None:
        self.notifications.append((title, message))

    # -- user actions -------------------------------------------------------

    def open_tab(
        self,
        url: str = "about:newtab",
        *,
        container_id: str = DEFAULT_CONTAINER,
        opener_id: int | None = None,
        title: str = "",
        window_id: int = 1,
        index: int | None = None,
        active: bool = True,
    ) -> Tab:
        return self._open(
            url,
            container_id=container_id,
            window_id=window_id,
            index=index,
            active=active,
            opener_id=opener_id,
            title=title,
        )

    def navigate(self, tab_id: int, url: str) -> None:
        if tab_id not in self.tabs:
            raise ResourceGone(f"no tab {tab_id}")
        self._load(tab_id, url)

    def close_tab(self, tab_id: int) -> None:
        if tab_id not in self.tabs:
            raise ResourceGone(f"no tab {tab_id}")
        self._close(tab_id)

    def next_event(self) -> TabEvent | None:
        """Deliver the oldest event; url/status changes land on the tab at delivery."""
        while self.events:
            event = self.events.popleft()
            if isinstance(event, TabUpdated):
                current = self.tabs.get(event.tab_id)
                if current is None:
                    continue
                tab = replace(
                    current,
                    url=event.change.url or current.url,
                    status=event.change.status or current.status,
                )
                self.tabs[tab.id] = tab
                return replace(event, tab=tab)
            if isinstance(event, BeforeNavigate) and event.tab_id not in self.tabs:
                continue
            return event
        return None

    def window_tabs(self, window_id: int = 1) -> list[Tab]:
        return sorted(
            (t for t in self.tabs.values() if t.window_id == window_id),
            key=lambda t: t.index,
        )

    # -- internals ----------------------------------------------------------

    def _open(
        self,
        url: str,
        *,
        container_id: str,
        window_id: int,
        index: int | None,
        active: bool,
        opener_id: int | None = None,
        title: str = "",
    ) -> Tab:
        siblings = self.window_tabs(window_id)
        if index is None or index > len(siblings):
            index = len(siblings)
        for t in siblings:
            if t.index >= index:
                self.tabs[t.id] = replace(t, index=t.index + 1)

        tab = Tab(
            id=self._next_tab_id,
            url=url if is_blank(url) else "about:blank",
            container_id=container_id,
            window_id=window_id,
            index=index,
            active=active,
            opener_id=opener_id,
            title=title,
            status=STATUS_LOADING,
        )
        self._next_tab_id += 1
        self.tabs[tab.id] = tab
        self.events.append(TabCreated(tab=tab))

        if is_blank(url):
            self.events.append(
                TabUpdated(tab_id=tab.id, change=TabChange(status=STATUS_COMPLETE), tab=tab)
            )
        else:
            self._load(tab.id, url)
        return tab

    def _load(self, tab_id: int, url: str) -> None:
        # the tab snapshots are refreshed by next_event() on delivery
        tab = self.tabs[tab_id]
        self.events.append(BeforeNavigate(tab_id=tab_id, url=url))
        self.events.append(
            TabUpdated(tab_id=tab_id, change=TabChange(url=url, status=STATUS_LOADING), tab=tab)
        )
        self.events.append(
            TabUpdated(tab_id=tab_id, change=TabChange(status=STATUS_COMPLETE), tab=tab)
        )

    def _close(self, tab_id: int) -> None:
        tab = self.tabs.pop(tab_id)
        self.badges.pop(tab_id, None)
        for t in self.window_tabs(tab.window_id):
            if t.index > tab.index:
                self.tabs[t.id] = replace(t, index=t.index - 1)
        self.events.append(TabRemoved(tab_id=tab_id, container_id=tab.container_id))
