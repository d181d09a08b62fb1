"""Host-platform capabilities the background consumes.

A concrete browser bridge implements `Browser`; `m4.memory.InMemoryBrowser` is
the reference implementation used by tests and the `simulate` command.
Missing tabs/containers are reported with `ResourceGone`, never as `None`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

DEFAULT_CONTAINER = "firefox-default"

STATUS_LOADING = "loading"
STATUS_COMPLETE = "complete"


class ResourceGone(LookupError):
    """A tab or container vanished (usually closed concurrently)."""


@dataclass(frozen=True)
class Container:
    id: str
    name: str
    color: str
    icon: str


@dataclass(frozen=True)
class Tab:
    id: int
    url: str
    container_id: str = DEFAULT_CONTAINER
    window_id: int = 1
    index: int = 0
    active: bool = True
    opener_id: int | None = None
    title: str = ""
    status: str = STATUS_COMPLETE


@dataclass(frozen=True)
class TabChange:
    url: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class TabCreated:
    tab: Tab


@dataclass(frozen=True)
class TabUpdated:
    tab_id: int
    change: TabChange
    tab: Tab


@dataclass(frozen=True)
class BeforeNavigate:
    tab_id: int
    url: str
    frame_id: int = 0


@dataclass(frozen=True)
class TabRemoved:
    tab_id: int
    # last known container, when the platform can still tell
    container_id: str | None = None


TabEvent = TabCreated | TabUpdated | BeforeNavigate | TabRemoved


class Browser(Protocol):
    async def get_container(self, container_id: str) -> Container: ...

    async def query_containers(self, name: str | None = None) -> list[Container]: ...

    async def create_container(self, name: str, color: str, icon: str) -> Container: ...

    async def update_container(
        self,
        container_id: str,
        *,
        name: str | None = None,
        color: str | None = None,
        icon: str | None = None,
    ) -> Container: ...

    async def remove_container(self, container_id: str) -> None: ...

    async def get_tab(self, tab_id: int) -> Tab: ...

    async def query_tabs(self, container_id: str | None = None) -> list[Tab]: ...

    async def create_tab(
        self,
        url: str,
        *,
        container_id: str,
        window_id: int,
        index: int,
        active: bool,
    ) -> Tab: ...

    async def remove_tab(self, tab_id: int) -> None: ...

    async def set_badge(self, tab_id: int, text: str, color: str | None = None) -> None: ...

    async def notify(self, title: str, message: str) -> None: ...
