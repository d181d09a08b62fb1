from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_MAX_PROCESSING = 3


class TabBusyError(RuntimeError):
    pass


class Phase(str, Enum):
    UNTRACKED = "untracked"
    PENDING = "pending"
    PROCESSING = "processing"
    SETTLED = "settled"


@dataclass
class TabState:
    tab_id: int
    pending: bool = False
    processing: bool = False
    last_url: str | None = None
    container_id: str | None = None
    # opened by the background itself; ignored until it finishes loading
    addon_created: bool = False
    excluded: bool = False
    process_count: int = 0
    abandoned: bool = False


class TabRegistry:
    """Per-tab bookkeeping for the event machine.

    State is created on the first event that needs it and dropped on removal.
    The processing lock is advisory; every mutating path takes it through
    `processing()` so it is released on all exits.
    """

    def __init__(self, *, max_processing: int = DEFAULT_MAX_PROCESSING) -> None:
        self.max_processing = max_processing
        self._tabs: dict[int, TabState] = {}

    def __len__(self) -> int:
        return len(self._tabs)

    def __contains__(self, tab_id: object) -> bool:
        return tab_id in self._tabs

    def get(self, tab_id: int) -> TabState | None:
        return self._tabs.get(tab_id)

    def ensure(self, tab_id: int) -> TabState:
        state = self._tabs.get(tab_id)
        if state is None:
            state = self._tabs[tab_id] = TabState(tab_id=tab_id)
        return state

    def forget(self, tab_id: int) -> TabState | None:
        return self._tabs.pop(tab_id, None)

    def phase(self, tab_id: int) -> Phase:
        state = self._tabs.get(tab_id)
        if state is None:
            return Phase.UNTRACKED
        if state.processing:
            return Phase.PROCESSING
        if state.pending:
            return Phase.PENDING
        return Phase.SETTLED

    def is_processing(self, tab_id: int) -> bool:
        state = self._tabs.get(tab_id)
        return state is not None and state.processing

    def is_excluded(self, tab_id: int) -> bool:
        state = self._tabs.get(tab_id)
        return state is not None and state.excluded

    @contextmanager
    def processing(self, tab_id: int) -> Iterator[TabState]:
        state = self.ensure(tab_id)
        if state.processing:
            raise TabBusyError(f"tab {tab_id} is already being processed")
        state.processing = True
        try:
            yield state
        finally:
            state.processing = False

    def bump(self, tab_id: int) -> bool:
        """Count one automatic reprocessing of the tab.

        Returns False (and abandons the tab) once the ceiling is reached.
        """
        state = self.ensure(tab_id)
        if state.abandoned:
            return False
        if state.process_count >= self.max_processing:
            state.abandoned = True
            logger.warning(
                "tab %s reprocessed %d times, giving up on it (possible loop)",
                tab_id,
                state.process_count,
            )
            return False
        state.process_count += 1
        return True

    def exclude(self, tab_id: int) -> TabState:
        state = self.ensure(tab_id)
        state.excluded = True
        return state

    def include(self, tab_id: int) -> bool:
        state = self._tabs.get(tab_id)
        if state is None or not state.excluded:
            return False
        state.excluded = False
        return True

    def record_url(self, tab_id: int, url: str) -> None:
        state = self._tabs.get(tab_id)
        if state is not None:
            state.last_url = url

    def excluded_ids(self) -> list[int]:
        return sorted(t for t, s in self._tabs.items() if s.excluded)
