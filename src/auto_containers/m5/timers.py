from __future__ import annotations

import asyncio
import logging

from auto_containers.m4.platform import Browser, ResourceGone

logger = logging.getLogger(__name__)

DEFAULT_QUIET_SECONDS = 5 * 60


class DeletionTimers:
    """One cancelable delayed deletion per container id.

    Arming always supersedes an outstanding timer for the same id. On firing,
    the container is removed only if it still holds no tabs.
    """

    def __init__(self, browser: Browser, *, quiet_seconds: float = DEFAULT_QUIET_SECONDS) -> None:
        self.browser = browser
        self.quiet_seconds = quiet_seconds
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, container_id: object) -> bool:
        return container_id in self._tasks

    @property
    def armed(self) -> list[str]:
        return list(self._tasks)

    def arm(self, container_id: str) -> asyncio.Task[None]:
        self.cancel(container_id)
        task = asyncio.get_running_loop().create_task(
            self._expire(container_id),
            name=f"delete-container-{container_id}",
        )
        self._tasks[container_id] = task
        logger.debug("deletion timer armed for %s (%ss)", container_id, self.quiet_seconds)
        return task

    def cancel(self, container_id: str) -> bool:
        task = self._tasks.pop(container_id, None)
        if task is None:
            return False
        task.cancel()
        logger.debug("deletion timer cancelled for %s", container_id)
        return True

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _expire(self, container_id: str) -> None:
        try:
            await asyncio.sleep(self.quiet_seconds)
            tabs = await self.browser.query_tabs(container_id=container_id)
            if tabs:
                logger.debug("container %s still holds %d tab(s), keeping", container_id, len(tabs))
                return
            await self.browser.remove_container(container_id)
            logger.info("deleted idle container %s", container_id)
        except ResourceGone:
            logger.debug("container %s already gone", container_id)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("deletion timer for %s failed", container_id)
        finally:
            if self._tasks.get(container_id) is asyncio.current_task():
                del self._tasks[container_id]
