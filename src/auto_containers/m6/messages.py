from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from auto_containers.m1.config import DEFAULT_MULTI_PART_TLDS
from auto_containers.m1.store import COLORS, ICONS, ContainerStyle, SettingsStore
from auto_containers.m2.rules import (
    RuleSyntaxError,
    find_rule_errors,
    first_match,
    parse_rules,
)
from auto_containers.m3.editing import add_rule, check_new_rule, save_rules, sort_stored_rules
from auto_containers.m5.ephemeral import EphemeralContainers
from auto_containers.m6.machine import TabMachine

logger = logging.getLogger(__name__)

SAVED_TITLE = "Settings Saved"
SAVED_MESSAGE = "Container rules and notification settings have been saved."
INVALID_TITLE = "Invalid Rules Format"

Result = dict[str, Any]


def _require(message: dict[str, Any], key: str, kind: type) -> Any:
    value = message.get(key)
    # bool is an int subclass; a tab id of `true` is a caller bug
    if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
        raise ValueError(f"{key} must be {kind.__name__}")
    return value


def _style_from(message: dict[str, Any]) -> ContainerStyle:
    color = message.get("color") or "blue"
    icon = message.get("icon") or "circle"
    if color not in COLORS:
        raise ValueError(f"unknown color: {color}")
    if icon not in ICONS:
        raise ValueError(f"unknown icon: {icon}")
    return ContainerStyle(color=color, icon=icon)


class MessageHandler:
    """Answers `{action, ...}` requests from the options page and popup.

    Every reply carries `success`; failures never propagate to the caller.
    """

    def __init__(
        self,
        store: SettingsStore,
        machine: TabMachine,
        ephemeral: EphemeralContainers,
        *,
        multi_part_tlds: Iterable[str] = DEFAULT_MULTI_PART_TLDS,
    ) -> None:
        self.store = store
        self.machine = machine
        self.ephemeral = ephemeral
        self.multi_part_tlds = tuple(multi_part_tlds)
        self._actions: dict[str, Callable[[dict[str, Any]], Awaitable[Result]]] = {
            "sortRules": self._sort_rules,
            "saveRules": self._save_rules,
            "validateRules": self._validate_rules,
            "matchUrl": self._match_url,
            "excludeTab": self._exclude_tab,
            "removeExclusion": self._remove_exclusion,
            "isExcluded": self._is_excluded,
            "applyStyle": self._apply_style,
            "convertContainer": self._convert_container,
        }

    @property
    def actions(self) -> list[str]:
        return sorted(self._actions)

    async def handle(self, message: Any) -> Result:
        action = message.get("action") if isinstance(message, dict) else None
        handler = self._actions.get(action) if isinstance(action, str) else None
        if handler is None:
            return {"success": False, "error": f"unknown action: {action!r}"}

        logger.debug("message %s", action)
        try:
            result = await handler(message)
        except Exception as e:  # noqa: BLE001
            logger.error("message %s failed: %s", action, e)
            return {"success": False, "error": str(e)}
        return {"success": True, **result}

    async def _notify(self, title: str, message: str) -> None:
        if not self.store.get_notifications():
            return
        try:
            await self.machine.browser.notify(title, message)
        except Exception as e:  # noqa: BLE001
            logger.error("notification failed: %s", e)

    async def _sort_rules(self, message: dict[str, Any]) -> Result:
        changed = sort_stored_rules(self.store, multi_part_tlds=self.multi_part_tlds)
        return {"changed": changed}

    async def _save_rules(self, message: dict[str, Any]) -> Result:
        text = _require(message, "rules", str)
        try:
            rules = save_rules(self.store, text, multi_part_tlds=self.multi_part_tlds)
        except RuleSyntaxError as e:
            await self._notify(INVALID_TITLE, str(e))
            raise
        await self._notify(SAVED_TITLE, SAVED_MESSAGE)
        return {"rules": rules}

    async def _validate_rules(self, message: dict[str, Any]) -> Result:
        text = _require(message, "rules", str)
        errors = find_rule_errors(text)
        return {
            "valid": not errors,
            "errors": [
                {"line": e.line_number, "kind": e.kind, "message": str(e)} for e in errors
            ],
        }

    async def _match_url(self, message: dict[str, Any]) -> Result:
        url = _require(message, "url", str)
        rule = first_match(parse_rules(self.store.get_rules()), url)
        if rule is None:
            return {"match": None}
        return {"match": {"pattern": rule.pattern, "container": rule.container_name}}

    async def _exclude_tab(self, message: dict[str, Any]) -> Result:
        tab_id = _require(message, "tabId", int)
        changed = await self.machine.exclude_tab(tab_id)
        return {"isExcluded": True, "changed": changed}

    async def _remove_exclusion(self, message: dict[str, Any]) -> Result:
        tab_id = _require(message, "tabId", int)
        changed = await self.machine.include_tab(tab_id)
        return {"isExcluded": False, "changed": changed}

    async def _is_excluded(self, message: dict[str, Any]) -> Result:
        tab_id = _require(message, "tabId", int)
        return {"isExcluded": self.machine.registry.is_excluded(tab_id)}

    async def _apply_style(self, message: dict[str, Any]) -> Result:
        container_id = _require(message, "containerId", str)
        style = _style_from(message)
        container = await self.machine.browser.update_container(
            container_id, color=style.color, icon=style.icon
        )
        self.store.set_container_style(container.name, style)
        return {"container": {"id": container.id, "name": container.name}}

    async def _convert_container(self, message: dict[str, Any]) -> Result:
        container_id = _require(message, "containerId", str)
        name = _require(message, "name", str).strip()
        pattern = _require(message, "pattern", str).strip()
        style = _style_from(message)
        # refuse before renaming anything
        check_new_rule(self.store, pattern, name)

        container = await self.ephemeral.convert(container_id, name, style)
        rules = add_rule(
            self.store,
            pattern,
            name,
            style=style,
            multi_part_tlds=self.multi_part_tlds,
        )
        return {"container": {"id": container.id, "name": container.name}, "rules": rules}
