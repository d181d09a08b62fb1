from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any

COLORS = (
    "blue",
    "turquoise",
    "green",
    "yellow",
    "orange",
    "red",
    "pink",
    "purple",
    "toolbar",
)
ICONS = (
    "fingerprint",
    "briefcase",
    "dollar",
    "cart",
    "vacation",
    "gift",
    "food",
    "fruit",
    "pet",
    "tree",
    "chill",
    "circle",
    "fence",
)

RULES_KEY = "rules"
TEMP_STYLE_KEY = "tempContainerStyle"
CONTAINER_STYLES_KEY = "containerStyles"
NOTIFICATIONS_KEY = "notifications"


@dataclass(frozen=True)
class ContainerStyle:
    color: str = "blue"
    icon: str = "circle"

    def to_json(self) -> dict[str, str]:
        return {"color": self.color, "icon": self.icon}


DEFAULT_STYLE = ContainerStyle()


@dataclass(frozen=True)
class TempContainerStyle:
    # color/icon are None when the matching random flag is set.
    color: str | None = "blue"
    icon: str | None = "circle"
    random_color: bool = False
    random_icon: bool = False

    def to_json(self) -> dict[str, Any]:
        return {
            "color": self.color,
            "icon": self.icon,
            "randomColor": self.random_color,
            "randomIcon": self.random_icon,
        }

    @classmethod
    def from_json(cls, obj: Any) -> TempContainerStyle:
        if not isinstance(obj, dict):
            return cls()
        return cls(
            color=obj.get("color") if isinstance(obj.get("color"), str) else None,
            icon=obj.get("icon") if isinstance(obj.get("icon"), str) else None,
            random_color=bool(obj.get("randomColor", False)),
            random_icon=bool(obj.get("randomIcon", False)),
        )


class SettingsStore:
    """Typed access to the persisted key-value settings.

    Values are JSON-encoded in the `settings` table; unreadable values fall back
    to the documented defaults rather than raising.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _get(self, key: str, default: Any) -> Any:
        row = self.conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return default

    def _set(self, key: str, value: Any) -> None:
        self.conn.execute(
            """
            INSERT INTO settings(key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, json.dumps(value, ensure_ascii=False, sort_keys=True)),
        )
        self.conn.commit()

    def get_rules(self) -> str:
        rules = self._get(RULES_KEY, "")
        return rules if isinstance(rules, str) else ""

    def set_rules(self, rules: str) -> None:
        self._set(RULES_KEY, rules)

    def get_temp_style(self) -> TempContainerStyle:
        return TempContainerStyle.from_json(self._get(TEMP_STYLE_KEY, None))

    def set_temp_style(self, style: TempContainerStyle) -> None:
        self._set(TEMP_STYLE_KEY, style.to_json())

    def get_container_styles(self) -> dict[str, ContainerStyle]:
        raw = self._get(CONTAINER_STYLES_KEY, {})
        if not isinstance(raw, dict):
            return {}
        out: dict[str, ContainerStyle] = {}
        for name, v in raw.items():
            if not isinstance(name, str) or not isinstance(v, dict):
                continue
            color = v.get("color")
            icon = v.get("icon")
            out[name] = ContainerStyle(
                color=color if isinstance(color, str) else DEFAULT_STYLE.color,
                icon=icon if isinstance(icon, str) else DEFAULT_STYLE.icon,
            )
        return out

    def get_container_style(self, name: str) -> ContainerStyle | None:
        return self.get_container_styles().get(name)

    def set_container_style(self, name: str, style: ContainerStyle) -> None:
        styles = self.get_container_styles()
        styles[name] = style
        self._set(CONTAINER_STYLES_KEY, {k: v.to_json() for k, v in styles.items()})

    def get_notifications(self) -> bool:
        return bool(self._get(NOTIFICATIONS_KEY, True))

    def set_notifications(self, enabled: bool) -> None:
        self._set(NOTIFICATIONS_KEY, bool(enabled))
