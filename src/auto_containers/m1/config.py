from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from auto_containers.m1.paths import default_config_path

DEFAULT_MULTI_PART_TLDS: tuple[str, ...] = (
    "co.uk",
    "org.uk",
    "gov.uk",
    "ac.uk",
    "com.au",
    "net.au",
    "org.au",
    "co.jp",
    "ne.jp",
    "com.br",
)


@dataclass(frozen=True)
class Settings:
    # ephemeral containers are deleted after this many seconds without tabs
    quiet_seconds: float = 300.0
    # loop guard: automatic replacements allowed per tab id
    max_processing_per_tab: int = 3
    multi_part_tlds: tuple[str, ...] = field(default=DEFAULT_MULTI_PART_TLDS)


def load_settings(path: Path | None = None) -> Settings:
    if path is None:
        path = default_config_path()

    if not path.exists():
        return Settings()

    obj = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("config must be a JSON object")

    defaults = Settings()

    quiet = obj.get("quiet_seconds", defaults.quiet_seconds)
    if isinstance(quiet, bool) or not isinstance(quiet, (int, float)) or quiet < 0:
        raise ValueError("quiet_seconds must be a non-negative number")

    max_proc = obj.get("max_processing_per_tab", defaults.max_processing_per_tab)
    if isinstance(max_proc, bool) or not isinstance(max_proc, int) or max_proc < 1:
        raise ValueError("max_processing_per_tab must be a positive integer")

    tlds = obj.get("multi_part_tlds", list(defaults.multi_part_tlds))
    if not isinstance(tlds, list) or not all(isinstance(t, str) for t in tlds):
        raise ValueError("multi_part_tlds must be a list of strings")

    return Settings(
        quiet_seconds=float(quiet),
        max_processing_per_tab=max_proc,
        multi_part_tlds=tuple(t.strip().lower() for t in tlds if t.strip()),
    )
