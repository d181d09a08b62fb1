from __future__ import annotations

import logging
from collections.abc import Iterable

from auto_containers.m1.config import DEFAULT_MULTI_PART_TLDS
from auto_containers.m1.store import DEFAULT_STYLE, ContainerStyle, SettingsStore
from auto_containers.m2.rules import check_rule_line, rule_lines, validate_rules
from auto_containers.m3.sorting import sort_rules

logger = logging.getLogger(__name__)


class RuleExistsError(ValueError):
    pass


def _pattern_of(line: str) -> str:
    return line.split(",")[0].strip()


def sort_stored_rules(
    store: SettingsStore,
    *,
    multi_part_tlds: Iterable[str] = DEFAULT_MULTI_PART_TLDS,
) -> bool:
    """Sort the persisted rules in place. Returns True when the text changed."""
    rules = store.get_rules()
    sorted_rules = sort_rules(rules, multi_part_tlds=multi_part_tlds)
    if sorted_rules == rules:
        logger.debug("rules unchanged after sorting")
        return False
    store.set_rules(sorted_rules)
    logger.info("sorted rules saved")
    return True


def save_rules(
    store: SettingsStore,
    text: str,
    *,
    multi_part_tlds: Iterable[str] = DEFAULT_MULTI_PART_TLDS,
) -> str:
    """Validate, persist and sort a full rule list. Raises RuleSyntaxError."""
    text = text.strip()
    validate_rules(text)
    store.set_rules(text)
    sort_stored_rules(store, multi_part_tlds=multi_part_tlds)
    return store.get_rules()


def check_new_rule(store: SettingsStore, pattern: str, container_name: str) -> list[str]:
    """Validate a new rule against the stored rules; returns the current rule lines."""
    check_rule_line(f"{pattern}, {container_name}")
    lines = rule_lines(store.get_rules())
    if any(_pattern_of(existing) == pattern for existing in lines):
        raise RuleExistsError(f"a rule for {pattern!r} already exists")
    return lines


def add_rule(
    store: SettingsStore,
    pattern: str,
    container_name: str,
    *,
    style: ContainerStyle | None = None,
    multi_part_tlds: Iterable[str] = DEFAULT_MULTI_PART_TLDS,
) -> str:
    pattern = pattern.strip()
    container_name = container_name.strip()
    lines = check_new_rule(store, pattern, container_name)
    lines.append(f"{pattern}, {container_name}")
    store.set_rules("\n".join(lines))
    if style is not None or store.get_container_style(container_name) is None:
        store.set_container_style(container_name, style or DEFAULT_STYLE)

    sort_stored_rules(store, multi_part_tlds=multi_part_tlds)
    return store.get_rules()


def delete_rule(store: SettingsStore, line: str) -> bool:
    target = line.strip()
    lines = rule_lines(store.get_rules())
    kept = [existing for existing in lines if existing != target]
    if len(kept) == len(lines):
        return False
    store.set_rules("\n".join(kept))
    return True


def rules_for_container(rules_text: str, container_name: str) -> list[str]:
    out: list[str] = []
    for line in rule_lines(rules_text):
        parts = [p.strip() for p in line.split(",")]
        if len(parts) > 1 and parts[1] == container_name:
            out.append(line)
    return out


def replace_rules(
    store: SettingsStore,
    originals: list[str],
    new_lines: list[str],
    *,
    multi_part_tlds: Iterable[str] = DEFAULT_MULTI_PART_TLDS,
) -> str:
    """Swap an edited subset of rules (e.g. all rules of one container) for new lines."""
    cleaned = [line.strip() for line in new_lines]
    for n, line in enumerate(cleaned, start=1):
        check_rule_line(line, n)

    dropped = {line.strip() for line in originals}
    others = [line for line in rule_lines(store.get_rules()) if line not in dropped]
    store.set_rules("\n".join([*others, *cleaned]))
    sort_stored_rules(store, multi_part_tlds=multi_part_tlds)
    return store.get_rules()
