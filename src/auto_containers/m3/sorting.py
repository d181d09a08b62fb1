"""Canonical ordering of the rule list.

Rules are grouped by the label in front of their TLD, each group is ordered
most-specific-first by a pairwise "covers" relation, and groups are joined in
case-insensitive alphabetical order with wildcard-TLD and catch-all buckets last.

`pattern_covers` is a heuristic: it substitutes a fixed sample set for each
wildcard and adds a structural skeleton check. It is not a sound subsumption
test, and the relaxation sort is capped at 2x the group size in passes, so a
crafted non-transitive set of patterns can come out only partially ordered.
"""

from __future__ import annotations

import itertools
import logging
import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass
from typing import NamedTuple

from auto_containers.m1.config import DEFAULT_MULTI_PART_TLDS
from auto_containers.m2.rules import Rule, parse_rules

logger = logging.getLogger(__name__)

CATCH_ALL_PATTERNS = frozenset({"*", "*.*", "*/*"})
WILDCARD_SAMPLES = ("", "test", "example", "a", "subdomain")

RANK_DOMAIN = 0
RANK_GLOBAL_TLD = 1
RANK_CATCH_ALL = 2


class DomainKey(NamedTuple):
    rank: int
    name: str


def _strip_wildcards(domain: str) -> str:
    if domain.startswith("*."):
        domain = domain[2:]
    if domain.endswith(".*"):
        domain = domain[:-2]
    return domain.replace("*", "")


def extract_base_domain(
    domain: str,
    multi_part_tlds: Iterable[str] = DEFAULT_MULTI_PART_TLDS,
) -> DomainKey:
    """Grouping key for the domain part of a pattern.

    `mail.google.com`, `*.google.com` and `google.*` all key to `google`;
    `*.com` / `*.co.uk` go to the wildcard-TLD bucket.
    """
    tlds = set(multi_part_tlds)
    normalized = domain.lower().strip()
    if normalized.startswith("www."):
        normalized = normalized[4:]
    had_leading_wildcard = normalized.startswith("*.")
    normalized = _strip_wildcards(normalized)

    parts = normalized.split(".")
    if had_leading_wildcard and normalized:
        if len(parts) == 1 or (len(parts) == 2 and normalized in tlds):
            return DomainKey(RANK_GLOBAL_TLD, normalized)

    if not normalized or len(parts) == 1:
        return DomainKey(RANK_DOMAIN, normalized or domain)

    tld_length = 2 if f"{parts[-2]}.{parts[-1]}" in tlds else 1
    if len(parts) <= tld_length:
        return DomainKey(RANK_DOMAIN, parts[0] or domain)
    return DomainKey(RANK_DOMAIN, parts[-tld_length - 1])


def _pattern_regex(pattern: str) -> re.Pattern[str]:
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def wildcard_samples(pattern: str) -> list[str]:
    """Every string made by substituting each `*` in `pattern` with a sample."""
    literals = pattern.split("*")
    out: dict[str, None] = {}
    for combo in itertools.product(WILDCARD_SAMPLES, repeat=len(literals) - 1):
        pieces = [literals[0]]
        for sample, literal in zip(combo, literals[1:]):
            pieces.append(sample)
            pieces.append(literal)
        out["".join(pieces)] = None
    return list(out)


def structurally_covers(pattern1: str, pattern2: str) -> bool:
    if pattern1.startswith("*.") and "*" not in pattern2:
        domain2 = pattern2.split("/")[0].split("?")[0]
        # a subdomain wildcard never covers a bare second-level domain
        if len(domain2.split(".")) <= 2:
            return False

    i = j = 0
    while i < len(pattern1) and j < len(pattern2):
        if pattern1[i] == "*":
            i += 1
            while j < len(pattern2) and i < len(pattern1) and pattern2[j] != pattern1[i]:
                j += 1
        elif pattern1[i] == pattern2[j]:
            i += 1
            j += 1
        else:
            return False

    return pattern1[i:].replace("*", "") == ""


def pattern_covers(pattern1: str, pattern2: str) -> bool:
    regex = _pattern_regex(pattern1)
    for case in wildcard_samples(pattern2):
        if regex.fullmatch(case) is None:
            return False
    return structurally_covers(pattern1, pattern2)


@dataclass
class _Slot:
    rule: Rule
    position: int


def sort_group(rules: list[Rule]) -> list[Rule]:
    """Order one domain group so that no rule precedes a rule it covers.

    Each pass snapshots every ordered pair; a covering rule that sits in front
    of the rule it covers is moved to just behind it. Passes stop once nothing
    moves or after 2 * len(rules) passes.
    """
    slots = [_Slot(rule=r, position=i) for i, r in enumerate(rules)]
    max_passes = len(rules) * 2
    passes = 0
    changed = True

    while changed and passes < max_passes:
        changed = False
        passes += 1

        pairs = [
            (a, a.position, b, b.position)
            for idx, a in enumerate(slots)
            for b in slots[idx + 1 :]
        ]
        for a, pos_a, b, pos_b in pairs:
            if a.rule.pattern == b.rule.pattern:
                continue
            if pos_a < pos_b and pattern_covers(a.rule.pattern, b.rule.pattern):
                changed = True
                new_pos = pos_b + 1
                for s in slots:
                    if s.position >= new_pos:
                        s.position += 1
                a.position = new_pos
                logger.debug(
                    "moving %r (pos %d) after %r (pos %d)",
                    a.rule.pattern,
                    pos_a,
                    b.rule.pattern,
                    pos_b,
                )

        slots.sort(key=lambda s: s.position)

    if changed:
        logger.debug("group sort stopped after %d passes", passes)
    return [s.rule for s in slots]


def _collation_key(name: str) -> tuple[tuple[int, str], ...]:
    # case- and accent-insensitive; punctuation < digits < letters
    folded = unicodedata.normalize("NFKD", name.casefold())
    out: list[tuple[int, str]] = []
    for ch in folded:
        if unicodedata.combining(ch):
            continue
        if ch.isalpha():
            out.append((2, ch))
        elif ch.isdigit():
            out.append((1, ch))
        else:
            out.append((0, ch))
    return tuple(out)


def group_key(rule: Rule, multi_part_tlds: Iterable[str] = DEFAULT_MULTI_PART_TLDS) -> DomainKey:
    if rule.pattern in CATCH_ALL_PATTERNS:
        return DomainKey(RANK_CATCH_ALL, "*")
    domain = rule.pattern.split("/")[0]
    return extract_base_domain(domain, multi_part_tlds)


def sort_rules(
    rules_text: str,
    *,
    multi_part_tlds: Iterable[str] = DEFAULT_MULTI_PART_TLDS,
) -> str:
    """Return `rules_text` in canonical order; the input is returned as-is on failure."""
    try:
        rules = parse_rules(rules_text)
        if not rules:
            return rules_text

        tlds = tuple(multi_part_tlds)
        groups: dict[DomainKey, list[Rule]] = {}
        for rule in rules:
            groups.setdefault(group_key(rule, tlds), []).append(rule)

        for key, group in groups.items():
            if len(group) > 1:
                logger.debug("sorting %d rules for %s", len(group), key.name)
                groups[key] = sort_group(group)

        ordered = sorted(groups, key=lambda k: (k.rank, _collation_key(k.name)))
        result = "\n".join(rule.line for key in ordered for rule in groups[key])
        logger.debug("sorted %d rules into %d groups", len(rules), len(ordered))
        return result
    except Exception:  # noqa: BLE001
        logger.exception("error sorting rules")
        return rules_text
