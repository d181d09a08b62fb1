from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from auto_containers.m2.matcher import matches

logger = logging.getLogger(__name__)

_COMMA_RE = re.compile(r"^[^,\s]+,\s+\S.*$")
_PATTERN_RE = re.compile(
    r"^(\*\.)?([a-zA-Z0-9_-]+\.)*([a-zA-Z0-9_*-]+)(\.[a-zA-Z0-9_-]+)*(\.\*)?(/.*)?$"
)
_NAME_RE = re.compile(r"^[a-zA-Z0-9 _-]+$")
EPHEMERAL_NAME_RE = re.compile(r"^tmp_(\d+)$")

_MESSAGES = {
    "format": (
        'Invalid rule format on line {n}: "{line}". Each rule must be in the format: '
        "Pattern, Name (e.g., youtube.com, YT)"
    ),
    "comma": (
        'Invalid comma format on line {n}: "{line}". Format must be: Pattern, Name '
        "(no space before comma, space after comma)"
    ),
    "pattern": (
        'Invalid pattern on line {n}: "{line}". Pattern must be a valid domain '
        "(e.g., google.com, *.google.*, google.*, *.google.com) or URL path "
        "(e.g., google.com/search)"
    ),
    "name": (
        'Invalid container name on line {n}: "{line}". Container name must contain only '
        "letters, numbers, spaces, hyphens, or underscores"
    ),
}


class RuleSyntaxError(ValueError):
    def __init__(self, line_number: int, line: str, kind: str) -> None:
        self.line_number = line_number
        self.line = line
        self.kind = kind
        super().__init__(_MESSAGES[kind].format(n=line_number, line=line))


@dataclass(frozen=True)
class Rule:
    pattern: str
    container_name: str
    # the trimmed source line, kept verbatim for re-serialisation
    line: str


def is_ephemeral_name(name: str) -> bool:
    return EPHEMERAL_NAME_RE.match(name) is not None


def rule_lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


def parse_rule_line(line: str) -> Rule | None:
    trimmed = line.strip()
    if trimmed.count(",") != 1:
        logger.warning("skipping invalid rule: %s", trimmed)
        return None
    pattern, name = (part.strip() for part in trimmed.split(","))
    if not pattern or not name:
        logger.warning("skipping empty rule: %s", trimmed)
        return None
    return Rule(pattern=pattern, container_name=name, line=trimmed)


def parse_rules(text: str) -> list[Rule]:
    """Lenient parse used at match/sort time: malformed lines are dropped."""
    out: list[Rule] = []
    for line in rule_lines(text):
        rule = parse_rule_line(line)
        if rule is not None:
            out.append(rule)
    return out


def check_rule_line(line: str, line_number: int = 1) -> Rule:
    """Strict edit-time check of one line; raises RuleSyntaxError on the first defect."""
    trimmed = line.strip()
    if trimmed.count(",") != 1:
        raise RuleSyntaxError(line_number, trimmed, "format")
    if not _COMMA_RE.match(trimmed):
        raise RuleSyntaxError(line_number, trimmed, "comma")

    pattern, name = (part.strip() for part in trimmed.split(","))
    if not pattern:
        raise RuleSyntaxError(line_number, trimmed, "pattern")
    if not name:
        raise RuleSyntaxError(line_number, trimmed, "name")
    if not (_PATTERN_RE.match(pattern) or "/" in pattern):
        raise RuleSyntaxError(line_number, trimmed, "pattern")
    if not _NAME_RE.match(name):
        raise RuleSyntaxError(line_number, trimmed, "name")
    return Rule(pattern=pattern, container_name=name, line=trimmed)


def find_rule_errors(text: str) -> list[RuleSyntaxError]:
    errors: list[RuleSyntaxError] = []
    for n, line in enumerate(rule_lines(text), start=1):
        try:
            check_rule_line(line, n)
        except RuleSyntaxError as e:
            errors.append(e)
    return errors


def validate_rules(text: str) -> list[Rule]:
    return [check_rule_line(line, n) for n, line in enumerate(rule_lines(text), start=1)]


def first_match(rules: list[Rule], url: str) -> Rule | None:
    for rule in rules:
        if matches(url, rule.pattern):
            return rule
    return None
