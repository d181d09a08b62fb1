from __future__ import annotations

import logging
import re
from urllib.parse import SplitResult, parse_qs, parse_qsl, urlsplit

logger = logging.getLogger(__name__)

BLANK_URLS = frozenset({"about:blank", "about:newtab"})
# Pages that never get a container of their own.
_INTERNAL_PREFIXES = ("about:", "moz-extension:", "chrome-extension:")
GLOBAL_DOMAIN_PATTERNS = frozenset({"*", "*.*"})


def is_blank(url: str | None) -> bool:
    return not url or url in BLANK_URLS


def strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def get_domain(url: str | None) -> str:
    """Hostname without a leading `www.`, or "" for blank/internal/unparsable URLs."""
    if url is None or is_blank(url):
        return ""
    if url.startswith(_INTERNAL_PREFIXES):
        return ""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        logger.debug("invalid url: %r", url)
        return ""
    return strip_www(host or "")


def _wildcard_regex(text: str) -> str:
    # literal segments escaped, `*` -> `.*`
    return ".*".join(re.escape(part) for part in text.split("*"))


def matches_domain(domain: str, pattern: str) -> bool:
    if pattern in GLOBAL_DOMAIN_PATTERNS:
        return True

    domain = strip_www(domain.strip().lower())
    pattern = strip_www(pattern.strip().lower())

    if "*" not in pattern:
        return domain == pattern

    if pattern.startswith("*."):
        # subdomain wildcard: the base itself or anything below it
        base = _wildcard_regex(pattern[2:])
        regex = rf"(?:{base}|.*\.{base})"
    elif pattern.endswith(".*"):
        # domain family: same label, any single alphabetic TLD
        regex = rf"{_wildcard_regex(pattern[:-2])}\.[a-zA-Z]{{2,}}"
    else:
        regex = _wildcard_regex(pattern)

    try:
        return re.fullmatch(regex, domain, re.IGNORECASE) is not None
    except re.error:
        logger.warning("invalid wildcard pattern: %r", pattern)
        return False


def _query_matches(url_query: str, pattern_query: str) -> bool:
    have = parse_qs(url_query, keep_blank_values=True)
    for key, value in parse_qsl(pattern_query, keep_blank_values=True):
        if key not in have:
            return False
        # empty value in the pattern means "present with any value"
        if value != "" and have[key][0] != value:
            return False
    return True


def _path_matches(parts: SplitResult, pattern_rest: str) -> bool:
    pattern_path, has_query, pattern_query = ("/" + pattern_rest).partition("?")
    url_path = parts.path or "/"

    if "*" in pattern_path:
        try:
            ok = re.fullmatch(rf"{_wildcard_regex(pattern_path)}(?:/.*)?", url_path) is not None
        except re.error:
            logger.warning("invalid path pattern: %r", pattern_path)
            return False
    else:
        ok = (
            url_path == pattern_path
            or url_path == pattern_path + "/"
            or url_path.startswith(pattern_path + "/")
            or url_path.startswith(pattern_path + "?")
        )

    if not ok or not has_query:
        return ok
    return _query_matches(parts.query, pattern_query)


def matches(url: str, pattern: str) -> bool:
    """Does `url` fall under the rule `pattern`? Never raises; bad input is a miss."""
    pattern = pattern.strip()
    if not pattern:
        return False

    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
    except ValueError:
        logger.debug("invalid url: %r", url)
        return False
    if not host:
        return False

    domain = strip_www(host)
    if "/" not in pattern:
        return matches_domain(domain, pattern)

    pattern_domain, _, rest = pattern.partition("/")
    if not matches_domain(domain, pattern_domain):
        return False
    return _path_matches(parts, rest)
