from __future__ import annotations

import pytest

from auto_containers.m2.rules import Rule
from auto_containers.m3.sorting import (
    RANK_CATCH_ALL,
    RANK_DOMAIN,
    RANK_GLOBAL_TLD,
    DomainKey,
    extract_base_domain,
    pattern_covers,
    sort_group,
    sort_rules,
    wildcard_samples,
)


def _lines(text: str) -> list[str]:
    return text.split("\n")


def _rule(pattern: str, name: str = "X") -> Rule:
    return Rule(pattern=pattern, container_name=name, line=f"{pattern}, {name}")


@pytest.mark.parametrize(
    ("domain", "key"),
    [
        ("mail.google.com", DomainKey(RANK_DOMAIN, "google")),
        ("*.google.com", DomainKey(RANK_DOMAIN, "google")),
        ("google.*", DomainKey(RANK_DOMAIN, "google")),
        ("www.google.com", DomainKey(RANK_DOMAIN, "google")),
        ("news.bbc.co.uk", DomainKey(RANK_DOMAIN, "bbc")),
        ("*.com", DomainKey(RANK_GLOBAL_TLD, "com")),
        ("*.co.uk", DomainKey(RANK_GLOBAL_TLD, "co.uk")),
        ("localhost", DomainKey(RANK_DOMAIN, "localhost")),
    ],
)
def test_extract_base_domain(domain: str, key: DomainKey) -> None:
    assert extract_base_domain(domain) == key


def test_extract_base_domain_respects_configured_tlds() -> None:
    assert extract_base_domain("shop.example.co.nz") == DomainKey(RANK_DOMAIN, "co")
    assert extract_base_domain("shop.example.co.nz", ("co.nz",)) == DomainKey(RANK_DOMAIN, "example")


def test_wildcard_samples() -> None:
    assert wildcard_samples("example.com") == ["example.com"]
    samples = wildcard_samples("*.example.com")
    assert ".example.com" in samples
    assert "subdomain.example.com" in samples
    assert len(wildcard_samples("*.example.*")) == 25


def test_pattern_covers() -> None:
    assert pattern_covers("*.example.com", "shop.example.com")
    assert not pattern_covers("shop.example.com", "*.example.com")
    # a subdomain wildcard is not treated as covering the bare domain
    assert not pattern_covers("*.example.com", "example.com")
    assert pattern_covers("example.com/*", "example.com/app")


def test_specificity_order() -> None:
    text = "*.example.com, A\nexample.com, B\nshop.example.com, C"
    out = _lines(sort_rules(text))
    assert sorted(out) == sorted(_lines(text))
    assert out.index("*.example.com, A") > out.index("example.com, B")
    assert out.index("*.example.com, A") > out.index("shop.example.com, C")


def test_groups_alphabetical_and_catch_all_last() -> None:
    text = "\n".join(
        [
            "*, Everything",
            "zeta.org, Z",
            "*.com, AnyCom",
            "Alpha.io, A",
            "mail.beta.com, B",
            "beta.com, B2",
        ]
    )
    out = _lines(sort_rules(text))
    assert out == [
        "Alpha.io, A",
        "mail.beta.com, B",
        "beta.com, B2",
        "zeta.org, Z",
        "*.com, AnyCom",
        "*, Everything",
    ]


def test_catch_all_variants_share_last_group() -> None:
    out = _lines(sort_rules("*.*, Star\nexample.com, E\n*/*, Path\n*, Any"))
    assert out[0] == "example.com, E"
    assert set(out[1:]) == {"*.*, Star", "*/*, Path", "*, Any"}


@pytest.mark.parametrize(
    "text",
    [
        "*.example.com, A\nexample.com, B\nshop.example.com, C",
        "*, X\n*.*, Y\ngoogle.*, G\n*.google.com, GG\nmail.google.com, M",
        "a.com/x/*, A\na.com/x/y, B\n*.a.com, C\na.com, D",
        "b.org, B\na.org, A",
    ],
)
def test_sort_is_idempotent(text: str) -> None:
    once = sort_rules(text)
    assert sort_rules(once) == once


def test_duplicate_patterns_are_kept() -> None:
    out = _lines(sort_rules("*.a.com, X\nsub.a.com, Y\n*.a.com, Z"))
    assert len(out) == 3
    assert out[0] == "sub.a.com, Y"


def test_invalid_lines_dropped_and_empty_input_unchanged() -> None:
    assert sort_rules("b.com, B\nnonsense\na.com, A") == "a.com, A\nb.com, B"
    assert sort_rules("") == ""
    assert sort_rules("only junk") == "only junk"


def test_sort_returns_input_on_failure(monkeypatch) -> None:
    import auto_containers.m3.sorting as sorting

    def boom(_rules):
        raise RuntimeError("boom")

    monkeypatch.setattr(sorting, "sort_group", boom)
    text = "b.example.com, B\n*.example.com, A"
    assert sort_rules(text) == text


def test_sort_group_moves_cover_behind_covered() -> None:
    rules = [_rule("*.example.com", "A"), _rule("shop.example.com", "C")]
    assert [r.container_name for r in sort_group(rules)] == ["C", "A"]
