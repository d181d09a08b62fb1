from __future__ import annotations

from pathlib import Path

import pytest

from auto_containers.m1 import db as db_mod
from auto_containers.m1.store import DEFAULT_STYLE, ContainerStyle, SettingsStore
from auto_containers.m2.rules import RuleSyntaxError
from auto_containers.m3.editing import (
    RuleExistsError,
    add_rule,
    delete_rule,
    replace_rules,
    rules_for_container,
    save_rules,
    sort_stored_rules,
)


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(db_mod.connect(tmp_path / "x.sqlite3"))


def test_save_rules_validates_then_sorts(tmp_path: Path) -> None:
    store = _store(tmp_path)
    saved = save_rules(store, "\n  *.example.com, A\nshop.example.com, C\n\n")
    assert saved == "shop.example.com, C\n*.example.com, A"
    assert store.get_rules() == saved


def test_save_rules_rejects_invalid_text(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.set_rules("keep.com, Keep")
    with pytest.raises(RuleSyntaxError) as exc:
        save_rules(store, "a.com, A\nb.com,B")
    assert exc.value.line_number == 2
    assert store.get_rules() == "keep.com, Keep"


def test_sort_stored_rules_reports_change(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.set_rules("b.com, B\na.com, A")
    assert sort_stored_rules(store) is True
    assert store.get_rules() == "a.com, A\nb.com, B"
    assert sort_stored_rules(store) is False


def test_add_rule_appends_sorts_and_saves_style(tmp_path: Path) -> None:
    store = _store(tmp_path)
    add_rule(store, "*.example.com", "Example")
    add_rule(store, " shop.example.com ", "Shop", style=ContainerStyle(color="red", icon="cart"))

    assert store.get_rules() == "shop.example.com, Shop\n*.example.com, Example"
    assert store.get_container_style("Example") == DEFAULT_STYLE
    assert store.get_container_style("Shop") == ContainerStyle(color="red", icon="cart")


def test_add_rule_keeps_existing_style_unless_given(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.set_container_style("Work", ContainerStyle(color="green", icon="briefcase"))
    add_rule(store, "work.com", "Work")
    assert store.get_container_style("Work") == ContainerStyle(color="green", icon="briefcase")


def test_add_rule_refuses_duplicates_and_bad_syntax(tmp_path: Path) -> None:
    store = _store(tmp_path)
    add_rule(store, "youtube.com", "YT")
    with pytest.raises(RuleExistsError):
        add_rule(store, "youtube.com", "Other")
    with pytest.raises(RuleSyntaxError):
        add_rule(store, "you tube.com", "YT")
    assert store.get_rules() == "youtube.com, YT"


def test_delete_rule(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.set_rules("a.com, A\nb.com, B")
    assert delete_rule(store, "  a.com, A ") is True
    assert store.get_rules() == "b.com, B"
    assert delete_rule(store, "a.com, A") is False


def test_rules_for_container() -> None:
    text = "a.com, Work\nb.com, Home\nc.com, Work"
    assert rules_for_container(text, "Work") == ["a.com, Work", "c.com, Work"]
    assert rules_for_container(text, "Nope") == []


def test_replace_rules(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.set_rules("a.com, Work\nb.com, Home\nc.com, Work")
    out = replace_rules(store, ["a.com, Work", "c.com, Work"], ["d.com, Work"])
    assert out == "b.com, Home\nd.com, Work"

    with pytest.raises(RuleSyntaxError):
        replace_rules(store, ["d.com, Work"], ["bad"])
    assert store.get_rules() == "b.com, Home\nd.com, Work"
